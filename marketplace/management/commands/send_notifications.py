from django.core.management.base import BaseCommand

from marketplace.notifications import process_pending_notifications


class Command(BaseCommand):
    help = 'Deliver pending notifications to registered devices'

    def add_arguments(self, parser):
        parser.add_argument('--limit', type=int, default=100, help='Maximum notifications to process')

    def handle(self, *args, **options):
        counts = process_pending_notifications(limit=options['limit'])
        self.stdout.write(self.style.SUCCESS(
            f"Sent: {counts['sent']}, no devices: {counts['no_tokens']}, failed: {counts['failed']}"
        ))
