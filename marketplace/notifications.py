from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import send_mail

from functions.push import get_push_client

from .models import Notification, PushToken

logger = logging.getLogger(__name__)

# Notification types that also go out by email.
EMAIL_TYPES = ("new_order", "order_status", "low_stock")


def notify(user, title: str, body: str, data: Optional[Dict[str, Any]] = None) -> Notification:
    """Queue a notification for ``user`` (instance or id)."""
    user_id = getattr(user, "pk", user)
    return Notification.objects.create(user_id=user_id, title=title, body=body, data=data or {})


def register_push_token(user, token: str, platform: str = "") -> PushToken:
    """Attach a device token to ``user``; a token moving between users is reassigned."""
    push_token, _ = PushToken.objects.update_or_create(
        token=token,
        defaults={"user": user, "platform": platform, "is_active": True},
    )
    return push_token


def _send_email(notification: Notification) -> None:
    user = get_user_model().objects.filter(pk=notification.user_id).first()
    if user is None or not user.email:
        return
    send_mail(
        notification.title,
        notification.body,
        getattr(settings, "DEFAULT_FROM_EMAIL", "no-reply@marketplace.test"),
        [user.email],
        fail_silently=True,
    )


def process_pending_notifications(limit: int = 100) -> Dict[str, int]:
    """
    Deliver pending notifications to every active device of their user.

    Any successful device marks the notification sent; users without devices
    are marked sent as well. Returns counts per outcome.
    """
    client = get_push_client()
    counts = {"sent": 0, "failed": 0, "no_tokens": 0}

    pending = list(Notification.objects.filter(status=Notification.STATUS_PENDING).order_by("created_at")[:limit])
    for notification in pending:
        # Claim the row; a concurrent run that got there first wins.
        claimed = Notification.objects.filter(
            pk=notification.pk, status=Notification.STATUS_PENDING
        ).update(status=Notification.STATUS_SENDING)
        if not claimed:
            continue

        tokens = list(
            PushToken.objects.filter(user_id=notification.user_id, is_active=True).values_list("token", flat=True)
        )
        if not tokens:
            notification.status = Notification.STATUS_SENT
            counts["no_tokens"] += 1
        else:
            results = [
                client.send(token=token, title=notification.title, body=notification.body, data=notification.data)
                for token in tokens
            ]
            if any(results):
                notification.status = Notification.STATUS_SENT
                counts["sent"] += 1
            else:
                notification.status = Notification.STATUS_FAILED
                counts["failed"] += 1
        notification.save(update_fields=["status", "updated_at"])

        if notification.data.get("type") in EMAIL_TYPES:
            _send_email(notification)

    if pending:
        logger.info("Processed %d notifications: %s", len(pending), counts)
    return counts
