from django.contrib.auth.models import Group, Permission
from django.contrib.auth.signals import user_logged_in
from django.contrib.contenttypes.models import ContentType
from django.db.models.signals import post_migrate
from django.dispatch import receiver

from .favorites import merge_session_favorites
from .models import Product

GROUP_VENDORS = "Vendors"
GROUP_BUYERS = "Buyers"


@receiver(post_migrate, dispatch_uid="marketplace_seed_groups_perms_v1")
def create_groups_and_permissions(sender, **kwargs) -> None:
    """
    After the 'marketplace' app migrates, ensure the 'Vendors' and 'Buyers' groups
    exist and that 'Vendors' has the custom can_change_product_price permission.
    """
    # Only run for our own app
    if getattr(sender, "label", None) != "marketplace":
        return

    vendors_group, _ = Group.objects.get_or_create(name=GROUP_VENDORS)
    Group.objects.get_or_create(name=GROUP_BUYERS)

    ct: ContentType = ContentType.objects.get_for_model(Product)
    perm, _ = Permission.objects.get_or_create(
        content_type=ct,
        codename="can_change_product_price",
        defaults={"name": "Can change product price"},
    )
    vendors_group.permissions.add(perm)


@receiver(user_logged_in, dispatch_uid="marketplace_merge_favorites_v1")
def merge_favorites_on_login(sender, request, user, **kwargs) -> None:
    """Anonymous favorites follow the visitor into their account."""
    session = getattr(request, "session", None)
    if session is not None:
        merge_session_favorites(user, session)
