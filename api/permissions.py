from __future__ import annotations

from rest_framework.permissions import BasePermission, SAFE_METHODS

from marketplace.signals import GROUP_BUYERS, GROUP_VENDORS


def _is_staff_or_superuser(user) -> bool:
    return bool(getattr(user, "is_staff", False) or getattr(user, "is_superuser", False))


def _in_group(user, name: str) -> bool:
    return bool(
        getattr(user, "is_authenticated", False)
        and user.groups.filter(name=name).exists()
    )


class IsVendor(BasePermission):
    def has_permission(self, request, view) -> bool:
        if request.method in SAFE_METHODS:
            return True
        user = getattr(request, "user", None)
        if _is_staff_or_superuser(user):
            return True
        return _in_group(user, GROUP_VENDORS)


class IsVendorAccount(BasePermission):
    """Vendors only, reads included (wallet, seller orders)."""
    def has_permission(self, request, view) -> bool:
        user = getattr(request, "user", None)
        return _is_staff_or_superuser(user) or _in_group(user, GROUP_VENDORS)


class IsBuyer(BasePermission):
    def has_permission(self, request, view) -> bool:
        if request.method in SAFE_METHODS:
            return True
        user = getattr(request, "user", None)
        if _is_staff_or_superuser(user):
            return True
        return _in_group(user, GROUP_BUYERS)


class IsOwnerOrReadOnly(BasePermission):
    """Writes allowed to the vendor owning the object's store (or the store itself)."""
    def has_object_permission(self, request, view, obj) -> bool:
        if request.method in SAFE_METHODS:
            return True

        user = getattr(request, "user", None)
        if not getattr(user, "is_authenticated", False):
            return False
        if _is_staff_or_superuser(user):
            return True

        store = getattr(obj, "store", None)
        if store is None:
            product = getattr(obj, "product", None)
            store = getattr(product, "store", None)
        if store is None:
            return False

        vendor = getattr(store, "vendor", None)
        if vendor is not None:
            return getattr(vendor, "id", None) == getattr(user, "id", None)

        vendor_id = getattr(store, "vendor_id", None)
        return vendor_id == getattr(user, "id", None)
