from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from django.db.models import F
from django.utils import timezone

from .models import Coupon, CouponUsage, Order

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


@dataclass
class CouponValidation:
    is_valid: bool
    coupon: Optional[Coupon] = None
    discount_amount: Decimal = Decimal("0.00")
    error_message: str = ""


def _invalid(message: str, coupon: Optional[Coupon] = None) -> CouponValidation:
    return CouponValidation(is_valid=False, coupon=coupon, error_message=message)


def compute_discount(coupon: Coupon, cart_total: Decimal) -> Decimal:
    """Percentage (capped by max_discount) or fixed amount, never above the total."""
    if coupon.discount_type == Coupon.TYPE_PERCENTAGE:
        amount = (cart_total * coupon.discount_value / Decimal("100")).quantize(CENTS, ROUND_HALF_UP)
        if coupon.max_discount is not None:
            amount = min(amount, coupon.max_discount)
    else:
        amount = coupon.discount_value
    return max(Decimal("0.00"), min(amount, cart_total))


def validate_coupon(code: str, user, cart_total: Decimal, lock: bool = False) -> CouponValidation:
    """
    Check ``code`` for ``user`` against ``cart_total``.

    With ``lock=True`` the coupon row stays locked until the surrounding
    transaction ends, so usage limits hold under concurrent checkouts.
    """
    code = (code or "").strip()
    if not code:
        return _invalid("Enter a coupon code.")

    coupons = Coupon.objects.select_for_update() if lock else Coupon.objects.all()
    coupon = coupons.filter(code__iexact=code).first()
    if coupon is None:
        return _invalid("Coupon not found.")
    if not coupon.is_active:
        return _invalid("This coupon is not active.", coupon)

    now = timezone.now()
    if coupon.starts_at and coupon.starts_at > now:
        return _invalid("This coupon is not valid yet.", coupon)
    if is_coupon_expired(coupon, now):
        return _invalid("This coupon has expired.", coupon)
    if coupon.usage_limit is not None and coupon.current_usage >= coupon.usage_limit:
        return _invalid("This coupon has reached its usage limit.", coupon)

    if user is not None and getattr(user, "is_authenticated", False):
        used = CouponUsage.objects.filter(coupon=coupon, user=user).count()
        if used >= coupon.usage_per_user:
            return _invalid("You have already used this coupon.", coupon)
        if coupon.first_purchase_only and Order.objects.filter(user=user).exists():
            return _invalid("This coupon is only valid on your first purchase.", coupon)
    elif coupon.first_purchase_only:
        return _invalid("Log in to use this coupon.", coupon)

    if cart_total < coupon.min_purchase:
        return _invalid(f"Minimum purchase for this coupon is {coupon.min_purchase}.", coupon)

    return CouponValidation(
        is_valid=True,
        coupon=coupon,
        discount_amount=compute_discount(coupon, cart_total),
    )


def apply_coupon(coupon: Coupon, user, order: Order, discount_amount: Decimal) -> CouponUsage:
    usage = CouponUsage.objects.create(
        coupon=coupon, user=user, order=order, discount_amount=discount_amount
    )
    Coupon.objects.filter(pk=coupon.pk).update(current_usage=F("current_usage") + 1)
    logger.info("Coupon %s applied to order #%s (-%s)", coupon.code, order.pk, discount_amount)
    return usage


def is_coupon_expired(coupon: Coupon, now=None) -> bool:
    if coupon.expires_at is None:
        return False
    return coupon.expires_at < (now or timezone.now())


def format_discount(coupon: Coupon) -> str:
    if coupon.discount_type == Coupon.TYPE_PERCENTAGE:
        text = f"{coupon.discount_value.normalize():f}% OFF"
        if coupon.max_discount is not None:
            text += f" (max ${coupon.max_discount})"
        return text
    return f"${coupon.discount_value} OFF"
