"""Shipping zones, methods and cost calculation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Tuple

from .models import ShippingMethod, ShippingRate, ShippingZone

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
DEFAULT_WEIGHT_KG = Decimal("1")


class ShippingError(ValueError):
    """No rate covers the destination, method or weight."""


@dataclass
class ShippingQuote:
    cost: Decimal
    is_free: bool
    estimated_days: str


def zone_for_province(province: str) -> Optional[ShippingZone]:
    province = (province or "").strip().casefold()
    if not province:
        return None
    for zone in ShippingZone.objects.filter(is_active=True):
        if province in {p.casefold() for p in zone.provinces}:
            return zone
    return None


def estimated_days(method: ShippingMethod) -> str:
    low, high = method.estimated_days_min, method.estimated_days_max
    if high <= low:
        return f"{low} days" if low != 1 else "1 day"
    return f"{low}-{high} days"


def calculate_shipping(province: str, method, cart_total, weight_kg=DEFAULT_WEIGHT_KG) -> ShippingQuote:
    """
    Price ``method`` (instance or id) for a delivery to ``province``.

    Cost is the rate's base price plus its per-kg price times the weight.
    Orders at or above the rate's free-shipping minimum ship free.
    Raises ShippingError when the province has no zone, the method has no
    active rate in it, or the weight exceeds the rate's limit.
    """
    zone = zone_for_province(province)
    if zone is None:
        raise ShippingError(f"We do not ship to {province or 'that address'} yet.")

    method_id = getattr(method, "pk", method)
    rate = (
        ShippingRate.objects.select_related("method")
        .filter(zone=zone, method_id=method_id, is_active=True, method__is_active=True)
        .first()
    )
    if rate is None:
        raise ShippingError("This shipping method is not available for your province.")

    weight_kg = Decimal(str(weight_kg))
    if rate.max_weight_kg is not None and weight_kg > rate.max_weight_kg:
        raise ShippingError(f"This shipping method carries at most {rate.max_weight_kg} kg.")

    days = estimated_days(rate.method)
    cart_total = Decimal(str(cart_total))
    if rate.free_shipping_min is not None and cart_total >= rate.free_shipping_min:
        return ShippingQuote(cost=Decimal("0.00"), is_free=True, estimated_days=days)

    cost = (rate.base_price + rate.price_per_kg * weight_kg).quantize(CENTS, ROUND_HALF_UP)
    return ShippingQuote(cost=cost, is_free=False, estimated_days=days)


def shipping_options(province: str, cart_total, weight_kg=DEFAULT_WEIGHT_KG) -> List[Tuple[ShippingMethod, ShippingQuote]]:
    """Every active method that can deliver to ``province``, fastest first."""
    options = []
    for method in ShippingMethod.objects.filter(is_active=True):
        try:
            options.append((method, calculate_shipping(province, method, cart_total, weight_kg)))
        except ShippingError:
            continue
    return options


def format_shipping_cost(quote: ShippingQuote) -> str:
    if quote.is_free:
        return "Free"
    return f"${quote.cost}"
