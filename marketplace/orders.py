"""Checkout: turn a cart into an Order, and order status changes for sellers."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Mapping, Optional

from django.conf import settings
from django.core.mail import send_mail
from django.db import transaction

from .cart import Cart
from .coupons import apply_coupon, validate_coupon
from .models import Order, OrderItem, Product, ProductVariant
from .notifications import notify
from .shipping import ShippingError, calculate_shipping

logger = logging.getLogger(__name__)

SHIPPING_FIELDS = (
    "shipping_name",
    "shipping_phone",
    "shipping_address",
    "shipping_city",
    "shipping_province",
    "shipping_postal_code",
    "buyer_notes",
)

# Seller-driven transitions: current status -> allowed next statuses.
SELLER_TRANSITIONS = {
    Order.STATUS_PENDING: (Order.STATUS_PROCESSING, Order.STATUS_CANCELLED),
    Order.STATUS_PAID: (Order.STATUS_PROCESSING, Order.STATUS_CANCELLED),
    Order.STATUS_PROCESSING: (Order.STATUS_SHIPPED, Order.STATUS_CANCELLED),
    Order.STATUS_SHIPPED: (Order.STATUS_DELIVERED,),
}


class CheckoutError(ValueError):
    """The cart cannot be turned into an order."""


class InsufficientStock(CheckoutError):
    pass


@transaction.atomic
def place_order(
    user,
    cart: Cart,
    coupon_code: Optional[str] = None,
    shipping: Optional[Mapping[str, str]] = None,
    shipping_method=None,
) -> Order:
    """
    Convert the cart to an Order, decrement stock, apply a coupon, email the
    invoice, queue seller notifications, clear the cart.

    When ``shipping_method`` is given, its cost to ``shipping_province`` is
    added to the total; free-shipping thresholds apply to the discounted
    subtotal.
    """
    if not cart:
        raise CheckoutError("Your cart is empty.")

    lines = [item for item in cart if item.quantity > 0]
    products = Product.objects.select_for_update().select_related("store").in_bulk(
        [item.product_id for item in lines]
    )
    variant_ids = [item.variant_id for item in lines if item.variant_id is not None]
    variants = ProductVariant.objects.select_for_update().in_bulk(variant_ids)

    subtotal = Decimal("0.00")
    line_items = []
    for item in lines:
        product = products.get(item.product_id)
        if product is None or not product.is_active:
            raise CheckoutError(f"{item.name} is no longer available.")

        variant = None
        if item.variant_id is not None:
            variant = variants.get(item.variant_id)
            if variant is None or not variant.is_active or variant.product_id != product.pk:
                raise CheckoutError(f"{item.name} is no longer available.")
            stock_holder = variant
            price = variant.price if variant.price is not None else product.price
        else:
            stock_holder = product
            price = product.price

        if stock_holder.stock < item.quantity:
            logger.info("Insufficient stock for %s (have %s, want %s)", item.name, stock_holder.stock, item.quantity)
            raise InsufficientStock(f"Insufficient stock for {item.name}.")

        subtotal += price * item.quantity
        line_items.append((product, variant, stock_holder, item, price))

    if not line_items:
        raise CheckoutError("Your cart has no valid items.")

    discount = Decimal("0.00")
    coupon = None
    if coupon_code:
        validation = validate_coupon(coupon_code, user, subtotal, lock=True)
        if not validation.is_valid:
            raise CheckoutError(validation.error_message)
        coupon, discount = validation.coupon, validation.discount_amount

    shipping = shipping or {}
    shipping_cost = Decimal("0.00")
    if shipping_method is not None:
        try:
            quote = calculate_shipping(shipping.get("shipping_province", ""), shipping_method, subtotal - discount)
        except ShippingError as exc:
            raise CheckoutError(str(exc)) from exc
        shipping_cost = quote.cost

    low_stock = getattr(settings, "MARKETPLACE_LOW_STOCK_THRESHOLD", 3)
    order = Order.objects.create(
        user=user,
        status=Order.STATUS_PAID,
        subtotal=subtotal,
        discount=discount,
        shipping_cost=shipping_cost,
        total=subtotal - discount + shipping_cost,
        coupon=coupon,
        shipping_method_id=getattr(shipping_method, "pk", shipping_method),
        **{field: (shipping.get(field) or "").strip() for field in SHIPPING_FIELDS},
    )
    for product, variant, stock_holder, item, price in line_items:
        OrderItem.objects.create(
            order=order,
            product=product,
            variant=variant,
            seller_id=product.store.vendor_id,
            product_name=item.name,
            qty=item.quantity,
            price_snapshot=price,
        )
        stock_holder.stock = max(0, stock_holder.stock - item.quantity)
        stock_holder.save(update_fields=["stock"])
        if stock_holder.stock <= low_stock:
            notify(
                product.store.vendor_id,
                title="Low stock",
                body=f"Only {stock_holder.stock} left of {item.name}.",
                data={"type": "low_stock", "product_id": product.pk},
            )

    if coupon is not None:
        apply_coupon(coupon, user, order, discount)

    cart.clear()
    logger.info("Order #%s placed by %s: total %s", order.pk, user.username, order.total)

    _send_invoice(order)
    for seller_id in {product.store.vendor_id for product, *_ in line_items}:
        notify(
            seller_id,
            title="New order",
            body=f"You have a new order #{order.pk}.",
            data={"type": "new_order", "order_id": order.pk},
        )
    return order


def _send_invoice(order: Order) -> None:
    user = order.user
    subject = f"Invoice for Order #{order.id}"
    body_lines = [f"Thank you for your purchase, {user.username}!", "", "Items:"]
    for item in order.items.all():
        body_lines.append(f"- {item.product_name} x{item.qty} @ {item.price_snapshot} = {item.line_total()}")
    body_lines.append("")
    body_lines.append(f"Subtotal: {order.subtotal}")
    if order.discount:
        body_lines.append(f"Discount: -{order.discount}")
    if order.shipping_cost:
        body_lines.append(f"Shipping: {order.shipping_cost}")
    body_lines.append(f"Total: {order.total}")

    send_mail(
        subject,
        "\n".join(body_lines),
        getattr(settings, "DEFAULT_FROM_EMAIL", "no-reply@marketplace.test"),
        [user.email] if user.email else [],
        fail_silently=True,
    )


def seller_orders(seller):
    """Orders containing at least one line sold by ``seller``."""
    return (
        Order.objects.filter(items__seller=seller)
        .distinct()
        .select_related("user")
        .prefetch_related("items")
    )


def update_order_status(order: Order, seller, new_status: str, tracking_number: str = "") -> Order:
    if not order.items.filter(seller=seller).exists():
        raise PermissionError("You have no items in this order.")
    allowed = SELLER_TRANSITIONS.get(order.status, ())
    if new_status not in allowed:
        raise ValueError(f"Cannot change order from '{order.status}' to '{new_status}'.")

    order.status = new_status
    fields = ["status", "updated_at"]
    if tracking_number:
        order.tracking_number = tracking_number
        fields.append("tracking_number")
    order.save(update_fields=fields)

    notify(
        order.user_id,
        title="Order update",
        body=f"Your order #{order.pk} is now {order.get_status_display().lower()}.",
        data={"type": "order_status", "order_id": order.pk, "status": new_status},
    )
    return order
