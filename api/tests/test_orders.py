from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from django.core import mail
from django.test import TestCase, override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from marketplace.cart import Cart, CartItem
from marketplace.coupons import validate_coupon
from marketplace.models import (
    Coupon,
    CouponUsage,
    Notification,
    Order,
    Product,
    ShippingMethod,
    ShippingRate,
    ShippingZone,
    Store,
)
from marketplace.orders import CheckoutError, InsufficientStock, place_order, seller_orders, update_order_status
from marketplace.signals import GROUP_VENDORS
from marketplace.variants import create_variant

User = get_user_model()


class OrderFixtures(TestCase):
    def setUp(self):
        self.vendor = User.objects.create_user("vendor1", password="x", email="v@example.com")
        self.other_vendor = User.objects.create_user("vendor2", password="x")
        self.buyer = User.objects.create_user("buyer1", password="x", email="b@example.com")
        Group.objects.get_or_create(name=GROUP_VENDORS)[0].user_set.add(self.vendor, self.other_vendor)

        store = Store.objects.create(name="Acme", vendor=self.vendor, status=Store.STATUS_APPROVED)
        other_store = Store.objects.create(name="Other", vendor=self.other_vendor, status=Store.STATUS_APPROVED)
        self.widget = Product.objects.create(store=store, name="Widget", price=Decimal("10.00"), stock=10)
        self.gadget = Product.objects.create(store=other_store, name="Gadget", price=Decimal("25.00"), stock=5)

    def cart_with(self, *lines):
        cart = Cart({})
        for product, qty, variant in lines:
            cart.add_item(CartItem.from_product(product, quantity=qty, variant=variant))
        return cart


@override_settings(MARKETPLACE_LOW_STOCK_THRESHOLD=3)
class PlaceOrderTests(OrderFixtures):
    def test_place_order_creates_items_and_decrements_stock(self):
        cart = self.cart_with((self.widget, 2, None), (self.gadget, 1, None))
        order = place_order(self.buyer, cart, shipping={"shipping_name": " Bob ", "shipping_city": "Lima"})

        self.assertEqual(order.status, Order.STATUS_PAID)
        self.assertEqual(order.subtotal, Decimal("45.00"))
        self.assertEqual(order.total, Decimal("45.00"))
        self.assertEqual(order.shipping_name, "Bob")
        self.assertEqual(order.items.count(), 2)
        self.assertEqual(
            {item.seller_id for item in order.items.all()}, {self.vendor.id, self.other_vendor.id}
        )

        self.widget.refresh_from_db()
        self.gadget.refresh_from_db()
        self.assertEqual(self.widget.stock, 8)
        self.assertEqual(self.gadget.stock, 4)
        self.assertFalse(cart)

    def test_invoice_email_sent(self):
        order = place_order(self.buyer, self.cart_with((self.widget, 1, None)))
        self.assertEqual(len(mail.outbox), 1)
        self.assertEqual(mail.outbox[0].subject, f"Invoice for Order #{order.id}")
        self.assertIn("Widget", mail.outbox[0].body)
        self.assertEqual(mail.outbox[0].to, ["b@example.com"])

    def test_sellers_notified_of_new_order(self):
        place_order(self.buyer, self.cart_with((self.widget, 1, None), (self.gadget, 1, None)))
        notified = set(
            Notification.objects.filter(data__type="new_order").values_list("user_id", flat=True)
        )
        self.assertEqual(notified, {self.vendor.id, self.other_vendor.id})

    def test_low_stock_notification(self):
        place_order(self.buyer, self.cart_with((self.gadget, 3, None)))
        self.assertTrue(
            Notification.objects.filter(user=self.other_vendor, data__type="low_stock").exists()
        )

    def test_empty_cart_rejected(self):
        with self.assertRaises(CheckoutError):
            place_order(self.buyer, Cart({}))

    def test_insufficient_stock_rolls_back(self):
        cart = self.cart_with((self.widget, 5, None), (self.gadget, 2, None))
        Product.objects.filter(pk=self.gadget.pk).update(stock=1)

        with self.assertRaises(InsufficientStock):
            place_order(self.buyer, cart)

        self.assertFalse(Order.objects.exists())
        self.widget.refresh_from_db()
        self.assertEqual(self.widget.stock, 10)
        self.assertTrue(cart)

    def test_inactive_product_rejected(self):
        cart = self.cart_with((self.widget, 1, None))
        Product.objects.filter(pk=self.widget.pk).update(is_active=False)
        with self.assertRaises(CheckoutError):
            place_order(self.buyer, cart)

    def test_variant_line_uses_variant_price_and_stock(self):
        variant = create_variant(self.widget, options={"Size": "L"}, stock=4, price=Decimal("12.00"))
        order = place_order(self.buyer, self.cart_with((self.widget, 2, variant)))

        item = order.items.get()
        self.assertEqual(item.variant_id, variant.pk)
        self.assertEqual(item.price_snapshot, Decimal("12.00"))
        variant.refresh_from_db()
        self.widget.refresh_from_db()
        self.assertEqual(variant.stock, 2)
        self.assertEqual(self.widget.stock, 10)

    def test_coupon_applied(self):
        coupon = Coupon.objects.create(code="TEN", name="Ten", discount_value=Decimal("10"))
        order = place_order(self.buyer, self.cart_with((self.widget, 3, None)), coupon_code="ten")

        self.assertEqual(order.discount, Decimal("3.00"))
        self.assertEqual(order.total, Decimal("27.00"))
        self.assertEqual(order.coupon, coupon)
        self.assertTrue(CouponUsage.objects.filter(order=order, coupon=coupon).exists())

    def test_coupon_row_locked_during_checkout(self):
        Coupon.objects.create(code="TEN", name="Ten", discount_value=Decimal("10"))
        with mock.patch("marketplace.orders.validate_coupon", wraps=validate_coupon) as validate:
            place_order(self.buyer, self.cart_with((self.widget, 1, None)), coupon_code="TEN")
        self.assertTrue(validate.call_args.kwargs["lock"])

    def test_shipping_cost_added_to_total(self):
        zone = ShippingZone.objects.create(name="Center", provinces=["Córdoba", "Santa Fe"])
        method = ShippingMethod.objects.create(name="Courier", estimated_days_min=2, estimated_days_max=4)
        ShippingRate.objects.create(
            zone=zone, method=method, base_price=Decimal("4.00"), price_per_kg=Decimal("1.50")
        )
        order = place_order(
            self.buyer,
            self.cart_with((self.widget, 2, None)),
            shipping={"shipping_province": "santa fe"},
            shipping_method=method,
        )
        self.assertEqual(order.shipping_cost, Decimal("5.50"))
        self.assertEqual(order.total, Decimal("25.50"))
        self.assertEqual(order.shipping_method, method)
        self.assertIn("Shipping: 5.50", mail.outbox[0].body)

    def test_unserved_province_aborts_checkout(self):
        method = ShippingMethod.objects.create(name="Courier")
        with self.assertRaises(CheckoutError):
            place_order(
                self.buyer,
                self.cart_with((self.widget, 1, None)),
                shipping={"shipping_province": "Atlantis"},
                shipping_method=method,
            )
        self.assertFalse(Order.objects.exists())
        self.widget.refresh_from_db()
        self.assertEqual(self.widget.stock, 10)

    def test_invalid_coupon_aborts_checkout(self):
        with self.assertRaises(CheckoutError):
            place_order(self.buyer, self.cart_with((self.widget, 1, None)), coupon_code="MISSING")
        self.assertFalse(Order.objects.exists())


class SellerOrderTests(OrderFixtures):
    def setUp(self):
        super().setUp()
        self.order = place_order(self.buyer, self.cart_with((self.widget, 1, None)))

    def test_seller_orders_only_include_own_sales(self):
        self.assertEqual(list(seller_orders(self.vendor)), [self.order])
        self.assertEqual(list(seller_orders(self.other_vendor)), [])

    def test_status_transitions(self):
        update_order_status(self.order, self.vendor, Order.STATUS_PROCESSING)
        update_order_status(self.order, self.vendor, Order.STATUS_SHIPPED, tracking_number="TRK1")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_SHIPPED)
        self.assertEqual(self.order.tracking_number, "TRK1")
        self.assertTrue(
            Notification.objects.filter(user=self.buyer, data__type="order_status").exists()
        )

        with self.assertRaises(ValueError):
            update_order_status(self.order, self.vendor, Order.STATUS_PAID)

    def test_status_change_requires_items_in_order(self):
        with self.assertRaises(PermissionError):
            update_order_status(self.order, self.other_vendor, Order.STATUS_PROCESSING)


class OrderAPITests(OrderFixtures):
    def setUp(self):
        super().setUp()
        self.client = APIClient()

    def fill_cart(self):
        self.client.post(
            reverse("api:cart-item-create"), {"product_id": self.widget.pk, "quantity": 2}, format="json"
        )

    def test_checkout_requires_login(self):
        res = self.client.post(reverse("api:checkout"), {}, format="json")
        self.assertIn(res.status_code, (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))

    def test_checkout_and_list_orders(self):
        self.client.force_authenticate(self.buyer)
        self.fill_cart()
        res = self.client.post(reverse("api:checkout"), {"shipping_city": "Lima"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        self.assertEqual(res.data["total"], "20.00")
        self.assertEqual(res.data["items"][0]["line_total"], "20.00")

        res = self.client.get(reverse("api:cart"))
        self.assertEqual(res.data["items"], [])

        res = self.client.get(reverse("api:order-list"))
        self.assertEqual(len(res.data), 1)

    def test_checkout_empty_cart_is_400(self):
        self.client.force_authenticate(self.buyer)
        res = self.client.post(reverse("api:checkout"), {}, format="json")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

    def test_buyers_cannot_see_other_orders(self):
        order = place_order(self.buyer, self.cart_with((self.widget, 1, None)))
        self.client.force_authenticate(self.other_vendor)
        res = self.client.get(reverse("api:order-detail", args=[order.pk]))
        self.assertEqual(res.status_code, status.HTTP_404_NOT_FOUND)

    def test_seller_order_endpoints(self):
        order = place_order(self.buyer, self.cart_with((self.widget, 1, None)))
        status_url = reverse("api:seller-order-status", args=[order.pk])

        self.client.force_authenticate(self.buyer)
        res = self.client.get(reverse("api:seller-order-list"))
        self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(self.vendor)
        res = self.client.get(reverse("api:seller-order-list"))
        self.assertEqual([o["id"] for o in res.data], [order.pk])

        res = self.client.post(status_url, {"status": "processing"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_200_OK)
        self.assertEqual(res.data["status"], "processing")

        res = self.client.post(status_url, {"status": "delivered"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

        self.client.force_authenticate(self.other_vendor)
        res = self.client.post(status_url, {"status": "cancelled"}, format="json")
        self.assertEqual(res.status_code, status.HTTP_403_FORBIDDEN)
