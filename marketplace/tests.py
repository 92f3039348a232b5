# marketplace/tests.py
from decimal import Decimal

from django.contrib.auth.models import Group, Permission, User
from django.contrib.contenttypes.models import ContentType
from django.core import mail
from django.test import TestCase, Client, override_settings
from django.urls import reverse

from .cart import CART_SESSION_KEY
from .favorites import FAVORITES_SESSION_KEY
from .models import (
    Category,
    Favorite,
    Order,
    OrderItem,
    Product,
    Review,
    ShippingMethod,
    ShippingRate,
    ShippingZone,
    Store,
)
from .signals import GROUP_BUYERS, GROUP_VENDORS
from .variants import create_variant, create_variant_types


class BaseSetup(TestCase):
    """Shared fixtures & helpers for all tests."""

    @classmethod
    def setUpTestData(cls):
        # --- Groups & permission ---
        cls.group_vendors, _ = Group.objects.get_or_create(name=GROUP_VENDORS)
        cls.group_buyers, _ = Group.objects.get_or_create(name=GROUP_BUYERS)

        ct = ContentType.objects.get_for_model(Product)
        cls.perm_change_price = Permission.objects.get(content_type=ct, codename="can_change_product_price")

        # --- Users ---
        cls.vendor_user = User.objects.create_user(
            username="alice_vendor", password="pass123", email="a@example.com"
        )
        cls.vendor_user.groups.add(cls.group_vendors)

        cls.buyer_user = User.objects.create_user(
            username="bob_buyer", password="pass123", email="b@example.com"
        )
        cls.buyer_user.groups.add(cls.group_buyers)

        # --- Store & Products ---
        cls.store = Store.objects.create(
            vendor=cls.vendor_user, name="Alice Shop", status=Store.STATUS_APPROVED
        )
        cls.product = Product.objects.create(
            store=cls.store, name="Widget", price=Decimal("10.00"), stock=10
        )
        cls.product2 = Product.objects.create(
            store=cls.store, name="Gadget", price=Decimal("25.50"), stock=5
        )

    # Helpers
    def login(self, username: str, password: str = "pass123") -> Client:
        client = Client()
        ok = client.login(username=username, password=password)
        self.assertTrue(ok, "Login helper failed.")
        return client

    def add_to_cart(self, client: Client, product_id: int, qty: int = 1, variant_id=None):
        url = reverse("marketplace:add_to_cart")
        data = {"product_id": product_id, "qty": qty}
        if variant_id is not None:
            data["variant_id"] = variant_id
        return client.post(url, data)


# ---------------- Auth & Registration ----------------

class AuthTests(BaseSetup):
    def test_register_assigns_groups(self):
        client = Client()
        url = reverse("marketplace:register")

        # Register as vendor
        resp = client.post(
            url,
            {
                "username": "new_vendor",
                "password": "pass123",
                "email": "v@example.com",
                "account_type": "vendor",
            },
            follow=True,
        )
        self.assertEqual(resp.status_code, 200)
        user = User.objects.get(username="new_vendor")
        self.assertTrue(user.groups.filter(name=GROUP_VENDORS).exists())

        # Register as buyer
        resp = Client().post(
            url,
            {
                "username": "new_buyer",
                "password": "pass123",
                "email": "c@example.com",
                "account_type": "buyer",
            },
            follow=True,
        )
        self.assertEqual(resp.status_code, 200)
        user = User.objects.get(username="new_buyer")
        self.assertTrue(user.groups.filter(name=GROUP_BUYERS).exists())

    def test_register_rejects_taken_username(self):
        resp = Client().post(
            reverse("marketplace:register"), {"username": "BOB_BUYER", "password": "x"}
        )
        self.assertEqual(resp.status_code, 302)
        self.assertEqual(User.objects.filter(username__iexact="bob_buyer").count(), 1)

    def test_login_success_and_failure(self):
        client = Client()
        url = reverse("marketplace:login")

        # Success
        resp = client.post(url, {"username": "bob_buyer", "password": "pass123"})
        self.assertEqual(resp.status_code, 302)
        self.assertEqual(resp["Location"], reverse("marketplace:welcome"))

        # Failure
        resp = client.post(url, {"username": "bob_buyer", "password": "wrong"})
        self.assertEqual(resp.status_code, 302)
        self.assertIn(reverse("marketplace:login"), resp["Location"])

    def test_login_ignores_offsite_next(self):
        resp = Client().post(
            reverse("marketplace:login") + "?next=https://evil.example.com/",
            {"username": "bob_buyer", "password": "pass123"},
        )
        self.assertEqual(resp["Location"], reverse("marketplace:welcome"))


# ---------------- Permissions & Protected Views ----------------

class PermissionTests(BaseSetup):
    def test_vendor_dashboard_access(self):
        # Vendor: 200
        c_vendor = self.login("alice_vendor")
        resp = c_vendor.get(reverse("marketplace:vendor_dashboard"))
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.context["balance"], Decimal("0.00"))

        # Buyer: 403 (user_passes_test raises PermissionDenied)
        c_buyer = self.login("bob_buyer")
        resp = c_buyer.get(reverse("marketplace:vendor_dashboard"))
        self.assertEqual(resp.status_code, 403)

        # Anonymous: redirect to login
        resp = Client().get(reverse("marketplace:vendor_dashboard"))
        self.assertEqual(resp.status_code, 302)
        self.assertIn(reverse("marketplace:login"), resp["Location"])

    def test_price_change_requires_permission(self):
        url = reverse("marketplace:product_update", args=[self.product.id])
        payload = {
            "store": self.store.id,
            "name": "Widget",
            "description": "",
            "price": "12.00",
            "stock": 10,
            "image_url": "",
            "is_active": "on",
        }

        # Vendors group carries the permission
        resp = self.login("alice_vendor").post(url, payload)
        self.assertEqual(resp.status_code, 302)
        self.product.refresh_from_db()
        self.assertEqual(self.product.price, Decimal("12.00"))

        # Without it the price stays put
        self.group_vendors.permissions.remove(self.perm_change_price)
        payload["price"] = "99.00"
        resp = self.login("alice_vendor").post(url, payload)
        self.assertEqual(resp.status_code, 200)
        self.product.refresh_from_db()
        self.assertEqual(self.product.price, Decimal("12.00"))


# ---------------- Vendor CRUD ----------------

class VendorCrudTests(BaseSetup):
    def test_store_create_starts_pending(self):
        c = self.login("alice_vendor")
        resp = c.post(reverse("marketplace:store_create"), {"name": "Second", "description": ""})
        self.assertEqual(resp.status_code, 302)
        store = Store.objects.get(name="Second")
        self.assertEqual(store.vendor, self.vendor_user)
        self.assertEqual(store.status, Store.STATUS_PENDING)

    def test_product_create_in_own_store(self):
        c = self.login("alice_vendor")
        resp = c.post(
            reverse("marketplace:product_create"),
            {"store": self.store.id, "name": "Thing", "price": "3.00", "stock": 4, "is_active": "on"},
        )
        self.assertEqual(resp.status_code, 302)
        self.assertTrue(Product.objects.filter(name="Thing", store=self.store).exists())

    def test_product_cannot_move_between_own_stores(self):
        second = Store.objects.create(
            vendor=self.vendor_user, name="Alice Outlet", status=Store.STATUS_APPROVED
        )
        resp = self.login("alice_vendor").post(
            reverse("marketplace:product_update", args=[self.product.id]),
            {
                "store": second.id,
                "name": "Widget",
                "price": "10.00",
                "stock": 10,
                "is_active": "on",
            },
        )
        self.assertEqual(resp.status_code, 200)
        self.product.refresh_from_db()
        self.assertEqual(self.product.store_id, self.store.id)

    def test_cannot_edit_other_vendor_store(self):
        other = User.objects.create_user("carol_vendor", password="pass123")
        other.groups.add(self.group_vendors)
        resp = self.login("carol_vendor").get(reverse("marketplace:store_update", args=[self.store.id]))
        self.assertEqual(resp.status_code, 404)


# ---------------- Catalog Pages ----------------

class CatalogTests(BaseSetup):
    def test_store_list_page(self):
        Store.objects.create(vendor=self.vendor_user, name="Hidden Shop")
        resp = Client().get(reverse("marketplace:catalog_store_list"))
        self.assertContains(resp, "Alice Shop", status_code=200)
        self.assertNotContains(resp, "Hidden Shop")

    def test_product_list_page(self):
        url = reverse("marketplace:catalog_product_list", args=[self.store.id])
        resp = Client().get(url)
        self.assertContains(resp, "Widget", status_code=200)

        resp = Client().get(url, {"q": "gadg"})
        self.assertNotContains(resp, "Widget")
        self.assertContains(resp, "Gadget")

    def test_product_list_category_filter(self):
        gadgets = Category.objects.create(name="Gadgets", slug="gadgets")
        phones = Category.objects.create(name="Phones", slug="phones", parent=gadgets)
        Product.objects.filter(pk=self.product2.pk).update(category=phones)

        url = reverse("marketplace:catalog_product_list", args=[self.store.id])
        resp = Client().get(url, {"category": "gadgets"})
        self.assertEqual(list(resp.context["products"]), [self.product2])
        self.assertEqual(list(resp.context["categories"]), [gadgets])

        resp = Client().get(url, {"category": "missing"})
        self.assertEqual(list(resp.context["products"]), [])

    def test_pending_store_not_browsable(self):
        pending = Store.objects.create(vendor=self.vendor_user, name="Soon")
        resp = Client().get(reverse("marketplace:catalog_product_list", args=[pending.id]))
        self.assertEqual(resp.status_code, 404)

    def test_product_detail_page(self):
        url = reverse("marketplace:catalog_product_detail", args=[self.product.id])
        resp = Client().get(url)
        self.assertContains(resp, "Widget", status_code=200)
        self.assertFalse(resp.context["is_favorite"])
        self.assertEqual(resp.context["pickers"], [])

    def test_product_detail_resolves_variant(self):
        shirt = Product.objects.create(store=self.store, name="Shirt", price=Decimal("15.00"))
        create_variant_types(shirt, [
            {"name": "Color", "options": [{"value": "Red"}, {"value": "Blue"}]},
            {"name": "Size", "options": [{"value": "M"}]},
        ])
        red = create_variant(shirt, options={"Color": "Red", "Size": "M"}, stock=2)
        create_variant(shirt, options={"Color": "Blue", "Size": "M"}, stock=0)

        url = reverse("marketplace:catalog_product_detail", args=[shirt.id])
        resp = Client().get(url, {"Color": "Red", "Size": "M"})
        self.assertEqual(resp.context["variant"], red)
        colors = resp.context["pickers"][0]
        self.assertEqual(colors["available"], ["Red"])
        self.assertEqual(colors["selected"], "Red")


# ---------------- Cart ----------------

class CartTests(BaseSetup):
    def test_add_update_remove_clear_cart(self):
        c = self.login("bob_buyer")
        item_id = str(self.product.id)

        # Add
        self.add_to_cart(c, self.product.id, 2)
        resp = c.get(reverse("marketplace:view_cart"))
        self.assertEqual(resp.status_code, 200)
        self.assertIn("items", resp.context)
        self.assertEqual(len(resp.context["items"]), 1)
        self.assertEqual(resp.context["items"][0].quantity, 2)

        # Update qty to 3
        c.post(reverse("marketplace:update_cart_qty", args=[item_id]), {"qty": 3})
        resp = c.get(reverse("marketplace:view_cart"))
        self.assertEqual(resp.context["items"][0].quantity, 3)
        self.assertEqual(resp.context["total"], Decimal("30.00"))

        # Remove
        c.post(reverse("marketplace:remove_from_cart", args=[item_id]))
        resp = c.get(reverse("marketplace:view_cart"))
        self.assertEqual(resp.context["items"], [])

        # Clear cart (no error if already empty)
        c.post(reverse("marketplace:clear_cart"))
        resp = c.get(reverse("marketplace:view_cart"))
        self.assertEqual(resp.context["items"], [])

    def test_anonymous_cart_lives_in_session(self):
        c = Client()
        self.add_to_cart(c, self.product.id, 1)
        self.assertEqual(c.session[CART_SESSION_KEY][0]["product_id"], self.product.id)

    def test_quantity_capped_at_stock(self):
        c = Client()
        self.add_to_cart(c, self.product2.id, 50)
        resp = c.get(reverse("marketplace:view_cart"))
        self.assertEqual(resp.context["items"][0].quantity, 5)

    def test_variant_product_requires_option(self):
        create_variant(self.product2, options={"Size": "L"}, stock=1)
        c = Client()
        resp = self.add_to_cart(c, self.product2.id, 1)
        self.assertRedirects(
            resp, reverse("marketplace:catalog_product_detail", args=[self.product2.id]),
            fetch_redirect_response=False,
        )
        self.assertNotIn(CART_SESSION_KEY, c.session)

    def test_out_of_stock_not_added(self):
        Product.objects.filter(pk=self.product.pk).update(stock=0)
        c = Client()
        self.add_to_cart(c, self.product.id, 1)
        resp = c.get(reverse("marketplace:view_cart"))
        self.assertEqual(resp.context["items"], [])


# ---------------- Favorites ----------------

class FavoriteTests(BaseSetup):
    def test_anonymous_toggle_then_merge_on_login(self):
        c = Client()
        c.post(reverse("marketplace:toggle_favorite", args=[self.product.id]))
        self.assertEqual(c.session[FAVORITES_SESSION_KEY], [self.product.id])

        resp = c.get(reverse("marketplace:favorites"))
        self.assertContains(resp, "Widget")

        c.post(reverse("marketplace:login"), {"username": "bob_buyer", "password": "pass123"})
        self.assertTrue(Favorite.objects.filter(user=self.buyer_user, product=self.product).exists())

    def test_logged_in_toggle_uses_rows(self):
        c = self.login("bob_buyer")
        c.post(reverse("marketplace:toggle_favorite", args=[self.product.id]))
        self.assertTrue(Favorite.objects.filter(user=self.buyer_user, product=self.product).exists())
        c.post(reverse("marketplace:toggle_favorite", args=[self.product.id]))
        self.assertFalse(Favorite.objects.filter(user=self.buyer_user).exists())


# ---------------- Checkout / Orders ----------------

class CheckoutTests(BaseSetup):
    @override_settings(EMAIL_BACKEND="django.core.mail.backends.locmem.EmailBackend")
    def test_checkout_and_place_order(self):
        c = self.login("bob_buyer")

        # Add two products
        self.add_to_cart(c, self.product.id, 2)   # 2 * 10.00 = 20.00
        self.add_to_cart(c, self.product2.id, 1)  # 1 * 25.50 = 25.50

        # Checkout page shows totals
        resp = c.get(reverse("marketplace:checkout"))
        self.assertEqual(resp.status_code, 200)
        self.assertIn("total", resp.context)
        self.assertEqual(resp.context["total"], Decimal("45.50"))

        # Place order
        resp = c.post(reverse("marketplace:place_order"), {"shipping_city": "Lima"}, follow=True)
        self.assertEqual(resp.status_code, 200)

        # Order created
        self.assertEqual(Order.objects.count(), 1)
        order = Order.objects.first()
        self.assertEqual(order.total, Decimal("45.50"))
        self.assertEqual(order.items.count(), 2)
        self.assertEqual(order.shipping_city, "Lima")

        # Stock decremented
        self.product.refresh_from_db()
        self.product2.refresh_from_db()
        self.assertEqual(self.product.stock, 8)
        self.assertEqual(self.product2.stock, 4)

        # Cart cleared
        resp = c.get(reverse("marketplace:view_cart"))
        self.assertEqual(resp.context["items"], [])

        # Email sent
        self.assertEqual(len(mail.outbox), 1)
        self.assertIn(f"Order #{order.id}", mail.outbox[0].subject)

        # Listed under my orders
        resp = c.get(reverse("marketplace:my_orders"))
        self.assertEqual(list(resp.context["orders"]), [order])

    def test_place_order_with_shipping_method(self):
        zone = ShippingZone.objects.create(name="Center", provinces=["Córdoba"])
        method = ShippingMethod.objects.create(name="Courier", estimated_days_min=2, estimated_days_max=4)
        ShippingRate.objects.create(zone=zone, method=method, base_price=Decimal("5.00"))

        c = self.login("bob_buyer")
        self.add_to_cart(c, self.product.id, 1)
        c.post(
            reverse("marketplace:place_order"),
            {"shipping_province": "Córdoba", "shipping_method": method.id},
        )

        order = Order.objects.get()
        self.assertEqual(order.shipping_method, method)
        self.assertEqual(order.shipping_cost, Decimal("5.00"))
        self.assertEqual(order.total, Decimal("15.00"))

    def test_unserved_province_keeps_cart(self):
        method = ShippingMethod.objects.create(name="Courier")
        c = self.login("bob_buyer")
        self.add_to_cart(c, self.product.id, 1)
        resp = c.post(
            reverse("marketplace:place_order"),
            {"shipping_province": "Nowhere", "shipping_method": method.id},
        )
        self.assertRedirects(resp, reverse("marketplace:checkout"), fetch_redirect_response=False)
        self.assertFalse(Order.objects.exists())

    def test_empty_cart_checkout_redirects(self):
        c = self.login("bob_buyer")
        resp = c.get(reverse("marketplace:checkout"))
        self.assertRedirects(resp, reverse("marketplace:view_cart"))

    def test_stock_shortage_keeps_cart(self):
        c = self.login("bob_buyer")
        self.add_to_cart(c, self.product.id, 3)
        Product.objects.filter(pk=self.product.pk).update(stock=1)

        resp = c.post(reverse("marketplace:place_order"))
        self.assertRedirects(resp, reverse("marketplace:checkout"), fetch_redirect_response=False)
        self.assertFalse(Order.objects.exists())
        self.assertEqual(len(c.session[CART_SESSION_KEY]), 1)

    def test_order_success_is_private(self):
        order = Order.objects.create(user=self.buyer_user, total=Decimal("1.00"))
        resp = self.login("alice_vendor").get(reverse("marketplace:order_success", args=[order.id]))
        self.assertEqual(resp.status_code, 404)


# ---------------- Reviews ----------------

class ReviewTests(BaseSetup):
    def test_add_review_marks_verified_if_purchased(self):
        # Create a past order for the buyer with the product
        order = Order.objects.create(user=self.buyer_user, total=Decimal("10.00"))
        OrderItem.objects.create(
            order=order, product=self.product, seller=self.vendor_user,
            product_name="Widget", qty=1, price_snapshot=Decimal("10.00"),
        )

        c = self.login("bob_buyer")
        url = reverse("marketplace:add_review", args=[self.product.id])
        resp = c.post(url, {"rating": 5, "comment": "Great!"})
        self.assertEqual(resp.status_code, 302)

        r = Review.objects.get(user=self.buyer_user, product=self.product)
        self.assertTrue(r.verified)
        self.assertEqual(r.rating, 5)
        self.assertEqual(r.comment, "Great!")

    def test_duplicate_review_blocked(self):
        Review.objects.create(user=self.buyer_user, product=self.product, rating=4, comment="", verified=False)

        c = self.login("bob_buyer")
        url = reverse("marketplace:add_review", args=[self.product.id])
        resp = c.post(url, {"rating": 5, "comment": "Another"})
        self.assertEqual(resp.status_code, 302)

        # Still only one review for that user+product
        self.assertEqual(Review.objects.filter(user=self.buyer_user, product=self.product).count(), 1)

    def test_vendor_cannot_review_own_product(self):
        c = self.login("alice_vendor")
        c.post(reverse("marketplace:add_review", args=[self.product.id]), {"rating": 5})
        self.assertFalse(Review.objects.exists())
