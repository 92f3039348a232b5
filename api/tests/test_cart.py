from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import SimpleTestCase, TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from marketplace.cart import CART_SESSION_KEY, Cart, CartItem, OutOfStock, line_key
from marketplace.models import Product, Store
from marketplace.variants import create_variant

User = get_user_model()


def make_item(product_id=1, price="10.00", quantity=1, stock=5, variant_id=None):
    return CartItem(
        id=line_key(product_id, variant_id),
        product_id=product_id,
        variant_id=variant_id,
        name=f"Product {product_id}",
        price=Decimal(price),
        quantity=quantity,
        stock=stock,
    )


class CartLogicTests(SimpleTestCase):
    def setUp(self):
        self.storage = {}
        self.cart = Cart(self.storage)

    def test_line_key(self):
        self.assertEqual(line_key(7), "7")
        self.assertEqual(line_key(7, 3), "7:3")

    def test_add_new_item_and_totals(self):
        self.cart.add_item(make_item(1, "10.00", quantity=2))
        self.cart.add_item(make_item(2, "2.50", quantity=3))
        self.assertEqual(len(self.cart), 2)
        self.assertEqual(self.cart.total_items, 5)
        self.assertEqual(self.cart.total_price, Decimal("27.50"))

    def test_add_existing_item_increments_and_clamps(self):
        self.cart.add_item(make_item(1, quantity=3, stock=5))
        line = self.cart.add_item(make_item(1, quantity=4, stock=5))
        self.assertEqual(len(self.cart), 1)
        self.assertEqual(line.quantity, 5)

    def test_add_clamps_new_line_to_stock(self):
        line = self.cart.add_item(make_item(1, quantity=10, stock=4))
        self.assertEqual(line.quantity, 4)

    def test_add_out_of_stock_raises(self):
        with self.assertRaises(OutOfStock):
            self.cart.add_item(make_item(1, stock=0))
        self.assertEqual(len(self.cart), 0)

    def test_add_refreshes_stock_on_existing_line(self):
        self.cart.add_item(make_item(1, quantity=4, stock=10))
        line = self.cart.add_item(make_item(1, quantity=1, stock=3))
        self.assertEqual(line.stock, 3)
        self.assertEqual(line.quantity, 3)

    def test_variants_are_separate_lines(self):
        self.cart.add_item(make_item(1, variant_id=10))
        self.cart.add_item(make_item(1, variant_id=11))
        self.assertEqual([i.id for i in self.cart], ["1:10", "1:11"])

    def test_update_quantity(self):
        self.cart.add_item(make_item(1, quantity=1, stock=5))
        self.assertEqual(self.cart.update_quantity("1", 3).quantity, 3)
        self.assertEqual(self.cart.update_quantity("1", 99).quantity, 5)
        self.assertIsNone(self.cart.update_quantity("missing", 2))

    def test_update_quantity_zero_removes(self):
        self.cart.add_item(make_item(1))
        self.assertIsNone(self.cart.update_quantity("1", 0))
        self.assertFalse(self.cart)

    def test_remove_and_clear(self):
        self.cart.add_item(make_item(1))
        self.cart.add_item(make_item(2))
        self.assertTrue(self.cart.remove_item("1"))
        self.assertFalse(self.cart.remove_item("1"))
        self.cart.clear()
        self.assertEqual(self.cart.total_price, Decimal("0.00"))
        self.assertEqual(self.storage[CART_SESSION_KEY], [])

    def test_persists_and_reloads(self):
        self.cart.add_item(make_item(1, "3.33", quantity=2))
        self.assertEqual(self.storage[CART_SESSION_KEY][0]["price"], "3.33")

        reloaded = Cart(self.storage)
        self.assertEqual(reloaded.get("1").price, Decimal("3.33"))
        self.assertEqual(reloaded.total_items, 2)

    def test_corrupt_storage_loads_empty(self):
        with self.assertLogs("marketplace.cart", level="WARNING"):
            cart = Cart({CART_SESSION_KEY: [{"id": "1", "price": "not-a-number"}]})
        self.assertEqual(len(cart), 0)


class CartAPITests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.vendor = User.objects.create_user("vendor1", password="x")
        self.store = Store.objects.create(name="Acme", vendor=self.vendor, status=Store.STATUS_APPROVED)
        self.prod = Product.objects.create(store=self.store, name="Widget", price=Decimal("10.00"), stock=3)
        self.shirt = Product.objects.create(store=self.store, name="Shirt", price=Decimal("15.00"), stock=0)
        self.red_m = create_variant(self.shirt, options={"Color": "Red", "Size": "M"}, stock=2, price=Decimal("17.00"))

        self.cart_url = reverse("api:cart")
        self.add_url = reverse("api:cart-item-create")
        self.item_url = lambda item_id: reverse("api:cart-item", args=[item_id])

    def test_anonymous_cart_round_trip(self):
        res = self.client.post(self.add_url, {"product_id": self.prod.pk, "quantity": 2}, format="json")
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        self.assertEqual(res.data["total_items"], 2)

        res = self.client.get(self.cart_url)
        self.assertEqual(res.data["total_price"], "20.00")
        self.assertEqual(res.data["items"][0]["id"], str(self.prod.pk))

    def test_add_clamps_to_stock(self):
        res = self.client.post(self.add_url, {"product_id": self.prod.pk, "quantity": 10}, format="json")
        self.assertEqual(res.data["items"][0]["quantity"], 3)

    def test_add_requires_variant_when_product_has_variants(self):
        res = self.client.post(self.add_url, {"product_id": self.shirt.pk}, format="json")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

        res = self.client.post(
            self.add_url, {"product_id": self.shirt.pk, "variant_id": self.red_m.pk}, format="json"
        )
        self.assertEqual(res.status_code, status.HTTP_201_CREATED)
        line = res.data["items"][0]
        self.assertEqual(line["id"], f"{self.shirt.pk}:{self.red_m.pk}")
        self.assertEqual(line["price"], "17.00")

    def test_add_out_of_stock_is_400(self):
        self.prod.stock = 0
        self.prod.save()
        res = self.client.post(self.add_url, {"product_id": self.prod.pk}, format="json")
        self.assertEqual(res.status_code, status.HTTP_400_BAD_REQUEST)

    def test_add_unknown_product_is_404(self):
        res = self.client.post(self.add_url, {"product_id": 9999}, format="json")
        self.assertEqual(res.status_code, status.HTTP_404_NOT_FOUND)

    def test_update_and_remove_item(self):
        self.client.post(self.add_url, {"product_id": self.prod.pk}, format="json")
        item = str(self.prod.pk)

        res = self.client.patch(self.item_url(item), {"quantity": 2}, format="json")
        self.assertEqual(res.data["total_items"], 2)

        res = self.client.patch(self.item_url(item), {"quantity": 0}, format="json")
        self.assertEqual(res.data["items"], [])

        res = self.client.delete(self.item_url(item))
        self.assertEqual(res.status_code, status.HTTP_404_NOT_FOUND)

    def test_clear_cart(self):
        self.client.post(self.add_url, {"product_id": self.prod.pk}, format="json")
        res = self.client.delete(self.cart_url)
        self.assertEqual(res.data["total_items"], 0)
