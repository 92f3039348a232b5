from decimal import Decimal

from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group, Permission
from django.test import TestCase
from rest_framework.test import APIRequestFactory
from rest_framework import serializers
from rest_framework.exceptions import PermissionDenied

from marketplace.models import Coupon, FavoriteList, FavoriteListItem, Order, Product, Store
from marketplace.signals import GROUP_BUYERS, GROUP_VENDORS
from api.serializers import (
    CartAddSerializer,
    FavoriteListSerializer,
    OrderSerializer,
    ProductSerializer,
    ReviewSerializer,
    StoreSerializer,
    WithdrawalSerializer,
)

User = get_user_model()


def ensure_group(name: str) -> Group:
    grp, _ = Group.objects.get_or_create(name=name)
    return grp


class SerializerTests(TestCase):
    def setUp(self):
        self.factory = APIRequestFactory()
        self.vendor = User.objects.create_user("vendor1", password="x")
        self.other_vendor = User.objects.create_user("vendor2", password="x")
        self.buyer = User.objects.create_user("buyer1", password="x")

        ensure_group(GROUP_VENDORS).user_set.add(self.vendor, self.other_vendor)
        ensure_group(GROUP_BUYERS).user_set.add(self.buyer)

        self.store = Store.objects.create(name="Acme", description="", vendor=self.vendor)
        self.other_store = Store.objects.create(name="Other", description="", vendor=self.other_vendor)

        self.product = Product.objects.create(
            store=self.store,
            name="Widget",
            price=Decimal("12.50"),
            stock=3,
        )

    def test_product_serializer_read_fields(self):
        request = self.factory.get("/api/products/")
        ser = ProductSerializer(instance=self.product, context={"request": request})
        data = ser.data
        self.assertEqual(data["name"], "Widget")
        self.assertEqual(data["store"], self.store.id)
        self.assertEqual(data["store_name"], "Acme")
        self.assertEqual(data["vendor_username"], self.vendor.username)

    def test_product_create_requires_vendor_group_and_store_ownership(self):
        # Authenticated but not vendor → rejected
        request = self.factory.post("/api/products/")
        request.user = self.buyer
        payload = {
            "store": self.store.id,
            "name": "New P",
            "price": "10.00",
            "stock": 1,
        }
        ser = ProductSerializer(data=payload, context={"request": request})
        self.assertFalse(ser.is_valid())
        self.assertIn("Only vendor users", str(ser.errors))

        # Vendor but wrong store owner → rejected
        request.user = self.other_vendor
        ser = ProductSerializer(data=payload, context={"request": request})
        self.assertFalse(ser.is_valid())
        self.assertIn("do not own this store", str(ser.errors))

        # Correct vendor + owns store → allowed
        request.user = self.vendor
        ser = ProductSerializer(data=payload, context={"request": request})
        self.assertTrue(ser.is_valid(), ser.errors)
        obj = ser.save()
        self.assertEqual(obj.store_id, self.store.id)
        self.assertEqual(obj.name, "New P")

    def test_product_update_respects_store_in_instance(self):
        # Move product to other store should be blocked by serializer validate()
        request = self.factory.patch("/api/products/1/")
        request.user = self.other_vendor  # not owner of self.product.store
        ser = ProductSerializer(
            instance=self.product,
            data={"name": "Renamed", "store": self.other_store.id},
            partial=True,
            context={"request": request},
        )
        self.assertFalse(ser.is_valid())
        self.assertIn("Changing the store of an existing product is not allowed", str(ser.errors))

    def test_store_create_assigns_vendor_from_request(self):
        request = self.factory.post("/api/stores/")
        request.user = self.vendor  # in Vendors
        payload = {"name": "New Store", "description": "Desc"}
        ser = StoreSerializer(data=payload, context={"request": request})
        self.assertTrue(ser.is_valid(), ser.errors)
        obj = ser.save()
        self.assertEqual(obj.vendor, self.vendor)

    def test_store_create_rejects_non_vendor(self):
        request = self.factory.post("/api/stores/")
        request.user = self.buyer  # not in Vendors
        payload = {"name": "New Store", "description": "Desc"}
        ser = StoreSerializer(data=payload, context={"request": request})
        self.assertTrue(ser.is_valid(), ser.errors)
        with self.assertRaisesMessage(serializers.ValidationError, "Only vendor users"):
            ser.save()

    def test_review_serializer_rating_validation(self):
        request = self.factory.post("/api/products/1/reviews/")
        request.user = self.buyer
        ser = ReviewSerializer(data={"rating": 6, "comment": "nope"}, context={"request": request})
        self.assertFalse(ser.is_valid())
        self.assertIn("less than or equal to 5", str(ser.errors))

    def test_store_status_is_read_only(self):
        request = self.factory.post("/api/stores/")
        request.user = self.vendor
        ser = StoreSerializer(
            data={"name": "Sneaky", "status": Store.STATUS_APPROVED, "is_official": True},
            context={"request": request},
        )
        self.assertTrue(ser.is_valid(), ser.errors)
        obj = ser.save()
        self.assertEqual(obj.status, Store.STATUS_PENDING)
        self.assertFalse(obj.is_official)

    def test_product_price_update_requires_permission(self):
        request = self.factory.patch(f"/api/products/{self.product.pk}/")
        request.user = self.vendor
        ser = ProductSerializer(
            instance=self.product, data={"price": "1.00"}, partial=True, context={"request": request}
        )
        with self.assertRaises(PermissionDenied):
            ser.is_valid()

        perm = Permission.objects.get(
            codename="can_change_product_price", content_type__app_label="marketplace"
        )
        self.vendor.user_permissions.add(perm)
        request.user = User.objects.get(pk=self.vendor.pk)  # fresh perm cache
        ser = ProductSerializer(
            instance=self.product, data={"price": "1.00"}, partial=True, context={"request": request}
        )
        self.assertTrue(ser.is_valid(), ser.errors)
        self.assertEqual(ser.save().price, Decimal("1.00"))

    def test_cart_add_defaults_quantity_to_one(self):
        ser = CartAddSerializer(data={"product_id": self.product.pk})
        self.assertTrue(ser.is_valid(), ser.errors)
        self.assertEqual(ser.validated_data["quantity"], 1)
        self.assertFalse(CartAddSerializer(data={"product_id": 1, "quantity": 0}).is_valid())

    def test_order_serializer_exposes_coupon_code(self):
        coupon = Coupon.objects.create(code="SAVE10", name="Save", discount_value=Decimal("10"))
        order = Order.objects.create(user=self.buyer, coupon=coupon, total=Decimal("5.00"))
        self.assertEqual(OrderSerializer(order).data["coupon_code"], "SAVE10")
        plain = Order.objects.create(user=self.buyer)
        self.assertIsNone(OrderSerializer(plain).data["coupon_code"])

    def test_favorite_list_serializer_counts_and_previews(self):
        self.product.image_url = "https://img.example.com/w.png"
        self.product.save()
        wishlist = FavoriteList.objects.create(user=self.buyer, name="Gifts")
        FavoriteListItem.objects.create(favorite_list=wishlist, product=self.product)
        data = FavoriteListSerializer(wishlist).data
        self.assertEqual(data["product_count"], 1)
        self.assertEqual(data["preview_images"], ["https://img.example.com/w.png"])

    def test_withdrawal_amount_must_be_positive(self):
        ser = WithdrawalSerializer(data={"amount": "0.00"})
        self.assertFalse(ser.is_valid())
        self.assertIn("Amount must be positive", str(ser.errors))
