from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict

from rest_framework import serializers
from rest_framework.exceptions import PermissionDenied

from marketplace.favorites import list_preview_images
from marketplace.models import (
    Banner,
    Category,
    FavoriteList,
    Order,
    OrderItem,
    Product,
    ProductVariant,
    PushToken,
    Review,
    ShippingMethod,
    Store,
    VariantImage,
    VariantOption,
    VariantType,
    WithdrawalRequest,
)
from marketplace.signals import GROUP_VENDORS

PRICE_PERM = "marketplace.can_change_product_price"


class ProductSerializer(serializers.ModelSerializer):
    """
    Serializer for Product.
    - Validates non-negative price/stock.
    - Only Vendors can write; must own the store.
    - Forbids changing store on update.
    - Price update requires 'marketplace.can_change_product_price'.
    """

    store_name = serializers.ReadOnlyField(source="store.name")
    vendor_username = serializers.ReadOnlyField(source="store.vendor.username")

    class Meta:
        model = Product
        fields = "__all__"
        read_only_fields = ("created_at",)

    # ---- field-level ----
    def validate_price(self, value: Decimal) -> Decimal:
        if value is None:
            raise serializers.ValidationError("Price is required.")
        if value < 0:
            raise serializers.ValidationError("Price must be ≥ 0.")
        return value

    def validate_stock(self, value: int) -> int:
        if value is None:
            raise serializers.ValidationError("Stock is required.")
        if value < 0:
            raise serializers.ValidationError("Stock must be ≥ 0.")
        return value

    # ---- object-level ----
    def validate(self, attrs: Dict[str, Any]) -> Dict[str, Any]:
        request = self.context.get("request")
        if request and request.method in ("POST", "PUT", "PATCH"):
            user = request.user
            if not user or not user.is_authenticated:
                raise serializers.ValidationError("Authentication required.")

            if not user.groups.filter(name=GROUP_VENDORS).exists():
                raise serializers.ValidationError("Only vendor users can modify products.")

            if self.instance is not None and "store" in attrs:
                incoming_store: Store = attrs["store"]
                if incoming_store.pk != self.instance.store_id:
                    raise serializers.ValidationError(
                        {"store": "Changing the store of an existing product is not allowed."}
                    )

            store: Store | None = attrs.get("store") or getattr(self.instance, "store", None)
            if store is None:
                raise serializers.ValidationError({"store": "This field is required."})

            if store.vendor_id != user.id:
                raise serializers.ValidationError("You do not own this store.")

            # Friendly extra guard (decisive check also in `update`)
            if self.instance is not None and "price" in attrs:
                if not user.has_perm(PRICE_PERM):
                    raise PermissionDenied(f"Missing '{PRICE_PERM}'.")

        return attrs

    # ---- decisive guard for updates ----
    def update(self, instance: Product, validated_data: Dict[str, Any]) -> Product:
        request = self.context.get("request")
        user = getattr(request, "user", None)
        if "price" in validated_data:
            if not user or not user.has_perm(PRICE_PERM):
                raise PermissionDenied(f"Missing '{PRICE_PERM}'.")
        return super().update(instance, validated_data)


class StoreSerializer(serializers.ModelSerializer):
    vendor_username = serializers.ReadOnlyField(source="vendor.username")

    class Meta:
        model = Store
        fields = "__all__"
        read_only_fields = ("vendor", "status", "is_official", "rejection_reason", "created_at", "reviewed_at")

    def validate_name(self, value: str) -> str:
        if not value or not value.strip():
            raise serializers.ValidationError("Name cannot be blank.")
        return value.strip()

    def create(self, validated_data: Dict[str, Any]) -> Store:
        request = self.context.get("request")
        user = getattr(request, "user", None)
        if user is None or not user.is_authenticated:
            raise serializers.ValidationError("Authentication required.")
        if not user.groups.filter(name=GROUP_VENDORS).exists():
            raise serializers.ValidationError("Only vendor users can create stores.")
        validated_data["vendor"] = user
        return super().create(validated_data)


class ReviewSerializer(serializers.ModelSerializer):
    user_username = serializers.ReadOnlyField(source="user.username")
    product_name = serializers.ReadOnlyField(source="product.name")

    class Meta:
        model = Review
        fields = [
            "id",
            "product",
            "product_name",
            "user",
            "user_username",
            "rating",
            "comment",
            "verified",
            "created_at",
        ]
        read_only_fields = ("product", "user", "verified", "created_at")

    def validate_rating(self, value: int) -> int:
        if value is None:
            raise serializers.ValidationError("Rating is required.")
        if not (1 <= value <= 5):
            raise serializers.ValidationError("Rating must be an integer between 1 and 5.")
        return value


# ---- Variants ---------------------------------------------------------------------

class VariantOptionSerializer(serializers.ModelSerializer):
    class Meta:
        model = VariantOption
        fields = ["id", "value", "color_hex", "display_order"]


class VariantTypeSerializer(serializers.ModelSerializer):
    options = VariantOptionSerializer(many=True, read_only=True)

    class Meta:
        model = VariantType
        fields = ["id", "name", "display_order", "options"]


class VariantImageSerializer(serializers.ModelSerializer):
    class Meta:
        model = VariantImage
        fields = ["id", "image_url", "display_order", "is_primary"]


class ProductVariantSerializer(serializers.ModelSerializer):
    images = VariantImageSerializer(many=True, read_only=True)

    class Meta:
        model = ProductVariant
        fields = ["id", "product", "sku", "price", "compare_at_price", "stock", "is_active", "options", "images"]
        read_only_fields = ("product",)


class VariantTypeInputSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=50)
    options = serializers.ListField(child=serializers.DictField(), allow_empty=False)

    def validate_options(self, value):
        for opt in value:
            if not str(opt.get("value", "")).strip():
                raise serializers.ValidationError("Each option needs a value.")
        return value


class VariantCreateSerializer(serializers.Serializer):
    options = serializers.DictField(child=serializers.CharField(), allow_empty=False)
    stock = serializers.IntegerField(min_value=0)
    sku = serializers.CharField(max_length=64, required=False, allow_blank=True, default="")
    price = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True, min_value=Decimal("0.00"))
    compare_at_price = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, allow_null=True)
    images = serializers.ListField(child=serializers.URLField(), required=False, default=list)


class VariantStockSerializer(serializers.Serializer):
    stock = serializers.IntegerField(min_value=0)


# ---- Back-office content -----------------------------------------------------------

class BannerSerializer(serializers.ModelSerializer):
    class Meta:
        model = Banner
        fields = ["id", "title", "image_url", "link_url", "position"]


# ---- Cart / Favorites ----------------------------------------------------------------

class CartItemSerializer(serializers.Serializer):
    id = serializers.CharField()
    product_id = serializers.IntegerField()
    variant_id = serializers.IntegerField(allow_null=True)
    name = serializers.CharField()
    price = serializers.DecimalField(max_digits=10, decimal_places=2)
    quantity = serializers.IntegerField()
    stock = serializers.IntegerField()
    seller_id = serializers.IntegerField(allow_null=True)
    image_url = serializers.CharField(allow_blank=True)
    subtotal = serializers.DecimalField(max_digits=12, decimal_places=2)


class CartAddSerializer(serializers.Serializer):
    product_id = serializers.IntegerField()
    variant_id = serializers.IntegerField(required=False, allow_null=True)
    quantity = serializers.IntegerField(min_value=1, default=1)


class CartQuantitySerializer(serializers.Serializer):
    quantity = serializers.IntegerField()


class FavoriteListProductSerializer(serializers.Serializer):
    product_id = serializers.IntegerField()


class FavoriteListSerializer(serializers.ModelSerializer):
    product_count = serializers.SerializerMethodField()
    preview_images = serializers.SerializerMethodField()

    class Meta:
        model = FavoriteList
        fields = ["id", "name", "created_at", "updated_at", "product_count", "preview_images"]
        read_only_fields = ("created_at", "updated_at")

    def validate_name(self, value: str) -> str:
        if not value or not value.strip():
            raise serializers.ValidationError("Name cannot be blank.")
        return value.strip()

    def get_product_count(self, obj: FavoriteList) -> int:
        return obj.items.count()

    def get_preview_images(self, obj: FavoriteList):
        return list_preview_images(obj)


# ---- Categories / Shipping -------------------------------------------------------------

class CategorySerializer(serializers.ModelSerializer):
    children = serializers.SerializerMethodField()

    class Meta:
        model = Category
        fields = ["id", "name", "slug", "icon_url", "parent", "children"]

    def get_children(self, obj: Category):
        return [
            {"id": c.id, "name": c.name, "slug": c.slug}
            for c in obj.children.all()
            if c.is_active
        ]


class ShippingMethodSerializer(serializers.ModelSerializer):
    class Meta:
        model = ShippingMethod
        fields = ["id", "name", "description", "carrier", "estimated_days_min", "estimated_days_max"]


class ShippingQuerySerializer(serializers.Serializer):
    province = serializers.CharField(max_length=120)
    weight_kg = serializers.DecimalField(max_digits=8, decimal_places=2, min_value=Decimal("0.01"), default=Decimal("1"))


# ---- Orders / Checkout -----------------------------------------------------------------


class OrderItemSerializer(serializers.ModelSerializer):
    line_total = serializers.SerializerMethodField()

    class Meta:
        model = OrderItem
        fields = ["id", "product", "variant", "product_name", "seller", "qty", "price_snapshot", "line_total"]

    def get_line_total(self, obj: OrderItem) -> str:
        return str(obj.line_total())


class OrderSerializer(serializers.ModelSerializer):
    items = OrderItemSerializer(many=True, read_only=True)
    coupon_code = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            "id",
            "user",
            "status",
            "subtotal",
            "discount",
            "shipping_cost",
            "total",
            "coupon_code",
            "shipping_method",
            "shipping_name",
            "shipping_phone",
            "shipping_address",
            "shipping_city",
            "shipping_province",
            "shipping_postal_code",
            "buyer_notes",
            "tracking_number",
            "created_at",
            "updated_at",
            "items",
        ]

    def get_coupon_code(self, obj: Order):
        return obj.coupon.code if obj.coupon_id else None


class CheckoutSerializer(serializers.Serializer):
    coupon_code = serializers.CharField(max_length=40, required=False, allow_blank=True)
    shipping_name = serializers.CharField(max_length=120, required=False, allow_blank=True)
    shipping_phone = serializers.CharField(max_length=40, required=False, allow_blank=True)
    shipping_address = serializers.CharField(max_length=255, required=False, allow_blank=True)
    shipping_city = serializers.CharField(max_length=120, required=False, allow_blank=True)
    shipping_province = serializers.CharField(max_length=120, required=False, allow_blank=True)
    shipping_postal_code = serializers.CharField(max_length=20, required=False, allow_blank=True)
    shipping_method = serializers.PrimaryKeyRelatedField(
        queryset=ShippingMethod.objects.filter(is_active=True), required=False, allow_null=True, default=None
    )
    buyer_notes = serializers.CharField(required=False, allow_blank=True)


class CouponValidateSerializer(serializers.Serializer):
    code = serializers.CharField(max_length=40)


class OrderStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Order.STATUS_CHOICES)
    tracking_number = serializers.CharField(max_length=80, required=False, allow_blank=True, default="")


# ---- Wallet / Notifications ---------------------------------------------------------------

class WithdrawalSerializer(serializers.ModelSerializer):
    class Meta:
        model = WithdrawalRequest
        fields = ["id", "amount", "status", "rejection_reason", "transaction_reference", "created_at", "processed_at"]
        read_only_fields = ("status", "rejection_reason", "transaction_reference", "created_at", "processed_at")

    def validate_amount(self, value: Decimal) -> Decimal:
        if value <= 0:
            raise serializers.ValidationError("Amount must be positive.")
        return value


class PushTokenSerializer(serializers.ModelSerializer):
    class Meta:
        model = PushToken
        fields = ["id", "token", "platform", "is_active", "created_at"]
        read_only_fields = ("is_active", "created_at")
        # Re-registration of a known token is handled by the view.
        extra_kwargs = {"token": {"validators": []}}
