from __future__ import annotations

import logging

from django.contrib.contenttypes.models import ContentType
from django.db.models import Q
from django.shortcuts import get_object_or_404
from django.utils import timezone
from rest_framework import generics, status
from rest_framework.exceptions import NotFound, PermissionDenied, ValidationError
from rest_framework.permissions import IsAuthenticated, IsAuthenticatedOrReadOnly
from rest_framework.response import Response
from rest_framework.views import APIView

from marketplace import favorites as favorite_lists
from marketplace.cart import Cart, CartItem, OutOfStock
from marketplace.categories import filter_by_category, root_categories
from marketplace.coupons import validate_coupon
from marketplace.favorites import Favorites
from marketplace.models import Banner, FavoriteList, Order, Product, ProductVariant, Review, Store, WithdrawalRequest
from marketplace.notifications import register_push_token
from marketplace.orders import CheckoutError, place_order, seller_orders, update_order_status
from marketplace.shipping import format_shipping_cost, shipping_options
from marketplace.variants import (
    create_variant,
    create_variant_types,
    delete_product_variants,
    find_variant_by_options,
    get_available_options,
    product_variant_data,
    update_variant_stock,
)
from marketplace.wallet import (
    WithdrawalError,
    cancel_withdrawal,
    request_withdrawal,
    seller_balance,
    total_earnings,
    total_withdrawn,
)
from .permissions import IsBuyer, IsOwnerOrReadOnly, IsVendor, IsVendorAccount
from .serializers import (
    BannerSerializer,
    CartAddSerializer,
    CartItemSerializer,
    CartQuantitySerializer,
    CategorySerializer,
    CheckoutSerializer,
    CouponValidateSerializer,
    FavoriteListProductSerializer,
    FavoriteListSerializer,
    OrderSerializer,
    OrderStatusSerializer,
    ProductSerializer,
    ProductVariantSerializer,
    PushTokenSerializer,
    ReviewSerializer,
    ShippingMethodSerializer,
    ShippingQuerySerializer,
    StoreSerializer,
    VariantCreateSerializer,
    VariantStockSerializer,
    VariantTypeInputSerializer,
    VariantTypeSerializer,
    WithdrawalSerializer,
)

logger = logging.getLogger(__name__)

# ---------- helpers ----------

def _user_has_price_perm(user) -> bool:
    """
    True if the user (or any of their groups) has the custom
    'marketplace.can_change_product_price' permission for Product.
    """
    if not user or not getattr(user, "is_authenticated", False):
        return False
    if getattr(user, "is_superuser", False):
        return True
    ct = ContentType.objects.get_for_model(Product)
    return (
        user.user_permissions.filter(
            content_type=ct, codename="can_change_product_price"
        ).exists()
        or user.groups.filter(
            permissions__content_type=ct,
            permissions__codename="can_change_product_price",
        ).exists()
    )


def _visible_products(user):
    """Active products of approved stores, plus everything the user sells."""
    visible = Q(is_active=True, store__status=Store.STATUS_APPROVED)
    if getattr(user, "is_authenticated", False):
        visible |= Q(store__vendor=user)
    return Product.objects.filter(visible).select_related("store", "store__vendor")


def _own_product_or_403(user, product_id) -> Product:
    product = get_object_or_404(Product.objects.select_related("store"), pk=product_id)
    if product.store.vendor_id != user.id and not user.is_staff:
        raise PermissionDenied("You do not own this product.")
    return product


def _cart_payload(cart: Cart) -> dict:
    return {
        "items": CartItemSerializer(cart.items, many=True).data,
        "total_items": cart.total_items,
        "total_price": str(cart.total_price),
    }

# ---------- Products ----------

class ProductListCreateAPIView(generics.ListCreateAPIView):
    """GET: list public products (?q= search, ?category= slug or id) • POST: create (vendors only)."""
    serializer_class = ProductSerializer
    permission_classes = [IsAuthenticatedOrReadOnly, IsVendor]

    def get_queryset(self):
        qs = Product.objects.filter(
            is_active=True, store__status=Store.STATUS_APPROVED
        ).select_related("store", "store__vendor")
        q = self.request.query_params.get("q", "").strip()
        if q:
            qs = qs.filter(Q(name__icontains=q) | Q(description__icontains=q))
        qs = filter_by_category(qs, self.request.query_params.get("category"))
        return qs.order_by("name")

    def get_serializer_context(self):
        ctx = super().get_serializer_context()
        ctx["request"] = self.request
        return ctx

    def perform_create(self, serializer):
        product = serializer.save()
        logger.info("Product %s created in store %s", product.pk, product.store_id)


class ProductDetailAPIView(generics.RetrieveUpdateDestroyAPIView):
    """
    GET: public (owners also see their unpublished products)
    PATCH/PUT/DELETE: owner only (IsOwnerOrReadOnly)
    • Any write that includes/changes 'price' must have 'marketplace.can_change_product_price'.
    """
    serializer_class = ProductSerializer
    permission_classes = [IsOwnerOrReadOnly]

    def get_queryset(self):
        return _visible_products(self.request.user)

    # --- hard guard *before* serializer/save ---

    def patch(self, request, *args, **kwargs):
        if "price" in (request.data or {}):
            if not _user_has_price_perm(request.user):
                raise PermissionDenied("Missing 'marketplace.can_change_product_price'.")
        return super().patch(request, *args, **kwargs)

    def put(self, request, *args, **kwargs):
        if "price" in (request.data or {}):
            if not _user_has_price_perm(request.user):
                raise PermissionDenied("Missing 'marketplace.can_change_product_price'.")
        return super().put(request, *args, **kwargs)

    def perform_update(self, serializer):
        if "price" in getattr(serializer, "validated_data", {}):
            if not _user_has_price_perm(self.request.user):
                raise PermissionDenied("Missing 'marketplace.can_change_product_price'.")
        serializer.save()

# ---------- Stores ----------

class StoreListCreateAPIView(generics.ListCreateAPIView):
    """GET: approved stores • POST: vendors only (vendor set from request.user, starts pending)."""
    serializer_class = StoreSerializer
    permission_classes = [IsAuthenticatedOrReadOnly, IsVendor]

    def get_queryset(self):
        return Store.objects.filter(status=Store.STATUS_APPROVED).select_related("vendor").order_by("name")

    def get_serializer_context(self):
        ctx = super().get_serializer_context()
        ctx["request"] = self.request
        return ctx


class VendorStoreListAPIView(generics.ListAPIView):
    """GET: stores of a vendor; the vendor also sees pending/rejected ones."""
    serializer_class = StoreSerializer

    def get_queryset(self):
        vendor_id = self.kwargs["vendor_id"]
        qs = Store.objects.filter(vendor_id=vendor_id)
        if self.request.user.id != vendor_id:
            qs = qs.filter(status=Store.STATUS_APPROVED)
        return qs.order_by("name")


class StoreProductListAPIView(generics.ListAPIView):
    """GET: list products that belong to a specific store."""
    serializer_class = ProductSerializer

    def get_queryset(self):
        store_id = self.kwargs["store_id"]
        get_object_or_404(Store, pk=store_id)
        return _visible_products(self.request.user).filter(store_id=store_id)

# ---------- Reviews ----------

class ProductReviewListCreateAPIView(generics.ListCreateAPIView):
    """GET: list reviews (public) • POST: buyers only."""
    serializer_class = ReviewSerializer
    permission_classes = [IsAuthenticatedOrReadOnly, IsBuyer]

    def get_queryset(self):
        product_id = self.kwargs["product_id"]
        get_object_or_404(Product, pk=product_id)
        return Review.objects.filter(product_id=product_id).select_related(
            "user", "product", "product__store"
        )

    def get_serializer_context(self):
        ctx = super().get_serializer_context()
        ctx["request"] = self.request
        return ctx

    def perform_create(self, serializer):
        product = get_object_or_404(Product.objects.select_related("store"), pk=self.kwargs["product_id"])

        if self.request.user.id == product.store.vendor_id:
            raise PermissionDenied("Vendors cannot review their own product.")

        if Review.objects.filter(product=product, user=self.request.user).exists():
            raise ValidationError("You have already reviewed this product.")

        verified = product.order_items.filter(order__user=self.request.user).exists()
        serializer.save(user=self.request.user, product=product, verified=verified)

# ---------- Variants ----------

class ProductVariantsAPIView(APIView):
    """
    GET: variant types (with options) and active variants of a product.
    POST: owner creates variant types ({"types": [...]}) or a variant.
    DELETE: owner removes all variants.
    """
    permission_classes = [IsAuthenticatedOrReadOnly]

    def get(self, request, product_id: int):
        product = get_object_or_404(_visible_products(request.user), pk=product_id)
        data = product_variant_data(product)
        return Response({
            "variant_types": VariantTypeSerializer(data["variant_types"], many=True).data,
            "variants": ProductVariantSerializer(data["variants"], many=True).data,
        })

    def post(self, request, product_id: int):
        product = _own_product_or_403(request.user, product_id)
        if "types" in request.data:
            ser = VariantTypeInputSerializer(data=request.data["types"], many=True)
            ser.is_valid(raise_exception=True)
            types = create_variant_types(product, ser.validated_data)
            return Response(VariantTypeSerializer(types, many=True).data, status=status.HTTP_201_CREATED)

        ser = VariantCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        variant = create_variant(product, **ser.validated_data)
        return Response(ProductVariantSerializer(variant).data, status=status.HTTP_201_CREATED)

    def delete(self, request, product_id: int):
        product = _own_product_or_403(request.user, product_id)
        delete_product_variants(product)
        return Response(status=status.HTTP_204_NO_CONTENT)


class VariantSelectionAPIView(APIView):
    """
    GET ?Color=Red&Size=M: available values per variant type given the current
    selection, and the matching variant once every type is selected.
    """
    permission_classes = []

    def get(self, request, product_id: int):
        product = get_object_or_404(_visible_products(request.user), pk=product_id)
        data = product_variant_data(product)
        type_names = [vtype.name for vtype in data["variant_types"]]
        selected = {name: request.query_params[name] for name in type_names if request.query_params.get(name)}

        variant = None
        if type_names and len(selected) == len(type_names):
            variant = find_variant_by_options(data["variants"], selected)
        return Response({
            "selected": selected,
            "available": {
                name: get_available_options(data["variants"], name, selected) for name in type_names
            },
            "variant": ProductVariantSerializer(variant).data if variant is not None else None,
        })


class VariantStockAPIView(APIView):
    """PATCH: owner sets a variant's stock."""
    permission_classes = [IsAuthenticated]

    def patch(self, request, pk: int):
        variant = get_object_or_404(ProductVariant.objects.select_related("product__store"), pk=pk)
        _own_product_or_403(request.user, variant.product_id)
        ser = VariantStockSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        update_variant_stock(variant, ser.validated_data["stock"])
        return Response(ProductVariantSerializer(variant).data)

# ---------- Banners ----------

class BannerListAPIView(generics.ListAPIView):
    """GET: active banners inside their display window."""
    serializer_class = BannerSerializer
    permission_classes = []

    def get_queryset(self):
        now = timezone.now()
        return (
            Banner.objects.filter(is_active=True)
            .filter(Q(starts_at__isnull=True) | Q(starts_at__lte=now))
            .filter(Q(ends_at__isnull=True) | Q(ends_at__gt=now))
            .order_by("position", "id")
        )

# ---------- Categories / Shipping ----------

class CategoryListAPIView(generics.ListAPIView):
    """GET: active top-level categories with their children."""
    serializer_class = CategorySerializer
    permission_classes = []

    def get_queryset(self):
        return root_categories()


class ShippingOptionsAPIView(APIView):
    """
    GET ?province=&weight_kg=: methods that deliver to the province, priced
    against the session cart total.
    """
    permission_classes = []

    def get(self, request):
        ser = ShippingQuerySerializer(data=request.query_params)
        ser.is_valid(raise_exception=True)
        cart = Cart(request.session)
        options = shipping_options(ser.validated_data["province"], cart.total_price, ser.validated_data["weight_kg"])
        return Response([
            {
                "method": ShippingMethodSerializer(method).data,
                "cost": str(quote.cost),
                "is_free": quote.is_free,
                "estimated_days": quote.estimated_days,
                "display": format_shipping_cost(quote),
            }
            for method, quote in options
        ])

# ---------- Cart ----------

class CartAPIView(APIView):
    """GET: the session cart • DELETE: clear it."""
    permission_classes = []

    def get(self, request):
        return Response(_cart_payload(Cart(request.session)))

    def delete(self, request):
        cart = Cart(request.session)
        cart.clear()
        return Response(_cart_payload(cart))


class CartItemCreateAPIView(APIView):
    """POST {product_id, variant_id?, quantity}: add to cart (clamped to stock)."""
    permission_classes = []

    def post(self, request):
        ser = CartAddSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = ser.validated_data

        product = _visible_products(request.user).filter(
            pk=data["product_id"], is_active=True, store__status=Store.STATUS_APPROVED
        ).first()
        if product is None:
            raise NotFound("Product not found.")

        variant = None
        if data.get("variant_id") is not None:
            variant = product.variants.filter(pk=data["variant_id"], is_active=True).first()
            if variant is None:
                raise ValidationError({"variant_id": "Invalid variant for this product."})
        elif product.variants.filter(is_active=True).exists():
            raise ValidationError({"variant_id": "This product requires choosing a variant."})

        cart = Cart(request.session)
        try:
            cart.add_item(CartItem.from_product(product, quantity=data["quantity"], variant=variant))
        except OutOfStock as exc:
            raise ValidationError(str(exc))
        return Response(_cart_payload(cart), status=status.HTTP_201_CREATED)


class CartItemAPIView(APIView):
    """PATCH {quantity}: set quantity (<= 0 removes) • DELETE: remove the line."""
    permission_classes = []

    def patch(self, request, item_id: str):
        ser = CartQuantitySerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        cart = Cart(request.session)
        if cart.get(item_id) is None:
            raise NotFound("Item not in cart.")
        cart.update_quantity(item_id, ser.validated_data["quantity"])
        return Response(_cart_payload(cart))

    def delete(self, request, item_id: str):
        cart = Cart(request.session)
        if not cart.remove_item(item_id):
            raise NotFound("Item not in cart.")
        return Response(_cart_payload(cart))

# ---------- Favorites ----------

class FavoriteListAPIView(generics.ListAPIView):
    """GET: favorite products of the user (or the anonymous session)."""
    serializer_class = ProductSerializer
    permission_classes = []

    def get_queryset(self):
        return Favorites.for_request(self.request).favorite_products()


class FavoriteToggleAPIView(APIView):
    """POST: flip a product's favorite state; returns the new state."""
    permission_classes = []

    def post(self, request, product_id: int):
        product = get_object_or_404(Product, pk=product_id)
        state = Favorites.for_request(request).toggle(product.pk)
        return Response({"product": product.pk, "is_favorite": state})


class FavoriteListsAPIView(generics.ListCreateAPIView):
    """GET/POST: the user's named favorite lists."""
    serializer_class = FavoriteListSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        return FavoriteList.objects.filter(user=self.request.user)

    def perform_create(self, serializer):
        serializer.save(user=self.request.user)


class FavoriteListDetailAPIView(generics.RetrieveUpdateDestroyAPIView):
    serializer_class = FavoriteListSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        return FavoriteList.objects.filter(user=self.request.user)


class FavoriteListProductsAPIView(APIView):
    """GET: products in a list • POST {product_id}: add one."""
    permission_classes = [IsAuthenticated]

    def _get_list(self, request, pk):
        return get_object_or_404(FavoriteList, pk=pk, user=request.user)

    def get(self, request, pk: int):
        products = favorite_lists.list_products(self._get_list(request, pk))
        return Response(ProductSerializer(products, many=True).data)

    def post(self, request, pk: int):
        favorite_list = self._get_list(request, pk)
        ser = FavoriteListProductSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        product = get_object_or_404(Product, pk=ser.validated_data["product_id"])
        if not favorite_lists.add_product_to_list(favorite_list, product):
            raise ValidationError("Product is already in this list.")
        return Response(FavoriteListSerializer(favorite_list).data, status=status.HTTP_201_CREATED)


class FavoriteListProductDeleteAPIView(APIView):
    permission_classes = [IsAuthenticated]

    def delete(self, request, pk: int, product_id: int):
        favorite_list = get_object_or_404(FavoriteList, pk=pk, user=request.user)
        if not favorite_lists.remove_product_from_list(favorite_list, product_id):
            raise NotFound("Product not in this list.")
        return Response(status=status.HTTP_204_NO_CONTENT)

# ---------- Coupons / Checkout / Orders ----------

class CouponValidateAPIView(APIView):
    """POST {code}: validate against the current cart total."""
    permission_classes = [IsAuthenticated]

    def post(self, request):
        ser = CouponValidateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        result = validate_coupon(ser.validated_data["code"], request.user, Cart(request.session).total_price)
        return Response({
            "is_valid": result.is_valid,
            "code": result.coupon.code if result.coupon else None,
            "discount_amount": str(result.discount_amount),
            "error_message": result.error_message,
        })


class CheckoutAPIView(APIView):
    """POST: place an order from the session cart."""
    permission_classes = [IsAuthenticated]

    def post(self, request):
        ser = CheckoutSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        data = dict(ser.validated_data)
        coupon_code = data.pop("coupon_code", "")
        try:
            order = place_order(
                request.user,
                Cart(request.session),
                coupon_code=coupon_code,
                shipping_method=data.pop("shipping_method", None),
                shipping=data,
            )
        except CheckoutError as exc:
            raise ValidationError(str(exc))
        return Response(OrderSerializer(order).data, status=status.HTTP_201_CREATED)


class OrderListAPIView(generics.ListAPIView):
    """GET: the buyer's orders, newest first."""
    serializer_class = OrderSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        return Order.objects.filter(user=self.request.user).prefetch_related("items")


class OrderDetailAPIView(generics.RetrieveAPIView):
    serializer_class = OrderSerializer
    permission_classes = [IsAuthenticated]

    def get_queryset(self):
        return Order.objects.filter(user=self.request.user).prefetch_related("items")


class SellerOrderListAPIView(generics.ListAPIView):
    """GET: orders containing the vendor's products."""
    serializer_class = OrderSerializer
    permission_classes = [IsAuthenticated, IsVendorAccount]

    def get_queryset(self):
        return seller_orders(self.request.user)


class SellerOrderStatusAPIView(APIView):
    """POST {status, tracking_number?}: advance an order the vendor sells in."""
    permission_classes = [IsAuthenticated, IsVendorAccount]

    def post(self, request, pk: int):
        order = get_object_or_404(Order, pk=pk)
        ser = OrderStatusSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        try:
            update_order_status(
                order, request.user, ser.validated_data["status"], ser.validated_data["tracking_number"]
            )
        except PermissionError as exc:
            raise PermissionDenied(str(exc))
        except ValueError as exc:
            raise ValidationError(str(exc))
        return Response(OrderSerializer(order).data)

# ---------- Wallet ----------

class WalletAPIView(APIView):
    permission_classes = [IsAuthenticated, IsVendorAccount]

    def get(self, request):
        return Response({
            "earnings": str(total_earnings(request.user)),
            "withdrawn": str(total_withdrawn(request.user)),
            "balance": str(seller_balance(request.user)),
        })


class WithdrawalListCreateAPIView(generics.ListCreateAPIView):
    serializer_class = WithdrawalSerializer
    permission_classes = [IsAuthenticated, IsVendorAccount]

    def get_queryset(self):
        return WithdrawalRequest.objects.filter(seller=self.request.user)

    def create(self, request, *args, **kwargs):
        ser = self.get_serializer(data=request.data)
        ser.is_valid(raise_exception=True)
        try:
            withdrawal = request_withdrawal(request.user, ser.validated_data["amount"])
        except WithdrawalError as exc:
            raise ValidationError({"amount": str(exc)})
        return Response(self.get_serializer(withdrawal).data, status=status.HTTP_201_CREATED)


class WithdrawalCancelAPIView(APIView):
    permission_classes = [IsAuthenticated, IsVendorAccount]

    def post(self, request, pk: int):
        withdrawal = get_object_or_404(WithdrawalRequest, pk=pk, seller=request.user)
        try:
            cancel_withdrawal(withdrawal)
        except WithdrawalError as exc:
            raise ValidationError(str(exc))
        return Response(WithdrawalSerializer(withdrawal).data)

# ---------- Notifications ----------

class PushTokenRegisterAPIView(APIView):
    """POST {token, platform}: register this device for push notifications."""
    permission_classes = [IsAuthenticated]

    def post(self, request):
        ser = PushTokenSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        token = register_push_token(
            request.user, ser.validated_data["token"], ser.validated_data.get("platform", "")
        )
        return Response(PushTokenSerializer(token).data, status=status.HTTP_201_CREATED)
