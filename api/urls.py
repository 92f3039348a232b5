# api/urls.py
from django.urls import path
from .views import (
    ProductListCreateAPIView, ProductDetailAPIView,
    CategoryListAPIView, ShippingOptionsAPIView,
    StoreListCreateAPIView, VendorStoreListAPIView, StoreProductListAPIView,
    ProductReviewListCreateAPIView,
    ProductVariantsAPIView, VariantSelectionAPIView, VariantStockAPIView,
    BannerListAPIView,
    CartAPIView, CartItemCreateAPIView, CartItemAPIView,
    FavoriteListAPIView, FavoriteToggleAPIView,
    FavoriteListsAPIView, FavoriteListDetailAPIView,
    FavoriteListProductsAPIView, FavoriteListProductDeleteAPIView,
    CouponValidateAPIView, CheckoutAPIView, OrderListAPIView, OrderDetailAPIView,
    SellerOrderListAPIView, SellerOrderStatusAPIView,
    WalletAPIView, WithdrawalListCreateAPIView, WithdrawalCancelAPIView,
    PushTokenRegisterAPIView,
)

app_name = "api"

urlpatterns = [
    # Products
    path("products/", ProductListCreateAPIView.as_view(), name="product-list"),
    path("products/<int:pk>/", ProductDetailAPIView.as_view(), name="product-detail"),

    # Stores
    path("stores/", StoreListCreateAPIView.as_view(), name="store-list"),
    path("vendors/<int:vendor_id>/stores/", VendorStoreListAPIView.as_view(), name="vendor-store-list"),
    path("stores/<int:store_id>/products/", StoreProductListAPIView.as_view(), name="store-product-list"),

    # Product Reviews
    path("products/<int:product_id>/reviews/", ProductReviewListCreateAPIView.as_view(),
         name="product-review-list"),

    # Variants
    path("products/<int:product_id>/variants/", ProductVariantsAPIView.as_view(), name="product-variants"),
    path("products/<int:product_id>/variants/select/", VariantSelectionAPIView.as_view(),
         name="product-variant-select"),
    path("variants/<int:pk>/stock/", VariantStockAPIView.as_view(), name="variant-stock"),

    # Banners
    path("banners/", BannerListAPIView.as_view(), name="banner-list"),

    # Categories / Shipping
    path("categories/", CategoryListAPIView.as_view(), name="category-list"),
    path("shipping/options/", ShippingOptionsAPIView.as_view(), name="shipping-options"),

    # Cart
    path("cart/", CartAPIView.as_view(), name="cart"),
    path("cart/items/", CartItemCreateAPIView.as_view(), name="cart-item-create"),
    path("cart/items/<str:item_id>/", CartItemAPIView.as_view(), name="cart-item"),

    # Favorites
    path("favorites/", FavoriteListAPIView.as_view(), name="favorite-list"),
    path("favorites/<int:product_id>/toggle/", FavoriteToggleAPIView.as_view(), name="favorite-toggle"),
    path("favorite-lists/", FavoriteListsAPIView.as_view(), name="favorite-lists"),
    path("favorite-lists/<int:pk>/", FavoriteListDetailAPIView.as_view(), name="favorite-list-detail"),
    path("favorite-lists/<int:pk>/products/", FavoriteListProductsAPIView.as_view(),
         name="favorite-list-products"),
    path("favorite-lists/<int:pk>/products/<int:product_id>/", FavoriteListProductDeleteAPIView.as_view(),
         name="favorite-list-product-delete"),

    # Coupons / Checkout / Orders
    path("coupons/validate/", CouponValidateAPIView.as_view(), name="coupon-validate"),
    path("checkout/", CheckoutAPIView.as_view(), name="checkout"),
    path("orders/", OrderListAPIView.as_view(), name="order-list"),
    path("orders/<int:pk>/", OrderDetailAPIView.as_view(), name="order-detail"),
    path("seller/orders/", SellerOrderListAPIView.as_view(), name="seller-order-list"),
    path("seller/orders/<int:pk>/status/", SellerOrderStatusAPIView.as_view(), name="seller-order-status"),

    # Wallet
    path("wallet/", WalletAPIView.as_view(), name="wallet"),
    path("wallet/withdrawals/", WithdrawalListCreateAPIView.as_view(), name="withdrawal-list"),
    path("wallet/withdrawals/<int:pk>/cancel/", WithdrawalCancelAPIView.as_view(), name="withdrawal-cancel"),

    # Notifications
    path("push-tokens/", PushTokenRegisterAPIView.as_view(), name="push-token-register"),
]
