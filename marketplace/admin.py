from django.contrib import admin, messages
from django.utils import timezone

from .models import (
    Banner,
    Category,
    Coupon,
    CouponUsage,
    Notification,
    Order,
    OrderItem,
    Product,
    ProductVariant,
    PushToken,
    Review,
    ShippingMethod,
    ShippingRate,
    ShippingZone,
    Store,
    VariantImage,
    VariantOption,
    VariantType,
    WithdrawalRequest,
)
from .notifications import notify
from .wallet import WithdrawalError, approve_withdrawal, complete_withdrawal, reject_withdrawal


@admin.register(Store)
class StoreAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "vendor", "status", "is_official", "product_count", "created_at")
    list_select_related = ("vendor",)
    search_fields = ("name", "vendor__username")
    list_filter = ("status", "is_official")
    ordering = ("name",)
    actions = ["approve_stores", "reject_stores"]

    @admin.display(description="Products")
    def product_count(self, obj: Store) -> int:
        return obj.products.count()

    @admin.action(description="Approve selected stores")
    def approve_stores(self, request, queryset):
        for store in queryset.exclude(status=Store.STATUS_APPROVED):
            store.status = Store.STATUS_APPROVED
            store.rejection_reason = ""
            store.reviewed_at = timezone.now()
            store.save(update_fields=["status", "rejection_reason", "reviewed_at"])
            notify(store.vendor_id, "Store approved", f"Your store {store.name} is now live.",
                   {"type": "store_application", "store_id": store.pk, "status": store.status})
        self.message_user(request, "Stores approved.", messages.SUCCESS)

    @admin.action(description="Reject selected stores")
    def reject_stores(self, request, queryset):
        for store in queryset.exclude(status=Store.STATUS_REJECTED):
            store.status = Store.STATUS_REJECTED
            store.reviewed_at = timezone.now()
            store.save(update_fields=["status", "reviewed_at"])
            notify(store.vendor_id, "Store rejected", f"Your store {store.name} was not approved.",
                   {"type": "store_application", "store_id": store.pk, "status": store.status})
        self.message_user(request, "Stores rejected.", messages.WARNING)


class VariantTypeInline(admin.TabularInline):
    model = VariantType
    extra = 0
    show_change_link = True


class ProductVariantInline(admin.TabularInline):
    model = ProductVariant
    extra = 0
    fields = ("sku", "options", "price", "stock", "is_active")
    show_change_link = True


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "store", "category", "price", "stock", "is_active")
    list_select_related = ("store", "store__vendor", "category")
    list_filter = ("is_active", "store__status", "category", "store")
    search_fields = ("name", "store__name")
    list_editable = ("price", "stock", "is_active")
    ordering = ("name",)
    inlines = [VariantTypeInline, ProductVariantInline]


class VariantOptionInline(admin.TabularInline):
    model = VariantOption
    extra = 0


@admin.register(VariantType)
class VariantTypeAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "product", "display_order")
    search_fields = ("name", "product__name")
    inlines = [VariantOptionInline]


class VariantImageInline(admin.TabularInline):
    model = VariantImage
    extra = 0


@admin.register(ProductVariant)
class ProductVariantAdmin(admin.ModelAdmin):
    list_display = ("id", "product", "sku", "options", "price", "stock", "is_active")
    list_select_related = ("product",)
    list_filter = ("is_active",)
    search_fields = ("sku", "product__name")
    inlines = [VariantImageInline]


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    autocomplete_fields = ("product",)
    readonly_fields = ("line_total_calc",)
    fields = ("product", "variant", "product_name", "seller", "qty", "price_snapshot", "line_total_calc")

    @admin.display(description="Line total")
    def line_total_calc(self, obj: OrderItem):
        if obj.pk:
            return obj.price_snapshot * obj.qty
        return "-"


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "created_at", "status", "total", "items_count")
    list_select_related = ("user",)
    list_filter = ("status", "created_at")
    search_fields = ("user__username", "id")
    date_hierarchy = "created_at"
    readonly_fields = ("created_at", "subtotal", "discount", "shipping_cost", "total")
    inlines = [OrderItemInline]
    ordering = ("-created_at",)

    @admin.display(description="Items")
    def items_count(self, obj: Order) -> int:
        return obj.items.count()


@admin.register(Review)
class ReviewAdmin(admin.ModelAdmin):
    list_display = ("id", "product", "user", "rating", "verified", "created_at")
    list_select_related = ("product", "user")
    list_filter = ("verified", "rating", "product")
    search_fields = ("product__name", "user__username", "comment")
    date_hierarchy = "created_at"
    ordering = ("-created_at",)


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "slug", "parent", "display_order", "is_active")
    list_filter = ("is_active", "parent")
    search_fields = ("name", "slug")
    list_editable = ("display_order", "is_active")
    prepopulated_fields = {"slug": ("name",)}


class ShippingRateInline(admin.TabularInline):
    model = ShippingRate
    extra = 0


@admin.register(ShippingZone)
class ShippingZoneAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "is_active")
    list_filter = ("is_active",)
    inlines = [ShippingRateInline]


@admin.register(ShippingMethod)
class ShippingMethodAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "carrier", "estimated_days_min", "estimated_days_max", "is_active")
    list_filter = ("is_active",)


@admin.register(Coupon)
class CouponAdmin(admin.ModelAdmin):
    list_display = ("code", "name", "discount_type", "discount_value", "current_usage", "usage_limit", "is_active", "expires_at")
    list_filter = ("is_active", "discount_type")
    search_fields = ("code", "name")
    readonly_fields = ("current_usage",)


@admin.register(CouponUsage)
class CouponUsageAdmin(admin.ModelAdmin):
    list_display = ("coupon", "user", "order", "discount_amount", "created_at")
    list_select_related = ("coupon", "user")


@admin.register(Banner)
class BannerAdmin(admin.ModelAdmin):
    list_display = ("id", "title", "position", "is_active", "starts_at", "ends_at")
    list_editable = ("position", "is_active")
    ordering = ("position",)


@admin.register(WithdrawalRequest)
class WithdrawalRequestAdmin(admin.ModelAdmin):
    list_display = ("id", "seller", "amount", "status", "created_at", "processed_at")
    list_select_related = ("seller",)
    list_filter = ("status",)
    search_fields = ("seller__username", "transaction_reference")
    readonly_fields = ("created_at", "processed_at")
    actions = ["approve", "reject", "complete"]

    def _run(self, request, queryset, transition, **kwargs):
        done = 0
        for withdrawal in queryset:
            try:
                transition(withdrawal, **kwargs)
                done += 1
            except WithdrawalError as exc:
                self.message_user(request, f"#{withdrawal.pk}: {exc}", messages.ERROR)
        if done:
            self.message_user(request, f"{done} withdrawal(s) updated.", messages.SUCCESS)

    @admin.action(description="Approve selected withdrawals")
    def approve(self, request, queryset):
        self._run(request, queryset, approve_withdrawal)

    @admin.action(description="Reject selected withdrawals")
    def reject(self, request, queryset):
        self._run(request, queryset, reject_withdrawal, reason="Rejected by operator.")

    @admin.action(description="Mark selected withdrawals as completed")
    def complete(self, request, queryset):
        self._run(request, queryset, complete_withdrawal)


@admin.register(PushToken)
class PushTokenAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "platform", "is_active", "created_at")
    list_filter = ("platform", "is_active")


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "title", "status", "created_at")
    list_filter = ("status",)
    search_fields = ("title", "user__username")


admin.site.site_header = "Marketplace back-office"
admin.site.site_title = "Marketplace back-office"
admin.site.index_title = "Operations"
