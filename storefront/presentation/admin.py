# Django admin for the storefront models.

from django.contrib import admin

from storefront.infrastructure.models import Category, Product, Order, OrderItem


# ====================================================================
# 1. CATALOG
# ====================================================================

@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ('name', 'description')
    search_fields = ('name',)
    ordering = ('name',)


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ('name', 'price', 'stock_quantity', 'category', 'created_at')
    list_filter = ('category',)
    search_fields = ('name', 'id')
    ordering = ('name',)
    fieldsets = (
        ('Basic information', {
            'fields': ('name', 'price', 'stock_quantity', 'category'),
        }),
        ('Media', {
            'fields': ('image_url', 'video_url'),
        }),
    )


# ====================================================================
# 2. ORDERS
# ====================================================================

class OrderItemInline(admin.TabularInline):
    """Items are snapshots taken at checkout."""
    model = OrderItem
    fields = ('product', 'product_name', 'quantity', 'price_at_order')
    readonly_fields = fields
    extra = 0
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """
    Read-only view of the orders. Status changes go through the API so the
    stock and payment rules always apply.
    """
    list_display = ('id', 'user', 'order_date', 'total_amount', 'status')
    list_filter = ('status', 'order_date')
    search_fields = ('id', 'user__username')
    date_hierarchy = 'order_date'
    inlines = [OrderItemInline]
    readonly_fields = ('user', 'status', 'total_amount', 'order_date')

    def has_add_permission(self, request):
        return False
