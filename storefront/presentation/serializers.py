from decimal import Decimal

from rest_framework import serializers

from storefront.core.use_cases import MAX_PAGE_INDEX


# ====================================================================
# REQUEST SERIALIZERS (input validation only)
# ====================================================================

class AddCartItemSerializer(serializers.Serializer):
    product_id = serializers.IntegerField()
    quantity = serializers.IntegerField(min_value=1)


class UpdateCartItemSerializer(serializers.Serializer):
    quantity = serializers.IntegerField(min_value=1)


class CreatePaymentIntentSerializer(serializers.Serializer):
    order_id = serializers.IntegerField()


class CategoryRequestSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=100)
    description = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    image_url = serializers.CharField(max_length=500, required=False, allow_blank=True, allow_null=True)


class ProductRequestSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    price = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal('0.01'))
    category_id = serializers.IntegerField()
    stock_quantity = serializers.IntegerField(min_value=0)
    image_url = serializers.CharField(max_length=500, required=False, allow_blank=True, allow_null=True)
    video_url = serializers.CharField(max_length=500, required=False, allow_blank=True, allow_null=True)


class PageQuerySerializer(serializers.Serializer):
    """Query string of the paged endpoints. Sort fields are checked in the use cases."""
    page = serializers.IntegerField(required=False, default=0, min_value=0, max_value=MAX_PAGE_INDEX)
    size = serializers.IntegerField(required=False, default=10)
    sort_by = serializers.CharField(required=False, default='id')
    sort_dir = serializers.CharField(required=False, default='asc')


# ====================================================================
# RESPONSE SERIALIZERS (read from Core entities)
# ====================================================================

class CategorySerializer(serializers.Serializer):
    id = serializers.IntegerField()
    name = serializers.CharField()
    description = serializers.CharField(allow_null=True)
    image_url = serializers.CharField(allow_null=True)
    product_count = serializers.IntegerField()


class ProductSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    name = serializers.CharField()
    price = serializers.DecimalField(max_digits=10, decimal_places=2)
    stock_quantity = serializers.IntegerField()
    category_id = serializers.IntegerField()
    category_name = serializers.CharField(allow_null=True)
    image_url = serializers.CharField(allow_null=True)
    video_url = serializers.CharField(allow_null=True)
    created_at = serializers.DateTimeField(allow_null=True)


class CartItemSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    product_id = serializers.IntegerField()
    product_name = serializers.CharField()
    price_at_add = serializers.DecimalField(max_digits=10, decimal_places=2)
    quantity = serializers.IntegerField()
    subtotal = serializers.DecimalField(max_digits=12, decimal_places=2)


class CartSerializer(serializers.Serializer):
    """Cart view with the totals derived from its lines."""
    cart_id = serializers.IntegerField(source='id')
    user_id = serializers.IntegerField()
    username = serializers.CharField()
    items = CartItemSerializer(many=True)
    total_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    total_items = serializers.IntegerField()


class OrderItemSerializer(serializers.Serializer):
    id = serializers.IntegerField()
    product_id = serializers.IntegerField()
    product_name = serializers.CharField()
    price_at_order = serializers.DecimalField(max_digits=10, decimal_places=2)
    quantity = serializers.IntegerField()
    subtotal = serializers.DecimalField(max_digits=12, decimal_places=2)


class OrderSerializer(serializers.Serializer):
    order_id = serializers.IntegerField(source='id')
    user_id = serializers.IntegerField()
    username = serializers.CharField()
    order_date = serializers.DateTimeField(allow_null=True)
    status = serializers.CharField(source='status.value')
    items = OrderItemSerializer(many=True)
    total_amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    total_items = serializers.IntegerField()


class PaymentIntentResponseSerializer(serializers.Serializer):
    client_secret = serializers.CharField()
    order_id = serializers.IntegerField()
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    currency = serializers.CharField()
    status = serializers.CharField()


class ErrorResponseSerializer(serializers.Serializer):
    """Documents the uniform error body."""
    timestamp = serializers.DateTimeField()
    status = serializers.IntegerField()
    error = serializers.CharField()
    messages = serializers.ListField(child=serializers.CharField())
    path = serializers.CharField()


def serialize_page(page, item_serializer_class) -> dict:
    return {
        'content': item_serializer_class(page.content, many=True).data,
        'page': page.page,
        'size': page.size,
        'total_elements': page.total_elements,
        'total_pages': page.total_pages,
        'first': page.first,
        'last': page.last,
    }
