"""
API views: orchestrate the request, the use case execution and the response.

Views never catch Core exceptions; the exception handler turns them into the
uniform error body.
"""
import logging

from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import extend_schema, OpenApiParameter
from rest_framework import status
from rest_framework.permissions import IsAuthenticated, IsAdminUser, AllowAny
from rest_framework.response import Response
from rest_framework.views import APIView

from storefront.core import dependency_injection as di
from storefront.core.entities import User
from .serializers import (
    AddCartItemSerializer,
    UpdateCartItemSerializer,
    CreatePaymentIntentSerializer,
    CategoryRequestSerializer,
    ProductRequestSerializer,
    PageQuerySerializer,
    CategorySerializer,
    ProductSerializer,
    CartSerializer,
    OrderSerializer,
    PaymentIntentResponseSerializer,
    ErrorResponseSerializer,
    serialize_page,
)

logger = logging.getLogger(__name__)

PAGE_PARAMETERS = [
    OpenApiParameter('page', int, description='0-based page index (at most 100000)'),
    OpenApiParameter('size', int, description='Page size (1-100)'),
]
SORT_PARAMETERS = [
    OpenApiParameter('sort_by', str, description='id, name, price, stock_quantity or created_at'),
    OpenApiParameter('sort_dir', str, description='asc or desc'),
]


def error_responses(*codes) -> dict:
    return {code: ErrorResponseSerializer for code in codes}


def current_user(request) -> User:
    return User(id=request.user.pk, username=request.user.get_username())


def validated(serializer_class, data) -> dict:
    serializer = serializer_class(data=data)
    serializer.is_valid(raise_exception=True)
    return serializer.validated_data


class CatalogPermissionMixin:
    """Catalog reads are public, writes are for staff users."""

    def get_permissions(self):
        if self.request.method in ('POST', 'PUT', 'PATCH', 'DELETE'):
            self.permission_classes = [IsAdminUser]
        else:
            self.permission_classes = [AllowAny]
        return [permission() for permission in self.permission_classes]


# ====================================================================
# CART
# ====================================================================

class CartAPIView(APIView):
    """The cart of the logged in user."""
    permission_classes = [IsAuthenticated]

    @extend_schema(responses=CartSerializer)
    def get(self, request):
        cart = di.get_manage_cart_use_case().get_or_create_cart(current_user(request))
        return Response(CartSerializer(cart).data)

    @extend_schema(responses={204: None})
    def delete(self, request):
        di.get_manage_cart_use_case().clear_cart(current_user(request))
        return Response(status=status.HTTP_204_NO_CONTENT)


class CartItemsAPIView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(request=AddCartItemSerializer,
                   responses={200: CartSerializer, **error_responses(400, 404, 409)})
    def post(self, request):
        """Adds a product, accumulating into an existing line."""
        data = validated(AddCartItemSerializer, request.data)
        cart = di.get_manage_cart_use_case().add_item(
            current_user(request), data['product_id'], data['quantity']
        )
        return Response(CartSerializer(cart).data)


class CartItemDetailAPIView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(request=UpdateCartItemSerializer,
                   responses={200: CartSerializer, **error_responses(400, 404)})
    def put(self, request, item_id):
        data = validated(UpdateCartItemSerializer, request.data)
        cart = di.get_manage_cart_use_case().update_item_quantity(
            current_user(request), item_id, data['quantity']
        )
        return Response(CartSerializer(cart).data)

    @extend_schema(responses={200: CartSerializer, **error_responses(404)})
    def delete(self, request, item_id):
        cart = di.get_manage_cart_use_case().remove_item(current_user(request), item_id)
        return Response(CartSerializer(cart).data)


# ====================================================================
# ORDERS
# ====================================================================

class OrderListAPIView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(request=None, responses={201: OrderSerializer, **error_responses(409)})
    def post(self, request):
        """Checkout: turns the cart into a PENDING order."""
        order = di.get_place_order_use_case().execute(current_user(request))
        return Response(OrderSerializer(order).data, status=status.HTTP_201_CREATED)

    @extend_schema(responses=OrderSerializer(many=True))
    def get(self, request):
        orders = di.get_order_queries_use_case().history(current_user(request))
        return Response(OrderSerializer(orders, many=True).data)


class OrderPagedAPIView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(parameters=PAGE_PARAMETERS, responses={200: OpenApiTypes.OBJECT, **error_responses(400)})
    def get(self, request):
        query = validated(PageQuerySerializer, request.query_params)
        page = di.get_order_queries_use_case().history_paged(
            current_user(request), query['page'], query['size']
        )
        return Response(serialize_page(page, OrderSerializer))


class OrderDetailAPIView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(responses={200: OrderSerializer, **error_responses(404)})
    def get(self, request, order_id):
        order = di.get_order_queries_use_case().get_order(current_user(request), order_id)
        return Response(OrderSerializer(order).data)


class OrderCancelAPIView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(request=None, responses={200: OrderSerializer, **error_responses(404, 409)})
    def post(self, request, order_id):
        order = di.get_cancel_order_use_case().execute(current_user(request), order_id)
        return Response(OrderSerializer(order).data)


# ====================================================================
# PAYMENT
# ====================================================================

class CreatePaymentIntentAPIView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(request=CreatePaymentIntentSerializer,
                   responses={200: PaymentIntentResponseSerializer, **error_responses(400, 404, 409, 502)})
    def post(self, request):
        data = validated(CreatePaymentIntentSerializer, request.data)
        result = di.get_create_payment_intent_use_case().execute(current_user(request), data['order_id'])
        return Response(PaymentIntentResponseSerializer(result).data)


class StripeWebhookAPIView(APIView):
    """
    Receives the payment processor notifications.

    Unauthenticated: only the signature is trusted. The raw body is read
    untouched because the signature covers the exact bytes.
    """
    authentication_classes = []
    permission_classes = [AllowAny]

    @extend_schema(request=None, responses={200: OpenApiTypes.STR, **error_responses(400)})
    def post(self, request):
        outcome = di.get_handle_payment_webhook_use_case().execute(
            request.body, request.META.get('HTTP_STRIPE_SIGNATURE', '')
        )
        logger.debug("Webhook outcome: %s", outcome)
        return Response("Webhook received", status=status.HTTP_200_OK)


# ====================================================================
# CATALOG
# ====================================================================

class CategoryListAPIView(CatalogPermissionMixin, APIView):

    @extend_schema(responses=CategorySerializer(many=True))
    def get(self, request):
        categories = di.get_manage_categories_use_case().list_all()
        return Response(CategorySerializer(categories, many=True).data)

    @extend_schema(request=CategoryRequestSerializer,
                   responses={201: CategorySerializer, **error_responses(400, 409)})
    def post(self, request):
        data = validated(CategoryRequestSerializer, request.data)
        category = di.get_manage_categories_use_case().create(
            data['name'], data.get('description'), data.get('image_url')
        )
        return Response(CategorySerializer(category).data, status=status.HTTP_201_CREATED)


class CategoryDetailAPIView(CatalogPermissionMixin, APIView):

    @extend_schema(responses={200: CategorySerializer, **error_responses(404)})
    def get(self, request, category_id):
        category = di.get_manage_categories_use_case().get(category_id)
        return Response(CategorySerializer(category).data)

    @extend_schema(request=CategoryRequestSerializer,
                   responses={200: CategorySerializer, **error_responses(400, 404, 409)})
    def put(self, request, category_id):
        data = validated(CategoryRequestSerializer, request.data)
        category = di.get_manage_categories_use_case().update(
            category_id, data['name'], data.get('description'), data.get('image_url')
        )
        return Response(CategorySerializer(category).data)

    @extend_schema(responses={204: None, **error_responses(404, 409)})
    def delete(self, request, category_id):
        di.get_manage_categories_use_case().delete(category_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


class CategoryProductsAPIView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(parameters=PAGE_PARAMETERS + SORT_PARAMETERS,
                   responses={200: OpenApiTypes.OBJECT, **error_responses(400, 404)})
    def get(self, request, category_id):
        query = validated(PageQuerySerializer, request.query_params)
        page = di.get_manage_products_use_case().list_paged(
            query['page'], query['size'], query['sort_by'], query['sort_dir'],
            category_id=category_id,
        )
        return Response(serialize_page(page, ProductSerializer))


class ProductListAPIView(CatalogPermissionMixin, APIView):

    @extend_schema(responses=ProductSerializer(many=True))
    def get(self, request):
        products = di.get_manage_products_use_case().list_all()
        return Response(ProductSerializer(products, many=True).data)

    @extend_schema(request=ProductRequestSerializer,
                   responses={201: ProductSerializer, **error_responses(400, 404)})
    def post(self, request):
        data = validated(ProductRequestSerializer, request.data)
        product = di.get_manage_products_use_case().create(
            name=data['name'],
            price=data['price'],
            category_id=data['category_id'],
            stock_quantity=data['stock_quantity'],
            image_url=data.get('image_url'),
            video_url=data.get('video_url'),
        )
        return Response(ProductSerializer(product).data, status=status.HTTP_201_CREATED)


class ProductPagedAPIView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(parameters=PAGE_PARAMETERS + SORT_PARAMETERS,
                   responses={200: OpenApiTypes.OBJECT, **error_responses(400)})
    def get(self, request):
        query = validated(PageQuerySerializer, request.query_params)
        page = di.get_manage_products_use_case().list_paged(
            query['page'], query['size'], query['sort_by'], query['sort_dir']
        )
        return Response(serialize_page(page, ProductSerializer))


class ProductDetailAPIView(CatalogPermissionMixin, APIView):

    @extend_schema(responses={200: ProductSerializer, **error_responses(404)})
    def get(self, request, product_id):
        product = di.get_manage_products_use_case().get(product_id)
        return Response(ProductSerializer(product).data)

    @extend_schema(request=ProductRequestSerializer,
                   responses={200: ProductSerializer, **error_responses(400, 404)})
    def put(self, request, product_id):
        data = validated(ProductRequestSerializer, request.data)
        product = di.get_manage_products_use_case().update(
            product_id,
            name=data['name'],
            price=data['price'],
            category_id=data['category_id'],
            stock_quantity=data['stock_quantity'],
            image_url=data.get('image_url'),
            video_url=data.get('video_url'),
        )
        return Response(ProductSerializer(product).data)

    @extend_schema(responses={204: None, **error_responses(404, 409)})
    def delete(self, request, product_id):
        di.get_manage_products_use_case().delete(product_id)
        return Response(status=status.HTTP_204_NO_CONTENT)
