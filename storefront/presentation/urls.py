"""
REST API routes (mounted under /api/).
"""
from django.urls import path
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from . import views

urlpatterns = [
    # ====================================================================
    # 1. CART
    # ====================================================================
    path('cart/', views.CartAPIView.as_view(), name='api_cart'),
    path('cart/items/', views.CartItemsAPIView.as_view(), name='api_cart_items'),
    path('cart/items/<int:item_id>/', views.CartItemDetailAPIView.as_view(), name='api_cart_item_detail'),

    # ====================================================================
    # 2. ORDERS AND PAYMENT
    # ====================================================================
    path('orders/', views.OrderListAPIView.as_view(), name='api_orders'),
    path('orders/paged/', views.OrderPagedAPIView.as_view(), name='api_orders_paged'),
    path('orders/<int:order_id>/', views.OrderDetailAPIView.as_view(), name='api_order_detail'),
    path('orders/<int:order_id>/cancel/', views.OrderCancelAPIView.as_view(), name='api_order_cancel'),
    path('payment/create-intent/', views.CreatePaymentIntentAPIView.as_view(), name='api_payment_intent'),

    # Payment processor webhook (no authentication, signature only)
    path('webhooks/stripe/', views.StripeWebhookAPIView.as_view(), name='api_webhook_stripe'),

    # ====================================================================
    # 3. CATALOG
    # ====================================================================
    path('products/', views.ProductListAPIView.as_view(), name='api_products'),
    path('products/paged/', views.ProductPagedAPIView.as_view(), name='api_products_paged'),
    path('products/<int:product_id>/', views.ProductDetailAPIView.as_view(), name='api_product_detail'),
    path('categories/', views.CategoryListAPIView.as_view(), name='api_categories'),
    path('categories/<int:category_id>/', views.CategoryDetailAPIView.as_view(), name='api_category_detail'),
    path('categories/<int:category_id>/products/', views.CategoryProductsAPIView.as_view(), name='api_category_products'),

    # ====================================================================
    # 4. AUTH AND DOCS
    # ====================================================================
    path('auth/token/', TokenObtainPairView.as_view(), name='token_obtain_pair'),
    path('auth/token/refresh/', TokenRefreshView.as_view(), name='token_refresh'),
    path('schema/', SpectacularAPIView.as_view(), name='schema'),
    path('docs/swagger/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),
]
