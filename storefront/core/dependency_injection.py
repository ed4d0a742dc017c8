# storefront/core/dependency_injection.py
"""
Dependency Injection module.
Builds the Use Cases with the concrete Repositories/Gateways of the
Infrastructure layer.
"""
from django.conf import settings

from storefront.infrastructure.repositories import (
    CategoryRepositoryDjango,
    ProductRepositoryDjango,
    CartRepositoryDjango,
    OrderRepositoryDjango,
    DjangoTransactionManager,
)
from storefront.infrastructure.gateways import StripeGateway, PaymentGatewayMock
from .ports import IPaymentGateway
from .use_cases import (
    ManageCategoriesUseCase,
    ManageProductsUseCase,
    ManageCartUseCase,
    PlaceOrderUseCase,
    OrderQueriesUseCase,
    CancelOrderUseCase,
    MarkOrderAsPaidUseCase,
    CreatePaymentIntentUseCase,
    HandlePaymentWebhookUseCase,
)

# Concrete repositories (stateless, shared)
category_repo = CategoryRepositoryDjango()
product_repo = ProductRepositoryDjango()
cart_repo = CartRepositoryDjango()
order_repo = OrderRepositoryDjango()
transaction_manager = DjangoTransactionManager()


def get_payment_gateway() -> IPaymentGateway:
    """Selects the gateway from settings.PAYMENT_GATEWAY ('stripe' or 'mock')."""
    if settings.PAYMENT_GATEWAY == 'stripe':
        return StripeGateway(
            api_key=settings.STRIPE_API_KEY,
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            api_base=settings.STRIPE_API_BASE,
            timeout=settings.PAYMENT_GATEWAY_TIMEOUT,
            tolerance=settings.STRIPE_WEBHOOK_TOLERANCE,
        )
    return PaymentGatewayMock(
        webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
        tolerance=settings.STRIPE_WEBHOOK_TOLERANCE,
    )

# ====================================================================
# Catalog Use Cases
# ====================================================================

def get_manage_categories_use_case() -> ManageCategoriesUseCase:
    return ManageCategoriesUseCase(category_repo, product_repo)

def get_manage_products_use_case() -> ManageProductsUseCase:
    return ManageProductsUseCase(product_repo, category_repo)


# ====================================================================
# Cart and Order Use Cases
# ====================================================================

def get_manage_cart_use_case() -> ManageCartUseCase:
    return ManageCartUseCase(cart_repo, product_repo, transaction_manager)

def get_place_order_use_case() -> PlaceOrderUseCase:
    return PlaceOrderUseCase(cart_repo, order_repo, transaction_manager)

def get_order_queries_use_case() -> OrderQueriesUseCase:
    return OrderQueriesUseCase(order_repo)

def get_cancel_order_use_case() -> CancelOrderUseCase:
    return CancelOrderUseCase(order_repo, transaction_manager)

def get_mark_order_as_paid_use_case() -> MarkOrderAsPaidUseCase:
    return MarkOrderAsPaidUseCase(order_repo, product_repo, transaction_manager)


# ====================================================================
# Payment Use Cases
# ====================================================================

def get_create_payment_intent_use_case() -> CreatePaymentIntentUseCase:
    return CreatePaymentIntentUseCase(
        order_repo=order_repo,
        payment_gateway=get_payment_gateway(),
        currency=settings.PAYMENT_CURRENCY,
    )

def get_handle_payment_webhook_use_case() -> HandlePaymentWebhookUseCase:
    return HandlePaymentWebhookUseCase(
        payment_gateway=get_payment_gateway(),
        mark_paid=get_mark_order_as_paid_use_case(),
    )
