# storefront/core/use_cases.py
"""
Use cases (business logic) of the store.

This layer depends only on the Core entities and ports, which keeps the rules
about stock, snapshots and order status independent of Django.
"""
import logging
from collections import Counter
from typing import List, Optional, Dict
from decimal import Decimal, ROUND_HALF_UP

from storefront.core.entities import (
    User, Category, Product, Cart, CartItem, Order, OrderItem, OrderStatus, Page,
    PaymentIntentResult,
)
from storefront.core.exceptions import (
    NotFoundError,
    ProductNotFoundError,
    CategoryNotFoundError,
    CartItemNotFoundError,
    OrderNotFoundError,
    ValidationFailedError,
    DomainConflictError,
    InsufficientStockError,
    EmptyCartError,
    InvalidOrderStatusError,
    DuplicateCategoryError,
    CategoryInUseError,
    ProductInUseError,
    InvalidWebhookPayloadError,
)
from storefront.core.ports import (
    ICategoryRepository,
    IProductRepository,
    ICartRepository,
    IOrderRepository,
    ITransactionManager,
    IPaymentGateway,
)

logger = logging.getLogger(__name__)

PRODUCT_SORT_FIELDS = ("id", "name", "price", "stock_quantity", "created_at")
MAX_PAGE_SIZE = 100
MAX_PAGE_INDEX = 100000


def validate_page_request(page: int, size: int) -> List[str]:
    errors = []
    if page < 0 or page > MAX_PAGE_INDEX:
        errors.append(f"Page index must be between 0 and {MAX_PAGE_INDEX}.")
    if size < 1 or size > MAX_PAGE_SIZE:
        errors.append(f"Page size must be between 1 and {MAX_PAGE_SIZE}.")
    return errors


def to_minor_units(amount: Decimal) -> int:
    """Converts a two-decimal amount to the processor's smallest currency unit."""
    return int((Decimal(amount) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


# ====================================================================
# 1. CATALOG USE CASES
# ====================================================================

class ManageCategoriesUseCase:
    """Create, read, rename and delete categories."""
    def __init__(self, category_repo: ICategoryRepository, product_repo: IProductRepository):
        self.category_repo = category_repo
        self.product_repo = product_repo

    def create(self, name: str, description: Optional[str] = None,
               image_url: Optional[str] = None) -> Category:
        if self.category_repo.exists_by_name(name):
            raise DuplicateCategoryError(name)
        category = Category(name=name, description=description, image_url=image_url)
        return self.category_repo.save(category)

    def list_all(self) -> List[Category]:
        return self.category_repo.find_all()

    def get(self, category_id: int) -> Category:
        category = self.category_repo.find_by_id(category_id)
        if not category:
            raise CategoryNotFoundError(f"Category not found with id: {category_id}")
        return category

    def update(self, category_id: int, name: str, description: Optional[str] = None,
               image_url: Optional[str] = None) -> Category:
        category = self.get(category_id)

        # Renaming onto another category's name is a conflict, keeping it is not.
        if category.name != name and self.category_repo.exists_by_name(name):
            raise DuplicateCategoryError(name)

        category.name = name
        category.description = description
        category.image_url = image_url
        return self.category_repo.save(category)

    def delete(self, category_id: int) -> None:
        self.get(category_id)
        product_count = self.product_repo.count_by_category(category_id)
        if product_count > 0:
            raise CategoryInUseError(category_id, product_count)
        self.category_repo.delete(category_id)
        logger.info("Category %s deleted", category_id)


class ManageProductsUseCase:
    """Catalog administration and browsing of products."""
    def __init__(self, product_repo: IProductRepository, category_repo: ICategoryRepository):
        self.product_repo = product_repo
        self.category_repo = category_repo

    def _require_category(self, category_id: int) -> Category:
        category = self.category_repo.find_by_id(category_id)
        if not category:
            raise CategoryNotFoundError(f"Category not found with id: {category_id}")
        return category

    def create(self, name: str, price: Decimal, category_id: int, stock_quantity: int,
               image_url: Optional[str] = None, video_url: Optional[str] = None) -> Product:
        category = self._require_category(category_id)
        product = Product(
            name=name,
            price=price,
            stock_quantity=stock_quantity,
            category_id=category.id,
            category_name=category.name,
            image_url=image_url,
            video_url=video_url,
        )
        return self.product_repo.save(product)

    def list_all(self) -> List[Product]:
        return self.product_repo.find_all()

    def list_paged(self, page: int = 0, size: int = 10, sort_by: str = "id",
                   sort_dir: str = "asc", category_id: Optional[int] = None) -> Page[Product]:
        """Returns one page of products, optionally restricted to a category."""
        errors = validate_page_request(page, size)
        if sort_by not in PRODUCT_SORT_FIELDS:
            errors.append(f"Cannot sort by '{sort_by}'. Allowed: {', '.join(PRODUCT_SORT_FIELDS)}.")
        if sort_dir.lower() not in ("asc", "desc"):
            errors.append("Sort direction must be 'asc' or 'desc'.")
        if errors:
            raise ValidationFailedError(errors)

        if category_id is not None:
            self._require_category(category_id)

        return self.product_repo.find_page(
            page, size, sort_by, sort_dir.lower() == "desc", category_id=category_id
        )

    def get(self, product_id: int) -> Product:
        product = self.product_repo.find_by_id(product_id)
        if not product:
            raise ProductNotFoundError(f"Product not found with id: {product_id}")
        return product

    def update(self, product_id: int, name: str, price: Decimal, category_id: int,
               stock_quantity: int, image_url: Optional[str] = None,
               video_url: Optional[str] = None) -> Product:
        """
        Updates the live product. Prices already captured by carts and orders
        are snapshots and stay untouched.
        """
        product = self.get(product_id)
        category = self._require_category(category_id)

        product.name = name
        product.price = price
        product.category_id = category.id
        product.category_name = category.name
        product.stock_quantity = stock_quantity
        product.image_url = image_url
        product.video_url = video_url
        return self.product_repo.save(product)

    def delete(self, product_id: int) -> None:
        self.get(product_id)
        if self.product_repo.is_referenced(product_id):
            raise ProductInUseError(product_id)
        self.product_repo.delete(product_id)
        logger.info("Product %s deleted", product_id)


# ====================================================================
# 2. CART USE CASES
# ====================================================================

class ManageCartUseCase:
    """
    Centralizes cart handling (get, add, update, remove, clear).

    The stock check performed when adding is advisory: nothing is reserved,
    the authoritative check happens when the payment is confirmed.
    """
    def __init__(self, cart_repo: ICartRepository, product_repo: IProductRepository,
                 transaction_manager: ITransactionManager):
        self.cart_repo = cart_repo
        self.product_repo = product_repo
        self.transaction_manager = transaction_manager

    def _fresh_cart(self, user: User) -> Cart:
        cart = self.cart_repo.get_or_create(user.id)
        cart.username = user.username
        return cart

    @staticmethod
    def _require_positive(quantity: int) -> None:
        if quantity is None or quantity <= 0:
            raise ValidationFailedError(["Quantity must be at least 1."])

    def get_or_create_cart(self, user: User) -> Cart:
        """Returns the user's cart, creating an empty one on first access."""
        return self._fresh_cart(user)

    def add_item(self, user: User, product_id: int, quantity: int) -> Cart:
        """Adds or accumulates a product in the cart, checking the stock."""
        self._require_positive(quantity)

        with self.transaction_manager.atomic():
            cart = self.cart_repo.get_or_create(user.id)

            product = self.product_repo.find_by_id(product_id)
            if not product:
                raise ProductNotFoundError(f"Product not found with id: {product_id}")

            existing_item = cart.find_item_by_product(product_id)
            existing_quantity = existing_item.quantity if existing_item else 0
            total_quantity = existing_quantity + quantity

            if not product.has_stock_for(total_quantity):
                raise InsufficientStockError(
                    product_id=product.id,
                    available=product.stock_quantity,
                    requested=quantity,
                    message=(
                        f"Insufficient stock. Available: {product.stock_quantity}, "
                        f"Already in cart: {existing_quantity}, Requested: {quantity}"
                    ),
                )

            if existing_item:
                # price_at_add stays what it was when the line was created
                self.cart_repo.set_item_quantity(existing_item.id, total_quantity)
            else:
                self.cart_repo.add_item(cart.id, CartItem(
                    product_id=product.id,
                    quantity=quantity,
                    price_at_add=product.price,
                    product_name=product.name,
                ))

        return self._fresh_cart(user)

    def _require_own_item(self, user: User, cart_item_id: int) -> CartItem:
        item = self.cart_repo.find_item_for_user(cart_item_id, user.id)
        if not item:
            raise CartItemNotFoundError(f"Cart item not found with id: {cart_item_id}")
        return item

    def update_item_quantity(self, user: User, cart_item_id: int, quantity: int) -> Cart:
        """Sets the quantity of a line. The stock is not re-checked here."""
        self._require_positive(quantity)
        item = self._require_own_item(user, cart_item_id)
        self.cart_repo.set_item_quantity(item.id, quantity)
        return self._fresh_cart(user)

    def remove_item(self, user: User, cart_item_id: int) -> Cart:
        item = self._require_own_item(user, cart_item_id)
        self.cart_repo.delete_item(item.id)
        # Re-read after the delete so the response never shows the removed line.
        return self._fresh_cart(user)

    def clear_cart(self, user: User) -> None:
        cart = self.cart_repo.find_by_user(user.id)
        if cart and not cart.is_empty:
            self.cart_repo.clear(cart.id)


# ====================================================================
# 3. ORDER USE CASES
# ====================================================================

class PlaceOrderUseCase:
    """
    Checkout: turns the cart into a PENDING order snapshot.

    Order creation, item creation and cart clearing run in one transaction.
    """
    def __init__(self, cart_repo: ICartRepository, order_repo: IOrderRepository,
                 transaction_manager: ITransactionManager):
        self.cart_repo = cart_repo
        self.order_repo = order_repo
        self.transaction_manager = transaction_manager

    def execute(self, user: User) -> Order:
        with self.transaction_manager.atomic():
            cart = self.cart_repo.find_by_user(user.id)
            if cart is None or cart.is_empty:
                raise EmptyCartError()

            order = Order(
                user_id=user.id,
                username=user.username,
                total_amount=cart.total_amount,
                status=OrderStatus.PENDING,
                items=[
                    OrderItem(
                        product_id=cart_item.product_id,
                        product_name=cart_item.product_name,
                        quantity=cart_item.quantity,
                        price_at_order=cart_item.price_at_add,
                    )
                    for cart_item in cart.items
                ],
            )
            created = self.order_repo.create(order)
            self.cart_repo.clear(cart.id)

        created.username = user.username
        logger.info("Order %s placed by user %s, total %s", created.id, user.id, created.total_amount)
        return created


class OrderQueriesUseCase:
    """Read-only, owner-scoped order lookups."""
    def __init__(self, order_repo: IOrderRepository):
        self.order_repo = order_repo

    def get_order(self, user: User, order_id: int) -> Order:
        order = self.order_repo.find_by_id_and_user(order_id, user.id)
        if not order:
            raise OrderNotFoundError(f"Order not found with id: {order_id}")
        return order

    def history(self, user: User) -> List[Order]:
        return self.order_repo.find_by_user(user.id)

    def history_paged(self, user: User, page: int = 0, size: int = 10) -> Page[Order]:
        """Newest orders first."""
        errors = validate_page_request(page, size)
        if errors:
            raise ValidationFailedError(errors)
        return self.order_repo.find_page_by_user(user.id, page, size)


class CancelOrderUseCase:
    """Lets the owner cancel an order while it is still PENDING."""
    def __init__(self, order_repo: IOrderRepository, transaction_manager: ITransactionManager):
        self.order_repo = order_repo
        self.transaction_manager = transaction_manager

    def execute(self, user: User, order_id: int) -> Order:
        with self.transaction_manager.atomic():
            order = self.order_repo.find_by_id_and_user(order_id, user.id)
            if not order:
                raise OrderNotFoundError(f"Order not found with id: {order_id}")

            if not order.status.can_transition_to(OrderStatus.CANCELLED):
                raise InvalidOrderStatusError(
                    order.id, order.status.value,
                    message=f"Cannot cancel order with status: {order.status.value}",
                )

            if not self.order_repo.update_status(order.id, OrderStatus.CANCELLED, OrderStatus.PENDING):
                current = self.order_repo.find_by_id(order.id)
                current_status = current.status.value if current else "UNKNOWN"
                raise InvalidOrderStatusError(
                    order.id, current_status,
                    message=f"Cannot cancel order with status: {current_status}",
                )

        order.status = OrderStatus.CANCELLED
        logger.info("Order %s cancelled by user %s", order.id, user.id)
        return order


class MarkOrderAsPaidUseCase:
    """
    Applies a confirmed payment: checks and decrements stock for every item,
    then moves the order from PENDING to PAID.

    The PENDING guard is the idempotency barrier against duplicate payment
    notifications. The order row and the product rows are locked for the
    whole read-check-write sequence, and the final status update is itself
    conditional on PENDING.
    """
    def __init__(self, order_repo: IOrderRepository, product_repo: IProductRepository,
                 transaction_manager: ITransactionManager):
        self.order_repo = order_repo
        self.product_repo = product_repo
        self.transaction_manager = transaction_manager

    def execute(self, order_id: int) -> Order:
        with self.transaction_manager.atomic():
            order = self.order_repo.lock_for_update(order_id)
            if not order:
                raise OrderNotFoundError(f"Order not found with id: {order_id}")

            if not order.status.can_transition_to(OrderStatus.PAID):
                raise InvalidOrderStatusError(order.id, order.status.value)

            required: Dict[int, int] = Counter()
            for item in order.items:
                required[item.product_id] += item.quantity

            products = self.product_repo.lock_for_update(sorted(required))

            # All-or-nothing: every item is checked before any stock moves.
            for product_id, quantity in required.items():
                product = products.get(product_id)
                if product is None:
                    raise ProductNotFoundError(f"Product not found with id: {product_id}")
                if not product.has_stock_for(quantity):
                    raise InsufficientStockError(
                        product_id=product_id,
                        available=product.stock_quantity,
                        requested=quantity,
                        message=(
                            f"Insufficient stock for product: {product.name}. "
                            f"Available: {product.stock_quantity}, Required: {quantity}"
                        ),
                    )

            for product_id, quantity in required.items():
                self.product_repo.decrement_stock(product_id, quantity)

            if not self.order_repo.update_status(order.id, OrderStatus.PAID, OrderStatus.PENDING):
                raise InvalidOrderStatusError(order.id, "UNKNOWN")

        order.status = OrderStatus.PAID
        logger.info("Order %s marked as PAID", order.id)
        return order


# ====================================================================
# 4. PAYMENT USE CASES
# ====================================================================

class CreatePaymentIntentUseCase:
    """Opens a payment intent at the processor for a PENDING order."""
    def __init__(self, order_repo: IOrderRepository, payment_gateway: IPaymentGateway,
                 currency: str = "usd"):
        self.order_repo = order_repo
        self.payment_gateway = payment_gateway
        self.currency = currency

    def execute(self, user: User, order_id: int) -> PaymentIntentResult:
        order = self.order_repo.find_by_id_and_user(order_id, user.id)
        if not order:
            raise OrderNotFoundError(f"Order not found with id: {order_id}")

        if not order.is_pending:
            raise InvalidOrderStatusError(order.id, order.status.value)

        intent = self.payment_gateway.create_payment_intent(
            amount=to_minor_units(order.total_amount),
            currency=self.currency,
            metadata={"orderId": str(order.id), "userId": str(user.id)},
        )
        logger.info("Payment intent %s created for order %s", intent.id, order.id)

        return PaymentIntentResult(
            client_secret=intent.client_secret,
            order_id=order.id,
            amount=order.total_amount,
            currency=self.currency,
            status=intent.status,
        )


class HandlePaymentWebhookUseCase:
    """
    Use case for payment processor notifications (webhooks).

    Only the signature check may fail the exchange. Once the event is
    authenticated, every processing failure is logged and acknowledged so the
    processor does not keep redelivering an event that was already applied.
    """
    PAYMENT_SUCCEEDED = "payment_intent.succeeded"

    PROCESSED = "processed"
    IGNORED = "ignored"
    REJECTED = "rejected"

    def __init__(self, payment_gateway: IPaymentGateway, mark_paid: MarkOrderAsPaidUseCase):
        self.payment_gateway = payment_gateway
        self.mark_paid = mark_paid

    def execute(self, payload: bytes, signature_header: str) -> str:
        # WebhookSignatureError propagates; nothing below runs for untrusted content.
        try:
            event = self.payment_gateway.construct_event(payload, signature_header)
        except InvalidWebhookPayloadError as e:
            logger.warning("Authenticated webhook payload could not be read: %s", e)
            return self.REJECTED

        if event.type != self.PAYMENT_SUCCEEDED:
            logger.info("Ignoring payment event %s of type %s", event.id, event.type)
            return self.IGNORED

        raw_order_id = event.metadata.get("orderId")
        if not raw_order_id:
            logger.warning("Payment event %s carries no orderId metadata", event.id)
            return self.IGNORED

        try:
            order_id = int(raw_order_id)
        except ValueError:
            logger.warning("Payment event %s has a malformed orderId: %r", event.id, raw_order_id)
            return self.REJECTED

        try:
            self.mark_paid.execute(order_id)
        except (NotFoundError, DomainConflictError) as e:
            logger.warning("Payment event %s for order %s not applied: %s", event.id, order_id, e)
            return self.REJECTED
        except Exception:
            logger.exception("Unexpected error applying payment event %s for order %s", event.id, order_id)
            return self.REJECTED

        logger.info("Payment succeeded for order %s (event %s)", order_id, event.id)
        return self.PROCESSED
