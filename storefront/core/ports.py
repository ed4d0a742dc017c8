# storefront/core/ports.py
"""
Ports (Protocols) of the clean architecture.

These protocols are the contract the Infrastructure layer (repositories,
gateways) MUST honour to be plugged into the Core use cases.
"""

from typing import Protocol, List, Optional, Dict, ContextManager
from abc import abstractmethod

from storefront.core.entities import (
    Product, Category, Cart, CartItem, Order, OrderStatus, Page, PaymentIntent, PaymentEvent
)


# ====================================================================
# 1. REPOSITORIES (persistence ports)
# ====================================================================

class ICategoryRepository(Protocol):
    """Persistence of categories."""

    @abstractmethod
    def find_by_id(self, category_id: int) -> Optional[Category]: ...

    @abstractmethod
    def find_all(self) -> List[Category]: ...

    @abstractmethod
    def exists_by_name(self, name: str) -> bool: ...

    @abstractmethod
    def save(self, category: Category) -> Category: ...

    @abstractmethod
    def delete(self, category_id: int) -> None: ...


class IProductRepository(Protocol):
    """Persistence and lookup of products, including stock mutation."""

    @abstractmethod
    def find_by_id(self, product_id: int) -> Optional[Product]: ...

    @abstractmethod
    def find_all(self) -> List[Product]: ...

    @abstractmethod
    def find_page(self, page: int, size: int, sort_by: str, descending: bool,
                  category_id: Optional[int] = None) -> Page[Product]: ...

    @abstractmethod
    def count_by_category(self, category_id: int) -> int: ...

    @abstractmethod
    def lock_for_update(self, product_ids: List[int]) -> Dict[int, Product]:
        """
        Locks the product rows until the surrounding transaction ends and
        returns their current state.
        """
        ...

    @abstractmethod
    def decrement_stock(self, product_id: int, quantity: int) -> None: ...

    @abstractmethod
    def is_referenced(self, product_id: int) -> bool: ...

    @abstractmethod
    def save(self, product: Product) -> Product: ...

    @abstractmethod
    def delete(self, product_id: int) -> None: ...


class ICartRepository(Protocol):
    """Persistence of the single active cart of each user."""

    @abstractmethod
    def get_or_create(self, user_id: int) -> Cart: ...

    @abstractmethod
    def find_by_user(self, user_id: int) -> Optional[Cart]: ...

    @abstractmethod
    def find_item_for_user(self, cart_item_id: int, user_id: int) -> Optional[CartItem]:
        """Single query on (item id AND cart owner)."""
        ...

    @abstractmethod
    def add_item(self, cart_id: int, item: CartItem) -> CartItem: ...

    @abstractmethod
    def set_item_quantity(self, cart_item_id: int, quantity: int) -> None: ...

    @abstractmethod
    def delete_item(self, cart_item_id: int) -> None: ...

    @abstractmethod
    def clear(self, cart_id: int) -> None: ...


class IOrderRepository(Protocol):
    """Persistence and lookup of orders."""

    @abstractmethod
    def create(self, order: Order) -> Order:
        """Persists the order and all of its items."""
        ...

    @abstractmethod
    def find_by_id(self, order_id: int) -> Optional[Order]: ...

    @abstractmethod
    def find_by_id_and_user(self, order_id: int, user_id: int) -> Optional[Order]: ...

    @abstractmethod
    def lock_for_update(self, order_id: int) -> Optional[Order]: ...

    @abstractmethod
    def find_by_user(self, user_id: int) -> List[Order]: ...

    @abstractmethod
    def find_page_by_user(self, user_id: int, page: int, size: int) -> Page[Order]: ...

    @abstractmethod
    def update_status(self, order_id: int, new_status: OrderStatus,
                      expected_status: OrderStatus) -> bool:
        """
        Sets the status only if the stored status still equals expected_status.
        Returns False when no row matched.
        """
        ...


class ITransactionManager(Protocol):
    """Unit of work: everything inside atomic() commits or rolls back together."""

    @abstractmethod
    def atomic(self) -> ContextManager: ...


# ====================================================================
# 2. GATEWAYS (external service ports)
# ====================================================================

class IPaymentGateway(Protocol):
    """External payment processor."""

    @abstractmethod
    def create_payment_intent(self, amount: int, currency: str,
                              metadata: Dict[str, str]) -> PaymentIntent: ...

    @abstractmethod
    def construct_event(self, payload: bytes, signature_header: str) -> PaymentEvent:
        """Authenticates and parses a webhook. Raises WebhookSignatureError."""
        ...
