from dataclasses import dataclass, field
from decimal import Decimal
from datetime import datetime
from enum import Enum
from typing import List, Optional, Dict, Generic, TypeVar

T = TypeVar('T')

# ====================================================================
# CORE ENTITIES
# Plain business objects. No framework imports allowed here.
# ====================================================================

class OrderStatus(str, Enum):
    """Lifecycle of an order. Only PENDING orders may be paid or cancelled."""
    PENDING = "PENDING"
    PAID = "PAID"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"

    def can_transition_to(self, target: "OrderStatus") -> bool:
        return target in _ALLOWED_TRANSITIONS.get(self, ())


_ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING: (OrderStatus.PAID, OrderStatus.CANCELLED),
    OrderStatus.PAID: (OrderStatus.PROCESSING,),
    OrderStatus.PROCESSING: (OrderStatus.SHIPPED,),
    OrderStatus.SHIPPED: (OrderStatus.DELIVERED,),
}


@dataclass
class User:
    """Reference to the authenticated customer owning carts and orders."""
    id: int
    username: str = ""


@dataclass
class Category:
    """Product category."""
    name: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    product_count: int = 0
    id: Optional[int] = None


@dataclass
class Product:
    """Catalog product. The live price is only a source for snapshots."""
    name: str
    price: Decimal
    stock_quantity: int
    category_id: int
    category_name: Optional[str] = None
    image_url: Optional[str] = None
    video_url: Optional[str] = None
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    def has_stock_for(self, quantity: int) -> bool:
        return self.stock_quantity >= quantity


@dataclass
class CartItem:
    """A line in the cart. price_at_add is frozen when the line is created."""
    product_id: int
    quantity: int
    price_at_add: Decimal
    product_name: str = ""
    id: Optional[int] = None

    @property
    def subtotal(self) -> Decimal:
        return self.price_at_add * self.quantity


@dataclass
class Cart:
    """Per-user staging area of intended purchases."""
    user_id: int
    username: str = ""
    id: Optional[int] = None
    items: List[CartItem] = field(default_factory=list)

    @property
    def total_amount(self) -> Decimal:
        """Sum of item subtotals."""
        return sum((item.subtotal for item in self.items), Decimal('0.00'))

    @property
    def total_items(self) -> int:
        """Sum of item quantities."""
        return sum(item.quantity for item in self.items)

    @property
    def is_empty(self) -> bool:
        return not self.items

    def find_item_by_product(self, product_id: int) -> Optional[CartItem]:
        return next((item for item in self.items if item.product_id == product_id), None)


@dataclass
class OrderItem:
    """Snapshot of a cart line at checkout time (immutable)."""
    product_id: int
    quantity: int
    price_at_order: Decimal
    product_name: str = ""
    id: Optional[int] = None

    @property
    def subtotal(self) -> Decimal:
        return self.price_at_order * self.quantity


@dataclass
class Order:
    """Completed checkout. Only the status changes after creation."""
    user_id: int
    total_amount: Decimal
    status: OrderStatus = OrderStatus.PENDING
    items: List[OrderItem] = field(default_factory=list)
    username: str = ""
    order_date: Optional[datetime] = None
    id: Optional[int] = None

    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def is_pending(self) -> bool:
        return self.status == OrderStatus.PENDING


@dataclass
class PaymentIntent:
    """Processor-side handle of an in-progress payment."""
    id: str
    client_secret: str
    amount: int  # minor units
    currency: str
    status: str
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class PaymentIntentResult:
    """What the client needs to confirm the payment of an order."""
    client_secret: str
    order_id: int
    amount: Decimal
    currency: str
    status: str


@dataclass
class PaymentEvent:
    """Verified webhook notification from the payment processor."""
    id: str
    type: str
    object_id: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class Page(Generic[T]):
    """A slice of a sorted result set, 0-based."""
    content: List[T]
    page: int
    size: int
    total_elements: int

    @property
    def total_pages(self) -> int:
        if self.size <= 0:
            return 0
        return -(-self.total_elements // self.size)

    @property
    def first(self) -> bool:
        return self.page == 0

    @property
    def last(self) -> bool:
        return self.page + 1 >= self.total_pages
