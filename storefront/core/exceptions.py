from typing import List, Optional


class BaseCoreError(Exception):
    """Base class for every exception raised by the Core layer."""
    def __init__(self, message="An error occurred."):
        self.message = message
        super().__init__(self.message)


# ===============================================
# NOT FOUND (absent OR owned by someone else)
# ===============================================

class NotFoundError(BaseCoreError):
    """Raised when an entity does not exist or is not visible to the caller."""
    def __init__(self, message="The requested resource was not found."):
        super().__init__(message)

class ProductNotFoundError(NotFoundError):
    pass

class CategoryNotFoundError(NotFoundError):
    pass

class CartItemNotFoundError(NotFoundError):
    pass

class OrderNotFoundError(NotFoundError):
    pass


# ===============================================
# VALIDATION
# ===============================================

class ValidationFailedError(BaseCoreError):
    """Raised for malformed or out-of-range input. Carries every message."""
    def __init__(self, messages: Optional[List[str]] = None):
        self.messages = messages or ["The supplied data is invalid."]
        super().__init__("; ".join(self.messages))


# ===============================================
# BUSINESS RULE CONFLICTS
# ===============================================

class DomainConflictError(BaseCoreError):
    """Raised when a business rule rejects the requested operation."""
    pass

class InsufficientStockError(DomainConflictError):
    """Raised when the requested quantity exceeds the available stock."""
    def __init__(self, product_id, available: int, requested: int, message=None):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        if message is None:
            message = (f"Insufficient stock for product {product_id}. "
                       f"Available: {available}, Requested: {requested}.")
        super().__init__(message)

class EmptyCartError(DomainConflictError):
    def __init__(self, message="Cannot place order with empty cart."):
        super().__init__(message)

class InvalidOrderStatusError(DomainConflictError):
    """Raised when an order is not in the status a transition requires."""
    def __init__(self, order_id, current_status, message=None):
        self.order_id = order_id
        self.current_status = current_status
        if message is None:
            message = f"Order {order_id} is not in PENDING status. Current status: {current_status}."
        super().__init__(message)

class DuplicateCategoryError(DomainConflictError):
    def __init__(self, name: str):
        super().__init__(f"Category with name '{name}' already exists.")

class CategoryInUseError(DomainConflictError):
    def __init__(self, category_id, product_count: int):
        super().__init__(
            f"Cannot delete category {category_id} with {product_count} products. "
            f"Reassign or delete products first."
        )

class ProductInUseError(DomainConflictError):
    def __init__(self, product_id):
        super().__init__(f"Cannot delete product {product_id}: it is referenced by carts or orders.")


# ===============================================
# EXTERNAL SERVICES
# ===============================================

class ExternalServiceError(BaseCoreError):
    """Raised when a collaborator outside the process fails."""
    pass

class PaymentGatewayError(ExternalServiceError):
    """Raised when the payment processor rejects or fails a request."""
    def __init__(self, message="The payment processor request failed."):
        super().__init__(message)

class WebhookSignatureError(ExternalServiceError):
    """Raised when a webhook payload cannot be authenticated."""
    def __init__(self, message="Invalid signature."):
        super().__init__(message)

class InvalidWebhookPayloadError(ExternalServiceError):
    """Raised when an authenticated webhook payload has an unexpected shape."""
    def __init__(self, message="Unreadable webhook payload."):
        super().__init__(message)
