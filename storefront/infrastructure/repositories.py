"""
Infrastructure layer: repository implementations.

Translates the abstract operations declared by the Core ports into
concrete Django ORM calls.
"""
from typing import List, Optional, Dict

from django.apps import apps
from django.db import transaction
from django.db.models import Count, F
from django.db.utils import IntegrityError
from django.utils import timezone

from storefront.core.entities import (
    Category, Product, Cart, CartItem, Order, OrderStatus, Page
)
from storefront.core.ports import (
    ICategoryRepository,
    IProductRepository,
    ICartRepository,
    IOrderRepository,
    ITransactionManager,
)
from storefront.core.exceptions import (
    CategoryNotFoundError,
    ProductNotFoundError,
    InsufficientStockError,
    DuplicateCategoryError,
)

from .mappers import CategoryMapper, ProductMapper, CartMapper, CartItemMapper, OrderMapper


# ====================================================================
# 1. REPOSITORIES (Django ORM)
# ====================================================================

def get_model(model_name):
    """Looks the Django model up lazily."""
    return apps.get_model('infrastructure', model_name)


def _slice(page: int, size: int) -> slice:
    return slice(page * size, (page + 1) * size)


class CategoryRepositoryDjango(ICategoryRepository):

    @property
    def CategoryModel(self):
        return get_model('Category')

    def _annotated(self):
        return self.CategoryModel.objects.annotate(product_count=Count('products'))

    def find_by_id(self, category_id: int) -> Optional[Category]:
        model = self._annotated().filter(pk=category_id).first()
        return CategoryMapper.to_entity(model)

    def find_all(self) -> List[Category]:
        return [CategoryMapper.to_entity(model) for model in self._annotated().order_by('name')]

    def exists_by_name(self, name: str) -> bool:
        return self.CategoryModel.objects.filter(name=name).exists()

    @transaction.atomic
    def save(self, category: Category) -> Category:
        model = None
        if category.id:
            try:
                model = self.CategoryModel.objects.get(pk=category.id)
            except self.CategoryModel.DoesNotExist:
                raise CategoryNotFoundError(f"Category not found with id: {category.id}")

        model = CategoryMapper.to_model(category, model)
        try:
            # Savepoint: the name check in the use case can race a concurrent insert.
            with transaction.atomic():
                model.save()
        except IntegrityError:
            raise DuplicateCategoryError(category.name)
        return self.find_by_id(model.pk)

    def delete(self, category_id: int) -> None:
        self.CategoryModel.objects.filter(pk=category_id).delete()


class ProductRepositoryDjango(IProductRepository):

    @property
    def ProductModel(self):
        return get_model('Product')

    def _base(self):
        return self.ProductModel.objects.select_related('category')

    def find_by_id(self, product_id: int) -> Optional[Product]:
        return ProductMapper.to_entity(self._base().filter(pk=product_id).first())

    def find_all(self) -> List[Product]:
        return [ProductMapper.to_entity(model) for model in self._base().order_by('id')]

    def find_page(self, page: int, size: int, sort_by: str, descending: bool,
                  category_id: Optional[int] = None) -> Page[Product]:
        qs = self._base()
        if category_id is not None:
            qs = qs.filter(category_id=category_id)

        ordering = f"-{sort_by}" if descending else sort_by
        # id breaks ties so that pages never overlap
        qs = qs.order_by(ordering, 'id')

        return Page(
            content=[ProductMapper.to_entity(model) for model in qs[_slice(page, size)]],
            page=page,
            size=size,
            total_elements=qs.count(),
        )

    def count_by_category(self, category_id: int) -> int:
        return self.ProductModel.objects.filter(category_id=category_id).count()

    def lock_for_update(self, product_ids: List[int]) -> Dict[int, Product]:
        # Rows are locked in primary key order to keep lock acquisition consistent.
        locked = (
            self.ProductModel.objects
            .select_for_update()
            .filter(pk__in=product_ids)
            .order_by('pk')
        )
        return {model.pk: ProductMapper.to_entity(model) for model in locked}

    def decrement_stock(self, product_id: int, quantity: int) -> None:
        """Atomic decrement that refuses to take the stock below zero."""
        updated = (
            self.ProductModel.objects
            .filter(pk=product_id, stock_quantity__gte=quantity)
            .update(stock_quantity=F('stock_quantity') - quantity, updated_at=timezone.now())
        )
        if not updated:
            current = self.ProductModel.objects.filter(pk=product_id).values_list('stock_quantity', flat=True).first()
            if current is None:
                raise ProductNotFoundError(f"Product not found with id: {product_id}")
            raise InsufficientStockError(product_id, current, quantity)

    def is_referenced(self, product_id: int) -> bool:
        return (
            get_model('CartItem').objects.filter(product_id=product_id).exists()
            or get_model('OrderItem').objects.filter(product_id=product_id).exists()
        )

    @transaction.atomic
    def save(self, product: Product) -> Product:
        model = None
        if product.id:
            try:
                model = self.ProductModel.objects.get(pk=product.id)
            except self.ProductModel.DoesNotExist:
                raise ProductNotFoundError(f"Product not found with id: {product.id}")

        model = ProductMapper.to_model(product, model)
        model.save()
        return self.find_by_id(model.pk)

    def delete(self, product_id: int) -> None:
        self.ProductModel.objects.filter(pk=product_id).delete()


class CartRepositoryDjango(ICartRepository):

    @property
    def CartModel(self):
        return get_model('Cart')

    @property
    def CartItemModel(self):
        return get_model('CartItem')

    def _base(self):
        return self.CartModel.objects.select_related('user').prefetch_related('items__product')

    def find_by_user(self, user_id: int) -> Optional[Cart]:
        return CartMapper.to_entity(self._base().filter(user_id=user_id).first())

    def get_or_create(self, user_id: int) -> Cart:
        if not self.CartModel.objects.filter(user_id=user_id).exists():
            try:
                # Savepoint: a concurrent first access may have created it already.
                with transaction.atomic():
                    self.CartModel.objects.create(user_id=user_id)
            except IntegrityError:
                pass
        return self.find_by_user(user_id)

    def find_item_for_user(self, cart_item_id: int, user_id: int) -> Optional[CartItem]:
        model = (
            self.CartItemModel.objects
            .select_related('product')
            .filter(pk=cart_item_id, cart__user_id=user_id)
            .first()
        )
        return CartItemMapper.to_entity(model)

    def add_item(self, cart_id: int, item: CartItem) -> CartItem:
        model = self.CartItemModel.objects.create(
            cart_id=cart_id,
            product_id=item.product_id,
            quantity=item.quantity,
            price_at_add=item.price_at_add,
        )
        return CartItemMapper.to_entity(model)

    def set_item_quantity(self, cart_item_id: int, quantity: int) -> None:
        self.CartItemModel.objects.filter(pk=cart_item_id).update(quantity=quantity)

    def delete_item(self, cart_item_id: int) -> None:
        self.CartItemModel.objects.filter(pk=cart_item_id).delete()

    def clear(self, cart_id: int) -> None:
        self.CartItemModel.objects.filter(cart_id=cart_id).delete()


class OrderRepositoryDjango(IOrderRepository):

    @property
    def OrderModel(self):
        return get_model('Order')

    @property
    def OrderItemModel(self):
        return get_model('OrderItem')

    def _base(self):
        return self.OrderModel.objects.select_related('user').prefetch_related('items')

    @transaction.atomic
    def create(self, order: Order) -> Order:
        model = self.OrderModel.objects.create(
            user_id=order.user_id,
            status=order.status.value,
            total_amount=order.total_amount,
        )
        self.OrderItemModel.objects.bulk_create([
            self.OrderItemModel(
                order=model,
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                price_at_order=item.price_at_order,
            )
            for item in order.items
        ])
        return self.find_by_id(model.pk)

    def find_by_id(self, order_id: int) -> Optional[Order]:
        return OrderMapper.to_entity(self._base().filter(pk=order_id).first())

    def find_by_id_and_user(self, order_id: int, user_id: int) -> Optional[Order]:
        return OrderMapper.to_entity(self._base().filter(pk=order_id, user_id=user_id).first())

    def lock_for_update(self, order_id: int) -> Optional[Order]:
        locked = self.OrderModel.objects.select_for_update().filter(pk=order_id).values_list('pk', flat=True)
        if not list(locked):
            return None
        return self.find_by_id(order_id)

    def find_by_user(self, user_id: int) -> List[Order]:
        qs = self._base().filter(user_id=user_id).order_by('-order_date', '-id')
        return [OrderMapper.to_entity(model) for model in qs]

    def find_page_by_user(self, user_id: int, page: int, size: int) -> Page[Order]:
        qs = self._base().filter(user_id=user_id).order_by('-order_date', '-id')
        return Page(
            content=[OrderMapper.to_entity(model) for model in qs[_slice(page, size)]],
            page=page,
            size=size,
            total_elements=qs.count(),
        )

    def update_status(self, order_id: int, new_status: OrderStatus,
                      expected_status: OrderStatus) -> bool:
        updated = (
            self.OrderModel.objects
            .filter(pk=order_id, status=expected_status.value)
            .update(status=new_status.value, updated_at=timezone.now())
        )
        return updated > 0


# ====================================================================
# 2. UNIT OF WORK
# ====================================================================

class DjangoTransactionManager(ITransactionManager):
    """Wraps django.db.transaction so the Core never imports Django."""

    def atomic(self):
        return transaction.atomic()
