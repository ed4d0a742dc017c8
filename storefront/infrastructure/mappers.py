"""
Mappers converting between:
1. Django ORM models
2. Domain entities (storefront.core.entities)
"""
from typing import Any, Optional, Type

from django.apps import apps
from django.db import models

from storefront.core.entities import (
    Category as CategoryEntity,
    Product as ProductEntity,
    Cart as CartEntity,
    CartItem as CartItemEntity,
    Order as OrderEntity,
    OrderItem as OrderItemEntity,
    OrderStatus,
)


def get_model(app_label: str, model_name: str):
    """Returns a Django model lazily, avoiding import cycles."""
    return apps.get_model(app_label, model_name)


class BaseMapper:

    @classmethod
    def model_class(cls) -> Type[models.Model]:
        raise NotImplementedError


# ====================================================================
# CATALOG MAPPERS
# ====================================================================

class CategoryMapper(BaseMapper):

    @classmethod
    def model_class(cls) -> Type[models.Model]:
        return get_model('infrastructure', 'Category')

    @staticmethod
    def to_entity(model: Any) -> Optional[CategoryEntity]:
        if not model: return None
        # Querysets annotate product_count; a freshly saved row is counted directly.
        product_count = getattr(model, 'product_count', None)
        if product_count is None:
            product_count = model.products.count() if model.pk else 0
        return CategoryEntity(
            id=model.id,
            name=model.name,
            description=model.description,
            image_url=model.image_url,
            product_count=product_count,
        )

    @classmethod
    def to_model(cls, entity: CategoryEntity, model: Optional[Any] = None) -> Any:
        if not model:
            model = cls.model_class()()
        model.name = entity.name
        model.description = entity.description
        model.image_url = entity.image_url
        return model


class ProductMapper(BaseMapper):

    @classmethod
    def model_class(cls) -> Type[models.Model]:
        return get_model('infrastructure', 'Product')

    @staticmethod
    def to_entity(model: Any) -> Optional[ProductEntity]:
        if not model: return None
        return ProductEntity(
            id=model.id,
            name=model.name,
            price=model.price,
            stock_quantity=model.stock_quantity,
            category_id=model.category_id,
            category_name=model.category.name if model.category_id else None,
            image_url=model.image_url,
            video_url=model.video_url,
            created_at=model.created_at,
        )

    @classmethod
    def to_model(cls, entity: ProductEntity, model: Optional[Any] = None) -> Any:
        if not model:
            model = cls.model_class()()
        model.name = entity.name
        model.price = entity.price
        model.stock_quantity = entity.stock_quantity
        model.category_id = entity.category_id
        model.image_url = entity.image_url
        model.video_url = entity.video_url
        return model


# ====================================================================
# CART MAPPERS
# ====================================================================

class CartItemMapper(BaseMapper):

    @staticmethod
    def to_entity(model: Any) -> Optional[CartItemEntity]:
        if not model: return None
        return CartItemEntity(
            id=model.id,
            product_id=model.product_id,
            product_name=model.product.name,
            quantity=model.quantity,
            price_at_add=model.price_at_add,
        )


class CartMapper(BaseMapper):

    @staticmethod
    def to_entity(model: Any) -> Optional[CartEntity]:
        """Expects items__product to be prefetched."""
        if not model: return None
        return CartEntity(
            id=model.id,
            user_id=model.user_id,
            username=model.user.get_username(),
            items=[CartItemMapper.to_entity(item) for item in model.items.all()],
        )


# ====================================================================
# ORDER MAPPERS
# ====================================================================

class OrderItemMapper(BaseMapper):

    @staticmethod
    def to_entity(model: Any) -> Optional[OrderItemEntity]:
        if not model: return None
        return OrderItemEntity(
            id=model.id,
            product_id=model.product_id,
            product_name=model.product_name,
            quantity=model.quantity,
            price_at_order=model.price_at_order,
        )


class OrderMapper(BaseMapper):

    @staticmethod
    def to_entity(model: Any) -> Optional[OrderEntity]:
        if not model: return None
        return OrderEntity(
            id=model.id,
            user_id=model.user_id,
            username=model.user.get_username(),
            status=OrderStatus(model.status),
            total_amount=model.total_amount,
            order_date=model.order_date,
            items=[OrderItemMapper.to_entity(item) for item in model.items.all()],
        )

