# storefront/core/tests.py

import unittest
from decimal import Decimal
from unittest.mock import Mock, MagicMock

from storefront.core.use_cases import (
    ManageCartUseCase,
    PlaceOrderUseCase,
    OrderQueriesUseCase,
    CancelOrderUseCase,
    MarkOrderAsPaidUseCase,
    CreatePaymentIntentUseCase,
    HandlePaymentWebhookUseCase,
    ManageCategoriesUseCase,
    ManageProductsUseCase,
    to_minor_units,
    MAX_PAGE_INDEX,
)
from storefront.core.entities import (
    User, Category, Product, Cart, CartItem, Order, OrderItem, OrderStatus, Page,
    PaymentIntent, PaymentEvent,
)
from storefront.core.exceptions import (
    ProductNotFoundError,
    CartItemNotFoundError,
    OrderNotFoundError,
    ValidationFailedError,
    InsufficientStockError,
    EmptyCartError,
    InvalidOrderStatusError,
    DuplicateCategoryError,
    CategoryInUseError,
    ProductInUseError,
    PaymentGatewayError,
    WebhookSignatureError,
    InvalidWebhookPayloadError,
)


def make_transaction_manager():
    """atomic() returns a context manager that does nothing."""
    transaction_manager = Mock()
    transaction_manager.atomic.return_value = MagicMock()
    return transaction_manager


class TestEntities(unittest.TestCase):

    def test_cart_totals_are_derived_from_items(self):
        cart = Cart(user_id=1, items=[
            CartItem(product_id=1, quantity=2, price_at_add=Decimal('10.00')),
            CartItem(product_id=2, quantity=1, price_at_add=Decimal('5.50')),
        ])
        self.assertEqual(cart.total_amount, Decimal('25.50'))
        self.assertEqual(cart.total_items, 3)

    def test_only_pending_can_be_paid_or_cancelled(self):
        self.assertTrue(OrderStatus.PENDING.can_transition_to(OrderStatus.PAID))
        self.assertTrue(OrderStatus.PENDING.can_transition_to(OrderStatus.CANCELLED))
        self.assertFalse(OrderStatus.PAID.can_transition_to(OrderStatus.CANCELLED))
        self.assertFalse(OrderStatus.CANCELLED.can_transition_to(OrderStatus.PAID))
        self.assertTrue(OrderStatus.SHIPPED.can_transition_to(OrderStatus.DELIVERED))

    def test_page_metadata(self):
        page = Page(content=[1, 2], page=1, size=2, total_elements=5)
        self.assertEqual(page.total_pages, 3)
        self.assertFalse(page.first)
        self.assertFalse(page.last)
        self.assertTrue(Page(content=[], page=0, size=10, total_elements=0).last)

    def test_minor_units_round_half_up(self):
        self.assertEqual(to_minor_units(Decimal('49.99')), 4999)
        self.assertEqual(to_minor_units(Decimal('10.005')), 1001)
        self.assertEqual(to_minor_units(Decimal('0.01')), 1)


class TestManageCart(unittest.TestCase):

    def setUp(self):
        """Mocks stand in for the repositories."""
        self.cart_repo_mock = Mock()
        self.product_repo_mock = Mock()
        self.use_case = ManageCartUseCase(
            cart_repo=self.cart_repo_mock,
            product_repo=self.product_repo_mock,
            transaction_manager=make_transaction_manager(),
        )
        self.user = User(id=1, username='alice')
        self.product = Product(id=7, name='Ring', price=Decimal('100.00'), stock_quantity=5, category_id=1)

    def test_add_item_to_empty_cart_captures_price(self):
        # ARRANGE
        self.cart_repo_mock.get_or_create.return_value = Cart(user_id=1, id=3)
        self.product_repo_mock.find_by_id.return_value = self.product

        # ACT
        self.use_case.add_item(self.user, product_id=7, quantity=2)

        # ASSERT
        cart_id, item = self.cart_repo_mock.add_item.call_args[0]
        self.assertEqual(cart_id, 3)
        self.assertEqual(item.product_id, 7)
        self.assertEqual(item.quantity, 2)
        self.assertEqual(item.price_at_add, Decimal('100.00'))
        self.cart_repo_mock.set_item_quantity.assert_not_called()

    def test_add_existing_product_accumulates_instead_of_duplicating(self):
        existing = CartItem(id=11, product_id=7, quantity=2, price_at_add=Decimal('90.00'))
        self.cart_repo_mock.get_or_create.return_value = Cart(user_id=1, id=3, items=[existing])
        self.product_repo_mock.find_by_id.return_value = self.product

        self.use_case.add_item(self.user, product_id=7, quantity=3)

        self.cart_repo_mock.set_item_quantity.assert_called_once_with(11, 5)
        self.cart_repo_mock.add_item.assert_not_called()

    def test_add_beyond_stock_fails_without_writing(self):
        existing = CartItem(id=11, product_id=7, quantity=4, price_at_add=Decimal('100.00'))
        self.cart_repo_mock.get_or_create.return_value = Cart(user_id=1, id=3, items=[existing])
        self.product_repo_mock.find_by_id.return_value = self.product

        with self.assertRaises(InsufficientStockError) as ctx:
            self.use_case.add_item(self.user, product_id=7, quantity=2)

        self.assertIn("Already in cart: 4", ctx.exception.message)
        self.cart_repo_mock.set_item_quantity.assert_not_called()
        self.cart_repo_mock.add_item.assert_not_called()

    def test_add_unknown_product_is_not_found(self):
        self.cart_repo_mock.get_or_create.return_value = Cart(user_id=1, id=3)
        self.product_repo_mock.find_by_id.return_value = None

        with self.assertRaises(ProductNotFoundError):
            self.use_case.add_item(self.user, product_id=99, quantity=1)

    def test_non_positive_quantity_is_rejected(self):
        with self.assertRaises(ValidationFailedError):
            self.use_case.add_item(self.user, product_id=7, quantity=0)
        with self.assertRaises(ValidationFailedError):
            self.use_case.update_item_quantity(self.user, cart_item_id=11, quantity=-1)
        self.cart_repo_mock.get_or_create.assert_not_called()

    def test_update_foreign_item_is_not_found(self):
        self.cart_repo_mock.find_item_for_user.return_value = None

        with self.assertRaises(CartItemNotFoundError):
            self.use_case.update_item_quantity(self.user, cart_item_id=11, quantity=2)

        self.cart_repo_mock.find_item_for_user.assert_called_once_with(11, 1)
        self.cart_repo_mock.set_item_quantity.assert_not_called()

    def test_remove_item_returns_fresh_cart(self):
        self.cart_repo_mock.find_item_for_user.return_value = CartItem(
            id=11, product_id=7, quantity=1, price_at_add=Decimal('1.00')
        )
        self.cart_repo_mock.get_or_create.return_value = Cart(user_id=1, id=3, items=[])

        cart = self.use_case.remove_item(self.user, cart_item_id=11)

        self.cart_repo_mock.delete_item.assert_called_once_with(11)
        self.assertTrue(cart.is_empty)
        self.assertEqual(cart.username, 'alice')

    def test_clear_cart_is_idempotent(self):
        self.cart_repo_mock.find_by_user.return_value = None
        self.use_case.clear_cart(self.user)
        self.cart_repo_mock.clear.assert_not_called()


class TestPlaceOrder(unittest.TestCase):

    def setUp(self):
        self.cart_repo_mock = Mock()
        self.order_repo_mock = Mock()
        self.use_case = PlaceOrderUseCase(
            cart_repo=self.cart_repo_mock,
            order_repo=self.order_repo_mock,
            transaction_manager=make_transaction_manager(),
        )
        self.user = User(id=1, username='alice')

    def test_empty_cart_creates_no_order(self):
        self.cart_repo_mock.find_by_user.return_value = Cart(user_id=1, id=3, items=[])

        with self.assertRaises(EmptyCartError):
            self.use_case.execute(self.user)

        self.order_repo_mock.create.assert_not_called()

    def test_missing_cart_is_treated_as_empty(self):
        self.cart_repo_mock.find_by_user.return_value = None

        with self.assertRaises(EmptyCartError):
            self.use_case.execute(self.user)

    def test_order_snapshots_cart_and_clears_it(self):
        # ARRANGE
        self.cart_repo_mock.find_by_user.return_value = Cart(user_id=1, id=3, items=[
            CartItem(product_id=7, product_name='Ring', quantity=2, price_at_add=Decimal('100.00')),
            CartItem(product_id=8, product_name='Chain', quantity=1, price_at_add=Decimal('49.90')),
        ])
        self.order_repo_mock.create.side_effect = lambda order: order

        # ACT
        order = self.use_case.execute(self.user)

        # ASSERT
        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertEqual(order.total_amount, Decimal('249.90'))
        self.assertEqual([i.price_at_order for i in order.items], [Decimal('100.00'), Decimal('49.90')])
        self.assertEqual(sum(i.subtotal for i in order.items), order.total_amount)
        self.cart_repo_mock.clear.assert_called_once_with(3)


class TestOrderQueries(unittest.TestCase):

    def test_foreign_order_is_not_found(self):
        order_repo_mock = Mock()
        order_repo_mock.find_by_id_and_user.return_value = None

        with self.assertRaises(OrderNotFoundError):
            OrderQueriesUseCase(order_repo_mock).get_order(User(id=2), 5)

        order_repo_mock.find_by_id_and_user.assert_called_once_with(5, 2)

    def test_paged_history_validates_range(self):
        with self.assertRaises(ValidationFailedError) as ctx:
            OrderQueriesUseCase(Mock()).history_paged(User(id=2), page=-1, size=0)
        self.assertEqual(len(ctx.exception.messages), 2)

    def test_paged_history_rejects_page_beyond_cap(self):
        order_repo_mock = Mock()

        with self.assertRaises(ValidationFailedError):
            OrderQueriesUseCase(order_repo_mock).history_paged(User(id=2), page=MAX_PAGE_INDEX + 1, size=10)

        order_repo_mock.find_page_by_user.assert_not_called()


class TestCancelOrder(unittest.TestCase):

    def setUp(self):
        self.order_repo_mock = Mock()
        self.use_case = CancelOrderUseCase(self.order_repo_mock, make_transaction_manager())
        self.user = User(id=1)

    def test_cancel_pending_order(self):
        self.order_repo_mock.find_by_id_and_user.return_value = Order(id=5, user_id=1, total_amount=Decimal('1'))
        self.order_repo_mock.update_status.return_value = True

        order = self.use_case.execute(self.user, 5)

        self.assertEqual(order.status, OrderStatus.CANCELLED)
        self.order_repo_mock.update_status.assert_called_once_with(5, OrderStatus.CANCELLED, OrderStatus.PENDING)

    def test_cancel_twice_conflicts(self):
        self.order_repo_mock.find_by_id_and_user.return_value = Order(
            id=5, user_id=1, total_amount=Decimal('1'), status=OrderStatus.CANCELLED
        )

        with self.assertRaises(InvalidOrderStatusError) as ctx:
            self.use_case.execute(self.user, 5)

        self.assertEqual(ctx.exception.message, "Cannot cancel order with status: CANCELLED")
        self.order_repo_mock.update_status.assert_not_called()


class TestMarkOrderAsPaid(unittest.TestCase):

    def setUp(self):
        self.order_repo_mock = Mock()
        self.product_repo_mock = Mock()
        self.use_case = MarkOrderAsPaidUseCase(
            self.order_repo_mock, self.product_repo_mock, make_transaction_manager()
        )
        self.order = Order(id=5, user_id=1, total_amount=Decimal('300.00'), items=[
            OrderItem(product_id=8, quantity=1, price_at_order=Decimal('100.00')),
            OrderItem(product_id=7, quantity=2, price_at_order=Decimal('100.00')),
        ])

    def _products(self, stock_7, stock_8):
        return {
            7: Product(id=7, name='Ring', price=Decimal('100.00'), stock_quantity=stock_7, category_id=1),
            8: Product(id=8, name='Chain', price=Decimal('100.00'), stock_quantity=stock_8, category_id=1),
        }

    def test_decrements_stock_and_marks_paid(self):
        self.order_repo_mock.lock_for_update.return_value = self.order
        self.product_repo_mock.lock_for_update.return_value = self._products(5, 5)
        self.order_repo_mock.update_status.return_value = True

        order = self.use_case.execute(5)

        self.assertEqual(order.status, OrderStatus.PAID)
        # products are locked in id order
        self.product_repo_mock.lock_for_update.assert_called_once_with([7, 8])
        self.product_repo_mock.decrement_stock.assert_any_call(7, 2)
        self.product_repo_mock.decrement_stock.assert_any_call(8, 1)

    def test_insufficient_stock_decrements_nothing(self):
        self.order_repo_mock.lock_for_update.return_value = self.order
        self.product_repo_mock.lock_for_update.return_value = self._products(5, 0)

        with self.assertRaises(InsufficientStockError) as ctx:
            self.use_case.execute(5)

        self.assertIn("Chain", ctx.exception.message)
        self.product_repo_mock.decrement_stock.assert_not_called()
        self.order_repo_mock.update_status.assert_not_called()

    def test_second_application_is_rejected(self):
        self.order.status = OrderStatus.PAID
        self.order_repo_mock.lock_for_update.return_value = self.order

        with self.assertRaises(InvalidOrderStatusError):
            self.use_case.execute(5)

        self.product_repo_mock.decrement_stock.assert_not_called()

    def test_missing_order_is_not_found(self):
        self.order_repo_mock.lock_for_update.return_value = None
        with self.assertRaises(OrderNotFoundError):
            self.use_case.execute(404)


class TestCreatePaymentIntent(unittest.TestCase):

    def setUp(self):
        self.order_repo_mock = Mock()
        self.gateway_mock = Mock()
        self.use_case = CreatePaymentIntentUseCase(self.order_repo_mock, self.gateway_mock, currency='usd')
        self.user = User(id=1)

    def test_creates_intent_in_minor_units(self):
        self.order_repo_mock.find_by_id_and_user.return_value = Order(
            id=5, user_id=1, total_amount=Decimal('249.90')
        )
        self.gateway_mock.create_payment_intent.return_value = PaymentIntent(
            id='pi_1', client_secret='pi_1_secret', amount=24990, currency='usd', status='requires_payment_method'
        )

        result = self.use_case.execute(self.user, 5)

        self.gateway_mock.create_payment_intent.assert_called_once_with(
            amount=24990, currency='usd', metadata={'orderId': '5', 'userId': '1'}
        )
        self.assertEqual(result.client_secret, 'pi_1_secret')
        self.assertEqual(result.amount, Decimal('249.90'))

    def test_paid_order_conflicts(self):
        self.order_repo_mock.find_by_id_and_user.return_value = Order(
            id=5, user_id=1, total_amount=Decimal('1'), status=OrderStatus.PAID
        )
        with self.assertRaises(InvalidOrderStatusError):
            self.use_case.execute(self.user, 5)
        self.gateway_mock.create_payment_intent.assert_not_called()

    def test_gateway_failure_propagates(self):
        self.order_repo_mock.find_by_id_and_user.return_value = Order(id=5, user_id=1, total_amount=Decimal('1'))
        self.gateway_mock.create_payment_intent.side_effect = PaymentGatewayError("timeout")
        with self.assertRaises(PaymentGatewayError):
            self.use_case.execute(self.user, 5)


class TestHandlePaymentWebhook(unittest.TestCase):

    def setUp(self):
        self.gateway_mock = Mock()
        self.mark_paid_mock = Mock()
        self.use_case = HandlePaymentWebhookUseCase(self.gateway_mock, self.mark_paid_mock)

    def _event(self, event_type='payment_intent.succeeded', **metadata):
        return PaymentEvent(id='evt_1', type=event_type, object_id='pi_1', metadata=metadata)

    def test_bad_signature_propagates(self):
        self.gateway_mock.construct_event.side_effect = WebhookSignatureError()
        with self.assertRaises(WebhookSignatureError):
            self.use_case.execute(b'{}', 'bad')
        self.mark_paid_mock.execute.assert_not_called()

    def test_unreadable_authenticated_payload_is_acknowledged(self):
        # ARRANGE
        self.gateway_mock.construct_event.side_effect = InvalidWebhookPayloadError("metadata must be an object")

        # ACT
        with self.assertLogs('storefront.core.use_cases', level='WARNING'):
            outcome = self.use_case.execute(b'{}', 'sig')

        # ASSERT
        self.assertEqual(outcome, HandlePaymentWebhookUseCase.REJECTED)
        self.mark_paid_mock.execute.assert_not_called()

    def test_succeeded_event_marks_order_paid(self):
        self.gateway_mock.construct_event.return_value = self._event(orderId='5')
        self.assertEqual(self.use_case.execute(b'{}', 'sig'), HandlePaymentWebhookUseCase.PROCESSED)
        self.mark_paid_mock.execute.assert_called_once_with(5)

    def test_other_event_types_are_ignored(self):
        self.gateway_mock.construct_event.return_value = self._event('payment_intent.created', orderId='5')
        self.assertEqual(self.use_case.execute(b'{}', 'sig'), HandlePaymentWebhookUseCase.IGNORED)
        self.mark_paid_mock.execute.assert_not_called()

    def test_duplicate_delivery_is_acknowledged(self):
        self.gateway_mock.construct_event.return_value = self._event(orderId='5')
        self.mark_paid_mock.execute.side_effect = InvalidOrderStatusError(5, 'PAID')
        self.assertEqual(self.use_case.execute(b'{}', 'sig'), HandlePaymentWebhookUseCase.REJECTED)

    def test_malformed_order_id_is_acknowledged(self):
        self.gateway_mock.construct_event.return_value = self._event(orderId='abc')
        self.assertEqual(self.use_case.execute(b'{}', 'sig'), HandlePaymentWebhookUseCase.REJECTED)
        self.mark_paid_mock.execute.assert_not_called()

    def test_unexpected_error_is_logged_and_acknowledged(self):
        self.gateway_mock.construct_event.return_value = self._event(orderId='5')
        self.mark_paid_mock.execute.side_effect = RuntimeError("db down")
        with self.assertLogs('storefront.core.use_cases', level='ERROR'):
            self.assertEqual(self.use_case.execute(b'{}', 'sig'), HandlePaymentWebhookUseCase.REJECTED)


class TestCatalog(unittest.TestCase):

    def setUp(self):
        self.category_repo_mock = Mock()
        self.product_repo_mock = Mock()
        self.categories = ManageCategoriesUseCase(self.category_repo_mock, self.product_repo_mock)
        self.products = ManageProductsUseCase(self.product_repo_mock, self.category_repo_mock)

    def test_duplicate_category_name_conflicts(self):
        self.category_repo_mock.exists_by_name.return_value = True
        with self.assertRaises(DuplicateCategoryError):
            self.categories.create('Rings')
        self.category_repo_mock.save.assert_not_called()

    def test_category_with_products_is_kept(self):
        self.category_repo_mock.find_by_id.return_value = Category(id=1, name='Rings')
        self.product_repo_mock.count_by_category.return_value = 3

        with self.assertRaises(CategoryInUseError) as ctx:
            self.categories.delete(1)

        self.assertIn("3 products", ctx.exception.message)
        self.category_repo_mock.delete.assert_not_called()

    def test_referenced_product_cannot_be_deleted(self):
        self.product_repo_mock.find_by_id.return_value = Product(
            id=7, name='Ring', price=Decimal('1'), stock_quantity=1, category_id=1
        )
        self.product_repo_mock.is_referenced.return_value = True

        with self.assertRaises(ProductInUseError):
            self.products.delete(7)
        self.product_repo_mock.delete.assert_not_called()

    def test_paged_listing_rejects_unknown_sort_field(self):
        with self.assertRaises(ValidationFailedError):
            self.products.list_paged(sort_by='password')
        with self.assertRaises(ValidationFailedError):
            self.products.list_paged(sort_dir='sideways')
        self.product_repo_mock.find_page.assert_not_called()

    def test_paged_listing_passes_direction(self):
        self.products.list_paged(page=1, size=5, sort_by='price', sort_dir='DESC')
        self.product_repo_mock.find_page.assert_called_once_with(1, 5, 'price', True, category_id=None)


if __name__ == '__main__':
    unittest.main()
