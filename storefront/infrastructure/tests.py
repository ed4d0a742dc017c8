import json
import time
from decimal import Decimal
from unittest.mock import patch, Mock

import requests
from django.contrib.auth import get_user_model
from django.test import TestCase

from storefront.core.entities import User, OrderStatus, Category as CategoryEntity
from storefront.core.exceptions import (
    InsufficientStockError,
    InvalidOrderStatusError,
    PaymentGatewayError,
    WebhookSignatureError,
    InvalidWebhookPayloadError,
    DuplicateCategoryError,
)
from storefront.core.use_cases import (
    ManageCartUseCase, PlaceOrderUseCase, MarkOrderAsPaidUseCase,
)
from storefront.infrastructure.gateways import (
    StripeGateway, PaymentGatewayMock, sign_payload, verify_signature, parse_event,
)
from storefront.infrastructure.models import Category, Product, Cart, CartItem, Order, OrderItem
from storefront.infrastructure.repositories import (
    CategoryRepositoryDjango,
    ProductRepositoryDjango,
    CartRepositoryDjango,
    OrderRepositoryDjango,
    DjangoTransactionManager,
)

SECRET = 'whsec_test'


class RepositoryTestCase(TestCase):

    def setUp(self):
        self.user_model = get_user_model().objects.create_user(username='alice', password='pw')
        self.user = User(id=self.user_model.pk, username='alice')
        self.category = Category.objects.create(name='Rings')
        self.product = Product.objects.create(
            name='Gold Ring', price=Decimal('100.00'), stock_quantity=5, category=self.category
        )

        self.category_repo = CategoryRepositoryDjango()
        self.product_repo = ProductRepositoryDjango()
        self.cart_repo = CartRepositoryDjango()
        self.order_repo = OrderRepositoryDjango()
        self.tx = DjangoTransactionManager()

        self.cart_uc = ManageCartUseCase(self.cart_repo, self.product_repo, self.tx)
        self.place_order_uc = PlaceOrderUseCase(self.cart_repo, self.order_repo, self.tx)
        self.mark_paid_uc = MarkOrderAsPaidUseCase(self.order_repo, self.product_repo, self.tx)


class TestCategoryAndProductRepositories(RepositoryTestCase):

    def test_category_carries_product_count(self):
        category = self.category_repo.find_by_id(self.category.pk)
        self.assertEqual(category.product_count, 1)
        self.assertEqual(self.product_repo.count_by_category(self.category.pk), 1)

    def test_find_page_sorts_and_reports_metadata(self):
        for i in range(4):
            Product.objects.create(
                name=f'Chain {i}', price=Decimal(10 + i), stock_quantity=1, category=self.category
            )

        page = self.product_repo.find_page(0, 2, 'price', True)

        self.assertEqual(page.total_elements, 5)
        self.assertEqual(page.total_pages, 3)
        self.assertEqual(page.content[0].name, 'Gold Ring')
        self.assertTrue(page.first)
        self.assertFalse(page.last)

    def test_decrement_refuses_to_go_negative(self):
        with self.assertRaises(InsufficientStockError):
            self.product_repo.decrement_stock(self.product.pk, 6)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 5)

    def test_saving_a_taken_category_name_conflicts(self):
        # The unique constraint backs the use case's name check.
        with self.assertRaises(DuplicateCategoryError):
            self.category_repo.save(CategoryEntity(name='Rings'))
        self.assertEqual(Category.objects.filter(name='Rings').count(), 1)

        other = Category.objects.create(name='Chains')
        with self.assertRaises(DuplicateCategoryError):
            self.category_repo.save(CategoryEntity(id=other.pk, name='Rings'))
        other.refresh_from_db()
        self.assertEqual(other.name, 'Chains')

    def test_referenced_product_is_detected(self):
        self.assertFalse(self.product_repo.is_referenced(self.product.pk))
        self.cart_uc.add_item(self.user, self.product.pk, 1)
        self.assertTrue(self.product_repo.is_referenced(self.product.pk))


class TestCartAndOrderFlow(RepositoryTestCase):

    def test_cart_is_created_once(self):
        self.cart_uc.get_or_create_cart(self.user)
        self.cart_uc.get_or_create_cart(self.user)
        self.assertEqual(Cart.objects.filter(user=self.user_model).count(), 1)

    def test_adding_twice_accumulates_one_line(self):
        self.cart_uc.add_item(self.user, self.product.pk, 2)
        cart = self.cart_uc.add_item(self.user, self.product.pk, 1)

        self.assertEqual(len(cart.items), 1)
        self.assertEqual(cart.items[0].quantity, 3)
        self.assertEqual(cart.total_amount, Decimal('300.00'))

    def test_failed_add_leaves_nothing_behind(self):
        with self.assertRaises(InsufficientStockError):
            self.cart_uc.add_item(self.user, self.product.pk, 6)

        # the lazily created cart is rolled back with the failed add
        self.assertFalse(Cart.objects.filter(user=self.user_model).exists())
        self.assertFalse(CartItem.objects.exists())

    def test_price_change_does_not_touch_snapshots(self):
        self.cart_uc.add_item(self.user, self.product.pk, 1)
        Product.objects.filter(pk=self.product.pk).update(price=Decimal('150.00'))

        order = self.place_order_uc.execute(self.user)

        self.assertEqual(order.items[0].price_at_order, Decimal('100.00'))
        self.assertEqual(order.total_amount, Decimal('100.00'))

    def test_place_order_clears_cart(self):
        self.cart_uc.add_item(self.user, self.product.pk, 2)

        order = self.place_order_uc.execute(self.user)

        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertEqual(order.username, 'alice')
        self.assertEqual(OrderItem.objects.filter(order_id=order.id).count(), 1)
        self.assertFalse(CartItem.objects.exists())

    def test_payment_scenario_with_duplicate_notification(self):
        # stock 5; two units ordered
        self.cart_uc.add_item(self.user, self.product.pk, 2)
        order = self.place_order_uc.execute(self.user)

        self.mark_paid_uc.execute(order.id)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 3)

        # a second application changes nothing
        with self.assertRaises(InvalidOrderStatusError):
            self.mark_paid_uc.execute(order.id)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 3)
        self.assertEqual(Order.objects.get(pk=order.id).status, 'PAID')

    def test_insufficient_stock_at_payment_rolls_back(self):
        other = Product.objects.create(name='Chain', price=Decimal('10.00'), stock_quantity=3, category=self.category)
        self.cart_uc.add_item(self.user, self.product.pk, 2)
        self.cart_uc.add_item(self.user, other.pk, 3)
        order = self.place_order_uc.execute(self.user)

        # stock drops after checkout (no reservation)
        Product.objects.filter(pk=other.pk).update(stock_quantity=1)

        with self.assertRaises(InsufficientStockError):
            self.mark_paid_uc.execute(order.id)

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 5)
        self.assertEqual(Order.objects.get(pk=order.id).status, 'PENDING')

    def test_status_update_is_guarded(self):
        self.cart_uc.add_item(self.user, self.product.pk, 1)
        order = self.place_order_uc.execute(self.user)

        self.assertTrue(self.order_repo.update_status(order.id, OrderStatus.CANCELLED, OrderStatus.PENDING))
        self.assertFalse(self.order_repo.update_status(order.id, OrderStatus.PAID, OrderStatus.PENDING))

    def test_foreign_order_is_invisible(self):
        self.cart_uc.add_item(self.user, self.product.pk, 1)
        order = self.place_order_uc.execute(self.user)
        intruder = get_user_model().objects.create_user(username='mallory', password='pw')

        self.assertIsNone(self.order_repo.find_by_id_and_user(order.id, intruder.pk))
        self.assertIsNotNone(self.order_repo.find_by_id_and_user(order.id, self.user.id))


class TestWebhookSignature(TestCase):

    def setUp(self):
        self.payload = json.dumps({
            'id': 'evt_1',
            'type': 'payment_intent.succeeded',
            'data': {'object': {'id': 'pi_1', 'metadata': {'orderId': '42', 'userId': '1'}}},
        }).encode('utf-8')

    def test_valid_signature_parses_event(self):
        gateway = PaymentGatewayMock(webhook_secret=SECRET)
        event = gateway.construct_event(self.payload, sign_payload(self.payload, SECRET))

        self.assertEqual(event.type, 'payment_intent.succeeded')
        self.assertEqual(event.object_id, 'pi_1')
        self.assertEqual(event.metadata['orderId'], '42')

    def test_tampered_payload_is_rejected(self):
        header = sign_payload(self.payload, SECRET)
        with self.assertRaises(WebhookSignatureError):
            verify_signature(self.payload + b' ', header, SECRET)

    def test_wrong_secret_is_rejected(self):
        with self.assertRaises(WebhookSignatureError):
            verify_signature(self.payload, sign_payload(self.payload, 'other'), SECRET)

    def test_stale_timestamp_is_rejected(self):
        header = sign_payload(self.payload, SECRET, timestamp=int(time.time()) - 3600)
        with self.assertRaises(WebhookSignatureError):
            verify_signature(self.payload, header, SECRET, tolerance=300)

    def test_malformed_header_is_rejected(self):
        for header in ('', 'garbage', 't=abc,v1=00', f't={int(time.time())}'):
            with self.assertRaises(WebhookSignatureError):
                verify_signature(self.payload, header, SECRET)

    def test_unexpected_shape_is_not_a_signature_error(self):
        payload = json.dumps({
            'id': 'evt_2',
            'type': 'payment_intent.succeeded',
            'data': {'object': {'id': 'pi_2', 'metadata': ['orderId', '42']}},
        }).encode('utf-8')
        gateway = PaymentGatewayMock(webhook_secret=SECRET)

        with self.assertRaises(InvalidWebhookPayloadError):
            gateway.construct_event(payload, sign_payload(payload, SECRET))

    def test_unparseable_payload_is_rejected(self):
        for payload in (b'not json', b'[1, 2]', b'{"data": []}', b'\xff\xfe'):
            with self.assertRaises(InvalidWebhookPayloadError):
                parse_event(payload)

    def test_missing_secret_rejects_everything(self):
        with self.assertRaises(WebhookSignatureError):
            verify_signature(self.payload, sign_payload(self.payload, ''), '')


class TestStripeGateway(TestCase):

    def setUp(self):
        self.gateway = StripeGateway(api_key='sk_test', webhook_secret=SECRET, timeout=5)

    @patch('storefront.infrastructure.gateways.requests.post')
    def test_create_payment_intent_posts_form(self, post_mock):
        post_mock.return_value = Mock(
            status_code=200,
            json=Mock(return_value={
                'id': 'pi_1', 'client_secret': 'pi_1_secret_x', 'amount': 24990,
                'currency': 'usd', 'status': 'requires_payment_method',
                'metadata': {'orderId': '5', 'userId': '1'},
            }),
            raise_for_status=Mock(),
        )

        intent = self.gateway.create_payment_intent(24990, 'usd', {'orderId': '5', 'userId': '1'})

        self.assertEqual(intent.client_secret, 'pi_1_secret_x')
        args, kwargs = post_mock.call_args
        self.assertEqual(args[0], 'https://api.stripe.com/v1/payment_intents')
        self.assertEqual(kwargs['data']['metadata[orderId]'], '5')
        self.assertEqual(kwargs['data']['amount'], 24990)
        self.assertEqual(kwargs['timeout'], 5)

    @patch('storefront.infrastructure.gateways.requests.post')
    def test_timeout_becomes_gateway_error(self, post_mock):
        post_mock.side_effect = requests.exceptions.Timeout("read timed out")
        with self.assertRaises(PaymentGatewayError):
            self.gateway.create_payment_intent(100, 'usd', {})

    @patch('storefront.infrastructure.gateways.requests.post')
    def test_error_status_becomes_gateway_error(self, post_mock):
        response = Mock()
        response.raise_for_status.side_effect = requests.exceptions.HTTPError("402 Payment Required")
        post_mock.return_value = response
        with self.assertRaises(PaymentGatewayError):
            self.gateway.create_payment_intent(100, 'usd', {})
