import json
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.test import override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from storefront.core.exceptions import PaymentGatewayError
from storefront.infrastructure.gateways import sign_payload
from storefront.infrastructure.models import Category, Product, Order

SECRET = 'whsec_test'


@override_settings(PAYMENT_GATEWAY='mock', STRIPE_WEBHOOK_SECRET=SECRET)
class StoreAPITestCase(APITestCase):

    def setUp(self):
        User = get_user_model()
        self.user = User.objects.create_user(username='alice', password='pw')
        self.other = User.objects.create_user(username='bob', password='pw')
        self.admin = User.objects.create_user(username='admin', password='pw', is_staff=True)
        self.category = Category.objects.create(name='Rings')
        self.product = Product.objects.create(
            name='Gold Ring', price=Decimal('100.00'), stock_quantity=5, category=self.category
        )
        self.client.force_authenticate(self.user)

    def place_order(self, quantity=2):
        self.client.post('/api/cart/items/', {'product_id': self.product.pk, 'quantity': quantity}, format='json')
        response = self.client.post('/api/orders/')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        return response.data['order_id']

    def send_webhook(self, order_id, event_type='payment_intent.succeeded', secret=SECRET):
        return self.post_webhook({
            'id': 'evt_1',
            'type': event_type,
            'data': {'object': {'id': 'pi_1', 'metadata': {'orderId': str(order_id)}}},
        }, secret)

    def post_webhook(self, event, secret=SECRET):
        payload = json.dumps(event).encode('utf-8')
        self.client.force_authenticate(None)
        return self.client.post(
            '/api/webhooks/stripe/', data=payload, content_type='application/json',
            HTTP_STRIPE_SIGNATURE=sign_payload(payload, secret),
        )


class TestCartAPI(StoreAPITestCase):

    def test_cart_requires_authentication(self):
        self.client.force_authenticate(None)
        response = self.client.get('/api/cart/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertEqual(response.data['path'], '/api/cart/')

    def test_get_creates_empty_cart(self):
        response = self.client.get('/api/cart/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['items'], [])
        self.assertEqual(response.data['username'], 'alice')
        self.assertEqual(response.data['total_items'], 0)

    def test_add_item_twice_accumulates(self):
        self.client.post('/api/cart/items/', {'product_id': self.product.pk, 'quantity': 2}, format='json')
        response = self.client.post('/api/cart/items/', {'product_id': self.product.pk, 'quantity': 1}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(len(response.data['items']), 1)
        self.assertEqual(response.data['items'][0]['quantity'], 3)
        self.assertEqual(response.data['total_amount'], '300.00')

    def test_add_beyond_stock_is_conflict(self):
        response = self.client.post('/api/cart/items/', {'product_id': self.product.pk, 'quantity': 6}, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'Conflict')
        self.assertIn('Insufficient stock', response.data['messages'][0])

    def test_invalid_body_lists_every_field(self):
        response = self.client.post('/api/cart/items/', {'quantity': 0}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Validation Failed')
        self.assertEqual(len(response.data['messages']), 2)
        self.assertTrue(any(m.startswith('product_id:') for m in response.data['messages']))

    def test_unknown_product_is_not_found(self):
        response = self.client.post('/api/cart/items/', {'product_id': 999, 'quantity': 1}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_foreign_cart_item_is_not_found(self):
        response = self.client.post('/api/cart/items/', {'product_id': self.product.pk, 'quantity': 1}, format='json')
        item_id = response.data['items'][0]['id']

        self.client.force_authenticate(self.other)
        self.assertEqual(self.client.delete(f'/api/cart/items/{item_id}/').status_code, status.HTTP_404_NOT_FOUND)
        response = self.client.put(f'/api/cart/items/{item_id}/', {'quantity': 2}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_remove_item_returns_cart_without_it(self):
        response = self.client.post('/api/cart/items/', {'product_id': self.product.pk, 'quantity': 1}, format='json')
        item_id = response.data['items'][0]['id']

        response = self.client.delete(f'/api/cart/items/{item_id}/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['items'], [])

    def test_clear_cart(self):
        self.client.post('/api/cart/items/', {'product_id': self.product.pk, 'quantity': 1}, format='json')
        self.assertEqual(self.client.delete('/api/cart/').status_code, status.HTTP_204_NO_CONTENT)
        self.assertEqual(self.client.delete('/api/cart/').status_code, status.HTTP_204_NO_CONTENT)
        self.assertEqual(self.client.get('/api/cart/').data['items'], [])


class TestOrderAPI(StoreAPITestCase):

    def test_empty_cart_cannot_be_ordered(self):
        response = self.client.post('/api/orders/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertFalse(Order.objects.exists())

    def test_place_order_snapshot(self):
        order_id = self.place_order(quantity=2)
        response = self.client.get(f'/api/orders/{order_id}/')

        self.assertEqual(response.data['status'], 'PENDING')
        self.assertEqual(response.data['total_amount'], '200.00')
        self.assertEqual(response.data['items'][0]['price_at_order'], '100.00')
        self.assertEqual(response.data['total_items'], 2)
        self.assertEqual(self.client.get('/api/cart/').data['items'], [])

    def test_foreign_order_is_not_found(self):
        order_id = self.place_order()
        self.client.force_authenticate(self.other)
        self.assertEqual(self.client.get(f'/api/orders/{order_id}/').status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(self.client.post(f'/api/orders/{order_id}/cancel/').status_code, status.HTTP_404_NOT_FOUND)

    def test_cancel_twice_is_conflict(self):
        order_id = self.place_order()

        first = self.client.post(f'/api/orders/{order_id}/cancel/')
        second = self.client.post(f'/api/orders/{order_id}/cancel/')

        self.assertEqual(first.status_code, status.HTTP_200_OK)
        self.assertEqual(first.data['status'], 'CANCELLED')
        self.assertEqual(second.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(second.data['messages'], ['Cannot cancel order with status: CANCELLED'])

    def test_history_and_paged_history(self):
        self.place_order(quantity=1)
        self.place_order(quantity=1)

        self.assertEqual(len(self.client.get('/api/orders/').data), 2)
        response = self.client.get('/api/orders/paged/', {'page': 0, 'size': 1})
        self.assertEqual(response.data['total_elements'], 2)
        self.assertEqual(response.data['total_pages'], 2)
        self.assertEqual(len(response.data['content']), 1)
        self.assertTrue(response.data['first'])

    def test_paged_history_rejects_bad_size(self):
        response = self.client.get('/api/orders/paged/', {'size': 0})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_paged_history_rejects_huge_page(self):
        self.place_order(quantity=1)

        response = self.client.get('/api/orders/paged/', {'page': '999999999999999999', 'size': 100})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'Validation Failed')


class TestPaymentAPI(StoreAPITestCase):

    def test_create_payment_intent(self):
        order_id = self.place_order(quantity=2)

        response = self.client.post('/api/payment/create-intent/', {'order_id': order_id}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['order_id'], order_id)
        self.assertEqual(response.data['amount'], '200.00')
        self.assertEqual(response.data['currency'], 'usd')
        self.assertTrue(response.data['client_secret'])

    def test_processor_failure_is_bad_gateway(self):
        order_id = self.place_order()
        with patch('storefront.infrastructure.gateways.PaymentGatewayMock.create_payment_intent',
                   side_effect=PaymentGatewayError("connection reset")):
            response = self.client.post('/api/payment/create-intent/', {'order_id': order_id}, format='json')
        self.assertEqual(response.status_code, status.HTTP_502_BAD_GATEWAY)

    def test_webhook_pays_order_once(self):
        order_id = self.place_order(quantity=2)

        first = self.send_webhook(order_id)
        duplicate = self.send_webhook(order_id)

        self.assertEqual(first.status_code, status.HTTP_200_OK)
        self.assertEqual(first.data, 'Webhook received')
        self.assertEqual(duplicate.status_code, status.HTTP_200_OK)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 3)
        self.assertEqual(Order.objects.get(pk=order_id).status, 'PAID')

    def test_webhook_with_bad_signature_is_rejected(self):
        order_id = self.place_order()
        response = self.send_webhook(order_id, secret='not-the-secret')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(Order.objects.get(pk=order_id).status, 'PENDING')

    def test_webhook_with_unexpected_shape_is_acknowledged(self):
        order_id = self.place_order()

        response = self.post_webhook({
            'id': 'evt_2',
            'type': 'payment_intent.succeeded',
            'data': {'object': {'id': 'pi_2', 'metadata': [str(order_id)]}},
        })

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(Order.objects.get(pk=order_id).status, 'PENDING')
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock_quantity, 5)

    def test_webhook_for_unknown_order_is_acknowledged(self):
        self.assertEqual(self.send_webhook(999).status_code, status.HTTP_200_OK)

    def test_paid_order_rejects_new_intent(self):
        order_id = self.place_order()
        self.send_webhook(order_id)
        self.client.force_authenticate(self.user)

        response = self.client.post('/api/payment/create-intent/', {'order_id': order_id}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)


class TestCatalogAPI(StoreAPITestCase):

    def test_catalog_reads_are_public(self):
        self.client.force_authenticate(None)
        self.assertEqual(self.client.get('/api/products/').status_code, status.HTTP_200_OK)
        response = self.client.get(f'/api/categories/{self.category.pk}/')
        self.assertEqual(response.data['product_count'], 1)

    def test_catalog_writes_require_staff(self):
        response = self.client.post('/api/categories/', {'name': 'Necklaces'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_admin_creates_category_and_product(self):
        self.client.force_authenticate(self.admin)

        response = self.client.post('/api/categories/', {'name': 'Necklaces'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        category_id = response.data['id']

        response = self.client.post('/api/products/', {
            'name': 'Pearl Necklace', 'price': '250.00', 'category_id': category_id, 'stock_quantity': 2,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['category_name'], 'Necklaces')

    def test_duplicate_category_is_conflict(self):
        self.client.force_authenticate(self.admin)
        response = self.client.post('/api/categories/', {'name': 'Rings'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_category_with_products_cannot_be_deleted(self):
        self.client.force_authenticate(self.admin)

        response = self.client.delete(f'/api/categories/{self.category.pk}/')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertTrue(Category.objects.filter(pk=self.category.pk).exists())

    def test_empty_category_is_deleted(self):
        empty = Category.objects.create(name='Earrings')
        self.client.force_authenticate(self.admin)
        self.assertEqual(self.client.delete(f'/api/categories/{empty.pk}/').status_code, status.HTTP_204_NO_CONTENT)

    def test_product_price_validation(self):
        self.client.force_authenticate(self.admin)
        response = self.client.put(f'/api/products/{self.product.pk}/', {
            'name': 'Gold Ring', 'price': '0.00', 'category_id': self.category.pk, 'stock_quantity': -1,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(len(response.data['messages']), 2)

    def test_products_paged_sorting(self):
        Product.objects.create(name='Anklet', price=Decimal('5.00'), stock_quantity=1, category=self.category)

        response = self.client.get('/api/products/paged/', {'sort_by': 'price', 'sort_dir': 'asc', 'size': 1})
        self.assertEqual(response.data['content'][0]['name'], 'Anklet')
        self.assertEqual(response.data['total_pages'], 2)

        response = self.client.get('/api/products/paged/', {'sort_by': 'secret'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_products_paged_rejects_huge_page(self):
        response = self.client.get('/api/products/paged/', {'page': '99999999999999999999'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.client.get(f'/api/categories/{self.category.pk}/products/', {'page': '99999999999999999999'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_category_products_page(self):
        response = self.client.get(f'/api/categories/{self.category.pk}/products/')
        self.assertEqual(response.data['total_elements'], 1)
        self.assertEqual(self.client.get('/api/categories/999/products/').status_code, status.HTTP_404_NOT_FOUND)


class TestSchemaAndAdmin(StoreAPITestCase):

    def test_schema_documents_error_body(self):
        response = self.client.get('/api/schema/', {'format': 'json'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        schema = json.loads(response.content)
        self.assertIn('ErrorResponse', schema['components']['schemas'])
        paged = schema['paths']['/api/products/paged/']['get']['responses']
        self.assertIn('400', paged)

    def test_admin_lists_catalog_and_orders(self):
        order_id = self.place_order(quantity=1)
        superuser = get_user_model().objects.create_superuser(username='root', password='pw')
        self.client.force_authenticate(None)
        self.client.force_login(superuser)

        for name in ('infrastructure_category_changelist', 'infrastructure_product_changelist',
                     'infrastructure_order_changelist'):
            self.assertEqual(self.client.get(reverse(f'admin:{name}')).status_code, status.HTTP_200_OK)

        response = self.client.get(reverse('admin:infrastructure_order_change', args=[order_id]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertContains(response, 'Gold Ring')

    def test_orders_cannot_be_added_from_admin(self):
        superuser = get_user_model().objects.create_superuser(username='root', password='pw')
        self.client.force_authenticate(None)
        self.client.force_login(superuser)

        response = self.client.get(reverse('admin:infrastructure_order_add'))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
