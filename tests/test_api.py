from __future__ import annotations

import tempfile
import unittest
from unittest import mock

from fastapi.testclient import TestClient

from factories import DEFAULT_PASSWORD, make_branch, make_customer, make_profile, make_session_factory
from rentdesk.config import settings
from rentdesk.main import create_app
from rentdesk.models import StaffRole
from rentdesk.routers.realtime import format_sse
from rentdesk.services.branch_service import MAIN_BRANCH_DELETE_MESSAGE
from rentdesk.services.realtime_service import InvalidationManager
from rentdesk.services.storage_service import LocalObjectStorage


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.session_factory = make_session_factory()
        with self.session_factory() as db:
            self.main_branch = make_branch(db)
            self.other_branch = make_branch(db, name='Mall Road')
            make_profile(db, 'counter1', branch=self.main_branch)
            make_profile(db, 'owner', role=StaffRole.SUPER_ADMIN, company_name='Glanz Costumes', upi_id='glanz@upi')
            self.customer = make_customer(db)
            db.commit()

        self.notifier = InvalidationManager(debounce_seconds=0)
        self.invalidations = []
        self.notifier.subscribe(self.invalidations.append)
        app = create_app(
            session_factory=self.session_factory,
            storage=LocalObjectStorage(self.tmp.name, '/media'),
            notifier=self.notifier,
        )
        self.client = TestClient(app)

    def tearDown(self) -> None:
        self.client.close()
        self.tmp.cleanup()

    def login(self, username: str = 'counter1', password: str = DEFAULT_PASSWORD):
        self.client.get('/health')
        self.client.headers['x-csrf-token'] = self.client.cookies.get('csrf_token')
        return self.client.post('/auth/login', json={'username': username, 'password': password})

    def compose_order(self, invoice: str = 'GLAORD-20261019-0001') -> None:
        self.client.put('/orders/draft/customer', json={'customer_id': self.customer.id})
        self.client.post(
            '/orders/draft/items',
            json={'photo_url': '/media/order-items/b.jpg', 'quantity': 1, 'price_per_day': '200'},
        )
        self.client.post(
            '/orders/draft/items',
            json={'photo_url': '/media/order-items/a.jpg', 'quantity': 3, 'price_per_day': '100'},
        )
        self.client.put('/orders/draft/invoice', json={'invoice_number': invoice})


class AuthApiTests(ApiTestCase):
    def test_requests_without_session_are_rejected(self) -> None:
        response = self.client.get('/orders')
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()['code'], 'auth_error')

    def test_public_endpoints(self) -> None:
        response = self.client.get('/health')
        self.assertEqual(response.json(), {'status': 'ok'})
        self.assertEqual(response.headers['x-content-type-options'], 'nosniff')
        self.assertIn('csrf_token', response.cookies)
        self.assertIn('Disallow: /', self.client.get('/robots.txt').text)

    def test_login_requires_csrf_token(self) -> None:
        response = self.client.post('/auth/login', json={'username': 'counter1', 'password': DEFAULT_PASSWORD})
        self.assertEqual(response.status_code, 403)

    def test_bad_password(self) -> None:
        response = self.login(password='wrong-password')
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()['error'], 'Invalid username or password')

    def test_login_and_logout(self) -> None:
        response = self.login()
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['username'], 'counter1')
        self.assertEqual(response.headers['cache-control'], 'no-store')
        self.assertEqual(self.client.get('/auth/me').json()['branch_id'], self.main_branch.id)

        self.assertEqual(self.client.post('/auth/logout').status_code, 200)
        self.assertEqual(self.client.get('/auth/me').status_code, 401)


class OrderApiTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.login()

    def test_draft_submit_creates_order_and_notifies(self) -> None:
        self.compose_order()
        draft = self.client.get('/orders/draft').json()
        self.assertEqual([item['quantity'] for item in draft['items']], [3, 1])
        self.assertEqual(draft['grand_total'], 500.0)

        response = self.client.post('/orders/draft/submit')
        self.assertEqual(response.status_code, 201)
        order = response.json()
        self.assertEqual(order['status'], 'active')
        self.assertEqual(order['branch_id'], self.main_branch.id)
        self.assertEqual(order['subtotal'], '500.00')
        self.assertEqual(order['total_amount'], '500.00')
        self.assertEqual(order['edit_mode'], 'full')
        self.assertFalse(order['is_late'])
        self.assertTrue(any(order['id'] in inv.order_ids for inv in self.invalidations))

        self.assertEqual(self.client.get('/orders/draft').json()['items'], [])
        listing = self.client.get('/orders').json()
        self.assertEqual(listing['total'], 1)

    def test_incomplete_draft_reports_field(self) -> None:
        response = self.client.post('/orders/draft/submit')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json(),
            {'error': 'Please select a customer', 'code': 'validation_error', 'field': 'customer_id'},
        )

    def test_duplicate_invoice_is_a_conflict(self) -> None:
        self.compose_order()
        self.client.post('/orders/draft/submit')
        self.compose_order()
        response = self.client.post('/orders/draft/submit')
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()['code'], 'persistence_error')

    def test_staff_cannot_read_other_branches(self) -> None:
        response = self.client.get('/orders', params={'branch_id': self.other_branch.id})
        self.assertEqual(response.status_code, 403)

    def test_returns_flow(self) -> None:
        self.compose_order()
        order_id = self.client.post('/orders/draft/submit').json()['id']

        preview = self.client.post(f'/orders/{order_id}/returns/preview', json={'mark_all_returned': True}).json()
        self.assertEqual(preview['outcome'], 'completed')
        self.assertEqual(len(preview['changed_items']), 2)

        result = self.client.post(f'/orders/{order_id}/returns', json={'mark_all_returned': True}).json()
        self.assertTrue(result['applied'])
        self.assertEqual(result['new_status'], 'completed')

        again = self.client.post(f'/orders/{order_id}/returns', json={'mark_all_returned': True}).json()
        self.assertFalse(again['applied'])
        self.assertEqual(again['message'], 'No changes to save')

        timeline = self.client.get(f'/orders/{order_id}/timeline').json()
        self.assertEqual(timeline[0]['action'], 'items_returned')
        self.assertEqual(timeline[-1]['action'], 'order_created')

    def test_invoice_page(self) -> None:
        self.compose_order('GLAORD-20261019-0777')
        order_id = self.client.post('/orders/draft/submit').json()['id']
        response = self.client.get(f'/orders/{order_id}/invoice')
        self.assertEqual(response.status_code, 200)
        self.assertIn('text/html', response.headers['content-type'])
        self.assertIn('GLAORD-20261019-0777', response.text)
        self.assertIn('500.00', response.text)

    def test_null_item_fields_are_validation_errors(self) -> None:
        self.compose_order()
        for field in ('quantity', 'days'):
            with self.subTest(field=field):
                response = self.client.patch('/orders/draft/items/0', json={field: None})
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json()['field'], field)
        response = self.client.patch('/orders/draft/items/0', json={'quantity': 2})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['items'][0]['quantity'], 2)

    def test_mutations_require_csrf_header(self) -> None:
        del self.client.headers['x-csrf-token']
        response = self.client.put('/orders/draft/invoice', json={'invoice_number': 'X'})
        self.assertEqual(response.status_code, 403)


class BranchApiTests(ApiTestCase):
    def test_main_branch_cannot_be_deleted(self) -> None:
        self.login('owner')
        response = self.client.delete(f'/branches/{self.main_branch.id}')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], MAIN_BRANCH_DELETE_MESSAGE)

        response = self.client.delete(f'/branches/{self.other_branch.id}')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'ok': True, 'deleted_orders': 0})

    def test_staff_cannot_delete_branches(self) -> None:
        self.login()
        self.assertEqual(self.client.delete(f'/branches/{self.other_branch.id}').status_code, 403)

    def test_branch_listing_marks_main(self) -> None:
        self.login()
        branches = {branch['name']: branch for branch in self.client.get('/branches').json()}
        self.assertTrue(branches['Glanz Costumes Collection']['is_main'])
        self.assertFalse(branches['Mall Road']['is_main'])


class MaintenanceApiTests(ApiTestCase):
    def test_cleanup_requires_cron_secret_when_configured(self) -> None:
        with mock.patch.object(settings, 'cron_secret', 's3cret'):
            self.assertEqual(self.client.post('/maintenance/cleanup-images').status_code, 401)
            response = self.client.post(
                '/maintenance/cleanup-images',
                headers={'Authorization': 'Bearer s3cret'},
            )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body['success'])
        self.assertEqual(body['message'], 'No orders found for image deletion')


class LifespanTests(ApiTestCase):
    def test_shutdown_closes_realtime_subscriptions(self) -> None:
        self.assertEqual(self.notifier.subscription_count, 1)
        with TestClient(self.client.app) as client:
            self.assertEqual(client.get('/health').status_code, 200)
        self.assertEqual(self.notifier.subscription_count, 0)


class RealtimeFormatTests(unittest.TestCase):
    def test_format_sse(self) -> None:
        self.assertEqual(format_sse('ready', {'branch_id': 1}), 'event: ready\ndata: {"branch_id": 1}\n\n')


if __name__ == '__main__':
    unittest.main()
