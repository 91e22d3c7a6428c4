import json
import unittest

import httpx
from fastapi.testclient import TestClient

from campusdesk.backend.clients import BackendClient
from campusdesk.backend.supabase import SupabaseClient
from campusdesk.cache import CacheManager, MemoryCacheBackend
from campusdesk.main import app
from campusdesk.schemas import Profile
from campusdesk.services.auth_service import SESSION_COOKIE, issue_session_token
from campusdesk.services.binder import Binder
from campusdesk.services.dispatcher import DispatcherRegistry


class FakeSupabase:
    """Stateful stand-in for the PostgREST tables the billing page touches."""

    def __init__(self):
        self.plans = {
            'p1': {'id': 'p1', 'name': 'Basic', 'monthly_price': 50, 'quarterly_price': 140, 'yearly_price': 500},
            'p2': {'id': 'p2', 'name': 'Pro', 'monthly_price': 150, 'quarterly_price': 420, 'yearly_price': 1500},
        }
        self.records = {
            'r1': self._record('r1', 'Green Valley', 'paid', 'INV-2024-000001', payment_date='2024-03-06'),
            'r2': self._record('r2', 'Blue Hill', 'overdue', 'INV-2024-000002'),
        }
        self.calls = []
        self.reject_writes = None

    @staticmethod
    def _record(record_id, school_name, status, invoice, payment_date=None):
        return {
            'id': record_id,
            'school_id': f'school-{record_id}',
            'billing_plan_id': 'p2',
            'billing_cycle': 'Monthly',
            'amount': 150,
            'start_date': '2024-03-05',
            'due_date': '2024-04-05',
            'payment_status': status,
            'payment_date': payment_date,
            'invoice_number': invoice,
            'schools': {'name': school_name},
            'billing_plans': {'name': 'Pro'},
        }

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((request.method, path))
        target_id = str(request.url.params.get('id') or '').removeprefix('eq.')
        if request.method != 'GET' and self.reject_writes:
            return httpx.Response(409, json={'message': self.reject_writes})

        if path == '/rest/v1/billing_plans':
            if request.method == 'GET':
                return httpx.Response(200, json=list(self.plans.values()))
            if request.method == 'POST':
                row = dict(json.loads(request.content)[0], id=f'p{len(self.plans) + 1}')
                self.plans[row['id']] = row
                return httpx.Response(201, json=row)
            if request.method == 'DELETE':
                self.plans.pop(target_id, None)
                return httpx.Response(204)

        if path == '/rest/v1/billing_records':
            if request.method == 'GET':
                return httpx.Response(200, json=list(self.records.values()))
            if request.method == 'PATCH':
                self.records[target_id].update(json.loads(request.content))
                return httpx.Response(204)
            if request.method == 'DELETE':
                self.records.pop(target_id, None)
                return httpx.Response(204)

        return httpx.Response(404, json={'message': f'unexpected {request.method} {path}'})


class BillingUiTests(unittest.TestCase):
    def setUp(self):
        self.fake = FakeSupabase()
        app.state.supabase = SupabaseClient('http://supabase.test', 'anon', transport=httpx.MockTransport(self.fake))
        app.state.backend = BackendClient(
            'http://backend.test/api',
            transport=httpx.MockTransport(lambda _request: httpx.Response(200, json={'success': True, 'data': []})),
        )
        app.state.binder = Binder(CacheManager(backend=MemoryCacheBackend()))
        app.state.dispatchers = DispatcherRegistry()
        self.client = TestClient(app)
        profile = Profile(id='sa-1', email='owner@studently.com', role='super_admin', first_name='Sam')
        self.client.cookies.set(SESSION_COOKIE, issue_session_token(profile, 'supabase-jwt'))

    def test_anonymous_user_is_redirected_to_login(self):
        self.client.cookies.clear()
        response = self.client.get('/ui/superadmin/billing', follow_redirects=False)
        self.assertEqual(response.status_code, 303)
        self.assertTrue(response.headers['location'].startswith('/ui/login?next='))

    def test_plan_search_filters_plans_table(self):
        response = self.client.get('/ui/superadmin/billing', params={'plan_search': 'pro'})
        self.assertEqual(response.status_code, 200)
        self.assertIn('<strong>Pro</strong>', response.text)
        self.assertNotIn('<strong>Basic</strong>', response.text)

    def test_record_filter_and_stats(self):
        response = self.client.get('/ui/superadmin/billing', params={'payment_status': 'overdue'})
        self.assertEqual(response.status_code, 200)
        self.assertIn('INV-2024-000002', response.text)
        self.assertNotIn('INV-2024-000001', response.text)
        self.assertIn('$150.00', response.text)

    def test_delete_plan_asks_for_confirmation_first(self):
        response = self.client.post('/ui/superadmin/billing/plans/p2/delete', follow_redirects=False)
        self.assertEqual(response.status_code, 303)
        self.assertEqual(response.headers['location'], '/ui/superadmin/billing?confirm=delete_plan&id=p2')
        self.assertNotIn(('DELETE', '/rest/v1/billing_plans'), self.fake.calls)

        page = self.client.get(response.headers['location'])
        self.assertIn('/ui/superadmin/billing/plans/p2/delete', page.text)
        self.assertIn('name="confirm" value="yes"', page.text)

    def test_confirmed_delete_removes_plan_and_flashes_toast(self):
        response = self.client.post('/ui/superadmin/billing/plans/p2/delete', data={'confirm': 'yes'})
        self.assertEqual(response.status_code, 200)
        self.assertIn('Billing plan deleted', response.text)
        self.assertIn('Pro plan has been removed', response.text)
        self.assertNotIn('<strong>Pro</strong>', response.text)
        self.assertEqual(list(self.fake.plans), ['p1'])

        again = self.client.get('/ui/superadmin/billing')
        self.assertNotIn('Billing plan deleted', again.text)

    def test_invalid_plan_reopens_modal_without_backend_call(self):
        response = self.client.post(
            '/ui/superadmin/billing/plans',
            data={'name': '', 'monthly_price': '10', 'quarterly_price': '25', 'yearly_price': '90'},
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn('Plan name is required', response.text)
        self.assertIn('value="25"', response.text)
        self.assertNotIn(('POST', '/rest/v1/billing_plans'), self.fake.calls)

    def test_create_plan_refreshes_list(self):
        response = self.client.post(
            '/ui/superadmin/billing/plans',
            data={
                'name': 'Enterprise',
                'monthly_price': '400',
                'quarterly_price': '1100',
                'yearly_price': '4000',
                'features': 'Unlimited campuses\nPriority support',
                'is_active': '1',
            },
        )
        self.assertEqual(response.status_code, 200)
        self.assertIn('Billing plan created successfully', response.text)
        self.assertIn('<strong>Enterprise</strong>', response.text)
        self.assertEqual(self.fake.plans['p3']['features'], ['Unlimited campuses', 'Priority support'])

    def test_backend_rejection_keeps_form_open(self):
        self.fake.reject_writes = 'duplicate key value violates unique constraint'
        response = self.client.post(
            '/ui/superadmin/billing/plans',
            data={'name': 'Basic', 'monthly_price': '10', 'quarterly_price': '25', 'yearly_price': '90'},
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn('Error creating billing plan', response.text)
        self.assertIn('duplicate key value violates unique constraint', response.text)
        self.assertIn('value="Basic"', response.text)

    def test_mark_paid_updates_record(self):
        response = self.client.post('/ui/superadmin/billing/records/r2/mark-paid', data={'confirm': 'yes'})
        self.assertEqual(response.status_code, 200)
        self.assertIn('Payment status updated', response.text)
        self.assertIn('Blue Hill marked as paid', response.text)
        self.assertEqual(self.fake.records['r2']['payment_status'], 'paid')
        self.assertTrue(self.fake.records['r2']['payment_date'])

    def test_export_csv_uses_current_filters(self):
        response = self.client.get('/ui/superadmin/billing/export.csv', params={'payment_status': 'overdue'})
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers['content-type'].startswith('text/csv'))
        self.assertIn('attachment; filename="billing-report-', response.headers['content-disposition'])
        lines = response.text.splitlines()
        self.assertEqual(len(lines), 2)
        self.assertTrue(lines[1].startswith('Blue Hill,INV-2024-000002,Pro,Monthly,$150'))

    def test_invoice_page(self):
        response = self.client.get('/ui/superadmin/billing/records/r1/invoice')
        self.assertEqual(response.status_code, 200)
        self.assertIn('INV-2024-000001', response.text)
        self.assertIn('Green Valley', response.text)

    def test_unknown_record_invoice_is_404(self):
        response = self.client.get('/ui/superadmin/billing/records/nope/invoice')
        self.assertEqual(response.status_code, 404)


if __name__ == '__main__':
    unittest.main()
