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


PLANS = [
    {'id': 'p1', 'name': 'Basic', 'monthly_price': 50, 'quarterly_price': 140, 'yearly_price': 500},
    {'id': 'p2', 'name': 'Pro', 'monthly_price': 150, 'quarterly_price': 420, 'yearly_price': 1500},
]

VALID_FORM = {
    'school.name': 'Green Valley High',
    'school.contact_email': 'office@greenvalley.test',
    'school.address': '12 Orchard Road',
    'admin.first_name': 'Nia',
    'admin.last_name': 'Okafor',
    'admin.email': 'nia@greenvalley.test',
    'admin.password': 'secret-pass',
    'admin.password_confirm': 'secret-pass',
    'include_billing': '1',
    'billing.billing_plan_id': 'p2',
    'billing.billing_cycle': 'Quarterly',
    'billing.start_date': '2024-01-31',
    'billing.payment_status': 'unpaid',
}


class FakeStorage:
    def __init__(self, fail_uploads: bool = False):
        self.fail_uploads = fail_uploads
        self.uploads = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.startswith('/storage/v1/object/'):
            if self.fail_uploads:
                return httpx.Response(400, json={'message': 'bucket not found'})
            self.uploads.append(path)
            return httpx.Response(200, json={'Key': path})
        if path == '/rest/v1/billing_plans':
            return httpx.Response(200, json=PLANS)
        if path == '/rest/v1/billing_records':
            return httpx.Response(200, json=[])
        return httpx.Response(404, json={'message': f'unexpected {request.method} {path}'})


class FakeSchoolsBackend:
    def __init__(self):
        self.onboarded = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == 'POST' and request.url.path == '/api/schools/onboard':
            body = json.loads(request.content)
            self.onboarded.append(body)
            return httpx.Response(200, json={'success': True, 'data': {'school_id': 'school-9'}})
        return httpx.Response(200, json={'success': True, 'data': []})


class SchoolOnboardingUiTests(unittest.TestCase):
    def setUp(self):
        self.storage = FakeStorage()
        self.backend = FakeSchoolsBackend()
        app.state.supabase = SupabaseClient('http://supabase.test', 'anon', transport=httpx.MockTransport(self.storage))
        app.state.backend = BackendClient('http://backend.test/api', transport=httpx.MockTransport(self.backend))
        app.state.binder = Binder(CacheManager(backend=MemoryCacheBackend()))
        app.state.dispatchers = DispatcherRegistry()
        self.client = TestClient(app)
        profile = Profile(id='sa-1', email='owner@studently.com', role='super_admin')
        self.client.cookies.set(SESSION_COOKIE, issue_session_token(profile, 'supabase-jwt'))

    def test_admin_role_cannot_open_onboarding(self):
        profile = Profile(id='admin-1', email='admin@school.test', role='admin', school_id='school-1')
        self.client.cookies.set(SESSION_COOKIE, issue_session_token(profile, 'jwt'))
        response = self.client.get('/ui/superadmin/schools/onboard', follow_redirects=False)
        self.assertEqual(response.status_code, 303)
        self.assertIn('error=unauthorized', response.headers['location'])

    def test_password_mismatch_keeps_other_values(self):
        response = self.client.post(
            '/ui/superadmin/schools/onboard',
            data=dict(VALID_FORM, **{'admin.password_confirm': 'different'}),
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn('Passwords don&#39;t match', response.text)
        self.assertIn('value="Green Valley High"', response.text)
        self.assertNotIn('secret-pass', response.text)
        self.assertEqual(self.backend.onboarded, [])

    def test_billing_needs_a_plan(self):
        response = self.client.post(
            '/ui/superadmin/schools/onboard',
            data=dict(VALID_FORM, **{'billing.billing_plan_id': ''}),
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn('Please select a billing plan', response.text)

    def test_onboarding_computes_billing_and_slug(self):
        response = self.client.post('/ui/superadmin/schools/onboard', data=VALID_FORM)
        self.assertEqual(response.status_code, 200)
        self.assertIn('School onboarded successfully!', response.text)
        self.assertIn('Green Valley High has been created', response.text)

        body = self.backend.onboarded[0]
        self.assertEqual(body['school']['slug'], 'green-valley-high')
        self.assertEqual(body['billing']['amount'], 420)
        self.assertEqual(body['billing']['due_date'], '2024-04-30')
        self.assertNotIn('password_confirm', body['admin'])

    def test_onboarding_without_billing_omits_section(self):
        form = dict(VALID_FORM)
        form.pop('include_billing')
        self.client.post('/ui/superadmin/schools/onboard', data=form)
        self.assertNotIn('billing', self.backend.onboarded[0])

    def test_non_image_logo_is_rejected(self):
        response = self.client.post(
            '/ui/superadmin/schools/onboard',
            data=VALID_FORM,
            files={'logo': ('notes.txt', b'hello', 'text/plain')},
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn('Please upload an image file', response.text)
        self.assertEqual(self.storage.uploads, [])

    def test_logo_is_uploaded_before_onboarding(self):
        self.client.post(
            '/ui/superadmin/schools/onboard',
            data=VALID_FORM,
            files={'logo': ('crest.PNG', b'\x89PNG', 'image/png')},
        )
        self.assertEqual(len(self.storage.uploads), 1)
        self.assertTrue(self.storage.uploads[0].startswith('/storage/v1/object/school-logos/green-valley-high-'))
        self.assertTrue(self.storage.uploads[0].endswith('.png'))
        logo_url = self.backend.onboarded[0]['school']['logo_url']
        self.assertTrue(logo_url.startswith('http://supabase.test/storage/v1/object/public/school-logos/'))

    def test_failed_logo_upload_aborts_onboarding(self):
        self.storage.fail_uploads = True
        response = self.client.post(
            '/ui/superadmin/schools/onboard',
            data=VALID_FORM,
            files={'logo': ('crest.png', b'\x89PNG', 'image/png')},
        )
        self.assertEqual(response.status_code, 400)
        self.assertIn('Failed to upload logo', response.text)
        self.assertEqual(self.backend.onboarded, [])


if __name__ == '__main__':
    unittest.main()
