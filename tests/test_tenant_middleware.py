import unittest

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from campusdesk.schemas import Profile
from campusdesk.services.auth_service import SESSION_COOKIE, clear_session_token, issue_session_token
from campusdesk.session_middleware import SessionAuthMiddleware, required_role
from campusdesk.tenant_middleware import CAMPUS_COOKIE, CAMPUS_HEADER, TenantResolutionMiddleware, get_request_app_state


def _token(role: str = 'admin', school_id: str | None = 'school-1') -> str:
    profile = Profile(id=f'{role}-1', email=f'{role}@example.com', role=role, school_id=school_id, first_name='Ada')
    return issue_session_token(profile, f'supabase-jwt-{role}')


class TenantMiddlewareTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        app = FastAPI()
        app.add_middleware(TenantResolutionMiddleware)

        @app.get('/private')
        def private_route(request: Request):
            app_state = get_request_app_state(request)
            return {
                'user_id': app_state.user_id,
                'role': app_state.role,
                'school_id': app_state.school_id,
                'campus_id': app_state.campus_id,
                'access_token': app_state.access_token,
            }

        cls.client = TestClient(app)

    def setUp(self):
        self.client.cookies.clear()

    def test_session_cookie_resolves_school(self):
        self.client.cookies.set(SESSION_COOKIE, _token())
        payload = self.client.get('/private').json()
        self.assertEqual(payload['user_id'], 'admin-1')
        self.assertEqual(payload['school_id'], 'school-1')
        self.assertEqual(payload['access_token'], 'supabase-jwt-admin')
        self.assertIsNone(payload['campus_id'])

    def test_campus_header_wins_over_cookie(self):
        self.client.cookies.set(SESSION_COOKIE, _token())
        self.client.cookies.set(CAMPUS_COOKIE, 'campus-cookie')
        payload = self.client.get('/private', headers={CAMPUS_HEADER: 'campus-header'}).json()
        self.assertEqual(payload['campus_id'], 'campus-header')
        payload = self.client.get('/private').json()
        self.assertEqual(payload['campus_id'], 'campus-cookie')

    def test_bearer_header_is_accepted(self):
        payload = self.client.get('/private', headers={'Authorization': f'Bearer {_token("teacher")}'}).json()
        self.assertEqual(payload['role'], 'teacher')

    def test_anonymous_request_has_no_campus(self):
        payload = self.client.get('/private', headers={CAMPUS_HEADER: 'campus-1'}).json()
        self.assertIsNone(payload['user_id'])
        self.assertIsNone(payload['campus_id'])

    def test_tampered_or_revoked_token_is_ignored(self):
        token = _token()
        self.client.cookies.set(SESSION_COOKIE, token[:-2] + 'xx')
        self.assertIsNone(self.client.get('/private').json()['user_id'])
        clear_session_token(token)
        self.client.cookies.set(SESSION_COOKIE, token)
        self.assertIsNone(self.client.get('/private').json()['user_id'])


class SessionAuthMiddlewareTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        app = FastAPI()
        app.add_middleware(SessionAuthMiddleware)
        app.add_middleware(TenantResolutionMiddleware)

        @app.get('/ui/admin/sections')
        def sections():
            return {'ok': True}

        @app.get('/ui/login')
        def login():
            return {'login': True}

        @app.get('/health')
        def health():
            return {'status': 'ok'}

        cls.client = TestClient(app)

    def setUp(self):
        self.client.cookies.clear()

    def test_required_role_by_prefix(self):
        self.assertEqual(required_role('/ui/superadmin/billing'), 'super_admin')
        self.assertEqual(required_role('/ui/admin'), 'admin')
        self.assertIsNone(required_role('/ui/administrator'))
        self.assertIsNone(required_role('/ui'))

    def test_anonymous_is_sent_to_login(self):
        response = self.client.get('/ui/admin/sections', follow_redirects=False)
        self.assertEqual(response.status_code, 303)
        self.assertEqual(response.headers['location'], '/ui/login?next=/ui/admin/sections')

    def test_wrong_role_is_rejected(self):
        self.client.cookies.set(SESSION_COOKIE, _token('teacher'))
        response = self.client.get('/ui/admin/sections', follow_redirects=False)
        self.assertEqual(response.status_code, 303)
        self.assertEqual(response.headers['location'], '/ui/login?error=unauthorized')

    def test_matching_role_passes(self):
        self.client.cookies.set(SESSION_COOKIE, _token('admin'))
        response = self.client.get('/ui/admin/sections', follow_redirects=False)
        self.assertEqual(response.status_code, 200)

    def test_public_paths_skip_auth(self):
        self.assertEqual(self.client.get('/ui/login').status_code, 200)
        self.assertEqual(self.client.get('/health').status_code, 200)


if __name__ == '__main__':
    unittest.main()
