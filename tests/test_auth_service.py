import asyncio
from datetime import datetime, timezone
import unittest

import httpx

from campusdesk.backend.supabase import SupabaseClient
from campusdesk.schemas import Profile
from campusdesk.services.auth_service import (
    InactiveAccountError,
    SessionError,
    SessionSigner,
    clear_session_token,
    issue_session_token,
    login_password,
    role_home,
    validate_session_token,
)


class FixedClock:
    def __init__(self, epoch_seconds: int):
        self.value = epoch_seconds

    def now(self):
        return datetime.fromtimestamp(self.value, tz=timezone.utc)


def _auth_transport(profile_row: dict | None, *, reject: bool = False):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == '/auth/v1/token':
            if reject:
                return httpx.Response(400, json={'error_description': 'Invalid login credentials'})
            return httpx.Response(200, json={'access_token': 'jwt-1', 'user': {'id': 'u1'}})
        if request.url.path == '/rest/v1/profiles':
            return httpx.Response(200, json=profile_row)
        return httpx.Response(404, json={'message': 'unexpected'})

    return httpx.MockTransport(handler)


class SessionSignerTests(unittest.TestCase):
    def test_signature_is_tied_to_secret(self):
        token = SessionSigner('alpha').sign({'sub': 'u1'})
        self.assertEqual(SessionSigner('alpha').verify(token), {'sub': 'u1'})
        self.assertIsNone(SessionSigner('beta').verify(token))

    def test_malformed_tokens_are_rejected(self):
        signer = SessionSigner('alpha')
        for token in ('', 'abc', 'a.b', 'a.b.c', 'a.b.c.d'):
            self.assertIsNone(signer.verify(token))


class SessionTokenTests(unittest.TestCase):
    def setUp(self):
        self.profile = Profile(id='u1', email='ada@school.test', role='teacher', school_id='school-1', first_name='Ada')

    def test_issue_and_validate(self):
        session = validate_session_token(issue_session_token(self.profile, 'jwt-1'))
        self.assertEqual(session['user_id'], 'u1')
        self.assertEqual(session['role'], 'teacher')
        self.assertEqual(session['school_id'], 'school-1')
        self.assertEqual(session['name'], 'Ada')
        self.assertEqual(session['access_token'], 'jwt-1')

    def test_expired_token_is_rejected(self):
        token = issue_session_token(self.profile, 'jwt-1', time_provider=FixedClock(1_700_000_000))
        later = FixedClock(1_700_000_000 + 60 * 60 * 13)
        self.assertIsNone(validate_session_token(token, time_provider=later))

    def test_cleared_token_is_rejected(self):
        token = issue_session_token(self.profile, 'jwt-2')
        clear_session_token(token)
        self.assertIsNone(validate_session_token(token))

    def test_role_home(self):
        self.assertEqual(role_home('Super_Admin'), '/ui/superadmin')
        self.assertIsNone(role_home('janitor'))


class LoginPasswordTests(unittest.TestCase):
    def _login(self, transport, email='Ada@School.test ', password='secret'):
        client = SupabaseClient('http://supabase.test', 'anon', transport=transport)
        return asyncio.run(login_password(client, email, password))

    def test_login_returns_role_home(self):
        row = {'id': 'u1', 'email': 'ada@school.test', 'role': 'parent', 'school_id': 'school-1'}
        result = self._login(_auth_transport(row))
        self.assertEqual(result['next'], '/ui/parent')
        self.assertEqual(validate_session_token(result['token'])['user_id'], 'u1')

    def test_blank_credentials(self):
        with self.assertRaises(SessionError):
            self._login(_auth_transport(None), email=' ', password='')

    def test_rejected_credentials_surface_message(self):
        with self.assertRaises(SessionError) as ctx:
            self._login(_auth_transport(None, reject=True))
        self.assertEqual(str(ctx.exception), 'Invalid login credentials')

    def test_inactive_account(self):
        row = {'id': 'u1', 'email': 'ada@school.test', 'role': 'admin', 'is_active': False}
        with self.assertRaises(InactiveAccountError):
            self._login(_auth_transport(row))

    def test_unsupported_role(self):
        row = {'id': 'u1', 'email': 'ada@school.test', 'role': 'janitor'}
        with self.assertRaises(SessionError):
            self._login(_auth_transport(row))


if __name__ == '__main__':
    unittest.main()
