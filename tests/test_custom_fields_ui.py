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


class FakeCustomFieldsBackend:
    def __init__(self):
        self.definitions = [
            {'id': 'd1', 'category_id': 'personal', 'category_name': 'Personal Information', 'label': 'Blood group', 'sort_order': 1},
            {'id': 'd2', 'category_id': 'custom_1', 'category_name': 'Transport', 'category_order': 6, 'label': 'Bus route'},
        ]
        self.requests = []

    def _ok(self, data):
        return httpx.Response(200, json={'success': True, 'data': data})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        path = request.url.path.removeprefix('/api')
        self.requests.append((request.method, path, body))
        if path == '/custom-fields/branch-schools':
            return self._ok([{'id': 'campus-2', 'name': 'North Campus'}])
        if request.method == 'GET' and path == '/custom-fields/parent':
            return self._ok(self.definitions)
        if request.method == 'POST' and path == '/custom-fields':
            created = dict(body, id=f'd{len(self.definitions) + 1}')
            self.definitions.append(created)
            return self._ok(created)
        if request.method == 'PATCH':
            return self._ok(body)
        return httpx.Response(404, json={'success': False, 'error': f'unexpected {request.method} {path}'})

    def writes(self) -> list:
        return [item for item in self.requests if item[0] != 'GET']

    def definition_fetches(self) -> int:
        return sum(1 for method, path, _ in self.requests if method == 'GET' and path == '/custom-fields/parent')


class CustomFieldsUiTests(unittest.TestCase):
    def setUp(self):
        self.backend = FakeCustomFieldsBackend()
        app.state.backend = BackendClient('http://backend.test/api', transport=httpx.MockTransport(self.backend))
        app.state.supabase = SupabaseClient('http://supabase.test', 'anon', transport=httpx.MockTransport(lambda _r: httpx.Response(404)))
        app.state.binder = Binder(CacheManager(backend=MemoryCacheBackend()))
        app.state.dispatchers = DispatcherRegistry()
        self.client = TestClient(app)
        profile = Profile(id='admin-1', email='admin@school.test', role='admin', school_id='school-1')
        self.client.cookies.set(SESSION_COOKIE, issue_session_token(profile, 'jwt-admin'))

    def test_board_lists_standard_and_custom_categories(self):
        response = self.client.get('/ui/admin/custom-fields')
        self.assertEqual(response.status_code, 200)
        self.assertIn('Personal Information', response.text)
        self.assertIn('Blood group', response.text)
        self.assertIn('6. Transport', response.text)

    def test_unknown_entity_is_rejected(self):
        response = self.client.get('/ui/admin/custom-fields', params={'entity': 'vendor'})
        self.assertEqual(response.status_code, 400)

    def test_local_edits_stay_unsaved_until_save(self):
        response = self.client.post('/ui/admin/custom-fields/categories?entity=parent', data={'name': 'Medical'})
        self.assertIn('New category added', response.text)
        self.assertIn('Medical', response.text)
        self.assertEqual(self.backend.writes(), [])
        self.assertEqual(self.backend.definition_fetches(), 1)

    def test_blank_category_name_stays_in_modal(self):
        response = self.client.post('/ui/admin/custom-fields/categories?entity=parent', data={'name': ' '})
        self.assertEqual(response.status_code, 400)
        self.assertIn('Category name is required', response.text)

    def test_discard_refetches_the_board(self):
        self.client.post('/ui/admin/custom-fields/categories?entity=parent', data={'name': 'Medical'})
        response = self.client.post('/ui/admin/custom-fields/discard?entity=parent')
        self.assertNotIn('Medical', response.text)
        self.assertEqual(self.backend.definition_fetches(), 2)

    def test_unsaved_edits_stay_with_the_admin_who_made_them(self):
        response = self.client.post('/ui/admin/custom-fields/categories/personal/fields/d1/remove?entity=parent')
        self.assertNotIn('Blood group', response.text)

        colleague = TestClient(app)
        profile = Profile(id='admin-2', email='office@school.test', role='admin', school_id='school-1')
        colleague.cookies.set(SESSION_COOKIE, issue_session_token(profile, 'jwt-office'))
        page = colleague.get('/ui/admin/custom-fields')
        self.assertIn('Blood group', page.text)

        response = colleague.post('/ui/admin/custom-fields/save?entity=parent')
        self.assertIn('Custom fields saved!', response.text)
        self.assertIn('0 created, 2 updated, 0 removed', response.text)
        self.assertNotIn(('DELETE', '/custom-fields/d1', None), self.backend.requests)
        self.assertEqual([method for method, _, _ in self.backend.writes() if method == 'DELETE'], [])

    def test_new_field_is_created_on_save(self):
        response = self.client.post('/ui/admin/custom-fields/categories/contact/fields?entity=parent')
        field_id = response.url.params['field_id']
        self.assertTrue(field_id.startswith('field-'))

        self.client.post(
            f'/ui/admin/custom-fields/categories/contact/fields/{field_id}?entity=parent',
            data={'label': 'Alternate phone', 'type': 'text', 'campus_scope': 'this_campus'},
        )
        response = self.client.post('/ui/admin/custom-fields/save?entity=parent')

        self.assertIn('Custom fields saved!', response.text)
        self.assertIn('1 created, 2 updated, 0 removed', response.text)
        created = [body for method, path, body in self.backend.requests if method == 'POST' and path == '/custom-fields']
        self.assertEqual(len(created), 1)
        self.assertEqual(created[0]['label'], 'Alternate phone')
        self.assertEqual(created[0]['category_id'], 'contact')
        self.assertEqual(created[0]['entity_type'], 'parent')


if __name__ == '__main__':
    unittest.main()
