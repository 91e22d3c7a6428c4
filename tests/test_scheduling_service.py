import asyncio
import json
import unittest
from datetime import date

import httpx

from campusdesk.backend.clients import BackendClient
from campusdesk.schemas import AddDropRecord, CoursePeriod, EnrollmentForm, IdCardTemplate, StudentSchedule
from campusdesk.services import id_card_service, scheduling_service
from campusdesk.services.date_range import DatePicker


def _schedule(schedule_id, title, start, end=None, teacher=None):
    period = {'id': f'cp-{schedule_id}', 'days': 'MWF'}
    if teacher:
        period['teacher'] = {'first_name': teacher[0], 'last_name': teacher[1]}
    return StudentSchedule.model_validate({
        'id': schedule_id,
        'student_id': 'st1',
        'course_id': f'c-{schedule_id}',
        'course_period_id': f'cp-{schedule_id}',
        'start_date': start,
        'end_date': end,
        'course': {'id': f'c-{schedule_id}', 'title': title},
        'course_period': period,
    })


class VisibleSchedulesTests(unittest.TestCase):
    def setUp(self):
        self.rows = [
            _schedule('a', 'Algebra I', '2024-01-10', teacher=('Grace', 'Hopper')),
            _schedule('b', 'Pottery', '2024-01-10', '2024-02-01'),
            _schedule('c', 'Chemistry', '2024-04-01'),
        ]

    def test_only_open_enrollments_by_default(self):
        rows = scheduling_service.visible_schedules(self.rows, date(2024, 1, 20))
        self.assertEqual([row.id for row in rows], ['a'])

    def test_inactive_rows_follow_the_selected_date(self):
        january = scheduling_service.visible_schedules(self.rows, date(2024, 1, 20), include_inactive=True)
        march = scheduling_service.visible_schedules(self.rows, date(2024, 3, 1), include_inactive=True)
        self.assertEqual([row.id for row in january], ['a', 'b'])
        self.assertEqual([row.id for row in march], ['a'])

    def test_search_matches_teacher(self):
        rows = scheduling_service.visible_schedules(self.rows, date(2024, 5, 1), search='hopper')
        self.assertEqual([row.id for row in rows], ['a'])


class AddDropRecordTests(unittest.TestCase):
    def test_date_alias_and_search(self):
        records = [
            AddDropRecord.model_validate({'student_id': 'st1', 'student_name': 'Omar Khan', 'course_title': 'Algebra I', 'action': 'add', 'date': '2024-03-04'}),
            AddDropRecord.model_validate({'student_id': 'st2', 'course_title': 'Biology', 'action': 'drop', 'date': '2024-03-10'}),
        ]
        self.assertEqual(records[0].occurred_on, date(2024, 3, 4))
        self.assertEqual(scheduling_service.search_add_drop(records, 'ST2'), [records[1]])
        self.assertEqual(scheduling_service.add_drop_totals(records), {'adds': 1, 'drops': 1})


class EnrollStudentTests(unittest.TestCase):
    def setUp(self):
        self.requests = []
        self.conflicts = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content) if request.content else None
            self.requests.append((request.method, request.url.path, body))
            if request.url.path.endswith('/check-conflicts'):
                return httpx.Response(200, json={'success': True, 'data': self.conflicts})
            return httpx.Response(200, json={'success': True, 'data': dict(body, id='sc9')})

        self.backend = BackendClient('http://backend.test/api', transport=httpx.MockTransport(handler))
        self.payload = EnrollmentForm(course_id='c1', course_period_id='cp1', academic_year_id='y1', start_date=date(2024, 3, 5))

    def _enroll(self, period=None):
        return asyncio.run(scheduling_service.enroll_student(self.backend, 'st1', self.payload, token='jwt', period=period))

    def test_conflicts_block_enrollment(self):
        self.conflicts = [{'conflicting_course_title': 'Algebra I'}, {'conflicting_course_title': 'Art'}]
        with self.assertRaises(scheduling_service.EnrollmentRejected) as ctx:
            self._enroll()
        self.assertEqual(str(ctx.exception), 'Schedule conflict with: Algebra I, Art')
        self.assertEqual([item[0] for item in self.requests], ['GET'])

    def test_full_period_blocks_enrollment(self):
        period = CoursePeriod.model_validate({'id': 'cp1', 'course_id': 'c1', 'total_seats': 12, 'filled_seats': 12})
        with self.assertRaises(scheduling_service.EnrollmentRejected) as ctx:
            self._enroll(period)
        self.assertEqual(str(ctx.exception), scheduling_service.NO_SEATS_MESSAGE)

    def test_enroll_posts_start_date(self):
        schedule = self._enroll()
        method, path, body = self.requests[-1]
        self.assertEqual((method, path), ('POST', '/api/scheduling/enroll'))
        self.assertEqual(body['start_date'], '2024-03-05')
        self.assertEqual(body['student_id'], 'st1')
        self.assertEqual(schedule.id, 'sc9')


class IdCardConfigTests(unittest.TestCase):
    def test_landscape_swaps_card_size(self):
        config = id_card_service.default_template_config('staff', 'landscape')
        self.assertEqual(config['layout'], {'width': 480, 'height': 300, 'orientation': 'landscape'})
        self.assertEqual(config['qrCode']['data'], '{{staff_id}}')
        self.assertEqual(config['qrCode']['position'], {'x': 190, 'y': 190})

    def test_mark_active_keeps_one_active(self):
        rows = [IdCardTemplate(id='t1', name='A', is_active=True), IdCardTemplate(id='t2', name='B')]
        marked = id_card_service.mark_active(rows, 't2')
        self.assertEqual([row.is_active for row in marked], [False, True])
        self.assertTrue(rows[0].is_active)


class DatePickerTests(unittest.TestCase):
    def test_day_clamps_to_month(self):
        picker = DatePicker.from_query({'enroll_month': '2', 'enroll_day': '30', 'enroll_year': '2023'}, 'enroll')
        self.assertEqual(picker.to_date(), date(2023, 2, 28))

    def test_missing_parts_use_fallback(self):
        picker = DatePicker.from_query({}, 'on', fallback=date(2024, 3, 5))
        self.assertEqual(picker.iso(), '2024-03-05')


if __name__ == '__main__':
    unittest.main()
