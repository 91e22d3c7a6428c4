from __future__ import annotations

import logging
from datetime import date

from campusdesk.backend.clients import BackendClient
from campusdesk.schemas import (
    AcademicYear,
    AddDropRecord,
    Course,
    CoursePeriod,
    DropForm,
    EnrollmentForm,
    ScheduleConflict,
    StudentSchedule,
)


logger = logging.getLogger(__name__)

NO_SEATS_MESSAGE = 'No available seats in this course period'


class EnrollmentRejected(ValueError):
    pass


async def list_academic_years(backend: BackendClient, *, token: str | None) -> list[dict]:
    return await backend.get('/academics/academic-years', token=token) or []


def current_year(years: list[AcademicYear]) -> AcademicYear | None:
    for year in years:
        if year.is_current:
            return year
    return years[0] if years else None


async def list_courses(backend: BackendClient, *, token: str | None, campus_id: str | None = None) -> list[dict]:
    return await backend.get('/courses', token=token, params={'campus_id': campus_id}) or []


def courses_for_subject(courses: list[Course], subject_id: str | None) -> list[Course]:
    if not subject_id:
        return list(courses)
    return [course for course in courses if course.subject_id == subject_id]


async def list_course_periods(backend: BackendClient, course_id: str, *, token: str | None) -> list[dict]:
    return await backend.get(f'/courses/{course_id}/periods', token=token) or []


async def student_schedule(
    backend: BackendClient,
    student_id: str,
    academic_year_id: str,
    *,
    token: str | None,
    include_inactive: bool = False,
) -> list[dict]:
    """Current enrollments, or with `include_inactive` the full history including dropped courses."""
    path = f'/scheduling/student/{student_id}'
    if include_inactive:
        path += '/history'
    return await backend.get(path, token=token, params={'academic_year_id': academic_year_id}) or []


def visible_schedules(
    schedules: list[StudentSchedule],
    on: date,
    *,
    include_inactive: bool = False,
    search: str = '',
) -> list[StudentSchedule]:
    needle = search.strip().lower()
    rows = []
    for schedule in schedules:
        if not include_inactive and schedule.end_date:
            continue
        if not schedule.active_on(on):
            continue
        if needle:
            teacher = schedule.course_period.teacher_name if schedule.course_period else ''
            if needle not in schedule.course_title.lower() and needle not in teacher.lower():
                continue
        rows.append(schedule)
    return rows


async def get_student(backend: BackendClient, student_id: str, *, token: str | None, campus_id: str | None = None) -> dict:
    return await backend.get(f'/students/{student_id}', token=token, params={'campus_id': campus_id}) or {}


async def check_conflicts(
    backend: BackendClient,
    *,
    token: str | None,
    student_id: str,
    course_period_id: str,
    academic_year_id: str,
) -> list[ScheduleConflict]:
    rows = await backend.get(
        '/scheduling/check-conflicts',
        token=token,
        params={
            'student_id': student_id,
            'course_period_id': course_period_id,
            'academic_year_id': academic_year_id,
        },
    ) or []
    return [ScheduleConflict.model_validate(row) for row in rows]


async def enroll_student(
    backend: BackendClient,
    student_id: str,
    payload: EnrollmentForm,
    *,
    token: str | None,
    period: CoursePeriod | None = None,
    campus_id: str | None = None,
) -> StudentSchedule:
    """Check conflicts and seats, then enroll. Rejections raise EnrollmentRejected."""
    conflicts = await check_conflicts(
        backend,
        token=token,
        student_id=student_id,
        course_period_id=payload.course_period_id,
        academic_year_id=payload.academic_year_id,
    )
    if conflicts:
        titles = ', '.join(conflict.conflicting_course_title for conflict in conflicts)
        logger.info('enrollment_conflict student_id=%s course_period_id=%s', student_id, payload.course_period_id)
        raise EnrollmentRejected(f'Schedule conflict with: {titles}')
    if period is not None and period.is_full:
        raise EnrollmentRejected(NO_SEATS_MESSAGE)

    body = payload.model_dump(mode='json')
    body['student_id'] = student_id
    if campus_id:
        body['campus_id'] = campus_id
    data = await backend.post('/scheduling/enroll', body, token=token)
    logger.info(
        'student_enrolled student_id=%s course_period_id=%s start_date=%s',
        student_id,
        payload.course_period_id,
        payload.start_date,
    )
    return StudentSchedule.model_validate(data)


async def drop_student(backend: BackendClient, student_id: str, payload: DropForm, *, token: str | None) -> StudentSchedule:
    body = {
        'student_id': student_id,
        'course_period_id': payload.course_period_id,
        'end_date': payload.end_date.isoformat(),
    }
    data = await backend.post('/scheduling/drop', body, token=token)
    logger.info('student_dropped student_id=%s course_period_id=%s end_date=%s', student_id, payload.course_period_id, payload.end_date)
    return StudentSchedule.model_validate(data)


async def add_drop_log(
    backend: BackendClient,
    *,
    token: str | None,
    academic_year_id: str,
    start_date: date,
    end_date: date,
    campus_id: str | None = None,
) -> list[dict]:
    return await backend.get(
        '/scheduling/add-drop-log',
        token=token,
        params={
            'academic_year_id': academic_year_id,
            'start_date': start_date.isoformat(),
            'end_date': end_date.isoformat(),
            'campus_id': campus_id,
        },
    ) or []


def search_add_drop(records: list[AddDropRecord], query: str) -> list[AddDropRecord]:
    return [record for record in records if record.matches(query)]


def add_drop_totals(records: list[AddDropRecord]) -> dict[str, int]:
    adds = sum(1 for record in records if record.action == 'add')
    return {'adds': adds, 'drops': len(records) - adds}
