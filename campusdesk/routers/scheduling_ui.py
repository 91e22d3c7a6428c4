import logging
from typing import Any, Mapping
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from pydantic import TypeAdapter

from campusdesk.core.router_guard import require_school, roles
from campusdesk.route_logging import EndpointNameRoute
from campusdesk.schemas import (
    AcademicYear,
    AcademicYearList,
    AddDropRecordList,
    CourseList,
    CoursePeriodList,
    DropForm,
    EnrollmentForm,
    StudentScheduleList,
    StudentSummary,
    SubjectList,
)
from campusdesk.services import academics_service, scheduling_service
from campusdesk.services.app_state import AppState
from campusdesk.services.binder import BinderSnapshot, normalize_key
from campusdesk.services.date_range import MONTH_NAMES, DatePicker, DateRange
from campusdesk.services.dispatcher import ActionDispatcher
from campusdesk.services.forms import FormValidationError, ModalForm, payload_from, required
from campusdesk.services.toasts import Toast
from campusdesk.ui_support import (
    checkbox,
    confirmed,
    dispatcher_for,
    form_values,
    get_backend,
    get_binder,
    is_busy,
    redirect_with_toasts,
    render,
    tenant_key,
)


router = APIRouter(prefix='/ui/admin/scheduling', tags=['Scheduling UI'], route_class=EndpointNameRoute)
logger = logging.getLogger(__name__)

PAGE_URL = '/ui/admin/scheduling'
StudentAdapter = TypeAdapter(StudentSummary)

# query fields that describe the schedule view and survive a post/redirect
VIEW_FIELDS = ('academic_year_id', 'on_month', 'on_day', 'on_year', 'inactive', 'q')

ENROLL_CHECKS = [
    required('academic_year_id', 'Academic year'),
    required('course_id', 'Course'),
    required('course_period_id', 'Course period'),
]

ACTIONS = {
    'enroll_student': {
        'success_title': 'Student enrolled successfully',
        'fallback_message': 'Failed to enroll student',
    },
    'drop_student': {
        'success_title': 'Student dropped from course',
        'fallback_message': 'Failed to drop student',
    },
}


def _dispatcher(request: Request, app_state: AppState, action: str) -> ActionDispatcher:
    return dispatcher_for(request, app_state, action, lambda: ActionDispatcher(action, **ACTIONS[action]))


def _schedule_url(student_id: str, scope: Mapping[str, Any], **extra: str) -> str:
    query = {name: scope.get(name) for name in VIEW_FIELDS if scope.get(name)}
    query.update({name: value for name, value in extra.items() if value})
    return f'{PAGE_URL}/students/{student_id}?{urlencode(query)}'


async def _academic_years(
    request: Request,
    app_state: AppState,
    scope: Mapping[str, Any],
) -> tuple[list[AcademicYear], str, str | None]:
    """All years plus the selected one: the requested id, else the current year."""
    backend = get_backend(request)
    snapshot = await get_binder(request).read(
        tenant_key('academic_years', app_state),
        lambda: scheduling_service.list_academic_years(backend, token=app_state.access_token),
        adapter=AcademicYearList,
    )
    years = snapshot.data or []
    selected = str(scope.get('academic_year_id') or '')
    if not selected:
        year = scheduling_service.current_year(years)
        selected = year.id if year else ''
    return years, selected, snapshot.error_message


def _schedule_resource(request: Request, app_state: AppState, student_id: str, year_id: str, include_inactive: bool):
    backend = get_backend(request)
    return get_binder(request).bind(
        tenant_key('student_schedule', app_state, student_id, year_id or None, 'history' if include_inactive else 'current'),
        lambda: scheduling_service.student_schedule(
            backend,
            student_id,
            year_id,
            token=app_state.access_token,
            include_inactive=include_inactive,
        ),
        StudentScheduleList,
    )


def _periods_resource(request: Request, app_state: AppState, course_id: str):
    backend = get_backend(request)
    return get_binder(request).bind(
        tenant_key('course_periods', app_state, course_id or None),
        lambda: scheduling_service.list_course_periods(backend, course_id, token=app_state.access_token),
        CoursePeriodList,
    )


def _forget_enrollments(request: Request, app_state: AppState, student_id: str) -> None:
    binder = get_binder(request)
    for key in (tenant_key('student_schedule', app_state, student_id), tenant_key('add_drop_log', app_state)):
        prefix = normalize_key(key)
        if prefix:
            binder.invalidate_prefix(f'{prefix}:')


# add / drop report


@router.get('/add-drop')
async def add_drop_report(request: Request, app_state: AppState = Depends(roles('admin'))):
    require_school(app_state)
    params = request.query_params
    date_range = DateRange.from_query(params)
    years, year_id, years_error = await _academic_years(request, app_state, params)
    search = str(params.get('q') or '')
    toasts: list[Toast] = []
    snapshot = BinderSnapshot(key=None)
    range_error = None

    if date_range.submitted:
        try:
            date_range.validate()
        except FormValidationError as exc:
            range_error = exc.message
            toasts.append(Toast(title=exc.message, variant='error'))
        else:
            backend = get_backend(request)
            snapshot = await get_binder(request).read(
                tenant_key(
                    'add_drop_log',
                    app_state,
                    year_id or None,
                    date_range.start_date.isoformat(),
                    date_range.end_date.isoformat(),
                ),
                lambda: scheduling_service.add_drop_log(
                    backend,
                    token=app_state.access_token,
                    academic_year_id=year_id,
                    start_date=date_range.start_date,
                    end_date=date_range.end_date,
                    campus_id=app_state.campus_id,
                ),
                adapter=AddDropRecordList,
            )
            if snapshot.error is not None:
                toasts.append(Toast(title=snapshot.error_message or 'Error loading data', variant='error'))

    records = scheduling_service.search_add_drop(snapshot.data or [], search)
    return render(
        request,
        'add_drop_report.html',
        {
            'date_range': date_range,
            'range_error': range_error,
            'month_names': MONTH_NAMES,
            'year_options': date_range.year_options(),
            'academic_years': years,
            'academic_year_id': year_id,
            'years_error': years_error,
            'search': search,
            'records': records,
            'totals': scheduling_service.add_drop_totals(records),
            'loaded': snapshot.key is not None,
        },
        app_state=app_state,
        toasts=toasts,
    )


# student schedule and the enrollment dialog


async def _schedule_page(
    request: Request,
    app_state: AppState,
    student_id: str,
    *,
    scope: Mapping[str, Any] | None = None,
    modal: ModalForm | None = None,
    modal_kind: str = '',
    toasts=None,
    status_code: int = 200,
):
    school_id = require_school(app_state)
    scope = dict(request.query_params) if scope is None else dict(scope)
    backend = get_backend(request)
    binder = get_binder(request)
    years, year_id, years_error = await _academic_years(request, app_state, scope)
    include_inactive = checkbox(scope, 'inactive')
    on = DatePicker.from_query(scope, 'on')
    search = str(scope.get('q') or '')

    student = await binder.read(
        tenant_key('student', app_state, student_id),
        lambda: scheduling_service.get_student(backend, student_id, token=app_state.access_token, campus_id=app_state.campus_id),
        adapter=StudentAdapter,
    )
    schedule = await _schedule_resource(request, app_state, student_id, year_id, include_inactive).read()
    rows = scheduling_service.visible_schedules(
        schedule.data or [],
        on.to_date(),
        include_inactive=include_inactive,
        search=search,
    )

    modal_kind = modal_kind or str(scope.get('modal') or '')
    dialog = None
    if modal_kind == 'add_course':
        subjects = await binder.read(
            tenant_key('subjects', app_state),
            lambda: academics_service.list_subjects(backend, token=app_state.access_token, school_id=school_id),
            adapter=SubjectList,
        )
        courses = await binder.read(
            tenant_key('courses', app_state),
            lambda: scheduling_service.list_courses(backend, token=app_state.access_token, campus_id=app_state.campus_id),
            adapter=CourseList,
        )
        subject_id = str(scope.get('subject_id') or '')
        course_id = str(scope.get('course_id') or '')
        periods = await _periods_resource(request, app_state, course_id).read()
        if modal is None:
            modal = ModalForm().show({'subject_id': subject_id, 'course_id': course_id})
        dialog = {
            'subjects': subjects.data or [],
            'courses': scheduling_service.courses_for_subject(courses.data or [], subject_id),
            'subject_id': subject_id,
            'course_id': course_id,
            'periods': periods.data or [],
            'periods_error': periods.error_message,
            'enroll_date': DatePicker.from_query(scope, 'enroll', fallback=on.to_date()),
        }

    confirm_target = None
    if scope.get('confirm') == 'drop':
        wanted = str(scope.get('course_period_id') or '')
        confirm_target = next((row for row in rows if row.course_period_id == wanted), None)

    view_query = {name: scope.get(name) for name in VIEW_FIELDS if scope.get(name)}
    return render(
        request,
        'student_schedule.html',
        {
            'student_id': student_id,
            'student': student.data,
            'academic_years': years,
            'academic_year_id': year_id,
            'years_error': years_error,
            'on': on,
            'month_names': MONTH_NAMES,
            'year_options': DateRange(start=on, end=on).year_options(),
            'include_inactive': include_inactive,
            'search': search,
            'rows': rows,
            'schedule_error': schedule.error_message,
            'loading': schedule.is_loading,
            'modal': modal or ModalForm(),
            'modal_kind': modal_kind,
            'dialog': dialog,
            'confirm_target': confirm_target,
            'view_query': view_query,
            'busy': {action: is_busy(request, app_state, action) for action in ACTIONS},
        },
        app_state=app_state,
        toasts=toasts,
        status_code=status_code,
    )


@router.get('/students/{student_id}')
async def student_schedule_page(student_id: str, request: Request, app_state: AppState = Depends(roles('admin'))):
    return await _schedule_page(request, app_state, student_id)


@router.post('/students/{student_id}/enroll')
async def enroll_student(student_id: str, request: Request, app_state: AppState = Depends(roles('admin'))):
    require_school(app_state)
    values = await form_values(request)
    values['start_date'] = DatePicker.from_query(values, 'enroll').iso()
    course_id = str(values.get('course_id') or '')
    periods_resource = _periods_resource(request, app_state, course_id)
    periods = (await periods_resource.read(revalidate=False)).data or []
    period = next((row for row in periods if row.id == values.get('course_period_id')), None)
    modal = ModalForm()
    backend = get_backend(request)

    async def after_enroll(_schedule) -> None:
        _forget_enrollments(request, app_state, student_id)
        await periods_resource.mutate(dedupe=False)

    outcome = await _dispatcher(request, app_state, 'enroll_student').submit(
        lambda payload: scheduling_service.enroll_student(
            backend,
            student_id,
            payload,
            token=app_state.access_token,
            period=period,
            campus_id=app_state.campus_id,
        ),
        values=values,
        checks=ENROLL_CHECKS,
        build=lambda raw: payload_from(EnrollmentForm, raw),
        modal=modal,
        on_success=after_enroll,
    )
    if outcome.status == 'busy':
        return redirect_with_toasts(_schedule_url(student_id, values))
    if not outcome.ok:
        return await _schedule_page(
            request,
            app_state,
            student_id,
            scope=values,
            modal=modal,
            modal_kind='add_course',
            toasts=outcome.toasts,
            status_code=400,
        )
    return redirect_with_toasts(_schedule_url(student_id, values), outcome.toasts)


@router.post('/students/{student_id}/drop')
async def drop_student(student_id: str, request: Request, app_state: AppState = Depends(roles('admin'))):
    require_school(app_state)
    values = await form_values(request)
    course_period_id = str(values.get('course_period_id') or '')
    if not confirmed(values):
        return redirect_with_toasts(_schedule_url(student_id, values, confirm='drop', course_period_id=course_period_id))
    values['end_date'] = DatePicker.from_query(values, 'on').iso()
    backend = get_backend(request)

    async def after_drop(_schedule) -> None:
        _forget_enrollments(request, app_state, student_id)

    outcome = await _dispatcher(request, app_state, 'drop_student').submit(
        lambda payload: scheduling_service.drop_student(backend, student_id, payload, token=app_state.access_token),
        values=values,
        build=lambda raw: payload_from(DropForm, raw),
        on_success=after_drop,
    )
    return redirect_with_toasts(_schedule_url(student_id, values), outcome.toasts)
