import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response

from campusdesk.core.router_guard import require_school, roles
from campusdesk.route_logging import EndpointNameRoute
from campusdesk.schemas import AttendanceSummaryList, GradeLevelList, SectionList
from campusdesk.services import academics_service, attendance_service, export_service
from campusdesk.services.app_state import AppState
from campusdesk.services.binder import BinderSnapshot
from campusdesk.services.date_range import MONTH_NAMES, DateRange
from campusdesk.services.forms import FormValidationError
from campusdesk.services.toasts import Toast
from campusdesk.ui_support import get_backend, get_binder, render, tenant_key


router = APIRouter(prefix='/ui/admin/attendance', tags=['Attendance UI'], route_class=EndpointNameRoute)
logger = logging.getLogger(__name__)


def _scope(request: Request) -> tuple[str | None, str | None]:
    params = request.query_params
    return (params.get('grade_id') or None), (params.get('section_id') or None)


async def _load_summary(request: Request, app_state: AppState, date_range: DateRange) -> BinderSnapshot:
    school_id = require_school(app_state)
    grade_id, section_id = _scope(request)
    backend = get_backend(request)
    return await get_binder(request).read(
        tenant_key(
            'attendance_summary',
            app_state,
            date_range.start_date.isoformat(),
            date_range.end_date.isoformat(),
            grade_id or 'all',
            section_id or 'all',
        ),
        lambda: attendance_service.summary_report(
            backend,
            token=app_state.access_token,
            school_id=school_id,
            start_date=date_range.start_date,
            end_date=date_range.end_date,
            campus_id=app_state.campus_id,
            grade_id=grade_id,
            section_id=section_id,
        ),
        adapter=AttendanceSummaryList,
    )


@router.get('/summary')
async def attendance_summary_page(request: Request, app_state: AppState = Depends(roles('admin'))):
    school_id = require_school(app_state)
    date_range = DateRange.from_query(request.query_params)
    grade_id, section_id = _scope(request)
    backend = get_backend(request)
    binder = get_binder(request)
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
            snapshot = await _load_summary(request, app_state, date_range)
            if snapshot.error is not None:
                toasts.append(Toast(title=snapshot.error_message or 'Error loading data', variant='error'))

    grades = await binder.read(
        tenant_key('grade_levels', app_state),
        lambda: academics_service.list_grade_levels(
            backend,
            token=app_state.access_token,
            school_id=school_id,
            campus_id=app_state.campus_id,
        ),
        adapter=GradeLevelList,
    )
    sections = await binder.read(
        tenant_key('sections', app_state),
        lambda: academics_service.list_sections(
            backend,
            token=app_state.access_token,
            school_id=school_id,
            campus_id=app_state.campus_id,
        ),
        adapter=SectionList,
    )
    section_rows = [row for row in sections.data or [] if not grade_id or row.grade_level_id == grade_id]
    rows = snapshot.data or []

    return render(
        request,
        'attendance_summary.html',
        {
            'date_range': date_range,
            'range_error': range_error,
            'month_names': MONTH_NAMES,
            'year_options': date_range.year_options(),
            'grades': grades.data or [],
            'sections': section_rows,
            'grade_id': grade_id or '',
            'section_id': section_id or '',
            'rows': rows,
            'average': attendance_service.average_percentage(rows),
            'loaded': snapshot.key is not None,
        },
        app_state=app_state,
        toasts=toasts,
    )


@router.get('/summary/export.csv')
async def attendance_summary_export(request: Request, app_state: AppState = Depends(roles('admin'))):
    date_range = DateRange.from_query(request.query_params)
    try:
        date_range.validate()
    except FormValidationError as exc:
        return Response(content=exc.message, status_code=400, media_type='text/plain')
    snapshot = await _load_summary(request, app_state, date_range)
    if snapshot.error is not None:
        return Response(content=snapshot.error_message or 'Error loading data', status_code=502, media_type='text/plain')
    rows = snapshot.data or []
    filename = export_service.attendance_report_filename(date_range.start_date, date_range.end_date)
    logger.info('attendance_export rows=%s filename=%s', len(rows), filename)
    return Response(
        content=export_service.attendance_csv(rows),
        media_type='text/csv',
        headers={'Content-Disposition': f'attachment; filename="{filename}"'},
    )
