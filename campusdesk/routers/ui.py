import logging

from fastapi import APIRouter, Depends, Form, HTTPException, Request

from campusdesk.config import settings
from campusdesk.core.router_guard import get_app_state, require_auth_user
from campusdesk.route_logging import EndpointNameRoute
from campusdesk.schemas import CampusList
from campusdesk.services.app_state import AppState
from campusdesk.services.auth_service import role_home
from campusdesk.services.school_service import list_campuses
from campusdesk.tenant_middleware import CAMPUS_COOKIE
from campusdesk.ui_support import get_backend, get_binder, redirect_with_toasts, render


router = APIRouter(prefix='/ui', tags=['UI'], route_class=EndpointNameRoute)
logger = logging.getLogger(__name__)

PORTAL_LINKS = {
    'super_admin': [
        ('Billing', '/ui/superadmin/billing'),
        ('Onboard school', '/ui/superadmin/schools/onboard'),
    ],
    'admin': [
        ('Sections', '/ui/admin/sections'),
        ('Attendance summary', '/ui/admin/attendance/summary'),
        ('Hostel visits', '/ui/admin/hostel/visits'),
        ('Hostel fees', '/ui/admin/hostel/fees'),
        ('Class diary', '/ui/admin/diary'),
        ('Parent custom fields', '/ui/admin/custom-fields'),
        ('Add / drop report', '/ui/admin/scheduling/add-drop'),
        ('ID card templates', '/ui/admin/id-cards'),
    ],
    'teacher': [('Class diary', '/ui/teacher/diary')],
    'parent': [('Class diary', '/ui/parent/diary')],
    'student': [],
}


async def _home(request: Request, app_state: AppState):
    campuses = None
    if app_state.role == 'admin' and app_state.school_id:
        backend = get_backend(request)
        snapshot = await get_binder(request).read(
            ('campuses', app_state.school_id),
            lambda: list_campuses(backend, token=app_state.access_token),
            adapter=CampusList,
        )
        campuses = snapshot
    return render(
        request,
        'home.html',
        {'links': PORTAL_LINKS.get(app_state.role, []), 'campuses': campuses},
        app_state=app_state,
    )


@router.get('/superadmin')
async def superadmin_home(request: Request, app_state: AppState = Depends(get_app_state)):
    return await _home(request, app_state)


@router.get('/admin')
async def admin_home(request: Request, app_state: AppState = Depends(get_app_state)):
    return await _home(request, app_state)


@router.get('/teacher')
async def teacher_home(request: Request, app_state: AppState = Depends(get_app_state)):
    return await _home(request, app_state)


@router.get('/parent')
async def parent_home(request: Request, app_state: AppState = Depends(get_app_state)):
    return await _home(request, app_state)


@router.get('/student')
async def student_home(request: Request, app_state: AppState = Depends(get_app_state)):
    return await _home(request, app_state)


@router.post('/campus')
def select_campus(
    campus_id: str = Form(''),
    next: str = Form(''),
    app_state: AppState = Depends(get_app_state),
):
    require_auth_user(app_state)
    home = role_home(app_state.role) or '/ui/login'
    target = next if next.startswith('/ui/') else home
    if not campus_id.strip():
        raise HTTPException(status_code=400, detail='campus_id is required')
    response = redirect_with_toasts(target)
    response.set_cookie(
        key=CAMPUS_COOKIE,
        value=campus_id.strip(),
        httponly=True,
        samesite='lax',
        secure=settings.auth_cookie_secure,
    )
    logger.info('campus_selected user_id=%s campus_id=%s', app_state.user_id, campus_id.strip())
    return response
