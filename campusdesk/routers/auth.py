import logging

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import RedirectResponse

from campusdesk.backend.supabase import SupabaseError
from campusdesk.config import settings
from campusdesk.core.router_guard import get_app_state
from campusdesk.route_logging import EndpointNameRoute
from campusdesk.services.app_state import AppState
from campusdesk.services.auth_service import (
    SESSION_COOKIE,
    InactiveAccountError,
    SessionError,
    clear_session_token,
    login_password,
    role_home,
)
from campusdesk.tenant_middleware import CAMPUS_COOKIE, resolve_token
from campusdesk.ui_support import get_supabase, render


router = APIRouter(tags=['Auth'], route_class=EndpointNameRoute)
logger = logging.getLogger(__name__)

LOGIN_ERRORS = {
    'unauthorized': 'You are not authorized to view that page.',
    'account_inactive': 'Your account is inactive. Contact your school administrator.',
}


def _safe_next(next_url: str | None, home: str) -> str:
    if next_url and (next_url == home or next_url.startswith(home + '/')):
        return next_url
    return home


@router.get('/ui/login')
def login_page(request: Request, next: str = '', error: str = ''):
    return render(
        request,
        'login.html',
        {'next': next, 'error': LOGIN_ERRORS.get(error, ''), 'email': ''},
    )


@router.post('/ui/login')
async def login_submit(
    request: Request,
    email: str = Form(''),
    password: str = Form(''),
    next: str = Form(''),
):
    try:
        data = await login_password(get_supabase(request), email, password)
    except InactiveAccountError:
        return RedirectResponse(url='/ui/login?error=account_inactive', status_code=303)
    except SessionError as exc:
        return render(
            request,
            'login.html',
            {'next': next, 'error': str(exc), 'email': email},
            status_code=401,
        )

    response = RedirectResponse(url=_safe_next(next, data['next']), status_code=303)
    response.set_cookie(
        key=SESSION_COOKIE,
        value=data['token'],
        httponly=True,
        samesite='lax',
        secure=settings.auth_cookie_secure,
        max_age=settings.auth_session_max_age_seconds,
    )
    return response


@router.post('/ui/logout')
async def logout(request: Request, app_state: AppState = Depends(get_app_state)):
    clear_session_token(resolve_token(request))
    if app_state.access_token:
        try:
            await get_supabase(request).sign_out(app_state.access_token)
        except SupabaseError as exc:
            logger.warning('supabase_sign_out_failed user_id=%s error=%s', app_state.user_id, exc.message)
    response = RedirectResponse(url='/ui/login', status_code=303)
    response.delete_cookie(SESSION_COOKIE)
    response.delete_cookie(CAMPUS_COOKIE)
    return response


@router.get('/')
def root(app_state: AppState = Depends(get_app_state)):
    home = role_home(app_state.role) if app_state.authenticated else None
    return RedirectResponse(url=home or '/ui/login', status_code=303)
