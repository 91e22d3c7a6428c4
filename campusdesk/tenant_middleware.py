from __future__ import annotations

import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from campusdesk.request_context import current_tenant, tenant_label
from campusdesk.services.app_state import AppState
from campusdesk.services.auth_service import SESSION_COOKIE, validate_session_token


logger = logging.getLogger(__name__)

CAMPUS_COOKIE = 'campus_id'
CAMPUS_HEADER = 'X-Campus-ID'


def resolve_token(request: Request) -> str | None:
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        return token
    authorization = request.headers.get('authorization', '')
    if authorization.lower().startswith('bearer '):
        return authorization[7:].strip()
    return None


def build_app_state(request: Request) -> AppState:
    session = validate_session_token(resolve_token(request))
    campus_id = (request.headers.get(CAMPUS_HEADER) or request.cookies.get(CAMPUS_COOKIE) or '').strip() or None
    school_id = (session or {}).get('school_id') or None
    if session is None:
        campus_id = None
    return AppState(session=session, campus_id=campus_id, school_id=school_id)


def get_request_app_state(request: Request) -> AppState:
    state = getattr(request.state, 'app_state', None)
    if isinstance(state, AppState):
        return state
    return build_app_state(request)


class TenantResolutionMiddleware(BaseHTTPMiddleware):
    """Attaches an immutable AppState (session, school, campus) to every request."""

    async def dispatch(self, request: Request, call_next):
        app_state = build_app_state(request)
        request.state.app_state = app_state
        if app_state.session:
            request.state.auth_user = app_state.session
            logger.debug(
                'tenant_resolved user_id=%s school_id=%s campus_id=%s',
                app_state.user_id,
                app_state.school_id,
                app_state.campus_id,
            )
        token = current_tenant.set(tenant_label(app_state.user_id, app_state.school_id, app_state.campus_id))
        try:
            return await call_next(request)
        finally:
            current_tenant.reset(token)
