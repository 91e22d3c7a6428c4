from urllib.parse import quote

from fastapi.responses import RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from campusdesk.tenant_middleware import get_request_app_state


ROLE_PREFIXES = (
    ('/ui/superadmin', 'super_admin'),
    ('/ui/admin', 'admin'),
    ('/ui/teacher', 'teacher'),
    ('/ui/parent', 'parent'),
    ('/ui/student', 'student'),
)


def required_role(path: str) -> str | None:
    for prefix, role in ROLE_PREFIXES:
        if path == prefix or path.startswith(prefix + '/'):
            return role
    return None


class SessionAuthMiddleware(BaseHTTPMiddleware):
    def __init__(self, app):
        super().__init__(app)
        self._public_prefixes = (
            '/ui/login',
            '/ui/logout',
            '/ui-static/',
        )

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not path.startswith('/ui'):
            return await call_next(request)

        if path.startswith(self._public_prefixes):
            return await call_next(request)

        app_state = get_request_app_state(request)
        session = app_state.session
        if not session:
            next_url = quote(path, safe='/')
            return RedirectResponse(url=f'/ui/login?next={next_url}', status_code=303)

        role = required_role(path)
        if role is not None and session.get('role') != role:
            return RedirectResponse(url='/ui/login?error=unauthorized', status_code=303)

        request.state.auth_user = session
        return await call_next(request)
