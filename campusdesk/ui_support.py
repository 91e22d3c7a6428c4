from __future__ import annotations

import logging
from typing import Any, Callable

from fastapi import Request
from fastapi.responses import RedirectResponse

from campusdesk.backend.clients import BackendClient
from campusdesk.backend.supabase import SupabaseClient
from campusdesk.config import settings
from campusdesk.services.app_state import AppState
from campusdesk.services.binder import Binder
from campusdesk.services.dispatcher import ActionDispatcher, DispatcherRegistry
from campusdesk.services.toasts import FLASH_COOKIE, Toast, decode_flash, encode_flash
from campusdesk.templating import templates


logger = logging.getLogger(__name__)


def get_backend(request: Request) -> BackendClient:
    return request.app.state.backend


def get_supabase(request: Request) -> SupabaseClient:
    return request.app.state.supabase


def get_binder(request: Request) -> Binder:
    return request.app.state.binder


def get_dispatchers(request: Request) -> DispatcherRegistry:
    return request.app.state.dispatchers


def dispatcher_for(
    request: Request,
    app_state: AppState,
    action: str,
    factory: Callable[[], ActionDispatcher],
) -> ActionDispatcher:
    return get_dispatchers(request).get(app_state.user_id or 'anonymous', action, factory)


def is_busy(request: Request, app_state: AppState, action: str) -> bool:
    return get_dispatchers(request).is_busy(app_state.user_id or 'anonymous', action)


def tenant_key(name: str, app_state: AppState, *extra: Any) -> tuple:
    """Binder key scoped to the signed-in school; a missing school makes the key skip."""
    return (name, app_state.school_id, app_state.campus_id or 'all', *extra)


async def form_values(request: Request, *, lists: tuple[str, ...] = ()) -> dict[str, Any]:
    form = await request.form()
    values: dict[str, Any] = {}
    for key in form.keys():
        if key in lists:
            values[key] = [str(item) for item in form.getlist(key) if str(item).strip()]
        else:
            value = form.get(key)
            values[key] = value.strip() if isinstance(value, str) else value
    for key in lists:
        values.setdefault(key, [])
    return values


def checkbox(values: dict[str, Any], name: str) -> bool:
    return str(values.get(name) or '').lower() in ('1', 'true', 'on', 'yes')


def confirmed(values: dict[str, Any]) -> bool:
    return str(values.get('confirm') or '').lower() == 'yes'


def render(
    request: Request,
    name: str,
    context: dict[str, Any],
    *,
    app_state: AppState | None = None,
    toasts: list[Toast] | None = None,
    status_code: int = 200,
):
    pending = decode_flash(request.cookies.get(FLASH_COOKIE)) + list(toasts or [])
    payload = {'app_state': app_state, 'toasts': pending}
    payload.update(context)
    response = templates.TemplateResponse(request, name, payload, status_code=status_code)
    if request.cookies.get(FLASH_COOKIE):
        response.delete_cookie(FLASH_COOKIE)
    return response


def redirect_with_toasts(url: str, toasts: list[Toast] | None = None) -> RedirectResponse:
    response = RedirectResponse(url=url, status_code=303)
    if toasts:
        response.set_cookie(
            key=FLASH_COOKIE,
            value=encode_flash(toasts),
            httponly=True,
            samesite='lax',
            secure=settings.auth_cookie_secure,
            max_age=60,
        )
    return response
