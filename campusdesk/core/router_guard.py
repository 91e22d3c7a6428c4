from __future__ import annotations

from typing import Iterable

from fastapi import Depends, HTTPException, Request

from campusdesk.services.app_state import AppState, MissingTenantError
from campusdesk.tenant_middleware import get_request_app_state


def get_app_state(request: Request) -> AppState:
    return get_request_app_state(request)


def require_auth_user(app_state: AppState = Depends(get_app_state)) -> dict:
    if not app_state.session or not app_state.user_id:
        raise HTTPException(status_code=401, detail='Unauthorized')
    return app_state.session


def require_role(user: dict, allowed_roles: set[str] | Iterable[str]) -> None:
    normalized = {str(role).strip().lower() for role in allowed_roles}
    if str(user.get('role') or '').strip().lower() not in normalized:
        raise HTTPException(status_code=403, detail='Forbidden')


def roles(*allowed: str):
    """Dependency factory: `Depends(roles('admin'))` returns the AppState for an allowed user."""

    def dependency(app_state: AppState = Depends(get_app_state)) -> AppState:
        user = require_auth_user(app_state)
        require_role(user, allowed)
        return app_state

    return dependency


def require_school(app_state: AppState) -> str:
    try:
        return app_state.require_school()
    except MissingTenantError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
