from __future__ import annotations

from contextvars import ContextVar


current_endpoint: ContextVar[str] = ContextVar('current_endpoint', default='background')
current_tenant: ContextVar[str] = ContextVar('current_tenant', default='-')


def tenant_label(user_id: str | None, school_id: str | None, campus_id: str | None) -> str:
    if not user_id:
        return 'anonymous'
    return f'{user_id}@{school_id or "-"}/{campus_id or "all"}'
