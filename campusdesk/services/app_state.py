from __future__ import annotations

from dataclasses import dataclass, replace


class MissingTenantError(LookupError):
    """The action needs a school or campus and none is selected."""


@dataclass(frozen=True)
class AppState:
    """Per-request view of who is signed in and which school/campus is in scope."""

    session: dict | None = None
    campus_id: str | None = None
    school_id: str | None = None

    @property
    def authenticated(self) -> bool:
        return bool(self.session)

    @property
    def user_id(self) -> str | None:
        return (self.session or {}).get('user_id')

    @property
    def role(self) -> str:
        return str((self.session or {}).get('role') or '')

    @property
    def access_token(self) -> str | None:
        return (self.session or {}).get('access_token') or None

    @property
    def display_name(self) -> str:
        session = self.session or {}
        return session.get('name') or session.get('email') or ''

    @property
    def tenant_id(self) -> str | None:
        return self.campus_id or self.school_id

    def with_campus(self, campus_id: str | None) -> 'AppState':
        return replace(self, campus_id=campus_id or None)

    def require_school(self) -> str:
        if not self.school_id:
            raise MissingTenantError('Select a school first')
        return self.school_id
