from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import threading

from campusdesk.backend.supabase import SupabaseClient, SupabaseError, eq
from campusdesk.config import settings
from campusdesk.core.time_provider import TimeProvider, default_time_provider
from campusdesk.schemas import Profile


_REVOKED_TOKENS: set[str] = set()
_TOKENS_LOCK = threading.RLock()
logger = logging.getLogger(__name__)

SESSION_COOKIE = 'auth_session'

ROLE_HOME = {
    'super_admin': '/ui/superadmin',
    'admin': '/ui/admin',
    'teacher': '/ui/teacher',
    'parent': '/ui/parent',
    'student': '/ui/student',
}


class SessionError(ValueError):
    """Raised when credentials are rejected or the profile cannot be resolved."""


class InactiveAccountError(SessionError):
    pass


def role_home(role: str | None) -> str | None:
    return ROLE_HOME.get(str(role or '').strip().lower())


class SessionSigner:
    """Compact HS256 tokens carried in the session cookie."""

    header = {'alg': 'HS256', 'typ': 'JWT'}

    def __init__(self, secret: str | None = None) -> None:
        self._secret = (secret if secret is not None else settings.auth_secret).encode('utf-8')

    @staticmethod
    def _encode(data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode('ascii').rstrip('=')

    @staticmethod
    def _decode(value: str) -> bytes:
        return base64.urlsafe_b64decode((value + '=' * (-len(value) % 4)).encode('ascii'))

    def _signature(self, signing_input: str) -> bytes:
        return hmac.new(self._secret, signing_input.encode('ascii'), hashlib.sha256).digest()

    def sign(self, claims: dict) -> str:
        parts = [self._encode(json.dumps(part, separators=(',', ':')).encode('utf-8')) for part in (self.header, claims)]
        signing_input = '.'.join(parts)
        return f'{signing_input}.{self._encode(self._signature(signing_input))}'

    def verify(self, token: str) -> dict | None:
        """Claims for a token signed with this secret, else None."""
        try:
            header_part, claims_part, signature_part = token.split('.')
            signature = self._decode(signature_part)
            if not hmac.compare_digest(signature, self._signature(f'{header_part}.{claims_part}')):
                return None
            claims = json.loads(self._decode(claims_part).decode('utf-8'))
        except (ValueError, UnicodeError):
            return None
        return claims if isinstance(claims, dict) else None


def issue_session_token(
    profile: Profile,
    access_token: str,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> str:
    issued_at = int(time_provider.now().timestamp())
    token = SessionSigner().sign(
        {
            'sub': profile.id,
            'email': profile.email,
            'role': profile.role,
            'school_id': profile.school_id,
            'name': profile.display_name,
            'access_token': access_token,
            'iat': issued_at,
            'exp': issued_at + settings.auth_session_max_age_seconds,
        }
    )
    with _TOKENS_LOCK:
        _REVOKED_TOKENS.discard(token)
    return token


async def login_password(
    supabase: SupabaseClient,
    email: str,
    password: str,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    clean_email = (email or '').strip().lower()
    if not clean_email or not password:
        raise SessionError('Email and password are required')

    try:
        grant = await supabase.sign_in_with_password(clean_email, password)
    except SupabaseError as exc:
        logger.info('login_rejected email=%s status=%s', clean_email, exc.status_code)
        raise SessionError(exc.message or 'Invalid credentials') from exc

    access_token = str(grant.get('access_token') or '')
    user_id = str((grant.get('user') or {}).get('id') or '')
    if not access_token or not user_id:
        raise SessionError('Invalid credentials')

    try:
        row = await supabase.select('profiles', token=access_token, filters={'id': eq(user_id)}, single=True)
    except SupabaseError as exc:
        logger.warning('login_profile_lookup_failed user_id=%s error=%s', user_id, exc.message)
        raise SessionError('Profile not found') from exc

    profile = Profile.model_validate(row)
    if not profile.is_active:
        raise InactiveAccountError('Account is inactive')
    if role_home(profile.role) is None:
        raise SessionError('Unsupported role')

    token = issue_session_token(profile, access_token, time_provider=time_provider)
    logger.info('login_ok user_id=%s role=%s', profile.id, profile.role)
    return {
        'token': token,
        'user_id': profile.id,
        'role': profile.role,
        'school_id': profile.school_id,
        'next': role_home(profile.role),
    }


def validate_session_token(
    token: str | None,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict | None:
    if not token:
        return None
    with _TOKENS_LOCK:
        if token in _REVOKED_TOKENS:
            return None

    payload = SessionSigner().verify(token)
    if not payload:
        return None

    user_id = payload.get('sub')
    role = payload.get('role')
    if not user_id or not role:
        return None
    expires_at = int(payload.get('exp') or 0)
    if expires_at and expires_at <= int(time_provider.now().timestamp()):
        return None

    return {
        'user_id': str(user_id),
        'email': payload.get('email') or '',
        'role': str(role),
        'school_id': payload.get('school_id'),
        'name': payload.get('name') or '',
        'access_token': payload.get('access_token') or '',
        'expires_at': expires_at or None,
    }


def clear_session_token(token: str | None) -> None:
    if not token:
        return
    with _TOKENS_LOCK:
        _REVOKED_TOKENS.add(token)
