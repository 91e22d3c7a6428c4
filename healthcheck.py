import sys

import httpx

from campusdesk.cache import cache, cache_key
from campusdesk.config import settings
from campusdesk.schemas import Profile
from campusdesk.services.auth_service import issue_session_token, validate_session_token
from campusdesk.templating import STATIC_DIR, TEMPLATES_DIR


REQUIRED_TEMPLATES = (
    'base.html',
    'login.html',
    'billing.html',
    'invoice.html',
    'schools_onboard.html',
    'sections.html',
    'attendance_summary.html',
    'hostel_visits.html',
    'hostel_fees.html',
    'diary.html',
    'custom_fields.html',
)

GREEN = '\033[32m'
RED = '\033[31m'
RESET = '\033[0m'


def run_check(name, fn):
    try:
        message = fn() or ''
        suffix = f' - {message}' if message else ''
        print(f'{GREEN}PASS{RESET} {name}{suffix}')
        return True
    except Exception as exc:
        print(f'{RED}FAIL{RESET} {name} - {exc}')
        return False


def check_required_env():
    required = {
        'API_URL': settings.api_url,
        'SUPABASE_URL': settings.supabase_url,
        'SUPABASE_ANON_KEY': settings.supabase_anon_key,
        'AUTH_SECRET': settings.auth_secret,
    }
    missing = [key for key, value in required.items() if not str(value).strip()]
    if missing:
        raise RuntimeError(f'Missing env vars: {", ".join(missing)}')
    if settings.app_env != 'local' and settings.auth_secret == 'change-me':
        raise RuntimeError('AUTH_SECRET still has the default value')
    return 'all required vars present'


def check_backend_api():
    res = httpx.get(settings.api_url.rstrip('/') + '/health', timeout=8)
    if res.status_code >= 500:
        raise RuntimeError(f'HTTP {res.status_code} from backend')
    return f'status={res.status_code}'


def check_supabase_auth():
    if not settings.supabase_url:
        raise RuntimeError('SUPABASE_URL is empty')
    res = httpx.get(
        settings.supabase_url.rstrip('/') + '/auth/v1/health',
        headers={'apikey': settings.supabase_anon_key},
        timeout=8,
    )
    if res.status_code != 200:
        raise RuntimeError(f'HTTP {res.status_code} from Supabase auth')
    return 'auth health ok'


def check_cache_round_trip():
    key = cache_key('healthcheck', 'probe')
    cache.set_cached(key, {'ok': True}, ttl=30)
    try:
        value = cache.get_cached(key)
        if not value or not value.get('ok'):
            raise RuntimeError(f'Cache returned {value!r}')
    finally:
        cache.invalidate(key)
    return f'backend={settings.cache_backend}'


def check_session_tokens():
    profile = Profile(id='healthcheck', role='admin', email='healthcheck@example.com')
    claims = validate_session_token(issue_session_token(profile, 'probe'))
    if not claims or claims.get('user_id') != 'healthcheck':
        raise RuntimeError('Session token did not round trip')
    return 'sign/verify ok'


def check_ui_assets():
    missing = [name for name in REQUIRED_TEMPLATES if not (TEMPLATES_DIR / name).is_file()]
    if missing:
        raise RuntimeError(f'Missing templates: {missing}')
    if not (STATIC_DIR / 'app.css').is_file():
        raise RuntimeError('Missing static/app.css')
    return f'templates={len(REQUIRED_TEMPLATES)}'


def main():
    checks = [
        ('Required environment variables present', check_required_env),
        ('Backend API reachable', check_backend_api),
        ('Supabase auth reachable', check_supabase_auth),
        ('Cache read/write working', check_cache_round_trip),
        ('Session token signing working', check_session_tokens),
        ('UI templates and static assets present', check_ui_assets),
    ]

    all_ok = True
    for name, fn in checks:
        all_ok = run_check(name, fn) and all_ok

    if not all_ok:
        sys.exit(1)
    sys.exit(0)


if __name__ == '__main__':
    main()
