from __future__ import annotations

import logging
import re
from pathlib import PurePath

from campusdesk.backend.clients import BackendClient
from campusdesk.backend.supabase import SupabaseClient
from campusdesk.config import settings
from campusdesk.core.time_provider import TimeProvider, default_time_provider
from campusdesk.schemas import SchoolOnboardForm


logger = logging.getLogger(__name__)

MAX_LOGO_BYTES = 2 * 1024 * 1024


class LogoUploadError(ValueError):
    pass


def slugify(name: str) -> str:
    slug = re.sub(r'[^a-z0-9\s-]', '', (name or '').lower())
    slug = re.sub(r'\s+', '-', slug.strip())
    return re.sub(r'-+', '-', slug).strip('-')


def logo_object_name(slug: str, filename: str, *, time_provider: TimeProvider = default_time_provider) -> str:
    ext = PurePath(filename or '').suffix.lstrip('.').lower() or 'png'
    return f'{slug}-{time_provider.epoch_ms()}.{ext}'


def check_logo(content_type: str | None, size: int) -> None:
    if not (content_type or '').startswith('image/'):
        raise LogoUploadError('Please upload an image file (PNG, JPG, etc.)')
    if size > MAX_LOGO_BYTES:
        raise LogoUploadError('Logo must be less than 2MB')


async def upload_logo(
    supabase: SupabaseClient,
    *,
    slug: str,
    filename: str,
    content: bytes,
    content_type: str,
    token: str | None,
    time_provider: TimeProvider = default_time_provider,
) -> str:
    """Store the logo in the public bucket and return its public URL."""
    check_logo(content_type, len(content))
    object_name = logo_object_name(slug, filename, time_provider=time_provider)
    await supabase.upload(
        settings.supabase_logo_bucket,
        object_name,
        content,
        content_type=content_type,
        token=token,
        cache_control=settings.supabase_logo_cache_control,
        upsert=False,
    )
    logger.info('school_logo_uploaded slug=%s object=%s bytes=%s', slug, object_name, len(content))
    return supabase.public_url(settings.supabase_logo_bucket, object_name)


async def list_schools(backend: BackendClient, *, token: str | None, status: str | None = None) -> list[dict]:
    return await backend.get('/schools', token=token, params={'status': status}) or []


async def onboard_school(backend: BackendClient, payload: SchoolOnboardForm, *, token: str | None) -> dict:
    body = payload.model_dump(mode='json', exclude_none=True)
    data = await backend.post('/schools/onboard', body, token=token)
    logger.info('school_onboarded slug=%s', payload.school.slug)
    return data or {}


async def list_campuses(backend: BackendClient, *, token: str | None) -> list[dict]:
    return await backend.get('/custom-fields/branch-schools', token=token) or []
