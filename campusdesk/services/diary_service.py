from __future__ import annotations

import html
import logging
import re
from datetime import date

from markupsafe import Markup

from campusdesk.backend.clients import BackendClient
from campusdesk.schemas import DiaryComment, DiaryCommentForm, DiaryEntry, DiaryEntryForm


logger = logging.getLogger(__name__)

ALLOWED_TAGS = frozenset({'p', 'br', 'b', 'strong', 'i', 'em', 'u', 'ul', 'ol', 'li'})
_ESCAPED_TAG_RE = re.compile(r'&lt;(/?)([a-zA-Z0-9]+)\s*(/?)&gt;')


def render_content(content: str) -> Markup:
    """Escape entry HTML, then restore bare allow-listed tags (attributes are never restored)."""
    escaped = html.escape(content or '', quote=True)

    def _restore(match: re.Match) -> str:
        closing, tag, self_closing = match.groups()
        if tag.lower() not in ALLOWED_TAGS:
            return match.group(0)
        return f'<{closing}{tag.lower()}{self_closing}>'

    return Markup(_ESCAPED_TAG_RE.sub(_restore, escaped))


async def list_entries(
    backend: BackendClient,
    *,
    token: str | None,
    diary_date: date,
    section_id: str | None = None,
    campus_id: str | None = None,
) -> list[dict]:
    return await backend.get(
        '/class-diary',
        token=token,
        params={'diary_date': diary_date.isoformat(), 'section_id': section_id, 'campus_id': campus_id},
    ) or []


async def create_entry(
    backend: BackendClient,
    payload: DiaryEntryForm,
    *,
    token: str | None,
    school_id: str,
    teacher_id: str,
    campus_id: str | None = None,
) -> DiaryEntry:
    body = payload.model_dump(mode='json', exclude_none=True)
    body.setdefault('teacher_id', teacher_id)
    body['day_of_week'] = payload.day_of_week
    body['school_id'] = school_id
    if campus_id:
        body['campus_id'] = campus_id
    data = await backend.post('/class-diary', body, token=token)
    logger.info('diary_entry_created section_id=%s teacher_id=%s date=%s', payload.section_id, body['teacher_id'], payload.diary_date)
    return DiaryEntry.model_validate(data)


async def delete_entry(backend: BackendClient, entry_id: str, *, token: str | None) -> None:
    await backend.delete(f'/class-diary/{entry_id}', token=token)
    logger.info('diary_entry_deleted entry_id=%s', entry_id)


async def toggle_comments(backend: BackendClient, entry_id: str, enable: bool, *, token: str | None) -> DiaryEntry:
    data = await backend.patch(f'/class-diary/{entry_id}/toggle-comments', {'enable': enable}, token=token)
    logger.info('diary_comments_toggled entry_id=%s enable=%s', entry_id, enable)
    return DiaryEntry.model_validate(data)


async def add_comment(
    backend: BackendClient,
    entry_id: str,
    payload: DiaryCommentForm,
    *,
    token: str | None,
) -> DiaryComment:
    data = await backend.post(f'/class-diary/{entry_id}/comments', payload.model_dump(mode='json'), token=token)
    return DiaryComment.model_validate(data)


async def delete_comment(backend: BackendClient, comment_id: str, *, token: str | None) -> None:
    await backend.delete(f'/class-diary/comments/{comment_id}', token=token)
