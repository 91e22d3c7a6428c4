from __future__ import annotations

import logging

from campusdesk.backend.clients import BackendClient
from campusdesk.schemas import Section, SectionForm


logger = logging.getLogger(__name__)


async def list_grade_levels(
    backend: BackendClient,
    *,
    token: str | None,
    school_id: str,
    campus_id: str | None = None,
) -> list[dict]:
    return await backend.get(
        '/academics/grades',
        token=token,
        params={'school_id': school_id, 'campus_id': campus_id},
    ) or []


async def list_sections(
    backend: BackendClient,
    *,
    token: str | None,
    school_id: str,
    grade_id: str | None = None,
    campus_id: str | None = None,
) -> list[dict]:
    return await backend.get(
        '/academics/sections',
        token=token,
        params={'grade_id': grade_id, 'school_id': school_id, 'campus_id': campus_id},
    ) or []


async def list_subjects(
    backend: BackendClient,
    *,
    token: str | None,
    school_id: str,
    grade_id: str | None = None,
) -> list[dict]:
    return await backend.get(
        '/academics/subjects',
        token=token,
        params={'grade_id': grade_id, 'school_id': school_id},
    ) or []


def _section_body(payload: SectionForm, *, school_id: str, campus_id: str | None) -> dict:
    body = payload.model_dump(mode='json')
    body['school_id'] = school_id
    if campus_id:
        body['campus_id'] = campus_id
    return body


async def create_section(
    backend: BackendClient,
    payload: SectionForm,
    *,
    token: str | None,
    school_id: str,
    campus_id: str | None = None,
) -> Section:
    data = await backend.post(
        '/academics/sections',
        _section_body(payload, school_id=school_id, campus_id=campus_id),
        token=token,
    )
    logger.info('section_created school_id=%s name=%s', school_id, payload.name)
    return Section.model_validate(data)


async def update_section(
    backend: BackendClient,
    section_id: str,
    payload: SectionForm,
    *,
    token: str | None,
    school_id: str,
    campus_id: str | None = None,
) -> Section:
    data = await backend.put(
        f'/academics/sections/{section_id}',
        _section_body(payload, school_id=school_id, campus_id=campus_id),
        token=token,
    )
    logger.info('section_updated section_id=%s', section_id)
    return Section.model_validate(data)


async def delete_section(
    backend: BackendClient,
    section_id: str,
    *,
    token: str | None,
    campus_id: str | None = None,
) -> None:
    await backend.delete(f'/academics/sections/{section_id}', token=token, params={'campus_id': campus_id})
    logger.info('section_deleted section_id=%s', section_id)


def section_totals(sections: list[Section]) -> dict:
    capacity = sum(section.capacity for section in sections)
    strength = sum(section.current_strength for section in sections)
    return {
        'sections': len(sections),
        'capacity': capacity,
        'current_strength': strength,
        'available_seats': sum(section.available_seats for section in sections),
        'utilization': round(strength / capacity * 100, 1) if capacity else 0.0,
    }
