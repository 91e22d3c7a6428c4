from __future__ import annotations

import logging
from typing import Any

from campusdesk.backend.clients import BackendClient
from campusdesk.schemas import IdCardTemplate, IdCardTemplateForm


logger = logging.getLogger(__name__)

BORDER_COLORS = {'student': '#3b82f6', 'teacher': '#10b981', 'staff': '#f59e0b'}
NAME_LABELS = {'student': 'Student Name', 'teacher': 'Teacher Name', 'staff': 'Staff Name'}
ID_TOKENS = {'student': '{{student_id}}', 'teacher': '{{employee_id}}', 'staff': '{{staff_id}}'}


class ActiveTemplateLocked(ValueError):
    pass


def _text_field(field_id: str, label: str, token: str, y: int, width: int, font_size: int, weight: str = 'normal') -> dict:
    return {
        'id': field_id,
        'label': label,
        'token': token,
        'type': 'text',
        'position': {'x': 20, 'y': y},
        'size': {'width': width, 'height': 20 if font_size < 16 else 30},
        'style': {'fontSize': font_size, 'fontWeight': weight, 'color': '#1f2937', 'align': 'center'},
    }


def default_template_config(user_type: str, orientation: str = 'portrait') -> dict[str, Any]:
    """Starter card: campus header, photo, name and ID line, plus a QR code of the ID."""
    width, height = (300, 480) if orientation == 'portrait' else (480, 300)
    inner = width - 40
    return {
        'fields': [
            _text_field('campus_header', 'Campus Name', '{{campus_name}}', 20, inner, 16, 'bold'),
            {
                'id': 'photo',
                'label': 'Photo',
                'token': '{{photo_url}}',
                'type': 'image',
                'position': {'x': 20, 'y': 60},
                'size': {'width': 120, 'height': 120},
            },
            _text_field('name', NAME_LABELS[user_type], '{{first_name}} {{last_name}}', 200, inner, 20, 'bold'),
            _text_field('identifier', 'ID', f'ID: {ID_TOKENS[user_type]}', 240, inner, 14),
        ],
        'layout': {'width': width, 'height': height, 'orientation': orientation},
        'design': {
            'backgroundColor': '#ffffff',
            'borderColor': BORDER_COLORS[user_type],
            'borderWidth': 3,
            'borderRadius': 12,
            'backgroundImage': '',
        },
        'qrCode': {
            'enabled': True,
            'position': {'x': width // 2 - 50, 'y': height - 110},
            'size': 100,
            'data': ID_TOKENS[user_type],
        },
    }


def _template_rows(data: Any) -> list[dict]:
    if isinstance(data, dict):
        return data.get('templates') or []
    return data or []


async def list_templates(
    backend: BackendClient,
    user_type: str,
    *,
    token: str | None,
    campus_id: str | None = None,
) -> list[dict]:
    data = await backend.get('/id-card-templates', token=token, params={'user_type': user_type, 'campus_id': campus_id})
    return [row for row in _template_rows(data) if row.get('user_type', user_type) == user_type]


async def create_template(
    backend: BackendClient,
    payload: IdCardTemplateForm,
    *,
    token: str | None,
    campus_id: str | None = None,
) -> IdCardTemplate:
    body = {
        'name': payload.name,
        'description': payload.description or None,
        'user_type': payload.user_type,
        'template_config': default_template_config(payload.user_type, payload.orientation),
    }
    data = await backend.post('/id-card-templates', body, token=token, params={'campus_id': campus_id})
    template = data.get('template', data) if isinstance(data, dict) else data
    logger.info('id_card_template_created user_type=%s name=%s', payload.user_type, payload.name)
    return IdCardTemplate.model_validate(template)


async def activate_template(backend: BackendClient, template: IdCardTemplate, *, token: str | None) -> None:
    await backend.put(f'/id-card-templates/{template.id}/activate', token=token)
    logger.info('id_card_template_activated template_id=%s user_type=%s', template.id, template.user_type)


def mark_active(rows: list[IdCardTemplate], template_id: str) -> list[IdCardTemplate]:
    """One active template per user type: activating one deactivates its siblings."""
    return [row.model_copy(update={'is_active': row.id == template_id}) for row in rows]


async def delete_template(backend: BackendClient, template: IdCardTemplate, *, token: str | None) -> None:
    if template.is_active:
        raise ActiveTemplateLocked('The active template cannot be deleted')
    await backend.delete(f'/id-card-templates/{template.id}', token=token)
    logger.info('id_card_template_deleted template_id=%s', template.id)
