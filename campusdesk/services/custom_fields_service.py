"""Custom-field definitions and the category board used to arrange them.

The board is edited locally (kept in the binder between requests) and only
reaches the backend when committed: existing definitions are updated, fields
with temporary ``field-<ms>`` ids are created, and definitions missing from the
board are deleted.
"""
from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict, Field

from campusdesk.backend.clients import BackendClient
from campusdesk.core.time_provider import TimeProvider, default_time_provider
from campusdesk.schemas import CampusScope, CustomFieldDefinition, CustomFieldForm, CustomFieldType, EntityType
from campusdesk.services.forms import FormValidationError


logger = logging.getLogger(__name__)

STANDARD_CATEGORIES: tuple[tuple[str, str], ...] = (
    ('personal', 'Personal Information'),
    ('professional', 'Professional Details'),
    ('contact', 'Contact Information'),
    ('emergency', 'Emergency Contact'),
    ('system', 'System & Login'),
)
STANDARD_CATEGORY_IDS = frozenset(category_id for category_id, _ in STANDARD_CATEGORIES)
TEMP_FIELD_PREFIX = 'field-'
CUSTOM_CATEGORY_PREFIX = 'custom_'


class BoardError(ValueError):
    pass


class BoardField(BaseModel):
    model_config = ConfigDict(extra='ignore')

    id: str
    label: str = ''
    type: CustomFieldType = 'text'
    options: list[str] = Field(default_factory=list)
    required: bool = False
    sort_order: int = 0
    campus_scope: CampusScope = 'this_campus'
    applicable_school_ids: list[str] = Field(default_factory=list)

    @property
    def is_new(self) -> bool:
        return self.id.startswith(TEMP_FIELD_PREFIX)


class BoardCategory(BaseModel):
    model_config = ConfigDict(extra='ignore')

    id: str
    name: str
    order: int
    fields: list[BoardField] = Field(default_factory=list)

    @property
    def is_standard(self) -> bool:
        return self.id in STANDARD_CATEGORY_IDS

    def field(self, field_id: str) -> BoardField:
        for item in self.fields:
            if item.id == field_id:
                return item
        raise BoardError('Field not found')


class CategoryBoard(BaseModel):
    model_config = ConfigDict(extra='ignore')

    entity_type: EntityType = 'parent'
    categories: list[BoardCategory] = Field(default_factory=list)
    # definition ids the working copy was built from; only these may be deleted on save
    source_ids: list[str] = Field(default_factory=list)

    def category(self, category_id: str) -> BoardCategory:
        for item in self.categories:
            if item.id == category_id:
                return item
        raise BoardError('Category not found')

    def _renumber_categories(self) -> None:
        for index, item in enumerate(self.categories, start=1):
            item.order = index

    def move_category(self, category_id: str, new_index: int) -> None:
        current = self.categories.index(self.category(category_id))
        target = min(max(int(new_index), 0), len(self.categories) - 1)
        self.categories.insert(target, self.categories.pop(current))
        self._renumber_categories()

    def move_field(self, category_id: str, field_id: str, new_index: int) -> None:
        category = self.category(category_id)
        current = category.fields.index(category.field(field_id))
        target = min(max(int(new_index), 0), len(category.fields) - 1)
        category.fields.insert(target, category.fields.pop(current))
        for index, item in enumerate(category.fields, start=1):
            item.sort_order = index

    def add_category(self, name: str, *, time_provider: TimeProvider = default_time_provider) -> BoardCategory:
        clean = (name or '').strip()
        if not clean:
            raise FormValidationError({'name': 'Category name cannot be empty'})
        stamp = time_provider.epoch_ms()
        existing = {item.id for item in self.categories}
        while f'{CUSTOM_CATEGORY_PREFIX}{stamp}' in existing:
            stamp += 1
        category = BoardCategory(id=f'{CUSTOM_CATEGORY_PREFIX}{stamp}', name=clean, order=len(self.categories) + 1)
        self.categories.append(category)
        return category

    def delete_category(self, category_id: str) -> None:
        if category_id in STANDARD_CATEGORY_IDS:
            raise BoardError('Cannot delete standard categories')
        category = self.category(category_id)
        self.categories.remove(category)
        self._renumber_categories()

    def add_field(self, category_id: str, *, time_provider: TimeProvider = default_time_provider) -> BoardField:
        category = self.category(category_id)
        stamp = time_provider.epoch_ms()
        existing = {item.id for cat in self.categories for item in cat.fields}
        while f'{TEMP_FIELD_PREFIX}{stamp}' in existing:
            stamp += 1
        max_order = max([item.sort_order for item in category.fields], default=0)
        new_field = BoardField(id=f'{TEMP_FIELD_PREFIX}{stamp}', sort_order=max(max_order, 0) + 1)
        category.fields.append(new_field)
        return new_field

    def update_field(self, category_id: str, field_id: str, form: CustomFieldForm) -> BoardField:
        target = self.category(category_id).field(field_id)
        for name, value in form.model_dump().items():
            setattr(target, name, value)
        return target

    def remove_field(self, category_id: str, field_id: str) -> None:
        category = self.category(category_id)
        category.fields.remove(category.field(field_id))


def build_board(definitions: list[CustomFieldDefinition], entity_type: EntityType = 'parent') -> CategoryBoard:
    """Standard categories first, then custom categories in first-seen order, sorted by stored order."""
    by_category: dict[str, list[CustomFieldDefinition]] = {}
    category_order: dict[str, int] = {}
    category_names: dict[str, str] = {}
    for definition in definitions:
        by_category.setdefault(definition.category_id, []).append(definition)
        if definition.category_id not in category_order and definition.category_order:
            category_order[definition.category_id] = definition.category_order
        category_names.setdefault(definition.category_id, definition.category_name)

    def _fields(category_id: str) -> list[BoardField]:
        rows = sorted(by_category.get(category_id, []), key=lambda item: item.sort_order or 0)
        return [BoardField.model_validate(row.model_dump()) for row in rows]

    categories = [
        BoardCategory(id=category_id, name=name, order=category_order.get(category_id, index), fields=_fields(category_id))
        for index, (category_id, name) in enumerate(STANDARD_CATEGORIES, start=1)
    ]
    custom_ids = [category_id for category_id in by_category if category_id not in STANDARD_CATEGORY_IDS]
    for offset, category_id in enumerate(custom_ids, start=1):
        categories.append(
            BoardCategory(
                id=category_id,
                name=category_names.get(category_id) or category_id,
                order=category_order.get(category_id, len(STANDARD_CATEGORIES) + offset),
                fields=_fields(category_id),
            )
        )
    categories.sort(key=lambda item: item.order)
    return CategoryBoard(
        entity_type=entity_type,
        categories=categories,
        source_ids=[definition.id for definition in definitions],
    )


# backend


async def list_definitions(
    backend: BackendClient,
    entity_type: EntityType,
    *,
    token: str | None,
    campus_id: str | None = None,
) -> list[dict]:
    return await backend.get(f'/custom-fields/{entity_type}', token=token, params={'campus_id': campus_id}) or []


async def create_definition(
    backend: BackendClient,
    body: dict,
    *,
    token: str | None,
    campus_id: str | None = None,
) -> dict:
    return await backend.post('/custom-fields', body, token=token, params={'campus_id': campus_id})


async def update_definition(backend: BackendClient, field_id: str, body: dict, *, token: str | None) -> dict:
    return await backend.patch(f'/custom-fields/{field_id}', body, token=token)


async def delete_definition(backend: BackendClient, field_id: str, *, token: str | None) -> None:
    await backend.delete(f'/custom-fields/{field_id}', token=token)


async def reorder_fields(backend: BackendClient, category_id: str, ordered_ids: list[str], *, token: str | None) -> None:
    await backend.post(
        '/custom-fields/reorder',
        {'category_id': category_id, 'ordered_ids': ordered_ids},
        token=token,
    )


def _field_body(field: BoardField, category_order: int) -> dict:
    return {
        'label': field.label.strip(),
        'type': field.type,
        'options': field.options,
        'required': field.required,
        'sort_order': field.sort_order,
        'category_order': category_order,
        'campus_scope': field.campus_scope,
        'applicable_school_ids': field.applicable_school_ids,
    }


async def commit_board(
    backend: BackendClient,
    board: CategoryBoard,
    *,
    token: str | None,
    campus_id: str | None = None,
) -> dict:
    source_ids = set(board.source_ids)
    kept_ids: set[str] = set()
    created = updated = deleted = 0

    for category in board.categories:
        for field in category.fields:
            if not field.label.strip():
                continue
            body = _field_body(field, category.order)
            if not field.is_new:
                kept_ids.add(field.id)
                await update_definition(backend, field.id, body, token=token)
                updated += 1
            else:
                body.update(
                    {
                        'entity_type': board.entity_type,
                        'category_id': category.id,
                        'category_name': category.name,
                    }
                )
                await create_definition(backend, body, token=token, campus_id=campus_id)
                created += 1

    for field_id in sorted(source_ids - kept_ids):
        await delete_definition(backend, field_id, token=token)
        deleted += 1

    logger.info(
        'custom_fields_committed entity=%s campus_id=%s created=%s updated=%s deleted=%s',
        board.entity_type,
        campus_id,
        created,
        updated,
        deleted,
    )
    return {'created': created, 'updated': updated, 'deleted': deleted}
