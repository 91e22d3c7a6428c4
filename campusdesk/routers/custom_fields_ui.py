import logging
from typing import Callable
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import TypeAdapter

from campusdesk.core.router_guard import require_school, roles
from campusdesk.route_logging import EndpointNameRoute
from campusdesk.schemas import CUSTOM_FIELD_TYPES, CampusList, CategoryForm, CustomFieldDefinitionList, CustomFieldForm
from campusdesk.services import custom_fields_service, school_service
from campusdesk.services.app_state import AppState
from campusdesk.services.custom_fields_service import BoardError, CategoryBoard
from campusdesk.services.dispatcher import ActionDispatcher
from campusdesk.services.forms import ModalForm, payload_from, required
from campusdesk.ui_support import (
    checkbox,
    confirmed,
    dispatcher_for,
    form_values,
    get_backend,
    get_binder,
    is_busy,
    redirect_with_toasts,
    render,
    tenant_key,
)


router = APIRouter(prefix='/ui/admin/custom-fields', tags=['Custom Fields UI'], route_class=EndpointNameRoute)
logger = logging.getLogger(__name__)

PAGE_URL = '/ui/admin/custom-fields'
ENTITY_TYPES = ('parent', 'student', 'teacher')
BoardAdapter = TypeAdapter(CategoryBoard)

ACTIONS = {
    'save_board': {
        'success_title': 'Custom fields saved!',
        'failure_title': 'Failed to save',
        'fallback_message': 'Failed to save',
        'describe': lambda counts, _payload: (
            f"{counts['created']} created, {counts['updated']} updated, {counts['deleted']} removed"
        ),
    },
    'add_category': {
        'success_title': 'New category added',
        'fallback_message': 'Failed to add category',
    },
    'delete_category': {
        'success_title': 'Category deleted',
        'fallback_message': 'Failed to delete category',
    },
    'update_field': {
        'success_title': 'Field updated',
        'fallback_message': 'Failed to update field',
    },
    'save_field_order': {
        'success_title': 'Field order saved',
        'fallback_message': 'Failed to save field order',
        'describe': lambda _result, category: f'Default field order saved for {category.name}',
    },
}


def _dispatcher(request: Request, app_state: AppState, action: str) -> ActionDispatcher:
    return dispatcher_for(request, app_state, action, lambda: ActionDispatcher(action, **ACTIONS[action]))


def _entity(value: str | None) -> str:
    entity = (value or 'parent').strip().lower()
    if entity not in ENTITY_TYPES:
        raise HTTPException(status_code=400, detail='Unsupported entity type')
    return entity


def _page_url(entity: str, **extra: str) -> str:
    return f'{PAGE_URL}?{urlencode({"entity": entity, **extra})}'


def _board_resource(request: Request, app_state: AppState, entity: str):
    require_school(app_state)
    backend = get_backend(request)

    async def fetch_board() -> CategoryBoard:
        rows = await custom_fields_service.list_definitions(
            backend,
            entity,
            token=app_state.access_token,
            campus_id=app_state.campus_id,
        )
        return custom_fields_service.build_board(CustomFieldDefinitionList.validate_python(rows), entity)

    # the working copy belongs to one admin; colleagues keep their own drafts
    key = tenant_key('custom_field_board', app_state, entity, app_state.user_id)
    return get_binder(request).bind(key, fetch_board, BoardAdapter)


async def _load_board(request: Request, app_state: AppState, entity: str) -> CategoryBoard:
    """The working copy: fetched once, then only patched locally until saved or discarded."""
    snapshot = await _board_resource(request, app_state, entity).read(revalidate=False)
    if snapshot.data is None:
        raise HTTPException(status_code=502, detail=snapshot.error_message or 'Failed to load custom fields')
    return snapshot.data


async def _patch_board(request: Request, app_state: AppState, entity: str, change: Callable[[CategoryBoard], object]):
    board = await _load_board(request, app_state, entity)
    result = change(board)
    await _board_resource(request, app_state, entity).mutate(data=board)
    return result


async def _custom_fields_page(
    request: Request,
    app_state: AppState,
    entity: str,
    *,
    modal: ModalForm | None = None,
    modal_kind: str = '',
    category_id: str = '',
    field_id: str = '',
    toasts=None,
    status_code: int = 200,
):
    params = request.query_params
    resource = _board_resource(request, app_state, entity)
    snapshot = await resource.read(revalidate=False)
    board = snapshot.data
    backend = get_backend(request)
    campuses = await get_binder(request).read(
        ('campuses', app_state.school_id),
        lambda: school_service.list_campuses(backend, token=app_state.access_token),
        adapter=CampusList,
    )

    modal_kind = modal_kind or str(params.get('modal') or '')
    category_id = category_id or str(params.get('category_id') or '')
    field_id = field_id or str(params.get('field_id') or '')
    if modal is None:
        modal = ModalForm()
        if board is not None and modal_kind == 'edit_field' and category_id and field_id:
            try:
                modal.show(board.category(category_id).field(field_id).model_dump())
            except BoardError as exc:
                raise HTTPException(status_code=404, detail=str(exc)) from exc
        elif modal_kind == 'new_category':
            modal.show()

    return render(
        request,
        'custom_fields.html',
        {
            'entity': entity,
            'entity_types': ENTITY_TYPES,
            'board': board,
            'board_error': snapshot.error_message,
            'campuses': campuses.data or [],
            'field_types': CUSTOM_FIELD_TYPES,
            'modal': modal,
            'modal_kind': modal_kind,
            'category_id': category_id,
            'field_id': field_id,
            'confirm_kind': str(params.get('confirm') or ''),
            'busy': {action: is_busy(request, app_state, action) for action in ACTIONS},
        },
        app_state=app_state,
        toasts=toasts,
        status_code=status_code,
    )


@router.get('')
async def custom_fields_page(request: Request, entity: str = 'parent', app_state: AppState = Depends(roles('admin'))):
    return await _custom_fields_page(request, app_state, _entity(entity))


@router.post('/save')
async def save_board(request: Request, entity: str = 'parent', app_state: AppState = Depends(roles('admin'))):
    entity = _entity(entity)
    board = await _load_board(request, app_state, entity)
    resource = _board_resource(request, app_state, entity)
    backend = get_backend(request)
    outcome = await _dispatcher(request, app_state, 'save_board').submit(
        lambda payload: custom_fields_service.commit_board(
            backend,
            payload,
            token=app_state.access_token,
            campus_id=app_state.campus_id,
        ),
        build=lambda _raw: board,
        on_success=lambda _counts: resource.mutate(dedupe=False),
    )
    return redirect_with_toasts(_page_url(entity), outcome.toasts)


@router.post('/discard')
async def discard_changes(request: Request, entity: str = 'parent', app_state: AppState = Depends(roles('admin'))):
    entity = _entity(entity)
    await _board_resource(request, app_state, entity).mutate(dedupe=False)
    logger.info('custom_fields_discarded user_id=%s entity=%s', app_state.user_id, entity)
    return redirect_with_toasts(_page_url(entity))


# categories


@router.post('/categories')
async def add_category(request: Request, entity: str = 'parent', app_state: AppState = Depends(roles('admin'))):
    entity = _entity(entity)
    values = await form_values(request)
    modal = ModalForm()
    outcome = await _dispatcher(request, app_state, 'add_category').submit(
        lambda form: _patch_board(request, app_state, entity, lambda board: board.add_category(form.name)),
        values=values,
        checks=[required('name', 'Category name')],
        build=lambda raw: payload_from(CategoryForm, raw),
        modal=modal,
    )
    if outcome.status == 'invalid':
        return await _custom_fields_page(
            request,
            app_state,
            entity,
            modal=modal,
            modal_kind='new_category',
            toasts=outcome.toasts,
            status_code=400,
        )
    return redirect_with_toasts(_page_url(entity), outcome.toasts)


@router.post('/categories/{category_id}/delete')
async def delete_category(
    category_id: str,
    request: Request,
    entity: str = 'parent',
    app_state: AppState = Depends(roles('admin')),
):
    entity = _entity(entity)
    values = await form_values(request)
    if not confirmed(values):
        return redirect_with_toasts(_page_url(entity, confirm='delete_category', category_id=category_id))
    outcome = await _dispatcher(request, app_state, 'delete_category').submit(
        lambda _payload: _patch_board(request, app_state, entity, lambda board: board.delete_category(category_id)),
    )
    return redirect_with_toasts(_page_url(entity), outcome.toasts)


@router.post('/categories/{category_id}/move')
async def move_category(
    category_id: str,
    request: Request,
    entity: str = 'parent',
    app_state: AppState = Depends(roles('admin')),
):
    entity = _entity(entity)
    values = await form_values(request)
    try:
        index = int(values.get('index') or 0)
        await _patch_board(request, app_state, entity, lambda board: board.move_category(category_id, index))
    except (BoardError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return redirect_with_toasts(_page_url(entity))


@router.post('/categories/{category_id}/order')
async def save_field_order(
    category_id: str,
    request: Request,
    entity: str = 'parent',
    app_state: AppState = Depends(roles('admin')),
):
    entity = _entity(entity)
    board = await _load_board(request, app_state, entity)
    try:
        category = board.category(category_id)
    except BoardError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    backend = get_backend(request)
    outcome = await _dispatcher(request, app_state, 'save_field_order').submit(
        lambda target: custom_fields_service.reorder_fields(
            backend,
            target.id,
            [item.id for item in target.fields if not item.is_new],
            token=app_state.access_token,
        ),
        build=lambda _raw: category,
    )
    return redirect_with_toasts(_page_url(entity), outcome.toasts)


# fields


@router.post('/categories/{category_id}/fields')
async def add_field(
    category_id: str,
    request: Request,
    entity: str = 'parent',
    app_state: AppState = Depends(roles('admin')),
):
    entity = _entity(entity)
    try:
        created = await _patch_board(request, app_state, entity, lambda board: board.add_field(category_id))
    except BoardError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return redirect_with_toasts(_page_url(entity, modal='edit_field', category_id=category_id, field_id=created.id))


@router.post('/categories/{category_id}/fields/{field_id}')
async def update_field(
    category_id: str,
    field_id: str,
    request: Request,
    entity: str = 'parent',
    app_state: AppState = Depends(roles('admin')),
):
    entity = _entity(entity)
    values = await form_values(request, lists=('applicable_school_ids',))
    values['required'] = checkbox(values, 'required')
    modal = ModalForm()
    outcome = await _dispatcher(request, app_state, 'update_field').submit(
        lambda form: _patch_board(
            request,
            app_state,
            entity,
            lambda board: board.update_field(category_id, field_id, form),
        ),
        values=values,
        checks=[required('label', 'Field label')],
        build=lambda raw: payload_from(CustomFieldForm, raw),
        modal=modal,
    )
    if outcome.status == 'busy':
        return redirect_with_toasts(_page_url(entity))
    if not outcome.ok:
        return await _custom_fields_page(
            request,
            app_state,
            entity,
            modal=modal,
            modal_kind='edit_field',
            category_id=category_id,
            field_id=field_id,
            toasts=outcome.toasts,
            status_code=400,
        )
    return redirect_with_toasts(_page_url(entity), outcome.toasts)


@router.post('/categories/{category_id}/fields/{field_id}/move')
async def move_field(
    category_id: str,
    field_id: str,
    request: Request,
    entity: str = 'parent',
    app_state: AppState = Depends(roles('admin')),
):
    entity = _entity(entity)
    values = await form_values(request)
    try:
        index = int(values.get('index') or 0)
        await _patch_board(request, app_state, entity, lambda board: board.move_field(category_id, field_id, index))
    except (BoardError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return redirect_with_toasts(_page_url(entity))


@router.post('/categories/{category_id}/fields/{field_id}/remove')
async def remove_field(
    category_id: str,
    field_id: str,
    request: Request,
    entity: str = 'parent',
    app_state: AppState = Depends(roles('admin')),
):
    entity = _entity(entity)
    try:
        await _patch_board(request, app_state, entity, lambda board: board.remove_field(category_id, field_id))
    except BoardError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return redirect_with_toasts(_page_url(entity))
