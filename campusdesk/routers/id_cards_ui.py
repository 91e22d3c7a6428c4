import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from campusdesk.core.router_guard import require_school, roles
from campusdesk.route_logging import EndpointNameRoute
from campusdesk.schemas import ID_CARD_USER_TYPES, IdCardTemplate, IdCardTemplateForm, IdCardTemplateList
from campusdesk.services import id_card_service
from campusdesk.services.app_state import AppState
from campusdesk.services.dispatcher import ActionDispatcher
from campusdesk.services.forms import ModalForm, payload_from, required
from campusdesk.ui_support import (
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


router = APIRouter(prefix='/ui/admin/id-cards', tags=['ID Cards UI'], route_class=EndpointNameRoute)
logger = logging.getLogger(__name__)

PAGE_URL = '/ui/admin/id-cards'

ACTIONS = {
    'create_template': {
        'success_title': 'Template created successfully',
        'fallback_message': 'Failed to create template',
    },
    'activate_template': {
        'success_title': 'Template activated successfully',
        'fallback_message': 'Failed to activate template',
    },
    'delete_template': {
        'success_title': 'Template deleted successfully',
        'fallback_message': 'Failed to delete template',
    },
}


def _dispatcher(request: Request, app_state: AppState, action: str) -> ActionDispatcher:
    return dispatcher_for(request, app_state, action, lambda: ActionDispatcher(action, **ACTIONS[action]))


def _user_type(value: str | None) -> str:
    user_type = (value or 'student').strip().lower()
    if user_type not in ID_CARD_USER_TYPES:
        raise HTTPException(status_code=400, detail='Unsupported user type')
    return user_type


def _page_url(user_type: str) -> str:
    return f'{PAGE_URL}?user_type={user_type}'


def _templates_resource(request: Request, app_state: AppState, user_type: str):
    require_school(app_state)
    backend = get_backend(request)
    return get_binder(request).bind(
        tenant_key('id_card_templates', app_state, user_type),
        lambda: id_card_service.list_templates(
            backend,
            user_type,
            token=app_state.access_token,
            campus_id=app_state.campus_id,
        ),
        IdCardTemplateList,
    )


def _find(rows: list[IdCardTemplate], template_id: str) -> IdCardTemplate:
    for row in rows:
        if row.id == template_id:
            return row
    raise HTTPException(status_code=404, detail='Template not found')


async def _templates_page(
    request: Request,
    app_state: AppState,
    user_type: str,
    *,
    modal: ModalForm | None = None,
    toasts=None,
    status_code: int = 200,
):
    params = request.query_params
    snapshot = await _templates_resource(request, app_state, user_type).read()
    rows = snapshot.data or []
    if modal is None:
        modal = ModalForm()
        if params.get('modal') == 'new':
            modal.show({'user_type': user_type, 'orientation': 'portrait'})

    confirm_target = None
    if params.get('confirm') == 'delete' and params.get('id'):
        confirm_target = _find(rows, str(params.get('id')))

    return render(
        request,
        'id_card_templates.html',
        {
            'user_type': user_type,
            'user_types': ID_CARD_USER_TYPES,
            'templates': rows,
            'templates_error': snapshot.error_message,
            'loading': snapshot.is_loading,
            'modal': modal,
            'confirm_target': confirm_target,
            'busy': {action: is_busy(request, app_state, action) for action in ACTIONS},
        },
        app_state=app_state,
        toasts=toasts,
        status_code=status_code,
    )


@router.get('')
async def id_card_templates_page(request: Request, user_type: str = 'student', app_state: AppState = Depends(roles('admin'))):
    return await _templates_page(request, app_state, _user_type(user_type))


@router.post('')
async def create_template(request: Request, app_state: AppState = Depends(roles('admin'))):
    values = await form_values(request)
    user_type = _user_type(values.get('user_type'))
    modal = ModalForm()
    backend = get_backend(request)
    resource = _templates_resource(request, app_state, user_type)
    outcome = await _dispatcher(request, app_state, 'create_template').submit(
        lambda payload: id_card_service.create_template(
            backend,
            payload,
            token=app_state.access_token,
            campus_id=app_state.campus_id,
        ),
        values=values,
        checks=[required('name', 'Template name')],
        build=lambda raw: payload_from(IdCardTemplateForm, raw),
        modal=modal,
        on_success=lambda _template: resource.mutate(dedupe=False),
    )
    if outcome.status == 'busy':
        return redirect_with_toasts(_page_url(user_type))
    if not outcome.ok:
        return await _templates_page(request, app_state, user_type, modal=modal, toasts=outcome.toasts, status_code=400)
    return redirect_with_toasts(_page_url(user_type), outcome.toasts)


@router.post('/{template_id}/activate')
async def activate_template(template_id: str, request: Request, user_type: str = 'student', app_state: AppState = Depends(roles('admin'))):
    user_type = _user_type(user_type)
    resource = _templates_resource(request, app_state, user_type)
    template = _find((await resource.read(revalidate=False)).data or [], template_id)
    backend = get_backend(request)
    outcome = await _dispatcher(request, app_state, 'activate_template').submit(
        lambda target: id_card_service.activate_template(backend, target, token=app_state.access_token),
        build=lambda _raw: template,
        on_success=lambda _result: resource.mutate(
            data=lambda rows: id_card_service.mark_active(rows or [], template_id),
        ),
    )
    return redirect_with_toasts(_page_url(user_type), outcome.toasts)


@router.post('/{template_id}/delete')
async def delete_template(template_id: str, request: Request, user_type: str = 'student', app_state: AppState = Depends(roles('admin'))):
    user_type = _user_type(user_type)
    values = await form_values(request)
    if not confirmed(values):
        return redirect_with_toasts(f'{_page_url(user_type)}&confirm=delete&id={template_id}')
    resource = _templates_resource(request, app_state, user_type)
    template = _find((await resource.read(revalidate=False)).data or [], template_id)
    backend = get_backend(request)
    outcome = await _dispatcher(request, app_state, 'delete_template').submit(
        lambda target: id_card_service.delete_template(backend, target, token=app_state.access_token),
        build=lambda _raw: template,
        on_success=lambda _result: resource.mutate(
            data=lambda rows: [row for row in rows or [] if row.id != template_id],
        ),
    )
    return redirect_with_toasts(_page_url(user_type), outcome.toasts)
