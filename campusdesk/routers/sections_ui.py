import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from campusdesk.core.router_guard import require_school, roles
from campusdesk.route_logging import EndpointNameRoute
from campusdesk.schemas import GradeLevelList, Section, SectionForm, SectionList
from campusdesk.services import academics_service
from campusdesk.services.app_state import AppState
from campusdesk.services.dispatcher import ActionDispatcher
from campusdesk.services.forms import ModalForm, payload_from, positive, required
from campusdesk.services.listing_service import ListingState, apply_listing, filter_rows
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


router = APIRouter(prefix='/ui/admin/sections', tags=['Sections UI'], route_class=EndpointNameRoute)
logger = logging.getLogger(__name__)

PAGE_URL = '/ui/admin/sections'

SECTION_CHECKS = [
    required('grade_level_id', 'Grade level'),
    required('name', 'Section name'),
    positive('capacity', 'Capacity'),
]

ACTIONS = {
    'create_section': {
        'success_title': 'Section created successfully',
        'fallback_message': 'Failed to create section',
    },
    'update_section': {
        'success_title': 'Section updated successfully',
        'fallback_message': 'Failed to update section',
    },
    'delete_section': {
        'success_title': 'Section deleted successfully',
        'fallback_message': 'Failed to delete section',
        'describe': lambda _result, section: f'{section.name} has been removed',
    },
}


def _dispatcher(request: Request, app_state: AppState, action: str) -> ActionDispatcher:
    return dispatcher_for(request, app_state, action, lambda: ActionDispatcher(action, **ACTIONS[action]))


def _sections_resource(request: Request, app_state: AppState):
    backend = get_backend(request)
    school_id = require_school(app_state)
    return get_binder(request).bind(
        tenant_key('sections', app_state),
        lambda: academics_service.list_sections(
            backend,
            token=app_state.access_token,
            school_id=school_id,
            campus_id=app_state.campus_id,
        ),
        SectionList,
    )


def _grades_resource(request: Request, app_state: AppState):
    backend = get_backend(request)
    school_id = require_school(app_state)
    return get_binder(request).bind(
        tenant_key('grade_levels', app_state),
        lambda: academics_service.list_grade_levels(
            backend,
            token=app_state.access_token,
            school_id=school_id,
            campus_id=app_state.campus_id,
        ),
        GradeLevelList,
    )


def _find(sections: list[Section], section_id: str) -> Section:
    for section in sections:
        if section.id == section_id:
            return section
    raise HTTPException(status_code=404, detail='Section not found')


async def _sections_page(
    request: Request,
    app_state: AppState,
    *,
    modal: ModalForm | None = None,
    modal_kind: str = '',
    editing_id: str = '',
    toasts=None,
    status_code: int = 200,
):
    params = request.query_params
    sections_snapshot = await _sections_resource(request, app_state).read()
    grades_snapshot = await _grades_resource(request, app_state).read()
    sections = sections_snapshot.data or []

    listing = ListingState.from_query(params, filter_names=('grade_level_id',))
    modal_kind = modal_kind or str(params.get('modal') or '')
    editing_id = editing_id or str(params.get('id') or '')
    if modal is None:
        modal = ModalForm()
        if modal_kind == 'edit' and editing_id:
            modal.show(_find(sections, editing_id).model_dump(mode='json'))
        elif modal_kind == 'new':
            modal.show({'grade_level_id': listing.filters.get('grade_level_id', ''), 'capacity': 30})

    confirm_target = None
    if params.get('confirm') == 'delete' and editing_id:
        confirm_target = _find(sections, editing_id)

    return render(
        request,
        'sections.html',
        {
            'listing': listing,
            'page': apply_listing(sections, listing, ('name', 'grade_name')),
            'totals': academics_service.section_totals(filter_rows(sections, listing, ('name', 'grade_name'))),
            'grades': grades_snapshot.data or [],
            'sections_error': sections_snapshot.error_message,
            'grades_error': grades_snapshot.error_message,
            'loading': sections_snapshot.is_loading,
            'modal': modal,
            'modal_kind': modal_kind,
            'editing_id': editing_id,
            'confirm_target': confirm_target,
            'busy': {action: is_busy(request, app_state, action) for action in ACTIONS},
        },
        app_state=app_state,
        toasts=toasts,
        status_code=status_code,
    )


@router.get('')
async def sections_page(request: Request, app_state: AppState = Depends(roles('admin'))):
    return await _sections_page(request, app_state)


async def _save_section(request: Request, app_state: AppState, section_id: str | None):
    school_id = require_school(app_state)
    values = await form_values(request)
    modal = ModalForm()
    backend = get_backend(request)
    resource = _sections_resource(request, app_state)
    action = 'update_section' if section_id else 'create_section'

    async def save(payload: SectionForm) -> Section:
        if section_id:
            return await academics_service.update_section(
                backend,
                section_id,
                payload,
                token=app_state.access_token,
                school_id=school_id,
                campus_id=app_state.campus_id,
            )
        return await academics_service.create_section(
            backend,
            payload,
            token=app_state.access_token,
            school_id=school_id,
            campus_id=app_state.campus_id,
        )

    outcome = await _dispatcher(request, app_state, action).submit(
        save,
        values=values,
        checks=SECTION_CHECKS,
        build=lambda raw: payload_from(SectionForm, raw),
        modal=modal,
        on_success=lambda _section: resource.mutate(dedupe=False),
    )
    if outcome.status == 'busy':
        return redirect_with_toasts(PAGE_URL)
    if not outcome.ok:
        return await _sections_page(
            request,
            app_state,
            modal=modal,
            modal_kind='edit' if section_id else 'new',
            editing_id=section_id or '',
            toasts=outcome.toasts,
            status_code=400,
        )
    return redirect_with_toasts(PAGE_URL, outcome.toasts)


@router.post('')
async def create_section(request: Request, app_state: AppState = Depends(roles('admin'))):
    return await _save_section(request, app_state, None)


@router.post('/{section_id}')
async def update_section(section_id: str, request: Request, app_state: AppState = Depends(roles('admin'))):
    return await _save_section(request, app_state, section_id)


@router.post('/{section_id}/delete')
async def delete_section(section_id: str, request: Request, app_state: AppState = Depends(roles('admin'))):
    values = await form_values(request)
    if not confirmed(values):
        return redirect_with_toasts(f'{PAGE_URL}?confirm=delete&id={section_id}')
    resource = _sections_resource(request, app_state)
    section = _find((await resource.read(revalidate=False)).data or [], section_id)
    backend = get_backend(request)
    outcome = await _dispatcher(request, app_state, 'delete_section').submit(
        lambda target: academics_service.delete_section(
            backend,
            target.id,
            token=app_state.access_token,
            campus_id=app_state.campus_id,
        ),
        build=lambda _raw: section,
        on_success=lambda _result: resource.mutate(
            data=lambda rows: [row for row in rows or [] if row.id != section_id],
        ),
    )
    return redirect_with_toasts(PAGE_URL, outcome.toasts)
