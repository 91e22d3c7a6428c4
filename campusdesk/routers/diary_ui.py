import logging
from datetime import date
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request

from campusdesk.core.router_guard import require_school, roles
from campusdesk.core.time_provider import default_time_provider
from campusdesk.route_logging import EndpointNameRoute
from campusdesk.schemas import DiaryCommentForm, DiaryEntry, DiaryEntryForm, DiaryEntryList, SectionList, SubjectList
from campusdesk.services import academics_service, diary_service
from campusdesk.services.app_state import AppState
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


router = APIRouter(prefix='/ui', tags=['Diary UI'], route_class=EndpointNameRoute)
logger = logging.getLogger(__name__)

PORTAL_ROLES = {'admin': 'admin', 'teacher': 'teacher', 'parent': 'parent'}
WRITER_ROLES = frozenset({'admin', 'teacher'})

ACTIONS = {
    'create_entry': {
        'success_title': 'Diary entry created successfully',
        'fallback_message': 'Failed to create entry',
    },
    'delete_entry': {
        'success_title': 'Diary entry deleted',
        'fallback_message': 'Failed to delete entry',
    },
    'enable_comments': {
        'success_title': 'Comments enabled',
        'fallback_message': 'Failed to toggle comments',
    },
    'disable_comments': {
        'success_title': 'Comments disabled',
        'fallback_message': 'Failed to toggle comments',
    },
    'add_comment': {
        'success_title': 'Comment added',
        'fallback_message': 'Failed to add comment',
    },
    'delete_comment': {
        'success_title': 'Comment deleted',
        'fallback_message': 'Failed to delete comment',
    },
}

ENTRY_CHECKS = [
    required('content', 'Diary content'),
    required('section_id', 'Section'),
    required('diary_date', 'Date'),
]
COMMENT_CHECKS = [required('content', 'Comment')]


class CommentsDisabled(ValueError):
    pass


def _dispatcher(request: Request, app_state: AppState, action: str) -> ActionDispatcher:
    return dispatcher_for(request, app_state, action, lambda: ActionDispatcher(action, **ACTIONS[action]))


def _portal(portal: str) -> str:
    if portal not in PORTAL_ROLES:
        raise HTTPException(status_code=404, detail='Not found')
    return portal


def _require_writer(app_state: AppState) -> None:
    if app_state.role not in WRITER_ROLES:
        raise HTTPException(status_code=403, detail='Forbidden')


def _diary_date(value: str | None) -> date:
    try:
        return date.fromisoformat(str(value)) if value else default_time_provider.today()
    except ValueError:
        return default_time_provider.today()


def _page_url(portal: str, diary_date: date, section_id: str | None, **extra: str) -> str:
    params = {'diary_date': diary_date.isoformat()}
    if section_id:
        params['section_id'] = section_id
    params.update(extra)
    return f'/ui/{portal}/diary?{urlencode(params)}'


def _entries_resource(request: Request, app_state: AppState, diary_date: date, section_id: str | None):
    backend = get_backend(request)
    return get_binder(request).bind(
        tenant_key('diary', app_state, diary_date.isoformat(), section_id or 'all'),
        lambda: diary_service.list_entries(
            backend,
            token=app_state.access_token,
            diary_date=diary_date,
            section_id=section_id,
            campus_id=app_state.campus_id,
        ),
        DiaryEntryList,
    )


def _find_entry(entries: list[DiaryEntry], entry_id: str) -> DiaryEntry:
    for entry in entries:
        if entry.id == entry_id:
            return entry
    raise HTTPException(status_code=404, detail='Diary entry not found')


async def _diary_page(
    request: Request,
    portal: str,
    app_state: AppState,
    *,
    diary_date: date | None = None,
    section_id: str | None = None,
    modal: ModalForm | None = None,
    toasts=None,
    status_code: int = 200,
):
    school_id = require_school(app_state)
    params = request.query_params
    diary_date = diary_date or _diary_date(params.get('diary_date'))
    section_id = section_id if section_id is not None else (params.get('section_id') or None)
    backend = get_backend(request)
    binder = get_binder(request)

    entries_snapshot = await _entries_resource(request, app_state, diary_date, section_id).read()
    sections_snapshot = await binder.read(
        tenant_key('sections', app_state),
        lambda: academics_service.list_sections(
            backend,
            token=app_state.access_token,
            school_id=school_id,
            campus_id=app_state.campus_id,
        ),
        adapter=SectionList,
    )
    can_write = app_state.role in WRITER_ROLES
    subjects = []
    if can_write:
        subjects_snapshot = await binder.read(
            tenant_key('subjects', app_state),
            lambda: academics_service.list_subjects(backend, token=app_state.access_token, school_id=school_id),
            adapter=SubjectList,
        )
        subjects = subjects_snapshot.data or []

    entries = entries_snapshot.data or []
    if modal is None:
        modal = ModalForm()
        if can_write and params.get('modal') == 'new':
            modal.show({'diary_date': diary_date.isoformat(), 'section_id': section_id or ''})

    confirm_kind = str(params.get('confirm') or '')
    confirm_id = str(params.get('id') or '')

    return render(
        request,
        'diary.html',
        {
            'portal': portal,
            'diary_date': diary_date,
            'section_id': section_id or '',
            'sections': sections_snapshot.data or [],
            'subjects': subjects,
            'entries': [(entry, diary_service.render_content(entry.content)) for entry in entries],
            'entries_error': entries_snapshot.error_message,
            'loading': entries_snapshot.is_loading,
            'can_write': can_write,
            'modal': modal,
            'confirm_kind': confirm_kind,
            'confirm_id': confirm_id,
            'busy': {action: is_busy(request, app_state, action) for action in ACTIONS},
        },
        app_state=app_state,
        toasts=toasts,
        status_code=status_code,
    )


@router.get('/{portal}/diary')
async def diary_page(portal: str, request: Request, app_state: AppState = Depends(roles('admin', 'teacher', 'parent'))):
    return await _diary_page(request, _portal(portal), app_state)


@router.post('/{portal}/diary')
async def create_entry(portal: str, request: Request, app_state: AppState = Depends(roles('admin', 'teacher'))):
    portal = _portal(portal)
    _require_writer(app_state)
    school_id = require_school(app_state)
    values = await form_values(request)
    values['enable_comments'] = checkbox(values, 'enable_comments')
    diary_date = _diary_date(values.get('diary_date'))
    section_id = values.get('section_id') or None
    modal = ModalForm()
    backend = get_backend(request)
    resource = _entries_resource(request, app_state, diary_date, section_id)
    outcome = await _dispatcher(request, app_state, 'create_entry').submit(
        lambda payload: diary_service.create_entry(
            backend,
            payload,
            token=app_state.access_token,
            school_id=school_id,
            teacher_id=app_state.user_id,
            campus_id=app_state.campus_id,
        ),
        values=values,
        checks=ENTRY_CHECKS,
        build=lambda raw: payload_from(DiaryEntryForm, raw),
        modal=modal,
        on_success=lambda _entry: resource.mutate(dedupe=False),
    )
    if outcome.status == 'busy':
        return redirect_with_toasts(_page_url(portal, diary_date, section_id))
    if not outcome.ok:
        return await _diary_page(
            request,
            portal,
            app_state,
            diary_date=diary_date,
            section_id=section_id,
            modal=modal,
            toasts=outcome.toasts,
            status_code=400,
        )
    return redirect_with_toasts(_page_url(portal, diary_date, section_id), outcome.toasts)


@router.post('/{portal}/diary/{entry_id}/delete')
async def delete_entry(
    portal: str,
    entry_id: str,
    request: Request,
    app_state: AppState = Depends(roles('admin', 'teacher')),
):
    portal = _portal(portal)
    _require_writer(app_state)
    values = await form_values(request)
    diary_date = _diary_date(values.get('diary_date'))
    section_id = values.get('section_id') or None
    if not confirmed(values):
        return redirect_with_toasts(_page_url(portal, diary_date, section_id, confirm='delete_entry', id=entry_id))
    backend = get_backend(request)
    resource = _entries_resource(request, app_state, diary_date, section_id)
    outcome = await _dispatcher(request, app_state, 'delete_entry').submit(
        lambda _payload: diary_service.delete_entry(backend, entry_id, token=app_state.access_token),
        on_success=lambda _result: resource.mutate(
            data=lambda rows: [row for row in rows or [] if row.id != entry_id],
        ),
    )
    return redirect_with_toasts(_page_url(portal, diary_date, section_id), outcome.toasts)


@router.post('/{portal}/diary/{entry_id}/toggle-comments')
async def toggle_comments(
    portal: str,
    entry_id: str,
    request: Request,
    app_state: AppState = Depends(roles('admin', 'teacher')),
):
    portal = _portal(portal)
    _require_writer(app_state)
    values = await form_values(request)
    diary_date = _diary_date(values.get('diary_date'))
    section_id = values.get('section_id') or None
    resource = _entries_resource(request, app_state, diary_date, section_id)
    entry = _find_entry((await resource.read(revalidate=False)).data or [], entry_id)
    enable = not entry.enable_comments
    backend = get_backend(request)

    async def _patch_entry(updated: DiaryEntry):
        await resource.mutate(
            data=lambda rows: [
                row.model_copy(update={'enable_comments': updated.enable_comments}) if row.id == entry_id else row
                for row in rows or []
            ],
        )

    outcome = await _dispatcher(request, app_state, 'enable_comments' if enable else 'disable_comments').submit(
        lambda _payload: diary_service.toggle_comments(backend, entry_id, enable, token=app_state.access_token),
        on_success=_patch_entry,
    )
    return redirect_with_toasts(_page_url(portal, diary_date, section_id), outcome.toasts)


@router.post('/{portal}/diary/{entry_id}/comments')
async def add_comment(
    portal: str,
    entry_id: str,
    request: Request,
    app_state: AppState = Depends(roles('admin', 'teacher', 'parent')),
):
    portal = _portal(portal)
    values = await form_values(request)
    diary_date = _diary_date(values.get('diary_date'))
    section_id = values.get('section_id') or None
    resource = _entries_resource(request, app_state, diary_date, section_id)
    entry = _find_entry((await resource.read(revalidate=False)).data or [], entry_id)
    backend = get_backend(request)

    async def add(payload: DiaryCommentForm):
        if not entry.enable_comments:
            raise CommentsDisabled('Comments are disabled for this entry')
        return await diary_service.add_comment(backend, entry_id, payload, token=app_state.access_token)

    async def _append(comment):
        await resource.mutate(
            data=lambda rows: [
                row.model_copy(update={'comments': [*row.comments, comment]}) if row.id == entry_id else row
                for row in rows or []
            ],
        )

    outcome = await _dispatcher(request, app_state, 'add_comment').submit(
        add,
        values=values,
        checks=COMMENT_CHECKS,
        build=lambda raw: payload_from(DiaryCommentForm, raw),
        on_success=_append,
    )
    return redirect_with_toasts(_page_url(portal, diary_date, section_id), outcome.toasts)


@router.post('/{portal}/diary/comments/{comment_id}/delete')
async def delete_comment(
    portal: str,
    comment_id: str,
    request: Request,
    app_state: AppState = Depends(roles('admin', 'teacher', 'parent')),
):
    portal = _portal(portal)
    values = await form_values(request)
    diary_date = _diary_date(values.get('diary_date'))
    section_id = values.get('section_id') or None
    if not confirmed(values):
        return redirect_with_toasts(_page_url(portal, diary_date, section_id, confirm='delete_comment', id=comment_id))
    resource = _entries_resource(request, app_state, diary_date, section_id)
    entries = (await resource.read(revalidate=False)).data or []
    comment = next((item for entry in entries for item in entry.comments if item.id == comment_id), None)
    if comment is None:
        raise HTTPException(status_code=404, detail='Comment not found')
    if app_state.role not in WRITER_ROLES and comment.author_id != app_state.user_id:
        raise HTTPException(status_code=403, detail='Forbidden')
    backend = get_backend(request)
    outcome = await _dispatcher(request, app_state, 'delete_comment').submit(
        lambda _payload: diary_service.delete_comment(backend, comment_id, token=app_state.access_token),
        on_success=lambda _result: resource.mutate(
            data=lambda rows: [
                row.model_copy(update={'comments': [item for item in row.comments if item.id != comment_id]})
                for row in rows or []
            ],
        ),
    )
    return redirect_with_toasts(_page_url(portal, diary_date, section_id), outcome.toasts)
