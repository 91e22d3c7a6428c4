import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse, Response

from campusdesk.core.router_guard import roles
from campusdesk.core.time_provider import default_time_provider
from campusdesk.route_logging import EndpointNameRoute
from campusdesk.schemas import (
    BILLING_CYCLES,
    PAYMENT_STATUSES,
    BillingPlan,
    BillingPlanForm,
    BillingPlanList,
    BillingRecord,
    BillingRecordForm,
    BillingRecordList,
    SchoolList,
)
from campusdesk.services import billing_service, export_service, school_service
from campusdesk.services.app_state import AppState
from campusdesk.services.dispatcher import ActionDispatcher
from campusdesk.services.forms import FormValidationError, ModalForm, non_negative, payload_from, required
from campusdesk.services.listing_service import ListingState, apply_listing, filter_rows
from campusdesk.ui_support import (
    confirmed,
    dispatcher_for,
    form_values,
    get_backend,
    get_binder,
    get_supabase,
    is_busy,
    redirect_with_toasts,
    render,
)


router = APIRouter(prefix='/ui/superadmin/billing', tags=['Billing UI'], route_class=EndpointNameRoute)
logger = logging.getLogger(__name__)

PAGE_URL = '/ui/superadmin/billing'
PLANS_KEY = ('billing_plans',)
RECORDS_KEY = ('billing_records',)
SCHOOLS_KEY = ('schools',)
RECORD_SEARCH_FIELDS = ('school_name', 'invoice_number', 'subscription_plan')

ACTIONS = {
    'create_plan': {
        'success_title': 'Billing plan created successfully',
        'failure_title': 'Error creating billing plan',
        'fallback_message': 'Failed to create billing plan',
    },
    'update_plan': {
        'success_title': 'Billing plan updated successfully',
        'failure_title': 'Error updating billing plan',
        'fallback_message': 'Failed to update billing plan',
    },
    'delete_plan': {
        'success_title': 'Billing plan deleted',
        'failure_title': 'Error deleting billing plan',
        'fallback_message': 'Failed to delete billing plan',
        'describe': lambda _result, plan: f'{plan.name} plan has been removed',
    },
    'create_record': {
        'success_title': 'Billing record created successfully',
        'failure_title': 'Error creating billing record',
        'fallback_message': 'Failed to create billing record',
    },
    'update_record': {
        'success_title': 'Billing record updated successfully',
        'failure_title': 'Error updating billing record',
        'fallback_message': 'Failed to update billing record',
    },
    'delete_record': {
        'success_title': 'Billing record deleted',
        'failure_title': 'Error deleting billing record',
        'fallback_message': 'Failed to delete billing record',
        'describe': lambda _result, record: f'Billing for {record.school_name} has been removed',
    },
    'mark_paid': {
        'success_title': 'Payment status updated',
        'failure_title': 'Error updating payment status',
        'fallback_message': 'Failed to update payment status',
        'describe': lambda _result, record: f'{record.school_name} marked as paid',
    },
}

PLAN_CHECKS = [
    required('name', 'Plan name'),
    non_negative('monthly_price', 'Monthly price'),
    non_negative('quarterly_price', 'Quarterly price'),
    non_negative('yearly_price', 'Yearly price'),
]
RECORD_CHECKS = [
    required('school_id', 'School'),
    required('billing_plan_id', 'Billing plan'),
    required('billing_cycle', 'Billing cycle'),
    required('start_date', 'Start date'),
]


def _dispatcher(request: Request, app_state: AppState, action: str) -> ActionDispatcher:
    return dispatcher_for(request, app_state, action, lambda: ActionDispatcher(action, **ACTIONS[action]))


def _plans_fetcher(request: Request, app_state: AppState):
    supabase = get_supabase(request)
    return lambda: billing_service.list_plans(supabase, token=app_state.access_token)


def _records_fetcher(request: Request, app_state: AppState):
    supabase = get_supabase(request)
    return lambda: billing_service.list_records(supabase, token=app_state.access_token)


def _schools_fetcher(request: Request, app_state: AppState):
    backend = get_backend(request)
    return lambda: school_service.list_schools(backend, token=app_state.access_token)


async def _load_plans(request: Request, app_state: AppState) -> list[BillingPlan]:
    snapshot = await get_binder(request).read(PLANS_KEY, _plans_fetcher(request, app_state), adapter=BillingPlanList)
    return snapshot.data or []


async def _load_records(request: Request, app_state: AppState) -> list[BillingRecord]:
    snapshot = await get_binder(request).read(RECORDS_KEY, _records_fetcher(request, app_state), adapter=BillingRecordList)
    return snapshot.data or []


def _find(items: list, item_id: str):
    for item in items:
        if item.id == item_id:
            return item
    raise HTTPException(status_code=404, detail='Not found')


async def _refetch_records(request: Request, app_state: AppState) -> None:
    await get_binder(request).mutate(
        RECORDS_KEY,
        _records_fetcher(request, app_state),
        adapter=BillingRecordList,
        dedupe=False,
    )


async def _refetch_plans(request: Request, app_state: AppState) -> None:
    await get_binder(request).mutate(
        PLANS_KEY,
        _plans_fetcher(request, app_state),
        adapter=BillingPlanList,
        dedupe=False,
    )


async def _billing_page(
    request: Request,
    app_state: AppState,
    *,
    modal: ModalForm | None = None,
    modal_kind: str = '',
    editing_id: str = '',
    toasts: list | None = None,
    status_code: int = 200,
):
    params = request.query_params
    binder = get_binder(request)
    records_snapshot = await binder.read(RECORDS_KEY, _records_fetcher(request, app_state), adapter=BillingRecordList)
    plans_snapshot = await binder.read(PLANS_KEY, _plans_fetcher(request, app_state), adapter=BillingPlanList)
    records = records_snapshot.data or []
    plans = plans_snapshot.data or []

    listing = ListingState.from_query(params, filter_names=('payment_status',))
    plan_search = ListingState(search=str(params.get('plan_search') or '').strip())
    visible_plans = filter_rows(plans, plan_search, ('name',))

    modal_kind = modal_kind or str(params.get('modal') or '')
    editing_id = editing_id or str(params.get('id') or '')
    if modal is None:
        modal = ModalForm()
        if modal_kind == 'edit_plan' and editing_id:
            modal.show(_find(plans, editing_id).model_dump(mode='json'))
        elif modal_kind == 'edit_record' and editing_id:
            modal.show(_find(records, editing_id).model_dump(mode='json'))
        elif modal_kind in ('new_plan', 'new_record'):
            modal.show({'billing_cycle': 'Monthly', 'payment_status': 'unpaid', 'is_active': True})

    schools = []
    if modal.open and modal_kind in ('new_record', 'edit_record'):
        snapshot = await binder.read(SCHOOLS_KEY, _schools_fetcher(request, app_state), adapter=SchoolList)
        schools = snapshot.data or []

    confirm_kind = str(params.get('confirm') or '')
    confirm_target = None
    if confirm_kind in ('delete_plan',) and editing_id:
        confirm_target = _find(plans, editing_id)
    elif confirm_kind in ('delete_record', 'mark_paid') and editing_id:
        confirm_target = _find(records, editing_id)

    return render(
        request,
        'billing.html',
        {
            'listing': listing,
            'page': apply_listing(records, listing, RECORD_SEARCH_FIELDS),
            'plan_search': plan_search.search,
            'plans': visible_plans,
            'all_plans': plans,
            'stats': billing_service.billing_stats(records),
            'records_error': records_snapshot.error_message,
            'plans_error': plans_snapshot.error_message,
            'modal': modal,
            'modal_kind': modal_kind,
            'editing_id': editing_id,
            'schools': schools,
            'confirm_kind': confirm_kind,
            'confirm_target': confirm_target,
            'statuses': PAYMENT_STATUSES,
            'cycles': BILLING_CYCLES,
            'busy': {action: is_busy(request, app_state, action) for action in ACTIONS},
        },
        app_state=app_state,
        toasts=toasts,
        status_code=status_code,
    )


@router.get('')
async def billing_page(request: Request, app_state: AppState = Depends(roles('super_admin'))):
    return await _billing_page(request, app_state)


@router.get('/export.csv')
async def billing_export(request: Request, app_state: AppState = Depends(roles('super_admin'))):
    records = await _load_records(request, app_state)
    listing = ListingState.from_query(request.query_params, filter_names=('payment_status',))
    filtered = filter_rows(records, listing, RECORD_SEARCH_FIELDS)
    filename = export_service.billing_report_filename(default_time_provider)
    logger.info('billing_export rows=%s filename=%s', len(filtered), filename)
    return Response(
        content=export_service.billing_csv(filtered),
        media_type='text/csv',
        headers={'Content-Disposition': f'attachment; filename="{filename}"'},
    )


@router.get('/records/{record_id}/invoice')
async def billing_invoice(record_id: str, request: Request, app_state: AppState = Depends(roles('super_admin'))):
    record = _find(await _load_records(request, app_state), record_id)
    return HTMLResponse(export_service.render_invoice(record))


# plans


def _plan_values(values: dict) -> dict:
    values = dict(values)
    values['is_active'] = str(values.get('is_active') or '').lower() in ('1', 'true', 'on', 'yes')
    return values


@router.post('/plans')
async def create_plan(request: Request, app_state: AppState = Depends(roles('super_admin'))):
    values = _plan_values(await form_values(request))
    modal = ModalForm()
    supabase = get_supabase(request)
    outcome = await _dispatcher(request, app_state, 'create_plan').submit(
        lambda payload: billing_service.create_plan(supabase, payload, token=app_state.access_token),
        values=values,
        checks=PLAN_CHECKS,
        build=lambda raw: payload_from(BillingPlanForm, raw),
        modal=modal,
        on_success=lambda _plan: _refetch_plans(request, app_state),
    )
    if outcome.status == 'busy':
        return redirect_with_toasts(PAGE_URL)
    if not outcome.ok:
        return await _billing_page(request, app_state, modal=modal, modal_kind='new_plan', toasts=outcome.toasts, status_code=400)
    return redirect_with_toasts(PAGE_URL, outcome.toasts)


@router.post('/plans/{plan_id}')
async def update_plan(plan_id: str, request: Request, app_state: AppState = Depends(roles('super_admin'))):
    values = _plan_values(await form_values(request))
    modal = ModalForm()
    supabase = get_supabase(request)
    outcome = await _dispatcher(request, app_state, 'update_plan').submit(
        lambda payload: billing_service.update_plan(supabase, plan_id, payload, token=app_state.access_token),
        values=values,
        checks=PLAN_CHECKS,
        build=lambda raw: payload_from(BillingPlanForm, raw),
        modal=modal,
        on_success=lambda _plan: _refetch_plans(request, app_state),
    )
    if outcome.status == 'busy':
        return redirect_with_toasts(PAGE_URL)
    if not outcome.ok:
        return await _billing_page(
            request,
            app_state,
            modal=modal,
            modal_kind='edit_plan',
            editing_id=plan_id,
            toasts=outcome.toasts,
            status_code=400,
        )
    return redirect_with_toasts(PAGE_URL, outcome.toasts)


@router.post('/plans/{plan_id}/delete')
async def delete_plan(plan_id: str, request: Request, app_state: AppState = Depends(roles('super_admin'))):
    values = await form_values(request)
    if not confirmed(values):
        return redirect_with_toasts(f'{PAGE_URL}?confirm=delete_plan&id={plan_id}')
    plan = _find(await _load_plans(request, app_state), plan_id)
    supabase = get_supabase(request)
    binder = get_binder(request)

    async def _drop_plan(_result):
        await binder.mutate(
            PLANS_KEY,
            data=lambda plans: [item for item in plans or [] if item.id != plan_id],
            adapter=BillingPlanList,
        )

    outcome = await _dispatcher(request, app_state, 'delete_plan').submit(
        lambda target: billing_service.delete_plan(supabase, target.id, token=app_state.access_token),
        build=lambda _raw: plan,
        on_success=_drop_plan,
    )
    return redirect_with_toasts(PAGE_URL, outcome.toasts)


# records


def _record_builder(plans: list[BillingPlan]):
    def build(raw: dict) -> BillingRecordForm:
        values = dict(raw)
        plan = next((item for item in plans if item.id == values.get('billing_plan_id')), None)
        if plan is None:
            raise FormValidationError({'billing_plan_id': 'Selected billing plan not found'})
        cycle = values.get('billing_cycle') or 'Monthly'
        if values.get('amount') in (None, ''):
            values['amount'] = billing_service.calculate_billing_amount(plan, cycle)
        if not values.get('due_date') and values.get('start_date'):
            try:
                start = date.fromisoformat(str(values['start_date']))
            except ValueError as exc:
                raise FormValidationError({'start_date': 'Start date is invalid'}) from exc
            values['due_date'] = billing_service.calculate_due_date(start, cycle).isoformat()
        return payload_from(BillingRecordForm, values)

    return build


@router.post('/records')
async def create_record(request: Request, app_state: AppState = Depends(roles('super_admin'))):
    values = await form_values(request)
    plans = await _load_plans(request, app_state)
    modal = ModalForm()
    supabase = get_supabase(request)
    outcome = await _dispatcher(request, app_state, 'create_record').submit(
        lambda payload: billing_service.create_record(supabase, payload, token=app_state.access_token),
        values=values,
        checks=RECORD_CHECKS,
        build=_record_builder(plans),
        modal=modal,
        on_success=lambda _record: _refetch_records(request, app_state),
    )
    if outcome.status == 'busy':
        return redirect_with_toasts(PAGE_URL)
    if not outcome.ok:
        return await _billing_page(request, app_state, modal=modal, modal_kind='new_record', toasts=outcome.toasts, status_code=400)
    return redirect_with_toasts(PAGE_URL, outcome.toasts)


@router.post('/records/{record_id}')
async def update_record(record_id: str, request: Request, app_state: AppState = Depends(roles('super_admin'))):
    values = await form_values(request)
    plans = await _load_plans(request, app_state)
    modal = ModalForm()
    supabase = get_supabase(request)
    outcome = await _dispatcher(request, app_state, 'update_record').submit(
        lambda payload: billing_service.update_record(supabase, record_id, payload, token=app_state.access_token),
        values=values,
        checks=RECORD_CHECKS,
        build=_record_builder(plans),
        modal=modal,
        on_success=lambda _record: _refetch_records(request, app_state),
    )
    if outcome.status == 'busy':
        return redirect_with_toasts(PAGE_URL)
    if not outcome.ok:
        return await _billing_page(
            request,
            app_state,
            modal=modal,
            modal_kind='edit_record',
            editing_id=record_id,
            toasts=outcome.toasts,
            status_code=400,
        )
    return redirect_with_toasts(PAGE_URL, outcome.toasts)


@router.post('/records/{record_id}/delete')
async def delete_record(record_id: str, request: Request, app_state: AppState = Depends(roles('super_admin'))):
    values = await form_values(request)
    if not confirmed(values):
        return redirect_with_toasts(f'{PAGE_URL}?confirm=delete_record&id={record_id}')
    record = _find(await _load_records(request, app_state), record_id)
    supabase = get_supabase(request)
    outcome = await _dispatcher(request, app_state, 'delete_record').submit(
        lambda target: billing_service.delete_record(supabase, target.id, token=app_state.access_token),
        build=lambda _raw: record,
        on_success=lambda _result: _refetch_records(request, app_state),
    )
    return redirect_with_toasts(PAGE_URL, outcome.toasts)


@router.post('/records/{record_id}/mark-paid')
async def mark_record_paid(record_id: str, request: Request, app_state: AppState = Depends(roles('super_admin'))):
    values = await form_values(request)
    if not confirmed(values):
        return redirect_with_toasts(f'{PAGE_URL}?confirm=mark_paid&id={record_id}')
    record = _find(await _load_records(request, app_state), record_id)
    supabase = get_supabase(request)
    binder = get_binder(request)

    async def _patch_record(updated: BillingRecord):
        await binder.mutate(
            RECORDS_KEY,
            data=lambda rows: [updated if item.id == updated.id else item for item in rows or []],
            adapter=BillingRecordList,
        )

    outcome = await _dispatcher(request, app_state, 'mark_paid').submit(
        lambda target: billing_service.mark_paid(supabase, target, token=app_state.access_token),
        build=lambda _raw: record,
        on_success=_patch_record,
    )
    return redirect_with_toasts(PAGE_URL, outcome.toasts)
