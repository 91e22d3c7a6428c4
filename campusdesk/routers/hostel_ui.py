import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from campusdesk.core.router_guard import require_school, roles
from campusdesk.route_logging import EndpointNameRoute
from campusdesk.schemas import (
    RENTAL_FEE_STATUSES,
    HostelRentalFee,
    HostelRentalFeeList,
    HostelVisitForm,
    HostelVisitList,
    RentalFeeGenerateForm,
    RentalFeePaymentForm,
)
from campusdesk.services import hostel_service
from campusdesk.services.app_state import AppState
from campusdesk.services.dispatcher import ActionDispatcher
from campusdesk.services.forms import ModalForm, date_order, non_negative, payload_from, positive, required
from campusdesk.services.listing_service import ListingState, apply_listing, filter_rows
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


router = APIRouter(prefix='/ui/admin/hostel', tags=['Hostel UI'], route_class=EndpointNameRoute)
logger = logging.getLogger(__name__)

VISITS_URL = '/ui/admin/hostel/visits'
FEES_URL = '/ui/admin/hostel/fees'

ACTIONS = {
    'create_visit': {
        'success_title': 'Visit recorded',
        'fallback_message': 'Failed to create visit',
        'describe': lambda visit, _payload: f'{visit.visitor_name} checked in',
    },
    'check_out_visit': {
        'success_title': 'Visitor checked out',
        'fallback_message': 'Failed to check out visitor',
    },
    'generate_fees': {
        'success_title': 'Rental fees generated',
        'fallback_message': 'Failed to generate fees',
        'describe': lambda _result, form: f'Period {form.period_start.isoformat()} to {form.period_end.isoformat()}',
    },
    'record_payment': {
        'success_title': 'Payment recorded',
        'fallback_message': 'Failed to record payment',
    },
}

VISIT_CHECKS = [
    required('student_id', 'Student'),
    required('visitor_name', 'Visitor name'),
]
GENERATE_CHECKS = [
    required('period_start', 'Period start'),
    required('period_end', 'Period end'),
    date_order('period_start', 'period_end', 'Period start must be before period end'),
    non_negative('factor', 'Factor'),
]
PAYMENT_CHECKS = [positive('amount', 'Amount')]


def _dispatcher(request: Request, app_state: AppState, action: str) -> ActionDispatcher:
    return dispatcher_for(request, app_state, action, lambda: ActionDispatcher(action, **ACTIONS[action]))


def _active_only(request: Request) -> bool:
    return str(request.query_params.get('active_only') or '') in ('1', 'true', 'on')


def _visits_resource(request: Request, app_state: AppState, active_only: bool):
    backend = get_backend(request)
    school_id = require_school(app_state)
    return get_binder(request).bind(
        tenant_key('hostel_visits', app_state, 'active' if active_only else 'all'),
        lambda: hostel_service.list_visits(
            backend,
            token=app_state.access_token,
            school_id=school_id,
            active_only=active_only,
        ),
        HostelVisitList,
    )


def _fees_resource(request: Request, app_state: AppState):
    backend = get_backend(request)
    school_id = require_school(app_state)
    return get_binder(request).bind(
        tenant_key('hostel_fees', app_state),
        lambda: hostel_service.list_fees(backend, token=app_state.access_token, school_id=school_id),
        HostelRentalFeeList,
    )


def _refresh_visits(request: Request, app_state: AppState):
    async def refresh(_result):
        for active_only in (False, True):
            await _visits_resource(request, app_state, active_only).mutate(dedupe=False)

    return refresh


# visits


async def _visits_page(request: Request, app_state: AppState, *, modal: ModalForm | None = None, toasts=None, status_code=200):
    params = request.query_params
    active_only = _active_only(request)
    snapshot = await _visits_resource(request, app_state, active_only).read()
    visits = snapshot.data or []
    listing = ListingState.from_query(params)
    if modal is None:
        modal = ModalForm()
        if params.get('modal') == 'new':
            modal.show()

    confirm_target = None
    if params.get('confirm') == 'checkout' and params.get('id'):
        confirm_target = next((visit for visit in visits if visit.id == params.get('id')), None)

    return render(
        request,
        'hostel_visits.html',
        {
            'listing': listing,
            'active_only': active_only,
            'page': apply_listing(visits, listing, ('student_name', 'visitor_name', 'relation', 'purpose')),
            'active_count': sum(1 for visit in visits if visit.is_active),
            'visits_error': snapshot.error_message,
            'modal': modal,
            'confirm_target': confirm_target,
            'busy': {action: is_busy(request, app_state, action) for action in ('create_visit', 'check_out_visit')},
        },
        app_state=app_state,
        toasts=toasts,
        status_code=status_code,
    )


@router.get('/visits')
async def visits_page(request: Request, app_state: AppState = Depends(roles('admin'))):
    return await _visits_page(request, app_state)


@router.post('/visits')
async def create_visit(request: Request, app_state: AppState = Depends(roles('admin'))):
    school_id = require_school(app_state)
    values = await form_values(request)
    modal = ModalForm()
    backend = get_backend(request)
    outcome = await _dispatcher(request, app_state, 'create_visit').submit(
        lambda payload: hostel_service.create_visit(backend, payload, token=app_state.access_token, school_id=school_id),
        values=values,
        checks=VISIT_CHECKS,
        build=lambda raw: payload_from(HostelVisitForm, raw),
        modal=modal,
        on_success=_refresh_visits(request, app_state),
    )
    if outcome.status == 'busy':
        return redirect_with_toasts(VISITS_URL)
    if not outcome.ok:
        return await _visits_page(request, app_state, modal=modal, toasts=outcome.toasts, status_code=400)
    return redirect_with_toasts(VISITS_URL, outcome.toasts)


@router.post('/visits/{visit_id}/checkout')
async def check_out_visit(visit_id: str, request: Request, app_state: AppState = Depends(roles('admin'))):
    values = await form_values(request)
    target = VISITS_URL + ('?active_only=1' if checkbox(values, 'active_only') else '')
    if not confirmed(values):
        separator = '&' if '?' in target else '?'
        return redirect_with_toasts(f'{target}{separator}confirm=checkout&id={visit_id}')
    backend = get_backend(request)
    outcome = await _dispatcher(request, app_state, 'check_out_visit').submit(
        lambda _payload: hostel_service.check_out_visit(backend, visit_id, token=app_state.access_token),
        on_success=_refresh_visits(request, app_state),
    )
    return redirect_with_toasts(target, outcome.toasts)


# rental fees


def _find_fee(fees: list[HostelRentalFee], fee_id: str) -> HostelRentalFee:
    for fee in fees:
        if fee.id == fee_id:
            return fee
    raise HTTPException(status_code=404, detail='Fee not found')


async def _fees_page(
    request: Request,
    app_state: AppState,
    *,
    modal: ModalForm | None = None,
    modal_kind: str = '',
    fee_id: str = '',
    toasts=None,
    status_code=200,
):
    params = request.query_params
    snapshot = await _fees_resource(request, app_state).read()
    fees = snapshot.data or []
    listing = ListingState.from_query(params, filter_names=('status',))
    filtered = filter_rows(fees, listing, ('student_name',))
    modal_kind = modal_kind or str(params.get('modal') or '')
    fee_id = fee_id or str(params.get('id') or '')
    if modal is None:
        modal = ModalForm()
        if modal_kind == 'generate':
            modal.show({'factor': 1})
        elif modal_kind == 'payment' and fee_id:
            modal.show({'amount': _find_fee(fees, fee_id).outstanding})

    return render(
        request,
        'hostel_fees.html',
        {
            'listing': listing,
            'page': apply_listing(fees, listing, ('student_name',)),
            'totals': hostel_service.fee_totals(filtered),
            'statuses': RENTAL_FEE_STATUSES,
            'fees_error': snapshot.error_message,
            'modal': modal,
            'modal_kind': modal_kind,
            'payment_fee': _find_fee(fees, fee_id) if modal_kind == 'payment' and fee_id else None,
            'busy': {action: is_busy(request, app_state, action) for action in ('generate_fees', 'record_payment')},
        },
        app_state=app_state,
        toasts=toasts,
        status_code=status_code,
    )


@router.get('/fees')
async def fees_page(request: Request, app_state: AppState = Depends(roles('admin'))):
    return await _fees_page(request, app_state)


@router.post('/fees/generate')
async def generate_fees(request: Request, app_state: AppState = Depends(roles('admin'))):
    school_id = require_school(app_state)
    values = await form_values(request)
    modal = ModalForm()
    backend = get_backend(request)
    resource = _fees_resource(request, app_state)
    outcome = await _dispatcher(request, app_state, 'generate_fees').submit(
        lambda payload: hostel_service.generate_fees(backend, payload, token=app_state.access_token, school_id=school_id),
        values=values,
        checks=GENERATE_CHECKS,
        build=lambda raw: payload_from(RentalFeeGenerateForm, raw),
        modal=modal,
        on_success=lambda _result: resource.mutate(dedupe=False),
    )
    if outcome.status == 'busy':
        return redirect_with_toasts(FEES_URL)
    if not outcome.ok:
        return await _fees_page(request, app_state, modal=modal, modal_kind='generate', toasts=outcome.toasts, status_code=400)
    return redirect_with_toasts(FEES_URL, outcome.toasts)


@router.post('/fees/{fee_id}/payment')
async def record_payment(fee_id: str, request: Request, app_state: AppState = Depends(roles('admin'))):
    values = await form_values(request)
    resource = _fees_resource(request, app_state)
    fee = _find_fee((await resource.read(revalidate=False)).data or [], fee_id)
    modal = ModalForm()
    backend = get_backend(request)
    outcome = await _dispatcher(request, app_state, 'record_payment').submit(
        lambda payload: hostel_service.record_payment(backend, fee, payload, token=app_state.access_token),
        values=values,
        checks=PAYMENT_CHECKS,
        build=lambda raw: payload_from(RentalFeePaymentForm, {**raw, 'fee_id': fee_id}),
        modal=modal,
        on_success=lambda _result: resource.mutate(dedupe=False),
    )
    if outcome.status == 'busy':
        return redirect_with_toasts(FEES_URL)
    if not outcome.ok:
        return await _fees_page(
            request,
            app_state,
            modal=modal,
            modal_kind='payment',
            fee_id=fee_id,
            toasts=outcome.toasts,
            status_code=400,
        )
    return redirect_with_toasts(FEES_URL, outcome.toasts)
