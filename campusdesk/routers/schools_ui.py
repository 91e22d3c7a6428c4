import logging
from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, Request
from starlette.datastructures import UploadFile

from campusdesk.backend.supabase import SupabaseError
from campusdesk.core.router_guard import roles
from campusdesk.core.time_provider import default_time_provider
from campusdesk.route_logging import EndpointNameRoute
from campusdesk.schemas import BILLING_CYCLES, BillingPlanList, SchoolOnboardForm
from campusdesk.services import billing_service, school_service
from campusdesk.services.app_state import AppState
from campusdesk.services.dispatcher import ActionDispatcher
from campusdesk.services.forms import FormValidationError, ModalForm, email, payload_from, required
from campusdesk.services.listing_service import ListingState, filter_rows
from campusdesk.ui_support import (
    checkbox,
    dispatcher_for,
    get_backend,
    get_binder,
    get_supabase,
    redirect_with_toasts,
    render,
)


router = APIRouter(prefix='/ui/superadmin/schools', tags=['Schools UI'], route_class=EndpointNameRoute)
logger = logging.getLogger(__name__)

PAGE_URL = '/ui/superadmin/schools/onboard'
PLANS_KEY = ('billing_plans',)
SCHOOLS_KEY = ('schools',)

ONBOARD_CHECKS = [
    required('school.name', 'School name'),
    required('school.contact_email', 'Contact email'),
    email('school.contact_email', 'Contact email'),
    required('school.address', 'Address'),
    required('admin.first_name', 'First name'),
    required('admin.last_name', 'Last name'),
    email('admin.email', 'Admin email'),
    required('admin.password', 'Password'),
]


def _passwords_match(values: dict) -> tuple[str, str] | None:
    if values.get('admin.password') != values.get('admin.password_confirm'):
        return 'admin.password_confirm', "Passwords don't match"
    return None


def _billing_checks(values: dict) -> tuple[str, str] | None:
    if not checkbox(values, 'include_billing'):
        return None
    if not values.get('billing.billing_plan_id'):
        return 'billing.billing_plan_id', 'Please select a billing plan'
    if not values.get('billing.start_date'):
        return 'billing.start_date', 'Start date is required'
    return None


def _dispatcher(request: Request, app_state: AppState) -> ActionDispatcher:
    return dispatcher_for(
        request,
        app_state,
        'onboard_school',
        lambda: ActionDispatcher(
            'onboard_school',
            success_title='School onboarded successfully!',
            failure_title='Error onboarding school',
            fallback_message='Failed to onboard school',
            describe=lambda _result, payload: f'{payload.school.name} has been created with admin account and billing',
        ),
    )


async def _form_values(request: Request) -> tuple[dict[str, Any], UploadFile | None]:
    form = await request.form()
    values: dict[str, Any] = {}
    logo = None
    for key, value in form.multi_items():
        if isinstance(value, UploadFile):
            if key == 'logo' and value.filename:
                logo = value
            continue
        values[key] = value.strip()
    if not values.get('school.slug') and values.get('school.name'):
        values['school.slug'] = school_service.slugify(values['school.name'])
    return values, logo


def _nest(values: dict[str, Any]) -> dict[str, dict[str, Any]]:
    nested: dict[str, dict[str, Any]] = {}
    for key, value in values.items():
        group, _, name = key.partition('.')
        if name:
            nested.setdefault(group, {})[name] = value
    return nested


def _builder(plans: list, include_billing: bool):
    def build(raw: dict) -> SchoolOnboardForm:
        body = _nest(raw)
        body.get('admin', {}).pop('password_confirm', None)
        if include_billing:
            billing = body.setdefault('billing', {})
            plan = next((item for item in plans if item.id == billing.get('billing_plan_id')), None)
            if plan is None:
                raise FormValidationError({'billing.billing_plan_id': 'Selected billing plan not found'})
            cycle = billing.get('billing_cycle') or 'Monthly'
            try:
                start = date.fromisoformat(str(billing.get('start_date')))
            except ValueError as exc:
                raise FormValidationError({'billing.start_date': 'Start date is invalid'}) from exc
            billing['amount'] = billing_service.calculate_billing_amount(plan, cycle)
            billing['due_date'] = billing_service.calculate_due_date(start, cycle).isoformat()
        else:
            body.pop('billing', None)
        return payload_from(SchoolOnboardForm, body)

    return build


async def _plans(request: Request, app_state: AppState):
    supabase = get_supabase(request)
    snapshot = await get_binder(request).read(
        PLANS_KEY,
        lambda: billing_service.list_plans(supabase, token=app_state.access_token),
        adapter=BillingPlanList,
    )
    return snapshot


def _onboard_page(request: Request, app_state: AppState, plans_snapshot, *, form: ModalForm, toasts=None, status_code=200):
    plans = plans_snapshot.data or []
    plan_filter = ListingState(search=str(request.query_params.get('plan_search') or '').strip())
    return render(
        request,
        'schools_onboard.html',
        {
            'form': form,
            'plans': filter_rows(plans, plan_filter, ('name',)),
            'plans_error': plans_snapshot.error_message,
            'cycles': BILLING_CYCLES,
            'max_logo_mb': school_service.MAX_LOGO_BYTES // (1024 * 1024),
        },
        app_state=app_state,
        toasts=toasts,
        status_code=status_code,
    )


@router.get('/onboard')
async def onboard_page(request: Request, app_state: AppState = Depends(roles('super_admin'))):
    snapshot = await _plans(request, app_state)
    plans = snapshot.data or []
    form = ModalForm().show(
        {
            'billing.billing_cycle': 'Monthly',
            'billing.payment_status': 'unpaid',
            'billing.start_date': default_time_provider.today().isoformat(),
            'billing.billing_plan_id': plans[0].id if plans else '',
        }
    )
    return _onboard_page(request, app_state, snapshot, form=form)


@router.post('/onboard')
async def onboard_submit(request: Request, app_state: AppState = Depends(roles('super_admin'))):
    values, logo = await _form_values(request)
    snapshot = await _plans(request, app_state)
    include_billing = checkbox(values, 'include_billing')
    values['include_billing'] = '1' if include_billing else ''
    logo_bytes = await logo.read() if logo is not None else b''
    form = ModalForm()
    backend = get_backend(request)
    supabase = get_supabase(request)

    def build(raw: dict) -> SchoolOnboardForm:
        if logo is not None:
            try:
                school_service.check_logo(logo.content_type, len(logo_bytes))
            except school_service.LogoUploadError as exc:
                raise FormValidationError({'logo': str(exc)}) from exc
        return _builder(snapshot.data or [], include_billing)(raw)

    async def onboard(payload: SchoolOnboardForm) -> dict:
        if logo is not None:
            try:
                payload.school.logo_url = await school_service.upload_logo(
                    supabase,
                    slug=payload.school.slug,
                    filename=logo.filename or '',
                    content=logo_bytes,
                    content_type=logo.content_type or '',
                    token=app_state.access_token,
                )
            except SupabaseError as exc:
                logger.warning('school_logo_upload_failed slug=%s error=%s', payload.school.slug, exc.message)
                raise school_service.LogoUploadError('Failed to upload logo') from exc
        return await school_service.onboard_school(backend, payload, token=app_state.access_token)

    async def _refresh_lists(_result):
        binder = get_binder(request)
        binder.invalidate(SCHOOLS_KEY)
        binder.invalidate_prefix('billing_records')

    outcome = await _dispatcher(request, app_state).submit(
        onboard,
        values=values,
        checks=ONBOARD_CHECKS + [_passwords_match, _billing_checks],
        build=build,
        modal=form,
        on_success=_refresh_lists,
    )
    if outcome.status == 'busy':
        return redirect_with_toasts(PAGE_URL)
    if not outcome.ok:
        form.values.pop('admin.password', None)
        form.values.pop('admin.password_confirm', None)
        return _onboard_page(request, app_state, snapshot, form=form, toasts=outcome.toasts, status_code=400)
    return redirect_with_toasts('/ui/superadmin/billing', outcome.toasts)
