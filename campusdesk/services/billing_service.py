from __future__ import annotations

import calendar
import logging
from datetime import date

from campusdesk.backend.supabase import SupabaseClient, eq
from campusdesk.core.time_provider import TimeProvider, default_time_provider
from campusdesk.schemas import (
    PAYABLE_STATUSES,
    PAYMENT_STATUSES,
    BillingPlan,
    BillingPlanForm,
    BillingRecord,
    BillingRecordForm,
)


logger = logging.getLogger(__name__)

PLANS_TABLE = 'billing_plans'
RECORDS_TABLE = 'billing_records'
RECORD_COLUMNS = '*,schools!inner(name),billing_plans!inner(name)'

_CYCLE_MONTHS = {'Monthly': 1, 'Quarterly': 3, 'Yearly': 12}


class BillingStateError(ValueError):
    pass


def generate_invoice_number(time_provider: TimeProvider = default_time_provider) -> str:
    now = time_provider.now()
    return f'INV-{now.year}-{str(time_provider.epoch_ms())[-6:]}'


def calculate_billing_amount(plan: BillingPlan, cycle: str) -> float:
    if cycle == 'Quarterly':
        return plan.quarterly_price
    if cycle == 'Yearly':
        return plan.yearly_price
    return plan.monthly_price


def add_months(start: date, months: int) -> date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def calculate_due_date(start: date, cycle: str) -> date:
    """Start date plus one billing cycle; the day is clamped to the target month's end."""
    return add_months(start, _CYCLE_MONTHS.get(cycle, 1))


def flatten_record(row: dict) -> dict:
    flat = dict(row)
    school = flat.pop('schools', None) or {}
    plan = flat.pop('billing_plans', None) or {}
    flat.setdefault('school_name', school.get('name'))
    flat.setdefault('subscription_plan', plan.get('name'))
    return flat


def billing_stats(records: list[BillingRecord]) -> dict:
    counts = {status: 0 for status in PAYMENT_STATUSES}
    collected = 0.0
    outstanding = 0.0
    for record in records:
        counts[record.payment_status] = counts.get(record.payment_status, 0) + 1
        if record.payment_status == 'paid':
            collected += record.amount
        else:
            outstanding += record.amount
    return {
        'total': len(records),
        'counts': counts,
        'collected': round(collected, 2),
        'outstanding': round(outstanding, 2),
    }


# plans


async def list_plans(supabase: SupabaseClient, *, token: str | None) -> list[dict]:
    return await supabase.select(
        PLANS_TABLE,
        token=token,
        filters={'is_active': eq(True)},
        order='monthly_price.asc',
    )


async def create_plan(supabase: SupabaseClient, payload: BillingPlanForm, *, token: str | None) -> BillingPlan:
    row = await supabase.insert(PLANS_TABLE, payload.model_dump(mode='json'), token=token)
    logger.info('billing_plan_created plan_id=%s name=%s', row.get('id'), payload.name)
    return BillingPlan.model_validate(row)


async def update_plan(
    supabase: SupabaseClient,
    plan_id: str,
    payload: BillingPlanForm,
    *,
    token: str | None,
) -> BillingPlan:
    row = await supabase.update(PLANS_TABLE, {'id': plan_id}, payload.model_dump(mode='json'), token=token)
    logger.info('billing_plan_updated plan_id=%s', plan_id)
    return BillingPlan.model_validate(row)


async def delete_plan(supabase: SupabaseClient, plan_id: str, *, token: str | None) -> None:
    await supabase.delete(PLANS_TABLE, {'id': plan_id}, token=token)
    logger.info('billing_plan_deleted plan_id=%s', plan_id)


# records


async def list_records(supabase: SupabaseClient, *, token: str | None, school_id: str | None = None) -> list[dict]:
    filters = {'school_id': eq(school_id)} if school_id else None
    rows = await supabase.select(
        RECORDS_TABLE,
        token=token,
        columns=RECORD_COLUMNS,
        filters=filters,
        order='created_at.desc',
    )
    return [flatten_record(row) for row in rows or []]


async def create_record(
    supabase: SupabaseClient,
    payload: BillingRecordForm,
    *,
    token: str | None,
    time_provider: TimeProvider = default_time_provider,
) -> BillingRecord:
    values = payload.model_dump(mode='json')
    values['invoice_number'] = generate_invoice_number(time_provider)
    row = await supabase.insert(RECORDS_TABLE, values, token=token, columns=RECORD_COLUMNS)
    logger.info('billing_record_created record_id=%s invoice=%s', row.get('id'), values['invoice_number'])
    return BillingRecord.model_validate(flatten_record(row))


async def update_record(
    supabase: SupabaseClient,
    record_id: str,
    payload: BillingRecordForm,
    *,
    token: str | None,
) -> BillingRecord:
    row = await supabase.update(
        RECORDS_TABLE,
        {'id': record_id},
        payload.model_dump(mode='json'),
        token=token,
        columns=RECORD_COLUMNS,
    )
    logger.info('billing_record_updated record_id=%s', record_id)
    return BillingRecord.model_validate(flatten_record(row))


async def mark_paid(
    supabase: SupabaseClient,
    record: BillingRecord,
    *,
    token: str | None,
    time_provider: TimeProvider = default_time_provider,
) -> BillingRecord:
    if record.payment_status not in PAYABLE_STATUSES:
        raise BillingStateError(f'Cannot mark a {record.payment_status} record as paid')
    payment_date = time_provider.today()
    await supabase.update(
        RECORDS_TABLE,
        {'id': record.id},
        {'payment_status': 'paid', 'payment_date': payment_date.isoformat()},
        token=token,
        returning=False,
    )
    logger.info('billing_record_marked_paid record_id=%s payment_date=%s', record.id, payment_date)
    return record.model_copy(update={'payment_status': 'paid', 'payment_date': payment_date})


async def delete_record(supabase: SupabaseClient, record_id: str, *, token: str | None) -> None:
    await supabase.delete(RECORDS_TABLE, {'id': record_id}, token=token)
    logger.info('billing_record_deleted record_id=%s', record_id)
