from __future__ import annotations

import logging

from campusdesk.backend.clients import BackendClient
from campusdesk.core.time_provider import TimeProvider, default_time_provider
from campusdesk.schemas import (
    HostelRentalFee,
    HostelVisit,
    HostelVisitForm,
    RentalFeeGenerateForm,
    RentalFeePaymentForm,
)


logger = logging.getLogger(__name__)

OPEN_FEE_STATUSES = frozenset({'pending', 'partial'})


class PaymentRejected(ValueError):
    pass


async def list_visits(
    backend: BackendClient,
    *,
    token: str | None,
    school_id: str,
    active_only: bool = False,
) -> list[dict]:
    return await backend.get(
        '/hostel/visits',
        token=token,
        params={'school_id': school_id, 'active_only': True if active_only else None},
    ) or []


async def create_visit(
    backend: BackendClient,
    payload: HostelVisitForm,
    *,
    token: str | None,
    school_id: str,
    time_provider: TimeProvider = default_time_provider,
) -> HostelVisit:
    body = payload.model_dump(mode='json')
    body['school_id'] = school_id
    body['check_in'] = time_provider.now().isoformat()
    data = await backend.post('/hostel/visits', body, token=token)
    logger.info('hostel_visit_created school_id=%s student_id=%s', school_id, payload.student_id)
    return HostelVisit.model_validate(data)


async def check_out_visit(backend: BackendClient, visit_id: str, *, token: str | None) -> HostelVisit:
    data = await backend.patch(f'/hostel/visits/{visit_id}/checkout', token=token)
    logger.info('hostel_visit_checked_out visit_id=%s', visit_id)
    return HostelVisit.model_validate(data)


async def list_fees(
    backend: BackendClient,
    *,
    token: str | None,
    school_id: str,
    status: str | None = None,
) -> list[dict]:
    return await backend.get(
        '/hostel/fees',
        token=token,
        params={'school_id': school_id, 'status': status if status and status != 'all' else None},
    ) or []


async def generate_fees(
    backend: BackendClient,
    payload: RentalFeeGenerateForm,
    *,
    token: str | None,
    school_id: str,
) -> dict:
    body = payload.model_dump(mode='json', exclude_none=True)
    body['school_id'] = school_id
    data = await backend.post('/hostel/fees/generate', body, token=token)
    logger.info(
        'hostel_fees_generated school_id=%s period_start=%s period_end=%s',
        school_id,
        payload.period_start,
        payload.period_end,
    )
    return data or {}


def check_payment(fee: HostelRentalFee, amount: float) -> None:
    if fee.status not in OPEN_FEE_STATUSES:
        raise PaymentRejected(f'Fee is already {fee.status}')
    if amount <= 0:
        raise PaymentRejected('Amount must be greater than 0')
    if amount > fee.outstanding:
        raise PaymentRejected(f'Amount exceeds outstanding balance of {fee.outstanding:.2f}')


async def record_payment(
    backend: BackendClient,
    fee: HostelRentalFee,
    payload: RentalFeePaymentForm,
    *,
    token: str | None,
) -> dict:
    check_payment(fee, payload.amount)
    data = await backend.post('/hostel/fees/payment', payload.model_dump(mode='json'), token=token)
    logger.info('hostel_fee_payment_recorded fee_id=%s amount=%.2f', fee.id, payload.amount)
    return data or {}


def fee_totals(fees: list[HostelRentalFee]) -> dict:
    outstanding = sum(fee.final_amount - fee.amount_paid for fee in fees if fee.status in OPEN_FEE_STATUSES)
    collected = sum(fee.amount_paid for fee in fees)
    return {
        'count': len(fees),
        'outstanding': round(outstanding, 2),
        'collected': round(collected, 2),
        'open': sum(1 for fee in fees if fee.status in OPEN_FEE_STATUSES),
    }
