from __future__ import annotations

import csv
import io
from datetime import date

from campusdesk.config import settings
from campusdesk.core.time_provider import TimeProvider, default_time_provider
from campusdesk.schemas import AttendanceSummaryRow, BillingRecord
from campusdesk.templating import templates


BILLING_CSV_HEADERS = (
    'School Name',
    'Invoice Number',
    'Plan',
    'Billing Cycle',
    'Amount',
    'Due Date',
    'Status',
    'Payment Date',
)
ATTENDANCE_CSV_HEADERS = (
    'Student',
    'Student Number',
    'Grade',
    'Section',
    'Total Days',
    'Present',
    'Absent',
    'Half Day',
    'Attendance %',
)


def _plain_number(value: float) -> str:
    number = float(value)
    if number.is_integer():
        return str(int(number))
    return f'{number:g}'


def _write_csv(headers: tuple[str, ...], rows: list[list]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\n')
    writer.writerow(headers)
    writer.writerows(rows)
    return buffer.getvalue()


def billing_report_filename(time_provider: TimeProvider = default_time_provider) -> str:
    return f'billing-report-{time_provider.today().isoformat()}.csv'


def billing_csv(records: list[BillingRecord]) -> str:
    rows = [
        [
            record.school_name or '',
            record.invoice_number,
            record.subscription_plan or '',
            record.billing_cycle,
            f'{settings.currency_symbol}{_plain_number(record.amount)}',
            record.due_date.isoformat(),
            record.payment_status,
            record.payment_date.isoformat() if record.payment_date else 'N/A',
        ]
        for record in records
    ]
    return _write_csv(BILLING_CSV_HEADERS, rows)


def attendance_report_filename(start: date, end: date) -> str:
    return f'attendance-summary-{start.isoformat()}-to-{end.isoformat()}.csv'


def attendance_csv(rows: list[AttendanceSummaryRow]) -> str:
    return _write_csv(
        ATTENDANCE_CSV_HEADERS,
        [
            [
                row.student_name,
                row.student_number or '',
                row.grade_name or '',
                row.section_name or '',
                row.total_days,
                row.days_present,
                row.days_absent,
                row.days_half,
                f'{row.attendance_percentage:.1f}',
            ]
            for row in rows
        ],
    )


def render_invoice(record: BillingRecord, *, print_delay_ms: int | None = None) -> str:
    """Full printable HTML document for one billing record."""
    template = templates.env.get_template('invoice.html')
    return template.render(
        record=record,
        issue_date=record.start_date or record.due_date,
        amount=f'{record.amount:,.2f}'.rstrip('0').rstrip('.'),
        brand=settings.invoice_brand,
        tagline=settings.invoice_tagline,
        support_email=settings.invoice_support_email,
        currency=settings.currency_symbol,
        print_delay_ms=settings.print_delay_ms if print_delay_ms is None else print_delay_ms,
    )
