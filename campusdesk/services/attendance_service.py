from __future__ import annotations

import logging
from datetime import date

from campusdesk.backend.clients import BackendClient
from campusdesk.schemas import AttendanceSummaryRow


logger = logging.getLogger(__name__)


async def summary_report(
    backend: BackendClient,
    *,
    token: str | None,
    school_id: str,
    start_date: date,
    end_date: date,
    campus_id: str | None = None,
    grade_id: str | None = None,
    section_id: str | None = None,
) -> list[dict]:
    rows = await backend.get(
        '/attendance/reports/summary',
        token=token,
        params={
            'school_id': school_id,
            'start_date': start_date.isoformat(),
            'end_date': end_date.isoformat(),
            'campus_id': campus_id,
            'grade_id': grade_id,
            'section_id': section_id,
        },
    )
    logger.info(
        'attendance_summary_loaded school_id=%s start=%s end=%s rows=%s',
        school_id,
        start_date,
        end_date,
        len(rows or []),
    )
    return rows or []


def average_percentage(rows: list[AttendanceSummaryRow]) -> float:
    if not rows:
        return 0.0
    return round(sum(row.attendance_percentage for row in rows) / len(rows), 1)
