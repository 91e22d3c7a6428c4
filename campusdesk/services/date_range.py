from __future__ import annotations

import calendar
from dataclasses import dataclass, replace
from datetime import date
from typing import Any, Mapping

from campusdesk.core.time_provider import TimeProvider, default_time_provider
from campusdesk.services.forms import FormValidationError


MONTH_NAMES = tuple(calendar.month_name)[1:]
RANGE_ORDER_MESSAGE = 'Start date must be before end date'


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


@dataclass(frozen=True)
class DatePicker:
    year: int
    month: int
    day: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f'month out of range: {self.month}')
        clamped = min(max(self.day, 1), days_in_month(self.year, self.month))
        if clamped != self.day:
            object.__setattr__(self, 'day', clamped)

    @classmethod
    def from_date(cls, value: date) -> 'DatePicker':
        return cls(value.year, value.month, value.day)

    @classmethod
    def from_query(
        cls,
        params: Mapping[str, Any],
        prefix: str,
        fallback: date | None = None,
        time_provider: TimeProvider = default_time_provider,
    ) -> 'DatePicker':
        """One `<prefix>_month/_day/_year` group; defaults to `fallback` or today."""
        return _picker_from(params, prefix, cls.from_date(fallback or time_provider.today()))

    def with_month(self, month: int) -> 'DatePicker':
        return replace(self, month=month)

    def with_year(self, year: int) -> 'DatePicker':
        return replace(self, year=year)

    def with_day(self, day: int) -> 'DatePicker':
        return replace(self, day=day)

    @property
    def max_day(self) -> int:
        return days_in_month(self.year, self.month)

    def to_date(self) -> date:
        return date(self.year, self.month, self.day)

    def iso(self) -> str:
        return self.to_date().isoformat()


@dataclass(frozen=True)
class DateRange:
    start: DatePicker
    end: DatePicker
    submitted: bool = False

    @classmethod
    def default(cls, time_provider: TimeProvider = default_time_provider) -> 'DateRange':
        today = time_provider.today()
        return cls(start=DatePicker(today.year, today.month, 1), end=DatePicker.from_date(today))

    @classmethod
    def from_query(
        cls,
        params: Mapping[str, Any],
        time_provider: TimeProvider = default_time_provider,
    ) -> 'DateRange':
        """Read `start_*`/`end_*` fields; missing or junk parts fall back to the defaults."""
        fallback = cls.default(time_provider)
        return cls(
            start=_picker_from(params, 'start', fallback.start),
            end=_picker_from(params, 'end', fallback.end),
            submitted=str(params.get('go') or '') not in ('', '0'),
        )

    @property
    def start_date(self) -> date:
        return self.start.to_date()

    @property
    def end_date(self) -> date:
        return self.end.to_date()

    def validate(self) -> None:
        if self.start_date > self.end_date:
            raise FormValidationError({'start_date': RANGE_ORDER_MESSAGE})

    def query(self) -> dict[str, int]:
        return {
            'start_month': self.start.month,
            'start_day': self.start.day,
            'start_year': self.start.year,
            'end_month': self.end.month,
            'end_day': self.end.day,
            'end_year': self.end.year,
        }

    def year_options(self, time_provider: TimeProvider = default_time_provider, span: int = 5) -> list[int]:
        current = time_provider.today().year
        years = set(range(current - span, current + 1)) | {self.start.year, self.end.year}
        return sorted(years, reverse=True)


def _int_param(params: Mapping[str, Any], name: str, default: int) -> int:
    try:
        return int(params.get(name) or default)
    except (TypeError, ValueError):
        return default


def _picker_from(params: Mapping[str, Any], prefix: str, fallback: DatePicker) -> DatePicker:
    month = _int_param(params, f'{prefix}_month', fallback.month)
    if not 1 <= month <= 12:
        month = fallback.month
    year = _int_param(params, f'{prefix}_year', fallback.year)
    if not 1 <= year <= 9999:
        year = fallback.year
    day = _int_param(params, f'{prefix}_day', fallback.day)
    return DatePicker(year, month, day)
