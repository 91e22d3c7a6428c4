from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Mapping, TypeVar

from pydantic import BaseModel, ValidationError


M = TypeVar('M', bound=BaseModel)
Check = Callable[[Mapping[str, Any]], 'tuple[str, str] | None']

FORM_ERROR = '__all__'
_EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


class FormValidationError(ValueError):
    """Local validation failed; nothing was sent to the backend."""

    def __init__(self, errors: dict[str, str]) -> None:
        self.errors = dict(errors)
        super().__init__(self.message)

    @property
    def message(self) -> str:
        if not self.errors:
            return 'Invalid input'
        return next(iter(self.errors.values()))


@dataclass
class ModalForm:
    open: bool = False
    values: dict[str, Any] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    def show(self, values: Mapping[str, Any] | None = None) -> 'ModalForm':
        self.open = True
        self.values = dict(values or {})
        self.errors = {}
        return self

    def close(self) -> None:
        self.open = False
        self.errors = {}

    def fail(self, errors: Mapping[str, str]) -> None:
        self.open = True
        self.errors = dict(errors)

    def value(self, name: str, default: Any = '') -> Any:
        value = self.values.get(name)
        return default if value is None else value

    def error_for(self, name: str) -> str | None:
        return self.errors.get(name)


def _label(name: str, label: str | None) -> str:
    return label or name.replace('_', ' ').capitalize()


def _number(value: Any) -> float | None:
    if value is None or value == '':
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_date(value: Any) -> date | None:
    if isinstance(value, date):
        return value
    if not value:
        return None
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        return None


def required(name: str, label: str | None = None) -> Check:
    def check(values: Mapping[str, Any]):
        value = values.get(name)
        if value is None or (isinstance(value, str) and not value.strip()) or value == []:
            return name, f'{_label(name, label)} is required'
        return None

    return check


def non_negative(name: str, label: str | None = None) -> Check:
    def check(values: Mapping[str, Any]):
        number = _number(values.get(name))
        if number is None or number < 0:
            return name, f'{_label(name, label)} must be 0 or more'
        return None

    return check


def positive(name: str, label: str | None = None) -> Check:
    def check(values: Mapping[str, Any]):
        number = _number(values.get(name))
        if number is None or number <= 0:
            return name, f'{_label(name, label)} must be greater than 0'
        return None

    return check


def in_range(name: str, low: float, high: float, label: str | None = None) -> Check:
    def check(values: Mapping[str, Any]):
        number = _number(values.get(name))
        if number is None or number < low or number > high:
            return name, f'{_label(name, label)} must be between {low:g} and {high:g}'
        return None

    return check


def date_order(start: str, end: str, message: str = 'Start date must be before end date') -> Check:
    def check(values: Mapping[str, Any]):
        start_value = _as_date(values.get(start))
        end_value = _as_date(values.get(end))
        if start_value and end_value and start_value > end_value:
            return start, message
        return None

    return check


def email(name: str, label: str | None = None) -> Check:
    def check(values: Mapping[str, Any]):
        value = str(values.get(name) or '').strip()
        if not _EMAIL_RE.match(value):
            return name, f'{_label(name, label)} must be a valid email address'
        return None

    return check


def run_checks(values: Mapping[str, Any], checks: list[Check]) -> dict[str, str]:
    errors: dict[str, str] = {}
    for check in checks:
        failure = check(values)
        if failure is None:
            continue
        name, message = failure
        errors.setdefault(name, message)
    return errors


def validate(values: Mapping[str, Any], checks: list[Check]) -> None:
    errors = run_checks(values, checks)
    if errors:
        raise FormValidationError(errors)


def _error_message(error: dict) -> str:
    message = str(error.get('msg') or 'Invalid value')
    for prefix in ('Value error, ', 'Assertion failed, '):
        if message.startswith(prefix):
            return message[len(prefix):]
    return message


def validation_errors(exc: ValidationError) -> dict[str, str]:
    errors: dict[str, str] = {}
    for error in exc.errors():
        name = '.'.join(str(part) for part in error.get('loc', ())) or FORM_ERROR
        errors.setdefault(name, _error_message(error))
    return errors


def payload_from(model: type[M], values: Mapping[str, Any]) -> M:
    """Build a typed payload from raw form values, raising FormValidationError on failure."""
    try:
        return model.model_validate(dict(values))
    except ValidationError as exc:
        raise FormValidationError(validation_errors(exc)) from exc
