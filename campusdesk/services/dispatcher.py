from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal, Mapping

from campusdesk.backend.clients import ApiError
from campusdesk.metrics import record_dispatch_event
from campusdesk.services.forms import Check, FormValidationError, ModalForm, validate
from campusdesk.services.toasts import Toast


logger = logging.getLogger(__name__)

DispatchStatus = Literal['ok', 'invalid', 'failed', 'busy']
Describe = str | Callable[[Any, Any], str] | None


@dataclass
class DispatchOutcome:
    status: DispatchStatus
    result: Any = None
    toasts: list[Toast] = field(default_factory=list)
    modal: ModalForm | None = None
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == 'ok'


class ActionDispatcher:
    """Runs one backend mutation with validation, a single toast and a busy guard.

    `submit()` never raises for validation or backend failures; the outcome
    carries the toast to show and the modal state to render.
    """

    def __init__(
        self,
        name: str,
        *,
        success_title: str,
        fallback_message: str,
        failure_title: str = 'Error',
        describe: Describe = None,
    ) -> None:
        self.name = name
        self.success_title = success_title
        self.fallback_message = fallback_message
        self.failure_title = failure_title
        self.describe = describe
        self.state: Literal['idle', 'submitting'] = 'idle'

    @property
    def busy(self) -> bool:
        return self.state == 'submitting'

    def _description(self, result: Any, payload: Any) -> str:
        if self.describe is None:
            return ''
        if callable(self.describe):
            return self.describe(result, payload) or ''
        return self.describe

    async def submit(
        self,
        action: Callable[[Any], Awaitable[Any]],
        *,
        values: Mapping[str, Any] | None = None,
        checks: list[Check] | None = None,
        build: Callable[[Mapping[str, Any]], Any] | None = None,
        modal: ModalForm | None = None,
        on_success: Callable[[Any], Awaitable[Any]] | None = None,
    ) -> DispatchOutcome:
        if self.busy:
            record_dispatch_event('dispatch_busy')
            logger.info('dispatch_refused_busy action=%s', self.name)
            return DispatchOutcome(status='busy', modal=modal)

        self.state = 'submitting'
        raw = dict(values or {})
        if modal is not None:
            modal.open = True
            modal.values = raw
        try:
            try:
                if checks:
                    validate(raw, checks)
                payload = build(raw) if build is not None else raw
            except FormValidationError as exc:
                record_dispatch_event('dispatch_invalid')
                logger.info('dispatch_invalid action=%s fields=%s', self.name, ','.join(sorted(exc.errors)))
                if modal is not None:
                    modal.fail(exc.errors)
                    return DispatchOutcome(status='invalid', modal=modal, errors=exc.errors)
                toast = Toast(title=self.failure_title, description=exc.message, variant='error')
                return DispatchOutcome(status='invalid', toasts=[toast], errors=exc.errors)

            try:
                result = await action(payload)
            except ApiError as exc:
                record_dispatch_event('dispatch_failed')
                logger.warning('dispatch_failed action=%s status=%s error=%s', self.name, exc.status_code, exc.message)
                return self._failure(exc.message or self.fallback_message, modal)
            except ValueError as exc:
                record_dispatch_event('dispatch_failed')
                logger.info('dispatch_rejected action=%s error=%s', self.name, exc)
                return self._failure(str(exc) or self.fallback_message, modal)
            except Exception:
                record_dispatch_event('dispatch_failed')
                logger.exception('dispatch_unexpected_error action=%s', self.name)
                return self._failure(self.fallback_message, modal)

            record_dispatch_event('dispatch_ok')
            logger.info('dispatch_ok action=%s', self.name)
            toast = Toast(title=self.success_title, description=self._description(result, payload), variant='success')
            if modal is not None:
                modal.close()
            if on_success is not None:
                try:
                    await on_success(result)
                except Exception:
                    logger.exception('dispatch_on_success_failed action=%s', self.name)
            return DispatchOutcome(status='ok', result=result, toasts=[toast], modal=modal)
        finally:
            self.state = 'idle'

    def _failure(self, message: str, modal: ModalForm | None) -> DispatchOutcome:
        if modal is not None:
            modal.fail({})
        toast = Toast(title=self.failure_title, description=message, variant='error')
        return DispatchOutcome(status='failed', toasts=[toast], modal=modal)


class DispatcherRegistry:
    """One dispatcher per (owner, action) so a second submit from the same user is refused."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: dict[tuple[str, str], ActionDispatcher] = {}

    def get(self, owner: str, action: str, factory: Callable[[], ActionDispatcher]) -> ActionDispatcher:
        key = (str(owner), action)
        with self._lock:
            dispatcher = self._items.get(key)
            if dispatcher is None:
                dispatcher = factory()
                self._items[key] = dispatcher
            return dispatcher

    def is_busy(self, owner: str, action: str) -> bool:
        with self._lock:
            dispatcher = self._items.get((str(owner), action))
        return bool(dispatcher and dispatcher.busy)
