from __future__ import annotations

import logging

from fastapi.routing import APIRoute
from starlette.requests import Request

from campusdesk.request_context import current_endpoint, current_tenant


LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s [%(endpoint)s %(tenant)s] %(message)s'


class EndpointNameRoute(APIRoute):
    """Labels log lines emitted while a handler runs with `METHOD /path/template`."""

    def get_route_handler(self):
        original_handler = super().get_route_handler()

        async def custom_handler(request: Request):
            token = current_endpoint.set(f'{request.method} {self.path}')
            try:
                return await original_handler(request)
            finally:
                current_endpoint.reset(token)

        return custom_handler


class EndpointLogFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.endpoint = current_endpoint.get()
        record.tenant = current_tenant.get()
        return True


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
    for handler in logging.getLogger().handlers:
        if not any(isinstance(item, EndpointLogFilter) for item in handler.filters):
            handler.addFilter(EndpointLogFilter())
