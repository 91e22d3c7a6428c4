from __future__ import annotations

import logging
from typing import Any

import httpx

from campusdesk.config import settings
from campusdesk.metrics import timed_backend


logger = logging.getLogger(__name__)


class ApiError(Exception):
    """A rejected backend call: transport failure, non-2xx, or a `success: false` envelope."""

    def __init__(self, message: str, *, status_code: int | None = None, payload: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload


def _clean_params(params: dict[str, Any] | None) -> dict[str, Any] | None:
    if not params:
        return None
    clean: dict[str, Any] = {}
    for key, value in params.items():
        if value is None or value == '':
            continue
        if isinstance(value, bool):
            clean[key] = 'true' if value else 'false'
        else:
            clean[key] = value
    return clean or None


def _envelope_message(body: Any) -> str | None:
    if not isinstance(body, dict):
        return None
    for field in ('error', 'message', 'msg', 'error_description'):
        value = body.get(field)
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, dict) and isinstance(value.get('message'), str):
            return value['message']
    return None


def unwrap_envelope(response: httpx.Response) -> Any:
    try:
        body = response.json() if response.content else None
    except ValueError:
        body = None

    if response.status_code >= 400:
        message = _envelope_message(body) or f'Request failed with status {response.status_code}'
        raise ApiError(message, status_code=response.status_code, payload=body)

    if isinstance(body, dict) and 'success' in body:
        if not body.get('success'):
            message = _envelope_message(body) or 'Request failed'
            raise ApiError(message, status_code=response.status_code, payload=body)
        return body.get('data')
    return body


class BackendClient:
    """JSON-over-HTTP client for the school backend at `settings.api_url`."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: httpx.Timeout | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.api_url).rstrip('/')
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout
            or httpx.Timeout(
                connect=settings.api_connect_timeout,
                read=settings.api_read_timeout,
                write=settings.api_read_timeout,
                pool=settings.api_connect_timeout,
            ),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def headers(self, token: str | None) -> dict[str, str]:
        h = {'Content-Type': 'application/json', 'Accept': 'application/json'}
        if token:
            h['Authorization'] = token if token.lower().startswith('bearer ') else f'Bearer {token}'
        return h

    @timed_backend('backend_request')
    async def request(
        self,
        method: str,
        path: str,
        *,
        token: str | None = None,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        try:
            response = await self._client.request(
                method,
                path,
                params=_clean_params(params),
                json=json,
                headers=self.headers(token),
            )
        except httpx.HTTPError as exc:
            logger.warning('backend_transport_error method=%s path=%s error=%s', method, path, exc)
            raise ApiError(str(exc) or 'Network error') from exc

        logger.info('backend_request method=%s path=%s status=%s', method, path, response.status_code)
        return unwrap_envelope(response)

    async def get(self, path: str, *, token: str | None = None, params: dict[str, Any] | None = None) -> Any:
        return await self.request('GET', path, token=token, params=params)

    async def post(self, path: str, data: Any = None, *, token: str | None = None, params: dict[str, Any] | None = None) -> Any:
        return await self.request('POST', path, token=token, params=params, json=data)

    async def put(self, path: str, data: Any = None, *, token: str | None = None, params: dict[str, Any] | None = None) -> Any:
        return await self.request('PUT', path, token=token, params=params, json=data)

    async def patch(self, path: str, data: Any = None, *, token: str | None = None, params: dict[str, Any] | None = None) -> Any:
        return await self.request('PATCH', path, token=token, params=params, json=data)

    async def delete(self, path: str, *, token: str | None = None, params: dict[str, Any] | None = None) -> Any:
        return await self.request('DELETE', path, token=token, params=params)
