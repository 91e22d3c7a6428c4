from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from campusdesk.backend.clients import ApiError, _envelope_message
from campusdesk.config import settings
from campusdesk.metrics import timed_backend


logger = logging.getLogger(__name__)


class SupabaseError(ApiError):
    pass


def eq(value: Any) -> str:
    if isinstance(value, bool):
        return f'eq.{str(value).lower()}'
    return f'eq.{value}'


class SupabaseClient:
    """Thin PostgREST / Storage / Auth client for the Supabase project."""

    def __init__(
        self,
        url: str | None = None,
        anon_key: str | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = (url if url is not None else settings.supabase_url).rstrip('/')
        self.anon_key = anon_key if anon_key is not None else settings.supabase_anon_key
        self._client = httpx.AsyncClient(
            base_url=self.url,
            timeout=timeout or settings.api_read_timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self, token: str | None, **extra: str) -> dict[str, str]:
        headers = {
            'apikey': self.anon_key,
            'Authorization': f'Bearer {token or self.anon_key}',
        }
        headers.update(extra)
        return headers

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning('supabase_transport_error method=%s path=%s error=%s', method, path, exc)
            raise SupabaseError(str(exc) or 'Network error') from exc
        logger.info('supabase_request method=%s path=%s status=%s', method, path, response.status_code)
        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = None
            message = _envelope_message(body) or f'Request failed with status {response.status_code}'
            raise SupabaseError(message, status_code=response.status_code, payload=body)
        return response

    # auth

    @timed_backend('supabase_sign_in')
    async def sign_in_with_password(self, email: str, password: str) -> dict:
        response = await self._send(
            'POST',
            '/auth/v1/token',
            params={'grant_type': 'password'},
            json={'email': email, 'password': password},
            headers=self._headers(None),
        )
        return response.json()

    async def sign_out(self, token: str) -> None:
        await self._send('POST', '/auth/v1/logout', headers=self._headers(token))

    # rest

    @timed_backend('supabase_select')
    async def select(
        self,
        table: str,
        *,
        token: str | None = None,
        columns: str = '*',
        filters: dict[str, str] | None = None,
        order: str | None = None,
        single: bool = False,
    ) -> Any:
        params: dict[str, str] = {'select': columns}
        params.update(filters or {})
        if order:
            params['order'] = order
        extra = {'Accept': 'application/vnd.pgrst.object+json'} if single else {}
        response = await self._send('GET', f'/rest/v1/{table}', params=params, headers=self._headers(token, **extra))
        return response.json()

    async def insert(self, table: str, row: dict, *, token: str | None = None, columns: str = '*') -> dict:
        response = await self._send(
            'POST',
            f'/rest/v1/{table}',
            params={'select': columns},
            json=[row],
            headers=self._headers(
                token,
                Prefer='return=representation',
                Accept='application/vnd.pgrst.object+json',
            ),
        )
        return response.json()

    async def update(
        self,
        table: str,
        match: dict[str, Any],
        values: dict,
        *,
        token: str | None = None,
        columns: str = '*',
        returning: bool = True,
    ) -> dict | None:
        params = {'select': columns} if returning else {}
        params.update({key: eq(value) for key, value in match.items()})
        extra = (
            {'Prefer': 'return=representation', 'Accept': 'application/vnd.pgrst.object+json'}
            if returning
            else {'Prefer': 'return=minimal'}
        )
        response = await self._send(
            'PATCH',
            f'/rest/v1/{table}',
            params=params,
            json=values,
            headers=self._headers(token, **extra),
        )
        return response.json() if returning else None

    async def delete(self, table: str, match: dict[str, Any], *, token: str | None = None) -> None:
        await self._send(
            'DELETE',
            f'/rest/v1/{table}',
            params={key: eq(value) for key, value in match.items()},
            headers=self._headers(token, Prefer='return=minimal'),
        )

    # storage

    @timed_backend('supabase_upload')
    async def upload(
        self,
        bucket: str,
        path: str,
        content: bytes,
        *,
        content_type: str = 'application/octet-stream',
        token: str | None = None,
        cache_control: str | None = None,
        upsert: bool = False,
    ) -> str:
        await self._send(
            'POST',
            f'/storage/v1/object/{bucket}/{quote(path)}',
            content=content,
            headers=self._headers(
                token,
                **{
                    'Content-Type': content_type,
                    'cache-control': f'max-age={cache_control or settings.supabase_logo_cache_control}',
                    'x-upsert': 'true' if upsert else 'false',
                },
            ),
        )
        return path

    def public_url(self, bucket: str, path: str) -> str:
        return f'{self.url}/storage/v1/object/public/{bucket}/{quote(path)}'
