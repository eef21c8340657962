"""
REST remote service.

Talks to a PostgREST-style data API (``/rest/v1/<table>``) with aiohttp.
Filters are encoded as ``column=op.value`` query parameters, inserts ask
for ``Prefer: return=representation`` so the server-assigned id comes
back in the response body.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from ..config import OfflineConfig
from ..exceptions import AuthenticationError, PermissionDeniedError, RemoteServiceError
from .base import Filter, Order, RemoteService

logger = logging.getLogger(__name__)

PING_TIMEOUT = 3.0


def _encode_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_query_params(
    filters: list[Filter] | None = None,
    order: Order | None = None,
    limit: int | None = None,
) -> list[tuple[str, str]]:
    """Encode filters, ordering and limit as PostgREST query parameters.

    Returns a list of pairs because the same column may be filtered twice
    (e.g. a ``gte`` and ``lt`` range).
    """
    params: list[tuple[str, str]] = [("select", "*")]
    for f in filters or []:
        if f.op == "in":
            inner = ",".join(f'"{_encode_value(v)}"' for v in f.value)
            params.append((f.column, f"in.({inner})"))
        elif f.op == "eq" and f.value is None:
            params.append((f.column, "is.null"))
        elif f.op in ("like", "ilike"):
            params.append((f.column, f"{f.op}.{str(f.value).replace('%', '*')}"))
        else:
            params.append((f.column, f"{f.op}.{_encode_value(f.value)}"))
    if order is not None:
        params.append(("order", f"{order.column}.{'asc' if order.ascending else 'desc'}"))
    if limit is not None:
        params.append(("limit", str(limit)))
    return params


class RestRemoteService(RemoteService):
    """Remote service over a PostgREST-compatible HTTP API.

    Example:
        >>> remote = RestRemoteService("https://proj.example.co", api_key="anon")
        >>> remote.set_access_token(session_token)
        >>> rows = await remote.select("branches")
        >>> await remote.close()
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: str | None = None,
        timeout: float = 10.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize the REST client.

        Args:
            base_url: Project URL (without the ``/rest/v1`` suffix)
            api_key: Public API key sent as ``apikey`` header
            access_token: Bearer token of the signed-in user
            timeout: Total timeout per request in seconds
            session: Optional pre-built aiohttp session (owned by caller)
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_config(cls, config: OfflineConfig, access_token: str | None = None) -> RestRemoteService:
        if not config.remote_url or not config.remote_api_key:
            raise ValueError("remote_url and remote_api_key are required for the REST service")
        return cls(
            config.remote_url,
            config.remote_api_key,
            access_token=access_token,
            timeout=config.remote_timeout,
        )

    def set_access_token(self, token: str | None) -> None:
        self.access_token = token

    def is_authenticated(self) -> bool:
        return bool(self.access_token)

    def _headers(self) -> dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        headers["Authorization"] = f"Bearer {self.access_token or self.api_key}"
        return headers

    def _url(self, table: str) -> str:
        return f"{self.base_url}/rest/v1/{table}"

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def _request(
        self,
        method: str,
        table: str,
        operation: str,
        params: list[tuple[str, str]] | None = None,
        body: dict[str, Any] | None = None,
        prefer: str | None = None,
    ) -> Any:
        headers = self._headers()
        if prefer:
            headers["Prefer"] = prefer

        try:
            async with self._get_session().request(
                method, self._url(table), params=params, json=body, headers=headers
            ) as response:
                if response.status == 401:
                    raise AuthenticationError(table, operation, await response.text())
                if response.status == 403:
                    raise PermissionDeniedError(table, operation, await response.text())
                if response.status >= 400:
                    raise RemoteServiceError(
                        table, operation, response.status, await response.text()
                    )
                if response.status == 204:
                    return None
                text = await response.text()
                if not text:
                    return None
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RemoteServiceError(table, operation, None, str(e) or type(e).__name__) from e

    async def select(
        self,
        table: str,
        filters: list[Filter] | None = None,
        order: Order | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        rows = await self._request(
            "GET", table, "select", params=build_query_params(filters, order, limit)
        )
        return list(rows or [])

    async def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        rows = await self._request(
            "POST", table, "insert", body=record, prefer="return=representation"
        )
        if isinstance(rows, list):
            return rows[0] if rows else dict(record)
        return rows or dict(record)

    async def update(self, table: str, record_id: str, changes: dict[str, Any]) -> None:
        payload = {k: v for k, v in changes.items() if k != "id"}
        await self._request(
            "PATCH",
            table,
            "update",
            params=[("id", f"eq.{record_id}")],
            body=payload,
            prefer="return=minimal",
        )

    async def delete(self, table: str, record_id: str) -> None:
        await self._request(
            "DELETE", table, "delete", params=[("id", f"eq.{record_id}")], prefer="return=minimal"
        )

    async def ping(self) -> bool:
        try:
            async with self._get_session().get(
                f"{self.base_url}/rest/v1/",
                headers=self._headers(),
                timeout=aiohttp.ClientTimeout(total=PING_TIMEOUT),
            ) as response:
                return response.status < 500
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.debug(f"Remote ping failed: {e}")
            return False

    async def close(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None
