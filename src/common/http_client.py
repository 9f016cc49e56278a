"""Shared HTTP helpers used by the registry client and the store.

Wraps one ``aiohttp.ClientSession`` per process run, injects registry
credentials by URL prefix and turns transport failures into ``NetworkError``
so callers (and the retry helper) only deal with one exception type.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, Optional

import aiohttp

from constants import Constants
from common.errors import NetworkError
from common.logging_utils import extra_context, is_debug_enabled, safe_url, Timer

logger = logging.getLogger(__name__)

AuthLookup = Callable[[str], Dict[str, str]]


def _no_auth(url: str) -> Dict[str, str]:
    return {}


class HttpClient:
    """Async HTTP client with consistent error handling and DEBUG traces."""

    def __init__(
        self,
        *,
        auth_headers: Optional[AuthLookup] = None,
        timeout: float = Constants.REQUEST_TIMEOUT,
        read_timeout: float = Constants.DOWNLOAD_READ_TIMEOUT,
        connection_limit: int = Constants.CONNECTION_LIMIT,
    ):
        """Initialize the client.

        Args:
            auth_headers: Returns extra headers (credentials) for a request URL.
            timeout: Total timeout in seconds for requests whose body is read whole.
            read_timeout: Longest wait in seconds for the next chunk of a streamed
                download. Streams have no total limit.
            connection_limit: Maximum number of pooled connections.
        """
        self._auth_headers = auth_headers or _no_auth
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._stream_timeout = aiohttp.ClientTimeout(
            total=None, sock_connect=timeout, sock_read=read_timeout
        )
        self._connection_limit = connection_limit
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        """Start the HTTP session."""
        if self._session is None:
            connector = aiohttp.TCPConnector(limit=self._connection_limit)
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                connector=connector,
                headers={"User-Agent": Constants.USER_AGENT},
            )

    async def stop(self) -> None:
        """Stop the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "HttpClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    def _headers(self, url: str, headers: Optional[Dict[str, str]]) -> Dict[str, str]:
        merged = dict(headers or {})
        merged.update(self._auth_headers(url))
        return merged

    @asynccontextmanager
    async def _get(
        self,
        url: str,
        *,
        context: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
    ) -> AsyncIterator[aiohttp.ClientResponse]:
        if self._session is None:
            await self.start()
        assert self._session is not None
        safe_target = safe_url(url)
        with Timer() as t:
            if is_debug_enabled(logger):
                logger.debug(
                    "HTTP request",
                    extra=extra_context(
                        event="http_request",
                        component="http_client",
                        action="GET",
                        target=safe_target,
                        context=context,
                    ),
                )
            try:
                async with self._session.get(
                    url, headers=self._headers(url, headers), timeout=timeout or self._timeout
                ) as res:
                    if is_debug_enabled(logger):
                        logger.debug(
                            "HTTP response",
                            extra=extra_context(
                                event="http_response",
                                component="http_client",
                                action="GET",
                                status_code=res.status,
                                duration_ms=t.duration_ms(),
                                target=safe_target,
                                context=context,
                            ),
                        )
                    yield res
            except asyncio.TimeoutError as exc:
                raise NetworkError(
                    f"{context} request timed out: {safe_target}",
                    url=url,
                ) from exc
            except aiohttp.ClientError as exc:
                raise NetworkError(f"{context} connection error: {exc}", url=url) from exc

    async def get_json(
        self, url: str, *, context: str, headers: Optional[Dict[str, str]] = None
    ) -> Optional[Any]:
        """GET ``url`` and decode JSON.

        Returns:
            The decoded document, or None when the server answered 404.

        Raises:
            NetworkError: on transport failure, non-2xx status or invalid JSON.
        """
        async with self._get(url, context=context, headers=headers) as res:
            if res.status == 404:
                return None
            if res.status >= 400:
                raise NetworkError(
                    f"{context} request failed with HTTP {res.status}: {safe_url(url)}",
                    url=url,
                    status=res.status,
                )
            try:
                return await res.json(content_type=None)
            except ValueError as exc:
                raise NetworkError(f"{context} returned invalid JSON: {safe_url(url)}", url=url) from exc

    async def iter_bytes(
        self,
        url: str,
        *,
        context: str,
        chunk_size: int = Constants.DOWNLOAD_CHUNK_SIZE,
    ) -> AsyncIterator[bytes]:
        """Stream the body of ``url`` in chunks; any non-2xx status is a NetworkError."""
        async with self._get(url, context=context, timeout=self._stream_timeout) as res:
            if res.status >= 400:
                raise NetworkError(
                    f"{context} download failed with HTTP {res.status}: {safe_url(url)}",
                    url=url,
                    status=res.status,
                )
            try:
                async for chunk in res.content.iter_chunked(chunk_size):
                    yield chunk
            except asyncio.TimeoutError as exc:
                raise NetworkError(f"{context} download timed out: {safe_url(url)}", url=url) from exc
            except aiohttp.ClientError as exc:
                raise NetworkError(f"{context} download interrupted: {exc}", url=url) from exc
