from __future__ import annotations

import asyncio
import time
from typing import Any

import aiohttp

from config.defaults import HTTP_USER_AGENT
from upstream.errors import UpstreamError
from upstream.errors import parse_retry_after
from upstream.errors import upstream_error_from_exception


def _retry_hint(headers) -> float | None:
    hint = parse_retry_after(headers.get("Retry-After"))
    if hint is not None:
        return hint
    # Twitch reports an epoch-seconds reset instead of Retry-After
    reset = headers.get("Ratelimit-Reset")
    if reset:
        try:
            return max(1.0, float(reset) - time.time())
        except ValueError:
            return None
    return None


class JsonHttpClient:
    """Lazily created aiohttp session shared by one provider."""

    def __init__(self, *, timeout_seconds: float = 15.0):
        self.timeout_seconds = float(timeout_seconds)
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"User-Agent": HTTP_USER_AGENT})
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def request_json(
        self,
        method: str,
        url: str,
        *,
        context: str,
        params: Any = None,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout_seconds: float | None = None,
    ) -> Any:
        session = await self._get_session()
        timeout = aiohttp.ClientTimeout(total=timeout_seconds or self.timeout_seconds)
        try:
            async with session.request(method, url, params=params, data=data, headers=headers, timeout=timeout) as resp:
                if resp.status >= 400:
                    body = (await resp.text())[:200]
                    raise UpstreamError(
                        f"{context}: {body or resp.reason}",
                        status=resp.status,
                        retry_after_seconds=_retry_hint(resp.headers) if resp.status == 429 else None,
                    )
                return await resp.json(content_type=None)
        except UpstreamError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as e:
            raise upstream_error_from_exception(e, context=context) from e

    async def get_raw(self, url: str, *, context: str, timeout_seconds: float | None = None) -> tuple[int, str]:
        """GET returning (status, body text) without raising on HTTP status."""
        session = await self._get_session()
        timeout = aiohttp.ClientTimeout(total=timeout_seconds or self.timeout_seconds)
        try:
            async with session.get(url, timeout=timeout) as resp:
                return (resp.status, await resp.text(errors="replace"))
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise upstream_error_from_exception(e, context=context) from e

    async def get_json(self, url: str, *, context: str, **kwargs) -> Any:
        return await self.request_json("GET", url, context=context, **kwargs)

    async def post_form(self, url: str, *, context: str, data: dict[str, Any], **kwargs) -> Any:
        return await self.request_json("POST", url, context=context, data=data, **kwargs)
