from __future__ import annotations

import asyncio

import aiohttp

TRANSIENT_ERROR_CODES = {"ECONNRESET", "ETIMEDOUT", "ECONNABORTED", "ECONNREFUSED", "EAI_AGAIN"}


class UpstreamError(Exception):
    """Failure talking to an upstream platform.

    `status` is the HTTP status when one was received, `retry_after_seconds`
    the server-supplied hint (Retry-After / rate-limit reset) and `code` a
    transport-level code such as ETIMEDOUT.
    """

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        retry_after_seconds: float | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.retry_after_seconds = retry_after_seconds
        self.code = (code or "").upper() or None

    @property
    def rate_limited(self) -> bool:
        return self.status == 429

    @property
    def retryable(self) -> bool:
        if self.status == 429:
            return True
        if self.status is not None and self.status >= 500:
            return True
        return self.code in TRANSIENT_ERROR_CODES

    def describe(self) -> str:
        prefix = f"HTTP {self.status} " if self.status else ""
        return f"{prefix}{self}"


def parse_retry_after(value: str | None) -> float | None:
    text = str(value or "").strip()
    if not text:
        return None
    try:
        seconds = float(text)
    except ValueError:
        return None
    if seconds <= 0:
        return None
    return seconds


def upstream_error_from_exception(exc: BaseException, *, context: str = "") -> UpstreamError:
    label = f"{context}: " if context else ""
    if isinstance(exc, UpstreamError):
        return exc
    if isinstance(exc, aiohttp.ClientResponseError):
        retry_after = None
        if exc.headers is not None:
            retry_after = parse_retry_after(exc.headers.get("Retry-After"))
        return UpstreamError(f"{label}{exc.message}", status=exc.status, retry_after_seconds=retry_after)
    if isinstance(exc, (asyncio.TimeoutError, aiohttp.ServerTimeoutError)):
        return UpstreamError(f"{label}request timed out", code="ETIMEDOUT")
    if isinstance(exc, aiohttp.ServerDisconnectedError):
        return UpstreamError(f"{label}server disconnected", code="ECONNRESET")
    if isinstance(exc, aiohttp.ClientConnectorError):
        return UpstreamError(f"{label}connection failed: {exc}", code="ECONNREFUSED")
    if isinstance(exc, aiohttp.ClientConnectionError):
        return UpstreamError(f"{label}connection error: {exc}", code="ECONNRESET")
    if isinstance(exc, OSError):
        return UpstreamError(f"{label}network error: {exc}", code="ECONNRESET")
    return UpstreamError(f"{label}{exc}")
