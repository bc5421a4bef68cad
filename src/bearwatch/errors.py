"""Error model for the BearWatch client library."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Optional

import httpx

# Longer server-directed waits are ignored in favour of normal backoff.
MAX_RETRY_AFTER_MS = 24 * 60 * 60 * 1000

_DELAY_SECONDS = re.compile(r"[0-9]+")


class ErrorKind(str, Enum):
    """Tag identifying which failure a ``BearWatchError`` represents."""

    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    INVALID_API_KEY = "INVALID_API_KEY"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"
    SERVER_ERROR = "SERVER_ERROR"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    GENERIC = "GENERIC"


@dataclass(frozen=True)
class ErrorContext:
    """Operation details attached to an error after it reaches the client facade."""

    job_id: str
    run_id: Optional[str]
    operation: str


class BearWatchError(Exception):
    """Single exception type for every failure surfaced by the SDK.

    Callers inspect ``kind`` (or the stable ``error_code`` string) instead of
    catching subclasses. ``status_code`` is 0 when no HTTP exchange happened.
    A ``GENERIC`` error carries the server-supplied code when the response
    envelope reported the failure, and an SDK code or ``None`` otherwise.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind = ErrorKind.GENERIC,
        error_code: Optional[str] = None,
        status_code: int = 0,
        response_body: Optional[str] = None,
        retry_after_ms: Optional[int] = None,
        cause: Optional[BaseException] = None,
        context: Optional[ErrorContext] = None,
    ) -> None:
        super().__init__(message)
        if error_code is None and kind is not ErrorKind.GENERIC:
            error_code = kind.value
        self.message = message
        self.kind = kind
        self.error_code = error_code
        self.status_code = status_code
        self.response_body = response_body
        self.retry_after_ms = retry_after_ms
        self.cause = cause
        self.context = context
        self.original: Optional[BearWatchError] = None
        self.__cause__ = cause

    def __repr__(self) -> str:
        return (
            f"BearWatchError(kind={self.kind.value}, error_code={self.error_code!r}, "
            f"status_code={self.status_code}, message={self.message!r}, context={self.context!r})"
        )

    def with_context(self, context: ErrorContext) -> BearWatchError:
        """Return a copy of this error carrying ``context``.

        Every other field is preserved. The traceback is copied over, and when
        there is no underlying cause the original error is kept in ``original``
        so the point of failure stays reachable.
        """
        enriched = BearWatchError(
            self.message,
            kind=self.kind,
            error_code=self.error_code,
            status_code=self.status_code,
            response_body=self.response_body,
            retry_after_ms=self.retry_after_ms,
            cause=self.cause,
            context=context,
        )
        if self.__traceback__ is not None:
            enriched = enriched.with_traceback(self.__traceback__)
        if self.cause is None:
            enriched.original = self
        return enriched

    @classmethod
    def network_error(cls, cause: BaseException) -> BearWatchError:
        return cls(f"Network error: {cause}", kind=ErrorKind.NETWORK_ERROR, cause=cause)

    @classmethod
    def timeout(cls, cause: Optional[BaseException] = None) -> BearWatchError:
        return cls("Request timed out", kind=ErrorKind.TIMEOUT, cause=cause)

    @classmethod
    def invalid_api_key(cls) -> BearWatchError:
        return cls("Invalid or expired API key", kind=ErrorKind.INVALID_API_KEY, status_code=401)

    @classmethod
    def job_not_found(cls, job_id: str) -> BearWatchError:
        return cls(f"Job not found: {job_id}", kind=ErrorKind.JOB_NOT_FOUND, status_code=404)

    @classmethod
    def rate_limited(
        cls, retry_after_ms: Optional[int] = None, response_body: Optional[str] = None
    ) -> BearWatchError:
        return cls(
            "Rate limit exceeded",
            kind=ErrorKind.RATE_LIMITED,
            status_code=429,
            response_body=response_body,
            retry_after_ms=retry_after_ms,
        )

    @classmethod
    def server_error(cls, status_code: int, response_body: Optional[str]) -> BearWatchError:
        return cls(
            f"Server error: {status_code}",
            kind=ErrorKind.SERVER_ERROR,
            status_code=status_code,
            response_body=response_body,
        )

    @classmethod
    def invalid_response(
        cls,
        message: str,
        status_code: int,
        response_body: Optional[str],
        cause: Optional[BaseException] = None,
    ) -> BearWatchError:
        return cls(
            message,
            kind=ErrorKind.INVALID_RESPONSE,
            status_code=status_code,
            response_body=response_body,
            cause=cause,
        )

    @classmethod
    def api_error(
        cls,
        status_code: int,
        code: Optional[str],
        message: Optional[str],
        response_body: Optional[str],
    ) -> BearWatchError:
        """Logical failure reported by the server inside the response envelope."""
        return cls(
            message or "Unknown error",
            kind=ErrorKind.GENERIC,
            error_code=code or "UNKNOWN_ERROR",
            status_code=status_code,
            response_body=response_body,
        )


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[int]:
    """Parse a ``Retry-After`` header into milliseconds.

    Accepts delay-seconds (ASCII digits only) or an RFC 1123 HTTP-date. Dates
    in the past clamp to zero. Anything unparsable, or a wait longer than
    ``MAX_RETRY_AFTER_MS``, yields ``None``.
    """
    if value is None or not value.strip():
        return None
    value = value.strip()

    if _DELAY_SECONDS.fullmatch(value):
        digits = value.lstrip("0") or "0"
        if len(digits) > 9:
            return None
        return _bounded(int(digits) * 1000)

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)

    current = now or datetime.now(timezone.utc)
    delay_ms = int((when - current).total_seconds() * 1000)
    return _bounded(max(0, delay_ms))


def _bounded(delay_ms: int) -> Optional[int]:
    return delay_ms if delay_ms <= MAX_RETRY_AFTER_MS else None


def classify_status(
    status_code: int,
    headers: Mapping[str, str],
    body: str,
    job_id: str,
) -> Optional[BearWatchError]:
    """Map HTTP-level failures to an error before the body is parsed as an envelope.

    Returns ``None`` for status codes that fall through to envelope parsing.
    """
    if status_code == 401:
        return BearWatchError.invalid_api_key()
    if status_code == 404:
        return BearWatchError.job_not_found(job_id)
    if status_code == 429:
        return BearWatchError.rate_limited(parse_retry_after(headers.get("Retry-After")), body)
    if status_code >= 500:
        return BearWatchError.server_error(status_code, body)
    return None


def classify_transport_error(exc: BaseException) -> BearWatchError:
    """Map a failure that produced no HTTP response."""
    if isinstance(exc, httpx.TimeoutException):
        return BearWatchError.timeout(exc)
    return BearWatchError.network_error(exc)


def describe_exception(exc: BaseException) -> str:
    """Message reported for a failed task: the exception text, or its repr when empty."""
    return str(exc) or repr(exc)


__all__ = [
    "BearWatchError",
    "ErrorContext",
    "ErrorKind",
    "classify_status",
    "classify_transport_error",
    "describe_exception",
    "parse_retry_after",
]
