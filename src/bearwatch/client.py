"""Client implementation for BearWatch heartbeat reporting."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from datetime import datetime, timezone
from typing import Any, Callable, Optional, TypeVar, Union

import httpx

from bearwatch._http import HttpTransport, ResultCallback, heartbeat_path
from bearwatch.config import BearWatchConfig
from bearwatch.errors import BearWatchError, ErrorContext, describe_exception
from bearwatch.options import CompleteOptions, PingOptions, WrapOptions
from bearwatch.types import HeartbeatRequest, HeartbeatResponse, RequestStatus
from bearwatch.wrapper import monitored, run_wrapped, run_wrapped_async

logger = logging.getLogger(__name__)

T = TypeVar("T")
OptionsT = TypeVar("OptionsT", PingOptions, CompleteOptions)


def _resolve_options(
    options_type: type[OptionsT], options: Optional[OptionsT], fields: dict[str, Any]
) -> OptionsT:
    if options is not None and fields:
        raise ValueError("Pass either an options object or keyword fields, not both")
    if options is not None:
        return options
    return options_type(**fields)


def _success_request(
    started_at: Optional[datetime],
    output: Optional[str],
    metadata: Optional[dict[str, Any]],
) -> HeartbeatRequest:
    completed_at = datetime.now(timezone.utc)
    return HeartbeatRequest(
        status=RequestStatus.SUCCESS,
        started_at=started_at or completed_at,
        completed_at=completed_at,
        output=output,
        metadata=metadata or None,
    )


def _failure_request(
    started_at: Optional[datetime],
    error: Optional[str],
    metadata: Optional[dict[str, Any]],
) -> HeartbeatRequest:
    completed_at = datetime.now(timezone.utc)
    return HeartbeatRequest(
        status=RequestStatus.FAILED,
        started_at=started_at or completed_at,
        completed_at=completed_at,
        error=error,
        metadata=metadata or None,
    )


def _error_message(error: Union[str, BaseException]) -> str:
    if isinstance(error, BaseException):
        return describe_exception(error)
    return error


class _ContextCallback:
    """Adds operation context to failures before handing them to the caller's callback."""

    def __init__(
        self,
        client: BearWatch,
        callback: ResultCallback[HeartbeatResponse],
        context: ErrorContext,
    ) -> None:
        self._client = client
        self._callback = callback
        self._context = context

    def on_success(self, result: HeartbeatResponse) -> None:
        self._callback.on_success(result)

    def on_failure(self, error: BearWatchError) -> None:
        enriched = error.with_context(self._context)
        self._client._notify_error(enriched)
        self._callback.on_failure(enriched)


class BearWatch:
    """Main client for reporting job heartbeats to BearWatch.

    Blocking operations retry transient failures. The ``*_async`` coroutines
    and ``ping_with_callback`` make a single attempt.
    """

    def __init__(
        self,
        config: Optional[BearWatchConfig] = None,
        *,
        api_key: Optional[str] = None,
        transport: Optional[Union[httpx.BaseTransport, httpx.AsyncBaseTransport]] = None,
        **kwargs: Any,
    ) -> None:
        # Support both a ready config and keyword settings
        if config is not None:
            if api_key is not None or kwargs:
                raise ValueError("Pass either 'config' or keyword settings, not both")
            self._config = config
        elif api_key is not None:
            self._config = BearWatchConfig(api_key=api_key, **kwargs)
        else:
            raise ValueError("Either 'config' or 'api_key' must be provided")

        self._http = HttpTransport(self._config, transport=transport)

    @property
    def config(self) -> BearWatchConfig:
        return self._config

    # Blocking operations

    def ping(
        self, job_id: str, options: Optional[PingOptions] = None, **fields: Any
    ) -> HeartbeatResponse:
        """Send a heartbeat. A bare call reports a zero-duration SUCCESS."""
        request = _resolve_options(PingOptions, options, fields).to_request()
        return self._send(job_id, request, "ping")

    def complete(
        self, job_id: str, options: Optional[CompleteOptions] = None, **fields: Any
    ) -> HeartbeatResponse:
        opts = _resolve_options(CompleteOptions, options, fields)
        return self._send(job_id, _success_request(None, opts.output, opts.metadata), "complete")

    def fail(self, job_id: str, error: Union[str, BaseException]) -> HeartbeatResponse:
        """Report a FAILED run. Exceptions are reported by their message."""
        return self._send(job_id, _failure_request(None, _error_message(error), None), "fail")

    def wrap(
        self, job_id: str, task: Callable[[], T], options: Optional[WrapOptions] = None
    ) -> T:
        """Run ``task`` and report its outcome. The task's own result or error always wins."""
        return run_wrapped(self, job_id, task, options)

    # Async operations

    async def ping_async(
        self, job_id: str, options: Optional[PingOptions] = None, **fields: Any
    ) -> HeartbeatResponse:
        request = _resolve_options(PingOptions, options, fields).to_request()
        return await self._send_async(job_id, request, "pingAsync")

    def ping_with_callback(
        self,
        job_id: str,
        callback: ResultCallback[HeartbeatResponse],
        options: Optional[PingOptions] = None,
        **fields: Any,
    ) -> asyncio.Task[None]:
        """Dispatch a ping in the background of the running event loop.

        Exactly one of ``callback.on_success`` / ``callback.on_failure`` is
        invoked once the single attempt settles.
        """
        request = _resolve_options(PingOptions, options, fields).to_request()
        wrapped = _ContextCallback(self, callback, ErrorContext(job_id, None, "pingAsync"))
        return self._http.post_with_callback(
            heartbeat_path(job_id), request, HeartbeatResponse, wrapped
        )

    async def complete_async(
        self, job_id: str, options: Optional[CompleteOptions] = None, **fields: Any
    ) -> HeartbeatResponse:
        opts = _resolve_options(CompleteOptions, options, fields)
        return await self._send_async(
            job_id, _success_request(None, opts.output, opts.metadata), "completeAsync"
        )

    async def fail_async(self, job_id: str, error: Union[str, BaseException]) -> HeartbeatResponse:
        return await self._send_async(
            job_id, _failure_request(None, _error_message(error), None), "failAsync"
        )

    async def wrap_async(
        self,
        job_id: str,
        task: Union[Callable[[], Awaitable[T]], Awaitable[T]],
        options: Optional[WrapOptions] = None,
    ) -> T:
        """Await ``task`` and report its outcome with a single-attempt heartbeat."""
        return await run_wrapped_async(self, job_id, task, options)

    def monitored(
        self, job_id: str, options: Optional[WrapOptions] = None
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator reporting every call of the decorated function as a run of ``job_id``."""
        return monitored(self, job_id, options)

    # Heartbeats sent on behalf of wrapped tasks

    def _report_success(
        self,
        job_id: str,
        started_at: datetime,
        output: Optional[str],
        metadata: Optional[dict[str, Any]],
    ) -> HeartbeatResponse:
        return self._send(job_id, _success_request(started_at, output, metadata), "complete")

    def _report_failure(
        self,
        job_id: str,
        started_at: datetime,
        error: str,
        metadata: Optional[dict[str, Any]],
    ) -> HeartbeatResponse:
        return self._send(job_id, _failure_request(started_at, error, metadata), "fail")

    async def _report_success_async(
        self,
        job_id: str,
        started_at: datetime,
        output: Optional[str],
        metadata: Optional[dict[str, Any]],
    ) -> HeartbeatResponse:
        return await self._send_async(
            job_id, _success_request(started_at, output, metadata), "completeAsync"
        )

    async def _report_failure_async(
        self,
        job_id: str,
        started_at: datetime,
        error: str,
        metadata: Optional[dict[str, Any]],
    ) -> HeartbeatResponse:
        return await self._send_async(
            job_id, _failure_request(started_at, error, metadata), "failAsync"
        )

    # Dispatch

    def _send(self, job_id: str, request: HeartbeatRequest, operation: str) -> HeartbeatResponse:
        path = heartbeat_path(job_id)
        try:
            return self._http.post(path, request, HeartbeatResponse)
        except BearWatchError as exc:
            raise exc.with_context(ErrorContext(job_id, None, operation))

    async def _send_async(
        self, job_id: str, request: HeartbeatRequest, operation: str
    ) -> HeartbeatResponse:
        path = heartbeat_path(job_id)
        try:
            return await self._http.post_async(path, request, HeartbeatResponse)
        except BearWatchError as exc:
            enriched = exc.with_context(ErrorContext(job_id, None, operation))
            self._notify_error(enriched)
            raise enriched

    def _notify_error(self, error: BearWatchError) -> None:
        handler = self._config.on_error
        if handler is None:
            return
        try:
            handler(error)
        except Exception:
            logger.exception("Error observer raised while handling %r", error)

    # Lifecycle

    def close(self) -> None:
        """Release pooled connections."""
        self._http.close()

    async def aclose(self) -> None:
        """Wait for background dispatches and release pooled connections."""
        await self._http.aclose()

    def __enter__(self) -> BearWatch:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    async def __aenter__(self) -> BearWatch:
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.aclose()


__all__ = ["BearWatch"]
