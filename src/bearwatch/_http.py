"""HTTP transport for the BearWatch ingest API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional, Protocol, TypeVar, Union
from urllib.parse import quote, unquote

import httpx
from pydantic import BaseModel, ValidationError

from bearwatch._version import __version__
from bearwatch.config import BearWatchConfig
from bearwatch.errors import BearWatchError, classify_status, classify_transport_error
from bearwatch.retry import RetryPolicy
from bearwatch.types import ApiResponse

logger = logging.getLogger(__name__)

T = TypeVar("T")
T_contra = TypeVar("T_contra", contravariant=True)

API_KEY_HEADER = "X-API-Key"
USER_AGENT = f"bearwatch-sdk-python/{__version__}"


class ResultCallback(Protocol[T_contra]):
    """Continuations for a request dispatched in the background.

    Exactly one of the two methods is called, exactly once.
    """

    def on_success(self, result: T_contra) -> None: ...

    def on_failure(self, error: BearWatchError) -> None: ...


def encode_body(payload: BaseModel) -> str:
    """JSON body for ``payload``: camelCase keys, unset optional fields left out."""
    try:
        return payload.model_dump_json(by_alias=True, exclude_none=True)
    except ValueError as exc:
        raise BearWatchError(
            f"Failed to serialize request body: {exc}",
            error_code="SERIALIZATION_ERROR",
            cause=exc,
        ) from exc


def heartbeat_path(job_id: str) -> str:
    """Ingest endpoint for one job's heartbeats."""
    if not isinstance(job_id, str) or not job_id:
        raise ValueError("job_id must be a non-empty string")
    return f"/api/v1/ingest/jobs/{quote(job_id, safe='')}/heartbeat"


def _job_id_from_path(path: str) -> str:
    # /api/v1/ingest/jobs/{jobId}/heartbeat
    parts = path.split("/")
    return unquote(parts[5]) if len(parts) >= 6 else "unknown"


def _invoke(continuation: Callable[[Any], None], value: Any) -> None:
    try:
        continuation(value)
    except Exception:
        logger.exception("Result callback %r raised", continuation)


class HttpTransport:
    """Sends JSON requests and turns responses into results or ``BearWatchError``.

    Owns a blocking connection pool and, once an async call is made, a
    non-blocking one bound to the running event loop. Async calls from a
    different loop replace that pool, closing the old one.
    """

    def __init__(
        self,
        config: BearWatchConfig,
        transport: Optional[Union[httpx.BaseTransport, httpx.AsyncBaseTransport]] = None,
    ) -> None:
        self._config = config
        self._retry_policy = RetryPolicy(
            max_retries=config.max_retries, base_delay=config.retry_delay
        )
        self._timeout = httpx.Timeout(config.timeout)
        self._headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            API_KEY_HEADER: config.api_key,
            "User-Agent": USER_AGENT,
        }
        self._transport = transport
        self._client = httpx.Client(
            timeout=self._timeout,
            headers=self._headers,
            transport=transport if isinstance(transport, httpx.BaseTransport) else None,
        )
        self._async_client: Optional[httpx.AsyncClient] = None
        self._async_loop: Optional[asyncio.AbstractEventLoop] = None
        self._pending: set[asyncio.Task[None]] = set()
        self._closed = False

    def _url(self, path: str) -> str:
        return f"{self._config.base_url}{path}"

    def post(self, path: str, payload: BaseModel, response_type: type[T]) -> T:
        """Blocking POST, retried according to the configured policy."""
        return self._retry_policy.execute(lambda: self._send(path, payload, response_type))

    def _send(self, path: str, payload: BaseModel, response_type: type[T]) -> T:
        if self._closed:
            raise RuntimeError("Transport is closed")
        content = encode_body(payload)
        logger.debug("POST %s", path)
        try:
            response = self._client.post(self._url(path), content=content)
        except httpx.TransportError as exc:
            raise classify_transport_error(exc) from exc
        return self._handle_response(response, response_type, path)

    async def post_async(self, path: str, payload: BaseModel, response_type: type[T]) -> T:
        """Non-blocking POST. Always a single attempt."""
        client = await self._get_async_client()
        content = encode_body(payload)
        logger.debug("POST %s (async)", path)
        try:
            response = await client.post(self._url(path), content=content)
        except httpx.TransportError as exc:
            raise classify_transport_error(exc) from exc
        return self._handle_response(response, response_type, path)

    def post_with_callback(
        self,
        path: str,
        payload: BaseModel,
        response_type: type[T],
        callback: ResultCallback[T],
    ) -> asyncio.Task[None]:
        """Schedule ``post_async`` on the running loop and report through ``callback``."""
        task = asyncio.get_running_loop().create_task(
            self._dispatch(path, payload, response_type, callback)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _dispatch(
        self,
        path: str,
        payload: BaseModel,
        response_type: type[T],
        callback: ResultCallback[T],
    ) -> None:
        try:
            result = await self.post_async(path, payload, response_type)
        except BearWatchError as exc:
            _invoke(callback.on_failure, exc)
        except Exception as exc:
            _invoke(
                callback.on_failure,
                BearWatchError("Unexpected error", error_code="UNEXPECTED_ERROR", cause=exc),
            )
        else:
            _invoke(callback.on_success, result)

    def _handle_response(self, response: httpx.Response, response_type: type[T], path: str) -> T:
        status_code = response.status_code
        try:
            body = response.text
        except (httpx.HTTPError, httpx.StreamError) as exc:
            raise BearWatchError.network_error(exc) from exc

        error = classify_status(status_code, response.headers, body, _job_id_from_path(path))
        if error is not None:
            raise error

        try:
            envelope = ApiResponse[response_type].model_validate_json(body)  # type: ignore[valid-type]
        except ValidationError as exc:
            raise BearWatchError.invalid_response(
                f"Non-JSON or malformed response: {exc}", status_code, body, exc
            ) from exc

        if not envelope.success:
            info = envelope.error
            raise BearWatchError.api_error(
                status_code,
                info.code if info else None,
                info.message if info else None,
                body,
            )
        if envelope.data is None:
            raise BearWatchError.invalid_response(
                "Response envelope reported success without data", status_code, body
            )
        return envelope.data

    async def _get_async_client(self) -> httpx.AsyncClient:
        if self._closed:
            raise RuntimeError("Transport is closed")
        loop = asyncio.get_running_loop()
        if self._async_client is not None and self._async_loop is not loop:
            # Pooled connections belong to the loop that opened them.
            logger.debug("Event loop changed; replacing async connection pool")
            await _close_stale(self._async_client)
            self._async_client = None
        if self._async_client is None:
            transport = self._transport
            self._async_client = httpx.AsyncClient(
                timeout=self._timeout,
                headers=self._headers,
                transport=transport if isinstance(transport, httpx.AsyncBaseTransport) else None,
            )
            self._async_loop = loop
        return self._async_client

    async def _drain(self) -> None:
        loop = asyncio.get_running_loop()
        pending = [task for task in self._pending if task.get_loop() is loop]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        client = self._async_client
        if client is None:
            return
        if self._async_loop is loop:
            await client.aclose()
        else:
            await _close_stale(client)

    def close(self) -> None:
        """Release both connection pools. Safe to call more than once.

        Inside a running event loop, once async requests have been made, this
        raises ``RuntimeError``; use ``aclose()`` there instead.
        """
        if self._closed:
            return
        if self._async_client is not None:
            if _running_loop() is not None:
                raise RuntimeError(
                    "Async connection pool is in use; call aclose() from the event loop"
                )
            loop = self._async_loop
            if loop is not None and not loop.is_closed():
                loop.run_until_complete(self._drain())
            else:
                # Tasks of a closed loop were cancelled when it shut down.
                self._pending.clear()
                asyncio.run(self._drain())
        self._closed = True
        self._client.close()

    async def aclose(self) -> None:
        """Wait for background dispatches, then release both connection pools."""
        if self._closed:
            return
        await self._drain()
        self._closed = True
        self._client.close()


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


async def _close_stale(client: httpx.AsyncClient) -> None:
    # Sockets opened by an event loop that has since closed cannot be shut
    # down cleanly; the client is still marked closed.
    try:
        await client.aclose()
    except RuntimeError as exc:
        logger.debug("Dropped connections of a closed event loop: %s", exc)


__all__ = [
    "API_KEY_HEADER",
    "USER_AGENT",
    "HttpTransport",
    "ResultCallback",
    "encode_body",
    "heartbeat_path",
]
