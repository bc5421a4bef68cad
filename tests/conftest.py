"""Shared test fixtures and configuration."""

import json
from collections import deque
from typing import Any, Optional, Union

import httpx
import pytest

from bearwatch import BearWatch, BearWatchConfig

SUCCESS_ENVELOPE: dict[str, Any] = {
    "success": True,
    "data": {
        "runId": "run-abc",
        "jobId": "job-123",
        "status": "SUCCESS",
        "receivedAt": "2026-01-21T12:00:00Z",
    },
}


class HeartbeatServer:
    """In-memory stand-in for the ingest API.

    Serves queued responses in order through ``httpx.MockTransport`` and
    records every request it receives. Queued exceptions are raised instead
    of answering, which simulates transport failures.
    """

    def __init__(self) -> None:
        self._queue: deque[Union[httpx.Response, Exception]] = deque()
        self.requests: list[httpx.Request] = []
        self.transport = httpx.MockTransport(self._handle)

    def enqueue(
        self,
        status_code: int = 200,
        *,
        json_body: Optional[dict[str, Any]] = None,
        text: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        """Queue one response; JSON bodies take precedence over text."""
        if json_body is not None:
            response = httpx.Response(status_code, json=json_body, headers=headers)
        else:
            response = httpx.Response(status_code, text=text or "", headers=headers)
        self._queue.append(response)

    def enqueue_success(self) -> None:
        """Queue a successful heartbeat acknowledgement."""
        self.enqueue(200, json_body=SUCCESS_ENVELOPE)

    def enqueue_exception(self, exc: Exception) -> None:
        """Queue a transport failure raised instead of a response."""
        self._queue.append(exc)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self._queue:
            return httpx.Response(500, text="no response queued")
        item = self._queue.popleft()
        if isinstance(item, Exception):
            raise item
        return item

    @property
    def request_count(self) -> int:
        return len(self.requests)

    def body(self, index: int = -1) -> dict[str, Any]:
        """Parsed JSON body of a recorded request."""
        return json.loads(self.requests[index].content)


@pytest.fixture
def server() -> HeartbeatServer:
    """Provide an in-memory ingest API with an empty response queue."""
    return HeartbeatServer()


@pytest.fixture
def config() -> BearWatchConfig:
    """Provide a configuration pointing at the in-memory server with short retry delays."""
    return BearWatchConfig(
        api_key="bw_test_api_key",
        base_url="http://bearwatch.test",
        timeout=5.0,
        max_retries=3,
        retry_delay=0.01,
    )


@pytest.fixture
def client(server: HeartbeatServer, config: BearWatchConfig):
    """Provide a client wired to the in-memory server."""
    bw = BearWatch(config, transport=server.transport)
    yield bw
    bw.close()


@pytest.fixture
async def async_client(server: HeartbeatServer, config: BearWatchConfig):
    """Provide a client for async tests, closed with aclose() afterwards."""
    bw = BearWatch(config, transport=server.transport)
    yield bw
    await bw.aclose()
