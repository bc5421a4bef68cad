"""Retry with exponential backoff, jitter, and server-directed delays."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

import httpx

from bearwatch.errors import BearWatchError, ErrorKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_KINDS = frozenset({ErrorKind.SERVER_ERROR, ErrorKind.RATE_LIMITED})


def is_retryable(error: BearWatchError) -> bool:
    """Server errors, rate limiting and transport failures are transient."""
    if error.kind in _RETRYABLE_KINDS:
        return True

    cause: Optional[BaseException] = error.cause
    while cause is not None:
        if isinstance(cause, (httpx.TransportError, OSError)):
            return True
        cause = cause.__cause__
    return False


@dataclass(frozen=True)
class RetryPolicy:
    """Run an operation up to ``max_retries + 1`` times.

    ``base_delay`` is in seconds. ``sleep`` and ``rng`` are injectable so the
    waiting behaviour can be observed in tests.
    """

    max_retries: int = 3
    base_delay: float = 0.5
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False, compare=False)
    rng: random.Random = field(default_factory=random.Random, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if self.base_delay < 0:
            raise ValueError("base_delay must be non-negative")

    def execute(self, operation: Callable[[], T]) -> T:
        """Call ``operation`` until it succeeds or a terminal error occurs.

        Only ``BearWatchError`` takes part in retrying. Anything raised while
        waiting (``KeyboardInterrupt`` included) ends the loop and propagates
        unchanged.
        """
        attempt = 0
        while True:
            try:
                return operation()
            except BearWatchError as exc:
                if not is_retryable(exc) or attempt >= self.max_retries:
                    raise
                attempt += 1
                delay = self.compute_delay(attempt, exc)
                logger.debug(
                    "Retrying after %s (retry %d/%d) in %.3fs",
                    exc.error_code,
                    attempt,
                    self.max_retries,
                    delay,
                )
                self.sleep(delay)

    def compute_delay(self, attempt: int, error: BearWatchError) -> float:
        """Delay in seconds before retry number ``attempt`` (starting at 1)."""
        if error.kind is ErrorKind.RATE_LIMITED and error.retry_after_ms is not None:
            return error.retry_after_ms / 1000

        exponential = self.base_delay * (2**attempt)
        jitter = 0.5 + self.rng.random() * 0.5
        return exponential * jitter


__all__ = ["RetryPolicy", "is_retryable"]
