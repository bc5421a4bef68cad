"""Run user tasks and report their outcome as heartbeats."""

from __future__ import annotations

import functools
import inspect
import logging
from collections.abc import Awaitable
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Optional, TypeVar, Union

from bearwatch._http import heartbeat_path
from bearwatch.errors import describe_exception
from bearwatch.options import WrapOptions

if TYPE_CHECKING:
    from bearwatch.client import BearWatch

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_wrapped(
    client: BearWatch,
    job_id: str,
    task: Callable[[], T],
    options: Optional[WrapOptions] = None,
) -> T:
    """Run ``task`` and send a SUCCESS or FAILED heartbeat on the retrying path.

    Heartbeat delivery errors are logged and dropped. The task's own result is
    returned, or its own exception re-raised.
    """
    heartbeat_path(job_id)
    if inspect.iscoroutinefunction(task):
        raise TypeError("wrap() needs a plain callable; use wrap_async() for coroutines")
    options = options or WrapOptions()

    started_at = datetime.now(timezone.utc)
    try:
        result = task()
    except Exception as exc:
        try:
            client._report_failure(job_id, started_at, describe_exception(exc), options.metadata)
        except Exception as heartbeat_error:
            logger.warning(
                "Failure heartbeat for job %s was not delivered: %s", job_id, heartbeat_error
            )
        raise

    try:
        client._report_success(job_id, started_at, options.output, options.metadata)
    except Exception as heartbeat_error:
        logger.warning(
            "Completion heartbeat for job %s was not delivered: %s", job_id, heartbeat_error
        )
    return result


async def run_wrapped_async(
    client: BearWatch,
    job_id: str,
    task: Union[Callable[[], Awaitable[T]], Awaitable[T]],
    options: Optional[WrapOptions] = None,
) -> T:
    """Await ``task``, then wait for a single-attempt heartbeat before settling.

    The heartbeat outcome only sequences completion; the task's result or
    exception is what the caller sees.
    """
    heartbeat_path(job_id)
    options = options or WrapOptions()

    started_at = datetime.now(timezone.utc)
    try:
        result = await (task() if callable(task) else task)
    except Exception as exc:
        await _settle(
            client._report_failure_async(
                job_id, started_at, describe_exception(exc), options.metadata
            ),
            job_id,
        )
        raise

    await _settle(
        client._report_success_async(job_id, started_at, options.output, options.metadata),
        job_id,
    )
    return result


async def _settle(heartbeat: Awaitable[Any], job_id: str) -> None:
    try:
        await heartbeat
    except Exception as heartbeat_error:
        logger.warning("Heartbeat for job %s was not delivered: %s", job_id, heartbeat_error)


def monitored(
    client: BearWatch, job_id: str, options: Optional[WrapOptions] = None
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator that wraps every call of a function as one run of ``job_id``."""

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                return await run_wrapped_async(
                    client, job_id, lambda: func(*args, **kwargs), options
                )

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            return run_wrapped(client, job_id, lambda: func(*args, **kwargs), options)

        return wrapper

    return decorator


__all__ = ["monitored", "run_wrapped", "run_wrapped_async"]
