"""BearWatch Python Client Library.

Reports job execution heartbeats to the BearWatch monitoring service.
"""

from bearwatch._http import ResultCallback
from bearwatch._version import __version__, __version_info__
from bearwatch.client import BearWatch
from bearwatch.config import BearWatchConfig
from bearwatch.errors import BearWatchError, ErrorContext, ErrorKind
from bearwatch.options import CompleteOptions, PingOptions, WrapOptions
from bearwatch.retry import RetryPolicy
from bearwatch.types import HeartbeatRequest, HeartbeatResponse, RequestStatus, Status

__all__ = [
    "BearWatch",
    "BearWatchConfig",
    "BearWatchError",
    "CompleteOptions",
    "ErrorContext",
    "ErrorKind",
    "HeartbeatRequest",
    "HeartbeatResponse",
    "PingOptions",
    "RequestStatus",
    "ResultCallback",
    "RetryPolicy",
    "Status",
    "WrapOptions",
    "__version__",
    "__version_info__",
]
