"""Type definitions for the BearWatch client library."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

T = TypeVar("T")


class Status(str, Enum):
    """Run status as observed by the server."""

    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"
    MISSED = "MISSED"


class RequestStatus(str, Enum):
    """Run status a client may report. TIMEOUT and MISSED are server-only."""

    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    def to_status(self) -> Status:
        return Status(self.value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # Naive datetimes are taken to be UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class HeartbeatRequest(BaseModel):
    """A single status report for one job run, as sent on the wire."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    status: RequestStatus
    started_at: datetime = Field(alias="startedAt")
    completed_at: datetime = Field(alias="completedAt")
    output: Optional[str] = None
    error: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None

    @field_validator("started_at", "completed_at")
    @classmethod
    def _normalize_timezone(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @field_validator("metadata")
    @classmethod
    def _copy_metadata(cls, value: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
        return dict(value) if value is not None else None

    @model_validator(mode="after")
    def _check_ordering(self) -> HeartbeatRequest:
        if self.completed_at < self.started_at:
            raise ValueError("completed_at must not be earlier than started_at")
        return self

    @classmethod
    def success(cls) -> HeartbeatRequest:
        now = _utcnow()
        return cls(status=RequestStatus.SUCCESS, started_at=now, completed_at=now)

    @classmethod
    def failed(cls, error: Optional[str]) -> HeartbeatRequest:
        now = _utcnow()
        return cls(status=RequestStatus.FAILED, started_at=now, completed_at=now, error=error)

    @classmethod
    def running(cls) -> HeartbeatRequest:
        now = _utcnow()
        return cls(status=RequestStatus.RUNNING, started_at=now, completed_at=now)


class HeartbeatResponse(BaseModel):
    """Server acknowledgement of a heartbeat."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    run_id: str = Field(alias="runId")
    job_id: str = Field(alias="jobId")
    status: Status
    received_at: datetime = Field(alias="receivedAt")


class ApiErrorInfo(BaseModel):
    """Error details carried by a failed response envelope."""

    code: Optional[str] = None
    message: Optional[str] = None


class ApiResponse(BaseModel, Generic[T]):
    """Response envelope shared by every BearWatch endpoint."""

    success: bool
    data: Optional[T] = None
    error: Optional[ApiErrorInfo] = None


__all__ = [
    "ApiErrorInfo",
    "ApiResponse",
    "HeartbeatRequest",
    "HeartbeatResponse",
    "RequestStatus",
    "Status",
]
