"""Immutable option sets accepted by the client operations."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from bearwatch.types import HeartbeatRequest, RequestStatus


class PingOptions(BaseModel):
    """Fields of a heartbeat sent with ``ping``; unset timestamps default to now."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    status: RequestStatus = RequestStatus.SUCCESS
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    output: Optional[str] = None
    error: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None

    def to_request(self, now: Optional[datetime] = None) -> HeartbeatRequest:
        completed_at = self.completed_at or now or datetime.now(timezone.utc)
        started_at = self.started_at or completed_at
        return HeartbeatRequest(
            status=self.status,
            started_at=started_at,
            completed_at=completed_at,
            output=self.output,
            error=self.error,
            metadata=self.metadata or None,
        )


class CompleteOptions(BaseModel):
    """Output and metadata attached to a SUCCESS heartbeat."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    output: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


class WrapOptions(BaseModel):
    """Output and metadata reported when a wrapped task finishes.

    ``output`` is only sent on success. ``metadata`` is sent on both success
    and failure.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    output: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


__all__ = ["CompleteOptions", "PingOptions", "WrapOptions"]
