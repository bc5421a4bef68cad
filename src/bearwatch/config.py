"""Configuration for the BearWatch client."""

from __future__ import annotations

from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from bearwatch.errors import BearWatchError

DEFAULT_BASE_URL = "https://api.bearwatch.dev"


class BearWatchConfig(BaseModel):
    """Validated, immutable client settings.

    ``timeout`` and ``retry_delay`` are in seconds. ``on_error`` is an
    informational observer for failures of asynchronous operations.
    """

    model_config = ConfigDict(frozen=True)

    api_key: str = Field(min_length=1)
    base_url: str = Field(default=DEFAULT_BASE_URL, min_length=1)
    timeout: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=0.5, ge=0)
    on_error: Optional[Callable[[BearWatchError], None]] = Field(default=None, repr=False)

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


__all__ = ["DEFAULT_BASE_URL", "BearWatchConfig"]
