"""API layer — Request and response schemas.

These are the external API contracts.  They are intentionally separate from
the internal dataclasses in ``promptwatch.watches.models``.
"""

from __future__ import annotations

import time
from typing import Any

from pydantic import BaseModel, Field

from promptwatch.watches.models import Watch, to_iso


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class WatchActionRequest(BaseModel):
    prompt: str = Field(
        description="Prompt to run when the trigger fires. {{key}} placeholders are filled from trigger output."
    )
    cwd: str | None = Field(default=None, description="Working directory for the action.")


class RegisterWatchRequest(BaseModel):
    """POST /watches — Register a new watch."""

    trigger: str = Field(description='Name of the trigger executable (e.g. "gh-pr-merged").')
    params: list[str] = Field(default_factory=list, description="Positional trigger arguments.")
    action: WatchActionRequest
    ttl: str | float | None = Field(default=None, description='Time-to-live, e.g. "48h". Default: 48h.')
    interval: str | float | None = Field(
        default=None, description='Polling interval, e.g. "30s". Default: trigger metadata, then 30s.'
    )


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class RegisterWatchResponse(BaseModel):
    watch_id: str
    expires_at: str
    interval_seconds: float
    message: str


class WatchSummary(BaseModel):
    watch_id: str
    trigger: str
    params: list[str]
    status: str
    created_at: str
    expires_at: str
    last_polled_at: str | None
    summary: str


class WatchDetail(BaseModel):
    watch_id: str
    trigger: str
    params: list[str]
    action: dict[str, Any]
    status: str
    interval_seconds: float
    ttl_seconds: float
    created_at: str
    expires_at: str
    last_polled_at: str | None
    fired_at: str | None
    finished_at: str | None
    error_count: int
    last_error: str | None

    @classmethod
    def from_watch(cls, watch: Watch) -> "WatchDetail":
        return cls(
            watch_id=watch.watch_id,
            trigger=watch.trigger,
            params=watch.params,
            action=watch.action.to_dict(),
            status=watch.status.value,
            interval_seconds=watch.interval_seconds,
            ttl_seconds=watch.ttl_seconds,
            created_at=to_iso(watch.created_at) or "",
            expires_at=to_iso(watch.expires_at) or "",
            last_polled_at=to_iso(watch.last_polled_at),
            fired_at=to_iso(watch.fired_at),
            finished_at=to_iso(watch.finished_at),
            error_count=watch.error_count,
            last_error=watch.last_error,
        )


class TriggerArgSchema(BaseModel):
    name: str
    description: str = ""


class TriggerInfo(BaseModel):
    name: str
    description: str = ""
    args: list[TriggerArgSchema] = Field(default_factory=list)
    default_interval: str | None = None
    usage: str


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    uptime_seconds: float
    scheduler_running: bool
    in_flight_polls: int = Field(default=0, description="Trigger polls currently running.")
    active_watches: int = Field(default=0, description="Watches in the active state.")
    pending_results: int = Field(default=0, description="Results not yet delivered.")
    timestamp: float = Field(default_factory=time.time)


class ErrorResponse(BaseModel):
    error: str
    code: str
    detail: Any | None = None
    request_id: str | None = None
