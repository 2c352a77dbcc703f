"""Watch data models.

All watch state is represented with plain Python dataclasses so that it
can be serialised to JSON and persisted in SQLite without an ORM.

Key classes
-----------
WatchStatus     — lifecycle state machine
WatchAction     — *what to do* when the trigger fires (prompt template + cwd)
Watch           — complete watch record (persisted unit)
TriggerOutcome  — transient result of one trigger poll
ActionResult    — captured outcome of the action process
WatchResult     — the Result record handed to the result sink
"""

from __future__ import annotations

import re
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class WatchStatus(str, Enum):
    """Lifecycle state of a Watch.

    State machine::

        ACTIVE → FIRED      (trigger reported success, action ran once)
               → EXPIRED    (TTL elapsed without a fire)
               → CANCELLED  (external cancel request)
               → ERROR      (non-transient failure, e.g. unresolvable trigger)

    Every non-ACTIVE state is terminal.  A watch leaves ACTIVE at most once.
    """

    ACTIVE = "active"
    FIRED = "fired"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self is not WatchStatus.ACTIVE


TERMINAL_STATUSES: frozenset[WatchStatus] = frozenset(
    s for s in WatchStatus if s.is_terminal
)

# Output variables are a flat, ordered map of JSON scalars.
OutputVars = dict[str, str | int | float | bool | None]

# Bare executable name inside the trigger directory.  No path separators.
TRIGGER_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


def generate_watch_id() -> str:
    """Return a new watch id of the form ``w_<8 hex chars>``."""
    return f"w_{uuid.uuid4().hex[:8]}"


def to_iso(ts: float | None) -> str | None:
    """Render a Unix timestamp as an ISO-8601 UTC string."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Watch: the persisted unit
# ---------------------------------------------------------------------------


@dataclass
class WatchAction:
    """The prompt-and-context bundle executed once the trigger fires.

    ``prompt_template`` may contain ``{{key}}`` placeholders resolved from
    the trigger's output variables.
    """

    prompt_template: str
    working_directory: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"prompt_template": self.prompt_template, "working_directory": self.working_directory}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "WatchAction":
        return cls(
            prompt_template=d["prompt_template"],
            working_directory=d.get("working_directory"),
        )


@dataclass
class Watch:
    """A registered, time-bounded intent to act when a trigger condition holds."""

    trigger: str
    params: list[str] = field(default_factory=list)
    action: WatchAction = field(default_factory=lambda: WatchAction(prompt_template=""))

    interval_seconds: float = 30.0
    """Minimum time between two polls of this watch."""

    ttl_seconds: float = 48 * 3600.0
    """Lifetime of an unfired watch.  ``expires_at`` is derived once at creation."""

    watch_id: str = field(default_factory=generate_watch_id)
    status: WatchStatus = WatchStatus.ACTIVE

    # --- timestamps (Unix seconds) ---
    created_at: float = field(default_factory=time.time)
    expires_at: float = 0.0
    last_polled_at: float | None = None
    fired_at: float | None = None
    finished_at: float | None = None
    updated_at: float = field(default_factory=time.time)

    # --- consecutive transient trigger errors ---
    error_count: int = 0
    last_error: str | None = None

    def __post_init__(self) -> None:
        if not self.expires_at:
            self.expires_at = self.created_at + self.ttl_seconds

    # ---------------------------------------------------------------------------
    # Business logic
    # ---------------------------------------------------------------------------

    def is_expired(self, now: float | None = None) -> bool:
        return (now if now is not None else time.time()) >= self.expires_at

    def is_due(self, now: float | None = None) -> bool:
        """True when the watch is active, unexpired and its interval has elapsed."""
        now = now if now is not None else time.time()
        if self.status is not WatchStatus.ACTIVE or self.is_expired(now):
            return False
        return self.last_polled_at is None or now - self.last_polled_at >= self.interval_seconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "watch_id": self.watch_id,
            "trigger": self.trigger,
            "params": list(self.params),
            "action": self.action.to_dict(),
            "status": self.status.value,
            "interval_seconds": self.interval_seconds,
            "ttl_seconds": self.ttl_seconds,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "last_polled_at": self.last_polled_at,
            "fired_at": self.fired_at,
            "finished_at": self.finished_at,
            "updated_at": self.updated_at,
            "error_count": self.error_count,
            "last_error": self.last_error,
        }


def format_watch(watch: Watch) -> str:
    """One-line listing: ``<id>: <trigger> <params> [<status>] (expires <iso>)``."""
    params = " ".join(watch.params)
    return (
        f"{watch.watch_id}: {watch.trigger} {params} "
        f"[{watch.status.value}] (expires {to_iso(watch.expires_at)})"
    )


# ---------------------------------------------------------------------------
# Poll / fire records
# ---------------------------------------------------------------------------


@dataclass
class TriggerOutcome:
    """Produced once per poll attempt.  Never persisted."""

    fired: bool
    output_vars: OutputVars = field(default_factory=dict)
    stderr: str = ""
    exit_code: int = 0
    duration_ms: float = 0.0


@dataclass
class ActionResult:
    """What happened when the bound action ran."""

    rendered_prompt: str
    working_directory: str
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    completed_at: float = field(default_factory=time.time)
    error: str | None = None
    """Set when the action could not be launched or was killed on timeout."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "rendered_prompt": self.rendered_prompt,
            "working_directory": self.working_directory,
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "completed_at": to_iso(self.completed_at),
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "ActionResult":
        completed = d.get("completed_at")
        return cls(
            rendered_prompt=d.get("rendered_prompt", ""),
            working_directory=d.get("working_directory", ""),
            exit_code=int(d.get("exit_code", 1)),
            stdout=d.get("stdout", ""),
            stderr=d.get("stderr", ""),
            completed_at=datetime.fromisoformat(completed).timestamp() if completed else 0.0,
            error=d.get("error"),
        )


@dataclass
class WatchResult:
    """Written exactly once per fired watch; immutable afterwards."""

    watch_id: str
    trigger: str
    params: list[str]
    trigger_output: OutputVars
    action: ActionResult
    fired_at: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "watch_id": self.watch_id,
            "trigger": self.trigger,
            "params": list(self.params),
            "trigger_output": dict(self.trigger_output),
            "action": self.action.to_dict(),
            "fired_at": to_iso(self.fired_at),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "WatchResult":
        return cls(
            watch_id=d["watch_id"],
            trigger=d["trigger"],
            params=list(d.get("params", [])),
            trigger_output=dict(d.get("trigger_output", {})),
            action=ActionResult.from_dict(d.get("action", {})),
            fired_at=datetime.fromisoformat(d["fired_at"]).timestamp(),
        )
