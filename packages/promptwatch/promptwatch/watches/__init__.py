"""PromptWatch — Watch records and their persistence.

Package structure
-----------------
watches/
  models.py     — Watch, WatchStatus, WatchAction, TriggerOutcome, WatchResult
  durations.py  — "30s" / "48h" duration strings
  store.py      — SQLite-backed WatchStore (the single source of truth)
"""

from promptwatch.watches.durations import format_duration, parse_duration
from promptwatch.watches.models import (
    ActionResult,
    TriggerOutcome,
    Watch,
    WatchAction,
    WatchResult,
    WatchStatus,
    format_watch,
)
from promptwatch.watches.store import WatchStore

__all__ = [
    "ActionResult",
    "TriggerOutcome",
    "Watch",
    "WatchAction",
    "WatchResult",
    "WatchStatus",
    "WatchStore",
    "format_duration",
    "format_watch",
    "parse_duration",
]
