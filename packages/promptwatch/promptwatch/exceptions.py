"""PromptWatch — Exception hierarchy.

All exceptions raised by the daemon inherit from PromptWatchError so that
callers can catch the full family with a single except clause when needed.

Hierarchy:
    PromptWatchError
    ├── ValidationError
    ├── WatchNotFoundError
    ├── InvalidTransitionError
    ├── StorageError
    ├── TriggerError
    │   ├── TriggerNotFoundError
    │   ├── TriggerExecutionError
    │   ├── TriggerTimeoutError
    │   └── TriggerConfigurationError
    ├── ActionInvocationError
    └── ResultSinkError
"""

from __future__ import annotations

from typing import Any


class PromptWatchError(Exception):
    """Base exception for all PromptWatch errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context or {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context})"


# ---------------------------------------------------------------------------
# Registration / store
# ---------------------------------------------------------------------------


class ValidationError(PromptWatchError):
    """A watch definition was rejected before anything was persisted."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message, context={"field": field} if field else None)
        self.field = field


class WatchNotFoundError(PromptWatchError):
    """No watch exists with the requested id."""

    def __init__(self, watch_id: str) -> None:
        super().__init__(f"Watch not found: {watch_id}", context={"watch_id": watch_id})
        self.watch_id = watch_id


class InvalidTransitionError(PromptWatchError):
    """A status change was requested that the watch lifecycle does not allow."""

    def __init__(self, watch_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"Cannot move watch '{watch_id}' from '{current}' to '{requested}'. "
            "Only active watches can change status.",
            context={"watch_id": watch_id, "current": current, "requested": requested},
        )
        self.watch_id = watch_id
        self.current = current
        self.requested = requested


class StorageError(PromptWatchError):
    """The watch store could not complete an operation."""

    def __init__(self, operation: str, reason: str) -> None:
        super().__init__(
            f"Storage operation '{operation}' failed: {reason}",
            context={"operation": operation, "reason": reason},
        )
        self.operation = operation
        self.reason = reason


# ---------------------------------------------------------------------------
# Trigger execution
# ---------------------------------------------------------------------------


class TriggerError(PromptWatchError):
    """Base for failures while running a trigger executable.

    ``transient`` failures leave the watch active; the next scheduled poll is
    the retry.
    """

    transient: bool = True

    def __init__(self, trigger: str, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message, context={"trigger": trigger, **(context or {})})
        self.trigger = trigger


class TriggerNotFoundError(TriggerError):
    """The trigger executable does not exist or is not executable."""

    def __init__(self, trigger: str, path: str | None = None) -> None:
        super().__init__(
            trigger,
            f"Trigger not found or not executable: {trigger}",
            context={"path": path},
        )
        self.path = path


class TriggerExecutionError(TriggerError):
    """The trigger process could not be started."""

    def __init__(self, trigger: str, reason: str) -> None:
        super().__init__(
            trigger,
            f"Failed to execute trigger '{trigger}': {reason}",
            context={"reason": reason},
        )
        self.reason = reason


class TriggerTimeoutError(TriggerError):
    """The trigger process exceeded its timeout and was killed."""

    def __init__(self, trigger: str, timeout: float) -> None:
        super().__init__(
            trigger,
            f"Trigger '{trigger}' timed out after {timeout}s",
            context={"timeout": timeout},
        )
        self.timeout = timeout


class TriggerConfigurationError(TriggerError):
    """The trigger reference can never resolve (e.g. it escapes the trigger directory)."""

    transient = False

    def __init__(self, trigger: str, reason: str) -> None:
        super().__init__(trigger, f"Invalid trigger '{trigger}': {reason}", context={"reason": reason})
        self.reason = reason


# ---------------------------------------------------------------------------
# Action / results
# ---------------------------------------------------------------------------


class ActionInvocationError(PromptWatchError):
    """The bound action could not be launched or did not finish in time."""

    def __init__(self, watch_id: str, reason: str, exit_code: int) -> None:
        super().__init__(
            f"Action for watch '{watch_id}' failed: {reason}",
            context={"watch_id": watch_id, "reason": reason, "exit_code": exit_code},
        )
        self.watch_id = watch_id
        self.reason = reason
        self.exit_code = exit_code


class ResultSinkError(PromptWatchError):
    """A Result record could not be written."""

    def __init__(self, watch_id: str, reason: str) -> None:
        super().__init__(
            f"Cannot write result for watch '{watch_id}': {reason}",
            context={"watch_id": watch_id, "reason": reason},
        )
        self.watch_id = watch_id
        self.reason = reason
