"""WatchService — registration, status and cancel operations.

Thin layer between the outer surfaces (HTTP, CLI) and the WatchStore: it
validates input, resolves defaults from trigger metadata and configuration,
and turns lifecycle violations into typed errors.
"""

from __future__ import annotations

from promptwatch.config import Settings
from promptwatch.exceptions import (
    InvalidTransitionError,
    ValidationError,
    WatchNotFoundError,
)
from promptwatch.logging import get_logger
from promptwatch.triggers.catalog import TriggerCatalog, TriggerMetadata
from promptwatch.watches.durations import parse_duration
from promptwatch.watches.models import TRIGGER_NAME_RE, Watch, WatchAction, WatchStatus
from promptwatch.watches.store import WatchStore

log = get_logger(__name__)


class WatchService:
    def __init__(self, store: WatchStore, catalog: TriggerCatalog, settings: Settings) -> None:
        self._store = store
        self._catalog = catalog
        self._settings = settings

    async def register(
        self,
        trigger: str,
        params: list[str],
        prompt: str,
        cwd: str | None = None,
        ttl: str | float | None = None,
        interval: str | float | None = None,
    ) -> Watch:
        """Validate and persist a new watch.

        Interval defaults to the trigger's ``default_interval`` metadata, then
        to ``triggers.default_interval``; ttl defaults to ``triggers.default_ttl``.

        Raises:
            ValidationError:      Malformed name, params, prompt or duration.
            TriggerNotFoundError: No executable trigger with that name.
        """
        if not TRIGGER_NAME_RE.match(trigger or ""):
            raise ValidationError(f"Invalid trigger name {trigger!r}", field="trigger")
        if not isinstance(params, list) or not all(isinstance(p, str) for p in params):
            raise ValidationError("params must be a list of strings", field="params")

        meta = self._catalog.get(trigger)

        if interval is None:
            interval = meta.default_interval or self._settings.triggers.default_interval
        if ttl is None:
            ttl = self._settings.triggers.default_ttl

        watch = Watch(
            trigger=trigger,
            params=list(params),
            action=WatchAction(prompt_template=prompt, working_directory=cwd),
            interval_seconds=parse_duration(interval, field="interval"),
            ttl_seconds=parse_duration(ttl, field="ttl"),
        )
        await self._store.create(watch)
        log.info(
            "watch_registered",
            watch_id=watch.watch_id,
            trigger=trigger,
            params=params,
            interval_seconds=watch.interval_seconds,
            ttl_seconds=watch.ttl_seconds,
        )
        return watch

    async def list(self, status: str | WatchStatus | None = None) -> list[Watch]:
        """List watches; ``None`` or ``"all"`` means every status."""
        if status is None or status == "all":
            return await self._store.list_all()
        try:
            status = WatchStatus(status)
        except ValueError as exc:
            raise ValidationError(f"Unknown status {status!r}", field="status") from exc
        return await self._store.list_all(status)

    async def get(self, watch_id: str) -> Watch:
        watch = await self._store.get(watch_id)
        if watch is None:
            raise WatchNotFoundError(watch_id)
        return watch

    async def cancel(self, watch_id: str) -> Watch:
        """Cancel an active watch.  Wins any race with an in-flight fire.

        Raises:
            WatchNotFoundError:     Unknown id.
            InvalidTransitionError: The watch is no longer active.
        """
        won = await self._store.try_transition(watch_id, WatchStatus.ACTIVE, WatchStatus.CANCELLED)
        watch = await self.get(watch_id)
        if not won:
            raise InvalidTransitionError(watch_id, watch.status.value, WatchStatus.CANCELLED.value)
        log.info("watch_cancelled", watch_id=watch_id)
        return watch

    async def delete(self, watch_id: str) -> None:
        """Delete a terminal watch.  Active watches must be cancelled first."""
        watch = await self.get(watch_id)
        if not watch.status.is_terminal:
            raise InvalidTransitionError(watch_id, watch.status.value, "deleted")
        await self._store.delete(watch_id)
        log.info("watch_deleted", watch_id=watch_id)

    def list_triggers(self) -> list[TriggerMetadata]:
        return self._catalog.list_triggers()

