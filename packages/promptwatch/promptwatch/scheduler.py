"""WatchScheduler — the poll loop that drives every watch.

Each tick:

1. **Expire** active watches whose ``expires_at`` has passed
   (``active → expired``, no Result).
2. **Select** active watches that are due (never polled, or polled at least
   ``interval`` ago).
3. **Claim** each due watch with ``record_poll()`` *before* dispatch, so the
   next tick will not select it again until its interval has elapsed.
4. **Dispatch** one poll task per watch.  The tick never awaits these tasks.

A poll task runs the trigger and, on a fire, claims ``active → fired`` in the
store *before* running the action.  Only the caller that wins that
compare-and-swap runs the action and writes the Result, so a watch fires at
most once even if two polls race, and a cancel that lands mid-poll always wins.

Lifecycle::

    scheduler = WatchScheduler(store, trigger_executor, action_executor, sink)
    await scheduler.start()
    ...
    await scheduler.stop()   # drains in-flight polls, bounded by shutdown_timeout
"""

from __future__ import annotations

import asyncio
import time
from typing import Protocol

from promptwatch.actions.executor import EXIT_LAUNCH_FAILED, ActionExecutor
from promptwatch.exceptions import (
    ResultSinkError,
    StorageError,
    TriggerError,
    TriggerTimeoutError,
)
from promptwatch.logging import bind_watch_context, clear_watch_context, get_logger
from promptwatch.results.sink import ResultSink
from promptwatch.watches.models import (
    ActionResult,
    TriggerOutcome,
    Watch,
    WatchResult,
    WatchStatus,
)
from promptwatch.watches.store import WatchStore

log = get_logger(__name__)


class TriggerRunner(Protocol):
    async def run(self, name: str, params: list[str]) -> TriggerOutcome: ...


class WatchScheduler:
    """Owns the tick loop, the in-flight poll tasks and the retention sweep."""

    def __init__(
        self,
        store: WatchStore,
        trigger_executor: TriggerRunner,
        action_executor: ActionExecutor,
        result_sink: ResultSink,
        tick_seconds: float = 2.0,
        shutdown_timeout: float = 30.0,
        error_alert_threshold: int | None = None,
        retention_seconds: float | None = 168 * 3600.0,
        retention_sweep_seconds: float = 3600.0,
    ) -> None:
        self._store = store
        self._triggers = trigger_executor
        self._actions = action_executor
        self._sink = result_sink
        self._tick_seconds = tick_seconds
        self._shutdown_timeout = shutdown_timeout
        self._error_alert_threshold = error_alert_threshold
        self._retention_seconds = retention_seconds
        self._retention_sweep_seconds = retention_sweep_seconds

        # watch_id → poll task currently in flight
        self._polls: dict[str, asyncio.Task[None]] = {}

        self._loop_task: asyncio.Task[None] | None = None
        self._retention_task: asyncio.Task[None] | None = None
        self._running = False

    # ---------------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------------

    async def start(self) -> None:
        """Reconcile persisted state and start the tick loop.  Idempotent."""
        if self._running:
            return
        self._running = True

        await self.reconcile()
        self._loop_task = asyncio.create_task(self._run_loop(), name="watch_scheduler")
        if self._retention_seconds is not None:
            self._retention_task = asyncio.create_task(
                self._retention_loop(), name="watch_retention"
            )
        log.info(
            "scheduler_started",
            tick_seconds=self._tick_seconds,
            error_alert_threshold=self._error_alert_threshold,
        )

    async def stop(self) -> None:
        """Stop scheduling, drain in-flight polls, then cancel stragglers."""
        if not self._running:
            return
        self._running = False

        for task in (self._loop_task, self._retention_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._loop_task = None
        self._retention_task = None

        pending = list(self._polls.values())
        if pending:
            log.info("scheduler_draining", in_flight=len(pending), timeout=self._shutdown_timeout)
            _, not_done = await asyncio.wait(pending, timeout=self._shutdown_timeout)
            for task in not_done:
                task.cancel()
            if not_done:
                await asyncio.gather(*not_done, return_exceptions=True)
                log.warning("scheduler_polls_cancelled", count=len(not_done))

        log.info("scheduler_stopped")

    @property
    def running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> frozenset[str]:
        """Ids of watches with a poll task currently running."""
        return frozenset(self._polls)

    # ---------------------------------------------------------------------------
    # Tick
    # ---------------------------------------------------------------------------

    async def tick(self, now: float | None = None) -> list[asyncio.Task[None]]:
        """Run one expire/select/claim/dispatch pass.

        Returns the poll tasks dispatched by this tick.  Raises StorageError
        if the store fails; the loop logs it and retries on the next tick.
        """
        now = now if now is not None else time.time()

        for watch in await self._store.list_expired(now):
            if await self._store.try_transition(watch.watch_id, WatchStatus.ACTIVE, WatchStatus.EXPIRED):
                log.info("watch_expired", watch_id=watch.watch_id, trigger=watch.trigger)

        dispatched: list[asyncio.Task[None]] = []
        for watch in await self._store.list_due(now):
            if watch.watch_id in self._polls:
                continue
            await self._store.record_poll(watch.watch_id, now)
            dispatched.append(self._dispatch(watch))
        return dispatched

    def _dispatch(self, watch: Watch) -> asyncio.Task[None]:
        task = asyncio.create_task(self._poll(watch), name=f"poll:{watch.watch_id}")
        self._polls[watch.watch_id] = task
        task.add_done_callback(lambda _t, wid=watch.watch_id: self._polls.pop(wid, None))
        return task

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except StorageError as exc:
                log.error("scheduler_tick_storage_error", error=exc.message)
            except Exception as exc:
                log.error("scheduler_tick_failed", error=str(exc), exc_info=True)
            await asyncio.sleep(self._tick_seconds)

    # ---------------------------------------------------------------------------
    # Poll pipeline
    # ---------------------------------------------------------------------------

    async def _poll(self, watch: Watch) -> None:
        bind_watch_context(watch_id=watch.watch_id, trigger=watch.trigger)
        try:
            current = await self._store.get(watch.watch_id)
            if current is None or current.status is not WatchStatus.ACTIVE:
                log.debug("poll_skipped", status=current.status.value if current else None)
                return

            try:
                outcome = await self._triggers.run(current.trigger, current.params)
            except TriggerTimeoutError as exc:
                log.warning("trigger_timeout", timeout=exc.timeout)
                return
            except TriggerError as exc:
                await self._on_trigger_error(current, exc)
                return

            if current.error_count:
                await self._store.reset_trigger_errors(current.watch_id)

            if not outcome.fired:
                log.debug("trigger_not_fired", exit_code=outcome.exit_code)
                return

            await self.fire(current, outcome)
        except asyncio.CancelledError:
            raise
        except StorageError as exc:
            log.error("poll_storage_error", error=exc.message)
        except Exception as exc:
            log.error("poll_failed", error=str(exc), exc_info=True)
        finally:
            clear_watch_context()

    async def _on_trigger_error(self, watch: Watch, exc: TriggerError) -> None:
        if not exc.transient:
            moved = await self._store.try_transition(
                watch.watch_id, WatchStatus.ACTIVE, WatchStatus.ERROR, {"last_error": exc.message}
            )
            if moved:
                log.error("watch_errored", error=exc.message)
            return

        count = await self._store.record_trigger_error(watch.watch_id, exc.message)
        if count == 0:
            log.debug("trigger_error_ignored", error=exc.message, reason="watch no longer active")
            return
        threshold = self._error_alert_threshold
        if threshold is not None and count == threshold:
            log.error("trigger_error_threshold_reached", error=exc.message, error_count=count)
        else:
            log.warning("trigger_error", error=exc.message, error_count=count)

    async def fire(self, watch: Watch, outcome: TriggerOutcome) -> WatchResult | None:
        """Claim ``active → fired`` and, only if that wins, run the action and write the Result.

        Returns the written Result, or None when another caller (a racing poll
        or a cancel) already moved the watch out of ``active``.
        """
        fired_at = time.time()
        won = await self._store.try_transition(
            watch.watch_id, WatchStatus.ACTIVE, WatchStatus.FIRED, {"fired_at": fired_at}
        )
        if not won:
            log.info("fire_discarded", watch_id=watch.watch_id, reason="watch no longer active")
            return None

        log.info("watch_fired", watch_id=watch.watch_id, output_keys=sorted(outcome.output_vars))
        try:
            action_result = await self._actions.execute(watch, outcome.output_vars)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            # The watch is already fired; it must still get its Result.
            log.error("action_crashed", watch_id=watch.watch_id, error=str(exc), exc_info=True)
            action_result = ActionResult(
                rendered_prompt="",
                working_directory=watch.action.working_directory or "",
                exit_code=EXIT_LAUNCH_FAILED,
                stdout="",
                stderr=str(exc),
                error=f"action could not be run: {exc}",
            )
        result = WatchResult(
            watch_id=watch.watch_id,
            trigger=watch.trigger,
            params=list(watch.params),
            trigger_output=dict(outcome.output_vars),
            action=action_result,
            fired_at=fired_at,
        )
        try:
            await self._sink.write(result)
        except ResultSinkError as exc:
            log.error("result_write_failed", watch_id=watch.watch_id, error=exc.message)
            return None
        return result

    # ---------------------------------------------------------------------------
    # Housekeeping
    # ---------------------------------------------------------------------------

    async def reconcile(self) -> list[str]:
        """Log fired watches that never got a Result (crash between claim and write).

        Such watches are never re-fired.  Returns their ids.
        """
        try:
            fired = await self._store.list_all(WatchStatus.FIRED)
        except StorageError as exc:
            log.error("reconcile_failed", error=exc.message)
            return []

        orphans = [w.watch_id for w in fired if not self._sink.exists(w.watch_id)]
        for watch_id in orphans:
            log.warning("fired_watch_without_result", watch_id=watch_id)
        return orphans

    async def sweep_retention(self) -> int:
        if self._retention_seconds is None:
            return 0
        purged = await self._store.purge_terminal(self._retention_seconds)
        if purged:
            log.info("watches_purged", count=purged, older_than_seconds=self._retention_seconds)
        return purged

    async def _retention_loop(self) -> None:
        while True:
            try:
                await self.sweep_retention()
                await asyncio.sleep(self._retention_sweep_seconds)
            except asyncio.CancelledError:
                raise
            except StorageError as exc:
                log.error("retention_sweep_failed", error=exc.message)
                await asyncio.sleep(self._retention_sweep_seconds)
