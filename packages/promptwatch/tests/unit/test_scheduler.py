"""Unit tests — scheduler.py (WatchScheduler).

Most triggers are in-process fakes so that timing is controlled by the test;
TestRealTriggers runs /bin/sh scripts.  The action is a real subprocess that
echoes the rendered prompt.
"""

from __future__ import annotations

import asyncio
import sys
import time
from pathlib import Path
from typing import Awaitable, Callable

import pytest

from promptwatch.actions.executor import EXIT_LAUNCH_FAILED, ActionExecutor
from promptwatch.exceptions import (
    TriggerConfigurationError,
    TriggerExecutionError,
    TriggerTimeoutError,
)
from promptwatch.results.sink import ResultSink
from promptwatch.scheduler import TriggerRunner, WatchScheduler
from promptwatch.triggers.executor import TriggerExecutor
from promptwatch.watches.models import (
    ActionResult,
    TriggerOutcome,
    Watch,
    WatchAction,
    WatchStatus,
)
from promptwatch.watches.store import WatchStore

ECHO_PROMPT = [sys.executable, "-c", "import sys; print(sys.argv[1])", "{prompt}"]

Behaviour = Callable[[str, list[str]], Awaitable[TriggerOutcome]]
ScriptFactory = Callable[..., Path]


def make_watch(
    prompt: str = "Trigger said {{x}}",
    params: list[str] | None = None,
    cwd: str | None = None,
    interval: float = 0.01,
    ttl: float = 60.0,
    trigger: str = "always-fire",
) -> Watch:
    return Watch(
        trigger=trigger,
        params=params if params is not None else [],
        action=WatchAction(prompt_template=prompt, working_directory=cwd),
        interval_seconds=interval,
        ttl_seconds=ttl,
    )


class FakeTriggers:
    """TriggerRunner double that records every call and delegates to *behaviour*."""

    def __init__(self, behaviour: Behaviour) -> None:
        self._behaviour = behaviour
        self.calls: list[tuple[str, list[str]]] = []
        self.started = asyncio.Event()

    async def run(self, name: str, params: list[str]) -> TriggerOutcome:
        self.calls.append((name, list(params)))
        self.started.set()
        return await self._behaviour(name, params)


def fires_with(**output: object) -> Behaviour:
    async def _run(name: str, params: list[str]) -> TriggerOutcome:
        return TriggerOutcome(fired=True, output_vars=dict(output))

    return _run


async def never_fires(name: str, params: list[str]) -> TriggerOutcome:
    return TriggerOutcome(fired=False, exit_code=1)


def raises(exc: Exception) -> Behaviour:
    async def _run(name: str, params: list[str]) -> TriggerOutcome:
        raise exc

    return _run


def _scheduler(
    store: WatchStore,
    sink: ResultSink,
    triggers: TriggerRunner,
    **kwargs: object,
) -> WatchScheduler:
    return WatchScheduler(
        store,
        triggers,
        ActionExecutor(ECHO_PROMPT, timeout=10.0),
        sink,
        tick_seconds=0.01,
        **kwargs,  # type: ignore[arg-type]
    )


async def _wait_for(predicate: Callable[[], Awaitable[bool]], timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if await predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not reached in time")


async def _status(store: WatchStore, watch_id: str) -> WatchStatus:
    watch = await store.get(watch_id)
    assert watch is not None
    return watch.status


# ---------------------------------------------------------------------------
# Firing
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestFiring:
    async def test_fires_once_with_rendered_prompt(
        self, store: WatchStore, sink: ResultSink, tmp_path: Path
    ) -> None:
        triggers = FakeTriggers(fires_with(x=1))
        scheduler = _scheduler(store, sink, triggers)
        watch_id = await store.create(make_watch(prompt="Trigger said {{x}}", cwd=str(tmp_path)))

        tasks = await scheduler.tick()
        assert len(tasks) == 1
        await asyncio.gather(*tasks)

        watch = await store.get(watch_id)
        assert watch is not None
        assert watch.status is WatchStatus.FIRED
        assert watch.fired_at is not None
        assert watch.finished_at is not None

        result = sink.load(sink.path_for(watch_id))
        assert result.trigger_output == {"x": 1}
        assert result.action.rendered_prompt == "Trigger said 1"
        assert result.action.stdout.strip() == "Trigger said 1"
        assert result.action.exit_code == 0

        # Terminal watches are never polled again.
        assert await scheduler.tick(now=time.time() + 10) == []
        assert len(triggers.calls) == 1

    async def test_not_fired_stays_active(self, store: WatchStore, sink: ResultSink) -> None:
        triggers = FakeTriggers(never_fires)
        scheduler = _scheduler(store, sink, triggers)
        watch_id = await store.create(make_watch(params=["a", "b"]))

        await asyncio.gather(*await scheduler.tick())

        watch = await store.get(watch_id)
        assert watch is not None
        assert watch.status is WatchStatus.ACTIVE
        assert watch.last_polled_at is not None
        assert triggers.calls == [("always-fire", ["a", "b"])]
        assert sink.pending() == []

    async def test_interval_respected(self, store: WatchStore, sink: ResultSink) -> None:
        triggers = FakeTriggers(never_fires)
        scheduler = _scheduler(store, sink, triggers)
        await store.create(make_watch(interval=30.0, ttl=3600.0))

        now = time.time()
        await asyncio.gather(*await scheduler.tick(now=now))
        assert await scheduler.tick(now=now + 5) == []
        assert len(await scheduler.tick(now=now + 31)) == 1

    async def test_concurrent_fire_writes_one_result(
        self, store: WatchStore, sink: ResultSink
    ) -> None:
        scheduler = _scheduler(store, sink, FakeTriggers(never_fires))
        watch = make_watch()
        await store.create(watch)
        outcome = TriggerOutcome(fired=True, output_vars={"x": 1})

        results = await asyncio.gather(
            scheduler.fire(watch, outcome), scheduler.fire(watch, outcome)
        )

        assert sum(1 for r in results if r is not None) == 1
        assert len(sink.pending()) == 1
        assert await _status(store, watch.watch_id) is WatchStatus.FIRED

    async def test_fire_after_cancel_is_discarded(
        self, store: WatchStore, sink: ResultSink
    ) -> None:
        scheduler = _scheduler(store, sink, FakeTriggers(never_fires))
        watch = make_watch()
        await store.create(watch)
        await store.try_transition(watch.watch_id, WatchStatus.ACTIVE, WatchStatus.CANCELLED)

        result = await scheduler.fire(watch, TriggerOutcome(fired=True))

        assert result is None
        assert sink.pending() == []
        assert await _status(store, watch.watch_id) is WatchStatus.CANCELLED

    async def test_action_failure_still_counts_as_fired(
        self, store: WatchStore, sink: ResultSink, tmp_path: Path
    ) -> None:
        triggers = FakeTriggers(fires_with())
        scheduler = _scheduler(store, sink, triggers)
        watch_id = await store.create(make_watch(cwd=str(tmp_path / "missing")))

        await asyncio.gather(*await scheduler.tick())

        assert await _status(store, watch_id) is WatchStatus.FIRED
        result = sink.load(sink.path_for(watch_id))
        assert result.action.exit_code == 127
        assert result.action.error

    async def test_action_crash_still_writes_result(
        self, store: WatchStore, sink: ResultSink
    ) -> None:
        class CrashingActions(ActionExecutor):
            async def execute(self, watch: Watch, output_vars: dict) -> ActionResult:  # type: ignore[override]
                raise RuntimeError("renderer exploded")

        scheduler = WatchScheduler(
            store, FakeTriggers(fires_with(x=1)), CrashingActions(ECHO_PROMPT), sink
        )
        watch_id = await store.create(make_watch())

        await asyncio.gather(*await scheduler.tick())

        assert await _status(store, watch_id) is WatchStatus.FIRED
        result = sink.load(sink.path_for(watch_id))
        assert result.action.exit_code == EXIT_LAUNCH_FAILED
        assert "renderer exploded" in (result.action.error or "")
        assert result.trigger_output == {"x": 1}


# ---------------------------------------------------------------------------
# Real trigger scripts
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestRealTriggers:
    @pytest.mark.parametrize(
        "payload",
        [r'{"x":"a\u0000b"}', r'{"x":"\ud800"}'],
        ids=["null-byte", "lone-surrogate"],
    )
    async def test_hostile_output_still_yields_one_result(
        self,
        store: WatchStore,
        sink: ResultSink,
        make_script: ScriptFactory,
        triggers_dir: Path,
        tmp_path: Path,
        payload: str,
    ) -> None:
        make_script("hostile", f"printf '%s\\n' '{payload}'")
        scheduler = WatchScheduler(
            store,
            TriggerExecutor(triggers_dir, timeout=5.0),
            ActionExecutor(ECHO_PROMPT, timeout=10.0, logs_dir=tmp_path / "logs"),
            sink,
        )
        watch_id = await store.create(
            make_watch(prompt="got {{x}}", cwd=str(tmp_path), trigger="hostile")
        )

        await asyncio.gather(*await scheduler.tick())

        assert await _status(store, watch_id) is WatchStatus.FIRED
        assert sink.exists(watch_id)
        result = sink.load(sink.path_for(watch_id))
        assert result.action.exit_code == EXIT_LAUNCH_FAILED
        assert result.action.error
        assert (tmp_path / "logs" / f"{watch_id}.log").exists()

    async def test_cancel_while_trigger_sleeps_past_timeout(
        self,
        store: WatchStore,
        sink: ResultSink,
        make_script: ScriptFactory,
        triggers_dir: Path,
    ) -> None:
        make_script("sleepy", """sleep 5; echo '{"x": 1}'""")
        scheduler = _scheduler(store, sink, TriggerExecutor(triggers_dir, timeout=0.5))
        watch_id = await store.create(make_watch(trigger="sleepy"))

        tasks = await scheduler.tick()
        await asyncio.sleep(0.1)
        assert await store.try_transition(watch_id, WatchStatus.ACTIVE, WatchStatus.CANCELLED)
        await asyncio.wait_for(asyncio.gather(*tasks), timeout=10.0)

        loaded = await store.get(watch_id)
        assert loaded is not None
        assert loaded.status is WatchStatus.CANCELLED
        assert loaded.error_count == 0
        assert loaded.last_error is None
        assert not sink.exists(watch_id)
        assert await scheduler.tick(now=time.time() + 10) == []

    async def test_cancel_while_trigger_runs_then_fires(
        self,
        store: WatchStore,
        sink: ResultSink,
        make_script: ScriptFactory,
        triggers_dir: Path,
    ) -> None:
        make_script("late-fire", """sleep 0.5; echo '{"x": 1}'""")
        scheduler = _scheduler(store, sink, TriggerExecutor(triggers_dir, timeout=5.0))
        watch_id = await store.create(make_watch(trigger="late-fire"))

        tasks = await scheduler.tick()
        await asyncio.sleep(0.1)
        assert await store.try_transition(watch_id, WatchStatus.ACTIVE, WatchStatus.CANCELLED)
        await asyncio.wait_for(asyncio.gather(*tasks), timeout=10.0)

        assert await _status(store, watch_id) is WatchStatus.CANCELLED
        assert not sink.exists(watch_id)


# ---------------------------------------------------------------------------
# Expiry and cancellation
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestExpiryAndCancel:
    async def test_expired_watch_never_fires(self, store: WatchStore, sink: ResultSink) -> None:
        triggers = FakeTriggers(fires_with(x=1))
        scheduler = _scheduler(store, sink, triggers)
        watch_id = await store.create(make_watch(ttl=1.0))

        tasks = await scheduler.tick(now=time.time() + 2.0)

        assert tasks == []
        assert triggers.calls == []
        watch = await store.get(watch_id)
        assert watch is not None
        assert watch.status is WatchStatus.EXPIRED
        assert watch.finished_at is not None
        assert sink.pending() == []

    async def test_cancel_during_poll_wins(self, store: WatchStore, sink: ResultSink) -> None:
        release = asyncio.Event()

        async def slow_fire(name: str, params: list[str]) -> TriggerOutcome:
            await release.wait()
            return TriggerOutcome(fired=True, output_vars={"x": 1})

        triggers = FakeTriggers(slow_fire)
        scheduler = _scheduler(store, sink, triggers)
        watch_id = await store.create(make_watch())

        tasks = await scheduler.tick()
        await asyncio.wait_for(triggers.started.wait(), timeout=5.0)
        assert await store.try_transition(watch_id, WatchStatus.ACTIVE, WatchStatus.CANCELLED)
        release.set()
        await asyncio.gather(*tasks)

        assert await _status(store, watch_id) is WatchStatus.CANCELLED
        assert sink.pending() == []

    async def test_cancelled_watch_is_skipped_by_pending_poll(
        self, store: WatchStore, sink: ResultSink
    ) -> None:
        triggers = FakeTriggers(fires_with())
        scheduler = _scheduler(store, sink, triggers)
        watch_id = await store.create(make_watch())
        due = await store.list_due()
        await store.try_transition(watch_id, WatchStatus.ACTIVE, WatchStatus.CANCELLED)

        # A poll dispatched from a stale snapshot re-reads the store first.
        await scheduler._poll(due[0])

        assert triggers.calls == []
        assert sink.pending() == []


# ---------------------------------------------------------------------------
# Trigger failures
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestTriggerFailures:
    async def test_timeout_is_not_fired_and_not_an_error(
        self, store: WatchStore, sink: ResultSink
    ) -> None:
        scheduler = _scheduler(store, sink, FakeTriggers(raises(TriggerTimeoutError("slow", 1.0))))
        watch_id = await store.create(make_watch())

        await asyncio.gather(*await scheduler.tick())

        watch = await store.get(watch_id)
        assert watch is not None
        assert watch.status is WatchStatus.ACTIVE
        assert watch.error_count == 0

    async def test_transient_errors_accumulate_then_reset(
        self, store: WatchStore, sink: ResultSink
    ) -> None:
        failing = True

        async def flaky(name: str, params: list[str]) -> TriggerOutcome:
            if failing:
                raise TriggerExecutionError(name, "exec format error")
            return TriggerOutcome(fired=False, exit_code=1)

        scheduler = _scheduler(store, sink, FakeTriggers(flaky), error_alert_threshold=2)
        watch_id = await store.create(make_watch(interval=1.0, ttl=3600.0))

        now = time.time()
        for i in range(3):
            await asyncio.gather(*await scheduler.tick(now=now + i * 2))

        watch = await store.get(watch_id)
        assert watch is not None
        assert watch.status is WatchStatus.ACTIVE
        assert watch.error_count == 3
        assert "exec format error" in (watch.last_error or "")

        failing = False
        await asyncio.gather(*await scheduler.tick(now=now + 10))
        watch = await store.get(watch_id)
        assert watch is not None
        assert watch.error_count == 0

    async def test_configuration_error_moves_to_error(
        self, store: WatchStore, sink: ResultSink
    ) -> None:
        scheduler = _scheduler(
            store, sink, FakeTriggers(raises(TriggerConfigurationError("bad", "not a bare name")))
        )
        watch_id = await store.create(make_watch())

        await asyncio.gather(*await scheduler.tick())

        watch = await store.get(watch_id)
        assert watch is not None
        assert watch.status is WatchStatus.ERROR
        assert "not a bare name" in (watch.last_error or "")
        assert await scheduler.tick(now=time.time() + 10) == []

    async def test_unexpected_exception_is_contained(
        self, store: WatchStore, sink: ResultSink
    ) -> None:
        scheduler = _scheduler(store, sink, FakeTriggers(raises(RuntimeError("boom"))))
        watch_id = await store.create(make_watch())

        await asyncio.gather(*await scheduler.tick())

        assert await _status(store, watch_id) is WatchStatus.ACTIVE


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@pytest.mark.unit
class TestLifecycle:
    async def test_in_flight_watch_not_dispatched_twice(
        self, store: WatchStore, sink: ResultSink
    ) -> None:
        release = asyncio.Event()

        async def blocked(name: str, params: list[str]) -> TriggerOutcome:
            await release.wait()
            return TriggerOutcome(fired=False)

        triggers = FakeTriggers(blocked)
        scheduler = _scheduler(store, sink, triggers)
        watch_id = await store.create(make_watch(interval=1.0, ttl=3600.0))

        now = time.time()
        tasks = await scheduler.tick(now=now)
        assert scheduler.in_flight == frozenset({watch_id})
        assert await scheduler.tick(now=now + 100) == []

        release.set()
        await asyncio.gather(*tasks)
        await asyncio.sleep(0)
        assert scheduler.in_flight == frozenset()
        assert len(triggers.calls) == 1

    async def test_loop_fires_watch(self, store: WatchStore, sink: ResultSink) -> None:
        scheduler = _scheduler(store, sink, FakeTriggers(fires_with(x=1)))
        watch_id = await store.create(make_watch())

        await scheduler.start()
        await scheduler.start()
        assert scheduler.running
        try:
            await _wait_for(lambda: _is(store, watch_id, WatchStatus.FIRED))
            await _wait_for(_async(lambda: sink.exists(watch_id)))
        finally:
            await scheduler.stop()
        assert not scheduler.running

    async def test_stop_drains_in_flight_polls(
        self, store: WatchStore, sink: ResultSink
    ) -> None:
        async def slow(name: str, params: list[str]) -> TriggerOutcome:
            await asyncio.sleep(0.2)
            return TriggerOutcome(fired=True, output_vars={"x": 1})

        triggers = FakeTriggers(slow)
        scheduler = _scheduler(store, sink, triggers, shutdown_timeout=5.0)
        watch_id = await store.create(make_watch())

        await scheduler.start()
        await asyncio.wait_for(triggers.started.wait(), timeout=5.0)
        await scheduler.stop()

        assert scheduler.in_flight == frozenset()
        assert await _status(store, watch_id) is WatchStatus.FIRED
        assert sink.exists(watch_id)

    async def test_stop_cancels_stragglers(self, store: WatchStore, sink: ResultSink) -> None:
        async def hang(name: str, params: list[str]) -> TriggerOutcome:
            await asyncio.sleep(3600)
            return TriggerOutcome(fired=True)

        triggers = FakeTriggers(hang)
        scheduler = _scheduler(store, sink, triggers, shutdown_timeout=0.05)
        watch_id = await store.create(make_watch())

        await scheduler.start()
        await asyncio.wait_for(triggers.started.wait(), timeout=5.0)
        await asyncio.wait_for(scheduler.stop(), timeout=5.0)

        assert scheduler.in_flight == frozenset()
        assert await _status(store, watch_id) is WatchStatus.ACTIVE

    async def test_reconcile_reports_fired_without_result(
        self, store: WatchStore, sink: ResultSink
    ) -> None:
        scheduler = _scheduler(store, sink, FakeTriggers(fires_with()))
        orphan = await store.create(make_watch())
        await store.try_transition(orphan, WatchStatus.ACTIVE, WatchStatus.FIRED)

        assert await scheduler.reconcile() == [orphan]
        # Never re-fired.
        assert await scheduler.tick() == []

    async def test_sweep_retention_purges_old_terminal_watches(
        self, store: WatchStore, sink: ResultSink
    ) -> None:
        scheduler = _scheduler(store, sink, FakeTriggers(never_fires), retention_seconds=0.0)
        done: Watch = make_watch()
        await store.create(done)
        await store.try_transition(done.watch_id, WatchStatus.ACTIVE, WatchStatus.CANCELLED)
        live = await store.create(make_watch())
        await asyncio.sleep(0.01)

        assert await scheduler.sweep_retention() == 1
        assert await store.get(done.watch_id) is None
        assert await store.get(live) is not None


async def _is(store: WatchStore, watch_id: str, status: WatchStatus) -> bool:
    watch = await store.get(watch_id)
    return watch is not None and watch.status is status


def _async(fn: Callable[[], bool]) -> Callable[[], Awaitable[bool]]:
    async def _wrapped() -> bool:
        return fn()

    return _wrapped
