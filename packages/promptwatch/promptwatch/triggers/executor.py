"""Trigger execution — external executables as condition oracles.

Protocol
--------
A trigger is any executable in the trigger directory.  It is invoked with the
watch's params as positional arguments and no shell:

    exit 0      → condition met; stdout is a JSON object of output variables
    exit != 0   → not yet (the common case, never an error)
    stderr      → diagnostics only, forwarded to the daemon log

A poll is a single invocation.  There are no retries inside a poll; the next
scheduled poll is the retry.
"""

from __future__ import annotations

import asyncio
import json
import os
import signal
import time
from pathlib import Path
from typing import Protocol

from promptwatch.exceptions import (
    TriggerConfigurationError,
    TriggerExecutionError,
    TriggerNotFoundError,
    TriggerTimeoutError,
)
from promptwatch.logging import get_logger
from promptwatch.watches.models import TRIGGER_NAME_RE, OutputVars, TriggerOutcome

log = get_logger(__name__)


def kill_process_group(proc: asyncio.subprocess.Process) -> None:
    """SIGKILL *proc* and everything it spawned (it leads its own session)."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


class Trigger(Protocol):
    """Anything that can answer "is the condition true yet?" for a param list."""

    name: str

    async def run(self, params: list[str]) -> TriggerOutcome: ...


def parse_output_vars(trigger: str, stdout: str) -> OutputVars:
    """Parse a firing trigger's stdout into output variables.

    Malformed output never fails a fire: a warning is logged and an empty map
    is returned.  Nested values are flattened to their JSON text.
    """
    text = stdout.strip()
    if not text:
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        log.warning("trigger_output_malformed", trigger=trigger, error=str(exc), stdout=text[:200])
        return {}
    if not isinstance(data, dict):
        log.warning(
            "trigger_output_malformed",
            trigger=trigger,
            error=f"expected a JSON object, got {type(data).__name__}",
        )
        return {}

    out: OutputVars = {}
    for key, value in data.items():
        if value is None or isinstance(value, (str, int, float, bool)):
            out[str(key)] = value
        else:
            out[str(key)] = json.dumps(value)
    return out


class SubprocessTrigger:
    """Concrete Trigger adapter that runs an executable file.

    Usage::

        trigger = SubprocessTrigger("gh-pr-merged", Path("~/.promptwatch/triggers/gh-pr-merged"))
        outcome = await trigger.run(["owner/repo", "123"])
    """

    def __init__(self, name: str, path: Path, timeout: float = 30.0) -> None:
        self.name = name
        self.path = path
        self.timeout = timeout

    async def run(self, params: list[str]) -> TriggerOutcome:
        """Invoke the executable once.

        Raises:
            TriggerNotFoundError:  The file is missing or not executable.
            TriggerExecutionError: The process could not be started.
            TriggerTimeoutError:   The process was killed after ``timeout``.
        """
        if not self.path.is_file() or not os.access(self.path, os.X_OK):
            raise TriggerNotFoundError(self.name, path=str(self.path))

        start = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                str(self.path),
                *params,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except (OSError, ValueError) as exc:
            raise TriggerExecutionError(self.name, str(exc)) from exc

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            kill_process_group(proc)
            await proc.communicate()
            raise TriggerTimeoutError(self.name, self.timeout)
        except asyncio.CancelledError:
            # Never leave an orphaned trigger process behind on shutdown.
            if proc.returncode is None:
                kill_process_group(proc)
                await proc.wait()
            raise

        duration_ms = (time.monotonic() - start) * 1000
        stdout = stdout_bytes.decode(errors="replace") if stdout_bytes else ""
        stderr = stderr_bytes.decode(errors="replace") if stderr_bytes else ""
        for line in stderr.splitlines():
            if line.strip():
                log.info("trigger_stderr", trigger=self.name, line=line)

        exit_code = proc.returncode if proc.returncode is not None else -1
        fired = exit_code == 0
        return TriggerOutcome(
            fired=fired,
            output_vars=parse_output_vars(self.name, stdout) if fired else {},
            stderr=stderr,
            exit_code=exit_code,
            duration_ms=round(duration_ms, 2),
        )


class TriggerExecutor:
    """Resolves trigger names inside a directory and runs them.

    Resolution is repeated on every poll so that a trigger file added, fixed
    or made executable while a watch is alive is picked up at the next poll.
    """

    def __init__(self, triggers_dir: Path, timeout: float = 30.0) -> None:
        self._dir = triggers_dir.expanduser()
        self._timeout = timeout

    @property
    def triggers_dir(self) -> Path:
        return self._dir

    def resolve(self, name: str) -> Path:
        """Return the executable path for *name*.

        The exact file wins; otherwise a unique file whose stem equals *name*
        (``gh-pr-merged`` → ``gh-pr-merged.sh``).

        Raises:
            TriggerConfigurationError: *name* is not a bare file name.
            TriggerNotFoundError:      No (unique) match exists.
        """
        if not TRIGGER_NAME_RE.match(name or ""):
            raise TriggerConfigurationError(name, "trigger names must be bare file names")

        exact = self._dir / name
        if exact.is_file():
            return exact

        if self._dir.is_dir():
            candidates = [
                p
                for p in self._dir.iterdir()
                if p.is_file() and p.stem == name and p.suffix not in (".yaml", ".yml")
            ]
            if len(candidates) == 1:
                return candidates[0]
            if len(candidates) > 1:
                log.warning(
                    "trigger_name_ambiguous",
                    trigger=name,
                    candidates=sorted(p.name for p in candidates),
                )
        raise TriggerNotFoundError(name, path=str(exact))

    def get(self, name: str) -> SubprocessTrigger:
        return SubprocessTrigger(name, self.resolve(name), timeout=self._timeout)

    async def run(self, name: str, params: list[str]) -> TriggerOutcome:
        """Resolve and invoke *name* with *params*."""
        trigger = self.get(name)
        outcome = await trigger.run(params)
        log.debug(
            "trigger_polled",
            trigger=name,
            fired=outcome.fired,
            exit_code=outcome.exit_code,
            duration_ms=outcome.duration_ms,
        )
        return outcome
