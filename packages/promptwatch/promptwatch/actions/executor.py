"""Action execution — run the bound prompt once a watch has fired.

The action is an external process built from an argv template (by default
``claude -p {prompt} --permission-mode=dontAsk``).  ``{prompt}`` and
``{watch_id}`` are substituted inside each argument, so the rendered prompt is
never re-parsed by a shell.  With ``login_shell`` enabled the argv is quoted
with ``shlex.join`` and run through ``$SHELL -l -c`` so that credentials held
in the user's login environment are available.

Firing is about trigger satisfaction, not action success: every failure mode
(launch error, timeout, non-zero exit) still yields an ActionResult.

Sentinel exit codes:
    127  the process could not be launched (bad cwd, missing binary)
    124  the process was killed after ``timeout``
"""

from __future__ import annotations

import asyncio
import os
import shlex
from datetime import datetime, timezone
from pathlib import Path

from promptwatch.actions.template import render_prompt
from promptwatch.exceptions import ActionInvocationError
from promptwatch.logging import get_logger
from promptwatch.triggers.executor import kill_process_group
from promptwatch.watches.models import ActionResult, OutputVars, Watch

log = get_logger(__name__)

EXIT_LAUNCH_FAILED = 127
EXIT_TIMED_OUT = 124


class ActionExecutor:
    """Renders a watch's prompt and invokes the action process exactly once per call.

    The caller (the scheduler) is responsible for only calling ``execute()``
    after it has won the ``active → fired`` transition.
    """

    def __init__(
        self,
        command: list[str],
        login_shell: bool = False,
        timeout: float = 1800.0,
        logs_dir: Path | None = None,
        default_cwd: Path | None = None,
    ) -> None:
        if not command:
            raise ValueError("Action command must not be empty")
        self._command = list(command)
        self._login_shell = login_shell
        self._timeout = timeout
        self._logs_dir = logs_dir.expanduser() if logs_dir else None
        self._default_cwd = default_cwd

    def build_argv(self, prompt: str, watch_id: str) -> list[str]:
        """Substitute placeholders into the argv template."""
        argv = [
            arg.replace("{prompt}", prompt).replace("{watch_id}", watch_id)
            for arg in self._command
        ]
        if self._login_shell:
            shell = os.environ.get("SHELL") or "/bin/sh"
            return [shell, "-l", "-c", shlex.join(argv)]
        return argv

    async def execute(self, watch: Watch, output_vars: OutputVars) -> ActionResult:
        """Render the prompt and run the action in the watch's working directory."""
        prompt = render_prompt(watch.action.prompt_template, output_vars)
        cwd = watch.action.working_directory or str(self._default_cwd or Path.cwd())
        argv = self.build_argv(prompt, watch.watch_id)

        await self._transcript(
            watch.watch_id,
            f"\n=== Action started at {_now_iso()} ===\nPrompt: {prompt}\nCWD: {cwd}\n\n",
        )
        log.info("action_started", watch_id=watch.watch_id, cwd=cwd, executable=argv[0])

        try:
            exit_code, stdout, stderr = await self._spawn(watch.watch_id, argv, cwd)
            error = None
        except ActionInvocationError as exc:
            exit_code, stdout, stderr = exc.exit_code, "", exc.reason
            error = exc.message

        result = ActionResult(
            rendered_prompt=prompt,
            working_directory=cwd,
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            error=error,
        )

        transcript = stdout
        if stderr:
            transcript += f"[stderr] {stderr}"
        transcript += f"\n=== Action completed with exit code {exit_code} ===\n"
        await self._transcript(watch.watch_id, transcript)

        if error:
            log.error("action_failed", watch_id=watch.watch_id, exit_code=exit_code, error=error)
        else:
            log.info("action_completed", watch_id=watch.watch_id, exit_code=exit_code)
        return result

    async def _spawn(self, watch_id: str, argv: list[str], cwd: str) -> tuple[int, str, str]:
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                start_new_session=True,
            )
        except (OSError, ValueError) as exc:
            # ValueError: embedded null byte in argv or cwd.
            raise ActionInvocationError(
                watch_id, f"could not launch {argv[0]!r} in {cwd!r}: {exc}", EXIT_LAUNCH_FAILED
            ) from exc

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            kill_process_group(proc)
            await proc.communicate()
            raise ActionInvocationError(
                watch_id, f"action timed out after {self._timeout}s and was killed", EXIT_TIMED_OUT
            )
        except asyncio.CancelledError:
            if proc.returncode is None:
                kill_process_group(proc)
                await proc.wait()
            raise

        return (
            proc.returncode if proc.returncode is not None else EXIT_LAUNCH_FAILED,
            stdout_bytes.decode(errors="replace") if stdout_bytes else "",
            stderr_bytes.decode(errors="replace") if stderr_bytes else "",
        )

    async def _transcript(self, watch_id: str, text: str) -> None:
        if self._logs_dir is None:
            return
        try:
            await asyncio.to_thread(self._append_transcript, watch_id, text)
        except (OSError, ValueError) as exc:
            log.warning("action_transcript_write_failed", watch_id=watch_id, error=str(exc))

    def _append_transcript(self, watch_id: str, text: str) -> None:
        assert self._logs_dir is not None
        self._logs_dir.mkdir(parents=True, exist_ok=True)
        path = self._logs_dir / f"{watch_id}.log"
        with path.open("a", encoding="utf-8", errors="replace") as f:
            f.write(text)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
