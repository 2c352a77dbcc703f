"""Result consumption — turn pending Results into session context.

Used by ``promptwatch results deliver``, which runs as a session hook on each
user prompt: it reads every pending Result, renders a short summary per
Result, archives the file so it is never delivered twice, and prints hook
output on stdout.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from promptwatch.exceptions import ResultSinkError
from promptwatch.logging import get_logger
from promptwatch.results.sink import ResultSink
from promptwatch.watches.models import WatchResult

log = get_logger(__name__)

HOOK_EVENT_NAME = "UserPromptSubmit"
TRUNCATION_MARKER = "\n...(truncated)"


def format_summary(result: WatchResult, max_chars: int = 500) -> str:
    """Render one Result as a markdown block."""
    exit_code = result.action.exit_code
    status = "succeeded" if exit_code == 0 else f"failed (exit {exit_code})"
    params = " ".join(result.params)
    stdout = result.action.stdout
    body = stdout[:max_chars]
    if len(stdout) > max_chars:
        body += TRUNCATION_MARKER
    return f"**{result.trigger} {params}** - {status}\n```\n{body}\n```"


def build_hook_output(summaries: list[str]) -> dict[str, Any]:
    """Hook payload; just ``{"continue": true}`` when there is nothing to deliver."""
    if not summaries:
        return {"continue": True}
    message = "---\n## Completed Watches\n\n" + "\n\n".join(summaries) + "\n---"
    return {
        "continue": True,
        "hookSpecificOutput": {
            "hookEventName": HOOK_EVENT_NAME,
            "additionalContext": message,
        },
    }


@dataclass
class DeliveredResult:
    result: WatchResult
    summary: str
    archived_to: Path


class ResultDelivery:
    """Collects and archives pending Results from a ResultSink."""

    def __init__(self, sink: ResultSink, summary_max_chars: int = 500) -> None:
        self._sink = sink
        self._max_chars = summary_max_chars

    def collect(self) -> list[DeliveredResult]:
        """Summarise and archive every pending Result.

        Files that cannot be read or archived are logged and left in place.
        """
        delivered: list[DeliveredResult] = []
        for path in self._sink.pending():
            try:
                result = self._sink.load(path)
                summary = format_summary(result, self._max_chars)
                archived_to = self._sink.archive(path)
            except (ResultSinkError, OSError) as exc:
                log.warning("result_delivery_skipped", path=str(path), error=str(exc))
                continue
            log.info("result_delivered", watch_id=result.watch_id, archived_to=str(archived_to))
            delivered.append(DeliveredResult(result=result, summary=summary, archived_to=archived_to))
        return delivered

    def hook_output(self) -> dict[str, Any]:
        return build_hook_output([d.summary for d in self.collect()])
