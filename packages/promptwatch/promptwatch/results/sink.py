"""Result Sink — durable, write-once Result files.

Layout::

    results_dir/
      <watch_id>.json          pending, discoverable by the consumer
      .<watch_id>.<hex>.tmp    in-progress write (hidden, never consumed)
      archive/<watch_id>.json  delivered

A Result is written to a hidden temp file in the same directory, fsync'd and
then hard-linked into place, so a consumer listing ``*.json`` never observes a
partial record and an existing Result is never overwritten.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import os
import stat
import uuid
from pathlib import Path
from typing import Any

from promptwatch.exceptions import ResultSinkError
from promptwatch.logging import get_logger
from promptwatch.watches.models import WatchResult

log = get_logger(__name__)


class ResultSink:
    """Filesystem-backed store of pending and archived Results.

    Usage::

        sink = ResultSink(Path("~/.promptwatch/results"), Path("~/.promptwatch/results/archive"))
        sink.init()
        path = await sink.write(result)
        for path in sink.pending():
            result = sink.load(path)
            sink.archive(path)
    """

    def __init__(self, results_dir: Path, archive_dir: Path | None = None) -> None:
        self._dir = results_dir.expanduser()
        self._archive = (archive_dir or self._dir / "archive").expanduser()

    @property
    def results_dir(self) -> Path:
        return self._dir

    @property
    def archive_dir(self) -> Path:
        return self._archive

    def init(self) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        self._archive.mkdir(parents=True, exist_ok=True)

    def path_for(self, watch_id: str) -> Path:
        return self._dir / f"{watch_id}.json"

    def exists(self, watch_id: str) -> bool:
        """True if a Result for *watch_id* is pending or already archived."""
        return self.path_for(watch_id).exists() or (self._archive / f"{watch_id}.json").exists()

    async def write(self, result: WatchResult) -> Path:
        """Atomically publish *result*.

        Raises:
            ResultSinkError: A Result for this watch already exists, or the
                file could not be written.
        """
        path = await asyncio.to_thread(self._write_sync, result)
        log.info("result_written", watch_id=result.watch_id, path=str(path))
        return path

    def _write_sync(self, result: WatchResult) -> Path:
        if self.exists(result.watch_id):
            raise ResultSinkError(result.watch_id, "a result for this watch already exists")

        final = self.path_for(result.watch_id)
        tmp = self._dir / f".{result.watch_id}.{uuid.uuid4().hex[:8]}.tmp"
        payload = json.dumps(result.to_dict(), indent=2)
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            # link() never replaces an existing file, so a second writer loses.
            os.link(tmp, final)
        except FileExistsError as exc:
            raise ResultSinkError(result.watch_id, "a result for this watch already exists") from exc
        except OSError as exc:
            raise ResultSinkError(result.watch_id, str(exc)) from exc
        finally:
            with contextlib.suppress(OSError):
                tmp.unlink()
        return final

    def pending(self) -> list[Path]:
        """Pending Result files, oldest first.  Hidden temp files are never listed.

        Files archived by a concurrent consumer between listing and stat are skipped.
        """
        if not self._dir.is_dir():
            return []
        stamped: list[tuple[float, Path]] = []
        for p in self._dir.iterdir():
            if p.suffix != ".json" or p.name.startswith("."):
                continue
            try:
                st = p.stat()
            except FileNotFoundError:
                continue
            if stat.S_ISREG(st.st_mode):
                stamped.append((st.st_mtime, p))
        return [p for _, p in sorted(stamped)]

    def archived(self) -> list[Path]:
        if not self._archive.is_dir():
            return []
        return sorted(p for p in self._archive.glob("*.json") if not p.name.startswith("."))

    def load(self, path: Path) -> WatchResult:
        """Parse a Result file.

        Raises:
            ResultSinkError: The file is unreadable or not a valid Result.
        """
        try:
            data: Any = json.loads(path.read_text(encoding="utf-8"))
            return WatchResult.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise ResultSinkError(path.stem, f"unreadable result file {path.name}: {exc}") from exc

    def archive(self, path: Path) -> Path:
        """Move a delivered Result out of the pending area."""
        self._archive.mkdir(parents=True, exist_ok=True)
        target = self._archive / path.name
        os.replace(path, target)
        return target
