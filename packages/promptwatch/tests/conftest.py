"""Shared pytest fixtures for the promptwatch test suite."""

from __future__ import annotations

import stat
import sys
from pathlib import Path
from typing import AsyncGenerator, Callable

import pytest

from promptwatch.config import Settings, override_settings
from promptwatch.results.sink import ResultSink
from promptwatch.watches.store import WatchStore

ScriptFactory = Callable[..., Path]


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    settings = Settings(
        storage={
            "db_path": str(tmp_path / "watches.db"),
            "results_dir": str(tmp_path / "results"),
            "archive_dir": str(tmp_path / "results" / "archive"),
            "logs_dir": str(tmp_path / "logs"),
            "triggers_dir": str(tmp_path / "triggers"),
        },
        scheduler={"tick_seconds": 0.01, "shutdown_timeout_seconds": 5.0},
        triggers={"timeout_seconds": 5.0},
        actions={"command": [sys.executable, "-c", "import sys; print(sys.argv[1])", "{prompt}"]},
        logging={"level": "warning", "format": "console"},
    )
    override_settings(settings)
    return settings


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


@pytest.fixture
async def store(tmp_path: Path) -> AsyncGenerator[WatchStore, None]:
    s = WatchStore(tmp_path / "watches_test.db")
    await s.init()
    yield s
    await s.close()


@pytest.fixture
def sink(tmp_path: Path) -> ResultSink:
    s = ResultSink(tmp_path / "results", tmp_path / "results" / "archive")
    s.init()
    return s


# ---------------------------------------------------------------------------
# Trigger scripts
# ---------------------------------------------------------------------------


@pytest.fixture
def triggers_dir(tmp_path: Path) -> Path:
    d = tmp_path / "triggers"
    d.mkdir(exist_ok=True)
    return d


@pytest.fixture
def make_script(triggers_dir: Path) -> ScriptFactory:
    """Write an executable /bin/sh script into the trigger directory."""

    def _make(name: str, body: str, executable: bool = True) -> Path:
        path = triggers_dir / name
        path.write_text(f"#!/bin/sh\n{body}\n")
        if executable:
            path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _make

