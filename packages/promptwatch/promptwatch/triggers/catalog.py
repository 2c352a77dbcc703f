"""Trigger catalog — discovery and metadata for installed triggers.

Every executable, non-hidden file in the trigger directory is a trigger.  An
optional sidecar ``<name>.yaml`` (or ``.yml``) describes it::

    description: Fires when a GitHub PR is merged
    args:
      - name: repo
        description: owner/name
      - name: pr
        description: Pull request number
    default_interval: 5m
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from promptwatch.exceptions import TriggerNotFoundError
from promptwatch.logging import get_logger

log = get_logger(__name__)

_SIDECAR_SUFFIXES = (".yaml", ".yml")


@dataclass
class TriggerArg:
    name: str
    description: str = ""


@dataclass
class TriggerMetadata:
    name: str
    description: str = ""
    args: list[TriggerArg] = field(default_factory=list)
    default_interval: str | None = None
    path: str = ""

    def usage(self) -> str:
        return " ".join([self.name, *(f"<{a.name}>" for a in self.args)])

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "args": [{"name": a.name, "description": a.description} for a in self.args],
            "default_interval": self.default_interval,
            "usage": self.usage(),
            "path": self.path,
        }


class TriggerCatalog:
    """Read-only view over a trigger directory."""

    def __init__(self, triggers_dir: Path) -> None:
        self._dir = triggers_dir.expanduser()

    @property
    def triggers_dir(self) -> Path:
        return self._dir

    def list_triggers(self) -> list[TriggerMetadata]:
        """Return metadata for every trigger, sorted by name.

        A missing directory simply yields an empty catalog.
        """
        if not self._dir.is_dir():
            return []

        triggers: list[TriggerMetadata] = []
        for path in sorted(self._dir.iterdir()):
            if path.name.startswith(".") or path.suffix in _SIDECAR_SUFFIXES:
                continue
            if not path.is_file() or not os.access(path, os.X_OK):
                continue
            triggers.append(self._load_metadata(path))
        return triggers

    def exists(self, name: str) -> bool:
        return self._find(name) is not None

    def get(self, name: str) -> TriggerMetadata:
        """Return metadata for *name* (exact file name or stem).

        Raises:
            TriggerNotFoundError: No executable trigger has that name.
        """
        meta = self._find(name)
        if meta is None:
            raise TriggerNotFoundError(name, path=str(self._dir / name))
        return meta

    # ---------------------------------------------------------------------------
    # Internals
    # ---------------------------------------------------------------------------

    def _find(self, name: str) -> TriggerMetadata | None:
        triggers = self.list_triggers()
        matches = [t for t in triggers if Path(t.path).name == name]
        if not matches:
            matches = [t for t in triggers if t.name == name]
        return matches[0] if len(matches) == 1 else None

    def _load_metadata(self, path: Path) -> TriggerMetadata:
        name = path.stem if path.suffix else path.name
        meta = TriggerMetadata(name=name, path=str(path))
        for suffix in _SIDECAR_SUFFIXES:
            sidecar = self._dir / f"{name}{suffix}"
            if not sidecar.is_file():
                continue
            try:
                with sidecar.open() as f:
                    raw = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as exc:
                log.warning("trigger_metadata_unreadable", trigger=name, path=str(sidecar), error=str(exc))
                break
            if not isinstance(raw, dict):
                log.warning("trigger_metadata_unreadable", trigger=name, path=str(sidecar), error="not a mapping")
                break
            meta.description = str(raw.get("description") or "")
            meta.args = [
                TriggerArg(name=str(a.get("name", "")), description=str(a.get("description") or ""))
                for a in raw.get("args") or []
                if isinstance(a, dict)
            ]
            interval = raw.get("default_interval", raw.get("defaultInterval"))
            meta.default_interval = str(interval) if interval is not None else None
            break
        return meta
