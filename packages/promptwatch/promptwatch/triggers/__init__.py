"""PromptWatch — Trigger subsystem.

Package structure
-----------------
triggers/
  executor.py  — Trigger protocol, SubprocessTrigger adapter, TriggerExecutor
  catalog.py   — TriggerCatalog: discovery + YAML sidecar metadata
"""

from promptwatch.triggers.catalog import TriggerArg, TriggerCatalog, TriggerMetadata
from promptwatch.triggers.executor import SubprocessTrigger, Trigger, TriggerExecutor

__all__ = [
    "SubprocessTrigger",
    "Trigger",
    "TriggerArg",
    "TriggerCatalog",
    "TriggerExecutor",
    "TriggerMetadata",
]
