"""PromptWatch — Run a prompt when an external condition becomes true.

A long-running daemon polls user-supplied trigger executables on behalf of
registered watches.  When a trigger reports success the watch fires once:
its prompt is rendered from the trigger's output and handed to an action
process, and the outcome is written as a Result for later delivery into a
conversational session.

Architecture layers (bottom to top):
    1. Watches   — models, duration parsing, SQLite WatchStore
    2. Triggers  — subprocess condition oracles + trigger catalog
    3. Actions   — prompt rendering + action process
    4. Results   — atomic Result files + session-hook delivery
    5. Scheduler — tick loop, poll pipeline, TTL expiry
    6. API/CLI   — FastAPI daemon surface, Typer command line
"""

__version__ = "0.1.0"
__author__ = "PromptWatch Contributors"
__license__ = "Apache-2.0"

from promptwatch.watches.models import Watch, WatchStatus

__all__ = [
    "__version__",
    "Watch",
    "WatchStatus",
]
