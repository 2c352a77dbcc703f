"""PromptWatch — Action subsystem (prompt rendering + action process)."""

from promptwatch.actions.executor import EXIT_LAUNCH_FAILED, EXIT_TIMED_OUT, ActionExecutor
from promptwatch.actions.template import render_prompt

__all__ = ["ActionExecutor", "EXIT_LAUNCH_FAILED", "EXIT_TIMED_OUT", "render_prompt"]
