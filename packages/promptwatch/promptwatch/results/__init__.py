"""PromptWatch — Result persistence and delivery."""

from promptwatch.results.delivery import ResultDelivery, build_hook_output, format_summary
from promptwatch.results.sink import ResultSink

__all__ = ["ResultDelivery", "ResultSink", "build_hook_output", "format_summary"]
