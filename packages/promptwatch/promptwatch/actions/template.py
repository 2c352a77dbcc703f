"""Prompt template rendering.

``{{identifier}}`` tokens are replaced with the matching trigger output
variable.  Unknown tokens are left untouched; rendering never raises.
"""

from __future__ import annotations

import json
import re
from typing import Any, Mapping

_PLACEHOLDER_RE = re.compile(r"\{\{(\w+)\}\}")


def stringify(value: Any) -> str:
    """Render an output variable the way it appears inside a prompt."""
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value)
    except (TypeError, ValueError):
        return str(value)


def render_prompt(template: str, variables: Mapping[str, Any]) -> str:
    """Substitute ``{{key}}`` tokens in *template* from *variables*."""

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key in variables:
            return stringify(variables[key])
        return match.group(0)

    return _PLACEHOLDER_RE.sub(_replace, template)
