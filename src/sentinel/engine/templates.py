"""Message template rendering."""

from __future__ import annotations

import re
from typing import Any

_PLACEHOLDER = re.compile(r"\{\{\s*([\w.]+)\s*\}\}|\{([\w.]+)\}")

DEFAULT_ESCALATION_TEMPLATE = (
    "{item_title} {item_ref} assigned to {employee_name} has not been "
    "acknowledged by {supervisor_name} and now needs your follow-up."
)

DEFAULT_COMPLETION_TEMPLATE = "{item_title} {item_ref} has been completed."


def render_template(text: str, variables: dict[str, Any]) -> str:
    """Fill ``{{name}}`` and ``{name}`` placeholders; unknown names render empty."""

    def _lookup(match: re.Match[str]) -> str:
        name = match.group(1) or match.group(2)
        value: Any = variables
        for part in name.split("."):
            if not isinstance(value, dict) or part not in value:
                return ""
            value = value[part]
        return "" if value is None else str(value)

    rendered = _PLACEHOLDER.sub(_lookup, text)
    return re.sub(r"[ \t]{2,}", " ", rendered).strip()
