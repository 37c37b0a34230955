"""Pure helpers and schema fragments shared across MCP tool modules."""

from __future__ import annotations

import json
import logging
from typing import Any

from easyproject_mcp.config import ToolCategory
from easyproject_mcp.errors import ToolInputError
from easyproject_mcp.registry import ToolContext

logger = logging.getLogger(__name__)

ID_SCHEMA: dict[str, Any] = {"type": "integer", "minimum": 1}
DATE_SCHEMA: dict[str, Any] = {
    "type": "string",
    "pattern": r"^\d{4}-\d{2}-\d{2}$",
    "description": "Date in YYYY-MM-DD format",
}
INCLUDE_SCHEMA: dict[str, Any] = {
    "type": "array",
    "items": {"type": "string"},
    "description": "Associated data to include (e.g. journals, attachments, relations)",
}


def id_prop(description: str) -> dict[str, Any]:
    return {**ID_SCHEMA, "description": description}


def pagination_props() -> dict[str, Any]:
    return {
        "limit": {
            "type": "integer",
            "minimum": 1,
            "maximum": 100,
            "description": "Max results (defaults to the configured limit, 25 unless changed)",
        },
        "offset": {"type": "integer", "minimum": 0, "description": "Skip first N results"},
    }


def _text(summary: str, data: object = None) -> str:
    """Summary line, then the payload as pretty JSON."""
    if data is None:
        return summary
    return f"{summary}\n\n{json.dumps(data, indent=2, ensure_ascii=False, default=str)}"


def _resolve_pagination(ctx: ToolContext, category: ToolCategory, arguments: dict[str, Any]) -> tuple[int, int]:
    """Return ``(limit, offset)`` applying the category's default limit."""
    limit = arguments.get("limit", ctx.default_limit(category))
    offset = arguments.get("offset", 0)
    return limit, offset


def _require(err: str | None) -> None:
    if err:
        raise ToolInputError(err)


def _pick(arguments: dict[str, Any], *keys: str) -> dict[str, Any]:
    """Copy the keys that are present into a write payload."""
    return {k: arguments[k] for k in keys if k in arguments}


def _require_changes(payload: dict[str, Any], tool: str) -> None:
    if not payload:
        msg = f"{tool} needs at least one field to change"
        raise ToolInputError(msg)


def _name(ref: Any, default: str = "-") -> str:
    """Display name of an embedded ``{"id", "name"}`` reference."""
    if isinstance(ref, dict) and ref.get("name"):
        return str(ref["name"])
    return default


def _page_summary(noun: str, page: dict[str, Any]) -> str:
    count = len(page["items"])
    if count == 0:
        return f"No {noun} found."
    start = page["offset"] + 1
    return f"Found {page['total_count']} {noun} (showing {start}-{page['offset'] + count})."
