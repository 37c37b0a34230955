"""MCP tools for milestones (upstream "versions")."""

from __future__ import annotations

from typing import Any

from easyproject_mcp.config import ToolCategory
from easyproject_mcp.mcp_tools.common import (
    DATE_SCHEMA,
    _page_summary,
    _pick,
    _require,
    _require_changes,
    _resolve_pagination,
    _text,
    id_prop,
    pagination_props,
)
from easyproject_mcp.registry import ToolContext, ToolSpec
from easyproject_mcp.validation import parse_date, sanitize_text

_CATEGORY = ToolCategory.MILESTONES
_STATUSES = ["open", "locked", "closed"]
_WRITABLE = ("project_id", "name", "description", "status", "due_date", "sharing")

_MILESTONE_FIELDS: dict[str, Any] = {
    "project_id": id_prop("Project ID"),
    "name": {"type": "string", "description": "Milestone name"},
    "description": {"type": "string", "description": "Milestone description"},
    "status": {"type": "string", "enum": _STATUSES, "description": "open, locked or closed"},
    "due_date": DATE_SCHEMA,
    "sharing": {
        "type": "string",
        "enum": ["none", "descendants", "hierarchy", "tree", "system"],
        "description": "Which other projects may use this milestone",
    },
}


def register() -> list[ToolSpec]:
    """Return the milestone tool table."""
    return [
        ToolSpec(
            name="list_milestones",
            description="List milestones, optionally for one project and status",
            input_schema={
                "type": "object",
                "properties": {
                    "project_id": id_prop("Filter by project ID"),
                    **pagination_props(),
                    "status": {"type": "string", "enum": _STATUSES},
                    "search": {"type": "string", "description": "Free-text search"},
                },
                "additionalProperties": False,
            },
            handler=_handle_list_milestones,
            category=_CATEGORY,
        ),
        ToolSpec(
            name="get_milestone",
            description="Get milestone details by ID",
            input_schema={
                "type": "object",
                "properties": {"id": id_prop("Milestone ID")},
                "required": ["id"],
                "additionalProperties": False,
            },
            handler=_handle_get_milestone,
            category=_CATEGORY,
        ),
        ToolSpec(
            name="create_milestone",
            description="Create a milestone in a project",
            input_schema={
                "type": "object",
                "properties": _MILESTONE_FIELDS,
                "required": ["project_id", "name"],
                "additionalProperties": False,
            },
            handler=_handle_create_milestone,
            category=_CATEGORY,
        ),
        ToolSpec(
            name="update_milestone",
            description="Update fields of an existing milestone",
            input_schema={
                "type": "object",
                "properties": {"id": id_prop("Milestone ID"), **_MILESTONE_FIELDS},
                "required": ["id"],
                "additionalProperties": False,
            },
            handler=_handle_update_milestone,
            category=_CATEGORY,
        ),
        ToolSpec(
            name="delete_milestone",
            description="Delete a milestone",
            input_schema={
                "type": "object",
                "properties": {"id": id_prop("Milestone ID")},
                "required": ["id"],
                "additionalProperties": False,
            },
            handler=_handle_delete_milestone,
            category=_CATEGORY,
        ),
    ]


def _check_fields(payload: dict[str, Any]) -> None:
    if "name" in payload:
        payload["name"], err = sanitize_text(payload["name"], "name")
        _require(err)
    if "due_date" in payload:
        _, err = parse_date(payload["due_date"], "due_date")
        _require(err)


async def _handle_list_milestones(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    limit, offset = _resolve_pagination(ctx, _CATEGORY, arguments)
    page = await ctx.client.list_milestones(
        project_id=arguments.get("project_id"),
        limit=limit,
        offset=offset,
        status=arguments.get("status"),
        search=arguments.get("search"),
    )
    return _text(_page_summary("milestones", dict(page)), page)


async def _handle_get_milestone(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    version = await ctx.client.get_milestone(arguments["id"])
    return _text(
        f"Milestone #{version.get('id', arguments['id'])}: {version.get('name', '')} "
        f"({version.get('status', 'unknown')}, due {version.get('due_date') or 'unset'})",
        version,
    )


async def _handle_create_milestone(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    payload = _pick(arguments, *_WRITABLE)
    _check_fields(payload)
    version = await ctx.client.create_milestone(payload)
    return _text(f"Created milestone #{version.get('id')}: {version.get('name', payload['name'])}", version)


async def _handle_update_milestone(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    payload = _pick(arguments, *_WRITABLE)
    _require_changes(payload, "update_milestone")
    _check_fields(payload)
    version = await ctx.client.update_milestone(arguments["id"], payload)
    return _text(f"Updated milestone #{arguments['id']}", version)


async def _handle_delete_milestone(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    await ctx.client.delete_milestone(arguments["id"])
    return f"Deleted milestone #{arguments['id']}"
