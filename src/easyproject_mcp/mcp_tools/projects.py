"""MCP tools for projects."""

from __future__ import annotations

from typing import Any

from easyproject_mcp.config import ToolCategory
from easyproject_mcp.mcp_tools.common import (
    INCLUDE_SCHEMA,
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
from easyproject_mcp.validation import sanitize_text

_CATEGORY = ToolCategory.PROJECTS
_WRITABLE = ("name", "identifier", "description", "homepage", "is_public", "parent_id", "inherit_members")

_PROJECT_FIELDS: dict[str, Any] = {
    "name": {"type": "string", "description": "Project name"},
    "identifier": {
        "type": "string",
        "pattern": r"^[a-z][a-z0-9_-]*$",
        "description": "Unique identifier (lowercase letters, digits, '-' and '_')",
    },
    "description": {"type": "string", "description": "Project description"},
    "homepage": {"type": "string", "description": "Project homepage URL"},
    "is_public": {"type": "boolean", "description": "Visible to non-members"},
    "parent_id": id_prop("Parent project ID"),
    "inherit_members": {"type": "boolean", "description": "Inherit members from the parent project"},
}


def register() -> list[ToolSpec]:
    """Return the project tool table."""
    return [
        ToolSpec(
            name="list_projects",
            description="List EasyProject projects with optional pagination, archive filter and search",
            input_schema={
                "type": "object",
                "properties": {
                    **pagination_props(),
                    "include_archived": {"type": "boolean", "description": "Include archived projects"},
                    "search": {"type": "string", "description": "Free-text search"},
                },
                "additionalProperties": False,
            },
            handler=_handle_list_projects,
            category=_CATEGORY,
        ),
        ToolSpec(
            name="get_project",
            description="Get project details by ID",
            input_schema={
                "type": "object",
                "properties": {"id": id_prop("Project ID"), "include": INCLUDE_SCHEMA},
                "required": ["id"],
                "additionalProperties": False,
            },
            handler=_handle_get_project,
            category=_CATEGORY,
        ),
        ToolSpec(
            name="create_project",
            description="Create a new project",
            input_schema={
                "type": "object",
                "properties": _PROJECT_FIELDS,
                "required": ["name", "identifier"],
                "additionalProperties": False,
            },
            handler=_handle_create_project,
            category=_CATEGORY,
        ),
        ToolSpec(
            name="update_project",
            description="Update fields of an existing project",
            input_schema={
                "type": "object",
                "properties": {"id": id_prop("Project ID"), **_PROJECT_FIELDS},
                "required": ["id"],
                "additionalProperties": False,
            },
            handler=_handle_update_project,
            category=_CATEGORY,
        ),
        ToolSpec(
            name="delete_project",
            description="Delete a project. This cannot be undone.",
            input_schema={
                "type": "object",
                "properties": {"id": id_prop("Project ID")},
                "required": ["id"],
                "additionalProperties": False,
            },
            handler=_handle_delete_project,
            category=_CATEGORY,
        ),
    ]


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def _handle_list_projects(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    limit, offset = _resolve_pagination(ctx, _CATEGORY, arguments)
    page = await ctx.client.list_projects(
        limit=limit,
        offset=offset,
        include_archived=arguments.get("include_archived"),
        search=arguments.get("search"),
    )
    return _text(_page_summary("projects", dict(page)), page)


async def _handle_get_project(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    project = await ctx.client.get_project(arguments["id"], include=arguments.get("include"))
    return _text(f"Project #{project.get('id', arguments['id'])}: {project.get('name', '')}", project)


async def _handle_create_project(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    payload = _pick(arguments, *_WRITABLE)
    payload["name"], err = sanitize_text(arguments["name"], "name")
    _require(err)
    project = await ctx.client.create_project(payload)
    return _text(f"Created project #{project.get('id')}: {project.get('name', payload['name'])}", project)


async def _handle_update_project(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    payload = _pick(arguments, *_WRITABLE)
    _require_changes(payload, "update_project")
    if "name" in payload:
        payload["name"], err = sanitize_text(payload["name"], "name")
        _require(err)
    project = await ctx.client.update_project(arguments["id"], payload)
    return _text(f"Updated project #{arguments['id']}", project)


async def _handle_delete_project(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    await ctx.client.delete_project(arguments["id"])
    return f"Deleted project #{arguments['id']}"
