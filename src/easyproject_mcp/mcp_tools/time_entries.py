"""MCP tools for time entries, plus ``log_time`` as a quick-entry shortcut."""

from __future__ import annotations

from datetime import date
from typing import Any

from easyproject_mcp.config import ToolCategory
from easyproject_mcp.errors import ToolInputError
from easyproject_mcp.mcp_tools.common import (
    DATE_SCHEMA,
    _name,
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
from easyproject_mcp.validation import MAX_HOURS_PER_ENTRY, check_date_range, check_hours, parse_date

_CATEGORY = ToolCategory.TIME_ENTRIES
_WRITABLE = ("issue_id", "project_id", "hours", "activity_id", "spent_on", "comments", "user_id")

_HOURS_SCHEMA: dict[str, Any] = {
    "type": "number",
    "exclusiveMinimum": 0,
    "maximum": MAX_HOURS_PER_ENTRY,
    "description": f"Hours spent (more than 0, at most {MAX_HOURS_PER_ENTRY:g})",
}

_ENTRY_FIELDS: dict[str, Any] = {
    "issue_id": id_prop("Issue the time was spent on"),
    "project_id": id_prop("Project the time was spent on (when not tied to an issue)"),
    "hours": _HOURS_SCHEMA,
    "activity_id": id_prop("Time-tracking activity ID"),
    "spent_on": DATE_SCHEMA,
    "comments": {"type": "string", "description": "Short description of the work"},
    "user_id": id_prop("Log on behalf of this user (requires permission)"),
}


def register() -> list[ToolSpec]:
    """Return the time entry tool table."""
    return [
        ToolSpec(
            name="list_time_entries",
            description="List time entries filtered by project, issue, user and date range",
            input_schema={
                "type": "object",
                "properties": {
                    **pagination_props(),
                    "project_id": id_prop("Filter by project ID"),
                    "issue_id": id_prop("Filter by issue ID"),
                    "user_id": id_prop("Filter by user ID"),
                    "from_date": DATE_SCHEMA,
                    "to_date": DATE_SCHEMA,
                },
                "additionalProperties": False,
            },
            handler=_handle_list_time_entries,
            category=_CATEGORY,
        ),
        ToolSpec(
            name="get_time_entry",
            description="Get a time entry by ID",
            input_schema={
                "type": "object",
                "properties": {"id": id_prop("Time entry ID")},
                "required": ["id"],
                "additionalProperties": False,
            },
            handler=_handle_get_time_entry,
            category=_CATEGORY,
        ),
        ToolSpec(
            name="create_time_entry",
            description="Create a time entry on an issue or project",
            input_schema={
                "type": "object",
                "properties": _ENTRY_FIELDS,
                "required": ["hours"],
                "additionalProperties": False,
            },
            handler=_handle_create_time_entry,
            category=_CATEGORY,
        ),
        ToolSpec(
            name="update_time_entry",
            description="Update fields of an existing time entry",
            input_schema={
                "type": "object",
                "properties": {"id": id_prop("Time entry ID"), **_ENTRY_FIELDS},
                "required": ["id"],
                "additionalProperties": False,
            },
            handler=_handle_update_time_entry,
            category=_CATEGORY,
        ),
        ToolSpec(
            name="delete_time_entry",
            description="Delete a time entry",
            input_schema={
                "type": "object",
                "properties": {"id": id_prop("Time entry ID")},
                "required": ["id"],
                "additionalProperties": False,
            },
            handler=_handle_delete_time_entry,
            category=_CATEGORY,
        ),
        ToolSpec(
            name="log_time",
            description="Quickly log hours on an issue or project; the date defaults to today",
            input_schema={
                "type": "object",
                "properties": {
                    "hours": _HOURS_SCHEMA,
                    "issue_id": id_prop("Issue the time was spent on"),
                    "project_id": id_prop("Project the time was spent on"),
                    "activity_id": id_prop("Time-tracking activity ID"),
                    "comments": {"type": "string", "description": "Short description of the work"},
                    "date": {**DATE_SCHEMA, "description": "Day the work was done (YYYY-MM-DD, default today)"},
                },
                "required": ["hours"],
                "additionalProperties": False,
            },
            handler=_handle_log_time,
            category=_CATEGORY,
        ),
    ]


def _check_target(arguments: dict[str, Any]) -> None:
    if "issue_id" not in arguments and "project_id" not in arguments:
        msg = "either issue_id or project_id is required"
        raise ToolInputError(msg)


def _check_entry(arguments: dict[str, Any]) -> None:
    if "hours" in arguments:
        _, err = check_hours(arguments["hours"])
        _require(err)
    if "spent_on" in arguments:
        _, err = parse_date(arguments["spent_on"], "spent_on")
        _require(err)


def _entry_line(entry: dict[str, Any]) -> str:
    issue = entry.get("issue")
    if isinstance(issue, dict) and issue.get("id") is not None:
        target = f"issue #{issue['id']}"
    else:
        target = _name(entry.get("project"))
    hours = float(entry.get("hours") or 0)
    return f"#{entry.get('id')} {hours:g}h on {entry.get('spent_on') or '?'} for {target}"


async def _handle_list_time_entries(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    _require(check_date_range(arguments.get("from_date"), arguments.get("to_date")))
    limit, offset = _resolve_pagination(ctx, _CATEGORY, arguments)
    page = await ctx.client.list_time_entries(
        project_id=arguments.get("project_id"),
        user_id=arguments.get("user_id"),
        limit=limit,
        offset=offset,
        issue_id=arguments.get("issue_id"),
        from_date=arguments.get("from_date"),
        to_date=arguments.get("to_date"),
    )
    hours = sum(float(e.get("hours") or 0) for e in page["items"])
    summary = _page_summary("time entries", dict(page))
    if page["items"]:
        summary += f" {hours:g}h on this page."
    return _text(summary, page)


async def _handle_get_time_entry(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    entry = await ctx.client.get_time_entry(arguments["id"])
    return _text(f"Time entry {_entry_line(dict(entry))}", entry)


async def _handle_create_time_entry(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    _check_target(arguments)
    _check_entry(arguments)
    entry = await ctx.client.create_time_entry(_pick(arguments, *_WRITABLE))
    return _text(f"Created time entry {_entry_line(dict(entry))}", entry)


async def _handle_update_time_entry(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    _check_entry(arguments)
    payload = _pick(arguments, *_WRITABLE)
    _require_changes(payload, "update_time_entry")
    entry = await ctx.client.update_time_entry(arguments["id"], payload)
    return _text(f"Updated time entry {_entry_line(dict(entry))}", entry)


async def _handle_delete_time_entry(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    await ctx.client.delete_time_entry(arguments["id"])
    return f"Deleted time entry #{arguments['id']}"


async def _handle_log_time(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    _check_target(arguments)
    hours, err = check_hours(arguments["hours"])
    _require(err)
    if "date" in arguments:
        spent_on, err = parse_date(arguments["date"], "date")
        _require(err)
    else:
        spent_on = date.today()
    payload = _pick(arguments, "issue_id", "project_id", "activity_id", "comments")
    payload["hours"] = hours
    payload["spent_on"] = spent_on.isoformat() if spent_on else None
    entry = await ctx.client.create_time_entry(payload)
    return _text(f"Logged {hours:g}h on {payload['spent_on']} (entry #{entry.get('id')})", entry)
