"""MCP tools for users and per-user workload."""

from __future__ import annotations

from typing import Any

from easyproject_mcp.config import ToolCategory
from easyproject_mcp.mcp_tools.common import (
    DATE_SCHEMA,
    INCLUDE_SCHEMA,
    _page_summary,
    _require,
    _resolve_pagination,
    _text,
    id_prop,
    pagination_props,
)
from easyproject_mcp.registry import ToolContext, ToolSpec
from easyproject_mcp.validation import check_date_range

_CATEGORY = ToolCategory.USERS
# Single-page fetch size for workload aggregation.
_WORKLOAD_PAGE = 100


def register() -> list[ToolSpec]:
    """Return the user tool table."""
    return [
        ToolSpec(
            name="list_users",
            description="List users with optional status/group filter and search",
            input_schema={
                "type": "object",
                "properties": {
                    **pagination_props(),
                    "status": {
                        "type": "integer",
                        "enum": [1, 2, 3],
                        "description": "1 = active, 2 = registered, 3 = locked",
                    },
                    "group_id": id_prop("Only members of this group"),
                    "search": {"type": "string", "description": "Free-text search (name, login, email)"},
                },
                "additionalProperties": False,
            },
            handler=_handle_list_users,
            category=_CATEGORY,
        ),
        ToolSpec(
            name="get_user",
            description="Get user details by ID",
            input_schema={
                "type": "object",
                "properties": {"id": id_prop("User ID"), "include": INCLUDE_SCHEMA},
                "required": ["id"],
                "additionalProperties": False,
            },
            handler=_handle_get_user,
            category=_CATEGORY,
        ),
        ToolSpec(
            name="get_user_workload",
            description="Summarize a user's assigned issues and logged hours, optionally within a date range",
            input_schema={
                "type": "object",
                "properties": {
                    "id": id_prop("User ID"),
                    "from_date": DATE_SCHEMA,
                    "to_date": DATE_SCHEMA,
                },
                "required": ["id"],
                "additionalProperties": False,
            },
            handler=_handle_get_user_workload,
            category=_CATEGORY,
        ),
    ]


def _display_name(user: dict[str, Any]) -> str:
    name = f"{user.get('firstname', '')} {user.get('lastname', '')}".strip()
    return name or user.get("login") or f"user #{user.get('id')}"


async def _handle_list_users(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    limit, offset = _resolve_pagination(ctx, _CATEGORY, arguments)
    page = await ctx.client.list_users(
        limit=limit,
        offset=offset,
        status=arguments.get("status"),
        group_id=arguments.get("group_id"),
        search=arguments.get("search"),
    )
    return _text(_page_summary("users", dict(page)), page)


async def _handle_get_user(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    user = await ctx.client.get_user(arguments["id"], include=arguments.get("include"))
    return _text(f"User #{user.get('id', arguments['id'])}: {_display_name(dict(user))}", user)


def summarize_workload(issues: list[dict[str, Any]], entries: list[dict[str, Any]]) -> dict[str, Any]:
    """Aggregate completion buckets and hours for a set of issues and time entries."""
    ratios = [int(issue.get("done_ratio") or 0) for issue in issues]
    completed = sum(1 for r in ratios if r >= 100)
    in_progress = sum(1 for r in ratios if 0 < r < 100)
    pending = sum(1 for r in ratios if r == 0)
    total = len(issues)
    return {
        "total_assigned_issues": total,
        "completed_issues": completed,
        "in_progress_issues": in_progress,
        "pending_issues": pending,
        "completion_rate": round(completed / total * 100, 1) if total else 0.0,
        "total_logged_hours": round(sum(float(e.get("hours") or 0) for e in entries), 2),
        "total_estimated_hours": round(sum(float(i.get("estimated_hours") or 0) for i in issues), 2),
    }


async def _handle_get_user_workload(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    from_date = arguments.get("from_date")
    to_date = arguments.get("to_date")
    _require(check_date_range(from_date, to_date))

    user_id = arguments["id"]
    user = await ctx.client.get_user(user_id)
    issues = await ctx.client.list_issues(
        limit=_WORKLOAD_PAGE, offset=0, status_id="*", assigned_to_id=user_id
    )
    entries = await ctx.client.list_time_entries(
        user_id=user_id, limit=_WORKLOAD_PAGE, offset=0, from_date=from_date, to_date=to_date
    )
    summary = summarize_workload(list(issues["items"]), list(entries["items"]))
    summary["time_period"] = {"from": from_date, "to": to_date}
    workload = {
        "user": {"id": user.get("id", user_id), "name": _display_name(dict(user)), "email": user.get("mail")},
        "summary": summary,
        "assigned_issues": issues["items"],
        "time_entries": entries["items"],
    }
    line = (
        f"Workload for {_display_name(dict(user))}: {summary['total_assigned_issues']} issues, "
        f"{summary['total_logged_hours']:g}h logged"
    )
    if issues["total_count"] > len(issues["items"]) or entries["total_count"] > len(entries["items"]):
        line += f" (first {_WORKLOAD_PAGE} issues/entries only)"
    return _text(line, workload)
