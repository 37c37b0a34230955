"""Aggregating report tools: per-project report and cross-project dashboard.

Each report section is fetched independently. A failing section is reported
inline as ``{"error": ...}`` so the rest of the report is still returned;
only the initial project lookup of ``generate_project_report`` fails the call.
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from collections.abc import Awaitable, Callable
from datetime import UTC, date, datetime
from typing import Any

from easyproject_mcp.config import ToolCategory
from easyproject_mcp.errors import ApiError
from easyproject_mcp.mcp_tools.common import DATE_SCHEMA, _name, _require, _text, id_prop
from easyproject_mcp.mcp_tools.users import summarize_workload
from easyproject_mcp.registry import ToolContext, ToolSpec
from easyproject_mcp.validation import check_date_range

logger = logging.getLogger(__name__)

_CATEGORY = ToolCategory.REPORTS
# Largest page the upstream serves in one request.
_REPORT_PAGE = 100

_PROJECT_ACTIVE = 1
_PROJECT_CLOSED = 5
_PROJECT_ARCHIVED = 9


def register() -> list[ToolSpec]:
    """Return the report tool table."""
    return [
        ToolSpec(
            name="generate_project_report",
            description="Build a project report: issue progress by status and priority, hours by user and activity",
            input_schema={
                "type": "object",
                "properties": {
                    "project_id": id_prop("Project ID"),
                    "from_date": DATE_SCHEMA,
                    "to_date": DATE_SCHEMA,
                    "include_issues": {"type": "boolean", "default": True},
                    "include_time_entries": {"type": "boolean", "default": True},
                    "include_users": {"type": "boolean", "default": True},
                },
                "required": ["project_id"],
                "additionalProperties": False,
            },
            handler=_handle_generate_project_report,
            category=_CATEGORY,
        ),
        ToolSpec(
            name="get_dashboard_data",
            description="Aggregate project, issue and time-entry figures for a dashboard",
            input_schema={
                "type": "object",
                "properties": {
                    "project_ids": {"type": "array", "items": {"type": "integer", "minimum": 1}},
                    "user_id": id_prop("Only issues assigned to / time logged by this user"),
                    "from_date": DATE_SCHEMA,
                    "to_date": DATE_SCHEMA,
                },
                "additionalProperties": False,
            },
            handler=_handle_get_dashboard_data,
            category=_CATEGORY,
        ),
    ]


# ---------------------------------------------------------------------------
# Aggregation helpers
# ---------------------------------------------------------------------------


def _in_period(day: str | None, from_date: str | None, to_date: str | None) -> bool:
    """ISO dates compare correctly as strings; undated items are kept."""
    if not day:
        return True
    day = day[:10]
    if from_date and day < from_date:
        return False
    return not (to_date and day > to_date)


def count_by(items: list[dict[str, Any]], field: str) -> dict[str, int]:
    return dict(Counter(_name(item.get(field), "unknown") for item in items))


def hours_by(entries: list[dict[str, Any]], field: str) -> dict[str, float]:
    totals: dict[str, float] = defaultdict(float)
    for entry in entries:
        totals[_name(entry.get(field), "unknown")] += float(entry.get("hours") or 0)
    return {k: round(v, 2) for k, v in totals.items()}


def _hours_summary(entries: list[dict[str, Any]]) -> dict[str, Any]:
    total = sum(float(e.get("hours") or 0) for e in entries)
    return {
        "total_entries": len(entries),
        "total_hours": round(total, 2),
        "average_per_entry": round(total / len(entries), 2) if entries else 0.0,
    }


async def _section(name: str, build: Callable[[], Awaitable[dict[str, Any]]]) -> dict[str, Any]:
    try:
        return await build()
    except ApiError as exc:
        logger.warning("Report section %s failed: %s", name, exc)
        return {"error": f"Failed to load {name}: {exc}"}


def _now() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds")


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def _handle_generate_project_report(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    from_date = arguments.get("from_date")
    to_date = arguments.get("to_date")
    _require(check_date_range(from_date, to_date))
    project_id = arguments["project_id"]
    client = ctx.client

    project = await client.get_project(project_id)
    report: dict[str, Any] = {
        "project": {
            k: project.get(k) for k in ("id", "name", "identifier", "description", "status", "created_on", "updated_on")
        },
        "report_generated_at": _now(),
        "period": {"from": from_date, "to": to_date},
    }

    async def issues_section() -> dict[str, Any]:
        page = await client.list_issues(project_id=project_id, limit=_REPORT_PAGE, offset=0, status_id="*")
        issues = [i for i in page["items"] if _in_period(i.get("created_on"), from_date, to_date)]
        workload = summarize_workload(issues, [])
        return {
            "summary": {
                "total": workload["total_assigned_issues"],
                "completed": workload["completed_issues"],
                "in_progress": workload["in_progress_issues"],
                "pending": workload["pending_issues"],
                "completion_rate": workload["completion_rate"],
                "total_estimated_hours": workload["total_estimated_hours"],
            },
            "by_status": count_by(issues, "status"),
            "by_priority": count_by(issues, "priority"),
            "scanned": len(page["items"]),
            "total_available": page["total_count"],
        }

    async def time_section() -> dict[str, Any]:
        page = await client.list_time_entries(
            project_id=project_id, limit=_REPORT_PAGE, offset=0, from_date=from_date, to_date=to_date
        )
        entries = list(page["items"])
        return {
            "summary": _hours_summary(entries),
            "by_user": hours_by(entries, "user"),
            "by_activity": hours_by(entries, "activity"),
        }

    async def users_section() -> dict[str, Any]:
        page = await client.list_users(limit=_REPORT_PAGE, offset=0)
        return {
            "summary": {"total_users": page["total_count"]},
            "details": [
                {"id": u.get("id"), "login": u.get("login"), "name": f"{u.get('firstname', '')} {u.get('lastname', '')}".strip()}
                for u in page["items"]
            ],
        }

    if arguments.get("include_issues", True):
        report["issues"] = await _section("issues", issues_section)
    if arguments.get("include_time_entries", True):
        report["time_entries"] = await _section("time entries", time_section)
    if arguments.get("include_users", True):
        report["users"] = await _section("users", users_section)

    return _text(f"Report for project '{project.get('name', project_id)}' (ID {project_id})", report)


async def _handle_get_dashboard_data(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    from_date = arguments.get("from_date")
    to_date = arguments.get("to_date")
    _require(check_date_range(from_date, to_date))
    project_ids = set(arguments.get("project_ids") or [])
    user_id = arguments.get("user_id")
    client = ctx.client

    def in_projects(item: dict[str, Any]) -> bool:
        if not project_ids:
            return True
        ref = item.get("project")
        return isinstance(ref, dict) and ref.get("id") in project_ids

    async def projects_section() -> dict[str, Any]:
        page = await client.list_projects(limit=_REPORT_PAGE, offset=0, include_archived=False)
        projects = [p for p in page["items"] if not project_ids or p.get("id") in project_ids]
        statuses = [p.get("status") for p in projects]
        return {
            "total": len(projects),
            "active": statuses.count(_PROJECT_ACTIVE),
            "closed": statuses.count(_PROJECT_CLOSED),
            "archived": statuses.count(_PROJECT_ARCHIVED),
        }

    async def issues_section() -> dict[str, Any]:
        page = await client.list_issues(limit=_REPORT_PAGE, offset=0, status_id="*", assigned_to_id=user_id)
        issues = [
            i for i in page["items"] if in_projects(i) and _in_period(i.get("created_on"), from_date, to_date)
        ]
        workload = summarize_workload(issues, [])
        today = date.today().isoformat()
        overdue = sum(
            1 for i in issues if i.get("due_date") and i["due_date"] < today and int(i.get("done_ratio") or 0) < 100
        )
        return {
            "total": workload["total_assigned_issues"],
            "completed": workload["completed_issues"],
            "in_progress": workload["in_progress_issues"],
            "pending": workload["pending_issues"],
            "overdue": overdue,
            "completion_rate": workload["completion_rate"],
        }

    async def time_section() -> dict[str, Any]:
        page = await client.list_time_entries(
            user_id=user_id, limit=_REPORT_PAGE, offset=0, from_date=from_date, to_date=to_date
        )
        return _hours_summary([e for e in page["items"] if in_projects(e)])

    dashboard: dict[str, Any] = {
        "generated_at": _now(),
        "filters": {
            "project_ids": sorted(project_ids) or None,
            "user_id": user_id,
            "from_date": from_date,
            "to_date": to_date,
        },
        "projects": await _section("projects", projects_section),
        "issues": await _section("issues", issues_section),
        "time_entries": await _section("time entries", time_section),
    }
    return _text("Dashboard data", dashboard)
