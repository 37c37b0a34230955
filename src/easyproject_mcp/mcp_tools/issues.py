"""MCP tools for issues (tasks), including assignment, completion and enumeration discovery."""

from __future__ import annotations

from typing import Any

from easyproject_mcp.config import ToolCategory
from easyproject_mcp.enumerations import MAX_PAGES, PAGE_SIZE, scan_issue_enumerations
from easyproject_mcp.mcp_tools.common import (
    DATE_SCHEMA,
    INCLUDE_SCHEMA,
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
from easyproject_mcp.validation import parse_date, sanitize_text

_CATEGORY = ToolCategory.ISSUES
_WRITABLE = (
    "project_id",
    "subject",
    "description",
    "tracker_id",
    "status_id",
    "priority_id",
    "assigned_to_id",
    "fixed_version_id",
    "parent_issue_id",
    "start_date",
    "due_date",
    "estimated_hours",
    "done_ratio",
    "notes",
)

_ISSUE_FIELDS: dict[str, Any] = {
    "project_id": id_prop("Project ID"),
    "subject": {"type": "string", "description": "Issue subject"},
    "description": {"type": "string", "description": "Issue description"},
    "tracker_id": id_prop("Tracker ID (see get_issue_enumerations)"),
    "status_id": id_prop("Status ID (see get_issue_enumerations)"),
    "priority_id": id_prop("Priority ID (see get_issue_enumerations)"),
    "assigned_to_id": id_prop("Assignee user ID"),
    "fixed_version_id": id_prop("Milestone (version) ID"),
    "parent_issue_id": id_prop("Parent issue ID"),
    "start_date": DATE_SCHEMA,
    "due_date": DATE_SCHEMA,
    "estimated_hours": {"type": "number", "minimum": 0, "description": "Estimated effort in hours"},
    "done_ratio": {"type": "integer", "minimum": 0, "maximum": 100, "description": "Percent done"},
}


def register() -> list[ToolSpec]:
    """Return the issue tool table."""
    return [
        ToolSpec(
            name="list_issues",
            description="List issues with optional filters (project, status, priority, tracker, assignee, milestone)",
            input_schema={
                "type": "object",
                "properties": {
                    "project_id": id_prop("Filter by project ID"),
                    **pagination_props(),
                    "include": INCLUDE_SCHEMA,
                    "status_id": {
                        "oneOf": [
                            {"type": "integer", "minimum": 1},
                            {"type": "string", "enum": ["open", "closed", "*"]},
                        ],
                        "description": "Status ID, or open / closed / * for all",
                    },
                    "priority_id": id_prop("Filter by priority ID"),
                    "tracker_id": id_prop("Filter by tracker ID"),
                    "assigned_to_id": {
                        "oneOf": [{"type": "integer", "minimum": 1}, {"type": "string", "enum": ["me"]}],
                        "description": "Assignee user ID, or 'me'",
                    },
                    "fixed_version_id": id_prop("Filter by milestone (version) ID"),
                    "sort": {"type": "string", "description": "Sort expression, e.g. 'priority:desc,updated_on'"},
                    "search": {"type": "string", "description": "Free-text search"},
                },
                "additionalProperties": False,
            },
            handler=_handle_list_issues,
            category=_CATEGORY,
        ),
        ToolSpec(
            name="get_issue",
            description="Get issue details by ID",
            input_schema={
                "type": "object",
                "properties": {"id": id_prop("Issue ID"), "include": INCLUDE_SCHEMA},
                "required": ["id"],
                "additionalProperties": False,
            },
            handler=_handle_get_issue,
            category=_CATEGORY,
        ),
        ToolSpec(
            name="create_issue",
            description="Create a new issue in a project",
            input_schema={
                "type": "object",
                "properties": _ISSUE_FIELDS,
                "required": ["project_id", "subject"],
                "additionalProperties": False,
            },
            handler=_handle_create_issue,
            category=_CATEGORY,
        ),
        ToolSpec(
            name="update_issue",
            description="Update fields of an existing issue; notes are added as a journal comment",
            input_schema={
                "type": "object",
                "properties": {
                    "id": id_prop("Issue ID"),
                    **_ISSUE_FIELDS,
                    "notes": {"type": "string", "description": "Comment to add with the change"},
                },
                "required": ["id"],
                "additionalProperties": False,
            },
            handler=_handle_update_issue,
            category=_CATEGORY,
        ),
        ToolSpec(
            name="delete_issue",
            description="Delete an issue. This cannot be undone.",
            input_schema={
                "type": "object",
                "properties": {"id": id_prop("Issue ID")},
                "required": ["id"],
                "additionalProperties": False,
            },
            handler=_handle_delete_issue,
            category=_CATEGORY,
        ),
        ToolSpec(
            name="assign_issue",
            description="Assign an issue to a user",
            input_schema={
                "type": "object",
                "properties": {
                    "id": id_prop("Issue ID"),
                    "assigned_to_id": id_prop("User ID to assign"),
                    "notes": {"type": "string", "description": "Optional comment"},
                },
                "required": ["id", "assigned_to_id"],
                "additionalProperties": False,
            },
            handler=_handle_assign_issue,
            category=_CATEGORY,
        ),
        ToolSpec(
            name="complete_task",
            description="Mark an issue as done: sets percent done (default 100) and optionally a closing status",
            input_schema={
                "type": "object",
                "properties": {
                    "id": id_prop("Issue ID"),
                    "done_ratio": {"type": "integer", "minimum": 0, "maximum": 100, "default": 100},
                    "status_id": id_prop("Closing status ID (see get_issue_enumerations)"),
                    "notes": {"type": "string", "description": "Optional completion comment"},
                },
                "required": ["id"],
                "additionalProperties": False,
            },
            handler=_handle_complete_task,
            category=_CATEGORY,
        ),
        ToolSpec(
            name="get_issue_enumerations",
            description=(
                "Discover status, priority and tracker IDs in use by scanning issues "
                f"(pages of {PAGE_SIZE}, at most {MAX_PAGES} pages). Expensive; call once and reuse."
            ),
            input_schema={
                "type": "object",
                "properties": {"project_id": id_prop("Limit the scan to one project")},
                "additionalProperties": False,
            },
            handler=_handle_get_issue_enumerations,
            category=_CATEGORY,
        ),
    ]


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _check_dates(arguments: dict[str, Any]) -> None:
    start = due = None
    if "start_date" in arguments:
        start, err = parse_date(arguments["start_date"], "start_date")
        _require(err)
    if "due_date" in arguments:
        due, err = parse_date(arguments["due_date"], "due_date")
        _require(err)
    if start is not None and due is not None and start > due:
        _require(f"start_date ({arguments['start_date']}) must not be after due_date ({arguments['due_date']})")


def _issue_line(issue: dict[str, Any]) -> str:
    return (
        f"#{issue.get('id')} {issue.get('subject', '')} "
        f"[{_name(issue.get('status'))}, {_name(issue.get('priority'))}] "
        f"-> {_name(issue.get('assigned_to'), 'unassigned')}"
    )


async def _handle_list_issues(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    limit, offset = _resolve_pagination(ctx, _CATEGORY, arguments)
    page = await ctx.client.list_issues(
        project_id=arguments.get("project_id"),
        limit=limit,
        offset=offset,
        include=arguments.get("include"),
        status_id=arguments.get("status_id"),
        priority_id=arguments.get("priority_id"),
        tracker_id=arguments.get("tracker_id"),
        assigned_to_id=arguments.get("assigned_to_id"),
        fixed_version_id=arguments.get("fixed_version_id"),
        sort=arguments.get("sort"),
        search=arguments.get("search"),
    )
    return _text(_page_summary("issues", dict(page)), page)


async def _handle_get_issue(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    issue = await ctx.client.get_issue(arguments["id"], include=arguments.get("include"))
    return _text(f"Issue {_issue_line(dict(issue))}", issue)


async def _handle_create_issue(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    _check_dates(arguments)
    payload = _pick(arguments, *_WRITABLE)
    payload["subject"], err = sanitize_text(arguments["subject"], "subject")
    _require(err)
    issue = await ctx.client.create_issue(payload)
    return _text(f"Created issue #{issue.get('id')}: {issue.get('subject', payload['subject'])}", issue)


async def _handle_update_issue(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    _check_dates(arguments)
    payload = _pick(arguments, *_WRITABLE)
    _require_changes(payload, "update_issue")
    if "subject" in payload:
        payload["subject"], err = sanitize_text(payload["subject"], "subject")
        _require(err)
    issue = await ctx.client.update_issue(arguments["id"], payload)
    return _text(f"Updated issue {_issue_line(dict(issue))}", issue)


async def _handle_delete_issue(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    await ctx.client.delete_issue(arguments["id"])
    return f"Deleted issue #{arguments['id']}"


async def _handle_assign_issue(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    payload = _pick(arguments, "assigned_to_id", "notes")
    issue = await ctx.client.update_issue(arguments["id"], payload)
    fallback = f"user #{arguments['assigned_to_id']}"
    assignee = _name(issue.get("assigned_to"), fallback)
    return _text(f"Assigned issue #{arguments['id']} to {assignee}", issue)


async def _handle_complete_task(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    payload: dict[str, Any] = {"done_ratio": arguments.get("done_ratio", 100)}
    payload.update(_pick(arguments, "status_id", "notes"))
    issue = await ctx.client.update_issue(arguments["id"], payload)
    return _text(
        f"Completed issue #{arguments['id']} ({issue.get('done_ratio', payload['done_ratio'])}% done, "
        f"status {_name(issue.get('status'))})",
        issue,
    )


async def _handle_get_issue_enumerations(ctx: ToolContext, arguments: dict[str, Any]) -> str:
    result = await scan_issue_enumerations(ctx.client, project_id=arguments.get("project_id"))
    lines = [f"Scanned {result.issues_scanned} issues in {result.pages_fetched} page(s)."]
    if result.truncated:
        lines.append(f"Scan stopped at {MAX_PAGES} pages; some values may be missing.")
    for title, values in (
        ("Statuses", result.statuses),
        ("Priorities", result.priorities),
        ("Trackers", result.trackers),
    ):
        lines.append(f"{title}:")
        lines.extend(f"  {v['id']} = {v['name']}" for v in values)
        if not values:
            lines.append("  (none found)")
    return _text("\n".join(lines), result.to_dict())
