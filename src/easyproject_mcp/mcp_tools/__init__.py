"""MCP tool tables, one module per tool category."""

from __future__ import annotations

from easyproject_mcp.registry import ToolSpec


def all_tool_specs() -> list[ToolSpec]:
    """Every tool from every category, in registration order."""
    from easyproject_mcp.mcp_tools import issues, milestones, projects, reports, time_entries, users

    specs: list[ToolSpec] = []
    for module in (projects, issues, users, time_entries, milestones, reports):
        specs.extend(module.register())
    return specs
