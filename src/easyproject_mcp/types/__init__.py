# IMPORT CONSTRAINT: types/ modules must only import from typing, stdlib, and each other.
"""Typed result contracts for the EasyProject client and tool layers."""

from __future__ import annotations

from easyproject_mcp.types.api import (
    EnumValue,
    ISODate,
    Issue,
    IssueList,
    NamedRef,
    Project,
    ProjectList,
    TimeEntry,
    TimeEntryList,
    User,
    UserList,
    Version,
    VersionList,
    WritePayload,
)

__all__ = [
    "EnumValue",
    "ISODate",
    "Issue",
    "IssueList",
    "NamedRef",
    "Project",
    "ProjectList",
    "TimeEntry",
    "TimeEntryList",
    "User",
    "UserList",
    "Version",
    "VersionList",
    "WritePayload",
]
