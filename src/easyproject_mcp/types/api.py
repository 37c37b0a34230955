"""Shapes of upstream EasyProject entities and collection results.

Upstream payloads vary between instances (custom fields, plugins), so entity
TypedDicts are ``total=False`` and describe the keys this package reads.
"""

from __future__ import annotations

from typing import Any, NewType, TypedDict

ISODate = NewType("ISODate", str)


class NamedRef(TypedDict, total=False):
    """``{"id": ..., "name": ...}`` reference embedded in other entities."""

    id: int
    name: str


class Project(TypedDict, total=False):
    id: int
    name: str
    identifier: str
    description: str
    status: int
    is_public: bool
    parent: NamedRef
    created_on: str
    updated_on: str


class Issue(TypedDict, total=False):
    id: int
    subject: str
    description: str
    project: NamedRef
    tracker: NamedRef
    status: NamedRef
    priority: NamedRef
    author: NamedRef
    assigned_to: NamedRef
    fixed_version: NamedRef
    parent: NamedRef
    start_date: ISODate
    due_date: ISODate
    done_ratio: int
    estimated_hours: float
    spent_hours: float
    created_on: str
    updated_on: str
    closed_on: str


class User(TypedDict, total=False):
    id: int
    login: str
    firstname: str
    lastname: str
    mail: str
    admin: bool
    status: int
    created_on: str
    last_login_on: str


class TimeEntry(TypedDict, total=False):
    id: int
    project: NamedRef
    issue: NamedRef
    user: NamedRef
    activity: NamedRef
    hours: float
    comments: str
    spent_on: ISODate
    created_on: str
    updated_on: str


class Version(TypedDict, total=False):
    """A milestone. The upstream calls these "versions"."""

    id: int
    project: NamedRef
    name: str
    description: str
    status: str
    due_date: ISODate
    effective_date: ISODate
    sharing: str
    created_on: str
    updated_on: str


class ProjectList(TypedDict):
    items: list[Project]
    total_count: int
    offset: int
    limit: int


class IssueList(TypedDict):
    items: list[Issue]
    total_count: int
    offset: int
    limit: int


class UserList(TypedDict):
    items: list[User]
    total_count: int
    offset: int
    limit: int


class TimeEntryList(TypedDict):
    items: list[TimeEntry]
    total_count: int
    offset: int
    limit: int


class VersionList(TypedDict):
    items: list[Version]
    total_count: int
    offset: int
    limit: int


class EnumValue(TypedDict):
    id: int
    name: str


# Write payloads are passed through to the upstream as-is.
WritePayload = dict[str, Any]
