"""Discover issue status, priority and tracker values by scanning issues.

The upstream has no cheap enumeration endpoint usable with an API key, so the
distinct ``{id, name}`` pairs are collected from issue pages. The scan is
bounded to :data:`MAX_PAGES` pages; larger datasets may yield incomplete
lists, which is logged but not reported as an error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from easyproject_mcp.types import EnumValue

if TYPE_CHECKING:
    from easyproject_mcp.client import EasyProjectClient

logger = logging.getLogger(__name__)

PAGE_SIZE = 100
MAX_PAGES = 20


@dataclass
class IssueEnumerations:
    statuses: list[EnumValue] = field(default_factory=list)
    priorities: list[EnumValue] = field(default_factory=list)
    trackers: list[EnumValue] = field(default_factory=list)
    pages_fetched: int = 0
    issues_scanned: int = 0
    truncated: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "statuses": self.statuses,
            "priorities": self.priorities,
            "trackers": self.trackers,
            "pages_fetched": self.pages_fetched,
            "issues_scanned": self.issues_scanned,
            "truncated": self.truncated,
        }


def _collect(target: dict[int, str], ref: Any) -> None:
    if isinstance(ref, dict) and isinstance(ref.get("id"), int) and "name" in ref:
        target[ref["id"]] = str(ref["name"])


def _sorted(values: dict[int, str]) -> list[EnumValue]:
    return [EnumValue(id=k, name=values[k]) for k in sorted(values)]


async def scan_issue_enumerations(client: EasyProjectClient, project_id: int | None = None) -> IssueEnumerations:
    statuses: dict[int, str] = {}
    priorities: dict[int, str] = {}
    trackers: dict[int, str] = {}
    offset = 0
    pages = 0
    scanned = 0
    truncated = False

    while True:
        if pages >= MAX_PAGES:
            truncated = True
            logger.warning(
                "Enumeration scan stopped after %d pages (%d issues); results may be incomplete",
                pages,
                scanned,
            )
            break
        page = await client.list_issues(project_id=project_id, limit=PAGE_SIZE, offset=offset)
        pages += 1
        issues = page["items"]
        if not issues:
            break
        for issue in issues:
            _collect(statuses, issue.get("status"))
            _collect(priorities, issue.get("priority"))
            _collect(trackers, issue.get("tracker"))
        scanned += len(issues)
        offset += PAGE_SIZE
        if offset >= page["total_count"]:
            break

    logger.debug("Enumeration scan: %d pages, %d issues", pages, scanned)
    return IssueEnumerations(
        statuses=_sorted(statuses),
        priorities=_sorted(priorities),
        trackers=_sorted(trackers),
        pages_fetched=pages,
        issues_scanned=scanned,
        truncated=truncated,
    )
