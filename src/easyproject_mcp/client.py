"""Async client for the EasyProject (Redmine-compatible) REST API.

Every upstream call goes through :meth:`EasyProjectClient._request`, which
takes a rate-limit token, attaches the API-key header and classifies the
response. Read operations are served from the shared :class:`ResponseCache`
when possible; write operations bypass it and then clear it entirely.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any, TypeVar

import httpx

from easyproject_mcp.cache import ResponseCache, make_cache_key
from easyproject_mcp.config import AppConfig, EntityKind
from easyproject_mcp.errors import ApiDecodeError, ApiStatusError, ApiTransportError, CacheError
from easyproject_mcp.ratelimit import TokenBucket
from easyproject_mcp.types import (
    Issue,
    IssueList,
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

logger = logging.getLogger(__name__)

T = TypeVar("T")

QueryValue = str | int | bool | Sequence[str] | None


# ---------------------------------------------------------------------------
# Query and body helpers
# ---------------------------------------------------------------------------


def build_query(search: str | None = None, **params: QueryValue) -> dict[str, str]:
    """Map optional parameters to query-string values, skipping unset ones.

    Booleans become ``1``/``0`` and sequences are comma-joined. A free-text
    *search* is sent as ``easy_query_q`` together with ``set_filter=1``.
    """
    query: dict[str, str] = {}
    for name, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            query[name] = "1" if value else "0"
        elif isinstance(value, str | int):
            query[name] = str(value)
        else:
            query[name] = ",".join(str(v) for v in value)
    if search is not None:
        query["easy_query_q"] = search
        query["set_filter"] = "1"
    return query


def _error_message(response: httpx.Response) -> str:
    text = response.text.strip()
    if text:
        try:
            body = json.loads(text)
        except ValueError:
            return text
        if isinstance(body, dict):
            for key in ("errors", "message", "error"):
                value = body.get(key)
                if isinstance(value, list) and value:
                    return "; ".join(str(v) for v in value)
                if isinstance(value, str) and value:
                    return value
        return text
    return response.reason_phrase or "no response body"


def _decode_collection(body: Any, plural: str) -> dict[str, Any]:
    if not isinstance(body, dict) or not isinstance(body.get(plural), list):
        msg = f"Expected a '{plural}' list in the response"
        raise ApiDecodeError(msg, body=json.dumps(body, default=str))
    items = body[plural]
    total = body.get("total_count", len(items))
    offset = body.get("offset", 0)
    limit = body.get("limit", len(items))
    for name, value in (("total_count", total), ("offset", offset), ("limit", limit)):
        if isinstance(value, bool) or not isinstance(value, int):
            msg = f"Expected integer '{name}' in the '{plural}' response"
            raise ApiDecodeError(msg, body=json.dumps(body, default=str))
    return {"items": items, "total_count": total, "offset": offset, "limit": limit}


def _decode_entity(body: Any, singular: str) -> dict[str, Any]:
    if not isinstance(body, dict) or not isinstance(body.get(singular), dict):
        msg = f"Expected a '{singular}' object in the response"
        raise ApiDecodeError(msg, body=json.dumps(body, default=str))
    entity: dict[str, Any] = body[singular]
    return entity


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class EasyProjectClient:
    """One instance per process; cache and limiter are shared by reference."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        api_key_header: str = "X-Redmine-API-Key",
        timeout: float = 30,
        user_agent: str | None = None,
        cache: ResponseCache | None = None,
        limiter: TokenBucket | None = None,
        entity_ttls: Mapping[EntityKind, float] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.cache = cache
        self.limiter = limiter
        self._entity_ttls = dict(entity_ttls) if entity_ttls else None
        headers = {api_key_header: api_key, "Accept": "application/json"}
        if user_agent:
            headers["User-Agent"] = user_agent
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> EasyProjectClient:
        """Build the client plus its cache and limiter from validated config."""
        cache = None
        entity_ttls = None
        if config.cache.enabled:
            cache = ResponseCache(config.cache.ttl_seconds, config.cache.max_entries)
            if config.cache.per_entity_ttl:
                entity_ttls = {kind: config.cache.ttl_for(kind) for kind in EntityKind}
        limiter = None
        if config.rate_limiting.enabled:
            limiter = TokenBucket(config.rate_limiting.requests_per_minute, config.rate_limiting.burst_size)
        return cls(
            config.easyproject.base_url,
            config.easyproject.api_key or "",
            api_key_header=config.easyproject.api_key_header,
            timeout=config.http.timeout_seconds,
            user_agent=config.http.user_agent,
            cache=cache,
            limiter=limiter,
            entity_ttls=entity_ttls,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> EasyProjectClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # -- executor ------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, str] | None = None,
        json_body: Mapping[str, Any] | None = None,
    ) -> Any:
        """Send one request and return the decoded JSON body.

        An empty 2xx body decodes to ``{}``.
        """
        if self.limiter is not None:
            await self.limiter.acquire()
        logger.debug("%s %s params=%s", method, path, dict(params or {}))
        try:
            response = await self._http.request(method, path, params=params, json=json_body)
        except httpx.TimeoutException as exc:
            msg = f"{method} {path} timed out: {exc}"
            raise ApiTransportError(msg) from exc
        except httpx.HTTPError as exc:
            msg = f"{method} {path} failed: {exc}"
            raise ApiTransportError(msg) from exc

        if not response.is_success:
            message = _error_message(response)
            logger.warning("%s %s -> HTTP %d: %s", method, path, response.status_code, message)
            raise ApiStatusError(response.status_code, message)

        text = response.text
        if not text.strip():
            return {}
        try:
            return json.loads(text)
        except ValueError as exc:
            msg = f"Invalid JSON from {method} {path}: {exc}"
            raise ApiDecodeError(msg, body=text) from exc

    # -- cache plumbing ------------------------------------------------------

    async def _cached_get(
        self,
        kind: EntityKind,
        key: str,
        path: str,
        params: Mapping[str, str],
        decode: Callable[[Any], T],
    ) -> T:
        if self.cache is not None:
            raw = self.cache.get(key)
            if raw is not None:
                logger.debug("Cache hit: %s", key)
                try:
                    return decode(raw)
                except ApiDecodeError as exc:
                    msg = f"Cached value for {key} no longer decodes: {exc}"
                    raise CacheError(msg) from exc
        raw = await self._request("GET", path, params=params)
        result = decode(raw)
        if self.cache is not None:
            ttl = self._entity_ttls[kind] if self._entity_ttls else None
            self.cache.put(key, raw, ttl=ttl)
        return result

    def _invalidate(self, scope: str) -> None:
        if self.cache is None:
            return
        removed = self.cache.invalidate_all()
        logger.info("Cache cleared after write to %s (%d entries)", scope, removed)

    async def _list(
        self, kind: EntityKind, op: str, path: str, plural: str, key_params: Sequence[Any], query: dict[str, str]
    ) -> Any:
        key = make_cache_key(op, *key_params)
        return await self._cached_get(kind, key, path, query, lambda body: _decode_collection(body, plural))

    async def _get(self, kind: EntityKind, op: str, path: str, singular: str, key_params: Sequence[Any], query: dict[str, str]) -> Any:
        key = make_cache_key(op, *key_params)
        return await self._cached_get(kind, key, path, query, lambda body: _decode_entity(body, singular))

    async def _create(self, path: str, singular: str, scope: str, data: WritePayload) -> Any:
        body = await self._request("POST", path, json_body={singular: data})
        self._invalidate(scope)
        return _decode_entity(body, singular)

    async def _update(
        self, path: str, singular: str, scope: str, data: WritePayload, refetch: Callable[[], Any]
    ) -> Any:
        body = await self._request("PUT", path, json_body={singular: data})
        self._invalidate(scope)
        if body == {}:
            # Upstream frequently answers a successful PUT with an empty body.
            logger.debug("Empty body from PUT %s, re-fetching", path)
            return await refetch()
        return _decode_entity(body, singular)

    async def _delete(self, path: str, scope: str) -> None:
        await self._request("DELETE", path)
        self._invalidate(scope)

    # -- projects ------------------------------------------------------------

    async def list_projects(
        self,
        limit: int | None = None,
        offset: int | None = None,
        include_archived: bool | None = None,
        search: str | None = None,
    ) -> ProjectList:
        query = build_query(search, limit=limit, offset=offset, include_archived=include_archived)
        result: ProjectList = await self._list(
            EntityKind.PROJECT, "list_projects", "/projects.json", "projects",
            (limit, offset, include_archived, search), query,
        )
        return result

    async def get_project(self, project_id: int, include: Sequence[str] | None = None) -> Project:
        include_list = list(include) if include is not None else None
        result: Project = await self._get(
            EntityKind.PROJECT, "get_project", f"/projects/{project_id}.json", "project",
            (project_id, include_list), build_query(include=include_list),
        )
        return result

    async def create_project(self, data: WritePayload) -> Project:
        result: Project = await self._create("/projects.json", "project", "projects", data)
        return result

    async def update_project(self, project_id: int, data: WritePayload) -> Project:
        result: Project = await self._update(
            f"/projects/{project_id}.json", "project", "projects", data, lambda: self.get_project(project_id)
        )
        return result

    async def delete_project(self, project_id: int) -> None:
        await self._delete(f"/projects/{project_id}.json", "projects")

    # -- issues --------------------------------------------------------------

    async def list_issues(
        self,
        project_id: int | None = None,
        limit: int | None = None,
        offset: int | None = None,
        include: Sequence[str] | None = None,
        *,
        status_id: int | str | None = None,
        priority_id: int | None = None,
        tracker_id: int | None = None,
        assigned_to_id: int | str | None = None,
        fixed_version_id: int | None = None,
        sort: str | None = None,
        search: str | None = None,
    ) -> IssueList:
        include_list = list(include) if include is not None else None
        query = build_query(
            search,
            project_id=project_id,
            limit=limit,
            offset=offset,
            include=include_list,
            status_id=status_id,
            priority_id=priority_id,
            tracker_id=tracker_id,
            assigned_to_id=assigned_to_id,
            fixed_version_id=fixed_version_id,
            sort=sort,
        )
        key_params = (
            project_id, limit, offset, include_list, status_id, priority_id,
            tracker_id, assigned_to_id, fixed_version_id, sort, search,
        )
        result: IssueList = await self._list(
            EntityKind.ISSUE, "list_issues", "/issues.json", "issues", key_params, query
        )
        return result

    async def get_issue(self, issue_id: int, include: Sequence[str] | None = None) -> Issue:
        include_list = list(include) if include is not None else None
        result: Issue = await self._get(
            EntityKind.ISSUE, "get_issue", f"/issues/{issue_id}.json", "issue",
            (issue_id, include_list), build_query(include=include_list),
        )
        return result

    async def create_issue(self, data: WritePayload) -> Issue:
        result: Issue = await self._create("/issues.json", "issue", "issues", data)
        return result

    async def update_issue(self, issue_id: int, data: WritePayload) -> Issue:
        result: Issue = await self._update(
            f"/issues/{issue_id}.json", "issue", "issues", data, lambda: self.get_issue(issue_id)
        )
        return result

    async def delete_issue(self, issue_id: int) -> None:
        await self._delete(f"/issues/{issue_id}.json", "issues")

    # -- users ---------------------------------------------------------------

    async def list_users(
        self,
        limit: int | None = None,
        offset: int | None = None,
        status: int | None = None,
        group_id: int | None = None,
        search: str | None = None,
    ) -> UserList:
        query = build_query(search, limit=limit, offset=offset, status=status, group_id=group_id)
        result: UserList = await self._list(
            EntityKind.USER, "list_users", "/users.json", "users",
            (limit, offset, status, group_id, search), query,
        )
        return result

    async def get_user(self, user_id: int, include: Sequence[str] | None = None) -> User:
        include_list = list(include) if include is not None else None
        result: User = await self._get(
            EntityKind.USER, "get_user", f"/users/{user_id}.json", "user",
            (user_id, include_list), build_query(include=include_list),
        )
        return result

    # -- time entries --------------------------------------------------------

    async def list_time_entries(
        self,
        project_id: int | None = None,
        user_id: int | None = None,
        limit: int | None = None,
        offset: int | None = None,
        *,
        issue_id: int | None = None,
        from_date: str | None = None,
        to_date: str | None = None,
    ) -> TimeEntryList:
        query = build_query(
            project_id=project_id,
            user_id=user_id,
            issue_id=issue_id,
            limit=limit,
            offset=offset,
            **{"from": from_date, "to": to_date},
        )
        result: TimeEntryList = await self._list(
            EntityKind.TIME_ENTRY, "list_time_entries", "/time_entries.json", "time_entries",
            (project_id, user_id, limit, offset, issue_id, from_date, to_date), query,
        )
        return result

    async def get_time_entry(self, entry_id: int) -> TimeEntry:
        result: TimeEntry = await self._get(
            EntityKind.TIME_ENTRY, "get_time_entry", f"/time_entries/{entry_id}.json", "time_entry",
            (entry_id,), {},
        )
        return result

    async def create_time_entry(self, data: WritePayload) -> TimeEntry:
        result: TimeEntry = await self._create("/time_entries.json", "time_entry", "time_entries", data)
        return result

    async def update_time_entry(self, entry_id: int, data: WritePayload) -> TimeEntry:
        result: TimeEntry = await self._update(
            f"/time_entries/{entry_id}.json", "time_entry", "time_entries", data,
            lambda: self.get_time_entry(entry_id),
        )
        return result

    async def delete_time_entry(self, entry_id: int) -> None:
        await self._delete(f"/time_entries/{entry_id}.json", "time_entries")

    # -- milestones (upstream "versions") -------------------------------------

    async def list_milestones(
        self,
        project_id: int | None = None,
        limit: int | None = None,
        offset: int | None = None,
        status: str | None = None,
        search: str | None = None,
    ) -> VersionList:
        query = build_query(search, project_id=project_id, limit=limit, offset=offset, status=status)
        result: VersionList = await self._list(
            EntityKind.MILESTONE, "list_milestones", "/versions.json", "versions",
            (project_id, limit, offset, status, search), query,
        )
        return result

    async def get_milestone(self, milestone_id: int) -> Version:
        result: Version = await self._get(
            EntityKind.MILESTONE, "get_milestone", f"/versions/{milestone_id}.json", "version",
            (milestone_id,), {},
        )
        return result

    async def create_milestone(self, data: WritePayload) -> Version:
        result: Version = await self._create("/versions.json", "version", "milestones", data)
        return result

    async def update_milestone(self, milestone_id: int, data: WritePayload) -> Version:
        result: Version = await self._update(
            f"/versions/{milestone_id}.json", "version", "milestones", data,
            lambda: self.get_milestone(milestone_id),
        )
        return result

    async def delete_milestone(self, milestone_id: int) -> None:
        await self._delete(f"/versions/{milestone_id}.json", "milestones")
