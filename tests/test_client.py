"""Tests for the EasyProject client: executor, cache-aware operations, invalidation."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from easyproject_mcp.cache import ResponseCache, make_cache_key
from easyproject_mcp.client import EasyProjectClient, build_query
from easyproject_mcp.config import EntityKind
from easyproject_mcp.errors import ApiDecodeError, ApiStatusError, ApiTransportError, CacheError
from easyproject_mcp.ratelimit import TokenBucket
from tests._fakes import API_KEY, BASE_URL, FakeClock, FakeUpstream, issue, make_config, sent_json

PROJECTS = {"projects": [{"id": 1, "name": "Alpha"}], "total_count": 1, "offset": 0, "limit": 25}


class TestBuildQuery:
    def test_skips_unset(self) -> None:
        assert build_query(limit=None, offset=0) == {"offset": "0"}

    def test_booleans_and_lists(self) -> None:
        assert build_query(include_archived=False, include=["journals", "relations"]) == {
            "include_archived": "0",
            "include": "journals,relations",
        }

    def test_search_adds_filter_flag(self) -> None:
        assert build_query("bug", limit=5) == {"limit": "5", "easy_query_q": "bug", "set_filter": "1"}

    def test_no_filter_flag_without_search(self) -> None:
        assert "set_filter" not in build_query(limit=5)


class TestExecutor:
    async def test_sends_api_key_header(self, client: EasyProjectClient, upstream: FakeUpstream) -> None:
        upstream.add("GET", "/projects.json", json_body=PROJECTS)
        await client.list_projects()
        request = upstream.requests[0]
        assert request.headers["X-Redmine-API-Key"] == API_KEY
        assert str(request.url).startswith(BASE_URL)

    async def test_custom_header_name(self, upstream: FakeUpstream) -> None:
        upstream.add("GET", "/projects.json", json_body=PROJECTS)
        async with EasyProjectClient(
            BASE_URL, API_KEY, api_key_header="X-Api-Key", transport=upstream.transport
        ) as c:
            await c.list_projects()
        assert upstream.requests[0].headers["X-Api-Key"] == API_KEY

    async def test_status_error_uses_errors_list(self, client: EasyProjectClient, upstream: FakeUpstream) -> None:
        upstream.add("GET", "/issues/9.json", status=422, json_body={"errors": ["Subject cannot be blank"]})
        with pytest.raises(ApiStatusError) as exc_info:
            await client.get_issue(9)
        assert exc_info.value.status == 422
        assert exc_info.value.message == "Subject cannot be blank"
        assert "HTTP 422" in str(exc_info.value)

    async def test_status_error_plain_text_body(self, client: EasyProjectClient, upstream: FakeUpstream) -> None:
        upstream.add("GET", "/issues/9.json", status=500, text="Internal meltdown")
        with pytest.raises(ApiStatusError) as exc_info:
            await client.get_issue(9)
        assert exc_info.value.message == "Internal meltdown"

    async def test_status_error_empty_body_uses_reason(self, client: EasyProjectClient, upstream: FakeUpstream) -> None:
        upstream.add("GET", "/issues/9.json", status=502)
        with pytest.raises(ApiStatusError) as exc_info:
            await client.get_issue(9)
        assert exc_info.value.message == "Bad Gateway"

    async def test_invalid_json_carries_body(self, client: EasyProjectClient, upstream: FakeUpstream) -> None:
        upstream.add("GET", "/projects.json", text="<html>login</html>")
        with pytest.raises(ApiDecodeError) as exc_info:
            await client.list_projects()
        assert exc_info.value.body == "<html>login</html>"
        assert "<html>login</html>" in str(exc_info.value)

    async def test_wrong_shape_is_decode_error(self, client: EasyProjectClient, upstream: FakeUpstream) -> None:
        upstream.add("GET", "/projects.json", json_body={"issues": []})
        with pytest.raises(ApiDecodeError, match="'projects'"):
            await client.list_projects()

    async def test_timeout_is_transport_error(self, client: EasyProjectClient, upstream: FakeUpstream) -> None:
        def slow(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        upstream.add("GET", "/projects.json", handler=slow)
        with pytest.raises(ApiTransportError, match="timed out"):
            await client.list_projects()

    async def test_connect_error_is_transport_error(self, client: EasyProjectClient, upstream: FakeUpstream) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        upstream.add("GET", "/projects.json", handler=refuse)
        with pytest.raises(ApiTransportError):
            await client.list_projects()
        assert len(upstream.requests) == 1

    async def test_empty_delete_body_is_success(self, client: EasyProjectClient, upstream: FakeUpstream) -> None:
        upstream.add("DELETE", "/issues/3.json", status=204)
        await client.delete_issue(3)
        assert len(upstream.calls("DELETE")) == 1

    async def test_whitespace_body_is_empty_object(self, client: EasyProjectClient, upstream: FakeUpstream) -> None:
        upstream.add("DELETE", "/projects/3.json", text="  \n ")
        await client.delete_project(3)

    async def test_failed_write_leaves_cache(self, client: EasyProjectClient, upstream: FakeUpstream) -> None:
        upstream.add("GET", "/projects.json", json_body=PROJECTS)
        upstream.add("DELETE", "/projects/1.json", status=403, json_body={"errors": ["Forbidden"]})
        await client.list_projects()
        with pytest.raises(ApiStatusError):
            await client.delete_project(1)
        assert client.cache is not None and len(client.cache) == 1


class TestCachedReads:
    async def test_mutating_a_result_does_not_touch_the_cache(
        self, client: EasyProjectClient, upstream: FakeUpstream
    ) -> None:
        upstream.add("GET", "/issues/1.json", json_body={"issue": {"id": 1, "subject": "orig", "tags": ["a"]}})
        first = await client.get_issue(1)
        first["subject"] = "mutated by caller"
        first["tags"].append("b")
        second = await client.get_issue(1)
        assert second["subject"] == "orig"
        assert second["tags"] == ["a"]
        second["subject"] = "mutated again"
        third = await client.get_issue(1)
        assert third["subject"] == "orig"
        assert len(upstream.calls("GET", "/issues/1.json")) == 1

    async def test_identical_list_served_from_cache(self, client: EasyProjectClient, upstream: FakeUpstream) -> None:
        upstream.add("GET", "/projects.json", json_body=PROJECTS)
        first = await client.list_projects(limit=25, offset=0, include_archived=False)
        second = await client.list_projects(limit=25, offset=0, include_archived=False)
        assert first == second
        assert first["items"] == PROJECTS["projects"]
        assert len(upstream.calls("GET", "/projects.json")) == 1
        assert dict(upstream.requests[0].url.params) == {"limit": "25", "offset": "0", "include_archived": "0"}

    async def test_different_params_fetch_again(self, client: EasyProjectClient, upstream: FakeUpstream) -> None:
        upstream.add("GET", "/projects.json", json_body=PROJECTS)
        await client.list_projects(limit=25, offset=0)
        await client.list_projects(limit=25, offset=25)
        await client.list_projects(limit=25, offset=0, include_archived=False)
        assert len(upstream.calls("GET", "/projects.json")) == 3

    async def test_without_cache_every_call_fetches(self, upstream: FakeUpstream) -> None:
        upstream.add("GET", "/projects.json", json_body=PROJECTS)
        async with EasyProjectClient(BASE_URL, API_KEY, transport=upstream.transport) as c:
            await c.list_projects(limit=25)
            await c.list_projects(limit=25)
        assert len(upstream.requests) == 2

    async def test_cache_hit_takes_no_rate_limit_token(self, upstream: FakeUpstream) -> None:
        upstream.add("GET", "/projects.json", json_body=PROJECTS)
        limiter = TokenBucket(0, 1)
        async with EasyProjectClient(
            BASE_URL, API_KEY, cache=ResponseCache(300, 10), limiter=limiter, transport=upstream.transport
        ) as c:
            await c.list_projects(limit=25)
            # The bucket is empty and never refills; only a cache hit can finish.
            await asyncio.wait_for(c.list_projects(limit=25), timeout=1)
        assert len(upstream.requests) == 1

    async def test_collection_defaults_when_counts_missing(
        self, client: EasyProjectClient, upstream: FakeUpstream
    ) -> None:
        upstream.add("GET", "/users.json", json_body={"users": [{"id": 1}, {"id": 2}]})
        page = await client.list_users()
        assert page == {"items": [{"id": 1}, {"id": 2}], "total_count": 2, "offset": 0, "limit": 2}

    async def test_cached_value_that_no_longer_decodes(self, client: EasyProjectClient, upstream: FakeUpstream) -> None:
        assert client.cache is not None
        client.cache.put(make_cache_key("get_issue", 5, None), {"unexpected": True})
        with pytest.raises(CacheError):
            await client.get_issue(5)
        assert upstream.requests == []

    async def test_issue_filters_and_search(self, client: EasyProjectClient, upstream: FakeUpstream) -> None:
        upstream.add("GET", "/issues.json", json_body={"issues": [], "total_count": 0, "offset": 0, "limit": 25})
        await client.list_issues(
            project_id=7,
            limit=25,
            offset=0,
            include=["journals", "relations"],
            status_id="open",
            assigned_to_id="me",
            sort="priority:desc",
            search="login",
        )
        params = dict(upstream.requests[0].url.params)
        assert params == {
            "project_id": "7",
            "limit": "25",
            "offset": "0",
            "include": "journals,relations",
            "status_id": "open",
            "assigned_to_id": "me",
            "sort": "priority:desc",
            "easy_query_q": "login",
            "set_filter": "1",
        }

    async def test_time_entry_date_range_params(self, client: EasyProjectClient, upstream: FakeUpstream) -> None:
        upstream.add("GET", "/time_entries.json", json_body={"time_entries": [], "total_count": 0})
        await client.list_time_entries(user_id=3, from_date="2024-01-01", to_date="2024-01-31")
        assert dict(upstream.requests[0].url.params) == {"user_id": "3", "from": "2024-01-01", "to": "2024-01-31"}

    async def test_milestones_use_versions_endpoint(self, client: EasyProjectClient, upstream: FakeUpstream) -> None:
        upstream.add("GET", "/versions.json", json_body={"versions": [{"id": 4, "name": "v1"}], "total_count": 1})
        upstream.add("GET", "/versions/4.json", json_body={"version": {"id": 4, "name": "v1"}})
        page = await client.list_milestones(project_id=1, status="open")
        version = await client.get_milestone(4)
        assert page["items"][0]["name"] == "v1"
        assert version == {"id": 4, "name": "v1"}
        assert dict(upstream.requests[0].url.params) == {"project_id": "1", "status": "open"}

    async def test_per_entity_ttl(self, upstream: FakeUpstream, clock: FakeClock) -> None:
        upstream.add("GET", "/issues/5.json", json_body={"issue": issue(5)})
        upstream.add("GET", "/projects/1.json", json_body={"project": {"id": 1}})
        ttls = {kind: 300.0 for kind in EntityKind}
        ttls[EntityKind.ISSUE] = 10.0
        async with EasyProjectClient(
            BASE_URL,
            API_KEY,
            cache=ResponseCache(300, 10, clock=clock),
            entity_ttls=ttls,
            transport=upstream.transport,
        ) as c:
            await c.get_issue(5)
            await c.get_project(1)
            clock.advance(11)
            await c.get_issue(5)
            await c.get_project(1)
        assert len(upstream.calls("GET", "/issues/5.json")) == 2
        assert len(upstream.calls("GET", "/projects/1.json")) == 1


class TestWrites:
    async def test_update_with_empty_body_refetches(self, client: EasyProjectClient, upstream: FakeUpstream) -> None:
        upstream.add("PUT", "/issues/5.json", status=204)
        upstream.add("GET", "/issues/5.json", json_body={"issue": issue(5, done_ratio=100)})
        result = await client.update_issue(5, {"done_ratio": 100})
        assert result["id"] == 5
        assert result["done_ratio"] == 100
        assert sent_json(upstream.calls("PUT")[0]) == {"issue": {"done_ratio": 100}}

    async def test_refetch_after_update_bypasses_stale_cache(
        self, client: EasyProjectClient, upstream: FakeUpstream
    ) -> None:
        state = {"done_ratio": 0}

        def current(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"issue": issue(5, done_ratio=state["done_ratio"])})

        def update(request: httpx.Request) -> httpx.Response:
            state.update(sent_json(request)["issue"])
            return httpx.Response(200, text="")

        upstream.add("GET", "/issues/5.json", handler=current)
        upstream.add("PUT", "/issues/5.json", handler=update)
        assert (await client.get_issue(5))["done_ratio"] == 0
        assert (await client.update_issue(5, {"done_ratio": 100}))["done_ratio"] == 100
        assert (await client.get_issue(5))["done_ratio"] == 100
        assert len(upstream.calls("GET", "/issues/5.json")) == 2

    async def test_update_with_body_does_not_refetch(self, client: EasyProjectClient, upstream: FakeUpstream) -> None:
        upstream.add("PUT", "/projects/1.json", json_body={"project": {"id": 1, "name": "Renamed"}})
        result = await client.update_project(1, {"name": "Renamed"})
        assert result == {"id": 1, "name": "Renamed"}
        assert upstream.calls("GET") == []

    async def test_create_wraps_payload(self, client: EasyProjectClient, upstream: FakeUpstream) -> None:
        upstream.add("POST", "/time_entries.json", status=201, json_body={"time_entry": {"id": 11, "hours": 2}})
        entry = await client.create_time_entry({"issue_id": 5, "hours": 2})
        assert entry["id"] == 11
        assert sent_json(upstream.requests[0]) == {"time_entry": {"issue_id": 5, "hours": 2}}

    async def test_any_write_clears_whole_cache(self, client: EasyProjectClient, upstream: FakeUpstream) -> None:
        upstream.add("GET", "/projects.json", json_body=PROJECTS)
        upstream.add("GET", "/users/2.json", json_body={"user": {"id": 2}})
        upstream.add("DELETE", "/versions/9.json", status=204)
        await client.list_projects(limit=25)
        await client.get_user(2)
        await client.delete_milestone(9)
        await client.list_projects(limit=25)
        await client.get_user(2)
        assert len(upstream.calls("GET", "/projects.json")) == 2
        assert len(upstream.calls("GET", "/users/2.json")) == 2

    async def test_write_logs_invalidation(
        self, client: EasyProjectClient, upstream: FakeUpstream, caplog: pytest.LogCaptureFixture
    ) -> None:
        upstream.add("POST", "/issues.json", status=201, json_body={"issue": issue(1)})
        with caplog.at_level("INFO", logger="easyproject_mcp.client"):
            await client.create_issue({"project_id": 1, "subject": "x"})
        assert any("Cache cleared after write to issues" in r.getMessage() for r in caplog.records)


class TestFromConfig:
    async def test_builds_cache_and_limiter(self) -> None:
        config = make_config({"rate_limiting": {"requests_per_minute": 120, "burst_size": 4}})
        async with EasyProjectClient.from_config(config) as c:
            assert c.cache is not None
            assert c.cache.max_entries == 1000
            assert c.limiter is not None
            assert c.limiter.capacity == 4
            assert c.limiter.refill_per_second == pytest.approx(2.0)

    async def test_disabled_cache_and_limiter(self) -> None:
        config = make_config({"cache": {"enabled": False}, "rate_limiting": {"enabled": False}})
        async with EasyProjectClient.from_config(config) as c:
            assert c.cache is None
            assert c.limiter is None
