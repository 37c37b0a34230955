"""Session state machine and JSON-RPC handling tests."""

from __future__ import annotations

import asyncio
import io
import json
from typing import Any

import pytest

from easyproject_mcp.config import AppConfig, ToolCategory
from easyproject_mcp.mcp_server import McpServer, SessionState
from easyproject_mcp.protocol import PROTOCOL_VERSION
from easyproject_mcp.registry import ToolContext, ToolRegistry, ToolSpec
from easyproject_mcp.transport import (
    ConnectionClosed,
    MessageTooLarge,
    StdioTransport,
    Transport,
    TransportError,
)
from tests._fakes import FakeUpstream, make_config
from tests.mcp._helpers import INIT_PARAMS, _call, _notify, _rpc, _text


class ScriptedTransport(Transport):
    """Feeds fixed inbound lines, records outbound ones, then reports closure."""

    def __init__(self, inbound: list[str | Exception]) -> None:
        self.inbound = list(inbound)
        self.sent: list[dict[str, Any]] = []
        self.closed = False

    async def receive(self) -> str:
        if not self.inbound:
            raise ConnectionClosed("script finished")
        item = self.inbound.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def send(self, message: str) -> None:
        assert "\n" not in message
        self.sent.append(json.loads(message))

    async def close(self) -> None:
        self.closed = True


class TestInitialize:
    async def test_handshake(self, server: McpServer) -> None:
        response: Any = await server.handle_message(_rpc("initialize", INIT_PARAMS, request_id=1))
        result = response["result"]
        assert response["id"] == 1
        assert result["protocolVersion"] == PROTOCOL_VERSION
        assert result["capabilities"] == {"tools": {"listChanged": False}}
        assert result["serverInfo"] == {"name": "EasyProject MCP Server", "version": "1.0.0"}
        assert "get_issue_enumerations" in result["instructions"]
        assert server.state is SessionState.INITIALIZED
        assert server.client_info == INIT_PARAMS["clientInfo"]

    async def test_version_mismatch_still_initializes(
        self, server: McpServer, caplog: pytest.LogCaptureFixture
    ) -> None:
        params = {**INIT_PARAMS, "protocolVersion": "2099-01-01"}
        with caplog.at_level("WARNING"):
            response: Any = await server.handle_message(_rpc("initialize", params))
        assert response["result"]["protocolVersion"] == PROTOCOL_VERSION
        assert server.client_protocol_version == "2099-01-01"
        assert any("2099-01-01" in r.getMessage() for r in caplog.records)

    @pytest.mark.parametrize(
        "params",
        [
            {"clientInfo": {"name": "x"}},
            {"protocolVersion": PROTOCOL_VERSION},
            {"protocolVersion": PROTOCOL_VERSION, "clientInfo": {"version": "1"}},
        ],
    )
    async def test_missing_fields_are_invalid_params(self, server: McpServer, params: dict[str, Any]) -> None:
        response: Any = await server.handle_message(_rpc("initialize", params))
        assert response["error"]["code"] == -32602
        assert server.state is SessionState.UNINITIALIZED

    async def test_second_initialize_rejected(self, ready_server: McpServer) -> None:
        response: Any = await ready_server.handle_message(_rpc("initialize", INIT_PARAMS, request_id=2))
        assert response["error"]["code"] == -32600
        assert response["id"] == 2
        assert ready_server.state is SessionState.INITIALIZED


class TestUninitialized:
    async def test_call_before_initialize_then_recover(self, server: McpServer) -> None:
        rejected: Any = await server.handle_message(_call("list_projects", {}, request_id=1))
        assert rejected["error"]["code"] == -32600
        assert rejected["id"] == 1
        accepted: Any = await server.handle_message(_rpc("initialize", INIT_PARAMS, request_id=2))
        assert accepted["result"]["protocolVersion"] == PROTOCOL_VERSION

    async def test_list_before_initialize(self, server: McpServer) -> None:
        response: Any = await server.handle_message(_rpc("tools/list"))
        assert response["error"]["code"] == -32600
        assert server.state is SessionState.UNINITIALIZED


class TestToolsList:
    async def test_lists_every_tool(self, ready_server: McpServer) -> None:
        response: Any = await ready_server.handle_message(_rpc("tools/list"))
        tools = response["result"]["tools"]
        names = {t["name"] for t in tools}
        assert {"list_projects", "update_issue", "log_time", "get_issue_enumerations", "get_dashboard_data"} <= names
        assert len(names) == len(ready_server.registry)
        assert "nextCursor" not in response["result"]
        for tool in tools:
            assert tool["description"]
            assert tool["inputSchema"]["type"] == "object"

    async def test_idempotent_across_calls(self, ready_server: McpServer, upstream: FakeUpstream) -> None:
        upstream.add("GET", "/projects.json", json_body={"projects": [], "total_count": 0})
        first: Any = await ready_server.handle_message(_rpc("tools/list", request_id=1))
        await ready_server.handle_message(_call("list_projects", {}, request_id=2))
        await ready_server.handle_message(_call("no_such_tool", {}, request_id=3))
        second: Any = await ready_server.handle_message(_rpc("tools/list", request_id=4))
        assert first["result"] == second["result"]

    async def test_disabled_category_not_listed(self, client: Any) -> None:
        config = make_config({"tools": {"reports": {"enabled": False}}})
        server = McpServer(ToolRegistry.from_config(client, config), name="s", version="1")
        await server.handle_message(_rpc("initialize", INIT_PARAMS))
        response: Any = await server.handle_message(_rpc("tools/list", request_id=2))
        names = {t["name"] for t in response["result"]["tools"]}
        assert "generate_project_report" not in names
        assert "list_projects" in names


class TestToolsCall:
    async def test_unknown_tool(self, ready_server: McpServer) -> None:
        response: Any = await ready_server.handle_message(_call("frobnicate", {}, request_id=9))
        assert response["id"] == 9
        assert response["error"]["code"] == -32001
        assert response["error"]["data"] == {"tool": "frobnicate"}
        assert "frobnicate" in response["error"]["message"]

    async def test_missing_name(self, ready_server: McpServer) -> None:
        response: Any = await ready_server.handle_message(_rpc("tools/call", {"arguments": {}}))
        assert response["error"]["code"] == -32602

    async def test_arguments_must_be_object(self, ready_server: McpServer) -> None:
        response: Any = await ready_server.handle_message(
            _rpc("tools/call", {"name": "list_projects", "arguments": [1, 2]})
        )
        assert response["error"]["code"] == -32602

    async def test_success_result_shape(self, ready_server: McpServer, upstream: FakeUpstream) -> None:
        upstream.add("GET", "/projects/3.json", json_body={"project": {"id": 3, "name": "Gamma"}})
        response: Any = await ready_server.handle_message(_call("get_project", {"id": 3}))
        assert response["result"]["isError"] is False
        assert response["result"]["content"][0]["type"] == "text"
        assert _text(response).startswith("Project #3: Gamma")

    async def test_upstream_failure_is_error_result(self, ready_server: McpServer, upstream: FakeUpstream) -> None:
        upstream.add("GET", "/projects/3.json", status=404, json_body={"errors": ["Not found"]})
        response: Any = await ready_server.handle_message(_call("get_project", {"id": 3}))
        assert response["result"]["isError"] is True
        assert "HTTP 404" in _text(response)

    async def test_schema_violation_is_error_result(self, ready_server: McpServer, upstream: FakeUpstream) -> None:
        response: Any = await ready_server.handle_message(_call("get_project", {"id": "three"}))
        assert response["result"]["isError"] is True
        assert "Invalid arguments for get_project" in _text(response)
        assert upstream.requests == []

    async def test_unexpected_exception_is_tool_execution_error(self, client: Any, config: AppConfig) -> None:
        async def explode(ctx: ToolContext, arguments: dict[str, Any]) -> str:
            raise RuntimeError("kaboom")

        spec = ToolSpec(
            name="explode",
            description="Always fails",
            input_schema={"type": "object", "properties": {}},
            handler=explode,
            category=ToolCategory.REPORTS,
        )
        server = McpServer(ToolRegistry(ToolContext(client=client, config=config), [spec]), name="s", version="1")
        await server.handle_message(_rpc("initialize", INIT_PARAMS))
        response: Any = await server.handle_message(_call("explode", {}, request_id=5))
        assert response["error"]["code"] == -32000
        assert "kaboom" in response["error"]["message"]
        follow_up: Any = await server.handle_message(_rpc("tools/list", request_id=6))
        assert "result" in follow_up

    async def test_tool_call_is_logged(
        self, ready_server: McpServer, upstream: FakeUpstream, caplog: pytest.LogCaptureFixture
    ) -> None:
        upstream.add("GET", "/users/2.json", json_body={"user": {"id": 2, "login": "jdoe"}})
        with caplog.at_level("INFO", logger="easyproject_mcp.mcp_server"):
            await ready_server.handle_message(_call("get_user", {"id": 2}))
        (record,) = [r for r in caplog.records if r.getMessage() == "tool_call"]
        assert record.tool == "get_user"  # type: ignore[attr-defined]
        assert record.duration_ms >= 0  # type: ignore[attr-defined]
        assert not hasattr(record, "error")

    async def test_error_result_is_logged_with_its_text(
        self, ready_server: McpServer, upstream: FakeUpstream, caplog: pytest.LogCaptureFixture
    ) -> None:
        upstream.add("GET", "/users/2.json", status=403, json_body={"errors": ["Forbidden"]})
        with caplog.at_level("INFO", logger="easyproject_mcp.mcp_server"):
            response: Any = await ready_server.handle_message(_call("get_user", {"id": 2}))
        assert response["result"]["isError"] is True
        (record,) = [r for r in caplog.records if r.getMessage() == "tool_call"]
        assert record.error == "EasyProject API error: HTTP 403: Forbidden"  # type: ignore[attr-defined]


class TestEnvelope:
    async def test_parse_error(self, server: McpServer) -> None:
        response: Any = await server.handle_message("{not json")
        assert response["error"]["code"] == -32700
        assert response["id"] is None

    @pytest.mark.parametrize(
        "raw",
        [
            "42",
            '"hello"',
            '{"jsonrpc": "1.0", "id": 1, "method": "tools/list"}',
            '{"jsonrpc": "2.0", "id": 1}',
            '{"jsonrpc": "2.0", "id": {"nested": true}, "method": "initialize"}',
        ],
    )
    async def test_invalid_request(self, server: McpServer, raw: str) -> None:
        response: Any = await server.handle_message(raw)
        assert response["error"]["code"] == -32600

    async def test_batch_not_supported(self, server: McpServer) -> None:
        response: Any = await server.handle_message(json.dumps([json.loads(_rpc("tools/list"))]))
        assert response["error"]["code"] == -32600
        assert response["id"] is None

    async def test_params_must_be_object(self, server: McpServer) -> None:
        response: Any = await server.handle_message('{"jsonrpc": "2.0", "id": 3, "method": "initialize", "params": [1]}')
        assert response["error"]["code"] == -32602
        assert response["id"] == 3

    async def test_unknown_method(self, ready_server: McpServer) -> None:
        response: Any = await ready_server.handle_message(_rpc("resources/list", request_id="abc"))
        assert response["error"]["code"] == -32601
        assert response["id"] == "abc"

    async def test_null_id_is_a_request(self, server: McpServer) -> None:
        response: Any = await server.handle_message(_rpc("initialize", INIT_PARAMS, request_id=None))
        assert response is not None
        assert response["id"] is None
        assert "result" in response

    async def test_string_ids_echoed(self, ready_server: McpServer) -> None:
        response: Any = await ready_server.handle_message(_rpc("tools/list", request_id="req-7"))
        assert response["id"] == "req-7"


class TestNotifications:
    @pytest.mark.parametrize(
        "raw",
        [
            _notify("notifications/initialized"),
            _notify("notifications/cancelled", {"requestId": 4, "reason": "user"}),
            _notify("notifications/something_else"),
            _notify("tools/list"),
            '{"jsonrpc": "1.0", "method": "notifications/initialized"}',
        ],
    )
    async def test_never_answered(self, ready_server: McpServer, raw: str) -> None:
        assert await ready_server.handle_message(raw) is None

    async def test_initialized_before_handshake_is_silent(self, server: McpServer) -> None:
        assert await server.handle_message(_notify("notifications/initialized")) is None
        assert server.state is SessionState.UNINITIALIZED

    async def test_inbound_responses_ignored(self, ready_server: McpServer) -> None:
        assert await ready_server.handle_message('{"jsonrpc": "2.0", "id": 1, "result": {}}') is None
        assert (
            await ready_server.handle_message('{"jsonrpc": "2.0", "id": 2, "error": {"code": -1, "message": "x"}}')
            is None
        )


class TestRunLoop:
    async def test_one_response_per_request_in_order(self, server: McpServer, upstream: FakeUpstream) -> None:
        upstream.add("GET", "/projects.json", json_body={"projects": [], "total_count": 0})
        transport = ScriptedTransport(
            [
                _call("list_projects", {}, request_id=1),
                _rpc("initialize", INIT_PARAMS, request_id=2),
                _notify("notifications/initialized"),
                "garbage",
                _rpc("tools/list", request_id=3),
                _call("list_projects", {}, request_id=4),
            ]
        )
        await server.run(transport)
        assert [m["id"] for m in transport.sent] == [1, 2, None, 3, 4]
        assert transport.sent[0]["error"]["code"] == -32600
        assert "result" in transport.sent[1]
        assert transport.sent[2]["error"]["code"] == -32700
        assert transport.sent[4]["result"]["isError"] is False
        assert transport.closed is True

    async def test_closes_cleanly_on_empty_input(self, server: McpServer) -> None:
        transport = ScriptedTransport([])
        await server.run(transport)
        assert transport.sent == []
        assert transport.closed is True

    async def test_oversized_line_answered_and_session_continues(self, server: McpServer) -> None:
        reader = asyncio.StreamReader(limit=256)
        oversized = _call("list_projects", {"search": "x" * 1000}, request_id=1)
        reader.feed_data(
            (oversized + "\n" + _rpc("initialize", INIT_PARAMS, request_id=2) + "\n").encode()
            + (_rpc("tools/list", request_id=3) + "\n").encode()
        )
        reader.feed_eof()
        out = io.StringIO()
        await server.run(StdioTransport(reader, out))
        sent = [json.loads(line) for line in out.getvalue().splitlines()]
        assert [m["id"] for m in sent] == [None, 2, 3]
        assert sent[0]["error"]["code"] == -32600
        assert "too large" in sent[0]["error"]["message"]
        assert sent[1]["result"]["protocolVersion"] == PROTOCOL_VERSION
        assert sent[2]["result"]["tools"]

    async def test_oversized_message_from_any_transport(self, ready_server: McpServer) -> None:
        transport = ScriptedTransport([MessageTooLarge("Inbound message too large"), _rpc("tools/list", request_id=5)])
        await ready_server.run(transport)
        assert [m["id"] for m in transport.sent] == [None, 5]
        assert transport.sent[0]["error"]["code"] == -32600

    async def test_transport_failure_ends_session_cleanly(
        self, ready_server: McpServer, caplog: pytest.LogCaptureFixture
    ) -> None:
        transport = ScriptedTransport([TransportError("Read failed: EIO"), _rpc("tools/list", request_id=6)])
        with caplog.at_level("ERROR"):
            await ready_server.run(transport)
        assert transport.sent == []
        assert transport.closed is True
        assert any(r.getMessage() == "Transport failed, ending session" for r in caplog.records)
