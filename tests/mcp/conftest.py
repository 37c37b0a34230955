"""Fixtures for MCP server tests."""

from __future__ import annotations

from typing import Any

import pytest

from easyproject_mcp.client import EasyProjectClient
from easyproject_mcp.config import AppConfig
from easyproject_mcp.mcp_server import McpServer
from easyproject_mcp.registry import ToolRegistry
from tests._fakes import make_config
from tests.mcp._helpers import INIT_PARAMS, _rpc


@pytest.fixture
def config() -> AppConfig:
    return make_config()


@pytest.fixture
def registry(client: EasyProjectClient, config: AppConfig) -> ToolRegistry:
    return ToolRegistry.from_config(client, config)


@pytest.fixture
def server(registry: ToolRegistry) -> McpServer:
    return McpServer(registry, name="EasyProject MCP Server", version="1.0.0")


@pytest.fixture
async def ready_server(server: McpServer) -> McpServer:
    """Server that has completed the initialize handshake."""
    response: Any = await server.handle_message(_rpc("initialize", INIT_PARAMS, request_id=0))
    assert "result" in response
    return server
