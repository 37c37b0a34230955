"""JSON-RPC 2.0 envelopes and error codes for the MCP session.

Only three request methods are served: ``initialize``, ``tools/list`` and
``tools/call``. Result payloads are built from :mod:`mcp.types` models and
serialized with their wire aliases.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel

JSONRPC_VERSION = "2.0"
PROTOCOL_VERSION = "2024-11-05"

METHOD_INITIALIZE = "initialize"
METHOD_TOOLS_LIST = "tools/list"
METHOD_TOOLS_CALL = "tools/call"
NOTIFICATION_INITIALIZED = "notifications/initialized"
NOTIFICATION_CANCELLED = "notifications/cancelled"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
TOOL_EXECUTION_ERROR = -32000
TOOL_NOT_FOUND = -32001
UPSTREAM_API_ERROR = -32002

RequestId = str | int | None


class McpError(Exception):
    """An error that maps onto a JSON-RPC error object."""

    code = INTERNAL_ERROR

    def __init__(self, message: str, *, data: Any = None) -> None:
        super().__init__(message or type(self).__name__)
        self.message = message or type(self).__name__
        self.data = data

    def to_error(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


class ParseError(McpError):
    code = PARSE_ERROR


class InvalidRequest(McpError):
    code = INVALID_REQUEST


class MethodNotFound(McpError):
    code = METHOD_NOT_FOUND


class InvalidParams(McpError):
    code = INVALID_PARAMS


class InternalError(McpError):
    code = INTERNAL_ERROR


class ToolExecutionError(McpError):
    code = TOOL_EXECUTION_ERROR


class ToolNotFound(McpError):
    code = TOOL_NOT_FOUND

    def __init__(self, name: str) -> None:
        super().__init__(f"Tool not found: {name}", data={"tool": name})
        self.tool = name


class UpstreamApiError(McpError):
    code = UPSTREAM_API_ERROR


def dump_model(model: BaseModel) -> dict[str, Any]:
    """Serialize an :mod:`mcp.types` model the way it goes on the wire."""
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def success_response(request_id: RequestId, result: dict[str, Any]) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def error_response(request_id: RequestId, error: McpError) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error.to_error()}


def encode(message: dict[str, Any]) -> str:
    """One message per line: compact JSON never contains a raw newline."""
    return json.dumps(message, separators=(",", ":"), ensure_ascii=False, default=str)


def decode(raw: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError as exc:
        msg = f"Parse error: {exc}"
        raise ParseError(msg) from exc


def request_id_of(message: Any) -> RequestId:
    """Best-effort id for an error reply; ``None`` when it cannot be read."""
    if isinstance(message, dict):
        value = message.get("id")
        if isinstance(value, str | int) and not isinstance(value, bool):
            return value
    return None


def is_notification(message: dict[str, Any]) -> bool:
    """A message without an ``id`` member. ``"id": null`` is still a request."""
    return "id" not in message


def is_response(message: dict[str, Any]) -> bool:
    return "method" not in message and ("result" in message or "error" in message)


def validate_envelope(message: Any) -> tuple[str, dict[str, Any]]:
    """Check the JSON-RPC request/notification shape; return (method, params)."""
    if isinstance(message, list):
        msg = "Batch requests are not supported"
        raise InvalidRequest(msg)
    if not isinstance(message, dict):
        msg = "Request must be a JSON object"
        raise InvalidRequest(msg)
    if message.get("jsonrpc") != JSONRPC_VERSION:
        msg = "jsonrpc must be exactly '2.0'"
        raise InvalidRequest(msg)
    method = message.get("method")
    if not isinstance(method, str) or not method:
        msg = "method must be a non-empty string"
        raise InvalidRequest(msg)
    if "id" in message:
        rid = message["id"]
        if rid is not None and (isinstance(rid, bool) or not isinstance(rid, str | int)):
            msg = "id must be a string, an integer or null"
            raise InvalidRequest(msg)
    params = message.get("params", {})
    if params is None:
        params = {}
    if not isinstance(params, dict):
        msg = "params must be an object"
        raise InvalidParams(msg)
    return method, params
