"""MCP session for the EasyProject bridge.

One :class:`McpServer` drives one session: it reads messages from a
:class:`~easyproject_mcp.transport.Transport` strictly in arrival order,
answers every request exactly once and never answers notifications.

Session states::

    UNINITIALIZED --initialize--> INITIALIZED

``tools/list`` and ``tools/call`` are only served once initialized; a second
``initialize`` is rejected.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any

from mcp.types import (
    Implementation,
    InitializeResult,
    ListToolsResult,
    ServerCapabilities,
    ToolsCapability,
)

from easyproject_mcp import protocol
from easyproject_mcp.errors import ApiError
from easyproject_mcp.protocol import (
    InvalidParams,
    InvalidRequest,
    McpError,
    MethodNotFound,
    ToolExecutionError,
    UpstreamApiError,
)
from easyproject_mcp.registry import ToolRegistry
from easyproject_mcp.transport import ConnectionClosed, MessageTooLarge, Transport, TransportError

logger = logging.getLogger(__name__)

INSTRUCTIONS = (
    "Tools for an EasyProject (Redmine-compatible) instance: projects, issues, users, "
    "time entries, milestones and reports. Call get_issue_enumerations once to learn "
    "status, priority and tracker IDs before filtering or updating issues."
)


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"


class McpServer:
    def __init__(self, registry: ToolRegistry, *, name: str, version: str) -> None:
        self.registry = registry
        self.name = name
        self.version = version
        self.state = SessionState.UNINITIALIZED
        self.client_info: dict[str, Any] | None = None
        self.client_protocol_version: str | None = None

    # -- message handling ----------------------------------------------------

    async def handle_message(self, raw: str) -> dict[str, Any] | None:
        """Process one raw inbound message; return the response, if any."""
        try:
            message = protocol.decode(raw)
        except McpError as exc:
            logger.warning("Unparseable message: %s", exc.message)
            return protocol.error_response(None, exc)

        if isinstance(message, dict) and protocol.is_response(message):
            logger.info("Ignoring inbound response for id %r", message.get("id"))
            return None

        try:
            method, params = protocol.validate_envelope(message)
        except McpError as exc:
            if isinstance(message, dict) and protocol.is_notification(message):
                logger.warning("Dropping malformed notification: %s", exc.message)
                return None
            return protocol.error_response(protocol.request_id_of(message), exc)

        if protocol.is_notification(message):
            self._handle_notification(method, params)
            return None

        request_id = message["id"]
        try:
            result = await self._dispatch(method, params)
        except McpError as exc:
            return protocol.error_response(request_id, exc)
        except ApiError as exc:
            logger.error("Upstream error escaped %s: %s", method, exc)
            return protocol.error_response(request_id, UpstreamApiError(str(exc)))
        except Exception as exc:
            logger.error("Unhandled error in %s", method, exc_info=True)
            return protocol.error_response(request_id, ToolExecutionError(f"{type(exc).__name__}: {exc}"))
        return protocol.success_response(request_id, result)

    async def _dispatch(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        if method == protocol.METHOD_INITIALIZE:
            return self._initialize(params)
        if method in (protocol.METHOD_TOOLS_LIST, protocol.METHOD_TOOLS_CALL):
            if self.state is not SessionState.INITIALIZED:
                msg = f"Session not initialized: send initialize before {method}"
                raise InvalidRequest(msg)
            if method == protocol.METHOD_TOOLS_LIST:
                return protocol.dump_model(ListToolsResult(tools=self.registry.list_tools()))
            return await self._call_tool(params)
        msg = f"Method not found: {method}"
        raise MethodNotFound(msg, data={"method": method})

    def _initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        if self.state is SessionState.INITIALIZED:
            msg = "Session already initialized"
            raise InvalidRequest(msg)
        version = params.get("protocolVersion")
        if not isinstance(version, str) or not version:
            msg = "initialize requires params.protocolVersion"
            raise InvalidParams(msg)
        client_info = params.get("clientInfo")
        if not isinstance(client_info, dict) or not isinstance(client_info.get("name"), str):
            msg = "initialize requires params.clientInfo.name"
            raise InvalidParams(msg)
        if version != protocol.PROTOCOL_VERSION:
            logger.warning(
                "Client requested protocol %s; continuing with %s", version, protocol.PROTOCOL_VERSION
            )
        self.client_info = client_info
        self.client_protocol_version = version
        self.state = SessionState.INITIALIZED
        logger.info("Session initialized by %s %s", client_info["name"], client_info.get("version", ""))
        result = InitializeResult(
            protocolVersion=protocol.PROTOCOL_VERSION,
            capabilities=ServerCapabilities(tools=ToolsCapability(listChanged=False)),
            serverInfo=Implementation(name=self.name, version=self.version),
            instructions=INSTRUCTIONS,
        )
        return protocol.dump_model(result)

    async def _call_tool(self, params: dict[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        if not isinstance(name, str) or not name:
            msg = "tools/call requires params.name"
            raise InvalidParams(msg)
        arguments = params.get("arguments")
        if arguments is not None and not isinstance(arguments, dict):
            msg = "tools/call params.arguments must be an object"
            raise InvalidParams(msg)

        t0 = time.monotonic()
        try:
            result = await self.registry.call(name, arguments)
        except Exception:
            logger.error("tool_error", extra={"tool": name, "args_data": arguments}, exc_info=True)
            raise
        duration_ms = round((time.monotonic() - t0) * 1000, 1)
        payload = protocol.dump_model(result)
        extra: dict[str, Any] = {"tool": name, "args_data": arguments, "duration_ms": duration_ms}
        if payload.get("isError"):
            content = payload.get("content") or [{}]
            extra["error"] = content[0].get("text", "")
        logger.info("tool_call", extra=extra)
        return payload

    def _handle_notification(self, method: str, params: dict[str, Any]) -> None:
        if method == protocol.NOTIFICATION_INITIALIZED:
            logger.info("Client reported initialized")
        elif method == protocol.NOTIFICATION_CANCELLED:
            # In-flight work is not aborted; requests are handled one at a time.
            logger.info("Cancellation requested for %r (not supported)", params.get("requestId"))
        else:
            logger.debug("Ignoring notification %s", method)

    # -- loop ----------------------------------------------------------------

    async def run(self, transport: Transport) -> None:
        """Serve messages until the transport closes."""
        logger.info("Session started (%d tools)", len(self.registry))
        try:
            while True:
                response: dict[str, Any] | None
                try:
                    raw = await transport.receive()
                except ConnectionClosed:
                    logger.info("Transport closed, ending session")
                    break
                except MessageTooLarge as exc:
                    logger.warning("Dropping oversized message: %s", exc)
                    response = protocol.error_response(None, InvalidRequest(str(exc)))
                except TransportError:
                    logger.error("Transport failed, ending session", exc_info=True)
                    break
                else:
                    response = await self.handle_message(raw)
                if response is not None:
                    try:
                        await transport.send(protocol.encode(response))
                    except ConnectionClosed:
                        logger.info("Transport closed while sending, ending session")
                        break
                    except TransportError:
                        logger.error("Transport failed while sending, ending session", exc_info=True)
                        break
        finally:
            await transport.close()
