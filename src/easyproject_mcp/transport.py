"""Message transports for the MCP session.

A transport moves whole JSON-RPC messages (one per line) and reports the end
of the stream with :class:`ConnectionClosed`. Only stdio is implemented.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from abc import ABC, abstractmethod
from typing import IO

logger = logging.getLogger(__name__)

# Upper bound on one inbound line.
_READ_LIMIT = 16 * 1024 * 1024


class TransportError(Exception):
    """Failure reading from or writing to the peer."""


class ConnectionClosed(TransportError):
    """The peer closed the stream. Ends the session loop cleanly."""


class MessageTooLarge(TransportError):
    """One inbound line exceeded the read limit. The line is dropped and the stream stays usable."""


class Transport(ABC):
    @abstractmethod
    async def receive(self) -> str:
        """Return the next raw message. Raises ConnectionClosed at end of stream."""

    @abstractmethod
    async def send(self, message: str) -> None:
        """Write one serialized message."""

    @abstractmethod
    async def close(self) -> None: ...


class StdioTransport(Transport):
    """Newline-delimited JSON over an asyncio reader and a text writer."""

    def __init__(self, reader: asyncio.StreamReader, writer: IO[str]) -> None:
        self._reader = reader
        self._writer = writer
        self._closed = False

    @classmethod
    async def open(cls) -> StdioTransport:
        """Attach to the process's stdin/stdout."""
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader(limit=_READ_LIMIT)
        await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
        return cls(reader, sys.stdout)

    async def receive(self) -> str:
        while True:
            if self._closed:
                raise ConnectionClosed("transport closed")
            try:
                line = await self._reader.readline()
            except (ValueError, asyncio.LimitOverrunError) as exc:
                msg = f"Inbound message too large: {exc}"
                raise MessageTooLarge(msg) from exc
            except OSError as exc:
                msg = f"Read failed: {exc}"
                raise TransportError(msg) from exc
            if not line:
                raise ConnectionClosed("end of input")
            text = line.decode("utf-8", errors="replace").strip()
            if text:
                return text

    async def send(self, message: str) -> None:
        if self._closed:
            raise ConnectionClosed("transport closed")
        try:
            self._writer.write(message + "\n")
            self._writer.flush()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise ConnectionClosed(str(exc)) from exc
        except OSError as exc:
            msg = f"Write failed: {exc}"
            raise TransportError(msg) from exc

    async def close(self) -> None:
        self._closed = True


class WebSocketTransport(Transport):
    """Placeholder for the websocket transport named in configuration."""

    def __init__(self, port: int) -> None:
        self.port = port

    def _unsupported(self) -> NotImplementedError:
        return NotImplementedError(f"WebSocket transport (port {self.port}) is not implemented; use stdio")

    async def receive(self) -> str:
        raise self._unsupported()

    async def send(self, message: str) -> None:
        raise self._unsupported()

    async def close(self) -> None:
        pass
