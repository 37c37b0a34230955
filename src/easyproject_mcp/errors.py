"""Exception taxonomy for configuration, upstream API, and tool-argument failures.

Protocol-level (JSON-RPC) errors live in :mod:`easyproject_mcp.protocol` and
transport failures in :mod:`easyproject_mcp.transport`.
"""

from __future__ import annotations


class EasyProjectError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(EasyProjectError):
    """Invalid or incomplete configuration. Raised before the session starts."""


class ToolInputError(EasyProjectError):
    """Tool arguments are present and well-typed but semantically invalid."""


class ApiError(EasyProjectError):
    """Base class for failures talking to the upstream REST API."""


class ApiStatusError(ApiError):
    """Upstream answered with a non-2xx status."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"HTTP {status}: {message}")
        self.status = status
        self.message = message


class ApiTransportError(ApiError):
    """The request never produced a response (connect failure, timeout, ...)."""


class ApiDecodeError(ApiError):
    """A 2xx body could not be decoded into the expected shape."""

    def __init__(self, message: str, *, body: str | None = None) -> None:
        if body is not None:
            message = f"{message} (body: {_clip(body)})"
        super().__init__(message)
        self.body = body


class CacheError(ApiError):
    """A cached body no longer decodes into the operation's result type."""


_MAX_BODY_PREVIEW = 500


def _clip(body: str) -> str:
    if len(body) <= _MAX_BODY_PREVIEW:
        return body
    return body[:_MAX_BODY_PREVIEW] + "..."
