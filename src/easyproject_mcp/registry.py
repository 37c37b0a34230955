"""Tool registry: declarative tool tables dispatched through one code path.

Each ``easyproject_mcp.mcp_tools`` module returns a list of :class:`ToolSpec`
from its ``register()``; the registry keeps those for enabled categories,
validates arguments against each tool's JSON Schema and converts handler
outcomes into :class:`mcp.types.CallToolResult`.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from jsonschema import Draft202012Validator
from jsonschema.exceptions import ValidationError
from mcp.types import CallToolResult, TextContent, Tool

from easyproject_mcp.config import AppConfig, ToolCategory
from easyproject_mcp.errors import ApiError, ToolInputError
from easyproject_mcp.protocol import ToolNotFound

if TYPE_CHECKING:
    from easyproject_mcp.client import EasyProjectClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolContext:
    """What a handler needs: the shared client and the loaded config."""

    client: EasyProjectClient
    config: AppConfig

    def default_limit(self, category: ToolCategory) -> int:
        return self.config.tool_group(category).default_limit


ToolHandler = Callable[[ToolContext, dict[str, Any]], Awaitable[str]]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    input_schema: dict[str, Any]
    handler: ToolHandler
    category: ToolCategory
    _validator: Draft202012Validator = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        Draft202012Validator.check_schema(self.input_schema)
        object.__setattr__(self, "_validator", Draft202012Validator(self.input_schema))

    def to_tool(self) -> Tool:
        return Tool(name=self.name, description=self.description, inputSchema=self.input_schema)

    def validate(self, arguments: dict[str, Any]) -> None:
        """Raise ValidationError for the most relevant schema violation."""
        errors = sorted(self._validator.iter_errors(arguments), key=lambda e: list(e.path))
        if errors:
            raise errors[0]


def _error_result(text: str) -> CallToolResult:
    return CallToolResult(content=[TextContent(type="text", text=text)], isError=True)


def _describe_validation_error(exc: ValidationError) -> str:
    location = ".".join(str(p) for p in exc.absolute_path)
    return f"{location}: {exc.message}" if location else exc.message


class ToolRegistry:
    def __init__(self, context: ToolContext, specs: Iterable[ToolSpec]) -> None:
        self.context = context
        self._tools: dict[str, ToolSpec] = {}
        for spec in specs:
            if spec.name in self._tools:
                msg = f"Duplicate tool name: {spec.name}"
                raise ValueError(msg)
            self._tools[spec.name] = spec

    @classmethod
    def from_config(cls, client: EasyProjectClient, config: AppConfig) -> ToolRegistry:
        """Register every tool whose category is enabled in *config*."""
        from easyproject_mcp.mcp_tools import all_tool_specs

        enabled = [spec for spec in all_tool_specs() if config.tool_group(spec.category).enabled]
        registry = cls(ToolContext(client=client, config=config), enabled)
        logger.info("Registered %d tools", len(registry))
        return registry

    def __len__(self) -> int:
        return len(self._tools)

    def has_tool(self, name: str) -> bool:
        return name in self._tools

    def names(self) -> list[str]:
        return list(self._tools)

    def list_tools(self) -> list[Tool]:
        return [spec.to_tool() for spec in self._tools.values()]

    async def call(self, name: str, arguments: dict[str, Any] | None) -> CallToolResult:
        """Run tool *name*.

        Unknown names raise :class:`ToolNotFound`. Argument and upstream API
        failures come back as ``isError`` results; anything else propagates.
        """
        spec = self._tools.get(name)
        if spec is None:
            raise ToolNotFound(name)
        args = dict(arguments or {})
        try:
            spec.validate(args)
        except ValidationError as exc:
            return _error_result(f"Invalid arguments for {name}: {_describe_validation_error(exc)}")
        try:
            text = await spec.handler(self.context, args)
        except ToolInputError as exc:
            return _error_result(f"Invalid arguments for {name}: {exc}")
        except ApiError as exc:
            logger.warning("Upstream error in %s: %s", name, exc)
            return _error_result(f"EasyProject API error: {exc}")
        return CallToolResult(content=[TextContent(type="text", text=text)], isError=False)
