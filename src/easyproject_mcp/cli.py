"""CLI for the EasyProject MCP server.

Usage:
    easyproject-mcp serve                        # Run the MCP session on stdio
    easyproject-mcp --config my.toml serve       # Explicit config file
    easyproject-mcp check-config                 # Validate config, print a redacted summary
    easyproject-mcp list-tools                   # Show the tools that would be registered
"""

from __future__ import annotations

import asyncio
import json as json_mod
import logging
import sys
from pathlib import Path

import click

from easyproject_mcp import __version__
from easyproject_mcp.client import EasyProjectClient
from easyproject_mcp.config import AppConfig, TransportType, load_config
from easyproject_mcp.errors import ConfigError
from easyproject_mcp.logging import setup_logging
from easyproject_mcp.mcp_server import McpServer
from easyproject_mcp.mcp_tools import all_tool_specs
from easyproject_mcp.registry import ToolRegistry
from easyproject_mcp.transport import StdioTransport, Transport, WebSocketTransport


def _load(ctx: click.Context, *, validate: bool = True) -> AppConfig:
    """Load (and validate) config, exiting 1 with a message on failure."""
    try:
        config = load_config(ctx.obj["config_path"])
        if validate:
            config.validate()
    except ConfigError as e:
        click.echo(f"Configuration error: {e}", err=True)
        sys.exit(1)
    return config


async def _serve(config: AppConfig) -> None:
    transport: Transport
    if config.server.transport is TransportType.WEBSOCKET:
        transport = WebSocketTransport(config.server.websocket_port or 0)
    else:
        transport = await StdioTransport.open()
    async with EasyProjectClient.from_config(config) as client:
        registry = ToolRegistry.from_config(client, config)
        server = McpServer(registry, name=config.server.name, version=config.server.version)
        await server.run(transport)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="easyproject-mcp")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: $EASYPROJECT_MCP_CONFIG or ./config.toml)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """EasyProject MCP server."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@cli.command()
@click.pass_context
def serve(ctx: click.Context) -> None:
    """Run the MCP session until the client disconnects."""
    config = _load(ctx)
    logger = setup_logging(config.logging)
    logger.info("mcp_server_start", extra={"tool": "server", "args_data": {"base_url": config.easyproject.base_url}})
    try:
        asyncio.run(_serve(config))
    except NotImplementedError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Interrupted")


@cli.command("check-config")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def check_config(ctx: click.Context, as_json: bool) -> None:
    """Validate configuration and print a summary with the API key masked."""
    summary = _load(ctx).redacted()
    if as_json:
        click.echo(json_mod.dumps(summary, indent=2))
        return
    click.echo("Configuration OK")
    for key, value in summary.items():
        if isinstance(value, dict):
            value = ", ".join(f"{k}={v}" for k, v in value.items())
        elif isinstance(value, list):
            value = ", ".join(value)
        click.echo(f"  {key}: {value}")


@cli.command("list-tools")
@click.option("--all", "show_all", is_flag=True, help="Include tools from disabled categories")
@click.pass_context
def list_tools(ctx: click.Context, show_all: bool) -> None:
    """List the tools the server would register."""
    config = _load(ctx, validate=False)
    for spec in all_tool_specs():
        enabled = config.tool_group(spec.category).enabled
        if not enabled and not show_all:
            continue
        marker = "" if enabled else " (disabled)"
        click.echo(f"{spec.name:<26} [{spec.category.value}] {spec.description}{marker}")


if __name__ == "__main__":
    cli()
