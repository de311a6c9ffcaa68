"""CLI entry point for MCP Hub."""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Optional

import click

from .config import Config
from .manager.bridge import ToolBridge
from .manager.registry import ConnectionRegistry
from .manager.tools import qualify_tool_name
from .mcp_client.exceptions import MCPClientError, MCPConfigurationError
from .utils.logsetup import configure_logging


def _run(coro: Any) -> Any:
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user.", err=True)
        sys.exit(130)
    except MCPConfigurationError as e:
        click.echo(f"Invalid server configuration: {e}", err=True)
        sys.exit(2)


def _read_servers_file(path: str) -> str:
    return Path(path).read_text(encoding="utf-8")


@click.group()
@click.option(
    "--config-file", "-c",
    type=click.Path(exists=True, dir_okay=False, resolve_path=True),
    help="Path to a JSON application configuration file.",
    envvar="MCP_HUB_CONFIG_FILE"
)
@click.option(
    "--log-level", "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Override the logging level (e.g., DEBUG, INFO)."
)
@click.option(
    "--log-format",
    type=click.Choice(["console", "json"], case_sensitive=False),
    default=None,
    help="Override logging format."
)
@click.pass_context
def cli(ctx: click.Context, config_file: Optional[str], log_level: Optional[str], log_format: Optional[str]) -> None:
    """MCP Hub - connect to MCP tool servers and call their tools."""
    try:
        if config_file:
            cfg = Config.from_file(Path(config_file))
        else:
            cfg = Config()
    except Exception as e:
        click.echo(f"Error loading configuration: {e}", err=True)
        sys.exit(1)

    if log_level:
        cfg.logging.level = log_level.upper()
    if log_format:
        cfg.logging.format = log_format.lower()

    configure_logging(cfg.logging)
    ctx.ensure_object(dict)
    ctx.obj["config"] = cfg


@cli.command()
@click.argument("servers_file", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def servers(ctx: click.Context, servers_file: str) -> None:
    """Start every enabled server in SERVERS_FILE and print their statuses."""
    config: Config = ctx.obj["config"]

    async def run() -> list[dict[str, Any]]:
        registry = ConnectionRegistry(config)
        try:
            await registry.initialize(_read_servers_file(servers_file))
            return [s.model_dump() for s in registry.statuses()]
        finally:
            await registry.shutdown_all()

    click.echo(json.dumps(_run(run()), indent=2))


@cli.command()
@click.argument("servers_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--server", "-s", "server_ids", multiple=True, help="Only list tools of these server ids.")
@click.pass_context
def tools(ctx: click.Context, servers_file: str, server_ids: tuple[str, ...]) -> None:
    """List the qualified tool names offered by running servers."""
    config: Config = ctx.obj["config"]

    async def run() -> dict[str, list[dict[str, str]]]:
        registry = ConnectionRegistry(config)
        try:
            await registry.initialize(_read_servers_file(servers_file))
            listing: dict[str, list[dict[str, str]]] = {}
            for status in registry.statuses():
                if not status.is_running or (server_ids and status.id not in server_ids):
                    continue
                listing[status.id] = [
                    {"name": qualify_tool_name(status.id, t.name), "description": t.description}
                    for t in status.tools
                ]
            return listing
        finally:
            await registry.shutdown_all()

    click.echo(json.dumps(_run(run()), indent=2))


@cli.command()
@click.argument("servers_file", type=click.Path(exists=True, dir_okay=False))
@click.argument("qualified_name")
@click.option("--arguments", "-a", "arguments_json", default="{}", help="Tool arguments as a JSON object.")
@click.pass_context
def call(ctx: click.Context, servers_file: str, qualified_name: str, arguments_json: str) -> None:
    """Invoke QUALIFIED_NAME (serverId_toolName) and print its result."""
    config: Config = ctx.obj["config"]
    try:
        arguments = json.loads(arguments_json)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="--arguments")
    if not isinstance(arguments, dict):
        raise click.BadParameter("must be a JSON object", param_hint="--arguments")

    async def run() -> Any:
        registry = ConnectionRegistry(config)
        try:
            await registry.initialize(_read_servers_file(servers_file))
            return await ToolBridge(registry).invoke(qualified_name, arguments)
        finally:
            await registry.shutdown_all()

    try:
        result = _run(run())
    except (MCPClientError, ValueError) as e:
        click.echo(f"Tool call failed: {e}", err=True)
        sys.exit(1)
    click.echo(result if isinstance(result, str) else json.dumps(result, indent=2))


@cli.command()
def version() -> None:
    """Show version information."""
    from . import __version__
    click.echo(f"MCP Hub v{__version__}")


@cli.command()
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show current configuration."""
    config = ctx.obj["config"]
    click.echo(config.model_dump_json(indent=2))


if __name__ == "__main__":
    cli()
