"""
Command-line entry point.

With no arguments the server speaks MCP on stdin/stdout. Tools can also be
run directly::

    mcp-stdio --add 9 8
    mcp-stdio 9 8
    mcp-stdio --tool list-github-issues --arg state=closed
"""

import json
import logging
import sys
from typing import Any, Dict, Optional, Tuple

import click

from . import __version__
from .protocol import ToolResult
from .server import MCPServer, ServerConfig, create_server


logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Log to stderr; stdout carries the protocol."""
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def parse_tool_args(pairs: Tuple[str, ...]) -> Dict[str, Any]:
    """Turn ``key=value`` pairs into tool arguments; values are JSON when they parse."""
    arguments: Dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got {pair!r}", param_hint="--arg")
        try:
            arguments[key] = json.loads(raw)
        except json.JSONDecodeError:
            arguments[key] = raw
    return arguments


def format_result(result: ToolResult) -> str:
    """Extract the first text block of a result, or dump the payload as JSON."""
    if result.is_error:
        return f"Error: {result.message}"
    content = result.content
    if isinstance(content, dict):
        blocks = content.get("content")
        if isinstance(blocks, list) and blocks and isinstance(blocks[0], dict) and "text" in blocks[0]:
            return str(blocks[0]["text"])
    return json.dumps(content)


def run_tool(server: MCPServer, name: str, arguments: Dict[str, Any]) -> int:
    if name not in server.registry:
        click.echo(f"Error: Unknown tool '{name}'", err=True)
        click.echo("\nAvailable tools:", err=True)
        for tool in server.registry.list_tools():
            click.echo(f"  {tool.name}: {tool.description}", err=True)
        return 2

    try:
        result = server.registry.invoke(name, arguments)
    except Exception as e:
        logger.exception(f"Tool '{name}' raised an exception")
        click.echo(f"Error: Tool '{name}' failed: {e}", err=True)
        return 1
    if result.is_error:
        click.echo(format_result(result), err=True)
        return 1
    click.echo(format_result(result))
    return 0


def _parse_int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise click.BadParameter(f"invalid integer: {value!r}")


@click.command(context_settings={"ignore_unknown_options": True})
@click.version_option(version=__version__, prog_name="mcp-stdio")
@click.option("--add", "add_operands", nargs=2, type=str, default=None,
              help="Run the add tool on two integers.")
@click.option("--tool", "tool_name", default=None, help="Run a registered tool directly.")
@click.option("--arg", "tool_args", multiple=True, help="Tool argument as key=value (repeatable).")
@click.option("--list-tools", is_flag=True, help="List registered tools and exit.")
@click.option("--log-level", default=None, help="Override MCP_LOG_LEVEL.")
@click.argument("operands", nargs=-1)
def main(
    add_operands: Optional[Tuple[str, str]],
    tool_name: Optional[str],
    tool_args: Tuple[str, ...],
    list_tools: bool,
    log_level: Optional[str],
    operands: Tuple[str, ...],
) -> None:
    """Serve MCP over stdin/stdout, or run a tool directly."""
    config = ServerConfig.from_env()
    if log_level:
        config.log_level = log_level.upper()
    configure_logging(config.log_level)

    server = create_server(config)
    try:
        _dispatch(server, add_operands, tool_name, tool_args, list_tools, operands)
    finally:
        server.close()


def _dispatch(
    server: MCPServer,
    add_operands: Optional[Tuple[str, str]],
    tool_name: Optional[str],
    tool_args: Tuple[str, ...],
    list_tools: bool,
    operands: Tuple[str, ...],
) -> None:
    if list_tools:
        for tool in server.registry.list_tools():
            click.echo(f"{tool.name}: {tool.description}")
        return

    if add_operands is not None:
        a, b = (_parse_int(v) for v in add_operands)
        sys.exit(run_tool(server, "add", {"a": a, "b": b}))

    if tool_name is not None:
        sys.exit(run_tool(server, tool_name, parse_tool_args(tool_args)))

    if operands:
        if len(operands) != 2:
            raise click.UsageError("positional form takes exactly two integers: A B")
        a, b = (_parse_int(v) for v in operands)
        sys.exit(run_tool(server, "add", {"a": a, "b": b}))

    server.run()


if __name__ == "__main__":
    main()
