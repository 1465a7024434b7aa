"""
mcp-client — connect configured MCP tool servers, show status, call a tool.

Usage:
    # Show server status and every discovered tool
    mcp-client --config config/mcp.json --list

    # Call one tool by qualified name
    mcp-client --call math_add --args '{"a": 1, "b": 2}'

    # Debug output, including subprocess stderr and wire traffic
    mcp-client --list --verbose
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from mcp_client.config import ClientSettings, load_server_config
from mcp_client.errors import ConfigError, ToolInputError
from mcp_client.registry import ServerRegistry

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-client",
        description="Connect MCP tool servers over stdio and call their tools.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  mcp-client --list
  mcp-client --config servers.json --call math_add --args '{"a": 1, "b": 2}'
        """,
    )
    parser.add_argument("--config", "-c", type=str, default=None,
                        help="Server config file (default: $MCP_CLIENT_CONFIG_PATH or config/mcp.json)")
    parser.add_argument("--list", action="store_true", help="Show server status and tools, then exit")
    parser.add_argument("--call", type=str, default=None, help="Qualified tool name to call (server_tool)")
    parser.add_argument("--args", type=str, default="{}", help="Tool arguments as a JSON object")
    parser.add_argument("--timeout", type=float, default=None, help="Per-request timeout in seconds")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")
    return parser


def print_status(registry: ServerRegistry) -> None:
    print("\nMCP servers:")
    for status in registry.get_status():
        if status.connected:
            marker = "connected"
        elif not status.enabled:
            marker = "disabled"
        else:
            marker = "disconnected"
        line = f"  {status.name:<20} {marker:<13} ({status.tool_count} tools)"
        if status.error:
            line += f"  {status.error}"
        print(line)

    adapters = registry.get_tool_adapters()
    print(f"\nTools ({len(adapters)}):")
    for adapter in adapters:
        print(f"  {adapter.name:<30} {adapter.description}")
    print()


async def run(args: argparse.Namespace, settings: ClientSettings) -> int:
    try:
        descriptors = load_server_config(args.config or settings.config_path)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    try:
        call_args = json.loads(args.args)
    except json.JSONDecodeError as e:
        print(f"Error: --args is not valid JSON: {e}", file=sys.stderr)
        return 2

    async with ServerRegistry(settings, descriptors) as registry:
        summary = await registry.initialize_all()
        print(f"Connected {summary.connected}/{summary.attempted} servers")

        if args.list or not args.call:
            print_status(registry)

        if not args.call:
            return 0 if summary.connected == summary.attempted else 1

        adapter = next((a for a in registry.get_tool_adapters() if a.name == args.call), None)
        if adapter is None:
            print(f"Error: no connected tool named {args.call}", file=sys.stderr)
            return 1

        try:
            output = await adapter.invoke(call_args)
        except ToolInputError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 2

        print("=" * 60)
        print(output)
        print("=" * 60)
        return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = ClientSettings()
    if args.timeout is not None:
        settings = settings.model_copy(update={"request_timeout": args.timeout})

    level = logging.DEBUG if args.verbose else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")

    try:
        return asyncio.run(run(args, settings))
    except KeyboardInterrupt:
        print("\nShutting down MCP servers...")
        return 130


if __name__ == "__main__":
    sys.exit(main())
