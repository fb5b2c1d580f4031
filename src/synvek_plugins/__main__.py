# src/synvek_plugins/__main__.py
"""
Synvek plugin runtime CLI.

Usage:
    synvek-plugins list
    synvek-plugins tools schema math-function-tools
    synvek-plugins tools run math-function-tools add a=2 b=5
    synvek-plugins run translation --seconds 10
"""

import sys
import json
import asyncio
import argparse
import logging
from typing import Any, Optional, Sequence

from synvek_plugins.catalog import build_default_registry
from synvek_plugins.config import settings
from synvek_plugins.errors import PluginRuntimeError
from synvek_plugins.logging_setup import setup_logging
from synvek_plugins.runtime import PluginRuntime

logger = logging.getLogger(__name__)


def parse_argument(item: str) -> tuple[str, Any]:
    """key=value; the value is read as JSON when it parses, else as a string."""
    if "=" not in item:
        raise argparse.ArgumentTypeError(f"Expected key=value, got {item!r}")
    key, raw = item.split("=", 1)
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        value = raw
    return key, value


def cmd_list(args) -> int:
    plugin_dir = settings.tools.plugin_dir
    registry = build_default_registry(plugin_dir)
    for definition in registry:
        print(f"{definition.id:<24} {definition.type.value:<6} {definition.category.value:<12} {definition.name}")
    return 0


async def _tools_schema(plugin_id: str) -> int:
    async with PluginRuntime.from_settings() as runtime:
        schemas = await runtime.tools.describe(plugin_id)
    print(json.dumps([s.model_dump(by_alias=True) for s in schemas], indent=2))
    return 0


async def _tools_run(plugin_id: str, operation: str, arguments: dict) -> int:
    async with PluginRuntime.from_settings() as runtime:
        result = await runtime.tools.invoke(plugin_id, operation, **arguments)
    print(json.dumps(result))
    return 0


async def _run_app(plugin_id: str, seconds: float) -> int:
    async with PluginRuntime.from_settings() as runtime:
        handle = await runtime.activate(plugin_id)
        logger.info(f"Activated {handle!r}")
        await asyncio.sleep(seconds)

        banner = runtime.runner.error_banner
        print(f"{plugin_id}: {handle.state.value}")
        if banner is not None:
            print(f"  error: {banner.message}")
        await handle.deactivate()
        return 1 if banner is not None else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="synvek-plugins",
        description="Run and inspect Synvek plugins",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    synvek-plugins list
    synvek-plugins tools schema math-function-tools
    synvek-plugins tools run math-function-tools add a=2 b=5
    synvek-plugins run speech-generation --seconds 10
        """,
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override logging.level from the config file",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("list", help="List catalog plugins")

    tools = commands.add_parser("tools", help="Tool plugins")
    tool_commands = tools.add_subparsers(dest="tools_command", required=True)

    schema = tool_commands.add_parser("schema", help="Print the tool schemas of a plugin")
    schema.add_argument("plugin", help="Plugin id")

    run_tool = tool_commands.add_parser("run", help="Run one tool operation")
    run_tool.add_argument("plugin", help="Plugin id")
    run_tool.add_argument("operation", help="Declared tool name")
    run_tool.add_argument("arguments", nargs="*", type=parse_argument, help="key=value arguments")

    run_app = commands.add_parser("run", help="Activate a mini-app for a while")
    run_app.add_argument("plugin", help="Plugin id")
    run_app.add_argument(
        "--seconds",
        type=float,
        default=5.0,
        help="How long to keep the plugin active (default: 5)",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point for synvek-plugins."""
    args = build_parser().parse_args(argv)

    if args.log_level:
        settings.logging.level = args.log_level
    setup_logging(settings)

    try:
        if args.command == "list":
            return cmd_list(args)
        if args.command == "tools":
            if args.tools_command == "schema":
                return asyncio.run(_tools_schema(args.plugin))
            return asyncio.run(_tools_run(args.plugin, args.operation, dict(args.arguments)))
        return asyncio.run(_run_app(args.plugin, args.seconds))
    except PluginRuntimeError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1
    except ValueError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
