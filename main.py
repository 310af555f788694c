"""
AEM MCP servers entry point.

Builds one AEMClient for the chosen server and lists or calls its tools.

    python main.py read list
    python main.py read call get_page '{"path": "/content/site/en"}'
    python main.py write call publish '{"path": "/content/site/en", "deep": true}'
"""

import argparse
import asyncio
import json
import sys

from loguru import logger
from pydantic import ValidationError as SettingsError

from aem_mcp.logs import configure_logging
from aem_mcp.services.client import AEMClient
from aem_mcp.settings import Settings
from aem_mcp.tools import ToolRegistry, build_read_tools, build_write_tools

BUILDERS = {"read": build_read_tools, "write": build_write_tools}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="AEM MCP read and write servers")
    parser.add_argument("server", choices=sorted(BUILDERS), help="Which server's tools to use")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("list", help="List the server's tools")

    call = commands.add_parser("call", help="Call one tool")
    call.add_argument("tool", help="Tool name")
    call.add_argument("arguments", nargs="?", default="{}", help="Tool arguments as a JSON object")
    return parser


async def run(args: argparse.Namespace, settings: Settings) -> int:
    async with AEMClient(settings.to_client_config()) as client:
        registry: ToolRegistry = BUILDERS[args.server](client)
        logger.info(f"{registry.name} ready with {len(registry)} tools for {client.target}")

        if args.command == "list":
            print(json.dumps(registry.list_tools(), indent=2))
            return 0

        try:
            arguments = json.loads(args.arguments)
        except json.JSONDecodeError as e:
            logger.error(f"Arguments are not valid JSON: {e}")
            return 2
        if not isinstance(arguments, dict):
            logger.error("Arguments must be a JSON object")
            return 2

        result = await registry.call(args.tool, arguments)
        print(json.dumps(result, indent=2, ensure_ascii=False))
        return 1 if result["isError"] else 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = Settings.from_env()
    except SettingsError as e:
        configure_logging("INFO")
        logger.error(f"Invalid configuration:\n{e}")
        return 2

    configure_logging(settings.log_level)
    try:
        return asyncio.run(run(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
