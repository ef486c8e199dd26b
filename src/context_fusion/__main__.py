"""Entry point for context-fusion MCP server."""

import argparse
import asyncio
import logging
import sys

from context_fusion.config.settings import Settings, detect_environment, recommended_limits
from context_fusion.server import create_server, initialize_services, shutdown_services


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="context-fusion",
        description="Context Fusion - cache, score and merge multi-source context for LLMs via MCP",
    )
    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 1.0.0",
    )
    parser.add_argument(
        "--auto-size",
        action="store_true",
        help="Size cache and worker limits from detected CPU and memory",
    )
    return parser.parse_args()


async def main(auto_size: bool = False) -> None:
    """Main entry point for the MCP server."""
    overrides = recommended_limits(detect_environment()) if auto_size else {}
    settings = Settings(**overrides)

    # stdout carries the MCP stdio transport, so logs go to stderr
    logging.basicConfig(
        level=settings.log_level.upper(),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    await initialize_services(settings)
    mcp = create_server()

    try:
        await mcp.run_stdio_async()
    finally:
        await shutdown_services()


def cli() -> None:
    """CLI entry point."""
    args = parse_args()
    asyncio.run(main(auto_size=args.auto_size))


if __name__ == "__main__":
    cli()
