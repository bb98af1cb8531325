"""Command-line interface for the Foodtruck MCP Server."""

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

from .settings import Settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="foodtruck-mcp-server",
        description="Foodtruck MCP Server - browse the menu, fill a cart and manage a foodtruck store",
    )
    parser.add_argument(
        "--mode",
        choices=["stdio", "http"],
        default="stdio",
        help="stdio for MCP clients, http for the REST API",
    )
    parser.add_argument("--host", default="0.0.0.0", help="HTTP host (http mode only)")
    parser.add_argument("--port", type=int, default=8000, help="HTTP port (http mode only)")
    parser.add_argument("--backend-url", help="Backend project URL (overrides FOODTRUCK_BACKEND_URL)")
    parser.add_argument("--storage-file", help="Session/cart file (overrides FOODTRUCK_STORAGE_FILE)")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (overrides LOG_LEVEL)",
    )
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Environment settings with command-line overrides applied."""
    settings = Settings.from_env()
    overrides = {
        "backend_url": args.backend_url,
        "storage_file": args.storage_file,
        "log_level": args.log_level,
    }
    return settings.model_copy(update={k: v for k, v in overrides.items() if v})


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    settings = settings_from_args(args)
    logging.getLogger().setLevel(settings.log_level.upper())

    try:
        settings.require_backend()
    except RuntimeError as e:
        sys.exit(f"Error: {e}")

    if args.mode == "stdio":
        from .server import main as server_main

        asyncio.run(server_main(settings))
    else:
        from .http_server import run_http_server

        print(f"Starting Foodtruck HTTP Server on {args.host}:{args.port}", file=sys.stderr)
        print(f"API documentation available at http://{args.host}:{args.port}/docs", file=sys.stderr)
        run_http_server(host=args.host, port=args.port, settings=settings)


if __name__ == "__main__":
    main()
