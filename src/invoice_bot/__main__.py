"""CLI entry point for invoice-bot."""

from __future__ import annotations

import argparse
import asyncio
import sys

import httpx
import uvicorn

from invoice_bot.config import load_config
from invoice_bot.errors import IntegrationError
from invoice_bot.log import setup_logging


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    parser.add_argument("-e", "--env", default=".env", help="Path to .env file")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="invoice-bot",
        description="Conversational invoice assistant with QuickBooks integration",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    start_parser = subparsers.add_parser("start", help="Start the HTTP server")
    _add_config_args(start_parser)

    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    _add_config_args(check_parser)

    chat_parser = subparsers.add_parser("chat", help="Send one prompt to a running server")
    chat_parser.add_argument("prompt", help="Message to send")
    chat_parser.add_argument("--url", default="http://localhost:3001", help="Server base URL")
    chat_parser.add_argument("--interaction-id", default=None, help="Continue an existing interaction")

    args = parser.parse_args()

    if args.command is None:
        # Default to start
        args.command = "start"
        args.config = "config.yaml"
        args.env = ".env"

    match args.command:
        case "config-check":
            _check_config(args.config, args.env)
        case "chat":
            _chat(args.url, args.prompt, args.interaction_id)
        case "start":
            _run(args.config, args.env)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    try:
        config = load_config(config_path, env_path)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    qb = config.quickbooks
    print(f"Configuration valid: {config_path}")
    print(f"  Server: {config.server.host}:{config.server.port}")
    print(f"  Model: {config.chat.model} (max_tokens={config.chat.max_tokens})")
    print(f"  Anthropic: {'configured' if config.anthropic else 'missing'}")
    print(f"  Tool timeout: {config.chat.tool_timeout_seconds}s")
    print(f"  QuickBooks: {'configured' if qb.is_configured else 'not configured'} ({qb.environment})")
    print(f"  Redirect URI: {qb.redirect_uri}")
    print(f"  Frontend URL: {qb.frontend_url}")


def _chat(base_url: str, prompt: str, interaction_id: str | None) -> None:
    from invoice_bot.client.terminal import stream_chat

    setup_logging("WARNING")

    async def _async_main() -> None:
        async with httpx.AsyncClient(base_url=base_url, timeout=None) as client:
            await stream_chat(client, prompt, interaction_id)

    try:
        asyncio.run(_async_main())
    except (IntegrationError, httpx.HTTPError) as e:
        print(f"Chat error: {e}", file=sys.stderr)
        sys.exit(1)


def _run(config_path: str, env_path: str) -> None:
    """Load config and start the HTTP server."""
    try:
        config = load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Copy config.example.yaml to config.yaml and fill in your keys")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.log_level, json_logs=config.json_logs)

    from invoice_bot.api.server import create_app
    from invoice_bot.app import InvoiceBotApp

    try:
        bot = InvoiceBotApp(config)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    uvicorn.run(
        create_app(bot),
        host=config.server.host,
        port=config.server.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
