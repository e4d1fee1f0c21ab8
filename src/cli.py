"""
CLI tool for running and inspecting the proxy.

Usage:
    uv run python -m src.cli serve [--host HOST] [--port PORT] [--log-level LEVEL]
    uv run python -m src.cli config show
    uv run python -m src.cli config check
"""

import argparse
import logging
import sys
from dataclasses import replace
from typing import Optional

import uvicorn
from dotenv import load_dotenv

from .config import APP_NAME, APP_VERSION, ConfigError, ProxyConfig

logger = logging.getLogger(__name__)


def _load_config(env_file: Optional[str] = None) -> ProxyConfig:
    load_dotenv(dotenv_path=env_file)
    return ProxyConfig.from_env()


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the HTTP server."""
    try:
        config = _load_config(args.env_file)
        overrides = {}
        if args.host:
            overrides["host"] = args.host
        if args.port:
            overrides["port"] = args.port
        if args.log_level:
            overrides["log_level"] = args.log_level.upper()
        if overrides:
            config = replace(config, **overrides)
            config.validate()
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    from .main import configure_logging, create_app

    configure_logging(config.log_level)
    logger.info(f"{APP_NAME} v{APP_VERSION} listening on {config.server_address}")
    print(config.describe())

    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
    )
    return 0


def cmd_config_show(args: argparse.Namespace) -> int:
    """Print the effective configuration with secrets masked."""
    try:
        config = _load_config(args.env_file)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1
    print(config.describe())
    return 0


def cmd_config_check(args: argparse.Namespace) -> int:
    """Validate the configuration and report the result."""
    try:
        _load_config(args.env_file)
    except ConfigError as e:
        print(f"Configuration invalid: {e}", file=sys.stderr)
        return 1
    print("Configuration OK")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=f"Run and inspect {APP_NAME}",
        prog="python -m src.cli",
    )
    parser.add_argument("--env-file", type=str, default=None, help="Path to a .env file")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the proxy server")
    serve_parser.add_argument("--host", type=str, help="Listen host (overrides PROXY_HOST)")
    serve_parser.add_argument("--port", "-p", type=int, help="Listen port (overrides PROXY_PORT)")
    serve_parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "debug", "info", "warning", "error"],
        help="Log level (overrides PROXY_LOG_LEVEL)",
    )

    # config command group
    config_parser = subparsers.add_parser("config", help="Inspect configuration")
    config_subparsers = config_parser.add_subparsers(dest="config_command")
    config_subparsers.add_parser("show", help="Print the configuration with secrets masked")
    config_subparsers.add_parser("check", help="Validate the configuration")
    config_parser.set_defaults(print_config_help=config_parser.print_help)

    return parser


def main(argv: Optional[list] = None) -> int:
    """Main entry point for CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "serve":
        return cmd_serve(args)
    elif args.command == "config":
        if args.config_command == "show":
            return cmd_config_show(args)
        elif args.config_command == "check":
            return cmd_config_check(args)
        else:
            args.print_config_help()
            return 1
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
