"""Modular command-line interface; command modules load on demand."""

from __future__ import annotations

import argparse
import importlib
import logging
import sys
from collections.abc import Callable

# Command modules are imported in _load_command_parser() so that cheap
# commands (classify-domain, quota-status) never pull in Selenium or FastAPI.

logger = logging.getLogger(__name__)


CommandHandler = Callable[[argparse.Namespace], int]

# command -> (module under worknuggets.cli.commands, handler attribute)
COMMANDS: dict[str, tuple[str, str]] = {
    "extract": ("extraction", "handle_extraction_command"),
    "extract-url": ("extract_url", "handle_extract_url_command"),
    "quota-status": ("quota", "handle_quota_status_command"),
    "classify-domain": ("quota", "handle_classify_domain_command"),
    "housekeeping": ("housekeeping", "handle_housekeeping_command"),
    "serve": ("service", "handle_serve_command"),
    "schedule": ("service", "handle_schedule_command"),
}

COMMAND_SUMMARIES: dict[str, str] = {
    "extract": "Run extraction passes over pending articles",
    "extract-url": "Render one URL in the browser and print metrics",
    "quota-status": "Show browser quota usage",
    "classify-domain": "Show the routing category for a URL or host",
    "housekeeping": "Re-queue articles stuck in extraction",
    "serve": "Run the quota governor / diagnostics API",
    "schedule": "Run one extraction pass per tick",
}


def create_parser() -> argparse.ArgumentParser:
    """Create minimal parser - commands loaded on-demand in main()."""
    parser = argparse.ArgumentParser(
        prog="worknuggets",
        description="WorkNuggets article extraction pipeline",
        add_help=False,
    )

    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (e.g. INFO, DEBUG)",
    )

    parser.add_argument(
        "command",
        nargs="?",
        help="Command to run (use 'COMMAND --help' for command-specific help)",
    )

    return parser


def _load_command_parser(command: str) -> tuple[Callable, Callable] | None:
    """Load parser and handler for a specific command on-demand.

    Returns: (add_parser_func, handle_command_func) or None if not found
    """
    entry = COMMANDS.get(command)
    if entry is None:
        return None
    module_name, handler_attr = entry

    try:
        module = importlib.import_module(f"worknuggets.cli.commands.{module_name}")
    except ImportError as e:
        logger.warning(f"Failed to load command '{command}': {e}")
        return None

    parser_func = getattr(module, f"add_{command.replace('-', '_')}_parser", None)
    if parser_func is None:
        # Single-command modules may name the parser after the module
        for attr in dir(module):
            if attr.startswith("add_") and attr.endswith("_parser"):
                parser_func = getattr(module, attr)
                break
    handler_func = getattr(module, handler_attr, None)
    if parser_func and handler_func:
        return (parser_func, handler_func)
    return None


def _print_usage() -> None:
    print("Available commands:", file=sys.stderr)
    for name, summary in COMMAND_SUMMARIES.items():
        print(f"  {name:<16} - {summary}", file=sys.stderr)
    print("Use: worknuggets COMMAND --help for more info", file=sys.stderr)


def _default_setup_logging(level: str) -> None:
    from worknuggets.utils.logging_config import setup_logging

    setup_logging(level=level, service_name="cli")


def main(
    argv: list[str] | None = None,
    *,
    setup_logging_func: Callable[[str], None] | None = None,
    handler_overrides: dict[str, CommandHandler] | None = None,
) -> int:
    """Main CLI entry point with on-demand command loading."""

    parser = create_parser()
    args, remaining = parser.parse_known_args(argv)

    log_level = getattr(args, "log_level", "INFO") or "INFO"
    (setup_logging_func or _default_setup_logging)(log_level)

    command = args.command
    if not command:
        _print_usage()
        return 1

    result = _load_command_parser(command)
    if result is None:
        print(f"Unknown command: {command}", file=sys.stderr)
        return 1

    add_parser_func, handle_func = result
    if handler_overrides and command in handler_overrides:
        handle_func = handler_overrides[command]

    full_parser = argparse.ArgumentParser(
        prog=f"worknuggets {command}",
        description=COMMAND_SUMMARIES.get(command),
    )
    full_parser.add_argument("--log-level", default=log_level)

    subparsers = full_parser.add_subparsers(dest="command")
    add_parser_func(subparsers)

    full_args = full_parser.parse_args([command] + remaining)

    return handle_func(full_args)


if __name__ == "__main__":
    sys.exit(main())
