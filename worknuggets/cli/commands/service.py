"""Long-running processes: the governor API and the extraction scheduler."""

from __future__ import annotations

import logging

from worknuggets import config

logger = logging.getLogger(__name__)


def add_serve_parser(subparsers):
    parser = subparsers.add_parser(
        "serve", help="Run the quota governor and diagnostics API"
    )
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.set_defaults(func=handle_serve_command)
    return parser


def handle_serve_command(args) -> int:
    import uvicorn

    # Governor registry is per-process
    logger.info("Starting API on %s:%d (single worker)", args.host, args.port)
    uvicorn.run(
        "backend.app.main:app",
        host=args.host,
        port=args.port,
        workers=1,
        log_config=None,
    )
    return 0


def add_schedule_parser(subparsers):
    parser = subparsers.add_parser(
        "schedule", help="Run one extraction pass per tick until interrupted"
    )
    parser.add_argument(
        "--tick-seconds",
        type=int,
        default=config.EXTRACTION_TICK_SECONDS,
        help=f"Seconds between passes (default: {config.EXTRACTION_TICK_SECONDS})",
    )
    parser.add_argument(
        "--max-ticks",
        type=int,
        default=None,
        help="Stop after this many passes (default: run forever)",
    )
    parser.set_defaults(func=handle_schedule_command)
    return parser


def handle_schedule_command(args) -> int:
    from orchestration.extraction_scheduler import run

    run(tick_seconds=args.tick_seconds, max_ticks=args.max_ticks)
    return 0
