"""Extraction command: run orchestrator passes from the command line."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import replace

from worknuggets.config import PipelineSettings

logger = logging.getLogger(__name__)


def add_extraction_parser(subparsers):
    """Add extraction command parser to CLI."""
    extract_parser = subparsers.add_parser(
        "extract", help="Extract content for pending articles, one per pass"
    )
    extract_parser.add_argument(
        "--max-runs",
        type=int,
        default=1,
        help="Maximum number of passes (default: 1)",
    )
    extract_parser.add_argument(
        "--until-empty",
        action="store_true",
        default=False,
        help="Stop early once a pass finds no selectable article",
    )
    extract_parser.add_argument(
        "--retry-failed",
        action="store_true",
        default=None,
        help="Also select articles whose previous attempt failed",
    )
    extract_parser.add_argument(
        "--delay",
        type=float,
        default=0.0,
        help="Seconds to sleep between passes",
    )
    extract_parser.set_defaults(func=handle_extraction_command)
    return extract_parser


def _settings_from_args(args) -> PipelineSettings:
    settings = PipelineSettings.from_env()
    if getattr(args, "retry_failed", None):
        settings = replace(settings, retry_failed=True)
    return settings


def handle_extraction_command(args) -> int:
    """Execute extraction command logic."""
    from worknuggets.pipeline.orchestrator import build_pipeline

    max_runs = max(1, getattr(args, "max_runs", 1) or 1)
    delay = getattr(args, "delay", 0.0) or 0.0

    try:
        pipeline = build_pipeline(_settings_from_args(args))
    except Exception:
        logger.exception("Failed to initialize extraction pipeline")
        return 1

    extracted = 0
    failed = 0
    try:
        for run in range(1, max_runs + 1):
            result = pipeline.run_once()
            print(json.dumps(result.as_dict()))

            if result.extracted:
                extracted += 1
            elif result.article_id is None and result.error is None:
                if getattr(args, "until_empty", False):
                    logger.info("No selectable articles left after %d passes", run - 1)
                    break
            else:
                failed += 1

            if delay and run < max_runs:
                time.sleep(delay)
    finally:
        pipeline.close()

    logger.info("Extraction finished: %d ready, %d not extracted", extracted, failed)
    return 0
