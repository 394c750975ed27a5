#!/usr/bin/env python3
"""Scheduled trigger for the extraction pipeline.

Runs exactly one orchestrator pass per tick, then sleeps until the next
tick. Passes never overlap within this process; other processes (manual CLI
runs, a second scheduler) coordinate only through the browser quota
governor and the article status column.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from worknuggets import config
from worknuggets.pipeline.orchestrator import (
    ExtractionPipeline,
    PipelineRunResult,
    build_pipeline,
)

logger = logging.getLogger(__name__)

TICK_SECONDS = config.EXTRACTION_TICK_SECONDS


def process_tick(pipeline: ExtractionPipeline) -> Optional[PipelineRunResult]:
    """Run one pass; unexpected errors are logged and the loop keeps going."""
    try:
        result = pipeline.run_once()
    except Exception as exc:
        logger.exception("💥 Unexpected error during extraction pass: %s", exc)
        return None

    if result.extracted:
        logger.info(
            "✅ Article %s ready via %s", result.article_id, result.method
        )
    elif result.article_id:
        logger.info("❌ Article %s not extracted: %s", result.article_id, result.error)
    elif result.error:
        logger.error("Extraction pass aborted: %s", result.error)
    else:
        logger.info("💤 No pending articles this tick")
    return result


def run(
    pipeline: ExtractionPipeline | None = None,
    tick_seconds: int = TICK_SECONDS,
    max_ticks: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Tick loop; returns the number of ticks executed."""
    pipeline = pipeline or build_pipeline()
    logger.info("🚀 Starting extraction scheduler (tick every %d seconds)", tick_seconds)

    ticks = 0
    try:
        while max_ticks is None or ticks < max_ticks:
            ticks += 1
            started = time.monotonic()
            process_tick(pipeline)

            if max_ticks is not None and ticks >= max_ticks:
                break
            # Keep a fixed cadence regardless of how long the pass took
            remaining = tick_seconds - (time.monotonic() - started)
            if remaining > 0:
                sleep(remaining)
    except KeyboardInterrupt:
        logger.info("⏹️  Received interrupt signal, shutting down")
    finally:
        pipeline.close()

    return ticks


def main() -> None:
    from worknuggets.utils.logging_config import setup_logging

    setup_logging(level=config.LOG_LEVEL, service_name="scheduler")
    run()


if __name__ == "__main__":
    main()
