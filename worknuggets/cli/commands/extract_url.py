"""CLI command module for a diagnostic browser run on a single URL.

The article store is never touched. Without ``--direct`` the run goes
through the quota governor exactly like the pipeline's browser path.
"""
from __future__ import annotations

import argparse
import json
import logging

from worknuggets.crawler.errors import AcquisitionDeniedError, PipelineError

logger = logging.getLogger(__name__)


def add_extract_url_parser(subparsers: argparse._SubParsersAction) -> argparse.ArgumentParser:
    parser = subparsers.add_parser(
        "extract-url", help="Render a single URL in the browser and print metrics"
    )
    parser.add_argument("url", type=str, help="URL to render")
    parser.add_argument(
        "--direct",
        action="store_true",
        default=False,
        help="Skip the quota governor (renderer check only)",
    )
    parser.set_defaults(func=handle_extract_url_command)
    return parser


def handle_extract_url_command(args) -> int:
    from worknuggets.crawler.browser_extractor import BrowserArticleExtractor
    from worknuggets.pipeline.diagnostics import (
        run_direct_extraction,
        run_guarded_extraction,
    )

    extractor = BrowserArticleExtractor()
    try:
        if args.direct:
            payload = run_direct_extraction(args.url, extractor)
        else:
            from worknuggets.services.quota_client import get_quota_client

            payload = run_guarded_extraction(args.url, get_quota_client(), extractor)
    except AcquisitionDeniedError as exc:
        print(json.dumps({"ok": False, "reason": exc.reason}))
        return 2
    except PipelineError as exc:
        logger.error("Diagnostic extraction failed for %s: %s", args.url, exc)
        print(json.dumps({"ok": False, "error": str(exc)}))
        return 1

    print(json.dumps(payload, indent=2))
    return 0
