"""
Housekeeping command for pipeline maintenance.

Articles are claimed by moving them to ``extracting`` before any network
work starts. A pass that dies afterwards (renderer unavailable, store outage,
killed process) leaves the row there; this command puts such rows back to
``pending`` so the next scheduled pass picks them up.
"""

import logging
from datetime import datetime, timedelta
from typing import TypedDict

from worknuggets.crawler.errors import ArticleStoreError

logger = logging.getLogger(__name__)


class HousekeepingReport(TypedDict):
    """Report of housekeeping actions taken."""

    timestamp: datetime
    stuck_extraction_articles_requeued: int
    total_actions: int


def add_housekeeping_parser(subparsers):
    """Add housekeeping command parser."""
    parser = subparsers.add_parser(
        "housekeeping",
        help="Re-queue articles stuck in extraction",
    )
    parser.add_argument(
        "--extraction-stall-minutes",
        type=int,
        default=30,
        help=(
            "Re-queue articles stuck in 'extracting' "
            "for this many minutes (default: 30)"
        ),
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would happen without making changes",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="List the affected article ids",
    )
    return parser


def handle_housekeeping_command(args, store=None) -> int:
    """
    Handle housekeeping command.

    Args:
        args: Parsed command arguments
        store: Article store override (tests)

    Returns:
        Exit code (0 for success, 1 for error)
    """
    try:
        if store is None:
            from worknuggets.services.article_store import get_article_store

            store = get_article_store()

        print()
        print("🧹 Pipeline Housekeeping")
        print("=" * 70)
        print(f"Timestamp: {datetime.now().isoformat()}")
        print(f"Dry run: {args.dry_run}")
        print()

        report: HousekeepingReport = {
            "timestamp": datetime.now(),
            "stuck_extraction_articles_requeued": 0,
            "total_actions": 0,
        }

        report["stuck_extraction_articles_requeued"] = _requeue_stuck_extraction(
            store, args.extraction_stall_minutes, args.dry_run, args.verbose
        )
        report["total_actions"] = report["stuck_extraction_articles_requeued"]

        print()
        print("Summary")
        print("-" * 70)
        print(
            f"  Stuck extraction articles requeued: "
            f"{report['stuck_extraction_articles_requeued']}"
        )
        print(f"  Total actions: {report['total_actions']}")
        print()

        return 0

    except ArticleStoreError as e:
        logger.error(f"Housekeeping failed: {e}", exc_info=True)
        print(f"❌ Error during housekeeping: {e}")
        return 1


def _requeue_stuck_extraction(store, stall_minutes: int, dry_run: bool, verbose: bool) -> int:
    """
    Move articles stuck in 'extracting' longer than ``stall_minutes`` back to pending.

    Returns:
        Number of articles requeued (or that would be, on a dry run)
    """
    print(f"1️⃣  Checking for articles stuck in extraction (> {stall_minutes} min)...")
    print()

    ids = store.requeue_stale_extracting(
        timedelta(minutes=stall_minutes), dry_run=dry_run
    )

    if not ids:
        print("   ✓ No stuck articles found")
        return 0

    if verbose:
        for article_id in ids[:20]:
            print(f"     - {article_id}")
        if len(ids) > 20:
            print(f"     ... and {len(ids) - 20} more")

    if dry_run:
        print(f"   Found {len(ids)} stuck articles")
        print("   ⏭️  Dry run - no changes made")
        return len(ids)

    logger.info("Requeued %d articles stuck in extraction", len(ids))
    print(f"   ✅ Requeued {len(ids)} articles to pending")
    return len(ids)
