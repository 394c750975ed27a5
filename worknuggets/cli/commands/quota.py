"""Quota and routing inspection commands."""

from __future__ import annotations

import json
import logging

logger = logging.getLogger(__name__)


def add_quota_status_parser(subparsers):
    parser = subparsers.add_parser("quota-status", help="Show browser quota usage")
    parser.add_argument(
        "--name",
        default=None,
        help="Governor instance name (default: QUOTA_INSTANCE_NAME)",
    )
    parser.set_defaults(func=handle_quota_status_command)
    return parser


def handle_quota_status_command(args) -> int:
    from worknuggets import config
    from worknuggets.crawler.errors import GovernorError
    from worknuggets.services.quota_client import HttpQuotaClient, LocalQuotaClient

    name = args.name or config.QUOTA_INSTANCE_NAME
    if config.QUOTA_SERVICE_URL:
        client = HttpQuotaClient(config.QUOTA_SERVICE_URL, name=name)
    else:
        client = LocalQuotaClient(name=name)

    try:
        status = client.status()
    except GovernorError as exc:
        logger.error("Quota status unavailable: %s", exc)
        return 1

    status["maxConcurrent"] = config.MAX_CONCURRENT_BROWSER
    status["maxDailySeconds"] = config.MAX_BROWSER_SECONDS_PER_DAY
    status["name"] = name
    print(json.dumps(status, indent=2))
    return 0


def add_classify_domain_parser(subparsers):
    parser = subparsers.add_parser(
        "classify-domain", help="Show the routing category for a URL or host"
    )
    parser.add_argument("target", help="URL or hostname")
    parser.add_argument(
        "--rules",
        default=None,
        help="Path to an alternative domain rules JSON file",
    )
    parser.set_defaults(func=handle_classify_domain_command)
    return parser


def handle_classify_domain_command(args) -> int:
    from worknuggets.crawler.domain_rules import DomainRuleTable, get_domain_rules
    from worknuggets.crawler.utils import normalize_host

    table = DomainRuleTable.load(args.rules) if args.rules else get_domain_rules()
    category = table.classify(args.target)
    print(
        json.dumps(
            {
                "host": normalize_host(args.target),
                "category": category.value,
                "forcesBrowser": category.forces_browser,
                "allowsBrowser": category.allows_browser,
            }
        )
    )
    return 0
