"""Static per-host routing rules for article extraction.

The table ships with the deployment as ``domain_rules.json`` next to this
module. ``DOMAIN_RULES_PATH`` points at a replacement file for deployments
that keep their own list.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping

from .utils import normalize_host

logger = logging.getLogger(__name__)

DEFAULT_RULES_FILE = Path(__file__).with_name("domain_rules.json")


class DomainCategory(str, Enum):
    """Routing decision for a hostname."""

    BLOCKED = "blocked"
    NEVER_BROWSER = "never_browser"
    ALWAYS_BROWSER = "always_browser"
    PAYWALLED = "paywalled"
    STRICT = "strict"
    PREFER_HTML = "prefer_html"
    UNRANKED = "unranked"

    @property
    def forces_browser(self) -> bool:
        return self in BROWSER_FORCING_CATEGORIES

    @property
    def allows_browser(self) -> bool:
        return self not in (DomainCategory.BLOCKED, DomainCategory.NEVER_BROWSER)


BROWSER_FORCING_CATEGORIES = frozenset(
    {DomainCategory.ALWAYS_BROWSER, DomainCategory.PAYWALLED, DomainCategory.STRICT}
)

# First match wins; (json key, category)
LOOKUP_ORDER: tuple[tuple[str, DomainCategory], ...] = (
    ("blocked", DomainCategory.BLOCKED),
    ("never_browser", DomainCategory.NEVER_BROWSER),
    ("always_use_browser", DomainCategory.ALWAYS_BROWSER),
    ("paywalled", DomainCategory.PAYWALLED),
    ("strict", DomainCategory.STRICT),
    ("prefer_html", DomainCategory.PREFER_HTML),
)


@dataclass(frozen=True)
class DomainRuleTable:
    """Immutable mapping of normalized hostnames to routing categories."""

    rules: Mapping[DomainCategory, frozenset[str]] = field(default_factory=dict)
    version: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "DomainRuleTable":
        """Build a table from the JSON layout (``blocked``, ``paywalled``, ...)."""
        rules: dict[DomainCategory, frozenset[str]] = {}
        for key, category in LOOKUP_ORDER:
            hosts = data.get(key) or data.get(category.value) or []
            rules[category] = frozenset(_normalize_all(hosts))
        version = data.get("version")
        return cls(rules=rules, version=str(version) if version is not None else None)

    @classmethod
    def load(cls, path: str | Path | None = None) -> "DomainRuleTable":
        """Load rules from ``path`` or the bundled JSON file."""
        rules_path = Path(path) if path else DEFAULT_RULES_FILE
        with rules_path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
        table = cls.from_mapping(data)
        logger.info(
            "Loaded domain rules v%s from %s (%d hosts)",
            table.version or "?",
            rules_path,
            sum(len(hosts) for hosts in table.rules.values()),
        )
        return table

    def classify(self, host_or_url: str | None) -> DomainCategory:
        """Return the routing category for a hostname or full URL."""
        host = normalize_host(host_or_url)
        if not host:
            return DomainCategory.UNRANKED

        for _key, category in LOOKUP_ORDER:
            if host in self.rules.get(category, frozenset()):
                return category
        return DomainCategory.UNRANKED

    def hosts(self, category: DomainCategory) -> frozenset[str]:
        return self.rules.get(category, frozenset())


def _normalize_all(hosts: Iterable[str]) -> list[str]:
    normalized = []
    for host in hosts:
        value = normalize_host(host)
        if value:
            normalized.append(value)
    return normalized


_DEFAULT_TABLE: DomainRuleTable | None = None


def get_domain_rules() -> DomainRuleTable:
    """Return the process-wide rule table, loading it on first use."""
    global _DEFAULT_TABLE
    if _DEFAULT_TABLE is None:
        from worknuggets import config

        _DEFAULT_TABLE = DomainRuleTable.load(config.DOMAIN_RULES_PATH)
    return _DEFAULT_TABLE


def classify(host_or_url: str | None) -> DomainCategory:
    """Classify against the process-wide rule table."""
    return get_domain_rules().classify(host_or_url)
