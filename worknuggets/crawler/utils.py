"""Small URL helpers shared by the extractors and the routing table."""

from __future__ import annotations

from urllib.parse import urlparse


def normalize_host(value: str | None) -> str:
    """Return the lowercased hostname without a leading ``www.``.

    Accepts either a full URL or a bare hostname. Returns an empty string
    when nothing usable can be parsed.

    Examples:
        https://www.Example.com/x -> example.com
        News.Example.com -> news.example.com
    """
    if not value:
        return ""

    candidate = value.strip()
    if "://" in candidate:
        try:
            host = urlparse(candidate).hostname or ""
        except ValueError:
            return ""
    else:
        host = candidate.split("/", 1)[0].split(":", 1)[0]

    host = host.lower()
    if host.startswith("www."):
        host = host[4:]
    return host


def mask_secret_url(url: str | None) -> str | None:
    """Return a URL with any password component redacted for logging."""
    if not url:
        return None

    try:
        parsed = urlparse(url)
        if parsed.username:
            hostname = parsed.hostname or parsed.netloc
            port = f":{parsed.port}" if parsed.port else ""
            scheme = f"{parsed.scheme}://" if parsed.scheme else ""
            return f"{scheme}{parsed.username}:***@{hostname}{port}"
        return url
    except ValueError:
        return "<redacted>"
