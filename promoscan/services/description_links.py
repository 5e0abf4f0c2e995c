"""Helpers for pulling outbound links out of video descriptions."""

from __future__ import annotations

import re
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_URL_PATTERN = re.compile(r"(https?://[^\s)\]>\"']+)", re.IGNORECASE)
_TRAILING_PUNCTUATION = re.compile(r"[)\],.;:\"'!?\s]+$")
_LABEL_SEPARATORS = re.compile(r"[:\-–|]")
_GENERIC_LABELS = re.compile(r"^(link|product|buy|amazon|gear)$", re.IGNORECASE)
_SOCIAL_DOMAINS = re.compile(
    r"(patreon|instagram|twitter|x\.com|facebook|tiktok|threads\.net|linkedin|discord"
    r"|paypal|buymeacoffee|linktr|linktree|beacons\.ai|bitly\.page|youtube\.com)",
    re.IGNORECASE,
)
_YOUTUBE_DOMAINS: tuple[str, ...] = ("youtube.com", "youtu.be")

TRACKING_PARAMETERS: frozenset[str] = frozenset(
    {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
        "tag",
        "ascsubtag",
        "source",
        "ref",
        "aff",
        "aff_id",
        "affid",
    }
)
UNKNOWN_DOMAIN = "unknown"


def extract_urls(text: str | None) -> list[str]:
    if not text:
        return []
    return [_TRAILING_PUNCTUATION.sub("", match) for match in _URL_PATTERN.findall(text)]


def domain_from_url(url: str) -> str:
    try:
        hostname = urlsplit(url).hostname
    except ValueError:
        return UNKNOWN_DOMAIN
    if not hostname:
        return UNKNOWN_DOMAIN
    return hostname.lower().removeprefix("www.")


def normalize_url(url: str) -> str:
    """Drop affiliate and campaign tracking parameters from ``url``."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    pairs = parse_qsl(parts.query, keep_blank_values=True)
    kept = [(key, value) for key, value in pairs if key not in TRACKING_PARAMETERS]
    if len(kept) == len(pairs):
        return url
    return urlunsplit(parts._replace(query=urlencode(kept)))


def is_youtube_domain(domain: str) -> bool:
    return any(marker in domain for marker in _YOUTUBE_DOMAINS)


def is_social_domain(domain: str) -> bool:
    return _SOCIAL_DOMAINS.search(domain) is not None


def matches_domain_filter(url: str, domain_filter: str | None) -> bool:
    """Whether ``url`` falls under ``domain_filter``.

    Accepts an exact host, subdomains in either direction, hosts containing
    the filter, and for filters with a ``/`` a host+path prefix or substring.
    An empty filter matches everything.
    """
    if not domain_filter:
        return True
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    if not parts.hostname:
        return False

    hostname = parts.hostname.lower().removeprefix("www.")
    full_path = hostname + (parts.path or "/").lower()
    needle = domain_filter.strip().lower().removeprefix("www.")

    if "/" in needle:
        return full_path.startswith(needle) or needle in full_path
    return (
        hostname == needle
        or hostname.endswith(f".{needle}")
        or needle.endswith(f".{hostname}")
        or needle in hostname
    )


def guess_product_name(line: str, url: str) -> str:
    """Best-effort product label: the last separator-delimited chunk before ``url``."""
    index = line.find(url)
    before = line[:index].strip() if index > -1 else line.strip()
    labels = [chunk.strip() for chunk in _LABEL_SEPARATORS.split(before) if chunk.strip()]
    if not labels:
        return ""
    guess = labels[-1]
    if len(guess) >= 3 and _GENERIC_LABELS.match(guess) is None:
        return guess
    return ""


def description_lines(description: str | None) -> list[str]:
    if not description:
        return []
    return [line.strip() for line in description.splitlines() if line.strip()]
