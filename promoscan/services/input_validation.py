from __future__ import annotations

import re
from urllib.parse import urlsplit

from promoscan.errors import InvalidInputError

MIN_CHANNEL_INPUT_LENGTH = 2
MAX_CHANNEL_INPUT_LENGTH = 500
MIN_DOMAIN_LENGTH = 3
MAX_DOMAIN_LENGTH = 253

_DANGEROUS_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"data:", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
)
_YOUTUBE_HOST = re.compile(r"^(www\.)?(youtube\.com|youtu\.be)$", re.IGNORECASE)
_CHANNEL_ID = re.compile(r"^UC[\w-]+$", re.IGNORECASE | re.ASCII)
_HANDLE = re.compile(r"^@[\w.-]{1,50}$", re.ASCII)
_DOMAIN = re.compile(
    r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?(\.[a-z0-9]([a-z0-9-]*[a-z0-9])?)*\.[a-z]{2,}$",
    re.IGNORECASE,
)


def validate_channel_input(raw_input: object) -> str:
    """Return the trimmed channel reference or raise ``InvalidInputError``."""
    if not isinstance(raw_input, str) or not raw_input.strip():
        raise InvalidInputError("Input is required")

    trimmed = raw_input.strip()
    if len(trimmed) < MIN_CHANNEL_INPUT_LENGTH:
        raise InvalidInputError("Input is too short")
    if len(trimmed) > MAX_CHANNEL_INPUT_LENGTH:
        raise InvalidInputError("Input is too long")

    if any(pattern.search(trimmed) for pattern in _DANGEROUS_PATTERNS):
        raise InvalidInputError("Invalid characters in input")

    if trimmed.startswith(("http://", "https://")):
        try:
            hostname = urlsplit(trimmed).hostname
        except ValueError as exc:
            raise InvalidInputError("Invalid URL format") from exc
        if not hostname:
            raise InvalidInputError("Invalid URL format")
        if _YOUTUBE_HOST.match(hostname) is None:
            raise InvalidInputError("Only YouTube URLs are allowed")

    if _CHANNEL_ID.match(trimmed) and not 20 <= len(trimmed) <= 30:
        raise InvalidInputError("Invalid channel ID format")

    if trimmed.startswith("@") and _HANDLE.match(trimmed) is None:
        raise InvalidInputError("Invalid handle format")

    return trimmed


def validate_domain_input(raw_input: object) -> str:
    """Reduce user input to a bare lower-case hostname, e.g. ``example.com``."""
    if not isinstance(raw_input, str) or not raw_input.strip():
        raise InvalidInputError("Domain is required")

    domain = raw_input.strip().lower()
    domain = re.sub(r"^https?://", "", domain)
    domain = domain.removeprefix("www.")
    domain = domain.split("/", 1)[0]
    domain = domain.split(":", 1)[0]

    if not MIN_DOMAIN_LENGTH <= len(domain) <= MAX_DOMAIN_LENGTH:
        raise InvalidInputError("Invalid domain length")
    if _DOMAIN.match(domain) is None:
        raise InvalidInputError("Invalid domain format")
    return domain
