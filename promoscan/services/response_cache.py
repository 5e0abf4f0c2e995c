from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from time import monotonic
from typing import Any

LOGGER = logging.getLogger("promoscan.cache")

DEFAULT_TTL_SECONDS = 15 * 60


@dataclass(frozen=True)
class CacheEntry:
    key: str
    payload: Any
    expires_at: float


class ResponseCache:
    """In-process TTL memo of computed feature payloads.

    Entries are evicted lazily when an expired key is read. Returned
    payloads are shared with the cache and must be treated as read-only.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        self._ttl_seconds = max(0.0, ttl_seconds)
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            del self._entries[key]
            LOGGER.debug("cache entry expired key=%s", key)
            return None
        return entry.payload

    def set(self, key: str, payload: Any) -> None:
        self._entries[key] = CacheEntry(
            key=key,
            payload=payload,
            expires_at=self._clock() + self._ttl_seconds,
        )

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def build_cache_key(feature: str, **params: object) -> str:
    """Fingerprint a feature request from every input that shapes its result.

    Parameters are JSON-encoded with sorted keys, so ordering never matters
    and no value can smuggle in a separator that collides with another key.
    """
    encoded = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
    return f"{feature}:{encoded}"
