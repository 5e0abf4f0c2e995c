from __future__ import annotations

from functools import lru_cache

import httpx

from promoscan.config import AppSettings, load_settings
from promoscan.repositories.database import Database
from promoscan.repositories.quota_mirror import QuotaMirror, build_quota_mirror
from promoscan.services.channel_scan_service import ChannelScanService
from promoscan.services.link_prober import LinkProber, build_probe_http_client
from promoscan.services.quota_ledger import QuotaLedger
from promoscan.services.response_cache import ResponseCache
from promoscan.services.youtube_client import YouTubeDataClient
from promoscan.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


@lru_cache(maxsize=1)
def get_quota_mirror() -> QuotaMirror:
    settings = get_settings()
    return build_quota_mirror(
        database=Database(settings.db_path),
        redis_url=settings.redis_url,
    )


@lru_cache(maxsize=1)
def get_quota_ledger() -> QuotaLedger:
    settings = get_settings()
    return QuotaLedger(
        get_quota_mirror(),
        daily_limit=settings.quota_daily_limit,
        safety_buffer=settings.quota_safety_buffer,
        low_threshold=settings.quota_low_threshold,
        key_prefix=settings.quota_mirror_key_prefix,
        mirror_ttl_seconds=settings.quota_mirror_ttl_seconds,
        telemetry=get_telemetry(),
    )


@lru_cache(maxsize=1)
def get_response_cache() -> ResponseCache:
    return ResponseCache(ttl_seconds=get_settings().response_cache_ttl_seconds)


@lru_cache(maxsize=1)
def get_youtube_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=httpx.Timeout(get_settings().youtube_http_timeout_seconds))


@lru_cache(maxsize=1)
def get_probe_http_client() -> httpx.AsyncClient:
    settings = get_settings()
    return build_probe_http_client(
        timeout_seconds=settings.link_probe_timeout_seconds,
        user_agent=settings.link_probe_user_agent,
    )


@lru_cache(maxsize=1)
def get_youtube_client() -> YouTubeDataClient:
    settings = get_settings()
    return YouTubeDataClient(
        api_key=settings.youtube_api_key,
        ledger=get_quota_ledger(),
        http_client=get_youtube_http_client(),
        base_url=settings.youtube_api_base_url,
    )


@lru_cache(maxsize=1)
def get_link_prober() -> LinkProber:
    settings = get_settings()
    return LinkProber(
        get_probe_http_client(),
        timeout_seconds=settings.link_probe_timeout_seconds,
        concurrency=settings.link_probe_concurrency,
        max_probes=settings.link_probe_max_links,
        telemetry=get_telemetry(),
    )


@lru_cache(maxsize=1)
def get_scan_service() -> ChannelScanService:
    return ChannelScanService(
        client=get_youtube_client(),
        prober=get_link_prober(),
        cache=get_response_cache(),
        telemetry=get_telemetry(),
    )


async def close_dependencies() -> None:
    """Flush pending quota writes and close whatever shared clients were opened."""
    if get_quota_ledger.cache_info().currsize:
        await get_quota_ledger().flush()
    if get_youtube_http_client.cache_info().currsize:
        await get_youtube_http_client().aclose()
    if get_probe_http_client.cache_info().currsize:
        await get_probe_http_client().aclose()
    if get_quota_mirror.cache_info().currsize:
        await get_quota_mirror().aclose()


def reset_cached_dependencies() -> None:
    get_scan_service.cache_clear()
    get_link_prober.cache_clear()
    get_youtube_client.cache_clear()
    get_probe_http_client.cache_clear()
    get_youtube_http_client.cache_clear()
    get_response_cache.cache_clear()
    get_quota_ledger.cache_clear()
    get_quota_mirror.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()
