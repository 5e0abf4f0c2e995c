from __future__ import annotations

import calendar
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from promoscan.errors import ConfigurationError
from promoscan.repositories.common import utc_now
from promoscan.services.channel_resolver import ChannelResolver, parse_channel_reference
from promoscan.services.coercion import as_dict, coerce_nonempty_string
from promoscan.services.description_links import (
    description_lines,
    domain_from_url,
    extract_urls,
    guess_product_name,
    is_social_domain,
    is_youtube_domain,
    matches_domain_filter,
    normalize_url,
)
from promoscan.services.input_validation import validate_channel_input, validate_domain_input
from promoscan.services.link_prober import LinkProber, LinkProbeResult
from promoscan.services.quota_ledger import QuotaLedger, QuotaStatus
from promoscan.services.response_cache import ResponseCache, build_cache_key
from promoscan.services.upload_collector import collect_uploads
from promoscan.services.video_details import (
    VideoDetail,
    VideoDetailFetcher,
    merge_upload_details,
)
from promoscan.services.youtube_client import YouTubeDataClient
from promoscan.telemetry import TelemetryClient

LOGGER = logging.getLogger("promoscan.scan")

ANALYZE_WINDOW_DAYS = 365
ANALYZE_MAX_VIDEOS = 1_200
ANALYZE_BUDGET_UNITS = 200

LINKCHECK_DEFAULT_MAX_VIDEOS = 500
LINKCHECK_MAX_VIDEOS = 1_000
LINKCHECK_DEFAULT_MONTHS = 12
LINKCHECK_MAX_MONTHS = 36
LINKCHECK_BUDGET_UNITS = 200
LINKCHECK_VIDEOS_PER_LINK = 5

DOMAIN_SEARCH_BUDGET_UNITS = 600
DOMAIN_SEARCH_MAX_PAGES = 5
DOMAIN_SEARCH_MATCH_TARGET = 100
DOMAIN_SEARCH_TOP_RESULTS = 50


@dataclass(frozen=True)
class ChannelVideos:
    channel_id: str
    since_iso: str
    videos: list[VideoDetail]


@dataclass
class _LinkOccurrences:
    url: str
    domain: str
    videos: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class _Promotion:
    key: str
    domain: str
    url: str
    product_name: str
    occurrences: int = 0
    videos: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "domain": self.domain,
            "url": self.url,
            "product_name": self.product_name,
            "occurrences": self.occurrences,
            "videos": self.videos,
        }


class ChannelScanService:
    """Channel analysis features built on the quota-governed ingestion core.

    Every feature validates its input, refreshes the ledger from the mirror,
    refuses to start when the usable budget cannot cover its estimated cost,
    and answers from the response cache when an identical request was served
    recently.
    """

    def __init__(
        self,
        *,
        client: YouTubeDataClient,
        prober: LinkProber,
        cache: ResponseCache,
        telemetry: TelemetryClient | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._client = client
        self._resolver = ChannelResolver(client)
        self._fetcher = VideoDetailFetcher(client)
        self._prober = prober
        self._cache = cache
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._clock = clock

    @property
    def ledger(self) -> QuotaLedger:
        return self._client.ledger

    async def quota_status(self) -> QuotaStatus:
        return await self.ledger.hydrate()

    async def collect_channel_videos(
        self,
        raw_input: str,
        *,
        since: datetime,
        max_videos: int,
    ) -> ChannelVideos:
        channel_input = validate_channel_input(raw_input)
        channel_id = await self._resolver.resolve_input(channel_input)
        playlist_id = await self._client.get_uploads_playlist_id(channel_id)
        uploads = await collect_uploads(
            self._client,
            playlist_id,
            cutoff=since,
            max_items=max_videos,
            telemetry=self._telemetry,
        )
        details = await self._fetcher.fetch_details([upload.video_id for upload in uploads])
        return ChannelVideos(
            channel_id=channel_id,
            since_iso=_isoformat(since),
            videos=merge_upload_details(uploads, details),
        )

    async def analyze_promotions(self, raw_input: str) -> dict[str, Any]:
        channel_input = validate_channel_input(raw_input)
        await self._prepare(ANALYZE_BUDGET_UNITS)

        cache_key = build_cache_key(
            "analyze",
            channel=_channel_cache_token(channel_input),
            window_days=ANALYZE_WINDOW_DAYS,
            max_videos=ANALYZE_MAX_VIDEOS,
        )
        cached = self._cached(cache_key)
        if cached is not None:
            return cached

        since = self._clock() - timedelta(days=ANALYZE_WINDOW_DAYS)
        collected = await self.collect_channel_videos(
            channel_input,
            since=since,
            max_videos=ANALYZE_MAX_VIDEOS,
        )
        promotions = group_promotions(collected.videos)
        payload = {
            "channel_id": collected.channel_id,
            "since_iso": collected.since_iso,
            "video_count": len(collected.videos),
            "promotions": [promotion.to_dict() for promotion in promotions],
        }
        LOGGER.info(
            "promotions analyzed channel_id=%s videos=%s promotions=%s",
            collected.channel_id,
            len(collected.videos),
            len(promotions),
        )
        return self._store(cache_key, payload)

    async def check_links(
        self,
        raw_input: str,
        *,
        domain_filter: str | None = None,
        check: bool = True,
        max_videos: int | None = None,
        months: int | None = None,
    ) -> dict[str, Any]:
        channel_input = validate_channel_input(raw_input)
        normalized_filter = (domain_filter or "").strip().lower()
        video_cap = _bounded(
            max_videos,
            default=LINKCHECK_DEFAULT_MAX_VIDEOS,
            upper=LINKCHECK_MAX_VIDEOS,
        )
        months_back = _bounded(
            months,
            default=LINKCHECK_DEFAULT_MONTHS,
            upper=LINKCHECK_MAX_MONTHS,
        )
        await self._prepare(LINKCHECK_BUDGET_UNITS)

        cache_key = build_cache_key(
            "linkcheck",
            channel=_channel_cache_token(channel_input),
            filter=normalized_filter,
            check=check,
            max_videos=video_cap,
            months=months_back,
        )
        cached = self._cached(cache_key)
        if cached is not None:
            return cached

        since = subtract_months(self._clock(), months_back)
        collected = await self.collect_channel_videos(
            channel_input,
            since=since,
            max_videos=video_cap,
        )
        channel = await self._client.get_channel_info(collected.channel_id)
        links = collect_outbound_links(collected.videos, domain_filter=normalized_filter)

        working_links: list[dict[str, Any]] = []
        broken_links: list[dict[str, Any]] = []
        checked_count = 0
        if check and links:
            results = await self._prober.probe_all([link.url for link in links])
            for link, result in zip(links, results, strict=True):
                if result.working is False:
                    broken_links.append(_broken_link(link, result))
                else:
                    working_links.append(_working_link(link, result))
            checked_count = sum(1 for result in results if not result.unchecked)
        else:
            working_links = [_working_link(link, None) for link in links]

        unchecked_count = sum(1 for link in working_links if link["unchecked"])
        payload = {
            "channel": channel.to_dict(),
            "filter": normalized_filter or None,
            "since_iso": collected.since_iso,
            "video_count": len(collected.videos),
            "total_links": len(links),
            "checked_links": checked_count,
            "working_links": working_links,
            "broken_links": broken_links,
            "summary": {
                "working": len(working_links),
                "broken": len(broken_links),
                "unchecked": unchecked_count,
                "total": len(links),
            },
        }
        LOGGER.info(
            "links checked channel_id=%s videos=%s links=%s broken=%s unchecked=%s",
            collected.channel_id,
            len(collected.videos),
            len(links),
            len(broken_links),
            unchecked_count,
        )
        return self._store(cache_key, payload)

    async def search_domain(self, raw_domain: str) -> dict[str, Any]:
        domain = validate_domain_input(raw_domain)
        await self._prepare(DOMAIN_SEARCH_BUDGET_UNITS)

        cache_key = build_cache_key("domain", domain=domain)
        cached = self._cached(cache_key)
        if cached is not None:
            return cached

        matches: list[VideoDetail] = []
        page_token: str | None = None
        pages_searched = 0
        while pages_searched < DOMAIN_SEARCH_MAX_PAGES:
            page = await self._client.search_videos_page(f'"{domain}"', page_token=page_token)
            if not page.items:
                break

            video_ids = [
                video_id
                for video_id in (
                    coerce_nonempty_string(as_dict(item.get("id")).get("videoId"))
                    for item in page.items
                )
                if video_id is not None
            ]
            if video_ids:
                details = await self._fetcher.fetch_details(
                    video_ids,
                    include_statistics=True,
                    include_content_details=False,
                )
                matches.extend(
                    detail for detail in details if domain in detail.description.lower()
                )

            page_token = page.next_page_token
            pages_searched += 1
            if page_token is None or len(matches) >= DOMAIN_SEARCH_MATCH_TARGET:
                break

        ranked = sorted(matches, key=lambda detail: detail.view_count or 0, reverse=True)
        top = ranked[:DOMAIN_SEARCH_TOP_RESULTS]
        payload = {
            "domain": domain,
            "video_count": len(top),
            "total_found": len(matches),
            "videos": [
                {
                    "video_id": detail.video_id,
                    "title": detail.title,
                    "channel_title": detail.channel_title or "",
                    "channel_id": detail.channel_id or "",
                    "published_at": detail.published_at or "",
                    "thumbnail": detail.thumbnail or "",
                    "view_count": detail.view_count or 0,
                }
                for detail in top
            ],
        }
        LOGGER.info(
            "domain searched domain=%s pages=%s matches=%s",
            domain,
            pages_searched,
            len(matches),
        )
        return self._store(cache_key, payload)

    async def _prepare(self, estimated_cost: int) -> None:
        if not self._client.configured:
            raise ConfigurationError("YouTube API key not configured.")
        await self.ledger.hydrate()
        self.ledger.require_budget(estimated_cost)

    def _cached(self, cache_key: str) -> dict[str, Any] | None:
        cached = self._cache.get(cache_key)
        if cached is None:
            return None
        LOGGER.debug("response cache hit key=%s", cache_key)
        return {**cached, "from_cache": True}

    def _store(self, cache_key: str, payload: dict[str, Any]) -> dict[str, Any]:
        self._cache.set(cache_key, payload)
        return {**payload, "from_cache": False}


def group_promotions(videos: list[VideoDetail]) -> list[_Promotion]:
    """Group description links by domain and product label, most frequent first."""
    by_key: dict[str, _Promotion] = {}
    for video in videos:
        lines = description_lines(video.description)
        for url in extract_urls(video.description):
            normalized = normalize_url(url)
            domain = domain_from_url(normalized)
            if is_social_domain(domain):
                continue
            line = next((candidate for candidate in lines if url in candidate), "")
            product_name = guess_product_name(line, url)
            key = f"{domain}::{product_name or normalized}"
            promotion = by_key.get(key)
            if promotion is None:
                promotion = _Promotion(
                    key=key,
                    domain=domain,
                    url=normalized,
                    product_name=product_name,
                )
                by_key[key] = promotion
            promotion.occurrences += 1
            promotion.videos.append(video.to_summary())

    return sorted(
        by_key.values(),
        key=lambda promotion: (-promotion.occurrences, promotion.domain, promotion.product_name),
    )


def collect_outbound_links(
    videos: list[VideoDetail],
    *,
    domain_filter: str = "",
) -> list[_LinkOccurrences]:
    """Unique non-YouTube description URLs, ordered by how many videos carry them."""
    by_url: dict[str, _LinkOccurrences] = {}
    for video in videos:
        for url in extract_urls(video.description):
            domain = domain_from_url(url)
            if is_youtube_domain(domain):
                continue
            if domain_filter and not matches_domain_filter(url, domain_filter):
                continue
            link = by_url.setdefault(url, _LinkOccurrences(url=url, domain=domain))
            link.videos.append(video.to_summary())
    return sorted(by_url.values(), key=lambda link: len(link.videos), reverse=True)


def subtract_months(moment: datetime, months: int) -> datetime:
    """Calendar-month arithmetic, clamping the day to the target month's length."""
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def _working_link(link: _LinkOccurrences, result: LinkProbeResult | None) -> dict[str, Any]:
    return {
        "url": link.url,
        "domain": link.domain,
        "status": result.status if result is not None else None,
        "redirect_url": result.redirect_url if result is not None else None,
        "occurrences": len(link.videos),
        "videos": link.videos[:LINKCHECK_VIDEOS_PER_LINK],
        "unchecked": result is None or result.unchecked,
    }


def _broken_link(link: _LinkOccurrences, result: LinkProbeResult) -> dict[str, Any]:
    return {
        "url": link.url,
        "domain": link.domain,
        "status": result.status,
        "error": result.error,
        "occurrences": len(link.videos),
        "videos": link.videos[:LINKCHECK_VIDEOS_PER_LINK],
    }


def _channel_cache_token(channel_input: str) -> str:
    # URL and bare forms of the same reference share one entry.
    reference = parse_channel_reference(channel_input)
    return f"{reference.kind}:{reference.value}"


def _bounded(value: int | None, *, default: int, upper: int) -> int:
    if not value or value < 1:
        return default
    return min(value, upper)


def _isoformat(moment: datetime) -> str:
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")
