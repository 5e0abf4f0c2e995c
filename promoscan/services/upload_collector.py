"""Cursor-ordered walk over a channel's uploads playlist.

The playlistItems endpoint is assumed to return uploads newest-first. The
collector relies on that to stop at the first item older than the cutoff
instead of reading the whole playlist. If the ordering assumption breaks,
the walk would stop too early without raising, so every out-of-order
item is counted in ``ordering_violations`` and logged.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from promoscan.repositories.common import parse_iso_utc
from promoscan.services.coercion import as_dict, coerce_nonempty_string
from promoscan.services.youtube_client import YouTubeDataClient
from promoscan.telemetry import TelemetryClient

LOGGER = logging.getLogger("promoscan.youtube.uploads")


@dataclass(frozen=True)
class UploadItem:
    video_id: str
    title: str
    published_at: str


class UploadIterator:
    """Forward-only, non-restartable stream of ``UploadItem``.

    ``next()`` returns the next eligible item, or ``None`` once the stream
    has ended (no further cursor, or the cutoff was crossed). Pages are
    requested strictly in cursor order and only when the buffered page is
    drained, so a caller that stops pulling never triggers another fetch.
    """

    def __init__(
        self,
        client: YouTubeDataClient,
        playlist_id: str,
        *,
        cutoff: datetime,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._client = client
        self._playlist_id = playlist_id
        self._cutoff = cutoff
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._buffer: deque[dict[str, Any]] = deque()
        self._next_page_token: str | None = None
        self._started = False
        self._finished = False
        self._last_published: datetime | None = None
        self.pages_fetched = 0
        self.skipped_items = 0
        self.ordering_violations = 0

    @property
    def finished(self) -> bool:
        return self._finished

    async def next(self) -> UploadItem | None:
        while not self._finished:
            if not self._buffer:
                if self._started and self._next_page_token is None:
                    self._finished = True
                    break
                await self._fetch_page()
                continue

            raw_item = self._buffer.popleft()
            published_raw = _published_at(raw_item)
            published = parse_iso_utc(published_raw)
            video_id = _video_id(raw_item)
            if published_raw is None or published is None or video_id is None:
                self.skipped_items += 1
                continue

            if published < self._cutoff:
                self._finish_at_cutoff(published)
                break

            self._check_ordering(video_id, published)
            snippet = as_dict(raw_item.get("snippet"))
            return UploadItem(
                video_id=video_id,
                title=coerce_nonempty_string(snippet.get("title")) or "",
                published_at=published_raw,
            )
        return None

    def __aiter__(self) -> UploadIterator:
        return self

    async def __anext__(self) -> UploadItem:
        item = await self.next()
        if item is None:
            raise StopAsyncIteration
        return item

    async def _fetch_page(self) -> None:
        page = await self._client.list_playlist_items_page(
            self._playlist_id,
            page_token=self._next_page_token,
        )
        self._started = True
        self.pages_fetched += 1
        self._next_page_token = page.next_page_token
        self._buffer.extend(page.items)
        self._telemetry.emit(
            "uploads.page.fetch",
            playlist_id=self._playlist_id,
            page=self.pages_fetched,
            items=len(page.items),
            has_next=page.next_page_token is not None,
        )

    def _finish_at_cutoff(self, published: datetime) -> None:
        LOGGER.debug(
            "upload walk reached cutoff playlist_id=%s published=%s cutoff=%s pages=%s",
            self._playlist_id,
            published.isoformat(),
            self._cutoff.isoformat(),
            self.pages_fetched,
        )
        self._finished = True
        self._buffer.clear()

    def _check_ordering(self, video_id: str, published: datetime) -> None:
        if self._last_published is not None and published > self._last_published:
            self.ordering_violations += 1
            LOGGER.warning(
                "uploads not newest-first playlist_id=%s video_id=%s published=%s previous=%s",
                self._playlist_id,
                video_id,
                published.isoformat(),
                self._last_published.isoformat(),
            )
            self._telemetry.emit(
                "uploads.ordering_violation",
                playlist_id=self._playlist_id,
                video_id=video_id,
            )
        self._last_published = published


async def collect_uploads(
    client: YouTubeDataClient,
    playlist_id: str,
    *,
    cutoff: datetime,
    max_items: int,
    telemetry: TelemetryClient | None = None,
) -> list[UploadItem]:
    iterator = UploadIterator(client, playlist_id, cutoff=cutoff, telemetry=telemetry)
    items: list[UploadItem] = []
    cap = max(0, max_items)
    while len(items) < cap:
        item = await iterator.next()
        if item is None:
            break
        items.append(item)

    LOGGER.info(
        "uploads collected playlist_id=%s count=%s pages=%s skipped=%s ordering_violations=%s",
        playlist_id,
        len(items),
        iterator.pages_fetched,
        iterator.skipped_items,
        iterator.ordering_violations,
    )
    return items


def _published_at(raw_item: dict[str, Any]) -> str | None:
    content_details = as_dict(raw_item.get("contentDetails"))
    snippet = as_dict(raw_item.get("snippet"))
    return coerce_nonempty_string(content_details.get("videoPublishedAt")) or (
        coerce_nonempty_string(snippet.get("publishedAt"))
    )


def _video_id(raw_item: dict[str, Any]) -> str | None:
    content_details = as_dict(raw_item.get("contentDetails"))
    snippet = as_dict(raw_item.get("snippet"))
    return coerce_nonempty_string(content_details.get("videoId")) or coerce_nonempty_string(
        as_dict(snippet.get("resourceId")).get("videoId")
    )
