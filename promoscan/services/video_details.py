from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from promoscan.services.coercion import (
    as_dict,
    coerce_int,
    coerce_nonempty_string,
    parse_iso8601_duration_seconds,
)
from promoscan.services.upload_collector import UploadItem
from promoscan.services.youtube_client import (
    MAX_VIDEO_IDS_PER_CALL,
    QUOTA_COST_VIDEO_BATCH,
    YouTubeDataClient,
)

LOGGER = logging.getLogger("promoscan.youtube.details")


@dataclass(frozen=True)
class VideoDetail:
    video_id: str
    title: str
    description: str
    published_at: str | None
    view_count: int | None = None
    like_count: int | None = None
    comment_count: int | None = None
    duration_seconds: int | None = None
    channel_id: str | None = None
    channel_title: str | None = None
    thumbnail: str | None = None

    def to_summary(self) -> dict[str, Any]:
        return {
            "video_id": self.video_id,
            "title": self.title,
            "published_at": self.published_at,
        }


class VideoDetailFetcher:
    """Hydrates video ids into ``VideoDetail`` records, 50 ids per 1-unit call.

    Ids unknown upstream are silently omitted. Chunks run sequentially by
    default. With ``max_concurrency > 1`` the whole cost is checked against
    the ledger up front, so concurrent chunks never start on a budget that
    cannot cover all of them.
    """

    def __init__(self, client: YouTubeDataClient) -> None:
        self._client = client

    async def fetch_details(
        self,
        video_ids: Sequence[str],
        *,
        max_batch: int = MAX_VIDEO_IDS_PER_CALL,
        include_statistics: bool = False,
        include_content_details: bool = True,
        max_concurrency: int = 1,
    ) -> list[VideoDetail]:
        batch_size = max(1, min(MAX_VIDEO_IDS_PER_CALL, max_batch))
        ids = [video_id for video_id in video_ids if video_id]
        chunks = [ids[start : start + batch_size] for start in range(0, len(ids), batch_size)]
        if not chunks:
            return []

        parts = ["snippet"]
        if include_content_details:
            parts.append("contentDetails")
        if include_statistics:
            parts.append("statistics")

        if max_concurrency <= 1 or len(chunks) == 1:
            details: list[VideoDetail] = []
            for chunk in chunks:
                details.extend(await self._fetch_chunk(chunk, tuple(parts)))
        else:
            self._client.ledger.require_budget(len(chunks) * QUOTA_COST_VIDEO_BATCH)
            semaphore = asyncio.Semaphore(max_concurrency)

            async def _bounded(chunk: list[str]) -> list[VideoDetail]:
                async with semaphore:
                    return await self._fetch_chunk(chunk, tuple(parts))

            results = await asyncio.gather(*(_bounded(chunk) for chunk in chunks))
            details = [detail for chunk_details in results for detail in chunk_details]

        LOGGER.info(
            "video details fetched requested=%s returned=%s batches=%s",
            len(ids),
            len(details),
            len(chunks),
        )
        return details

    async def _fetch_chunk(self, chunk: list[str], parts: tuple[str, ...]) -> list[VideoDetail]:
        items = await self._client.list_videos(chunk, parts=parts)
        details: list[VideoDetail] = []
        for item in items:
            detail = parse_video_detail(item)
            if detail is not None:
                details.append(detail)
        return details


def parse_video_detail(item: dict[str, Any]) -> VideoDetail | None:
    video_id = coerce_nonempty_string(item.get("id"))
    if video_id is None:
        return None
    snippet = as_dict(item.get("snippet"))
    statistics = as_dict(item.get("statistics"))
    content_details = as_dict(item.get("contentDetails"))
    thumbnails = as_dict(snippet.get("thumbnails"))
    thumbnail = coerce_nonempty_string(as_dict(thumbnails.get("medium")).get("url")) or (
        coerce_nonempty_string(as_dict(thumbnails.get("default")).get("url"))
    )
    raw_title = snippet.get("title")
    raw_description = snippet.get("description")
    return VideoDetail(
        video_id=video_id,
        title=raw_title if isinstance(raw_title, str) else "",
        description=raw_description if isinstance(raw_description, str) else "",
        published_at=coerce_nonempty_string(snippet.get("publishedAt")),
        view_count=coerce_int(statistics.get("viewCount")),
        like_count=coerce_int(statistics.get("likeCount")),
        comment_count=coerce_int(statistics.get("commentCount")),
        duration_seconds=parse_iso8601_duration_seconds(content_details.get("duration")),
        channel_id=coerce_nonempty_string(snippet.get("channelId")),
        channel_title=coerce_nonempty_string(snippet.get("channelTitle")),
        thumbnail=thumbnail,
    )


def merge_upload_details(
    uploads: Sequence[UploadItem],
    details: Sequence[VideoDetail],
) -> list[VideoDetail]:
    """One record per upload, in upload order; uploads without details keep their own fields."""
    by_id = {detail.video_id: detail for detail in details}
    merged: list[VideoDetail] = []
    for upload in uploads:
        detail = by_id.get(upload.video_id)
        if detail is None:
            merged.append(
                VideoDetail(
                    video_id=upload.video_id,
                    title=upload.title,
                    description="",
                    published_at=upload.published_at,
                )
            )
            continue
        merged.append(
            VideoDetail(
                video_id=detail.video_id,
                title=detail.title or upload.title,
                description=detail.description,
                published_at=detail.published_at or upload.published_at,
                view_count=detail.view_count,
                like_count=detail.like_count,
                comment_count=detail.comment_count,
                duration_seconds=detail.duration_seconds,
                channel_id=detail.channel_id,
                channel_title=detail.channel_title,
                thumbnail=detail.thumbnail,
            )
        )
    return merged
