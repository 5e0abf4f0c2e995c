from __future__ import annotations

import asyncio

import pytest

from promoscan.errors import QuotaExceededError
from promoscan.services.upload_collector import UploadItem
from promoscan.services.video_details import (
    VideoDetail,
    VideoDetailFetcher,
    merge_upload_details,
    parse_video_detail,
)
from promoscan.services.youtube_client import YouTubeDataClient


def test_fetch_details_batches_fifty_ids_per_call(
    youtube_client: YouTubeDataClient,
    youtube_api,
) -> None:
    video_ids = [f"vid{index:03d}" for index in range(120)]
    for video_id in video_ids:
        youtube_api.add_video(video_id, description=f"about {video_id}")

    details = asyncio.run(VideoDetailFetcher(youtube_client).fetch_details(video_ids))

    assert len(details) == 120
    batch_sizes = [
        len(request.url.params["id"].split(",")) for request in youtube_api.calls("videos")
    ]
    assert batch_sizes == [50, 50, 20]
    assert youtube_client.ledger.status().used == 3


def test_fetch_details_omits_unknown_ids(youtube_client: YouTubeDataClient, youtube_api) -> None:
    youtube_api.add_video("known", description="hello")

    details = asyncio.run(VideoDetailFetcher(youtube_client).fetch_details(["known", "gone", ""]))

    assert [detail.video_id for detail in details] == ["known"]
    (request,) = youtube_api.calls("videos")
    assert request.url.params["id"] == "known,gone"


def test_fetch_details_without_ids_makes_no_request(youtube_client: YouTubeDataClient) -> None:
    assert asyncio.run(VideoDetailFetcher(youtube_client).fetch_details([])) == []
    assert youtube_client.ledger.status().used == 0


def test_fetch_details_requests_statistics_part(
    youtube_client: YouTubeDataClient,
    youtube_api,
) -> None:
    youtube_api.add_video("v1", view_count=1234)

    (detail,) = asyncio.run(
        VideoDetailFetcher(youtube_client).fetch_details(
            ["v1"],
            include_statistics=True,
            include_content_details=False,
        )
    )

    (request,) = youtube_api.calls("videos")
    assert request.url.params["part"] == "snippet,statistics"
    assert detail.view_count == 1234


def test_concurrent_fetch_checks_whole_budget_first(
    youtube_client: YouTubeDataClient,
    youtube_api,
) -> None:
    youtube_client.ledger.consume(9_498)
    fetcher = VideoDetailFetcher(youtube_client)

    with pytest.raises(QuotaExceededError):
        asyncio.run(
            fetcher.fetch_details(
                [f"vid{index}" for index in range(150)],
                max_concurrency=3,
            )
        )

    assert youtube_api.calls("videos") == []
    assert youtube_client.ledger.status().used == 9_498


def test_concurrent_fetch_collects_every_chunk(
    youtube_client: YouTubeDataClient,
    youtube_api,
) -> None:
    video_ids = [f"vid{index:03d}" for index in range(101)]
    for video_id in video_ids:
        youtube_api.add_video(video_id)

    details = asyncio.run(
        VideoDetailFetcher(youtube_client).fetch_details(video_ids, max_concurrency=3)
    )

    assert sorted(detail.video_id for detail in details) == video_ids
    assert youtube_client.ledger.status().used == 3


def test_parse_video_detail_reads_snippet_fields() -> None:
    detail = parse_video_detail(
        {
            "id": "abc",
            "snippet": {
                "title": "Gear review",
                "description": "links below",
                "publishedAt": "2026-03-01T10:00:00Z",
                "channelId": "UCchannel",
                "channelTitle": "Channel",
                "thumbnails": {"default": {"url": "https://i.ytimg.com/abc/default.jpg"}},
            },
            "statistics": {"viewCount": "42", "likeCount": "not-a-number"},
            "contentDetails": {"duration": "PT1H2M3S"},
        }
    )

    assert detail == VideoDetail(
        video_id="abc",
        title="Gear review",
        description="links below",
        published_at="2026-03-01T10:00:00Z",
        view_count=42,
        like_count=None,
        duration_seconds=3723,
        channel_id="UCchannel",
        channel_title="Channel",
        thumbnail="https://i.ytimg.com/abc/default.jpg",
    )


def test_parse_video_detail_requires_id() -> None:
    assert parse_video_detail({"snippet": {"title": "orphan"}}) is None


def test_merge_keeps_upload_order_and_fills_missing_details() -> None:
    uploads = [
        UploadItem(video_id="a", title="Upload A", published_at="2026-03-02T00:00:00Z"),
        UploadItem(video_id="b", title="Upload B", published_at="2026-03-01T00:00:00Z"),
    ]
    details = [
        VideoDetail(video_id="b", title="", description="desc b", published_at=None),
    ]

    merged = merge_upload_details(uploads, details)

    assert [detail.video_id for detail in merged] == ["a", "b"]
    assert merged[0] == VideoDetail(
        video_id="a",
        title="Upload A",
        description="",
        published_at="2026-03-02T00:00:00Z",
    )
    assert merged[1].title == "Upload B"
    assert merged[1].description == "desc b"
    assert merged[1].published_at == "2026-03-01T00:00:00Z"
