from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient

from promoscan.dependencies import get_scan_service, reset_cached_dependencies
from promoscan.main import create_app
from promoscan.services.channel_scan_service import ChannelScanService
from promoscan.services.link_prober import LinkProber
from promoscan.services.quota_ledger import QuotaLedger
from promoscan.services.response_cache import ResponseCache
from promoscan.services.youtube_client import YouTubeDataClient
from promoscan.telemetry import TelemetryClient

FIXED_NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)
TEST_API_KEY = "test-youtube-key"


class MutableClock:
    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)

    def iso_days_ago(self, days: float) -> str:
        return (self.now - timedelta(days=days)).isoformat().replace("+00:00", "Z")


class MonotonicClock:
    def __init__(self) -> None:
        self.value = 1_000.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class InMemoryQuotaMirror:
    backend_name = "memory"

    def __init__(self) -> None:
        self.values: dict[str, dict[str, Any]] = {}
        self.ttls: dict[str, int | None] = {}
        self.set_calls = 0
        self.fail_writes = False
        self.closed = False

    async def get(self, key: str) -> dict[str, Any] | None:
        value = self.values.get(key)
        return dict(value) if value is not None else None

    async def set(self, key: str, value: dict[str, Any], ttl_seconds: int | None = None) -> bool:
        self.set_calls += 1
        if self.fail_writes:
            return False
        self.values[key] = dict(value)
        self.ttls[key] = ttl_seconds
        return True

    async def aclose(self) -> None:
        self.closed = True


class CaptureSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self.events.append((event_name, dict(attributes)))

    def names(self) -> list[str]:
        return [event_name for event_name, _ in self.events]


class FakeYouTubeApi:
    """In-process stand-in for the handful of Data API endpoints the scanner calls."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.usernames: dict[str, str] = {}
        self.channel_queries: dict[str, str] = {}
        self.channels: dict[str, dict[str, Any]] = {}
        self.playlists: dict[str, list[list[dict[str, Any]]]] = {}
        self.videos: dict[str, dict[str, Any]] = {}
        self.video_search_pages: list[list[str]] = []
        self.failures: dict[str, httpx.Response] = {}

    def add_channel(
        self,
        channel_id: str,
        *,
        title: str = "Test Channel",
        uploads: str | None = None,
        username: str | None = None,
        query: str | None = None,
    ) -> str:
        playlist_id = uploads if uploads is not None else "UU" + channel_id[2:]
        self.channels[channel_id] = {"title": title, "uploads": playlist_id}
        if username is not None:
            self.usernames[username] = channel_id
        if query is not None:
            self.channel_queries[query] = channel_id
        return playlist_id

    def set_uploads(self, playlist_id: str, pages: list[list[tuple[str, str]]]) -> None:
        self.playlists[playlist_id] = [
            [playlist_item(video_id, published_at) for video_id, published_at in page]
            for page in pages
        ]

    def set_upload_items(self, playlist_id: str, pages: list[list[dict[str, Any]]]) -> None:
        self.playlists[playlist_id] = pages

    def add_video(
        self,
        video_id: str,
        *,
        description: str = "",
        title: str | None = None,
        published_at: str = "2026-03-01T00:00:00Z",
        view_count: int | None = None,
        channel_id: str = "UCother",
        channel_title: str = "Other Channel",
    ) -> None:
        item: dict[str, Any] = {
            "id": video_id,
            "snippet": {
                "title": title if title is not None else f"Video {video_id}",
                "description": description,
                "publishedAt": published_at,
                "channelId": channel_id,
                "channelTitle": channel_title,
                "thumbnails": {"medium": {"url": f"https://i.ytimg.com/{video_id}/mq.jpg"}},
            },
            "contentDetails": {"duration": "PT4M13S"},
        }
        if view_count is not None:
            item["statistics"] = {"viewCount": str(view_count)}
        self.videos[video_id] = item

    def fail(self, endpoint: str, status_code: int, body: dict[str, Any]) -> None:
        self.failures[endpoint] = httpx.Response(status_code, json=body)

    def fail_quota_exceeded(self, endpoint: str) -> None:
        self.fail(
            endpoint,
            403,
            {
                "error": {
                    "code": 403,
                    "message": "The request cannot be completed because you have exceeded quota.",
                    "errors": [{"reason": "quotaExceeded"}],
                }
            },
        )

    def calls(self, endpoint: str) -> list[httpx.Request]:
        return [
            request for request in self.requests if request.url.path.endswith(f"/{endpoint}")
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        endpoint = request.url.path.rsplit("/", 1)[-1]
        if endpoint in self.failures:
            return self.failures[endpoint]

        params = request.url.params
        if endpoint == "channels":
            return httpx.Response(200, json=self._channels(params))
        if endpoint == "search":
            return httpx.Response(200, json=self._search(params))
        if endpoint == "playlistItems":
            return httpx.Response(200, json=self._playlist_items(params))
        if endpoint == "videos":
            ids = params.get("id", "").split(",")
            items = [self.videos[video_id] for video_id in ids if video_id in self.videos]
            return httpx.Response(200, json={"items": items})
        return httpx.Response(404, json={"error": {"message": "unknown endpoint"}})

    def _channels(self, params: httpx.QueryParams) -> dict[str, Any]:
        username = params.get("forUsername")
        if username is not None:
            channel_id = self.usernames.get(username)
            return {"items": [{"id": channel_id}] if channel_id else []}

        channel_id = params.get("id", "")
        channel = self.channels.get(channel_id)
        if channel is None:
            return {"items": []}
        if params.get("part") == "contentDetails":
            return {
                "items": [
                    {
                        "id": channel_id,
                        "contentDetails": {"relatedPlaylists": {"uploads": channel["uploads"]}},
                    }
                ]
            }
        return {
            "items": [
                {
                    "id": channel_id,
                    "snippet": {
                        "title": channel["title"],
                        "thumbnails": {"default": {"url": "https://yt3.example/avatar.jpg"}},
                    },
                }
            ]
        }

    def _search(self, params: httpx.QueryParams) -> dict[str, Any]:
        if params.get("type") == "channel":
            channel_id = self.channel_queries.get(params.get("q", ""))
            if channel_id is None:
                return {"items": []}
            item = {"id": {"channelId": channel_id}, "snippet": {"channelId": channel_id}}
            return {"items": [item]}

        index = _page_index(params.get("pageToken"))
        if index >= len(self.video_search_pages):
            return {"items": []}
        payload: dict[str, Any] = {
            "items": [{"id": {"videoId": video_id}} for video_id in self.video_search_pages[index]]
        }
        if index + 1 < len(self.video_search_pages):
            payload["nextPageToken"] = f"page-{index + 1}"
        return payload

    def _playlist_items(self, params: httpx.QueryParams) -> dict[str, Any]:
        pages = self.playlists.get(params.get("playlistId", ""), [])
        index = _page_index(params.get("pageToken"))
        if index >= len(pages):
            return {"items": []}
        payload: dict[str, Any] = {"items": pages[index]}
        if index + 1 < len(pages):
            payload["nextPageToken"] = f"page-{index + 1}"
        return payload


def playlist_item(video_id: str, published_at: str, *, title: str | None = None) -> dict[str, Any]:
    return {
        "snippet": {
            "title": title if title is not None else f"Video {video_id}",
            "publishedAt": published_at,
            "resourceId": {"videoId": video_id},
        },
        "contentDetails": {"videoId": video_id, "videoPublishedAt": published_at},
    }


def _page_index(page_token: str | None) -> int:
    if not page_token:
        return 0
    return int(page_token.removeprefix("page-"))


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def mirror() -> InMemoryQuotaMirror:
    return InMemoryQuotaMirror()


@pytest.fixture
def telemetry_sink() -> CaptureSink:
    return CaptureSink()


@pytest.fixture
def telemetry(telemetry_sink: CaptureSink) -> TelemetryClient:
    return TelemetryClient(enabled=True, sink=telemetry_sink)


@pytest.fixture
def ledger(
    mirror: InMemoryQuotaMirror,
    clock: MutableClock,
    telemetry: TelemetryClient,
) -> QuotaLedger:
    return QuotaLedger(mirror, clock=clock, telemetry=telemetry)


@pytest.fixture
def youtube_api() -> FakeYouTubeApi:
    return FakeYouTubeApi()


@pytest.fixture
def youtube_client(youtube_api: FakeYouTubeApi, ledger: QuotaLedger) -> YouTubeDataClient:
    return YouTubeDataClient(
        api_key=TEST_API_KEY,
        ledger=ledger,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(youtube_api.handler)),
    )


@pytest.fixture
def link_statuses() -> dict[str, int]:
    return {}


@pytest.fixture
def link_handler(link_statuses: dict[str, int]) -> Callable[[httpx.Request], httpx.Response]:
    def _handle(request: httpx.Request) -> httpx.Response:
        return httpx.Response(link_statuses.get(str(request.url), 200))

    return _handle


@pytest.fixture
def link_prober(
    link_handler: Callable[[httpx.Request], httpx.Response],
    telemetry: TelemetryClient,
) -> LinkProber:
    return LinkProber(
        httpx.AsyncClient(transport=httpx.MockTransport(link_handler)),
        timeout_seconds=1.0,
        telemetry=telemetry,
    )


@pytest.fixture
def scan_service(
    youtube_client: YouTubeDataClient,
    link_prober: LinkProber,
    telemetry: TelemetryClient,
    clock: MutableClock,
) -> ChannelScanService:
    return ChannelScanService(
        client=youtube_client,
        prober=link_prober,
        cache=ResponseCache(ttl_seconds=900, clock=MonotonicClock()),
        telemetry=telemetry,
        clock=clock,
    )


@pytest.fixture
def api_client(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    scan_service: ChannelScanService,
    restore_logging: None,
) -> Iterator[TestClient]:
    data_dir = tmp_path / "runtime-data"
    monkeypatch.setenv("PROMOSCAN_DATA_DIR", str(data_dir))
    monkeypatch.setenv("PROMOSCAN_YOUTUBE_API_KEY", TEST_API_KEY)
    reset_cached_dependencies()

    app = create_app()
    app.dependency_overrides[get_scan_service] = lambda: scan_service
    with TestClient(app) as test_client:
        yield test_client

    reset_cached_dependencies()


@pytest.fixture
def restore_logging() -> Iterator[None]:
    yield
    _restore_logging()


def _restore_logging() -> None:
    for name in ("promoscan", "promoscan.telemetry"):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.propagate = True
