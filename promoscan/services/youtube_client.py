from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, cast

import httpx

from promoscan.errors import (
    ChannelUnresolvableError,
    ConfigurationError,
    UpstreamHttpError,
    UpstreamQuotaExceededError,
)
from promoscan.services.coercion import as_dict, as_list, coerce_nonempty_string
from promoscan.services.quota_ledger import QuotaLedger

LOGGER = logging.getLogger("promoscan.youtube")

YOUTUBE_API_BASE_URL = "https://www.googleapis.com/youtube/v3"

# Documented YouTube Data API v3 costs.
QUOTA_COST_CHANNEL_LOOKUP = 1
QUOTA_COST_PLAYLIST_PAGE = 1
QUOTA_COST_VIDEO_BATCH = 1
QUOTA_COST_SEARCH = 100

PLAYLIST_PAGE_SIZE = 50
MAX_VIDEO_IDS_PER_CALL = 50


@dataclass(frozen=True)
class ChannelInfo:
    channel_id: str
    title: str
    thumbnail: str

    def to_dict(self) -> dict[str, str]:
        return {"id": self.channel_id, "title": self.title, "thumbnail": self.thumbnail}


@dataclass(frozen=True)
class ListPage:
    items: list[dict[str, Any]]
    next_page_token: str | None


class YouTubeDataClient:
    """Quota-metered access to the YouTube Data API v3 with a static API key.

    Every call consumes its documented cost from the ledger *before* the
    request is sent; a refused consumption raises ``QuotaExceededError``
    and no request is made. Failures are classified once and never retried.
    """

    def __init__(
        self,
        *,
        api_key: str | None,
        ledger: QuotaLedger,
        http_client: httpx.AsyncClient,
        base_url: str = YOUTUBE_API_BASE_URL,
    ) -> None:
        self._api_key = api_key
        self._ledger = ledger
        self._http_client = http_client
        self._base_url = base_url.rstrip("/")

    @property
    def ledger(self) -> QuotaLedger:
        return self._ledger

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def lookup_channel_by_username(self, username: str) -> str | None:
        payload = await self._get_json(
            "channels",
            {"part": "id", "forUsername": username},
            cost=QUOTA_COST_CHANNEL_LOOKUP,
        )
        for item in as_list(payload.get("items")):
            channel_id = coerce_nonempty_string(as_dict(item).get("id"))
            if channel_id is not None:
                return channel_id
        return None

    async def search_channel(self, query: str) -> str | None:
        payload = await self._get_json(
            "search",
            {"part": "snippet", "type": "channel", "maxResults": 1, "q": query},
            cost=QUOTA_COST_SEARCH,
        )
        for item in as_list(payload.get("items")):
            item_dict = as_dict(item)
            channel_id = coerce_nonempty_string(
                as_dict(item_dict.get("snippet")).get("channelId")
            ) or coerce_nonempty_string(as_dict(item_dict.get("id")).get("channelId"))
            if channel_id is not None:
                return channel_id
        return None

    async def get_channel_info(self, channel_id: str) -> ChannelInfo:
        payload = await self._get_json(
            "channels",
            {"part": "snippet", "id": channel_id},
            cost=QUOTA_COST_CHANNEL_LOOKUP,
        )
        items = as_list(payload.get("items"))
        snippet = as_dict(as_dict(items[0]).get("snippet")) if items else {}
        thumbnails = as_dict(snippet.get("thumbnails"))
        return ChannelInfo(
            channel_id=channel_id,
            title=coerce_nonempty_string(snippet.get("title")) or "Unknown Channel",
            thumbnail=coerce_nonempty_string(as_dict(thumbnails.get("default")).get("url"))
            or "",
        )

    async def get_uploads_playlist_id(self, channel_id: str) -> str:
        payload = await self._get_json(
            "channels",
            {"part": "contentDetails", "id": channel_id},
            cost=QUOTA_COST_CHANNEL_LOOKUP,
        )
        items = as_list(payload.get("items"))
        content_details = as_dict(as_dict(items[0]).get("contentDetails")) if items else {}
        uploads = coerce_nonempty_string(
            as_dict(content_details.get("relatedPlaylists")).get("uploads")
        )
        if uploads is None:
            raise ChannelUnresolvableError("Uploads playlist not available for this channel.")
        return uploads

    async def list_playlist_items_page(
        self,
        playlist_id: str,
        *,
        page_token: str | None = None,
    ) -> ListPage:
        params: dict[str, str | int] = {
            "part": "snippet,contentDetails",
            "maxResults": PLAYLIST_PAGE_SIZE,
            "playlistId": playlist_id,
        }
        if page_token:
            params["pageToken"] = page_token
        payload = await self._get_json("playlistItems", params, cost=QUOTA_COST_PLAYLIST_PAGE)
        return _list_page(payload)

    async def list_videos(
        self,
        video_ids: list[str],
        *,
        parts: tuple[str, ...],
    ) -> list[dict[str, Any]]:
        if not video_ids:
            return []
        if len(video_ids) > MAX_VIDEO_IDS_PER_CALL:
            raise ValueError(f"at most {MAX_VIDEO_IDS_PER_CALL} video ids per call")
        payload = await self._get_json(
            "videos",
            {"part": ",".join(parts), "id": ",".join(video_ids)},
            cost=QUOTA_COST_VIDEO_BATCH,
        )
        return [as_dict(item) for item in as_list(payload.get("items"))]

    async def search_videos_page(self, query: str, *, page_token: str | None = None) -> ListPage:
        params: dict[str, str | int] = {
            "part": "snippet",
            "type": "video",
            "maxResults": PLAYLIST_PAGE_SIZE,
            "q": query,
        }
        if page_token:
            params["pageToken"] = page_token
        payload = await self._get_json("search", params, cost=QUOTA_COST_SEARCH)
        return _list_page(payload)

    async def _get_json(
        self,
        endpoint: str,
        params: dict[str, str | int],
        *,
        cost: int,
    ) -> dict[str, Any]:
        if not self._api_key:
            raise ConfigurationError("YouTube API key not configured.")

        self._ledger.consume(cost)
        url = f"{self._base_url}/{endpoint}"
        try:
            response = await self._http_client.get(url, params={**params, "key": self._api_key})
        except httpx.TimeoutException as exc:
            LOGGER.warning("youtube request timed out endpoint=%s", endpoint)
            raise UpstreamHttpError(f"YouTube API request timed out ({endpoint}).") from exc
        except httpx.HTTPError as exc:
            LOGGER.warning(
                "youtube request failed endpoint=%s error_type=%s",
                endpoint,
                type(exc).__name__,
            )
            raise UpstreamHttpError(
                f"YouTube API request failed ({endpoint}): {type(exc).__name__}."
            ) from exc

        if response.is_success:
            return _parse_json_dict(response.text)

        body = response.text
        if response.status_code == 403 and "quotaExceeded" in body:
            LOGGER.error("youtube upstream quota exceeded endpoint=%s", endpoint)
            raise UpstreamQuotaExceededError(
                "YouTube API quota exceeded. Please try again tomorrow.",
                status=self._ledger.status(),
            )

        reason = _extract_error_message(body)
        if reason and self._api_key:
            reason = reason.replace(self._api_key, "[redacted]")
        LOGGER.warning(
            "youtube request rejected endpoint=%s status=%s reason=%s",
            endpoint,
            response.status_code,
            reason,
        )
        message = f"YouTube API returned HTTP {response.status_code} for {endpoint}"
        if reason:
            message = f"{message}: {reason}"
        raise UpstreamHttpError(message, status_code=response.status_code)


def _list_page(payload: dict[str, Any]) -> ListPage:
    return ListPage(
        items=[as_dict(item) for item in as_list(payload.get("items"))],
        next_page_token=coerce_nonempty_string(payload.get("nextPageToken")),
    )


def _parse_json_dict(raw_body: str) -> dict[str, Any]:
    try:
        parsed = cast(object, json.loads(raw_body))
    except json.JSONDecodeError as exc:
        raise UpstreamHttpError("YouTube API returned a malformed JSON body.") from exc
    if not isinstance(parsed, dict):
        raise UpstreamHttpError("YouTube API returned an unexpected JSON shape.")
    return cast(dict[str, Any], parsed)


def _extract_error_message(raw_body: str) -> str | None:
    try:
        parsed = cast(object, json.loads(raw_body))
    except json.JSONDecodeError:
        return None
    error = as_dict(as_dict(parsed).get("error"))
    return coerce_nonempty_string(error.get("message"))

