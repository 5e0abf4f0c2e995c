from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import StrEnum
from urllib.parse import urlsplit

from promoscan.errors import ChannelUnresolvableError
from promoscan.services.youtube_client import YouTubeDataClient

LOGGER = logging.getLogger("promoscan.youtube.resolver")

# URL path shapes, in priority order.
_CHANNEL_ID_PATH = re.compile(r"/channel/(UC[\w-]+)", re.IGNORECASE | re.ASCII)
_USERNAME_PATH = re.compile(r"/user/([\w.-]+)", re.IGNORECASE | re.ASCII)
_HANDLE_PATH = re.compile(r"/(@[\w.-]+)", re.ASCII)
_CUSTOM_PATH = re.compile(r"/c/([\w.-]+)", re.IGNORECASE | re.ASCII)

_BARE_CHANNEL_ID = re.compile(r"^UC[\w-]+$", re.IGNORECASE | re.ASCII)
_BARE_HANDLE = re.compile(r"^@[\w.-]+$", re.ASCII)


class ChannelRefKind(StrEnum):
    CHANNEL_ID = "channel_id"
    USERNAME = "username"
    HANDLE = "handle"
    CUSTOM = "custom"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ChannelSpec:
    kind: ChannelRefKind
    value: str


def parse_channel_reference(raw_input: str) -> ChannelSpec:
    trimmed = raw_input.strip()
    parts = urlsplit(trimmed)
    if parts.scheme and parts.netloc:
        path = parts.path
        for kind, pattern in (
            (ChannelRefKind.CHANNEL_ID, _CHANNEL_ID_PATH),
            (ChannelRefKind.USERNAME, _USERNAME_PATH),
            (ChannelRefKind.HANDLE, _HANDLE_PATH),
            (ChannelRefKind.CUSTOM, _CUSTOM_PATH),
        ):
            match = pattern.search(path)
            if match is not None:
                return ChannelSpec(kind=kind, value=match.group(1))
        return ChannelSpec(kind=ChannelRefKind.UNKNOWN, value=raw_input)

    if _BARE_CHANNEL_ID.match(trimmed):
        return ChannelSpec(kind=ChannelRefKind.CHANNEL_ID, value=trimmed)
    if _BARE_HANDLE.match(trimmed):
        return ChannelSpec(kind=ChannelRefKind.HANDLE, value=trimmed)
    return ChannelSpec(kind=ChannelRefKind.UNKNOWN, value=raw_input)


class ChannelResolver:
    """Maps a parsed channel reference to a canonical ``UC...`` channel id.

    Cost per path: an explicit id is free, a legacy username lookup costs 1
    unit, and everything else (or a username lookup that finds nothing)
    falls back to a channel search costing 100 units.
    """

    def __init__(self, client: YouTubeDataClient) -> None:
        self._client = client

    async def resolve(self, spec: ChannelSpec) -> str:
        if spec.kind is ChannelRefKind.CHANNEL_ID:
            return spec.value

        if spec.kind is ChannelRefKind.USERNAME:
            channel_id = await self._client.lookup_channel_by_username(spec.value)
            if channel_id is not None:
                return channel_id
            LOGGER.info("username lookup empty; falling back to search username=%s", spec.value)

        query = spec.value.strip().removeprefix("@")
        channel_id = await self._client.search_channel(query)
        if channel_id is not None:
            LOGGER.debug("channel resolved via search kind=%s channel_id=%s", spec.kind, channel_id)
            return channel_id

        raise ChannelUnresolvableError(
            "Unable to resolve channel ID from the provided URL or handle."
        )

    async def resolve_input(self, raw_input: str) -> str:
        return await self.resolve(parse_channel_reference(raw_input))
