from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class QuotaStatusResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    date_utc: str
    used: int
    remaining: int
    usable_remaining: int
    limit: int
    percent_used: int
    is_low: bool
    is_exhausted: bool
    resets_at: str


class ErrorResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    error: str
    code: str
    quota_status: QuotaStatusResponse | None = None


class VideoRef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    video_id: str
    title: str
    published_at: str | None = None


class Promotion(BaseModel):
    model_config = ConfigDict(extra="forbid")

    key: str
    domain: str
    url: str
    product_name: str
    occurrences: int
    videos: list[VideoRef] = Field(default_factory=list)


class AnalyzeResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    channel_id: str
    since_iso: str
    video_count: int
    promotions: list[Promotion]
    from_cache: bool = False


class ChannelSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    title: str
    thumbnail: str


class WorkingLink(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str
    domain: str
    status: int | None = None
    redirect_url: str | None = None
    occurrences: int
    videos: list[VideoRef]
    unchecked: bool


class BrokenLink(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str
    domain: str
    status: int | None = None
    error: str | None = None
    occurrences: int
    videos: list[VideoRef]


class LinkSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    working: int
    broken: int
    unchecked: int
    total: int


class LinkCheckResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    channel: ChannelSummary
    filter: str | None = None
    since_iso: str
    video_count: int
    total_links: int
    checked_links: int
    working_links: list[WorkingLink]
    broken_links: list[BrokenLink]
    summary: LinkSummary
    from_cache: bool = False


class DomainVideo(BaseModel):
    model_config = ConfigDict(extra="forbid")

    video_id: str
    title: str
    channel_title: str
    channel_id: str
    published_at: str
    thumbnail: str
    view_count: int


class DomainSearchResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    domain: str
    video_count: int
    total_found: int
    videos: list[DomainVideo]
    from_cache: bool = False
