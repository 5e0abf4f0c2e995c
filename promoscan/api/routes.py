from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query

from promoscan.dependencies import get_scan_service
from promoscan.models.scan_contracts import (
    AnalyzeResponse,
    DomainSearchResponse,
    ErrorResponse,
    LinkCheckResponse,
    QuotaStatusResponse,
)
from promoscan.services.channel_scan_service import ChannelScanService

router = APIRouter(prefix="/api", tags=["scan"])

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}

ScanServiceDep = Annotated[ChannelScanService, Depends(get_scan_service)]


@router.get(
    "/quota",
    response_model=QuotaStatusResponse,
    operation_id="quota_status",
)
async def quota_status(service: ScanServiceDep) -> QuotaStatusResponse:
    status = await service.quota_status()
    return QuotaStatusResponse.model_validate(status.to_dict())


@router.get(
    "/analyze",
    response_model=AnalyzeResponse,
    responses=_ERROR_RESPONSES,
    operation_id="analyze_promotions",
)
async def analyze_promotions(
    service: ScanServiceDep,
    url: Annotated[str, Query(description="Channel URL, @handle, or UC channel id.")] = "",
) -> AnalyzeResponse:
    payload = await service.analyze_promotions(url)
    return AnalyzeResponse.model_validate(payload)


@router.get(
    "/linkcheck",
    response_model=LinkCheckResponse,
    responses=_ERROR_RESPONSES,
    operation_id="check_links",
)
async def check_links(
    service: ScanServiceDep,
    url: Annotated[str, Query(description="Channel URL, @handle, or UC channel id.")] = "",
    domain_filter: Annotated[str | None, Query(alias="filter")] = None,
    check: bool = True,
    max_videos: Annotated[int | None, Query(alias="maxVideos")] = None,
    months: int | None = None,
) -> LinkCheckResponse:
    payload = await service.check_links(
        url,
        domain_filter=domain_filter,
        check=check,
        max_videos=max_videos,
        months=months,
    )
    return LinkCheckResponse.model_validate(payload)


@router.get(
    "/domain",
    response_model=DomainSearchResponse,
    responses=_ERROR_RESPONSES,
    operation_id="search_domain",
)
async def search_domain(
    service: ScanServiceDep,
    domain: str = "",
) -> DomainSearchResponse:
    payload = await service.search_domain(domain)
    return DomainSearchResponse.model_validate(payload)
