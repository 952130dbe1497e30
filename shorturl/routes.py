"""FastAPI route definitions: a thin HTTP surface over ShortUrlService.

API Endpoint Overview
=====================
::
    GET  /health
        └─ HealthResponse (200)

    GET  /actuator/cache/stats
        └─ CacheStatsResponse (200)

    POST /api/url/shorten
        ├─ ShortenRequest (request body)
        └─ ShortenResponse (201) or 422 / 503 / 500

    GET  /api/url/stats/:short_code
        └─ UrlStats (200) or 404

    GET  /:short_code
        └─ 307 Redirect, 404 or 503

Key Behaviours
===============
- CodeSpaceExhausted maps to 503: the code space needs attention, retrying
  immediately will not help.
- Other generation and store failures on create map to 500.
- A store outage on redirect is 503, never 404.
"""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse

from shorturl.database import check_db
from shorturl.dependencies import ServiceManager, get_request_context, get_service_manager, get_url_service
from shorturl.enums import HealthStatus
from shorturl.exceptions import CodeGenerationError, CodeSpaceExhausted, StoreUnavailable
from shorturl.instrumentation import RequestContext
from shorturl.schemas import CacheStatsResponse, HealthResponse, ShortenRequest, ShortenResponse, UrlStats
from shorturl.service import ShortUrlService

__all__ = ["router"]

router = APIRouter()


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(
    ctx: RequestContext = Depends(get_request_context),
    manager: ServiceManager = Depends(get_service_manager),
) -> HealthResponse:
    db_status = HealthStatus.HEALTHY
    cache_status = HealthStatus.HEALTHY

    try:
        await check_db()
    except Exception as e:
        ctx.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    try:
        await manager.cache_client.ping()
    except Exception as e:
        ctx.logger.error(f"Cache health check failed: {e}")
        cache_status = HealthStatus.UNHEALTHY

    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    return HealthResponse(status=status, database=db_status, cache=cache_status)


@router.get("/actuator/cache/stats", response_model=CacheStatsResponse, tags=["health"])
async def cache_stats(manager: ServiceManager = Depends(get_service_manager)) -> CacheStatsResponse:
    return manager.cache_stats()


@router.post("/api/url/shorten", response_model=ShortenResponse, status_code=201, tags=["urls"])
async def shorten_url(
    payload: ShortenRequest,
    ctx: RequestContext = Depends(get_request_context),
    service: ShortUrlService = Depends(get_url_service),
) -> ShortenResponse:
    try:
        created = await service.create(payload.url, payload.expire_seconds, ctx)
    except CodeSpaceExhausted as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except (CodeGenerationError, StoreUnavailable) as exc:
        raise HTTPException(status_code=500, detail="Could not create short URL") from exc

    return ShortenResponse(
        short_code=created.short_code,
        short_url=service.short_url(created.short_code),
        original_url=created.original_url,
        expire_at=created.expire_at,
    )


@router.get("/api/url/stats/{short_code}", response_model=UrlStats, tags=["urls"])
async def get_stats(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: ShortUrlService = Depends(get_url_service),
) -> UrlStats:
    try:
        stats = await service.get_stats(short_code)
    except StoreUnavailable as exc:
        raise HTTPException(status_code=503, detail="Storage temporarily unavailable") from exc
    if stats is None:
        ctx.logger.warning(f"Stats not found for short code: {short_code}")
        raise HTTPException(status_code=404, detail="Short URL not found")
    return stats


@router.get("/{short_code}", tags=["redirect"])
async def redirect_to_url(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: ShortUrlService = Depends(get_url_service),
) -> RedirectResponse:
    try:
        original_url = await service.resolve(short_code, ctx)
    except StoreUnavailable as exc:
        raise HTTPException(status_code=503, detail="Storage temporarily unavailable") from exc
    if original_url is None:
        raise HTTPException(status_code=404, detail="Short URL not found")
    return RedirectResponse(url=original_url, status_code=307)
