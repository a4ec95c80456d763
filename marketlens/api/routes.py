"""
MarketLens HTTP API.

Every data route is a thin wrapper over a service; caching, deduplication
and fallbacks all happen below this layer.
"""

import time
import traceback
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from ..cache.keys import cache_keys
from ..cache.monitor import get_cache_stats
from ..config import settings
from ..container import AppContainer
from ..exceptions import ProducerTimeoutError, ProviderError
from ..utils.logging import get_logger, log_context
from .rate_limit import limiter, rate_limit_handler

logger = get_logger(__name__)

router = APIRouter()

CRON_MARKET_PAGE = (100, 0)


def get_container(request: Request) -> AppContainer:
    return request.app.state.container


def _check_bearer(authorization: Optional[str], secret: Optional[str]) -> bool:
    return bool(secret) and authorization == f"Bearer {secret}"


async def require_internal(authorization: Optional[str] = Header(None)) -> None:
    # Internal endpoints are open when no secret is configured (local dev)
    if settings.internal_api_secret and not _check_bearer(authorization, settings.internal_api_secret):
        raise HTTPException(status_code=401, detail="Unauthorized")


async def require_cron(authorization: Optional[str] = Header(None)) -> None:
    if not _check_bearer(authorization, settings.cron_secret):
        raise HTTPException(status_code=401, detail="Unauthorized")


# ===================
# DeFi
# ===================

@router.get("/api/defi")
@limiter.limit(settings.rate_limit_heavy)
async def get_defi_overview(request: Request, container: AppContainer = Depends(get_container)):
    """Solana protocol aggregate: total TVL, chart, inflows and protocol list."""
    return await container.protocols.fetch_protocols_data()


@router.get("/api/defi/{slug}")
async def get_protocol(slug: str, container: AppContainer = Depends(get_container)):
    """Single protocol; child and versioned slugs resolve to their base record."""
    resolution = await container.protocols.fetch_protocol_with_resolution(slug)
    if resolution.protocol is None:
        raise HTTPException(status_code=404, detail=f"Protocol not found: {slug}")
    return {
        "protocol": resolution.protocol,
        "originalSlug": resolution.original_slug,
        "resolvedSlug": resolution.resolved_slug,
        "wasResolved": resolution.was_resolved,
    }


@router.get("/api/defi/{slug}/children")
async def get_child_protocols(slug: str, container: AppContainer = Depends(get_container)):
    protocol = await container.protocols.fetch_protocol(slug)
    if protocol is None:
        raise HTTPException(status_code=404, detail=f"Protocol not found: {slug}")
    names = protocol.get("otherProtocols") or []
    children = await container.protocols.fetch_child_protocols(protocol.get("id") or slug, names)
    return {"parent": protocol.get("id"), "children": children}


# ===================
# Tokens and market
# ===================

@router.get("/api/crypto/markets")
@limiter.limit(settings.rate_limit_heavy)
async def get_markets(
    request: Request,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    container: AppContainer = Depends(get_container),
):
    tokens = await container.tokens.fetch_market_data(limit, offset)
    return {"tokens": tokens, "limit": limit, "offset": offset}


@router.get("/api/crypto/newly-listed")
async def get_newly_listed(
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    hours: int = Query(default=24, ge=1, le=168),
    container: AppContainer = Depends(get_container),
):
    tokens = await container.tokens.fetch_newly_listed(limit, offset, hours)
    return {"tokens": tokens, "limit": limit, "offset": offset}


@router.get("/api/crypto/global")
async def get_global_stats(container: AppContainer = Depends(get_container)):
    return await container.market.fetch_global_stats()


@router.get("/api/crypto/token/{address}")
async def get_token(address: str, container: AppContainer = Depends(get_container)):
    token = await container.tokens.fetch_token(address)
    if token is None:
        raise HTTPException(status_code=404, detail=f"Token not found: {address}")
    return token


@router.get("/api/crypto/price-history")
async def get_price_history(
    address: str = Query(..., min_length=1),
    days: str = Query(default="7"),
    container: AppContainer = Depends(get_container),
):
    try:
        points = await container.tokens.fetch_price_history(address, days)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"address": address, "days": days, "prices": points}


@router.get("/api/crypto/stablecoins")
async def get_stablecoins(container: AppContainer = Depends(get_container)):
    return await container.market.fetch_stablecoin_data()


@router.get("/api/crypto/tvl")
async def get_solana_tvl(container: AppContainer = Depends(get_container)):
    return await container.market.fetch_solana_tvl()


@router.get("/api/crypto/trending")
async def get_trending(
    limit: int = Query(default=20, ge=1, le=50),
    container: AppContainer = Depends(get_container),
):
    return await container.market.fetch_trending(limit)


# ===================
# Operations
# ===================

@router.get("/api/internal/cache-stats", dependencies=[Depends(require_internal)])
async def cache_stats(container: AppContainer = Depends(get_container)):
    return await get_cache_stats(container.store, container.queue, container.write_behind)


@router.post("/api/cron/refresh-cache", dependencies=[Depends(require_cron)])
async def refresh_cache(container: AppContainer = Depends(get_container)):
    """Invalidate and re-warm the protocol aggregate and the first market page."""
    limit, offset = CRON_MARKET_PAGE
    with log_context(job="refresh-cache"):
        started = time.perf_counter()
        await container.cache.invalidate(cache_keys.protocols_all())
        await container.cache.invalidate(cache_keys.market_data(limit, offset))
        await container.store.delete_pattern(cache_keys.child_protocols("*"))

        protocols = await container.protocols.fetch_protocols_data()
        tokens = await container.tokens.fetch_market_data(limit, offset)

        elapsed_ms = round((time.perf_counter() - started) * 1000, 1)
        logger.info(
            "Cache refreshed",
            protocols=protocols.get("numberOfProtocols", 0),
            tokens=len(tokens),
            duration_ms=elapsed_ms,
        )
    return {
        "success": True,
        "protocols": protocols.get("numberOfProtocols", 0),
        "tokens": len(tokens),
        "durationMs": elapsed_ms,
    }


@router.get("/health")
async def health(container: AppContainer = Depends(get_container)):
    return {"status": "ok", "store": await container.store.health_check()}


def create_api_app(container: Optional[AppContainer] = None) -> FastAPI:
    """Create the FastAPI application.

    ``container`` is built from settings when not supplied; either way it is
    started and stopped with the app.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.container = container or AppContainer()
        await app.state.container.startup()
        try:
            yield
        finally:
            await app.state.container.shutdown()

    app = FastAPI(
        title="MarketLens API",
        description="Cached Solana DeFi and token market data",
        version="1.0.0",
        lifespan=lifespan,
    )

    # GZip compression for protocol and token lists
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Rate limiter: middleware applies global default; decorators override per-route
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)

    # Timing middleware: logs duration and adds X-Response-Time header
    @app.middleware("http")
    async def timing_middleware(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Response-Time"] = f"{elapsed_ms:.1f}ms"
        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round(elapsed_ms, 1),
        )
        return response

    @app.exception_handler(ProviderError)
    async def provider_error_handler(request: Request, exc: ProviderError):
        logger.warning("Upstream error", path=request.url.path, provider=exc.provider, error=exc.message)
        return JSONResponse(
            status_code=502,
            content={"error": "upstream_error", "provider": exc.provider, "detail": exc.message},
        )

    @app.exception_handler(ProducerTimeoutError)
    async def timeout_handler(request: Request, exc: ProducerTimeoutError):
        logger.warning("Upstream timeout", path=request.url.path, key=exc.key)
        return JSONResponse(status_code=504, content={"error": "upstream_timeout", "detail": str(exc)})

    # Global exception handler: catches unhandled errors, returns clean JSON
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            path=str(request.url.path),
            method=request.method,
            error_type=type(exc).__name__,
            error=str(exc),
            traceback=traceback.format_exc(),
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "detail": "An unexpected error occurred. Please try again.",
            },
        )

    app.include_router(router)
    return app
