"""
Rate limiting setup using slowapi.

Counters live in Redis db 1 when a Redis URL is configured, in memory
otherwise.  Clients are identified by their first forwarded address, since
the API runs behind a proxy in production.
"""

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from ..config import get_settings
from ..utils.logging import get_logger

logger = get_logger(__name__)


def client_key(request: Request) -> str:
    """Rate-limit key: X-Forwarded-For first hop, then X-Real-IP, then the peer."""
    forwarded = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if forwarded:
        return forwarded
    return request.headers.get("X-Real-IP", "").strip() or get_remote_address(request)


def limiter_storage_uri(redis_url: str | None) -> str:
    if not redis_url:
        return "memory://"
    # db 1 keeps limiter counters apart from cached data
    base = redis_url.rstrip("/")
    scheme, _, rest = base.partition("://")
    host = rest.split("/", 1)[0]
    return f"{scheme}://{host}/1"


def _make_limiter() -> Limiter:
    settings = get_settings()
    return Limiter(
        key_func=client_key,
        default_limits=[settings.rate_limit_global],
        storage_uri=limiter_storage_uri(settings.redis_url),
        strategy="fixed-window",
    )


limiter = _make_limiter()


def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 with Retry-After; the rejected client is logged."""
    retry_after = getattr(exc, "retry_after", 60)
    logger.warning("Rate limit exceeded", path=request.url.path, client=client_key(request), limit=str(exc.detail))
    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "detail": f"Rate limit exceeded: {exc.detail}",
            "retry_after": retry_after,
        },
        headers={"Retry-After": str(retry_after)},
    )
