"""Rate limiting configuration for API endpoints.

Uses slowapi; Redis-backed in production, in-memory otherwise.
"""

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from polymind.config import get_settings
from polymind.shared.logging import get_logger

logger = get_logger(__name__)


def _get_rate_limit_key(request: Request) -> str:
    """Rate limit per client IP."""
    return get_remote_address(request)


def _create_limiter(storage_uri: str = "memory://") -> Limiter:
    """Create rate limiter with appropriate storage backend."""
    return Limiter(
        key_func=_get_rate_limit_key,
        storage_uri=storage_uri,
        strategy="fixed-window",
    )


def _storage_uri() -> str:
    settings = get_settings()
    if settings.is_production:
        return str(settings.redis_url)
    return "memory://"


limiter = _create_limiter(_storage_uri())


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Custom handler for rate limit exceeded errors."""
    logger.warning(
        "rate_limit_exceeded",
        path=request.url.path,
        method=request.method,
        key=_get_rate_limit_key(request),
        limit=str(exc.detail),
    )
    retry_after = getattr(exc, "retry_after", 60)
    return JSONResponse(
        status_code=429,
        content={
            "error": "too_many_requests",
            "message": "Too many requests. Please wait a moment.",
            "detail": str(exc.detail),
            "retry_after": retry_after,
        },
        headers={"Retry-After": str(retry_after)},
    )


# ----- Rate Limit Decorators -----
# Usage: @limiter.limit(RATE_LIMIT_CHAT)

RATE_LIMIT_CHAT = "20/minute"  # every call fans out to paid vendor APIs
RATE_LIMIT_VALIDATE = "10/minute"
