"""
Rate Limiting Middleware
Token-bucket style limits using slowapi

RATE LIMITS:
- Webhooks: WEBHOOK_RATE_LIMIT (default 100/minute) per app_key AND client IP
- Manual sync: SYNC_RATE_LIMIT (default 10/minute) per admin key prefix or client IP
- Everything else: unlimited (admin endpoints are key-protected)

Rejections answer 429 with a Retry-After header.
"""
import logging
from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from saasync.core.config import get_settings

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_SECONDS = 60


def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop (set by the load balancer), else the peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return get_remote_address(request)


def webhook_rate_limit_key(request: Request) -> str:
    """
    Bucket per (app_key, client IP).
    One noisy provider account can't starve the other app instances.
    """
    app_key = request.path_params.get("app_key", "unknown")
    return f"webhook:{app_key}:{client_ip(request)}"


def admin_rate_limit_key(request: Request) -> str:
    """
    Admin callers are bucketed by key prefix when they send one, else by IP.
    SECURITY: only the first 8 characters are ever used
    """
    authorization = request.headers.get("authorization", "")
    if authorization.lower().startswith("bearer ") and len(authorization) > 7:
        return f"admin:{authorization[7:15]}"
    return f"ip:{client_ip(request)}"


def webhook_rate_limit() -> str:
    return get_settings().webhook_rate_limit


def sync_rate_limit() -> str:
    return get_settings().sync_rate_limit


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 with Retry-After set to the window of the limit that tripped."""
    retry_after = DEFAULT_RETRY_AFTER_SECONDS
    limit = getattr(exc, "limit", None)
    if limit is not None and getattr(limit, "limit", None) is not None:
        retry_after = limit.limit.get_expiry()

    logger.warning(f"⚠️  Rate limit exceeded on {request.url.path} ({exc.detail})")
    return JSONResponse(
        status_code=429,
        content={"success": False, "error": "Rate limit exceeded"},
        headers={"Retry-After": str(retry_after)},
    )


limiter = Limiter(
    key_func=admin_rate_limit_key,
    storage_uri="memory://",  # In-memory storage (per instance)
)
