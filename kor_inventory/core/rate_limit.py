"""
Request throttling for the alert admin API.

Every manual trigger (stock check, forced check, digest) sends real email
to the configured recipients, so those routes share a per-client budget
(RATE_LIMIT_ALERT_TRIGGERS). Operator sign-in has its own tighter budget
(RATE_LIMIT_AUTH). Counters live in process memory.
"""
import logging

from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.requests import Request
from starlette.responses import JSONResponse

from kor_inventory.core.config import settings

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 60


def get_client_ip(request: Request) -> str:
    """Throttling key: the operator's address, as seen before the load balancer."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # Leftmost entry is the caller, later ones are proxies
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


limiter = Limiter(
    key_func=get_client_ip,
    enabled=settings.RATE_LIMIT_ENABLED,
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 in the API's error shape, e.g. after too many manual digests."""
    logger.warning(f"[ALERTS] Throttled {get_client_ip(request)} on {request.url.path}")

    # exc.detail looks like "10 per 1 minute"
    limit = exc.detail or settings.RATE_LIMIT_ALERT_TRIGGERS
    retry_after = limit.split("per")[-1].strip() if "per" in limit else "1 minute"

    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "message": f"Too many requests. Please try again in {retry_after}.",
            "retry_after": retry_after,
        },
        headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
    )
