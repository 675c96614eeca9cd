"""
Rate Limiting Configuration for the Notary API.

Uses slowapi with configurable limits per endpoint category.
Ledger-mutating endpoints (account creation, funding, anchoring) get the
tightest limits since each call costs fees or faucet capacity.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from notary.core.config import get_settings

logger = logging.getLogger(__name__)


def get_client_identifier(request: Request) -> str:
    """
    Get rate limit key for a request.
    Honours X-Forwarded-For for proxy setups, falls back to the client IP.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # Take first IP in chain (original client)
        return f"ip:{forwarded.split(',')[0].strip()}"

    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=get_client_identifier,
    default_limits=["200/minute", "1000/hour"],
    storage_uri="memory://",  # Use Redis URI for multi-process deployments
    strategy="fixed-window",
    enabled=get_settings().rate_limit_enabled,
)


# =============================================================================
# Rate Limit Presets
# =============================================================================

# Read endpoints (workflow listings, transaction lookups)
RATE_READ = "120/minute"

# Workflow writes (initiate, transition, record anchor)
RATE_WRITE = "60/minute"

# Account creation and faucet funding
RATE_ACCOUNT = "5/minute"

# Anchoring submissions (each costs a ledger fee)
RATE_ANCHOR = "20/minute"

# Confirmation polling and independent verification (hold a request open)
RATE_POLL = "30/minute"


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """
    Custom handler for rate limit exceeded errors.
    Returns a JSON response with retry information.
    """
    limit_value = str(exc.detail) if hasattr(exc, "detail") else "Rate limit exceeded"

    logger.warning(
        "Rate limit exceeded: %s on %s %s",
        get_client_identifier(request),
        request.method,
        request.url.path,
    )

    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "message": "Too many requests. Please slow down.",
            "detail": limit_value,
            "retry_after": 60,
        },
        headers={
            "Retry-After": "60",
            "X-RateLimit-Limit": limit_value,
        },
    )
