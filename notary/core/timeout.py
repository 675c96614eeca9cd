"""
Request Timeout Middleware for Notary.

Prevents requests from running indefinitely and consuming resources.
Returns 504 Gateway Timeout for requests exceeding the timeout.
"""

import asyncio
import logging
import re
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

# Confirmation polling holds the request open for up to the confirmation timeout
STATUS_POLL_PATH = re.compile(r"^/stellar/transactions/[^/]+/status$")

# Anchoring loads the source account (retried reads) and then submits once
ANCHOR_PATH = re.compile(r"^/stellar/anchor(/batch)?$")


class TimeoutMiddleware(BaseHTTPMiddleware):
    """
    Middleware to enforce request timeout.

    Usage:
        app.add_middleware(TimeoutMiddleware, timeout=30.0, poll_timeout=130.0, anchor_timeout=133.0)
    """

    def __init__(
        self,
        app,
        timeout: float = 30.0,
        poll_timeout: float | None = None,
        anchor_timeout: float | None = None,
    ):
        super().__init__(app)
        self.default_timeout = timeout
        self.poll_timeout = poll_timeout
        self.anchor_timeout = anchor_timeout

    def _get_timeout(self, path: str) -> float | None:
        """Get timeout for a specific path (None means unbounded)."""
        if STATUS_POLL_PATH.match(path):
            return self.poll_timeout
        if ANCHOR_PATH.match(path):
            return self.anchor_timeout
        return self.default_timeout

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        timeout = self._get_timeout(request.url.path)

        if timeout is None:
            return await call_next(request)

        try:
            return await asyncio.wait_for(call_next(request), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Request timeout: %s %s (%.1fs)",
                request.method,
                request.url.path,
                timeout,
                extra={
                    "timeout_seconds": timeout,
                    "path": request.url.path,
                    "method": request.method,
                },
            )

            return JSONResponse(
                status_code=504,
                content={
                    "error": "gateway_timeout",
                    "message": f"Request timed out after {timeout} seconds",
                    "timeout_seconds": timeout,
                },
                headers={"Retry-After": "30"},
            )
