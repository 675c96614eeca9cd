"""
Health Router
Liveness and readiness probes.

Endpoints:
- /healthz - Liveness check (is the process running?)
- /readyz  - Readiness check (can we reach the database?)
"""

import asyncio
import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from notary.core.database import check_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/healthz")
async def health_check():
    """
    Liveness probe - is the app process running?
    Returns 200 if the process is alive.
    """
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/readyz")
async def readiness_check(request: Request):
    """
    Readiness probe - database round trip with a 5s budget.
    Returns 503 with status "degraded" if it fails.
    """
    checks = {}
    details = {}
    start = time.perf_counter()

    try:
        await asyncio.wait_for(check_db(request.app.state.engine), timeout=5.0)
        checks["database"] = True
        details["database_latency_ms"] = round((time.perf_counter() - start) * 1000, 2)
    except asyncio.TimeoutError:
        checks["database"] = False
        details["database_error"] = "Connection timeout (5s)"
    except Exception as e:
        logger.warning("Readiness check failed: %s", e)
        checks["database"] = False
        details["database_error"] = str(e)

    checks["background_tasks"] = request.app.state.tasks.active
    ready = checks["database"] is True

    return JSONResponse(
        status_code=200 if ready else 503,
        content={
            "status": "ready" if ready else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": checks,
            "details": details,
        },
    )
