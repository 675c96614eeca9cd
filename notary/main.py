"""
Notary - FastAPI Application

Document verification workflows with tamper-evident anchoring of document
hashes on the Stellar ledger.

Run:
    uvicorn notary.main:app --reload
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

import httpx
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from notary.core.config import Settings, get_settings
from notary.core.database import close_db, get_engine, get_session_factory, init_db
from notary.core.errors import setup_exception_handlers
from notary.core.logging_config import setup_logging
from notary.core.logging_middleware import RequestLoggingMiddleware
from notary.core.rate_limit import limiter
from notary.core.timeout import TimeoutMiddleware
from notary.routers import health, stellar, tasks, verification_workflows
from notary.services.anchoring import AnchoringGateway
from notary.services.confirmation import ConfirmationPoller
from notary.services.horizon import build_horizon_clients
from notary.services.tasks import TaskRegistry
from notary.services.transaction_ledger import TransactionLedger
from notary.services.workflow_anchoring import WorkflowAnchoringService
from notary.services.workflow_engine import WorkflowEngine

logger = logging.getLogger(__name__)

# Extra time ledger-bound requests (status poll, anchoring) get beyond their worst case
LEDGER_TIMEOUT_MARGIN = 10.0


def anchor_request_timeout(settings: Settings) -> float:
    """
    Worst case of one anchor call: every retried account read and the single
    submit each run to the ledger timeout, plus the retry delays.
    """
    ledger_io = (settings.stellar_retry_attempts + 1) * settings.stellar_transaction_timeout
    retry_delays = settings.stellar_retry_attempts * settings.stellar_retry_delay
    return max(settings.request_timeout, ledger_io + retry_delays + LEDGER_TIMEOUT_MARGIN)


# ============================================================================
# Components
# ============================================================================

def build_components(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    horizon_transport: Optional[httpx.AsyncBaseTransport] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> dict:
    """
    Wire the service graph explicitly:
    ledger <- gateway <- poller; engine stands alone; the anchoring service
    joins engine and gateway.
    """
    ledger = TransactionLedger(session_factory)
    gateway = AnchoringGateway(
        ledger,
        build_horizon_clients(settings, transport=horizon_transport, sleep=sleep),
        settings,
    )
    poller = ConfirmationPoller(
        gateway,
        ledger,
        polling_interval=settings.stellar_polling_interval,
        confirmation_timeout=settings.stellar_confirmation_timeout,
        sleep=sleep,
    )
    workflow_engine = WorkflowEngine(session_factory, settings.risk_rejection_threshold)
    return {
        "ledger": ledger,
        "gateway": gateway,
        "poller": poller,
        "workflow_engine": workflow_engine,
        "workflow_anchoring": WorkflowAnchoringService(workflow_engine, gateway),
        "tasks": TaskRegistry(),
    }


# ============================================================================
# Application Setup
# ============================================================================

def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[AsyncEngine] = None,
    horizon_transport: Optional[httpx.AsyncBaseTransport] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> FastAPI:
    """
    Build the application.

    engine and horizon_transport are injection points for tests; by default
    the engine comes from DATABASE_URL and Horizon is reached over the network.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level, settings.log_json, settings.log_file)
        logger.info("Starting %s v%s", settings.app_name, settings.app_version)

        if engine is not None:
            db_engine = engine
            session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
        else:
            db_engine = get_engine()
            session_factory = get_session_factory()
        await init_db(db_engine)

        app.state.engine = db_engine
        for name, component in build_components(settings, session_factory, horizon_transport, sleep).items():
            setattr(app.state, name, component)
        logger.info("Ledger default network: %s", settings.stellar_default_network)

        yield

        logger.info("Shutting down...")
        await app.state.tasks.shutdown()
        if engine is None:
            await close_db()

    app = FastAPI(
        title=settings.app_name,
        description="Document verification workflows anchored on the Stellar ledger",
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.limiter = limiter

    # Last added runs first: request logging wraps the timeout
    app.add_middleware(
        TimeoutMiddleware,
        timeout=settings.request_timeout,
        poll_timeout=settings.stellar_confirmation_timeout + LEDGER_TIMEOUT_MARGIN,
        anchor_timeout=anchor_request_timeout(settings),
    )
    app.add_middleware(RequestLoggingMiddleware)

    setup_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(verification_workflows.router)
    app.include_router(stellar.router)
    app.include_router(tasks.router)

    @app.get("/", tags=["Health"])
    async def root():
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app


app = create_app()
