"""
Notary - Shared test fixtures.

Every test gets a fresh SQLite database and an in-memory Horizon served
through httpx.MockTransport, so nothing touches the network.
"""

import base64
import os
from typing import Optional
from urllib.parse import parse_qs

# Set up the environment before importing the app
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./test_notary.db"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["LOG_LEVEL"] = "WARNING"

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from stellar_sdk import HashMemo, Keypair, TransactionEnvelope

from notary.core.config import Settings
from notary.core.database import init_db
from notary.main import create_app
from notary.services.anchoring import AnchoringGateway
from notary.services.horizon import build_horizon_clients
from notary.services.transaction_ledger import TransactionLedger
from notary.services.workflow_engine import WorkflowEngine


TESTNET_PASSPHRASE = "Test SDF Network ; September 2015"
MAINNET_PASSPHRASE = "Public Global Stellar Network ; September 2015"
FRIENDBOT_HOST = "friendbot.stellar.org"


async def no_sleep(_seconds: float) -> None:
    return None


# =============================================================================
# Fake Horizon
# =============================================================================

class FakeHorizon:
    """
    In-memory Horizon + friendbot.

    Submitted envelopes are decoded with stellar-sdk; a valid one bumps the
    source sequence and becomes a successful transaction record whose memo
    is reported base64-encoded, as Horizon does.
    """

    def __init__(self):
        self.accounts: dict[str, dict] = {}
        self.transactions: dict[str, dict] = {}
        self.submissions: list[TransactionEnvelope] = []
        self.requests: list[tuple[str, str]] = []
        # transaction hash -> number of lookups answered 404 before it shows up
        self.hidden_lookups: dict[str, int] = {}
        # GETs answered 503 before normal service resumes
        self.read_failures = 0
        # result_codes returned for the next submissions, if set
        self.submit_error: Optional[dict] = None
        self.friendbot_fails = False

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def add_account(self, public_key: str, balance: str = "10000.0000000", sequence: int = 1000) -> None:
        self.accounts[public_key] = {"sequence": sequence, "balance": balance}

    def add_transaction(self, transaction_hash: str, successful: bool = True, memo_hex: Optional[str] = None) -> dict:
        record = {
            "id": transaction_hash,
            "hash": transaction_hash,
            "successful": successful,
            "ledger": 4242,
            "memo_type": "none",
        }
        if memo_hex is not None:
            record["memo_type"] = "hash"
            record["memo"] = base64.b64encode(bytes.fromhex(memo_hex)).decode()
        self.transactions[transaction_hash] = record
        return record

    def count(self, method: str, prefix: str) -> int:
        return sum(1 for m, path in self.requests if m == method and path.startswith(prefix))

    # -------------------------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append((request.method, path))

        if request.url.host == FRIENDBOT_HOST:
            return self._friendbot(request)

        if request.method == "GET" and self.read_failures > 0:
            self.read_failures -= 1
            return httpx.Response(503, json={"title": "Service Unavailable"})

        if request.method == "GET" and path.startswith("/accounts/"):
            return self._account(path.rsplit("/", 1)[-1])
        if request.method == "GET" and path.startswith("/transactions/"):
            return self._transaction(path.rsplit("/", 1)[-1])
        if request.method == "POST" and path == "/transactions":
            return self._submit(request)
        return httpx.Response(404, json={"title": "Resource Missing"})

    def _account(self, public_key: str) -> httpx.Response:
        account = self.accounts.get(public_key)
        if account is None:
            return httpx.Response(404, json={"title": "Resource Missing"})
        return httpx.Response(200, json={
            "id": public_key,
            "account_id": public_key,
            "sequence": str(account["sequence"]),
            "balances": [{"asset_type": "native", "balance": account["balance"]}],
        })

    def _transaction(self, transaction_hash: str) -> httpx.Response:
        hidden = self.hidden_lookups.get(transaction_hash, 0)
        if hidden > 0:
            self.hidden_lookups[transaction_hash] = hidden - 1
            return httpx.Response(404, json={"title": "Resource Missing"})
        record = self.transactions.get(transaction_hash)
        if record is None:
            return httpx.Response(404, json={"title": "Resource Missing"})
        return httpx.Response(200, json=record)

    def _submit(self, request: httpx.Request) -> httpx.Response:
        envelope_xdr = parse_qs(request.content.decode())["tx"][0]
        passphrase = MAINNET_PASSPHRASE if request.url.host == "horizon.stellar.org" else TESTNET_PASSPHRASE
        envelope = TransactionEnvelope.from_xdr(envelope_xdr, passphrase)
        transaction = envelope.transaction

        if self.submit_error is not None:
            return _failed(self.submit_error)

        account = self.accounts.get(transaction.source.account_id)
        if account is None:
            return _failed({"transaction": "tx_no_source_account"})
        if transaction.sequence != account["sequence"] + 1:
            return _failed({"transaction": "tx_bad_seq"})
        account["sequence"] = transaction.sequence

        memo_hex = transaction.memo.memo_hash.hex() if isinstance(transaction.memo, HashMemo) else None
        transaction_hash = envelope.hash_hex()
        self.add_transaction(transaction_hash, True, memo_hex)
        self.submissions.append(envelope)
        return httpx.Response(200, json={
            "hash": transaction_hash,
            "successful": True,
            "ledger": 4242,
            "envelope_xdr": envelope_xdr,
        })

    def _friendbot(self, request: httpx.Request) -> httpx.Response:
        if self.friendbot_fails:
            return httpx.Response(500, json={"title": "Internal Server Error"})
        public_key = request.url.params.get("addr")
        if public_key in self.accounts:
            return httpx.Response(400, json={"title": "Bad Request", "detail": "account already funded"})
        self.add_account(public_key)
        return httpx.Response(200, json={"hash": "f" * 64, "successful": True})


def _failed(result_codes: dict) -> httpx.Response:
    return httpx.Response(400, json={
        "title": "Transaction Failed",
        "status": 400,
        "extras": {"result_codes": result_codes},
    })


class FakeClock:
    """Monotonic clock that only advances when the poller sleeps."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        secret_key="test-secret-key",
        rate_limit_enabled=False,
        log_level="WARNING",
        stellar_retry_attempts=3,
        stellar_retry_delay=0.01,
        stellar_polling_interval=0.01,
        stellar_confirmation_timeout=0.2,
    )


@pytest.fixture
async def engine(tmp_path):
    db_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'notary.db'}")
    await init_db(db_engine)
    yield db_engine
    await db_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def fake_horizon() -> FakeHorizon:
    return FakeHorizon()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger(session_factory) -> TransactionLedger:
    return TransactionLedger(session_factory)


@pytest.fixture
def horizons(settings, fake_horizon):
    return build_horizon_clients(settings, transport=fake_horizon.transport(), sleep=no_sleep)


@pytest.fixture
def gateway(ledger, horizons, settings) -> AnchoringGateway:
    return AnchoringGateway(ledger, horizons, settings)


@pytest.fixture
def workflow_engine(session_factory) -> WorkflowEngine:
    return WorkflowEngine(session_factory, risk_rejection_threshold=70.0)


@pytest.fixture
def source(fake_horizon) -> Keypair:
    """A key pair whose account exists and is funded on the fake ledger."""
    keypair = Keypair.random()
    fake_horizon.add_account(keypair.public_key)
    return keypair


@pytest.fixture
async def app(settings, engine, fake_horizon):
    application = create_app(settings=settings, engine=engine, horizon_transport=fake_horizon.transport())
    async with application.router.lifespan_context(application):
        yield application


@pytest.fixture
async def client(app):
    """Create test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
