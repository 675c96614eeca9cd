"""
Notary - Horizon Client
Async HTTP client for a ledger network's Horizon API and test faucet.

Reads (accounts, transactions) are idempotent and retried on transport
errors and 5xx responses. Submissions and faucet calls are sent once; their
failures are surfaced as typed errors carrying the raw ledger payload.
"""

import asyncio
import base64
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

from notary.core.config import NetworkConfig
from notary.core.errors import (
    AccountNotFoundError,
    AnchorFailedError,
    ExternalLedgerError,
    FundingFailedError,
    InsufficientFundsError,
    LedgerUnavailableError,
)

logger = logging.getLogger(__name__)

INSUFFICIENT_FUNDS_CODES = {"tx_insufficient_balance", "tx_insufficient_fee", "op_underfunded", "op_low_reserve"}


def native_balance(account: dict) -> str:
    """Native (XLM) balance from a Horizon account record."""
    for entry in account.get("balances", []):
        if entry.get("asset_type") == "native":
            return entry.get("balance", "0")
    return "0"


def memo_as_hex(transaction: dict) -> Optional[str]:
    """
    Memo of a Horizon transaction record, normalized for hash comparison.
    Hash memos are reported base64-encoded; text memos are returned as-is.
    """
    memo = transaction.get("memo")
    if memo is None:
        return None
    if transaction.get("memo_type") in ("hash", "return"):
        try:
            return base64.b64decode(memo).hex()
        except (ValueError, TypeError):
            return None
    return memo


class HorizonClient:
    """
    One client per network.

    Usage:
        horizon = HorizonClient(settings.network_config("testnet"))
        account = await horizon.load_account(public_key)
    """

    def __init__(
        self,
        network: NetworkConfig,
        timeout: float = 30.0,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.network = network
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._transport = transport
        self._sleep = sleep

    @property
    def horizon_url(self) -> str:
        return self.network.horizon_url

    def _client(self, base_url: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=self.timeout,
            transport=self._transport,
            headers={"Accept": "application/json"},
        )

    async def _get(self, path: str) -> Optional[dict]:
        """
        GET a Horizon resource with retries.
        Returns None on 404; raises LedgerUnavailableError once retries are spent.
        """
        last_error = ""
        for attempt in range(1, self.retry_attempts + 1):
            try:
                async with self._client(self.horizon_url) as client:
                    response = await client.get(path)
            except httpx.TransportError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
            else:
                if response.status_code == 404:
                    return None
                if response.status_code < 500:
                    if response.is_error:
                        raise ExternalLedgerError(
                            f"Horizon rejected GET {path}: HTTP {response.status_code}",
                            payload=_safe_json(response),
                        )
                    return response.json()
                last_error = f"HTTP {response.status_code}"

            if attempt < self.retry_attempts:
                logger.debug(
                    "Horizon GET %s failed (%s), retry %d/%d in %.1fs",
                    path, last_error, attempt, self.retry_attempts - 1, self.retry_delay,
                )
                await self._sleep(self.retry_delay)

        logger.warning("Horizon GET %s on %s failed after %d attempts: %s",
                       path, self.network.name, self.retry_attempts, last_error)
        raise LedgerUnavailableError(f"Ledger {self.network.name} unavailable: {last_error}")

    # =========================================================================
    # Reads
    # =========================================================================

    async def load_account(self, public_key: str) -> dict:
        """Account record (sequence, balances); AccountNotFoundError if absent."""
        account = await self._get(f"/accounts/{public_key}")
        if account is None:
            raise AccountNotFoundError(public_key)
        return account

    async def get_transaction(self, transaction_hash: str) -> Optional[dict]:
        """Transaction record, or None while the ledger does not know it."""
        return await self._get(f"/transactions/{transaction_hash}")

    # =========================================================================
    # Writes (never retried)
    # =========================================================================

    async def submit_transaction(self, envelope_xdr: str) -> dict:
        """Submit a signed envelope; returns Horizon's success record."""
        try:
            async with self._client(self.horizon_url) as client:
                response = await client.post("/transactions", data={"tx": envelope_xdr})
        except httpx.TransportError as exc:
            raise AnchorFailedError(
                f"Transaction submission failed: {type(exc).__name__}",
                payload={"error": str(exc)},
            ) from exc

        body = _safe_json(response)
        if response.is_success:
            return body

        codes = ((body.get("extras") or {}).get("result_codes") or {}) if isinstance(body, dict) else {}
        tx_code = codes.get("transaction")
        op_codes = codes.get("operations") or []
        if tx_code in INSUFFICIENT_FUNDS_CODES or INSUFFICIENT_FUNDS_CODES.intersection(op_codes):
            raise InsufficientFundsError(payload=body)
        raise AnchorFailedError(
            f"Transaction failed: {tx_code or f'HTTP {response.status_code}'}",
            payload=body,
        )

    async def fund(self, public_key: str) -> dict:
        """Ask the test-network faucet to create and credit an account."""
        if not self.network.friendbot_url:
            raise FundingFailedError(f"No funding service configured for {self.network.name}")
        try:
            async with self._client(self.network.friendbot_url) as client:
                response = await client.get("", params={"addr": public_key})
        except httpx.TransportError as exc:
            raise FundingFailedError(
                f"Friendbot request failed: {type(exc).__name__}",
                payload={"error": str(exc)},
            ) from exc

        if not response.is_success:
            raise FundingFailedError(
                f"Friendbot request failed: HTTP {response.status_code}",
                payload=_safe_json(response),
            )
        return _safe_json(response)


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {"status": response.status_code, "body": response.text[:2000]}


def build_horizon_clients(
    settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> dict[str, HorizonClient]:
    """One HorizonClient per configured network, keyed by network name."""
    return {
        name: HorizonClient(
            settings.network_config(name),
            timeout=settings.stellar_transaction_timeout,
            retry_attempts=settings.stellar_retry_attempts,
            retry_delay=settings.stellar_retry_delay,
            transport=transport,
            sleep=sleep,
        )
        for name in ("testnet", "mainnet")
    }
