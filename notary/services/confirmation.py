"""
Notary - Confirmation Poller

Polls the ledger for a submitted transaction until it resolves or the
confirmation deadline passes. The wait is a cooperative sleep, so a poll in
progress never blocks other requests.
"""

import asyncio
import json
import logging
import time
from typing import Awaitable, Callable, Optional

from notary.core.errors import ExternalLedgerError
from notary.core.validation import ensure_hash
from notary.models.models import TransactionStatus, utcnow
from notary.services.anchoring import AnchoringGateway
from notary.services.transaction_ledger import TransactionLedger

logger = logging.getLogger(__name__)


class ConfirmationPoller:
    """
    Time-boxed confirmation polling.

    Outcomes:
        success  ledger reports the transaction successful
        failed   ledger reports it unsuccessful
        timeout  no verdict before the confirmation timeout elapsed

    "Not found yet" and transient ledger errors are both treated as
    "not yet": the loop sleeps one interval and looks again. At least one
    lookup always happens, even with a zero-length budget left.

    Each lookup is cut off at the time left before the deadline (never less
    than min_lookup_time), so slow or retrying ledger reads cannot stretch
    the poll past the confirmation timeout by more than that floor.
    """

    def __init__(
        self,
        gateway: AnchoringGateway,
        ledger: TransactionLedger,
        polling_interval: float,
        confirmation_timeout: float,
        min_lookup_time: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.gateway = gateway
        self.ledger = ledger
        self.polling_interval = polling_interval
        self.confirmation_timeout = confirmation_timeout
        self.min_lookup_time = min_lookup_time
        self._clock = clock
        self._sleep = sleep

    async def poll_transaction_status(self, transaction_hash: str, network: Optional[str] = None) -> TransactionStatus:
        transaction_hash = ensure_hash(transaction_hash, "transactionHash")
        network = self.gateway.resolve_network(network)

        started = self._clock()
        deadline = started + self.confirmation_timeout
        attempts = 0

        while True:
            attempts += 1
            budget = max(deadline - self._clock(), self.min_lookup_time)
            record = await self._lookup(transaction_hash, network, budget)

            if record is not None:
                if record.get("successful"):
                    await self.ledger.update_by_hash(
                        transaction_hash,
                        network,
                        status=TransactionStatus.SUCCESS,
                        confirmed_at=utcnow(),
                        transaction_data=json.dumps(record, default=str),
                    )
                    logger.info("Transaction %s confirmed after %d poll(s)", transaction_hash, attempts)
                    return TransactionStatus.SUCCESS

                await self.ledger.update_by_hash(
                    transaction_hash,
                    network,
                    status=TransactionStatus.FAILED,
                    error_data=json.dumps(record, default=str),
                )
                logger.warning("Transaction %s failed on ledger", transaction_hash)
                return TransactionStatus.FAILED

            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            await self._sleep(min(self.polling_interval, remaining))

        await self.ledger.update_by_hash(transaction_hash, network, status=TransactionStatus.TIMEOUT)
        logger.warning(
            "Transaction %s unresolved after %.1fs (%d poll(s))",
            transaction_hash, self._clock() - started, attempts,
        )
        return TransactionStatus.TIMEOUT

    async def _lookup(self, transaction_hash: str, network: str, budget: float) -> Optional[dict]:
        try:
            return await asyncio.wait_for(
                self.gateway.lookup_ledger_transaction(transaction_hash, network),
                timeout=budget,
            )
        except asyncio.TimeoutError:
            logger.debug("Lookup for %s cut off after %.1fs", transaction_hash, budget)
            return None
        except ExternalLedgerError as exc:
            logger.debug("Transient lookup failure for %s: %s", transaction_hash, exc.message)
            return None
