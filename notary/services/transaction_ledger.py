"""
Notary - Transaction Ledger

Persistence facade for ledger accounts and ledger transactions.

Every call opens its own short-lived session so long-running callers
(anchoring, confirmation polling) never hold a connection across network
I/O. Status writes are guarded so a record never moves backwards:

    pending  -> success | failed | timeout
    timeout  -> success | failed | timeout   (a caller re-polled)
    success, failed: final
"""

import logging
from typing import Any, Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from notary.core.database import get_db_session
from notary.core.errors import ConflictError, NotFoundError
from notary.models.models import (
    LedgerAccount,
    LedgerTransaction,
    TransactionStatus,
    utcnow,
)

logger = logging.getLogger(__name__)


# Statuses a row may currently hold for a write of the key status to apply
STATUS_WRITABLE_FROM: dict[TransactionStatus, tuple[str, ...]] = {
    TransactionStatus.SUCCESS: (TransactionStatus.PENDING.value, TransactionStatus.TIMEOUT.value),
    TransactionStatus.FAILED: (TransactionStatus.PENDING.value, TransactionStatus.TIMEOUT.value),
    TransactionStatus.TIMEOUT: (TransactionStatus.PENDING.value, TransactionStatus.TIMEOUT.value),
}


class TransactionLedger:
    """Repository for LedgerTransaction and LedgerAccount rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # =========================================================================
    # Transactions
    # =========================================================================

    async def insert(self, record: LedgerTransaction) -> LedgerTransaction:
        """Insert one transaction row."""
        records = await self.insert_many([record])
        return records[0]

    async def insert_many(self, records: Iterable[LedgerTransaction]) -> list[LedgerTransaction]:
        """
        Insert rows atomically.
        Raises ConflictError if any (hash, network, document) already exists.
        """
        records = list(records)
        try:
            async with get_db_session(self._session_factory) as db:
                db.add_all(records)
                await db.flush()
        except IntegrityError as exc:
            hashes = sorted({r.transaction_hash for r in records})
            logger.warning("Duplicate ledger transaction rejected: %s", ", ".join(hashes))
            raise ConflictError(
                f"Ledger transaction {', '.join(hashes)} is already recorded for this document"
            ) from exc
        return records

    async def update_by_hash(
        self,
        transaction_hash: str,
        network: str,
        status: Optional[TransactionStatus] = None,
        **fields: Any,
    ) -> int:
        """
        Update every row sharing a transaction hash on a network.

        When a status is given, only rows whose current status allows the
        change are touched (see STATUS_WRITABLE_FROM). Returns the number of
        rows updated.
        """
        stmt = update(LedgerTransaction).where(
            LedgerTransaction.transaction_hash == transaction_hash,
            LedgerTransaction.network == network,
        )
        values = dict(fields)
        if status is not None:
            status = TransactionStatus(status)
            if status not in STATUS_WRITABLE_FROM:
                raise ValueError(f"Status cannot be set back to {status.value}")
            stmt = stmt.where(LedgerTransaction.status.in_(STATUS_WRITABLE_FROM[status]))
            values["status"] = status.value
        if not values:
            return 0
        values["updated_at"] = utcnow()

        async with get_db_session(self._session_factory) as db:
            result = await db.execute(stmt.values(**values).execution_options(synchronize_session=False))
            count = result.rowcount or 0

        if status is not None and count == 0:
            logger.info(
                "No %s rows moved to %s for transaction %s",
                network, status.value, transaction_hash,
            )
        return count

    async def find_by_hash(self, transaction_hash: str, network: Optional[str] = None) -> Optional[LedgerTransaction]:
        """Earliest row recorded for a transaction hash."""
        rows = await self.find_all_by_hash(transaction_hash, network)
        return rows[0] if rows else None

    async def find_all_by_hash(self, transaction_hash: str, network: Optional[str] = None) -> list[LedgerTransaction]:
        """All rows for a transaction hash (several for a batch), oldest first."""
        stmt = select(LedgerTransaction).where(LedgerTransaction.transaction_hash == transaction_hash)
        if network is not None:
            stmt = stmt.where(LedgerTransaction.network == network)
        stmt = stmt.order_by(LedgerTransaction.created_at.asc(), LedgerTransaction.document_hash.asc())
        async with get_db_session(self._session_factory) as db:
            return list((await db.execute(stmt)).scalars().all())

    async def find_by_document_hash(self, document_hash: str, network: Optional[str] = None) -> list[LedgerTransaction]:
        """Rows anchoring a document hash, newest first."""
        stmt = select(LedgerTransaction).where(LedgerTransaction.document_hash == document_hash.lower())
        if network is not None:
            stmt = stmt.where(LedgerTransaction.network == network)
        stmt = stmt.order_by(LedgerTransaction.created_at.desc())
        async with get_db_session(self._session_factory) as db:
            return list((await db.execute(stmt)).scalars().all())

    async def find_by_status(self, status: TransactionStatus, network: Optional[str] = None) -> list[LedgerTransaction]:
        """Rows currently in a status, oldest first (useful to resume polling)."""
        stmt = select(LedgerTransaction).where(LedgerTransaction.status == TransactionStatus(status).value)
        if network is not None:
            stmt = stmt.where(LedgerTransaction.network == network)
        stmt = stmt.order_by(LedgerTransaction.created_at.asc())
        async with get_db_session(self._session_factory) as db:
            return list((await db.execute(stmt)).scalars().all())

    # =========================================================================
    # Accounts
    # =========================================================================

    async def insert_account(self, account: LedgerAccount) -> LedgerAccount:
        try:
            async with get_db_session(self._session_factory) as db:
                db.add(account)
                await db.flush()
        except IntegrityError as exc:
            raise ConflictError(f"Account '{account.public_key}' already exists") from exc
        return account

    async def find_account(self, public_key: str, network: Optional[str] = None) -> Optional[LedgerAccount]:
        stmt = select(LedgerAccount).where(LedgerAccount.public_key == public_key)
        if network is not None:
            stmt = stmt.where(LedgerAccount.network == network)
        async with get_db_session(self._session_factory) as db:
            return (await db.execute(stmt)).scalar_one_or_none()

    async def mark_account_funded(self, public_key: str, network: str, balance: Optional[str] = None) -> LedgerAccount:
        """Flag an account as funded; balance is only overwritten when known."""
        async with get_db_session(self._session_factory) as db:
            stmt = select(LedgerAccount).where(
                LedgerAccount.public_key == public_key,
                LedgerAccount.network == network,
            )
            account = (await db.execute(stmt)).scalar_one_or_none()
            if account is None:
                raise NotFoundError("Ledger account", public_key)
            account.is_funded = True
            account.last_funded_at = utcnow()
            if balance is not None:
                account.balance = balance
            await db.flush()
            return account
