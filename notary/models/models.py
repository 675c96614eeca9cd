"""
Notary Database Models
SQLAlchemy ORM models for verification workflows and ledger records.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from notary.core.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# Enumerations
# =============================================================================

class WorkflowState(str, Enum):
    """States of the document verification pipeline."""
    SUBMITTED = "SUBMITTED"
    HASHING = "HASHING"
    ANALYZING = "ANALYZING"
    AWAITING_BLOCKCHAIN = "AWAITING_BLOCKCHAIN"
    ANCHORED = "ANCHORED"
    FAILED = "FAILED"
    REJECTED = "REJECTED"


class TransactionStatus(str, Enum):
    """Ledger transaction status as tracked locally."""
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"


class NetworkType(str, Enum):
    TESTNET = "testnet"
    MAINNET = "mainnet"


# =============================================================================
# Verification Workflow
# =============================================================================

class VerificationWorkflow(Base):
    """
    Lifecycle of one verification attempt for a document.

    history is an append-only list of {state, timestamp, note?} dicts whose
    last entry always matches current_state. The version column is the ORM
    version id: every UPDATE is a compare-and-swap on it.
    """
    __tablename__ = "verification_workflows"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    # Owned by the document store; referenced, not enforced
    document_id: Mapped[str] = mapped_column(String(100), index=True)

    current_state: Mapped[str] = mapped_column(String(30), index=True, default=WorkflowState.SUBMITTED.value)

    # Ledger transaction hash once anchored
    stellar_transaction_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    submitted_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    history: Mapped[list] = mapped_column(JSON, default=list)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


# =============================================================================
# Ledger Accounts
# =============================================================================

class LedgerAccount(Base):
    """
    Key pair created through the gateway.
    The secret seed is stored sealed (see notary.core.encryption), never in clear.
    """
    __tablename__ = "ledger_accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    public_key: Mapped[str] = mapped_column(String(56), unique=True)
    encrypted_secret_key: Mapped[str] = mapped_column(Text)
    network: Mapped[str] = mapped_column(String(10))

    # Cached from the last funding call; live balance comes from the ledger
    balance: Mapped[str] = mapped_column(String(32), default="0")
    is_funded: Mapped[bool] = mapped_column(Boolean, default=False)
    last_funded_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


# =============================================================================
# Ledger Transactions
# =============================================================================

class LedgerTransaction(Base):
    """
    One document hash anchored by one ledger transaction.

    A batch transaction produces one row per document hash, all sharing the
    same transaction_hash; hence uniqueness is per (hash, network, document).
    """
    __tablename__ = "ledger_transactions"
    __table_args__ = (
        UniqueConstraint(
            "transaction_hash", "network", "document_hash",
            name="uq_ledger_tx_hash_network_document",
        ),
        Index("ix_ledger_tx_document_network", "document_hash", "network"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    transaction_hash: Mapped[str] = mapped_column(String(64), index=True)
    document_hash: Mapped[str] = mapped_column(String(64))

    # Memo actually carried on the ledger (hex of the hash memo)
    memo: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    status: Mapped[str] = mapped_column(String(10), index=True, default=TransactionStatus.PENDING.value)
    network: Mapped[str] = mapped_column(String(10))

    # Total fee in stroops
    fee: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    source_account: Mapped[Optional[str]] = mapped_column(String(56), nullable=True)
    destination_account: Mapped[Optional[str]] = mapped_column(String(56), nullable=True)

    # Audit payloads: signed envelope XDR / raw ledger responses
    transaction_data: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_data: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    horizon_url: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
