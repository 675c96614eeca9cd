"""
Notary API Schemas
Pydantic models for request and response bodies. JSON uses camelCase keys.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from notary.core.validation import HexHash, Network, PublicKey, SecretKey
from notary.models.models import WorkflowState


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# =============================================================================
# Verification Workflows
# =============================================================================

class InitiateWorkflowRequest(CamelModel):
    document_id: str = Field(..., min_length=1, max_length=100)


class TransitionWorkflowRequest(CamelModel):
    new_state: WorkflowState
    note: Optional[str] = Field(None, max_length=2000)


class RecordAnchorRequest(CamelModel):
    stellar_transaction_id: str = Field(..., min_length=1, max_length=100)


class RiskScoreRequest(CamelModel):
    risk_score: float = Field(..., ge=0, le=100)


class AnchorWorkflowRequest(CamelModel):
    source_public_key: PublicKey
    source_secret_key: SecretKey
    document_hash: HexHash
    network: Optional[Network] = None


class HistoryEntry(CamelModel):
    state: WorkflowState
    timestamp: str
    note: Optional[str] = None


class WorkflowResponse(CamelModel):
    id: str
    document_id: str
    current_state: WorkflowState
    stellar_transaction_id: Optional[str] = None
    error_message: Optional[str] = None
    submitted_at: datetime
    completed_at: Optional[datetime] = None
    history: list[HistoryEntry]
    version: int


# =============================================================================
# Ledger
# =============================================================================

class CreateAccountRequest(CamelModel):
    network: Optional[Network] = None


class FundAccountRequest(CamelModel):
    public_key: PublicKey
    network: Optional[Network] = None


class EstimateFeeRequest(CamelModel):
    source_public_key: PublicKey
    document_hash: HexHash
    network: Optional[Network] = None


class AnchorDocumentRequest(CamelModel):
    source_public_key: PublicKey
    source_secret_key: SecretKey
    document_hash: HexHash
    network: Optional[Network] = None


class BatchAnchorRequest(CamelModel):
    source_public_key: PublicKey
    source_secret_key: SecretKey
    document_hashes: list[HexHash] = Field(..., min_length=1, max_length=100)
    network: Optional[Network] = None


class VerifyDocumentRequest(CamelModel):
    document_hash: HexHash
    network: Optional[Network] = None


class AccountResponse(CamelModel):
    public_key: str
    secret_key: str
    network: str


class FundAccountResponse(CamelModel):
    message: str
    public_key: str
    balance: str


class BalanceResponse(CamelModel):
    balance: str


class FeeEstimateResponse(CamelModel):
    fee: int
    cost: str


class TransactionResponse(CamelModel):
    id: str
    transaction_hash: str
    document_hash: str
    memo: Optional[str] = None
    status: str
    network: str
    fee: Optional[str] = None
    source_account: Optional[str] = None
    destination_account: Optional[str] = None
    horizon_url: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class BatchTransactionResponse(CamelModel):
    transactions: list[TransactionResponse]


class TransactionStatusResponse(CamelModel):
    status: str


class VerificationResponse(CamelModel):
    verified: bool


# =============================================================================
# Background tasks
# =============================================================================

class TaskAccepted(CamelModel):
    task_id: str
    status: str


class TaskResponse(CamelModel):
    id: str
    name: str
    status: str
    result: Any = None
    error: Optional[dict] = None
    created_at: datetime
    finished_at: Optional[datetime] = None
