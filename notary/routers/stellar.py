"""
Stellar Ledger Router

Account management, fee estimation, anchoring, confirmation polling and
independent verification against the public ledger.

Secret keys travel only in request bodies; they are never logged and never
echoed back, except the one-time response of account creation.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status

from notary.core.dependencies import get_gateway, get_poller, get_task_registry
from notary.core.rate_limit import RATE_ACCOUNT, RATE_ANCHOR, RATE_POLL, RATE_READ, limiter
from notary.core.validation import ensure_hash
from notary.models.schemas import (
    AccountResponse,
    AnchorDocumentRequest,
    BalanceResponse,
    BatchAnchorRequest,
    BatchTransactionResponse,
    CreateAccountRequest,
    EstimateFeeRequest,
    FeeEstimateResponse,
    FundAccountRequest,
    FundAccountResponse,
    TaskAccepted,
    TransactionResponse,
    TransactionStatusResponse,
    VerificationResponse,
    VerifyDocumentRequest,
)
from notary.services.anchoring import AnchoringGateway
from notary.services.confirmation import ConfirmationPoller
from notary.services.tasks import TaskRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stellar", tags=["Stellar"])


# =============================================================================
# Accounts
# =============================================================================

@router.post("/accounts", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(RATE_ACCOUNT)
async def create_account(
    request: Request,
    body: CreateAccountRequest,
    gateway: AnchoringGateway = Depends(get_gateway),
):
    """
    Generate a key pair. The secret key is in this response only;
    store it now, it cannot be retrieved again.
    """
    account = await gateway.create_account(body.network)
    return AccountResponse(
        public_key=account.public_key,
        secret_key=account.secret_key,
        network=account.network,
    )


@router.post("/accounts/fund", response_model=FundAccountResponse)
@limiter.limit(RATE_ACCOUNT)
async def fund_account(
    request: Request,
    body: FundAccountRequest,
    gateway: AnchoringGateway = Depends(get_gateway),
):
    """Credit an account through the test-network faucet (testnet only)."""
    account = await gateway.fund_account(body.public_key, body.network)
    return FundAccountResponse(
        message="Account funded successfully",
        public_key=account.public_key,
        balance=account.balance,
    )


@router.get("/accounts/{public_key}/balance", response_model=BalanceResponse)
@limiter.limit(RATE_READ)
async def get_balance(
    request: Request,
    public_key: str,
    network: Optional[str] = Query(None),
    gateway: AnchoringGateway = Depends(get_gateway),
):
    """Live native balance as reported by the ledger."""
    return BalanceResponse(balance=await gateway.get_account_balance(public_key, network))


# =============================================================================
# Anchoring
# =============================================================================

@router.post("/estimate-fee", response_model=FeeEstimateResponse)
@limiter.limit(RATE_READ)
async def estimate_fee(
    request: Request,
    body: EstimateFeeRequest,
    gateway: AnchoringGateway = Depends(get_gateway),
):
    """Price a single anchor without submitting anything."""
    estimate = await gateway.estimate_transaction_fee(body.source_public_key, body.document_hash, body.network)
    return FeeEstimateResponse(fee=estimate.fee, cost=estimate.cost)


@router.post("/anchor", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(RATE_ANCHOR)
async def anchor_document(
    request: Request,
    body: AnchorDocumentRequest,
    gateway: AnchoringGateway = Depends(get_gateway),
):
    return await gateway.anchor_document_hash(
        body.source_public_key,
        body.source_secret_key,
        body.document_hash,
        body.network,
    )


@router.post("/anchor/batch", response_model=BatchTransactionResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(RATE_ANCHOR)
async def batch_anchor_documents(
    request: Request,
    body: BatchAnchorRequest,
    gateway: AnchoringGateway = Depends(get_gateway),
):
    """
    Anchor several hashes in one transaction.
    Only the first hash is carried as the ledger memo, so only it can be
    verified against the ledger by memo.
    """
    records = await gateway.batch_anchor_documents(
        body.source_public_key,
        body.source_secret_key,
        body.document_hashes,
        body.network,
    )
    return BatchTransactionResponse(transactions=[TransactionResponse.model_validate(r) for r in records])


# =============================================================================
# Transactions
# =============================================================================

@router.get("/transactions/document/{document_hash}", response_model=list[TransactionResponse])
@limiter.limit(RATE_READ)
async def get_transactions_by_document_hash(
    request: Request,
    document_hash: str,
    network: Optional[str] = Query(None),
    gateway: AnchoringGateway = Depends(get_gateway),
):
    return await gateway.get_transactions_by_document_hash(document_hash, network)


@router.get("/transactions/{transaction_hash}/status", response_model=TransactionStatusResponse)
@limiter.limit(RATE_POLL)
async def poll_transaction_status(
    request: Request,
    transaction_hash: str,
    network: Optional[str] = Query(None),
    poller: ConfirmationPoller = Depends(get_poller),
):
    """
    Poll the ledger until the transaction resolves or the confirmation
    timeout passes; holds the request open meanwhile.
    """
    result = await poller.poll_transaction_status(transaction_hash, network)
    return TransactionStatusResponse(status=result.value)


@router.post(
    "/transactions/{transaction_hash}/watch",
    response_model=TaskAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
@limiter.limit(RATE_POLL)
async def watch_transaction(
    request: Request,
    transaction_hash: str,
    network: Optional[str] = Query(None),
    poller: ConfirmationPoller = Depends(get_poller),
    tasks: TaskRegistry = Depends(get_task_registry),
):
    """Same as the status poll, in the background; follow it at GET /tasks/{taskId}."""
    transaction_hash = ensure_hash(transaction_hash, "transactionHash")
    network = poller.gateway.resolve_network(network)

    async def run() -> dict:
        result = await poller.poll_transaction_status(transaction_hash, network)
        return {"status": result.value}

    handle = tasks.submit("watch-transaction", run())
    logger.info("Watching transaction %s on %s as task %s", transaction_hash, network, handle.id)
    return TaskAccepted(task_id=handle.id, status=handle.status.value)


@router.get("/transactions/{transaction_hash}", response_model=TransactionResponse)
@limiter.limit(RATE_READ)
async def get_transaction(
    request: Request,
    transaction_hash: str,
    network: Optional[str] = Query(None),
    gateway: AnchoringGateway = Depends(get_gateway),
):
    return await gateway.get_transaction(transaction_hash, network)


# =============================================================================
# Verification
# =============================================================================

@router.post("/verify", response_model=VerificationResponse)
@limiter.limit(RATE_POLL)
async def verify_document(
    request: Request,
    body: VerifyDocumentRequest,
    gateway: AnchoringGateway = Depends(get_gateway),
):
    """True only if the ledger itself confirms a successful anchor of this hash."""
    verified = await gateway.verify_document_on_stellar(body.document_hash, body.network)
    return VerificationResponse(verified=verified)
