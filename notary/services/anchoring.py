"""
Notary - Anchoring Gateway

Owns ledger accounts and anchoring transactions:
- account creation (secret returned once, stored sealed) and test funding
- fee estimation (build only, never submit)
- single and batch document-hash anchoring
- independent verification of a local record against the public ledger

Anchors are self-payments of a minimal amount carrying the document hash as
a 32-byte hash memo. A transaction carries a single memo, so a batch is
verifiable by memo for its first hash only.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from stellar_sdk import Account, Asset, Keypair, TransactionBuilder, TransactionEnvelope

from notary.core.config import Settings
from notary.core.encryption import encrypt_secret
from notary.core.errors import (
    AnchorFailedError,
    ExternalLedgerError,
    FundingFailedError,
    NotFoundError,
    ValidationError,
)
from notary.core.validation import ensure_hash, ensure_network, ensure_public_key, ensure_secret_key
from notary.models.models import (
    LedgerAccount,
    LedgerTransaction,
    NetworkType,
    TransactionStatus,
    utcnow,
)
from notary.services.horizon import HorizonClient, memo_as_hex, native_balance
from notary.services.transaction_ledger import TransactionLedger

logger = logging.getLogger(__name__)

# Nominal self-payment carried by each anchor operation (100 stroops)
ANCHOR_PAYMENT_AMOUNT = "0.00001"

# Protocol limit on operations per transaction
MAX_BATCH_OPERATIONS = 100


@dataclass(frozen=True)
class CreatedAccount:
    """Key pair handed back exactly once at creation."""
    public_key: str
    network: str
    secret_key: str = field(repr=False)


@dataclass(frozen=True)
class FeeEstimate:
    fee: int  # per operation, stroops
    cost: str  # fee x operation count, stroops
    operations: int


class AnchoringGateway:
    """
    Ledger-facing service.

    Usage:
        gateway = AnchoringGateway(ledger, build_horizon_clients(settings), settings)
        record = await gateway.anchor_document_hash(pk, sk, sha256_hex, "testnet")
    """

    def __init__(
        self,
        ledger: TransactionLedger,
        horizons: dict[str, HorizonClient],
        settings: Settings,
    ):
        self.ledger = ledger
        self.horizons = horizons
        self.settings = settings

    def resolve_network(self, network: Optional[str]) -> str:
        """Validated network name; the configured default when none is given."""
        return ensure_network(network or self.settings.stellar_default_network)

    def _horizon(self, network: Optional[str]) -> HorizonClient:
        network = self.resolve_network(network)
        try:
            return self.horizons[network]
        except KeyError:
            raise ValidationError(f"Network '{network}' is not configured") from None

    # =========================================================================
    # Accounts
    # =========================================================================

    async def create_account(self, network: Optional[str] = None) -> CreatedAccount:
        """Generate a key pair and persist it unfunded; the secret is returned only here."""
        network = self.resolve_network(network)
        pair = Keypair.random()

        account = LedgerAccount(
            public_key=pair.public_key,
            encrypted_secret_key=encrypt_secret(pair.secret, pair.public_key, self.settings.secret_key),
            network=network,
            balance="0",
            is_funded=False,
        )
        await self.ledger.insert_account(account)

        logger.info("Created ledger account %s on %s", pair.public_key, network)
        return CreatedAccount(public_key=pair.public_key, network=network, secret_key=pair.secret)

    async def fund_account(self, public_key: str, network: Optional[str] = None) -> LedgerAccount:
        """
        Credit an account through the test faucet.
        The account stays unfunded if the faucet call fails; nothing is retried.
        """
        public_key = ensure_public_key(public_key)
        network = self.resolve_network(network)
        if network != NetworkType.TESTNET.value:
            raise ValidationError(
                "Account funding is only available on testnet",
                error_code="funding_not_available",
                status_code=400,
            )

        if await self.ledger.find_account(public_key, network) is None:
            raise NotFoundError("Ledger account", public_key)

        horizon = self._horizon(network)
        try:
            await horizon.fund(public_key)
        except FundingFailedError as exc:
            logger.error("Failed to fund account %s: %s", public_key, exc.message)
            raise

        balance: Optional[str] = None
        try:
            balance = native_balance(await horizon.load_account(public_key))
        except ExternalLedgerError as exc:
            logger.warning("Funded %s but could not read balance back: %s", public_key, exc.message)

        account = await self.ledger.mark_account_funded(public_key, network, balance)
        logger.info("Funded account %s on %s (balance %s)", public_key, network, account.balance)
        return account

    async def get_account_balance(self, public_key: str, network: Optional[str] = None) -> str:
        """Live native balance from the ledger (not the cached row)."""
        public_key = ensure_public_key(public_key)
        account = await self._horizon(network).load_account(public_key)
        return native_balance(account)

    # =========================================================================
    # Transaction building
    # =========================================================================

    def _build_envelope(
        self,
        account_record: dict,
        source_public_key: str,
        document_hashes: list[str],
        network: str,
    ) -> TransactionEnvelope:
        """One self-payment per hash; the first hash becomes the memo."""
        source = Account(source_public_key, int(account_record["sequence"]))
        builder = TransactionBuilder(
            source_account=source,
            network_passphrase=self.settings.network_config(network).network_passphrase,
            base_fee=self.settings.stellar_base_fee,
        )
        for _ in document_hashes:
            builder.append_payment_op(
                destination=source_public_key,
                asset=Asset.native(),
                amount=ANCHOR_PAYMENT_AMOUNT,
            )
        builder.add_hash_memo(document_hashes[0])
        builder.set_timeout(int(self.settings.stellar_transaction_timeout))
        envelope = builder.build()

        operations = len(envelope.transaction.operations)
        max_total = self.settings.stellar_max_fee * operations
        if envelope.transaction.fee > max_total:
            raise ValidationError(
                f"Transaction fee {envelope.transaction.fee} exceeds the configured maximum of {max_total} stroops",
                error_code="fee_too_high",
                status_code=400,
            )
        return envelope

    @staticmethod
    def _signer(source_public_key: str, source_secret_key: str) -> Keypair:
        ensure_secret_key(source_secret_key, "sourceSecretKey")
        try:
            keypair = Keypair.from_secret(source_secret_key)
        except ValueError:
            raise ValidationError("Invalid Stellar secret key") from None
        if keypair.public_key != source_public_key:
            raise ValidationError("Secret key does not belong to the source account")
        return keypair

    async def estimate_transaction_fee(
        self,
        source_public_key: str,
        document_hash: str,
        network: Optional[str] = None,
    ) -> FeeEstimate:
        """Build (never submit) a single anchor and price it."""
        source_public_key = ensure_public_key(source_public_key, "sourcePublicKey")
        document_hash = ensure_hash(document_hash)
        network = self.resolve_network(network)
        horizon = self._horizon(network)

        account_record = await horizon.load_account(source_public_key)
        envelope = self._build_envelope(account_record, source_public_key, [document_hash], network)

        fee = self.settings.stellar_base_fee
        operations = len(envelope.transaction.operations)
        return FeeEstimate(fee=fee, cost=str(fee * operations), operations=operations)

    # =========================================================================
    # Anchoring
    # =========================================================================

    async def anchor_document_hash(
        self,
        source_public_key: str,
        source_secret_key: str,
        document_hash: str,
        network: Optional[str] = None,
    ) -> LedgerTransaction:
        """
        Anchor one document hash.

        The pending row is written before submission so an interrupted call
        still leaves an auditable trace. Raises AnchorFailedError (after
        marking the row failed) when the ledger rejects the transaction.
        """
        records = await self._anchor(source_public_key, source_secret_key, [document_hash], network)
        return records[0]

    async def batch_anchor_documents(
        self,
        source_public_key: str,
        source_secret_key: str,
        document_hashes: list[str],
        network: Optional[str] = None,
    ) -> list[LedgerTransaction]:
        """
        Anchor several hashes in one transaction.

        Each hash gets its own row; all rows share transaction hash, status
        and fee. Only the first hash is carried as the ledger memo.
        """
        if not document_hashes:
            raise ValidationError("documentHashes must not be empty")
        if len(document_hashes) > MAX_BATCH_OPERATIONS:
            raise ValidationError(f"A batch holds at most {MAX_BATCH_OPERATIONS} document hashes")
        return await self._anchor(source_public_key, source_secret_key, document_hashes, network)

    async def _anchor(
        self,
        source_public_key: str,
        source_secret_key: str,
        document_hashes: list[str],
        network: str,
    ) -> list[LedgerTransaction]:
        source_public_key = ensure_public_key(source_public_key, "sourcePublicKey")
        document_hashes = [ensure_hash(h, "documentHashes") for h in document_hashes]
        if len(set(document_hashes)) != len(document_hashes):
            raise ValidationError("documentHashes contains duplicates")
        keypair = self._signer(source_public_key, source_secret_key)
        network = self.resolve_network(network)
        horizon = self._horizon(network)

        logger.info("Anchoring %d document hash(es) on %s", len(document_hashes), network)

        account_record = await horizon.load_account(source_public_key)
        envelope = self._build_envelope(account_record, source_public_key, document_hashes, network)
        envelope.sign(keypair)

        transaction_hash = envelope.hash_hex()
        envelope_xdr = envelope.to_xdr()
        memo = document_hashes[0]
        fee = str(envelope.transaction.fee)

        records = [
            LedgerTransaction(
                transaction_hash=transaction_hash,
                document_hash=document_hash,
                memo=memo,
                status=TransactionStatus.PENDING.value,
                network=network,
                fee=fee,
                source_account=source_public_key,
                destination_account=source_public_key,
                horizon_url=horizon.horizon_url,
                transaction_data=envelope_xdr,
            )
            for document_hash in document_hashes
        ]
        await self.ledger.insert_many(records)

        try:
            result = await horizon.submit_transaction(envelope_xdr)
        except AnchorFailedError as exc:
            logger.error(
                "Failed to anchor transaction %s (%d hash(es)): %s",
                transaction_hash, len(document_hashes), exc.message,
            )
            await self.ledger.update_by_hash(
                transaction_hash,
                network,
                status=TransactionStatus.FAILED,
                error_data=_dump(exc.payload if exc.payload is not None else exc.message),
            )
            raise

        await self.ledger.update_by_hash(
            transaction_hash,
            network,
            status=TransactionStatus.SUCCESS,
            confirmed_at=utcnow(),
            transaction_data=_dump(result),
        )
        logger.info("Anchored %d document hash(es) in transaction %s", len(document_hashes), transaction_hash)

        rows = await self.ledger.find_all_by_hash(transaction_hash, network)
        order = {h: i for i, h in enumerate(document_hashes)}
        return sorted(rows, key=lambda row: order.get(row.document_hash, len(order)))

    # =========================================================================
    # Ledger reads
    # =========================================================================

    async def lookup_ledger_transaction(self, transaction_hash: str, network: Optional[str] = None) -> Optional[dict]:
        """Ledger's record for a transaction, or None if it is not (yet) visible."""
        transaction_hash = ensure_hash(transaction_hash, "transactionHash")
        return await self._horizon(network).get_transaction(transaction_hash)

    async def verify_document_on_stellar(self, document_hash: str, network: Optional[str] = None) -> bool:
        """
        True only if the ledger itself confirms a successful transaction
        whose memo equals the document hash. Local rows merely say where to look.
        """
        document_hash = ensure_hash(document_hash)
        network = self.resolve_network(network)
        horizon = self._horizon(network)

        records = await self.ledger.find_by_document_hash(document_hash, network)
        if not records:
            return False

        checked: set[str] = set()
        for record in records:
            if record.transaction_hash in checked:
                continue
            checked.add(record.transaction_hash)
            try:
                ledger_record = await horizon.get_transaction(record.transaction_hash)
            except ExternalLedgerError as exc:
                logger.warning("Failed to verify transaction %s: %s", record.transaction_hash, exc.message)
                continue
            if not ledger_record or not ledger_record.get("successful"):
                continue
            memo = memo_as_hex(ledger_record)
            if memo is not None and memo.lower() == document_hash:
                return True

        return False

    # =========================================================================
    # Local lookups
    # =========================================================================

    async def get_transaction(self, transaction_hash: str, network: Optional[str] = None) -> LedgerTransaction:
        transaction_hash = ensure_hash(transaction_hash, "transactionHash")
        if network is not None:
            network = ensure_network(network)
        record = await self.ledger.find_by_hash(transaction_hash, network)
        if record is None:
            raise NotFoundError("Transaction", transaction_hash)
        return record

    async def get_transactions_by_document_hash(
        self,
        document_hash: str,
        network: Optional[str] = None,
    ) -> list[LedgerTransaction]:
        document_hash = ensure_hash(document_hash)
        if network is not None:
            network = ensure_network(network)
        return await self.ledger.find_by_document_hash(document_hash, network)


def _dump(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, default=str)
