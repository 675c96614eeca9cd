"""
Notary - Verification Workflow Engine

State machine for document verification:

    SUBMITTED -> HASHING | FAILED | REJECTED
    HASHING -> ANALYZING | FAILED
    ANALYZING -> AWAITING_BLOCKCHAIN | FAILED | REJECTED
    AWAITING_BLOCKCHAIN -> ANCHORED | FAILED
    ANCHORED, FAILED, REJECTED: terminal

Each change is all-or-nothing: state, history entry and completion time are
written in one transaction guarded by the row's version (compare-and-swap).
Changes to the same workflow inside this process are also queued behind a
per-workflow lock, so they apply in call order instead of failing.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from notary.core.database import get_db_session
from notary.core.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from notary.models.models import VerificationWorkflow, WorkflowState, utcnow

logger = logging.getLogger(__name__)


TERMINAL_STATES: frozenset[WorkflowState] = frozenset({
    WorkflowState.ANCHORED,
    WorkflowState.FAILED,
    WorkflowState.REJECTED,
})

VALID_TRANSITIONS: dict[WorkflowState, tuple[WorkflowState, ...]] = {
    WorkflowState.SUBMITTED: (WorkflowState.HASHING, WorkflowState.FAILED, WorkflowState.REJECTED),
    WorkflowState.HASHING: (WorkflowState.ANALYZING, WorkflowState.FAILED),
    WorkflowState.ANALYZING: (WorkflowState.AWAITING_BLOCKCHAIN, WorkflowState.FAILED, WorkflowState.REJECTED),
    WorkflowState.AWAITING_BLOCKCHAIN: (WorkflowState.ANCHORED, WorkflowState.FAILED),
    WorkflowState.ANCHORED: (),
    WorkflowState.FAILED: (),
    WorkflowState.REJECTED: (),
}


def allowed_transitions(state: Union[WorkflowState, str]) -> tuple[WorkflowState, ...]:
    return VALID_TRANSITIONS[WorkflowState(state)]


def assert_valid_transition(current: Union[WorkflowState, str], requested: WorkflowState) -> None:
    allowed = allowed_transitions(current)
    if requested not in allowed:
        raise InvalidTransitionError(
            WorkflowState(current).value,
            requested.value,
            [state.value for state in allowed],
        )


class KeyedLock:
    """asyncio.Lock per key, dropped once nobody holds or awaits it."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]


class WorkflowEngine:
    """
    Owns VerificationWorkflow rows. Never talks to the ledger.

    Usage:
        engine = WorkflowEngine(get_session_factory())
        workflow = await engine.initiate("doc-1")
        await engine.transition(workflow.id, WorkflowState.HASHING)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        risk_rejection_threshold: float = 70.0,
    ):
        self._session_factory = session_factory
        self.risk_rejection_threshold = risk_rejection_threshold
        self._locks = KeyedLock()

    # =========================================================================
    # Commands
    # =========================================================================

    async def initiate(self, document_id: str) -> VerificationWorkflow:
        """Create a workflow in SUBMITTED with a one-entry history."""
        document_id = (document_id or "").strip()
        if not document_id:
            raise ValidationError("documentId must not be empty")

        now = utcnow()
        workflow = VerificationWorkflow(
            document_id=document_id,
            current_state=WorkflowState.SUBMITTED.value,
            submitted_at=now,
            history=[_entry(WorkflowState.SUBMITTED, now, "Workflow initiated")],
        )
        async with get_db_session(self._session_factory) as db:
            db.add(workflow)
            await db.flush()

        logger.info("Workflow %s initiated for document %s", workflow.id, document_id)
        return workflow

    async def transition(
        self,
        workflow_id: str,
        new_state: Union[WorkflowState, str],
        note: Optional[str] = None,
    ) -> VerificationWorkflow:
        """Move a workflow along an allowed edge."""
        try:
            new_state = WorkflowState(new_state)
        except ValueError:
            raise ValidationError(f"Unknown workflow state: {new_state}") from None

        fields = {}
        if new_state == WorkflowState.FAILED:
            fields["error_message"] = note or "Workflow failed"
        return await self._apply(workflow_id, new_state, note, **fields)

    async def record_anchor(self, workflow_id: str, transaction_id: str) -> VerificationWorkflow:
        """Store the ledger reference and mark the workflow ANCHORED."""
        transaction_id = (transaction_id or "").strip()
        if not transaction_id:
            raise ValidationError("stellarTransactionId must not be empty")
        return await self._apply(
            workflow_id,
            WorkflowState.ANCHORED,
            f"Anchored on Stellar, tx: {transaction_id}",
            stellar_transaction_id=transaction_id,
        )

    async def apply_risk_score(self, workflow_id: str, risk_score: float) -> VerificationWorkflow:
        """
        Route an ANALYZING workflow on an externally computed risk score:
        at or above the threshold it is REJECTED, below it waits for anchoring.
        """
        if not 0 <= risk_score <= 100:
            raise ValidationError("riskScore must be between 0 and 100")
        if risk_score >= self.risk_rejection_threshold:
            target = WorkflowState.REJECTED
            note = f"Rejected: risk score {risk_score:g} >= threshold {self.risk_rejection_threshold:g}"
        else:
            target = WorkflowState.AWAITING_BLOCKCHAIN
            note = f"Risk score {risk_score:g} below threshold {self.risk_rejection_threshold:g}"
        return await self._apply(workflow_id, target, note)

    async def _apply(
        self,
        workflow_id: str,
        new_state: WorkflowState,
        note: Optional[str],
        **fields,
    ) -> VerificationWorkflow:
        async with self._locks.hold(workflow_id):
            try:
                async with get_db_session(self._session_factory) as db:
                    workflow = await db.get(VerificationWorkflow, workflow_id)
                    if workflow is None:
                        raise NotFoundError("Verification workflow", workflow_id)

                    previous = workflow.current_state
                    assert_valid_transition(previous, new_state)

                    now = _not_before(utcnow(), workflow.history)
                    workflow.current_state = new_state.value
                    workflow.history = [*workflow.history, _entry(new_state, now, note)]
                    for name, value in fields.items():
                        setattr(workflow, name, value)
                    if new_state in TERMINAL_STATES:
                        workflow.completed_at = now
                    await db.flush()
            except StaleDataError as exc:
                logger.warning("Concurrent update lost on workflow %s", workflow_id)
                raise ConflictError(
                    f"Verification workflow '{workflow_id}' was modified concurrently; reload and retry"
                ) from exc

        logger.info("Workflow %s: %s -> %s", workflow_id, previous, new_state.value)
        return workflow

    # =========================================================================
    # Queries
    # =========================================================================

    async def get(self, workflow_id: str) -> VerificationWorkflow:
        async with get_db_session(self._session_factory) as db:
            workflow = await db.get(VerificationWorkflow, workflow_id)
        if workflow is None:
            raise NotFoundError("Verification workflow", workflow_id)
        return workflow

    async def find_by_document(self, document_id: str) -> Optional[VerificationWorkflow]:
        """Most recently submitted workflow for a document."""
        stmt = (
            select(VerificationWorkflow)
            .where(VerificationWorkflow.document_id == document_id)
            .order_by(VerificationWorkflow.submitted_at.desc())
            .limit(1)
        )
        async with get_db_session(self._session_factory) as db:
            return (await db.execute(stmt)).scalar_one_or_none()

    async def find_all(self, state: Optional[Union[WorkflowState, str]] = None) -> list[VerificationWorkflow]:
        """All workflows, newest first, optionally in one state."""
        stmt = select(VerificationWorkflow)
        if state is not None:
            stmt = stmt.where(VerificationWorkflow.current_state == WorkflowState(state).value)
        stmt = stmt.order_by(VerificationWorkflow.submitted_at.desc())
        async with get_db_session(self._session_factory) as db:
            return list((await db.execute(stmt)).scalars().all())


# =============================================================================
# History helpers
# =============================================================================

def _entry(state: WorkflowState, at: datetime, note: Optional[str]) -> dict:
    entry = {"state": state.value, "timestamp": at.replace(tzinfo=timezone.utc).isoformat()}
    if note:
        entry["note"] = note
    return entry


def _not_before(now: datetime, history: list[dict]) -> datetime:
    """Clamp to the last history timestamp so history never runs backwards."""
    if not history:
        return now
    last = datetime.fromisoformat(history[-1]["timestamp"]).replace(tzinfo=None)
    return max(now, last)
