"""
Notary - Workflow Anchoring

Joins the two halves: anchors a workflow's document hash on the ledger, then
records the transaction on the workflow. The engine and the gateway stay
unaware of each other.
"""

import logging
from typing import Optional

from notary.core.errors import AnchorFailedError, InvalidTransitionError
from notary.core.validation import ensure_hash, ensure_public_key
from notary.models.models import VerificationWorkflow, WorkflowState
from notary.services.anchoring import AnchoringGateway
from notary.services.workflow_engine import WorkflowEngine, allowed_transitions

logger = logging.getLogger(__name__)


class WorkflowAnchoringService:
    def __init__(self, engine: WorkflowEngine, gateway: AnchoringGateway):
        self.engine = engine
        self.gateway = gateway

    async def check_ready(self, workflow_id: str) -> VerificationWorkflow:
        """The workflow must be waiting for the ledger; checked before any ledger call."""
        workflow = await self.engine.get(workflow_id)
        if workflow.current_state != WorkflowState.AWAITING_BLOCKCHAIN.value:
            raise InvalidTransitionError(
                workflow.current_state,
                WorkflowState.ANCHORED.value,
                [state.value for state in allowed_transitions(workflow.current_state)],
            )
        return workflow

    async def anchor_workflow(
        self,
        workflow_id: str,
        source_public_key: str,
        source_secret_key: str,
        document_hash: str,
        network: Optional[str] = None,
    ) -> VerificationWorkflow:
        """
        Anchor and record. A rejected submission fails the workflow with the
        ledger's error message, then re-raises.
        """
        ensure_public_key(source_public_key, "sourcePublicKey")
        document_hash = ensure_hash(document_hash)
        network = self.gateway.resolve_network(network)
        await self.check_ready(workflow_id)

        try:
            record = await self.gateway.anchor_document_hash(
                source_public_key, source_secret_key, document_hash, network,
            )
        except AnchorFailedError as exc:
            logger.warning("Anchoring failed for workflow %s: %s", workflow_id, exc.message)
            await self.engine.transition(workflow_id, WorkflowState.FAILED, exc.message)
            raise

        return await self.engine.record_anchor(workflow_id, record.transaction_hash)
