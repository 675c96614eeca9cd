"""
Verification Workflow Router

Endpoints:
- POST   /verification-workflows                           initiate
- GET    /verification-workflows?state=                    list
- GET    /verification-workflows/document/{documentId}     latest for a document
- GET    /verification-workflows/{id}                      one workflow
- PATCH  /verification-workflows/{id}/transition          move along an edge
- PATCH  /verification-workflows/{id}/anchor              record a ledger reference
- PATCH  /verification-workflows/{id}/risk                route on a risk score
- POST   /verification-workflows/{id}/anchor-on-ledger    anchor in the background
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status

from notary.core.dependencies import get_task_registry, get_workflow_anchoring, get_workflow_engine
from notary.core.errors import NotFoundError
from notary.core.rate_limit import RATE_ANCHOR, RATE_READ, RATE_WRITE, limiter
from notary.models.models import WorkflowState
from notary.models.schemas import (
    AnchorWorkflowRequest,
    InitiateWorkflowRequest,
    RecordAnchorRequest,
    RiskScoreRequest,
    TaskAccepted,
    TransitionWorkflowRequest,
    WorkflowResponse,
)
from notary.services.tasks import TaskRegistry
from notary.services.workflow_anchoring import WorkflowAnchoringService
from notary.services.workflow_engine import WorkflowEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/verification-workflows", tags=["Verification Workflows"])


@router.post("", response_model=WorkflowResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(RATE_WRITE)
async def initiate_workflow(
    request: Request,
    body: InitiateWorkflowRequest,
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    """Start a workflow for a document in SUBMITTED."""
    return await engine.initiate(body.document_id)


@router.get("", response_model=list[WorkflowResponse])
@limiter.limit(RATE_READ)
async def list_workflows(
    request: Request,
    state: Optional[WorkflowState] = Query(None, description="Only workflows in this state"),
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    """All workflows, newest submission first."""
    return await engine.find_all(state)


@router.get("/document/{document_id}", response_model=WorkflowResponse)
@limiter.limit(RATE_READ)
async def get_workflow_for_document(
    request: Request,
    document_id: str,
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    """Most recently submitted workflow for a document."""
    workflow = await engine.find_by_document(document_id)
    if workflow is None:
        raise NotFoundError("Verification workflow for document", document_id)
    return workflow


@router.get("/{workflow_id}", response_model=WorkflowResponse)
@limiter.limit(RATE_READ)
async def get_workflow(
    request: Request,
    workflow_id: str,
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    return await engine.get(workflow_id)


@router.patch("/{workflow_id}/transition", response_model=WorkflowResponse)
@limiter.limit(RATE_WRITE)
async def transition_workflow(
    request: Request,
    workflow_id: str,
    body: TransitionWorkflowRequest,
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    """
    Move a workflow to a new state.
    400 if the edge is not allowed from the current state.
    """
    return await engine.transition(workflow_id, body.new_state, body.note)


@router.patch("/{workflow_id}/anchor", response_model=WorkflowResponse)
@limiter.limit(RATE_WRITE)
async def record_anchor(
    request: Request,
    workflow_id: str,
    body: RecordAnchorRequest,
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    """Record a ledger transaction and mark the workflow ANCHORED."""
    return await engine.record_anchor(workflow_id, body.stellar_transaction_id)


@router.patch("/{workflow_id}/risk", response_model=WorkflowResponse)
@limiter.limit(RATE_WRITE)
async def apply_risk_score(
    request: Request,
    workflow_id: str,
    body: RiskScoreRequest,
    engine: WorkflowEngine = Depends(get_workflow_engine),
):
    """REJECTED at or above the configured threshold, otherwise AWAITING_BLOCKCHAIN."""
    return await engine.apply_risk_score(workflow_id, body.risk_score)


@router.post(
    "/{workflow_id}/anchor-on-ledger",
    response_model=TaskAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
@limiter.limit(RATE_ANCHOR)
async def anchor_workflow_on_ledger(
    request: Request,
    workflow_id: str,
    body: AnchorWorkflowRequest,
    service: WorkflowAnchoringService = Depends(get_workflow_anchoring),
    tasks: TaskRegistry = Depends(get_task_registry),
):
    """
    Anchor the document hash and record it on the workflow, in the background.

    The workflow state is checked before anything is scheduled. Follow the
    outcome at GET /tasks/{taskId}; the result is the updated workflow.
    """
    await service.check_ready(workflow_id)

    async def run() -> dict:
        workflow = await service.anchor_workflow(
            workflow_id,
            body.source_public_key,
            body.source_secret_key,
            body.document_hash,
            body.network,
        )
        return WorkflowResponse.model_validate(workflow).model_dump(mode="json", by_alias=True)

    handle = tasks.submit("anchor-workflow", run())
    logger.info("Workflow %s anchoring scheduled as task %s", workflow_id, handle.id)
    return TaskAccepted(task_id=handle.id, status=handle.status.value)
