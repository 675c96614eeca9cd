"""
FastAPI dependency getters.

Components are built once in the application lifespan and stored on
app.state; routes resolve them here instead of importing singletons.
"""

from fastapi import Request

from notary.services.anchoring import AnchoringGateway
from notary.services.confirmation import ConfirmationPoller
from notary.services.tasks import TaskRegistry
from notary.services.workflow_anchoring import WorkflowAnchoringService
from notary.services.workflow_engine import WorkflowEngine


def get_workflow_engine(request: Request) -> WorkflowEngine:
    return request.app.state.workflow_engine


def get_gateway(request: Request) -> AnchoringGateway:
    return request.app.state.gateway


def get_poller(request: Request) -> ConfirmationPoller:
    return request.app.state.poller


def get_task_registry(request: Request) -> TaskRegistry:
    return request.app.state.tasks


def get_workflow_anchoring(request: Request) -> WorkflowAnchoringService:
    return request.app.state.workflow_anchoring
