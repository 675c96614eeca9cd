# Business logic services - workflow engine, ledger gateway, polling, tasks

from notary.services.anchoring import AnchoringGateway, CreatedAccount, FeeEstimate
from notary.services.confirmation import ConfirmationPoller
from notary.services.horizon import HorizonClient, build_horizon_clients
from notary.services.tasks import TaskHandle, TaskRegistry, TaskStatus
from notary.services.transaction_ledger import TransactionLedger
from notary.services.workflow_anchoring import WorkflowAnchoringService
from notary.services.workflow_engine import TERMINAL_STATES, VALID_TRANSITIONS, WorkflowEngine

__all__ = [
    # Ledger
    "AnchoringGateway",
    "CreatedAccount",
    "FeeEstimate",
    "ConfirmationPoller",
    "HorizonClient",
    "build_horizon_clients",
    "TransactionLedger",
    # Workflows
    "WorkflowEngine",
    "WorkflowAnchoringService",
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    # Background tasks
    "TaskRegistry",
    "TaskHandle",
    "TaskStatus",
]
