"""
Background Task Router
Status of work scheduled by other endpoints (anchor-on-ledger, watch).
"""

from fastapi import APIRouter, Depends, Request

from notary.core.dependencies import get_task_registry
from notary.core.rate_limit import RATE_READ, limiter
from notary.models.schemas import TaskResponse
from notary.services.tasks import TaskRegistry

router = APIRouter(prefix="/tasks", tags=["Tasks"])


@router.get("/{task_id}", response_model=TaskResponse)
@limiter.limit(RATE_READ)
async def get_task(
    request: Request,
    task_id: str,
    tasks: TaskRegistry = Depends(get_task_registry),
):
    """
    Status is one of pending, running, succeeded, failed, cancelled.
    result is set on success, error ({error, message, details}) on failure.
    """
    handle = tasks.get(task_id)
    return TaskResponse(
        id=handle.id,
        name=handle.name,
        status=handle.status.value,
        result=handle.result,
        error=handle.error,
        created_at=handle.created_at,
        finished_at=handle.finished_at,
    )
