"""
Notary - Background Tasks

Work that outlives the request that started it (anchoring a workflow,
watching a transaction) runs as an asyncio task registered here. Callers get
a TaskHandle back; its status, result and error stay readable after the task
ends, so a failed background step is observable instead of lost.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Coroutine, Optional

from notary.core.errors import NotaryError, NotFoundError
from notary.models.models import new_id, utcnow

logger = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class TaskHandle:
    name: str
    id: str = field(default_factory=new_id)
    status: TaskStatus = TaskStatus.PENDING
    result: Any = None
    error: Optional[dict] = None
    created_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    @property
    def done(self) -> bool:
        return self.status in (TaskStatus.SUCCEEDED, TaskStatus.FAILED, TaskStatus.CANCELLED)


class TaskRegistry:
    """
    Usage:
        handle = registry.submit("anchor-workflow", service.anchor_workflow(...))
        ...
        registry.get(handle.id).status
    """

    def __init__(self, max_finished: int = 1000):
        self._handles: dict[str, TaskHandle] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._max_finished = max_finished

    def submit(self, name: str, coro: Coroutine[Any, Any, Any]) -> TaskHandle:
        handle = TaskHandle(name=name)
        self._handles[handle.id] = handle
        self._tasks[handle.id] = asyncio.create_task(self._run(handle, coro), name=f"{name}:{handle.id}")
        self._prune()
        logger.debug("Scheduled task %s (%s)", handle.id, name)
        return handle

    async def _run(self, handle: TaskHandle, coro: Coroutine[Any, Any, Any]) -> None:
        handle.status = TaskStatus.RUNNING
        try:
            handle.result = await coro
            handle.status = TaskStatus.SUCCEEDED
        except asyncio.CancelledError:
            handle.status = TaskStatus.CANCELLED
            raise
        except NotaryError as exc:
            handle.status = TaskStatus.FAILED
            handle.error = {"error": exc.error_code, "message": exc.message, "details": exc.details}
            logger.warning("Task %s (%s) failed: %s", handle.id, handle.name, exc.message)
        except Exception as exc:
            handle.status = TaskStatus.FAILED
            handle.error = {"error": "internal_error", "message": f"{type(exc).__name__}: {exc}", "details": {}}
            logger.exception("Task %s (%s) crashed", handle.id, handle.name)
        finally:
            handle.finished_at = utcnow()
            self._tasks.pop(handle.id, None)

    def get(self, task_id: str) -> TaskHandle:
        handle = self._handles.get(task_id)
        if handle is None:
            raise NotFoundError("Task", task_id)
        return handle

    async def wait(self, task_id: str) -> TaskHandle:
        """Wait for a task to end and return its handle (mainly for tests and shutdown)."""
        handle = self.get(task_id)
        task = self._tasks.get(task_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return handle

    @property
    def active(self) -> int:
        return len(self._tasks)

    def _prune(self) -> None:
        finished = [h for h in self._handles.values() if h.done]
        excess = len(finished) - self._max_finished
        if excess <= 0:
            return
        finished.sort(key=lambda h: h.finished_at)
        for handle in finished[:excess]:
            del self._handles[handle.id]

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Cancel outstanding tasks and wait for them to unwind."""
        tasks = list(self._tasks.values())
        if not tasks:
            return
        logger.info("Cancelling %d background task(s)...", len(tasks))
        for task in tasks:
            task.cancel()
        done, pending = await asyncio.wait(tasks, timeout=timeout)
        if pending:
            logger.error("%d background task(s) did not stop within %.1fs", len(pending), timeout)
