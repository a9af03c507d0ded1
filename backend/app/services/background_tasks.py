"""In-process task queue with task-type dispatch for post-commit work."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from app.core.logging import get_logger
from app.core.time import utcnow

logger = get_logger(__name__)


@dataclass(frozen=True)
class QueuedTask:
    """Typed envelope for one unit of background work."""

    task_type: str
    payload: dict[str, Any]
    created_at: datetime = field(default_factory=utcnow)
    attempts: int = 0


TaskHandler = Callable[[QueuedTask], Awaitable[object]]


class BackgroundTaskRunner:
    """Dispatch queued tasks to the handler registered for their type.

    Each accepted task runs on the current event loop. Handler failures are
    logged and never reach the code that enqueued the task. After
    ``shutdown`` starts, new tasks are refused.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, TaskHandler] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    @property
    def closed(self) -> bool:
        return self._closed

    def register(self, task_type: str, handler: TaskHandler) -> None:
        self._handlers[task_type] = handler

    def enqueue(self, task: QueuedTask) -> bool:
        """Start dispatching ``task``; return False when it cannot be accepted."""
        if self._closed:
            logger.warning("queue.task.rejected", extra={"task_type": task.task_type})
            return False
        handler = self._handlers.get(task.task_type)
        if handler is None:
            logger.warning("queue.worker.task_unhandled", extra={"task_type": task.task_type})
            return False
        running = asyncio.get_running_loop().create_task(
            self._dispatch(handler, task),
            name=task.task_type,
        )
        self._tasks.add(running)
        running.add_done_callback(self._tasks.discard)
        return True

    async def _dispatch(self, handler: TaskHandler, task: QueuedTask) -> None:
        try:
            await handler(task)
        except asyncio.CancelledError:
            logger.warning("queue.worker.cancelled", extra={"task_type": task.task_type})
            raise
        except Exception as exc:
            logger.exception(
                "queue.worker.failed",
                extra={
                    "task_type": task.task_type,
                    "attempt": task.attempts,
                    "error": str(exc),
                },
            )
            return
        logger.info(
            "queue.worker.success",
            extra={"task_type": task.task_type, "attempt": task.attempts},
        )

    async def drain(self) -> None:
        """Wait until every task, including ones enqueued while waiting, finishes."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, *, timeout: float) -> None:
        """Refuse new work, wait up to ``timeout`` seconds, then cancel leftovers."""
        self._closed = True
        if not self._tasks:
            return
        _, still_running = await asyncio.wait(list(self._tasks), timeout=timeout)
        if not still_running:
            logger.info("queue.worker.drained")
            return
        for running in still_running:
            running.cancel()
        await asyncio.gather(*still_running, return_exceptions=True)
        logger.warning(
            "queue.worker.cancelled_on_shutdown",
            extra={"count": len(still_running)},
        )
