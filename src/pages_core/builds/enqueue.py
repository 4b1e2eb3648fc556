"""Publish build tasks to the dispatch queue."""

from __future__ import annotations

import logging
from dataclasses import replace

from pages_core.builds.models import (
    BuildTaskStatus,
    EnqueueResult,
    QueuedTaskMessage,
)
from pages_core.builds.queue import TaskDispatchQueue
from pages_core.builds.repository import BuildRepository
from pages_core.errors import (
    InvalidTaskStateError,
    StateInconsistencyError,
    TaskClaimConflictError,
    TaskNotFoundError,
)
from pages_core.settle import Settled, settle_all
from pages_core.storage.common import utc_now

logger = logging.getLogger(__name__)


class BuildTaskEnqueuer:
    """Moves created build tasks to queued and hands them to workers."""

    def __init__(self, *, repository: BuildRepository, queue: TaskDispatchQueue) -> None:
        self.repository = repository
        self.queue = queue

    async def priority_for(self, message: QueuedTaskMessage) -> int:
        """One more than the site's unfinished tasks created before this one."""

        ahead = await self.repository.count_tasks_ahead(
            site_id=message.site.id,
            task_id=message.task.id,
        )
        return ahead + 1

    async def enqueue(self, task_id: int) -> EnqueueResult:
        """Claim, publish and return the queued task.

        The claim is a status-guarded update, so two concurrent calls for the
        same task publish at most once. A failed publish hands the task back
        to ``created`` before the error propagates.
        """

        message = await self.repository.get_task_message(task_id)
        if message is None:
            raise TaskNotFoundError(f"Build task not found: {task_id}", task_id=task_id)
        if message.task.status != BuildTaskStatus.CREATED:
            raise InvalidTaskStateError(
                f"Build task {task_id} is {message.task.status.value}; only created tasks "
                "can be enqueued.",
                task_id=task_id,
                status=message.task.status.value,
            )

        priority = await self.priority_for(message)
        claimed_at = utc_now()
        if not await self.repository.claim_task_for_queue(task_id, now=claimed_at):
            raise TaskClaimConflictError(
                f"Build task {task_id} was claimed concurrently.",
                task_id=task_id,
            )

        queued = replace(
            message,
            task=replace(message.task, status=BuildTaskStatus.QUEUED, updated_at=claimed_at),
        )
        try:
            message_id = await self.queue.send_task_message(queued, priority)
        except Exception as error:
            logger.warning("Publish failed for build task %s: %s", task_id, error)
            await self._release_claim(task_id)
            raise

        logger.info(
            "Enqueued build task %s (build=%s site=%s) with priority %s",
            task_id,
            message.build.id,
            message.site.id,
            priority,
        )
        return EnqueueResult(task=queued.task, priority=priority, message_id=message_id)

    async def enqueue_build_tasks(self, build_id: int) -> list[Settled[int, EnqueueResult]]:
        """Enqueue every created task of a build; one outcome per task."""

        tasks = await self.repository.list_build_tasks(build_id, status=BuildTaskStatus.CREATED)
        return await settle_all((task.id, self.enqueue(task.id)) for task in tasks)

    async def _release_claim(self, task_id: int) -> None:
        try:
            released = await self.repository.release_task_claim(task_id)
        except Exception as error:
            logger.critical(
                "Build task %s is queued but was never published; release failed: %s",
                task_id,
                error,
            )
            raise StateInconsistencyError(
                f"Build task {task_id} left queued without a published message.",
                task_id=task_id,
            ) from error
        if not released:
            logger.critical(
                "Build task %s changed status while its publish was failing",
                task_id,
            )
            raise StateInconsistencyError(
                f"Build task {task_id} changed status during a failed publish.",
                task_id=task_id,
            )
