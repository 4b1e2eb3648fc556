"""Dispatch queue handing queued build tasks to workers."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import redis
from redis.exceptions import RedisError
from rq import Queue
from rq.job import Job

from pages_core.builds.models import QueuedTaskMessage
from pages_core.errors import DispatchPublishError
from pages_core.storage.common import utc_now

logger = logging.getLogger(__name__)

TASK_MESSAGE_NAME = "sendTaskMessage"
DEFAULT_JOB_FUNCTION = "pages_worker.tasks.send_task_message"
DEFAULT_JOB_TIMEOUT_SECONDS = 900


class TaskDispatchQueue(Protocol):
    """Protocol implemented by dispatch queue publishers."""

    async def send_task_message(self, message: QueuedTaskMessage, priority: int) -> str:
        """Publish one task and return the broker-assigned job id."""


def build_job_payload(message: QueuedTaskMessage, priority: int) -> dict[str, Any]:
    """Argument handed to the worker function."""

    return {
        "name": TASK_MESSAGE_NAME,
        "data": message.to_payload(),
        "priority": priority,
        "timestamp": utc_now().isoformat(),
    }


class RedisTaskQueue:
    """rq-backed publisher.

    Each task becomes one rq job calling ``job_function`` with the task
    payload. The priority rides along in ``job.meta`` for the worker's
    scheduler.
    """

    def __init__(
        self,
        queue: Queue,
        *,
        job_function: str = DEFAULT_JOB_FUNCTION,
        job_timeout_seconds: int = DEFAULT_JOB_TIMEOUT_SECONDS,
    ) -> None:
        self._queue = queue
        self.job_function = job_function
        self.job_timeout_seconds = job_timeout_seconds

    @classmethod
    def from_url(
        cls,
        redis_url: str,
        *,
        name: str,
        job_function: str = DEFAULT_JOB_FUNCTION,
        job_timeout_seconds: int = DEFAULT_JOB_TIMEOUT_SECONDS,
    ) -> RedisTaskQueue:
        return cls(
            Queue(name, connection=redis.Redis.from_url(redis_url)),
            job_function=job_function,
            job_timeout_seconds=job_timeout_seconds,
        )

    @property
    def name(self) -> str:
        return self._queue.name

    async def send_task_message(self, message: QueuedTaskMessage, priority: int) -> str:
        try:
            # rq talks to Redis synchronously.
            job = await asyncio.to_thread(self._enqueue, message, priority)
        except RedisError as error:
            raise DispatchPublishError(
                f"Failed to publish build task {message.task.id}: {error}",
                task_id=message.task.id,
            ) from error
        logger.debug(
            "Published build task %s as job %s with priority %s",
            message.task.id,
            job.id,
            priority,
        )
        return job.id

    def _enqueue(self, message: QueuedTaskMessage, priority: int) -> Job:
        return self._queue.enqueue(
            self.job_function,
            build_job_payload(message, priority),
            job_timeout=self.job_timeout_seconds,
            description=f"{TASK_MESSAGE_NAME} build_task={message.task.id}",
            meta={
                "priority": priority,
                "task_id": message.task.id,
                "build_id": message.build.id,
                "site_id": message.site.id,
            },
        )

    async def close(self) -> None:
        await asyncio.to_thread(self._queue.connection.close)
