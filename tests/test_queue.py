from __future__ import annotations

from datetime import UTC, datetime

import allure
import fakeredis
import pytest
from rq import Queue
from rq.job import Job

from pages_core.builds.models import (
    BuildState,
    BuildTaskStatus,
    BuildTaskTypeView,
    BuildTaskView,
    BuildView,
    QueuedTaskMessage,
    SiteView,
)
from pages_core.builds.queue import TASK_MESSAGE_NAME, RedisTaskQueue
from pages_core.errors import DispatchPublishError

pytestmark = [
    allure.epic("Build Lifecycle"),
    allure.feature("Dispatch Queue"),
]

JOB_FUNCTION = "pages_worker.tasks.send_task_message"


@pytest.fixture()
def redis_server() -> fakeredis.FakeServer:
    return fakeredis.FakeServer()


@pytest.fixture()
def connection(redis_server: fakeredis.FakeServer) -> fakeredis.FakeRedis:
    return fakeredis.FakeRedis(server=redis_server)


def _message(task_id: int = 3) -> QueuedTaskMessage:
    stamp = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
    return QueuedTaskMessage(
        task=BuildTaskView(
            id=task_id,
            build_id=2,
            build_task_type_id=1,
            name="build",
            status=BuildTaskStatus.QUEUED,
            message=None,
            created_at=stamp,
            updated_at=stamp,
        ),
        build=BuildView(
            id=2,
            site_id=1,
            user_id=None,
            branch="main",
            commit_sha="abc123",
            state=BuildState.CREATED,
            error=None,
            started_at=None,
            completed_at=None,
            created_at=stamp,
            updated_at=stamp,
        ),
        site=SiteView(id=1, owner="agency", repository="site", default_branch="main"),
        task_type=BuildTaskTypeView(id=1, name="build", description=None, runner="cf_task"),
    )



@pytest.mark.asyncio
async def test_publish_enqueues_rq_job(connection: fakeredis.FakeRedis) -> None:
    queue = RedisTaskQueue(
        Queue("site-build-tasks", connection=connection),
        job_function=JOB_FUNCTION,
        job_timeout_seconds=600,
    )

    job_id = await queue.send_task_message(_message(), priority=2)

    rq_queue = Queue("site-build-tasks", connection=connection)
    assert rq_queue.job_ids == [job_id]
    job = Job.fetch(job_id, connection=connection)
    assert job.func_name == JOB_FUNCTION
    assert job.timeout == 600
    assert job.meta["priority"] == 2
    assert job.meta["task_id"] == 3
    (payload,) = job.args
    assert payload["name"] == TASK_MESSAGE_NAME
    assert payload["priority"] == 2
    assert payload["data"]["task"]["id"] == 3
    assert payload["data"]["task"]["status"] == "queued"
    assert payload["data"]["site"]["owner"] == "agency"


@pytest.mark.asyncio
async def test_each_publish_gets_its_own_job(connection: fakeredis.FakeRedis) -> None:
    queue = RedisTaskQueue(Queue("q", connection=connection))

    first = await queue.send_task_message(_message(3), priority=1)
    second = await queue.send_task_message(_message(4), priority=2)

    assert first != second
    assert Queue("q", connection=connection).job_ids == [first, second]
    assert Job.fetch(second, connection=connection).meta["task_id"] == 4


@pytest.mark.asyncio
async def test_broker_failure_is_wrapped(
    redis_server: fakeredis.FakeServer,
    connection: fakeredis.FakeRedis,
) -> None:
    queue = RedisTaskQueue(Queue("q", connection=connection))
    redis_server.connected = False

    with pytest.raises(DispatchPublishError) as error:
        await queue.send_task_message(_message(), priority=1)

    assert error.value.task_id == 3
    redis_server.connected = True
    assert Queue("q", connection=connection).job_ids == []


def test_from_url_targets_named_queue() -> None:
    queue = RedisTaskQueue.from_url("redis://localhost:6379/3", name="site-build-tasks")

    assert queue.name == "site-build-tasks"
    assert queue.job_function == JOB_FUNCTION
