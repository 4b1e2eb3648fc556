from __future__ import annotations

from datetime import timedelta

import allure
import pytest
from fakes import FakeBuildBackend
from sqlalchemy import update as sa_update
from sqlmodel import col
from sqlmodel.ext.asyncio.session import AsyncSession

from pages_core.builds.models import BUILD_TIMEOUT_MESSAGE, BuildCreate, BuildState
from pages_core.builds.timeouts import BuildTimeoutSweeper
from pages_core.config import BuildSettings
from pages_core.storage.common import to_db_datetime, utc_now
from pages_core.storage.sqlmodel_models import Build

pytestmark = [
    allure.epic("Build Lifecycle"),
    allure.feature("Build Timeout Sweep"),
]


async def _build_in_state(builds, memberships, state: BuildState) -> int:
    site = await memberships.create_site(owner="agency", repository=f"site-{state.value}")
    build = await builds.create_build(BuildCreate(site_id=site.id, branch="main"))
    path = {
        BuildState.CREATED: [],
        BuildState.QUEUED: [BuildState.QUEUED],
        BuildState.TASKED: [BuildState.QUEUED, BuildState.TASKED],
        BuildState.PROCESSING: [BuildState.QUEUED, BuildState.PROCESSING],
    }[state]
    for target in path:
        await builds.transition_build(build.id, target)
    return build.id


async def _backdate(engine, build_id: int, *, started_at=None, updated_at=None) -> None:
    values = {}
    if started_at is not None:
        values["started_at"] = to_db_datetime(started_at)
    if updated_at is not None:
        values["updated_at"] = to_db_datetime(updated_at)
    async with AsyncSession(engine) as session:
        await session.exec(sa_update(Build).where(col(Build.id) == build_id).values(**values))
        await session.commit()


def _sweeper(builds, backend: FakeBuildBackend) -> BuildTimeoutSweeper:
    return BuildTimeoutSweeper(
        repository=builds,
        backend=backend,
        settings=BuildSettings(timeout_minutes=45),
    )


@pytest.mark.asyncio
async def test_processing_build_past_timeout_is_failed_and_canceled(
    engine,
    builds,
    memberships,
    build_backend,
) -> None:
    now = utc_now()
    build_id = await _build_in_state(builds, memberships, BuildState.PROCESSING)
    await _backdate(engine, build_id, started_at=now - timedelta(minutes=60))

    result = await _sweeper(builds, build_backend).sweep(now)

    assert result.build_ids == [build_id]
    assert build_backend.canceled == [build_id]
    build = await builds.get_build(build_id)
    assert build is not None
    assert build.state == BuildState.ERROR
    assert build.error == BUILD_TIMEOUT_MESSAGE
    assert build.completed_at == now


@pytest.mark.asyncio
async def test_processing_build_within_timeout_is_untouched(
    engine,
    builds,
    memberships,
    build_backend,
) -> None:
    now = utc_now()
    build_id = await _build_in_state(builds, memberships, BuildState.PROCESSING)
    await _backdate(engine, build_id, started_at=now - timedelta(minutes=30))

    result = await _sweeper(builds, build_backend).sweep(now)

    assert result.build_ids == []
    assert build_backend.canceled == []
    build = await builds.get_build(build_id)
    assert build is not None
    assert build.state == BuildState.PROCESSING
    assert build.completed_at is None


@pytest.mark.asyncio
async def test_tasked_build_not_acknowledged_in_time_is_failed(
    engine,
    builds,
    memberships,
    build_backend,
) -> None:
    now = utc_now()
    build_id = await _build_in_state(builds, memberships, BuildState.TASKED)
    await _backdate(engine, build_id, updated_at=now - timedelta(minutes=10))

    result = await _sweeper(builds, build_backend).sweep(now)

    assert result.build_ids == [build_id]
    build = await builds.get_build(build_id)
    assert build is not None
    assert build.state == BuildState.ERROR
    assert build.error == "The build timed out"
    assert build.completed_at is not None


@pytest.mark.asyncio
async def test_recently_tasked_build_is_untouched(
    engine,
    builds,
    memberships,
    build_backend,
) -> None:
    now = utc_now()
    build_id = await _build_in_state(builds, memberships, BuildState.TASKED)
    await _backdate(engine, build_id, updated_at=now - timedelta(minutes=2))

    result = await _sweeper(builds, build_backend).sweep(now)

    assert result.build_ids == []
    build = await builds.get_build(build_id)
    assert build is not None
    assert build.state == BuildState.TASKED


@pytest.mark.asyncio
async def test_queued_and_created_builds_are_never_swept(builds, memberships, build_backend) -> None:
    created = await _build_in_state(builds, memberships, BuildState.CREATED)
    queued = await _build_in_state(builds, memberships, BuildState.QUEUED)

    result = await _sweeper(builds, build_backend).sweep(utc_now() + timedelta(days=1))

    assert result.build_ids == []
    assert (await builds.get_build(created)).state == BuildState.CREATED
    assert (await builds.get_build(queued)).state == BuildState.QUEUED


@pytest.mark.asyncio
async def test_cancel_failure_does_not_revert_state(
    engine,
    builds,
    memberships,
) -> None:
    now = utc_now()
    failing = await _build_in_state(builds, memberships, BuildState.PROCESSING)
    healthy = await _build_in_state(builds, memberships, BuildState.TASKED)
    await _backdate(engine, failing, started_at=now - timedelta(hours=2))
    await _backdate(engine, healthy, updated_at=now - timedelta(hours=2))
    backend = FakeBuildBackend(failing={failing})

    result = await _sweeper(builds, backend).sweep(now)

    assert result.build_ids == [failing, healthy]
    assert [outcome.key for outcome in result.failed_cancellations] == [failing]
    assert "Task does not exist" in (result.failed_cancellations[0].reason or "")
    assert backend.canceled == [healthy]
    assert (await builds.get_build(failing)).state == BuildState.ERROR
    assert (await builds.get_build(healthy)).state == BuildState.ERROR


@pytest.mark.asyncio
async def test_second_sweep_finds_nothing(engine, builds, memberships, build_backend) -> None:
    now = utc_now()
    build_id = await _build_in_state(builds, memberships, BuildState.PROCESSING)
    await _backdate(engine, build_id, started_at=now - timedelta(hours=1))
    sweeper = _sweeper(builds, build_backend)

    await sweeper.sweep(now)
    second = await sweeper.sweep(now + timedelta(minutes=1))

    assert second.build_ids == []
    assert build_backend.canceled == [build_id]


@pytest.mark.asyncio
async def test_sweep_on_empty_store(builds, build_backend) -> None:
    result = await _sweeper(builds, build_backend).sweep()

    assert result.build_ids == []
    assert result.cancellations == []
