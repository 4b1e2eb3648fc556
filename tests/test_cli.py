from __future__ import annotations

import asyncio

import allure
import pytest
from click.testing import CliRunner
from fakes import FakeTaskQueue

from pages_core import __version__
from pages_core.audit.repository import MembershipRepository
from pages_core.builds.models import BuildCreate
from pages_core.builds.queue import RedisTaskQueue
from pages_core.builds.repository import BuildRepository
from pages_core.main import pages_core
from pages_core.storage.common import build_engine, create_schema

pytestmark = [
    allure.epic("Operations"),
    allure.feature("Command Line"),
]


class _ClosableQueue(FakeTaskQueue):
    async def close(self) -> None:
        return None


@pytest.fixture()
def cli_database_url(tmp_path, monkeypatch) -> str:
    url = f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setenv("PAGES_DATABASE_URL", url)
    return url


def _seed_task(database_url: str) -> int:
    async def _seed() -> int:
        engine = build_engine(database_url)
        try:
            await create_schema(engine)
            site = await MembershipRepository(engine).create_site(owner="agency", repository="site")
            builds = BuildRepository(engine)
            task_type = await builds.add_task_type(name="build")
            build = await builds.create_build(BuildCreate(site_id=site.id, branch="main"))
            (task,) = await builds.create_build_tasks(build.id, type_ids=(task_type.id,))
            return task.id
        finally:
            await engine.dispose()

    return asyncio.run(_seed())


def test_version_option() -> None:
    result = CliRunner().invoke(pages_core, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_db_init_creates_schema(cli_database_url: str) -> None:
    result = CliRunner().invoke(pages_core, ["db", "init"])

    assert result.exit_code == 0, result.output
    assert f"Schema ready: {cli_database_url}" in result.output


def test_builds_timeout_on_empty_store(cli_database_url: str) -> None:
    runner = CliRunner()
    runner.invoke(pages_core, ["db", "init"])

    result = runner.invoke(
        pages_core,
        ["builds", "timeout", "--now", "2024-05-01T12:00:00"],
    )

    assert result.exit_code == 0, result.output
    assert "Sweep at 2024-05-01T12:00:00+00:00: 0 build(s) timed out" in result.output


def test_audit_without_auditor_user_fails_cleanly(cli_database_url: str) -> None:
    runner = CliRunner()
    runner.invoke(pages_core, ["db", "init"])

    result = runner.invoke(pages_core, ["audit", "users"])

    assert result.exit_code == 1
    assert "does not exist" in result.output


def test_enqueue_missing_task_fails_cleanly(cli_database_url: str) -> None:
    runner = CliRunner()
    runner.invoke(pages_core, ["db", "init"])

    result = runner.invoke(pages_core, ["tasks", "enqueue", "404"])

    assert result.exit_code == 1
    assert "Build task not found: 404" in result.output


def test_enqueue_task_reports_priority(cli_database_url: str, monkeypatch) -> None:
    task_id = _seed_task(cli_database_url)
    queue = _ClosableQueue()
    monkeypatch.setattr(RedisTaskQueue, "from_url", classmethod(lambda cls, url, **_: queue))

    result = CliRunner().invoke(pages_core, ["tasks", "enqueue", str(task_id)])

    assert result.exit_code == 0, result.output
    assert f"Task enqueued: task_id={task_id} status=queued priority=1 job_id=1" in result.output
    assert len(queue.published) == 1


def test_invalid_configuration_is_reported(cli_database_url: str, monkeypatch) -> None:  # noqa: ARG001
    monkeypatch.setenv("PAGES_BUILD_TIMEOUT_MINUTES", "0")

    result = CliRunner().invoke(pages_core, ["builds", "timeout"])

    assert result.exit_code == 1
    assert "must be > 0" in result.output
