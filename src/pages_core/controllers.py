"""Controllers for pages-core CLI commands."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass
from datetime import datetime
from typing import Any, TypeVar

from pages_core.config import Settings
from pages_core.services import PagesServices, open_services
from pages_core.storage.common import build_engine, create_schema

T = TypeVar("T")


@dataclass(slots=True)
class InitDbCommand:
    """CLI input for schema creation."""

    database_url: str | None


@dataclass(slots=True)
class EnqueueTaskCommand:
    """CLI input for enqueuing one build task."""

    database_url: str | None
    task_id: int


@dataclass(slots=True)
class EnqueueBuildCommand:
    """CLI input for enqueuing every created task of a build."""

    database_url: str | None
    build_id: int


@dataclass(slots=True)
class TimeoutBuildsCommand:
    """CLI input for one build timeout sweep."""

    database_url: str | None
    now: datetime | None


@dataclass(slots=True)
class AuditCommand:
    """CLI input for membership audits."""

    database_url: str | None


class PagesCliController:
    """Runs one async operation per CLI command and renders its report."""

    def init_db(self, command: InitDbCommand) -> list[str]:
        settings = _settings(command.database_url)
        _run(_init_db(settings))
        return [f"Schema ready: {settings.database_url}"]

    def enqueue_task(self, command: EnqueueTaskCommand) -> list[str]:
        async def _report(services: PagesServices) -> list[str]:
            result = await services.enqueuer.enqueue(command.task_id)
            return [
                "Task enqueued: "
                f"task_id={result.task.id} status={result.task.status.value} "
                f"priority={result.priority} job_id={result.message_id}",
            ]

        return _run_with_services(command.database_url, _report)

    def enqueue_build(self, command: EnqueueBuildCommand) -> list[str]:
        async def _report(services: PagesServices) -> list[str]:
            outcomes = await services.enqueuer.enqueue_build_tasks(command.build_id)
            lines = [f"Build {command.build_id}: {len(outcomes)} task(s) submitted"]
            for outcome in outcomes:
                if outcome.ok and outcome.value is not None:
                    lines.append(
                        f"- task_id={outcome.key} priority={outcome.value.priority} "
                        f"job_id={outcome.value.message_id}",
                    )
                else:
                    lines.append(f"- task_id={outcome.key} failed: {outcome.reason}")
            return lines

        return _run_with_services(command.database_url, _report)

    def timeout_builds(self, command: TimeoutBuildsCommand) -> list[str]:
        async def _report(services: PagesServices) -> list[str]:
            result = await services.sweeper.sweep(command.now)
            lines = [
                f"Sweep at {result.swept_at.isoformat()}: "
                f"{len(result.build_ids)} build(s) timed out",
            ]
            for outcome in result.cancellations:
                status = "ok" if outcome.ok else f"failed ({outcome.reason})"
                lines.append(f"- build_id={outcome.key} cancel={status}")
            return lines

        return _run_with_services(command.database_url, _report)

    def audit_users(self, command: AuditCommand) -> list[str]:
        async def _report(services: PagesServices) -> list[str]:
            outcomes = await services.auditor.audit_all_users()
            lines = [f"Audited users: {len(outcomes)}"]
            for outcome in outcomes:
                if outcome.ok and outcome.value is not None:
                    removed = ",".join(str(site_id) for site_id in outcome.value.removed_site_ids)
                    lines.append(
                        f"- user_id={outcome.key} username={outcome.value.username} "
                        f"removed_sites=[{removed}]",
                    )
                else:
                    lines.append(f"- user_id={outcome.key} failed: {outcome.reason}")
            return lines

        return _run_with_services(command.database_url, _report)

    def audit_sites(self, command: AuditCommand) -> list[str]:
        async def _report(services: PagesServices) -> list[str]:
            outcomes = await services.auditor.audit_all_sites()
            lines = [f"Audited sites: {len(outcomes)}"]
            for outcome in outcomes:
                if not outcome.ok or outcome.value is None:
                    lines.append(f"- site_id={outcome.key} failed: {outcome.reason}")
                elif outcome.value.skipped:
                    lines.append(f"- site_id={outcome.key} skipped: no usable member credential")
                else:
                    removed = ",".join(str(user_id) for user_id in outcome.value.removed_user_ids)
                    lines.append(f"- site_id={outcome.key} removed_users=[{removed}]")
            return lines

        return _run_with_services(command.database_url, _report)


def _settings(database_url: str | None) -> Settings:
    settings = Settings.from_env(database_url=database_url)
    settings.validate()
    return settings


def _run_with_services(
    database_url: str | None,
    operation: Callable[[PagesServices], Awaitable[list[str]]],
) -> list[str]:
    settings = _settings(database_url)

    async def _main() -> list[str]:
        async with open_services(settings) as services:
            return await operation(services)

    return _run(_main())


def _run(coroutine: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coroutine)


async def _init_db(settings: Settings) -> None:
    engine = build_engine(settings.database_url)
    try:
        await create_schema(engine)
    finally:
        await engine.dispose()
