"""Wiring of repositories, external clients and use-case services."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine

from pages_core.audit.auditor import SiteUserAuditor
from pages_core.audit.repository import MembershipRepository
from pages_core.builds.enqueue import BuildTaskEnqueuer
from pages_core.builds.queue import RedisTaskQueue
from pages_core.builds.repository import BuildRepository
from pages_core.builds.timeouts import BuildTimeoutSweeper
from pages_core.config import Settings
from pages_core.http.cf_api import CloudFoundryClient
from pages_core.http.github import GitHubClient
from pages_core.storage.common import build_engine


@dataclass(slots=True)
class PagesServices:
    """Everything a CLI command or scheduled flow needs for one run."""

    engine: AsyncEngine
    builds: BuildRepository
    memberships: MembershipRepository
    enqueuer: BuildTaskEnqueuer
    sweeper: BuildTimeoutSweeper
    auditor: SiteUserAuditor


@asynccontextmanager
async def open_services(settings: Settings) -> AsyncIterator[PagesServices]:
    """Build services for one run and release their connections afterwards."""

    engine = build_engine(settings.database_url)
    queue = RedisTaskQueue.from_url(
        settings.queue.redis_url,
        name=settings.queue.name,
        job_function=settings.queue.job_function,
        job_timeout_seconds=settings.queue.job_timeout_seconds,
    )
    cf_client = CloudFoundryClient(
        api_url=settings.build_backend.api_url,
        token=settings.build_backend.token,
        timeout_seconds=settings.build_backend.request_timeout_seconds,
        max_retries=settings.build_backend.max_retries,
    )
    github = GitHubClient(
        api_url=settings.github.api_url,
        timeout_seconds=settings.github.request_timeout_seconds,
        max_retries=settings.github.max_retries,
        per_page=settings.github.per_page,
    )
    builds = BuildRepository(engine)
    memberships = MembershipRepository(engine)
    try:
        yield PagesServices(
            engine=engine,
            builds=builds,
            memberships=memberships,
            enqueuer=BuildTaskEnqueuer(repository=builds, queue=queue),
            sweeper=BuildTimeoutSweeper(
                repository=builds,
                backend=cf_client,
                settings=settings.builds,
            ),
            auditor=SiteUserAuditor(
                repository=memberships,
                source_host=github,
                settings=settings.audit,
            ),
        )
    finally:
        await github.close()
        await cf_client.close()
        await queue.close()
        await engine.dispose()
