"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from fakes import FakeBuildBackend, FakeSourceHost, FakeTaskQueue
from sqlalchemy.ext.asyncio import AsyncEngine

from pages_core.audit.repository import MembershipRepository
from pages_core.builds.repository import BuildRepository
from pages_core.storage.common import build_engine, create_schema


@pytest.fixture()
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'pages.db'}"


@pytest_asyncio.fixture()
async def engine(database_url: str) -> AsyncIterator[AsyncEngine]:
    engine = build_engine(database_url)
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def builds(engine: AsyncEngine) -> BuildRepository:
    return BuildRepository(engine)


@pytest.fixture()
def memberships(engine: AsyncEngine) -> MembershipRepository:
    return MembershipRepository(engine)


@pytest.fixture()
def task_queue() -> FakeTaskQueue:
    return FakeTaskQueue()


@pytest.fixture()
def build_backend() -> FakeBuildBackend:
    return FakeBuildBackend()


@pytest.fixture()
def source_host() -> FakeSourceHost:
    return FakeSourceHost()
