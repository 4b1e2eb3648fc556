from __future__ import annotations

from datetime import UTC, datetime

import allure
import pytest

from pages_core.flows import audit_sites_flow, audit_users_flow, timeout_builds_flow

pytestmark = [
    allure.epic("Operations"),
    allure.feature("Scheduled Flows"),
]


@pytest.mark.asyncio
async def test_timeout_flow_summarizes_empty_sweep(engine, database_url: str) -> None:  # noqa: ARG001
    summary = await timeout_builds_flow.fn(
        now=datetime(2024, 5, 1, 12, 0, tzinfo=UTC),
        database_url=database_url,
    )

    assert summary == {
        "swept_at": "2024-05-01T12:00:00+00:00",
        "timed_out": [],
        "failed_cancellations": {},
    }


@pytest.mark.asyncio
async def test_audit_flows_with_only_the_auditor_user(
    engine,  # noqa: ARG001
    memberships,
    database_url: str,
) -> None:
    await memberships.create_user(username="federalist")

    users = await audit_users_flow.fn(database_url=database_url)
    sites = await audit_sites_flow.fn(database_url=database_url)

    assert users == {"audited": 0, "removed": {}, "failed": {}}
    assert sites == {"audited": 0, "skipped": [], "removed": {}, "failed": {}}
