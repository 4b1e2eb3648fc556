"""Prefect flows wrapping the periodic sweeps.

A Prefect deployment schedule triggers each flow; every run opens its own
services, performs one sweep and returns a JSON-friendly summary.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from prefect import flow

from pages_core.config import Settings
from pages_core.services import open_services

logger = logging.getLogger(__name__)


def _load_settings(database_url: str | None) -> Settings:
    settings = Settings.from_env(database_url=database_url)
    settings.validate()
    return settings


@flow(name="timeout_builds_flow")
async def timeout_builds_flow(
    now: datetime | None = None,
    database_url: str | None = None,
) -> dict[str, Any]:
    """Fail stalled builds and request cancellation of their backend jobs."""

    async with open_services(_load_settings(database_url)) as services:
        result = await services.sweeper.sweep(now)
    return {
        "swept_at": result.swept_at.isoformat(),
        "timed_out": result.build_ids,
        "failed_cancellations": {
            outcome.key: outcome.reason for outcome in result.failed_cancellations
        },
    }


@flow(name="audit_users_flow")
async def audit_users_flow(database_url: str | None = None) -> dict[str, Any]:
    """Per-user membership audit."""

    async with open_services(_load_settings(database_url)) as services:
        outcomes = await services.auditor.audit_all_users()
    return {
        "audited": len(outcomes),
        "removed": {
            outcome.key: outcome.value.removed_site_ids
            for outcome in outcomes
            if outcome.value is not None and outcome.value.removed_site_ids
        },
        "failed": {outcome.key: outcome.reason for outcome in outcomes if not outcome.ok},
    }


@flow(name="audit_sites_flow")
async def audit_sites_flow(database_url: str | None = None) -> dict[str, Any]:
    """Per-site membership audit."""

    async with open_services(_load_settings(database_url)) as services:
        outcomes = await services.auditor.audit_all_sites()
    summary = {
        "audited": len(outcomes),
        "skipped": [
            outcome.key for outcome in outcomes if outcome.value is not None and outcome.value.skipped
        ],
        "removed": {
            outcome.key: outcome.value.removed_user_ids
            for outcome in outcomes
            if outcome.value is not None and outcome.value.removed_user_ids
        },
        "failed": {outcome.key: outcome.reason for outcome in outcomes if not outcome.ok},
    }
    logger.info("Site audit flow finished: %s", summary)
    return summary
