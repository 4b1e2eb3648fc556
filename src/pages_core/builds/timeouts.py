"""Timeout sweep for builds stuck in tasked or processing."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from pages_core.builds.models import TimeoutSweepResult
from pages_core.builds.repository import BuildRepository
from pages_core.config import BuildSettings
from pages_core.http.cf_api import BuildBackend
from pages_core.settle import settle_all
from pages_core.storage.common import to_utc_aware_datetime, utc_now

logger = logging.getLogger(__name__)


class BuildTimeoutSweeper:
    """Force-fails stalled builds and asks the backend to cancel their jobs."""

    def __init__(
        self,
        *,
        repository: BuildRepository,
        backend: BuildBackend,
        settings: BuildSettings,
    ) -> None:
        self.repository = repository
        self.backend = backend
        self.settings = settings

    async def sweep(self, now: datetime | None = None) -> TimeoutSweepResult:
        """Run one sweep at reference time ``now``.

        Processing builds get the full build timeout measured from
        ``started_at``. Tasked builds only get the acknowledgement window
        measured from ``updated_at``, since their job may never have started.
        The state change commits before any cancel request; cancel failures
        are reported per build and never undo it.
        """

        swept_at = to_utc_aware_datetime(now) if now is not None else utc_now()
        build_ids = await self.repository.timeout_builds(
            now=swept_at,
            build_timeout=timedelta(minutes=self.settings.timeout_minutes),
            task_ack_timeout=timedelta(minutes=self.settings.task_ack_timeout_minutes),
        )
        if not build_ids:
            logger.debug("Timeout sweep at %s found no stalled builds", swept_at.isoformat())
            return TimeoutSweepResult(swept_at=swept_at)

        cancellations = await settle_all(
            (build_id, self.backend.cancel_build_task(build_id)) for build_id in build_ids
        )
        for outcome in cancellations:
            if not outcome.ok:
                logger.warning(
                    "Cancel request failed for timed out build %s: %s",
                    outcome.key,
                    outcome.reason,
                )
        result = TimeoutSweepResult(swept_at=swept_at, cancellations=cancellations)
        logger.info(
            "Timed out %d build(s); %d cancel request(s) failed",
            len(build_ids),
            len(result.failed_cancellations),
        )
        return result
