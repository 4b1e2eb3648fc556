"""Persistent build and build task repository."""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import and_, func, or_
from sqlalchemy import update as sa_update
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from pages_core.builds.lifecycle import (
    build_transition_values,
    ensure_build_transition,
    ensure_task_transition,
)
from pages_core.builds.models import (
    ACTIVE_TASK_STATUSES,
    BUILD_TIMEOUT_MESSAGE,
    BuildCreate,
    BuildState,
    BuildTaskStatus,
    BuildTaskTypeView,
    BuildTaskView,
    BuildView,
    QueuedTaskMessage,
    SiteView,
)
from pages_core.errors import BuildNotFoundError, InvalidTransitionError, TaskNotFoundError
from pages_core.storage.common import (
    optional_utc,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
    write_lock,
)
from pages_core.storage.sqlmodel_models import Build, BuildTask, BuildTaskType, Site


class BuildRepository:
    """Build lifecycle persistence facade backed by SQLModel."""

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine

    def _session(self) -> AsyncSession:
        return AsyncSession(self.engine, expire_on_commit=False)

    async def add_task_type(
        self,
        *,
        name: str,
        description: str | None = None,
        runner: str = "cf_task",
    ) -> BuildTaskTypeView:
        """Register a configured build task type."""

        async with self._session() as session:
            row = BuildTaskType(
                name=name,
                description=description,
                runner=runner,
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return _to_task_type_view(row)

    async def list_task_types(self) -> list[BuildTaskTypeView]:
        async with self._session() as session:
            rows = (
                await session.exec(select(BuildTaskType).order_by(col(BuildTaskType.id).asc()))
            ).all()
        return [_to_task_type_view(row) for row in rows]

    async def create_build(self, payload: BuildCreate) -> BuildView:
        """Create a build in the ``created`` state."""

        now = to_db_datetime(utc_now())
        async with self._session() as session:
            row = Build(
                site_id=payload.site_id,
                user_id=payload.user_id,
                branch=payload.branch,
                commit_sha=payload.commit_sha,
                state=BuildState.CREATED.value,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return _to_build_view(row)

    async def get_build(self, build_id: int) -> BuildView | None:
        async with self._session() as session:
            row = (await session.exec(select(Build).where(Build.id == build_id))).one_or_none()
        return _to_build_view(row) if row is not None else None

    async def create_build_tasks(
        self,
        build_id: int,
        *,
        type_ids: tuple[int, ...] | None = None,
    ) -> list[BuildTaskView]:
        """Materialize one task per configured task type; existing ones are kept."""

        now = to_db_datetime(utc_now())
        async with self._session() as session:
            build = (await session.exec(select(Build).where(Build.id == build_id))).one_or_none()
            if build is None:
                raise BuildNotFoundError(f"Build not found: {build_id}", build_id=build_id)

            type_statement = select(BuildTaskType).order_by(col(BuildTaskType.id).asc())
            if type_ids is not None:
                type_statement = type_statement.where(col(BuildTaskType.id).in_(type_ids))
            task_types = (await session.exec(type_statement)).all()

            existing = set(
                (
                    await session.exec(
                        select(BuildTask.build_task_type_id).where(
                            BuildTask.build_id == build_id,
                        ),
                    )
                ).all(),
            )
            for task_type in task_types:
                if task_type.id in existing:
                    continue
                session.add(
                    BuildTask(
                        build_id=build_id,
                        build_task_type_id=task_type.id,
                        name=task_type.name,
                        status=BuildTaskStatus.CREATED.value,
                        created_at=now,
                        updated_at=now,
                    ),
                )
            await session.commit()

            rows = (
                await session.exec(
                    select(BuildTask)
                    .where(BuildTask.build_id == build_id)
                    .order_by(col(BuildTask.id).asc()),
                )
            ).all()
        return [_to_task_view(row) for row in rows]

    async def list_build_tasks(
        self,
        build_id: int,
        *,
        status: BuildTaskStatus | None = None,
    ) -> list[BuildTaskView]:
        async with self._session() as session:
            statement = (
                select(BuildTask)
                .where(BuildTask.build_id == build_id)
                .order_by(col(BuildTask.id).asc())
            )
            if status is not None:
                statement = statement.where(BuildTask.status == status.value)
            rows = (await session.exec(statement)).all()
        return [_to_task_view(row) for row in rows]

    async def get_task(self, task_id: int) -> BuildTaskView | None:
        async with self._session() as session:
            row = (
                await session.exec(select(BuildTask).where(BuildTask.id == task_id))
            ).one_or_none()
        return _to_task_view(row) if row is not None else None

    async def get_task_message(self, task_id: int) -> QueuedTaskMessage | None:
        """Load a task joined with its build, site and task type."""

        async with self._session() as session:
            row = (
                await session.exec(
                    select(BuildTask, Build, Site, BuildTaskType)
                    .join(Build, col(Build.id) == col(BuildTask.build_id))
                    .join(Site, col(Site.id) == col(Build.site_id))
                    .join(BuildTaskType, col(BuildTaskType.id) == col(BuildTask.build_task_type_id))
                    .where(BuildTask.id == task_id),
                )
            ).one_or_none()
        if row is None:
            return None
        task, build, site, task_type = row
        return QueuedTaskMessage(
            task=_to_task_view(task),
            build=_to_build_view(build),
            site=_to_site_view(site),
            task_type=_to_task_type_view(task_type),
        )

    async def count_tasks_ahead(self, *, site_id: int, task_id: int) -> int:
        """Count non-terminal tasks of the same site created before ``task_id``."""

        async with self._session() as session:
            count = (
                await session.exec(
                    select(func.count())
                    .select_from(BuildTask)
                    .join(Build, col(Build.id) == col(BuildTask.build_id))
                    .where(
                        col(Build.site_id) == site_id,
                        col(BuildTask.status).in_([status.value for status in ACTIVE_TASK_STATUSES]),
                        col(BuildTask.id) < task_id,
                    ),
                )
            ).one()
        return int(count)

    async def claim_task_for_queue(self, task_id: int, *, now: datetime | None = None) -> bool:
        """Flip a task from created to queued; False when another caller got there first.

        `now` becomes the task's `updated_at`.
        """

        return await self._guarded_task_update(
            task_id=task_id,
            current=BuildTaskStatus.CREATED,
            target=BuildTaskStatus.QUEUED,
            now=now,
        )

    async def release_task_claim(self, task_id: int) -> bool:
        """Undo a queue claim after a failed publish."""

        return await self._guarded_task_update(
            task_id=task_id,
            current=BuildTaskStatus.QUEUED,
            target=BuildTaskStatus.CREATED,
        )

    async def update_task_status(
        self,
        task_id: int,
        target: BuildTaskStatus,
        *,
        message: str | None = None,
    ) -> BuildTaskView:
        """Apply a worker-reported task status change."""

        async with write_lock(self.engine), self._session() as session:
            row = (
                await session.exec(select(BuildTask).where(BuildTask.id == task_id))
            ).one_or_none()
            if row is None:
                raise TaskNotFoundError(f"Build task not found: {task_id}", task_id=task_id)
            current = BuildTaskStatus(row.status)
            ensure_task_transition(current, target)
            values: dict[str, object] = {
                "status": target.value,
                "updated_at": to_db_datetime(utc_now()),
            }
            if message is not None:
                values["message"] = message
            result = await session.exec(
                sa_update(BuildTask)
                .where(
                    col(BuildTask.id) == task_id,
                    col(BuildTask.status) == current.value,
                )
                .values(**values)
                .execution_options(synchronize_session=False),
            )
            if result.rowcount != 1:
                await session.rollback()
                raise InvalidTransitionError(
                    f"Build task {task_id} changed concurrently; retry the update.",
                    from_state=current.value,
                    to_state=target.value,
                )
            await session.commit()
            await session.refresh(row)
            return _to_task_view(row)

    async def transition_build(
        self,
        build_id: int,
        target: BuildState,
        *,
        error: str | None = None,
    ) -> BuildView:
        """Move a build along its state machine, guarded on the current state."""

        now = utc_now()
        async with write_lock(self.engine), self._session() as session:
            row = (await session.exec(select(Build).where(Build.id == build_id))).one_or_none()
            if row is None:
                raise BuildNotFoundError(f"Build not found: {build_id}", build_id=build_id)
            current = BuildState(row.state)
            ensure_build_transition(current, target)
            result = await session.exec(
                sa_update(Build)
                .where(col(Build.id) == build_id, col(Build.state) == current.value)
                .values(**build_transition_values(target, now=now, error=error))
                .execution_options(synchronize_session=False),
            )
            if result.rowcount != 1:
                await session.rollback()
                raise InvalidTransitionError(
                    f"Build {build_id} changed concurrently; retry the transition.",
                    from_state=current.value,
                    to_state=target.value,
                )
            await session.commit()
            await session.refresh(row)
            return _to_build_view(row)

    async def timeout_builds(
        self,
        *,
        now: datetime,
        build_timeout: timedelta,
        task_ack_timeout: timedelta,
    ) -> list[int]:
        """Force every stalled build to error in one conditional update.

        Returns the ids of the affected builds.
        """

        values = build_transition_values(BuildState.ERROR, now=now, error=BUILD_TIMEOUT_MESSAGE)
        async with write_lock(self.engine), self._session() as session:
            result = await session.exec(
                sa_update(Build)
                .where(
                    or_(
                        and_(
                            col(Build.state) == BuildState.PROCESSING.value,
                            col(Build.started_at) < to_db_datetime(now - build_timeout),
                        ),
                        and_(
                            col(Build.state) == BuildState.TASKED.value,
                            col(Build.updated_at) < to_db_datetime(now - task_ack_timeout),
                        ),
                    ),
                )
                .values(**values)
                .returning(col(Build.id))
                .execution_options(synchronize_session=False),
            )
            build_ids = sorted(result.scalars().all())
            await session.commit()
        return build_ids

    async def _guarded_task_update(
        self,
        *,
        task_id: int,
        current: BuildTaskStatus,
        target: BuildTaskStatus,
        now: datetime | None = None,
    ) -> bool:
        ensure_task_transition(current, target)
        updated_at = to_db_datetime(now or utc_now())
        async with write_lock(self.engine), self._session() as session:
            result = await session.exec(
                sa_update(BuildTask)
                .where(
                    col(BuildTask.id) == task_id,
                    col(BuildTask.status) == current.value,
                )
                .values(status=target.value, updated_at=updated_at)
                .execution_options(synchronize_session=False),
            )
            if result.rowcount != 1:
                await session.rollback()
                return False
            await session.commit()
            return True


def _to_site_view(row: Site) -> SiteView:
    return SiteView(
        id=row.id or 0,
        owner=row.owner,
        repository=row.repository,
        default_branch=row.default_branch,
    )


def _to_task_type_view(row: BuildTaskType) -> BuildTaskTypeView:
    return BuildTaskTypeView(
        id=row.id or 0,
        name=row.name,
        description=row.description,
        runner=row.runner,
    )


def _to_build_view(row: Build) -> BuildView:
    return BuildView(
        id=row.id or 0,
        site_id=row.site_id,
        user_id=row.user_id,
        branch=row.branch,
        commit_sha=row.commit_sha,
        state=BuildState(row.state),
        error=row.error,
        started_at=optional_utc(row.started_at),
        completed_at=optional_utc(row.completed_at),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _to_task_view(row: BuildTask) -> BuildTaskView:
    return BuildTaskView(
        id=row.id or 0,
        build_id=row.build_id,
        build_task_type_id=row.build_task_type_id,
        name=row.name,
        status=BuildTaskStatus(row.status),
        message=row.message,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
