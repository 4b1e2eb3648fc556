"""Domain models for builds, build tasks and dispatch messages."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pages_core.settle import Settled

BUILD_TIMEOUT_MESSAGE = "The build timed out"


class BuildState(str, Enum):
    """Durable build lifecycle states."""

    CREATED = "created"
    QUEUED = "queued"
    TASKED = "tasked"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in {BuildState.SUCCESS, BuildState.ERROR}


class BuildTaskStatus(str, Enum):
    """Durable build task lifecycle states."""

    CREATED = "created"
    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in {BuildTaskStatus.SUCCESS, BuildTaskStatus.ERROR}


ACTIVE_TASK_STATUSES: tuple[BuildTaskStatus, ...] = (
    BuildTaskStatus.CREATED,
    BuildTaskStatus.QUEUED,
    BuildTaskStatus.PROCESSING,
)


@dataclass(slots=True)
class BuildCreate:
    """Input payload for creating a build."""

    site_id: int
    branch: str
    commit_sha: str | None = None
    user_id: int | None = None


@dataclass(slots=True)
class SiteView:
    id: int
    owner: str
    repository: str
    default_branch: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repository}"


@dataclass(slots=True)
class BuildView:
    id: int
    site_id: int
    user_id: int | None
    branch: str
    commit_sha: str | None
    state: BuildState
    error: str | None
    started_at: datetime | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class BuildTaskTypeView:
    id: int
    name: str
    description: str | None
    runner: str


@dataclass(slots=True)
class BuildTaskView:
    id: int
    build_id: int
    build_task_type_id: int
    name: str
    status: BuildTaskStatus
    message: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class QueuedTaskMessage:
    """Task joined with its build, site and type, as handed to workers."""

    task: BuildTaskView
    build: BuildView
    site: SiteView
    task_type: BuildTaskTypeView

    def to_payload(self) -> dict[str, Any]:
        """Serialize into a JSON-ready dict."""

        return {
            "task": {
                "id": self.task.id,
                "buildId": self.task.build_id,
                "buildTaskTypeId": self.task.build_task_type_id,
                "name": self.task.name,
                "status": self.task.status.value,
                "createdAt": self.task.created_at.isoformat(),
                "updatedAt": self.task.updated_at.isoformat(),
            },
            "build": {
                "id": self.build.id,
                "siteId": self.build.site_id,
                "branch": self.build.branch,
                "commitSha": self.build.commit_sha,
                "state": self.build.state.value,
            },
            "site": {
                "id": self.site.id,
                "owner": self.site.owner,
                "repository": self.site.repository,
                "defaultBranch": self.site.default_branch,
            },
            "taskType": {
                "id": self.task_type.id,
                "name": self.task_type.name,
                "runner": self.task_type.runner,
            },
        }


@dataclass(slots=True)
class EnqueueResult:
    task: BuildTaskView
    priority: int
    message_id: str


@dataclass(slots=True)
class TimeoutSweepResult:
    """Builds force-failed by one sweep with their cancellation outcomes."""

    swept_at: datetime
    cancellations: list[Settled[int, None]] = field(default_factory=list)

    @property
    def build_ids(self) -> list[int]:
        return [outcome.key for outcome in self.cancellations]

    @property
    def failed_cancellations(self) -> list[Settled[int, None]]:
        return [outcome for outcome in self.cancellations if not outcome.ok]
