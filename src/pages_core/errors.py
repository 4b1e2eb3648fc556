"""Error taxonomy shared by the build and audit services."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class PagesError(Exception):
    """Base error with a stable machine-readable code."""

    message: str
    code: str = "pages_error"

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class PreconditionError(PagesError):
    """Operation rejected before any side effect took place."""

    code: str = "precondition_failed"


@dataclass(slots=True)
class TaskNotFoundError(PreconditionError):
    code: str = "task_not_found"
    task_id: int | None = None


@dataclass(slots=True)
class BuildNotFoundError(PreconditionError):
    code: str = "build_not_found"
    build_id: int | None = None


@dataclass(slots=True)
class InvalidTaskStateError(PreconditionError):
    code: str = "invalid_task_state"
    task_id: int | None = None
    status: str | None = None


@dataclass(slots=True)
class TaskClaimConflictError(PreconditionError):
    """Another caller changed the task status between read and claim."""

    code: str = "task_claim_conflict"
    task_id: int | None = None


@dataclass(slots=True)
class InvalidTransitionError(PreconditionError):
    code: str = "invalid_transition"
    from_state: str | None = None
    to_state: str | None = None


@dataclass(slots=True)
class AuditorNotFoundError(PreconditionError):
    code: str = "auditor_not_found"
    username: str | None = None


@dataclass(slots=True)
class TransientExternalError(PagesError):
    """Failure of an unreliable external service; safe to retry."""

    code: str = "external_transient"


@dataclass(slots=True)
class DispatchPublishError(TransientExternalError):
    code: str = "dispatch_publish_failed"
    task_id: int | None = None


@dataclass(slots=True)
class BuildBackendError(TransientExternalError):
    code: str = "build_backend_failed"
    build_id: int | None = None
    status_code: int | None = None


@dataclass(slots=True)
class SourceHostError(TransientExternalError):
    code: str = "source_host_failed"
    status_code: int | None = None


@dataclass(slots=True)
class SourceHostRateLimitError(SourceHostError):
    code: str = "source_host_rate_limited"
    reset_at: int | None = None


@dataclass(slots=True)
class SourceHostResponseError(SourceHostError):
    """Source host returned a payload missing required fields."""

    code: str = "source_host_bad_response"


@dataclass(slots=True)
class StateInconsistencyError(PagesError):
    """Store and external side effect disagree; needs operator reconciliation."""

    code: str = "state_inconsistency"
    task_id: int | None = None
