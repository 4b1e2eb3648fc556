"""Build and build task state machines."""

from __future__ import annotations

from datetime import datetime

from pages_core.builds.models import BuildState, BuildTaskStatus
from pages_core.errors import InvalidTransitionError
from pages_core.storage.common import to_db_datetime

BUILD_TRANSITIONS: dict[BuildState, frozenset[BuildState]] = {
    BuildState.CREATED: frozenset({BuildState.QUEUED, BuildState.ERROR}),
    BuildState.QUEUED: frozenset({BuildState.TASKED, BuildState.PROCESSING, BuildState.ERROR}),
    BuildState.TASKED: frozenset({BuildState.PROCESSING, BuildState.ERROR}),
    BuildState.PROCESSING: frozenset({BuildState.SUCCESS, BuildState.ERROR}),
    BuildState.SUCCESS: frozenset(),
    BuildState.ERROR: frozenset(),
}

# QUEUED -> CREATED is only taken when a dispatch publish fails.
TASK_TRANSITIONS: dict[BuildTaskStatus, frozenset[BuildTaskStatus]] = {
    BuildTaskStatus.CREATED: frozenset({BuildTaskStatus.QUEUED, BuildTaskStatus.ERROR}),
    BuildTaskStatus.QUEUED: frozenset(
        {BuildTaskStatus.CREATED, BuildTaskStatus.PROCESSING, BuildTaskStatus.ERROR},
    ),
    BuildTaskStatus.PROCESSING: frozenset({BuildTaskStatus.SUCCESS, BuildTaskStatus.ERROR}),
    BuildTaskStatus.SUCCESS: frozenset(),
    BuildTaskStatus.ERROR: frozenset(),
}


def ensure_build_transition(current: BuildState, target: BuildState) -> None:
    if target not in BUILD_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Build cannot move from {current.value} to {target.value}.",
            from_state=current.value,
            to_state=target.value,
        )


def ensure_task_transition(current: BuildTaskStatus, target: BuildTaskStatus) -> None:
    if target not in TASK_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Build task cannot move from {current.value} to {target.value}.",
            from_state=current.value,
            to_state=target.value,
        )


def build_transition_values(
    target: BuildState,
    *,
    now: datetime,
    error: str | None = None,
) -> dict[str, object]:
    """Column values for entering ``target``.

    ``completed_at`` is set exactly when the target state is terminal.
    """

    values: dict[str, object] = {
        "state": target.value,
        "updated_at": to_db_datetime(now),
        "completed_at": to_db_datetime(now) if target.is_terminal else None,
    }
    if target == BuildState.PROCESSING:
        values["started_at"] = to_db_datetime(now)
    if target == BuildState.ERROR:
        values["error"] = error or "The build failed"
    elif error is not None:
        values["error"] = error
    return values
