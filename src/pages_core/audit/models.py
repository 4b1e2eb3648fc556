"""Domain models for site membership audits."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

AUDIT_EVENT_TYPE = "audit"
SITE_USER_EVENT_LABEL = "site-user"
REMOVE_ACTION = "remove"
USER_TARGET_TYPE = "user"
REMOVAL_MESSAGE = "Removed user from site. User does not have write permissions"


@dataclass(slots=True)
class MemberView:
    """User as seen by the auditor, including its delegated credential."""

    id: int
    username: str
    github_access_token: str | None
    signed_in_at: datetime | None

    @property
    def has_credential(self) -> bool:
        return bool(self.github_access_token)


@dataclass(slots=True)
class SiteMembersView:
    """Site with its members ordered newest sign-in first."""

    id: int
    owner: str
    repository: str
    members: list[MemberView] = field(default_factory=list)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repository}"


@dataclass(slots=True)
class MembershipRemoval:
    site_id: int
    user_id: int
    removed: bool


@dataclass(slots=True)
class UserActionView:
    id: int
    user_id: int
    action_type: str
    target_id: int
    target_type: str
    site_id: int | None
    created_at: datetime


@dataclass(slots=True)
class EventView:
    id: int
    type: str
    label: str
    model_name: str | None
    model_id: int | None
    body: dict[str, Any]
    created_at: datetime


@dataclass(slots=True)
class UserAuditResult:
    """Removals made while auditing one user."""

    user_id: int
    username: str
    removals: list[MembershipRemoval] = field(default_factory=list)

    @property
    def removed_site_ids(self) -> list[int]:
        return [removal.site_id for removal in self.removals if removal.removed]


@dataclass(slots=True)
class SiteAuditResult:
    """Removals made while auditing one site.

    ``credential_user_id`` is ``None`` when no member could list collaborators
    and the site was skipped.
    """

    site_id: int
    credential_user_id: int | None
    removals: list[MembershipRemoval] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        return self.credential_user_id is None

    @property
    def removed_user_ids(self) -> list[int]:
        return [removal.user_id for removal in self.removals if removal.removed]
