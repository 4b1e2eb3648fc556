"""SQLModel ORM tables for the site build store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Text,
    UniqueConstraint,
)
from sqlmodel import Field, SQLModel


class AppUser(SQLModel, table=True):
    __tablename__ = "users"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    github_access_token: str | None = Field(default=None, sa_column=Column(Text))
    signed_in_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True, index=True),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Site(SQLModel, table=True):
    __tablename__ = "sites"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("owner", "repository", name="uq_sites_owner_repository"),
    )

    id: int | None = Field(default=None, primary_key=True)
    owner: str = Field(index=True)
    repository: str = Field(index=True)
    default_branch: str = "main"
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class SiteUser(SQLModel, table=True):
    """Membership edge between a site and a user."""

    __tablename__ = "site_users"  # type: ignore[bad-override]

    site_id: int = Field(
        sa_column=Column(
            ForeignKey("sites.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    user_id: int = Field(
        sa_column=Column(
            ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
            index=True,
        ),
    )


class Build(SQLModel, table=True):
    __tablename__ = "builds"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_builds_state_started", "state", "started_at"),
        Index("idx_builds_state_updated", "state", "updated_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    site_id: int = Field(
        sa_column=Column(
            ForeignKey("sites.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    user_id: int | None = Field(
        default=None,
        sa_column=Column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
    )
    branch: str
    commit_sha: str | None = None
    state: str = Field(index=True)
    error: str | None = Field(default=None, sa_column=Column(Text))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class BuildTaskType(SQLModel, table=True):
    __tablename__ = "build_task_types"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(unique=True)
    description: str | None = Field(default=None, sa_column=Column(Text))
    runner: str = "cf_task"
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class BuildTask(SQLModel, table=True):
    __tablename__ = "build_tasks"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("build_id", "build_task_type_id", name="uq_build_tasks_build_type"),
        Index("idx_build_tasks_status", "status", "id"),
    )

    id: int | None = Field(default=None, primary_key=True)
    build_id: int = Field(
        sa_column=Column(
            ForeignKey("builds.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    build_task_type_id: int = Field(
        sa_column=Column(
            ForeignKey("build_task_types.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    name: str
    status: str
    message: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class UserAction(SQLModel, table=True):
    """Append-only record of an action taken against a site member."""

    __tablename__ = "user_actions"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_user_actions_site_time", "site_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(index=True)
    action_type: str
    target_id: int = Field(index=True)
    target_type: str
    site_id: int | None = None
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Event(SQLModel, table=True):
    __tablename__ = "events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_events_label_time", "label", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    type: str = Field(index=True)
    label: str
    model_name: str | None = None
    model_id: int | None = None
    body_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
