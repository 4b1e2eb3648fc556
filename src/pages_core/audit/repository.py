"""Persistence for users, sites, membership and audit records."""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import delete as sa_delete
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from pages_core.audit.models import (
    AUDIT_EVENT_TYPE,
    REMOVAL_MESSAGE,
    REMOVE_ACTION,
    SITE_USER_EVENT_LABEL,
    USER_TARGET_TYPE,
    EventView,
    MemberView,
    MembershipRemoval,
    SiteMembersView,
    UserActionView,
)
from pages_core.builds.models import SiteView
from pages_core.storage.common import (
    optional_utc,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
    write_lock,
)
from pages_core.storage.sqlmodel_models import AppUser, Event, Site, SiteUser, UserAction


class MembershipRepository:
    """Site membership persistence facade backed by SQLModel."""

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine

    def _session(self) -> AsyncSession:
        return AsyncSession(self.engine, expire_on_commit=False)

    async def create_user(
        self,
        *,
        username: str,
        github_access_token: str | None = None,
        signed_in_at: datetime | None = None,
    ) -> MemberView:
        async with self._session() as session:
            row = AppUser(
                username=username,
                github_access_token=github_access_token,
                signed_in_at=to_db_datetime(signed_in_at) if signed_in_at is not None else None,
                created_at=to_db_datetime(utc_now()),
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return _to_member_view(row)

    async def create_site(
        self,
        *,
        owner: str,
        repository: str,
        default_branch: str = "main",
    ) -> SiteView:
        now = to_db_datetime(utc_now())
        async with self._session() as session:
            row = Site(
                owner=owner,
                repository=repository,
                default_branch=default_branch,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return SiteView(
                id=row.id or 0,
                owner=row.owner,
                repository=row.repository,
                default_branch=row.default_branch,
            )

    async def add_site_member(self, *, site_id: int, user_id: int) -> bool:
        """Add a membership edge; False when it already exists."""

        async with self._session() as session:
            existing = (
                await session.exec(
                    select(SiteUser).where(
                        SiteUser.site_id == site_id,
                        SiteUser.user_id == user_id,
                    ),
                )
            ).one_or_none()
            if existing is not None:
                return False
            session.add(SiteUser(site_id=site_id, user_id=user_id))
            await session.commit()
            return True

    async def get_user_by_username(self, username: str) -> MemberView | None:
        async with self._session() as session:
            row = (
                await session.exec(select(AppUser).where(AppUser.username == username))
            ).one_or_none()
        return _to_member_view(row) if row is not None else None

    async def list_credentialed_users(self) -> list[MemberView]:
        """Users holding a credential who have signed in, newest sign-in first."""

        async with self._session() as session:
            rows = (
                await session.exec(
                    select(AppUser)
                    .where(
                        col(AppUser.github_access_token).is_not(None),
                        col(AppUser.signed_in_at).is_not(None),
                    )
                    .order_by(col(AppUser.signed_in_at).desc(), col(AppUser.id).asc()),
                )
            ).all()
        return [_to_member_view(row) for row in rows]

    async def list_user_sites(self, user_id: int) -> list[SiteView]:
        async with self._session() as session:
            rows = (
                await session.exec(
                    select(Site)
                    .join(SiteUser, col(SiteUser.site_id) == col(Site.id))
                    .where(SiteUser.user_id == user_id)
                    .order_by(col(Site.id).asc()),
                )
            ).all()
        return [
            SiteView(
                id=row.id or 0,
                owner=row.owner,
                repository=row.repository,
                default_branch=row.default_branch,
            )
            for row in rows
        ]

    async def list_sites_with_members(self) -> list[SiteMembersView]:
        """Every site with members ordered newest sign-in first."""

        async with self._session() as session:
            sites = (await session.exec(select(Site).order_by(col(Site.id).asc()))).all()
            memberships = (
                await session.exec(
                    select(SiteUser.site_id, AppUser)
                    .join(AppUser, col(AppUser.id) == col(SiteUser.user_id))
                    .order_by(
                        col(SiteUser.site_id).asc(),
                        col(AppUser.signed_in_at).desc().nulls_last(),
                        col(AppUser.id).asc(),
                    ),
                )
            ).all()

        return group_site_members(sites, memberships)

    async def list_site_member_ids(self, site_id: int) -> list[int]:
        async with self._session() as session:
            rows = (
                await session.exec(
                    select(SiteUser.user_id)
                    .where(SiteUser.site_id == site_id)
                    .order_by(col(SiteUser.user_id).asc()),
                )
            ).all()
        return list(rows)

    async def remove_site_member(self, *, site_id: int, user_id: int, actor_id: int) -> bool:
        """Sever one membership edge; False when it was already gone."""

        (removal,) = await self.remove_memberships([(site_id, user_id)], actor_id=actor_id)
        return removal.removed

    async def remove_memberships(
        self,
        edges: Sequence[tuple[int, int]],
        *,
        actor_id: int,
    ) -> list[MembershipRemoval]:
        """Sever ``(site_id, user_id)`` edges and record who did it.

        Every deletion commits together with its user action and audit event,
        all edges in one transaction. Edges that were already gone report
        ``removed=False`` and write nothing.
        """

        if not edges:
            return []
        now = to_db_datetime(utc_now())
        removals: list[MembershipRemoval] = []
        async with write_lock(self.engine), self._session() as session:
            for site_id, user_id in edges:
                result = await session.exec(
                    sa_delete(SiteUser).where(
                        col(SiteUser.site_id) == site_id,
                        col(SiteUser.user_id) == user_id,
                    ),
                )
                removed = result.rowcount == 1
                removals.append(
                    MembershipRemoval(site_id=site_id, user_id=user_id, removed=removed),
                )
                if not removed:
                    continue
                session.add(
                    UserAction(
                        user_id=actor_id,
                        action_type=REMOVE_ACTION,
                        target_id=user_id,
                        target_type=USER_TARGET_TYPE,
                        site_id=site_id,
                        created_at=now,
                    ),
                )
                session.add(
                    Event(
                        type=AUDIT_EVENT_TYPE,
                        label=SITE_USER_EVENT_LABEL,
                        model_name="User",
                        model_id=user_id,
                        body_json=json.dumps(
                            {"message": REMOVAL_MESSAGE, "siteId": site_id, "auditorId": actor_id},
                            ensure_ascii=False,
                            sort_keys=True,
                        ),
                        created_at=now,
                    ),
                )
            await session.commit()
        return removals

    async def list_user_actions(self, *, site_id: int | None = None) -> list[UserActionView]:
        async with self._session() as session:
            statement = select(UserAction).order_by(col(UserAction.id).asc())
            if site_id is not None:
                statement = statement.where(UserAction.site_id == site_id)
            rows = (await session.exec(statement)).all()
        return [
            UserActionView(
                id=row.id or 0,
                user_id=row.user_id,
                action_type=row.action_type,
                target_id=row.target_id,
                target_type=row.target_type,
                site_id=row.site_id,
                created_at=to_utc_aware_datetime(row.created_at),
            )
            for row in rows
        ]

    async def list_events(self, *, label: str | None = None) -> list[EventView]:
        async with self._session() as session:
            statement = select(Event).order_by(col(Event.id).asc())
            if label is not None:
                statement = statement.where(Event.label == label)
            rows = (await session.exec(statement)).all()

        events: list[EventView] = []
        for row in rows:
            body = {}
            if row.body_json:
                parsed = json.loads(row.body_json)
                if isinstance(parsed, dict):
                    body = parsed
            events.append(
                EventView(
                    id=row.id or 0,
                    type=row.type,
                    label=row.label,
                    model_name=row.model_name,
                    model_id=row.model_id,
                    body=body,
                    created_at=to_utc_aware_datetime(row.created_at),
                ),
            )
        return events


def group_site_members(
    sites: Sequence[Site],
    memberships: Sequence[tuple[int, AppUser]],
) -> list[SiteMembersView]:
    """Attach ordered member rows to their sites.

    Membership rows whose site is not in `sites` are dropped: the two lists
    come from separate reads, and a site created in between has no view.
    """

    views = {
        site.id: SiteMembersView(id=site.id or 0, owner=site.owner, repository=site.repository)
        for site in sites
    }
    for site_id, user in memberships:
        view = views.get(site_id)
        if view is not None:
            view.members.append(_to_member_view(user))
    return list(views.values())


def _to_member_view(row: AppUser) -> MemberView:
    return MemberView(
        id=row.id or 0,
        username=row.username,
        github_access_token=row.github_access_token,
        signed_in_at=optional_utc(row.signed_in_at),
    )
