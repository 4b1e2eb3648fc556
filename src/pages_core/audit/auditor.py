"""Reconcile site membership against live source-host permissions."""

from __future__ import annotations

import logging

from pages_core.audit.models import (
    MemberView,
    MembershipRemoval,
    SiteAuditResult,
    SiteMembersView,
    UserAuditResult,
)
from pages_core.audit.repository import MembershipRepository
from pages_core.config import AuditSettings
from pages_core.errors import AuditorNotFoundError, PreconditionError, SourceHostError
from pages_core.http.github import CollaboratorRecord, SourceHost
from pages_core.settle import Settled, settle_all

logger = logging.getLogger(__name__)


class SiteUserAuditor:
    """Removes site members who lost write access to the site's repository.

    Both sweeps are stateless: everything they need is re-read from the store
    and the source host, so re-running them with unchanged permissions
    changes nothing.
    """

    def __init__(
        self,
        *,
        repository: MembershipRepository,
        source_host: SourceHost,
        settings: AuditSettings,
    ) -> None:
        self.repository = repository
        self.source_host = source_host
        self.settings = settings

    async def resolve_auditor(self) -> MemberView:
        """Look up the system identity that removals are attributed to."""

        auditor = await self.repository.get_user_by_username(self.settings.user_auditor)
        if auditor is None:
            raise AuditorNotFoundError(
                f"System auditor user {self.settings.user_auditor!r} does not exist.",
                username=self.settings.user_auditor,
            )
        return auditor

    async def audit_all_users(self) -> list[Settled[int, UserAuditResult]]:
        """Audit every signed-in user holding a credential, all at once."""

        auditor = await self.resolve_auditor()
        users = await self.repository.list_credentialed_users()
        outcomes = await settle_all((user.id, self.audit_user(user, auditor)) for user in users)
        for outcome in outcomes:
            if not outcome.ok:
                logger.warning("User audit failed for user %s: %s", outcome.key, outcome.reason)
        logger.info(
            "Audited %d user(s); %d failed; %d membership(s) removed",
            len(outcomes),
            sum(1 for outcome in outcomes if not outcome.ok),
            sum(len(outcome.value.removed_site_ids) for outcome in outcomes if outcome.value),
        )
        return outcomes

    async def audit_user(self, user: MemberView, auditor: MemberView) -> UserAuditResult:
        """Drop the user from every site whose repository it cannot push to."""

        if not user.has_credential:
            raise PreconditionError(f"User {user.username!r} has no GitHub credential to audit.")

        repositories = await self.source_host.get_repositories(user.github_access_token)
        push_by_name: dict[str, bool] = {}
        for repository in repositories:
            key = repository.full_name.casefold()
            push_by_name[key] = push_by_name.get(key, False) or repository.push

        sites = await self.repository.list_user_sites(user.id)
        stale = [site for site in sites if not push_by_name.get(site.full_name.casefold(), False)]
        removals = await self._remove_members(
            [(site.id, user) for site in stale],
            auditor=auditor,
        )
        return UserAuditResult(user_id=user.id, username=user.username, removals=removals)

    async def audit_all_sites(self) -> list[Settled[int, SiteAuditResult]]:
        """Audit every site concurrently; returns once all of them settle."""

        auditor = await self.resolve_auditor()
        sites = await self.repository.list_sites_with_members()
        outcomes = await settle_all((site.id, self.audit_site(site, auditor)) for site in sites)
        for outcome in outcomes:
            if not outcome.ok:
                logger.warning("Site audit failed for site %s: %s", outcome.key, outcome.reason)
        logger.info(
            "Audited %d site(s); %d failed; %d skipped",
            len(outcomes),
            sum(1 for outcome in outcomes if not outcome.ok),
            sum(1 for outcome in outcomes if outcome.value and outcome.value.skipped),
        )
        return outcomes

    async def audit_site(self, site: SiteMembersView, auditor: MemberView) -> SiteAuditResult:
        """Drop every member missing from the repository's push collaborators."""

        collaborators, credential_user = await self._fetch_collaborators(site)
        if credential_user is None:
            logger.info("Skipping site %s: no member could list collaborators", site.full_name)
            return SiteAuditResult(site_id=site.id, credential_user_id=None)

        pushers = {
            collaborator.login.casefold() for collaborator in collaborators if collaborator.push
        }
        stale = [member for member in site.members if member.username.casefold() not in pushers]
        removals = await self._remove_members(
            [(site.id, member) for member in stale],
            auditor=auditor,
        )
        return SiteAuditResult(
            site_id=site.id,
            credential_user_id=credential_user.id,
            removals=removals,
        )

    async def _fetch_collaborators(
        self,
        site: SiteMembersView,
    ) -> tuple[list[CollaboratorRecord], MemberView | None]:
        # Members are tried one at a time in list order; the first non-empty
        # answer wins.
        for member in site.members:
            if not member.has_credential:
                continue
            try:
                collaborators = await self.source_host.get_collaborators(
                    member.github_access_token,
                    site.owner,
                    site.repository,
                )
            except SourceHostError as error:
                logger.warning(
                    "Collaborator lookup for %s with %s's credential failed: %s",
                    site.full_name,
                    member.username,
                    error,
                )
                continue
            if collaborators:
                return collaborators, member
            logger.warning(
                "Collaborator lookup for %s with %s's credential returned nobody",
                site.full_name,
                member.username,
            )
        return [], None

    async def _remove_members(
        self,
        edges: list[tuple[int, MemberView]],
        *,
        auditor: MemberView,
    ) -> list[MembershipRemoval]:
        """Drop ``(site_id, member)`` edges in one transaction."""

        usernames = {member.id: member.username for _, member in edges}
        removals = await self.repository.remove_memberships(
            [(site_id, member.id) for site_id, member in edges],
            actor_id=auditor.id,
        )
        for removal in removals:
            if removal.removed:
                logger.info(
                    "Removed %s from site %s: no write permission",
                    usernames[removal.user_id],
                    removal.site_id,
                )
        return removals
