"""GitHub REST client for repository and collaborator permissions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from pages_core.errors import SourceHostError, SourceHostRateLimitError, SourceHostResponseError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_PER_PAGE = 100
RATE_LIMIT_STATUS_CODES = frozenset({403, 429})


@dataclass(slots=True, frozen=True)
class RepositoryRecord:
    """Repository visible to a credential, with its push permission."""

    full_name: str
    push: bool


@dataclass(slots=True, frozen=True)
class CollaboratorRecord:
    login: str
    push: bool


class SourceHost(Protocol):
    """Protocol implemented by source-host clients."""

    async def get_repositories(self, access_token: str) -> list[RepositoryRecord]:
        """Return every repository the credential can see."""

    async def get_collaborators(
        self,
        access_token: str,
        owner: str,
        repository: str,
    ) -> list[CollaboratorRecord]:
        """Return every collaborator of ``owner/repository``."""


class GitHubClient:
    """Async GitHub client with retry, timeout and pagination."""

    def __init__(
        self,
        *,
        api_url: str = DEFAULT_API_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        per_page: int = DEFAULT_PER_PAGE,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._per_page = per_page
        self._client = httpx.AsyncClient(
            base_url=api_url,
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers={
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            transport=transport or httpx.AsyncHTTPTransport(retries=max_retries),
            follow_redirects=True,
        )

    async def get_repositories(self, access_token: str) -> list[RepositoryRecord]:
        items = await self._paginate("/user/repos", access_token)
        return [parse_repository(item) for item in items]

    async def get_collaborators(
        self,
        access_token: str,
        owner: str,
        repository: str,
    ) -> list[CollaboratorRecord]:
        items = await self._paginate(f"/repos/{owner}/{repository}/collaborators", access_token)
        return [parse_collaborator(item) for item in items]

    async def _paginate(self, path: str, access_token: str) -> list[Any]:
        items: list[Any] = []
        url: str | None = path
        params: dict[str, int] | None = {"per_page": self._per_page}
        while url is not None:
            response = await self._get(url, access_token, params=params)
            batch = response.json()
            if not isinstance(batch, list):
                raise SourceHostResponseError(f"Expected a JSON list from {path}.")
            items.extend(batch)
            next_link = response.links.get("next")
            url = next_link.get("url") if next_link else None
            # The next link already carries the query string.
            params = None
        return items

    async def _get(
        self,
        url: str,
        access_token: str,
        *,
        params: dict[str, int] | None,
    ) -> httpx.Response:
        try:
            response = await self._client.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.TimeoutException as error:
            logger.warning("Timeout fetching %s", url)
            raise SourceHostError(f"Timeout fetching {url}") from error
        except httpx.HTTPError as error:
            logger.warning("HTTP error fetching %s: %s", url, error)
            raise SourceHostError(f"HTTP error fetching {url}: {error}") from error

        if response.is_success:
            return response
        if (
            response.status_code in RATE_LIMIT_STATUS_CODES
            and response.headers.get("x-ratelimit-remaining") == "0"
        ):
            reset = response.headers.get("x-ratelimit-reset")
            raise SourceHostRateLimitError(
                f"GitHub rate limit exhausted for {url}",
                status_code=response.status_code,
                reset_at=int(reset) if reset and reset.isdigit() else None,
            )
        raise SourceHostError(
            f"GitHub returned HTTP {response.status_code} for {url}",
            status_code=response.status_code,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()


def parse_repository(item: object) -> RepositoryRecord:
    """Validate one ``/user/repos`` entry."""

    if not isinstance(item, dict):
        raise SourceHostResponseError("Repository entry must be a JSON object.")
    full_name = item.get("full_name")
    if not isinstance(full_name, str) or not full_name:
        raise SourceHostResponseError("Repository entry is missing full_name.")
    return RepositoryRecord(full_name=full_name, push=_push_permission(item, subject=full_name))


def parse_collaborator(item: object) -> CollaboratorRecord:
    """Validate one ``/collaborators`` entry."""

    if not isinstance(item, dict):
        raise SourceHostResponseError("Collaborator entry must be a JSON object.")
    login = item.get("login")
    if not isinstance(login, str) or not login:
        raise SourceHostResponseError("Collaborator entry is missing login.")
    return CollaboratorRecord(login=login, push=_push_permission(item, subject=login))


def _push_permission(item: dict[str, Any], *, subject: str) -> bool:
    permissions = item.get("permissions")
    if not isinstance(permissions, dict) or not isinstance(permissions.get("push"), bool):
        raise SourceHostResponseError(f"Entry {subject!r} is missing permissions.push.")
    return permissions["push"]
