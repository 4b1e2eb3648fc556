"""Cloud Foundry v3 client for build task cancellation."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from pages_core.errors import BuildBackendError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 3


class BuildBackend(Protocol):
    """Protocol implemented by remote build backends."""

    async def cancel_build_task(self, build_id: int) -> None:
        """Cancel the running job of a build; raise on failure."""


def build_task_name(build_id: int) -> str:
    return f"build-{build_id}"


class CloudFoundryClient:
    """Async Cloud Foundry API wrapper for build tasks."""

    def __init__(
        self,
        *,
        api_url: str,
        token: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=api_url,
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers={
                "Accept": "application/json",
                "Authorization": f"Bearer {token}",
            },
            transport=transport or httpx.AsyncHTTPTransport(retries=max_retries),
        )

    async def fetch_build_task(self, build_id: int) -> dict[str, Any] | None:
        """Return the running CF task for a build, if any."""

        response = await self._request(
            "GET",
            "/v3/tasks",
            build_id=build_id,
            params={"names": build_task_name(build_id), "states": "RUNNING"},
        )
        body = response.json()
        resources = body.get("resources") if isinstance(body, dict) else None
        if not isinstance(resources, list):
            raise BuildBackendError(
                f"Unexpected task listing for build {build_id}.",
                build_id=build_id,
            )
        return resources[0] if resources else None

    async def cancel_build_task(self, build_id: int) -> None:
        task = await self.fetch_build_task(build_id)
        if task is None or not task.get("guid"):
            raise BuildBackendError(
                f"Unable to cancel build task for build: {build_id}. Task does not exist.",
                build_id=build_id,
            )
        await self._request("POST", f"/v3/tasks/{task['guid']}/actions/cancel", build_id=build_id)
        logger.debug("Canceled CF task %s for build %s", task["guid"], build_id)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        build_id: int,
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, path, params=params)
        except httpx.HTTPError as error:
            raise BuildBackendError(
                f"CF API {method} {path} failed: {error}",
                build_id=build_id,
            ) from error
        if not response.is_success:
            raise BuildBackendError(
                f"CF API {method} {path} returned HTTP {response.status_code}",
                build_id=build_id,
                status_code=response.status_code,
            )
        return response

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> CloudFoundryClient:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()
