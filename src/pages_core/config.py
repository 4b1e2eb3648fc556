"""Runtime configuration for build orchestration and access audits."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from urllib.parse import urlparse

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///.pages.db"
TASK_ACK_TIMEOUT_MINUTES = 5


@dataclass(slots=True)
class BuildSettings:
    """Deadlines applied by the build timeout sweep."""

    timeout_minutes: int = 45
    task_ack_timeout_minutes: int = TASK_ACK_TIMEOUT_MINUTES


@dataclass(slots=True)
class AuditSettings:
    """Identity attributed to automated membership removals."""

    user_auditor: str = "federalist"


@dataclass(slots=True)
class GitHubSettings:
    """Source-host API client settings."""

    api_url: str = "https://api.github.com"
    request_timeout_seconds: float = 30.0
    max_retries: int = 3
    per_page: int = 100


@dataclass(slots=True)
class BuildBackendSettings:
    """Cloud Foundry API settings used to cancel build tasks."""

    api_url: str = "https://api.fr.cloud.gov"
    token: str = ""
    request_timeout_seconds: float = 30.0
    max_retries: int = 3


@dataclass(slots=True)
class QueueSettings:
    """Redis-backed dispatch queue settings."""

    redis_url: str = "redis://localhost:6379/0"
    name: str = "site-build-tasks"
    job_function: str = "pages_worker.tasks.send_task_message"
    job_timeout_seconds: int = 900


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    database_url: str = DEFAULT_DATABASE_URL
    builds: BuildSettings = field(default_factory=BuildSettings)
    audit: AuditSettings = field(default_factory=AuditSettings)
    github: GitHubSettings = field(default_factory=GitHubSettings)
    build_backend: BuildBackendSettings = field(default_factory=BuildBackendSettings)
    queue: QueueSettings = field(default_factory=QueueSettings)

    @classmethod
    def from_env(cls, database_url: str | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            database_url=database_url or os.getenv("PAGES_DATABASE_URL", DEFAULT_DATABASE_URL),
            builds=BuildSettings(
                timeout_minutes=int(
                    os.getenv(
                        "PAGES_BUILD_TIMEOUT_MINUTES",
                        os.getenv("BUILD_TIMEOUT", "45"),
                    ),
                ),
            ),
            audit=AuditSettings(
                user_auditor=os.getenv(
                    "PAGES_USER_AUDITOR",
                    os.getenv("USER_AUDITOR", "federalist"),
                ).strip(),
            ),
            github=GitHubSettings(
                api_url=os.getenv("PAGES_GITHUB_API_URL", "https://api.github.com"),
                request_timeout_seconds=float(os.getenv("PAGES_GITHUB_TIMEOUT_SECONDS", "30.0")),
                max_retries=int(os.getenv("PAGES_GITHUB_MAX_RETRIES", "3")),
                per_page=int(os.getenv("PAGES_GITHUB_PER_PAGE", "100")),
            ),
            build_backend=BuildBackendSettings(
                api_url=os.getenv("PAGES_CF_API_URL", "https://api.fr.cloud.gov"),
                token=os.getenv("PAGES_CF_API_TOKEN", ""),
                request_timeout_seconds=float(os.getenv("PAGES_CF_API_TIMEOUT_SECONDS", "30.0")),
                max_retries=int(os.getenv("PAGES_CF_API_MAX_RETRIES", "3")),
            ),
            queue=QueueSettings(
                redis_url=os.getenv("PAGES_REDIS_URL", "redis://localhost:6379/0"),
                name=os.getenv("PAGES_TASK_QUEUE_NAME", "site-build-tasks"),
                job_function=os.getenv(
                    "PAGES_TASK_JOB_FUNCTION",
                    "pages_worker.tasks.send_task_message",
                ).strip(),
                job_timeout_seconds=int(os.getenv("PAGES_TASK_JOB_TIMEOUT_SECONDS", "900")),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if any setting is out of range."""

        if self.builds.timeout_minutes <= 0:
            raise ValueError("PAGES_BUILD_TIMEOUT_MINUTES must be > 0.")
        if self.builds.task_ack_timeout_minutes <= 0:
            raise ValueError("Task acknowledgement timeout must be > 0.")
        if not self.audit.user_auditor:
            raise ValueError("PAGES_USER_AUDITOR must name the system auditor user.")
        if not 1 <= self.github.per_page <= 100:  # noqa: PLR2004
            raise ValueError("PAGES_GITHUB_PER_PAGE must be between 1 and 100.")
        if self.github.max_retries < 0 or self.build_backend.max_retries < 0:
            raise ValueError("Max retries must be >= 0.")
        _validate_http_url("PAGES_GITHUB_API_URL", self.github.api_url)
        _validate_http_url("PAGES_CF_API_URL", self.build_backend.api_url)
        if urlparse(self.queue.redis_url).scheme not in {"redis", "rediss", "unix"}:
            raise ValueError(f"Invalid PAGES_REDIS_URL: {self.queue.redis_url!r}")
        if not self.queue.name.strip():
            raise ValueError("PAGES_TASK_QUEUE_NAME must not be empty.")
        if "." not in self.queue.job_function:
            raise ValueError("PAGES_TASK_JOB_FUNCTION must be a dotted import path.")
        if self.queue.job_timeout_seconds <= 0:
            raise ValueError("PAGES_TASK_JOB_TIMEOUT_SECONDS must be > 0.")


def _validate_http_url(name: str, value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {name}: {value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )
