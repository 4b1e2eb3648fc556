from __future__ import annotations

import allure
import pytest

from pages_core.config import (
    DEFAULT_DATABASE_URL,
    BuildSettings,
    GitHubSettings,
    QueueSettings,
    Settings,
)

pytestmark = [
    allure.epic("Operations"),
    allure.feature("Configuration"),
]


def test_defaults_validate() -> None:
    settings = Settings()

    settings.validate()

    assert settings.database_url == DEFAULT_DATABASE_URL
    assert settings.builds.timeout_minutes == 45
    assert settings.builds.task_ack_timeout_minutes == 5
    assert settings.audit.user_auditor == "federalist"


def test_from_env_reads_prefixed_variables(monkeypatch) -> None:
    monkeypatch.setenv("PAGES_DATABASE_URL", "sqlite+aiosqlite:///tmp/pages.db")
    monkeypatch.setenv("PAGES_BUILD_TIMEOUT_MINUTES", "30")
    monkeypatch.setenv("PAGES_USER_AUDITOR", " auditor-bot ")
    monkeypatch.setenv("PAGES_TASK_QUEUE_NAME", "builds")
    monkeypatch.setenv("PAGES_TASK_JOB_FUNCTION", "workers.builds.run")
    monkeypatch.setenv("PAGES_TASK_JOB_TIMEOUT_SECONDS", "1200")

    settings = Settings.from_env()

    assert settings.database_url == "sqlite+aiosqlite:///tmp/pages.db"
    assert settings.builds.timeout_minutes == 30
    assert settings.audit.user_auditor == "auditor-bot"
    assert settings.queue.name == "builds"
    assert settings.queue.job_function == "workers.builds.run"
    assert settings.queue.job_timeout_seconds == 1200


def test_from_env_falls_back_to_legacy_variables(monkeypatch) -> None:
    monkeypatch.delenv("PAGES_BUILD_TIMEOUT_MINUTES", raising=False)
    monkeypatch.delenv("PAGES_USER_AUDITOR", raising=False)
    monkeypatch.setenv("BUILD_TIMEOUT", "60")
    monkeypatch.setenv("USER_AUDITOR", "legacy-auditor")

    settings = Settings.from_env()

    assert settings.builds.timeout_minutes == 60
    assert settings.audit.user_auditor == "legacy-auditor"


def test_explicit_database_url_wins_over_environment(monkeypatch) -> None:
    monkeypatch.setenv("PAGES_DATABASE_URL", "sqlite+aiosqlite:///env.db")

    settings = Settings.from_env(database_url="sqlite+aiosqlite:///cli.db")

    assert settings.database_url == "sqlite+aiosqlite:///cli.db"


def test_validate_rejects_non_positive_build_timeout() -> None:
    settings = Settings(builds=BuildSettings(timeout_minutes=0))

    with pytest.raises(ValueError, match="PAGES_BUILD_TIMEOUT_MINUTES"):
        settings.validate()


def test_validate_rejects_relative_api_url() -> None:
    settings = Settings(github=GitHubSettings(api_url="api.github.com"))

    with pytest.raises(ValueError, match="Invalid PAGES_GITHUB_API_URL"):
        settings.validate()


def test_validate_rejects_per_page_above_github_limit() -> None:
    settings = Settings(github=GitHubSettings(per_page=500))

    with pytest.raises(ValueError, match="PAGES_GITHUB_PER_PAGE"):
        settings.validate()


def test_validate_rejects_non_redis_queue_url() -> None:
    settings = Settings(queue=QueueSettings(redis_url="http://localhost:6379"))

    with pytest.raises(ValueError, match="Invalid PAGES_REDIS_URL"):
        settings.validate()


def test_validate_rejects_bare_job_function_name() -> None:
    settings = Settings(queue=QueueSettings(job_function="send_task_message"))

    with pytest.raises(ValueError, match="PAGES_TASK_JOB_FUNCTION"):
        settings.validate()
