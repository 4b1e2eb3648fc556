"""CLI entrypoint for pages-core."""

import logging
from collections.abc import Callable
from datetime import datetime

import rich_click as click

from pages_core import __version__
from pages_core.controllers import (
    AuditCommand,
    EnqueueBuildCommand,
    EnqueueTaskCommand,
    InitDbCommand,
    PagesCliController,
    TimeoutBuildsCommand,
)
from pages_core.errors import PagesError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = PagesCliController()

database_url_option = click.option(
    "--database-url",
    default=None,
    help="SQLAlchemy async database URL. Defaults to PAGES_DATABASE_URL.",
)


@click.group()
@click.version_option(version=__version__, prog_name="pages-core")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Root logger level.",
)
def pages_core(log_level: str) -> None:
    """Build orchestration and site access audits."""

    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@pages_core.group()
def db() -> None:
    """Database commands."""


@db.command("init")
@database_url_option
def db_init(database_url: str | None) -> None:
    """Create missing tables."""

    _emit_lines(_invoke(lambda: CONTROLLER.init_db(InitDbCommand(database_url=database_url))))


@pages_core.group()
def tasks() -> None:
    """Build task dispatch commands."""


@tasks.command("enqueue")
@database_url_option
@click.argument("task_id", type=click.IntRange(min=1))
def tasks_enqueue(database_url: str | None, task_id: int) -> None:
    """Enqueue one created build task with its computed priority."""

    _emit_lines(
        _invoke(
            lambda: CONTROLLER.enqueue_task(
                EnqueueTaskCommand(database_url=database_url, task_id=task_id),
            ),
        ),
    )


@tasks.command("enqueue-build")
@database_url_option
@click.argument("build_id", type=click.IntRange(min=1))
def tasks_enqueue_build(database_url: str | None, build_id: int) -> None:
    """Enqueue every created task of a build."""

    _emit_lines(
        _invoke(
            lambda: CONTROLLER.enqueue_build(
                EnqueueBuildCommand(database_url=database_url, build_id=build_id),
            ),
        ),
    )


@pages_core.group()
def builds() -> None:
    """Build lifecycle commands."""


@builds.command("timeout")
@database_url_option
@click.option(
    "--now",
    type=click.DateTime(formats=["%Y-%m-%dT%H:%M:%S%z", "%Y-%m-%dT%H:%M:%S"]),
    default=None,
    help="Reference time for the sweep (ISO 8601). Naive values are treated as UTC.",
)
def builds_timeout(database_url: str | None, now: datetime | None) -> None:
    """Fail stalled builds and request cancellation of their jobs."""

    _emit_lines(
        _invoke(
            lambda: CONTROLLER.timeout_builds(
                TimeoutBuildsCommand(database_url=database_url, now=now),
            ),
        ),
    )


@pages_core.group()
def audit() -> None:
    """Site access audit commands."""


@audit.command("users")
@database_url_option
def audit_users(database_url: str | None) -> None:
    """Remove each user from sites it can no longer push to."""

    _emit_lines(_invoke(lambda: CONTROLLER.audit_users(AuditCommand(database_url=database_url))))


@audit.command("sites")
@database_url_option
def audit_sites(database_url: str | None) -> None:
    """Remove site members missing from the repository's push collaborators."""

    _emit_lines(_invoke(lambda: CONTROLLER.audit_sites(AuditCommand(database_url=database_url))))


def _invoke(action: Callable[[], list[str]]) -> list[str]:
    try:
        return action()
    except (PagesError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    pages_core()
