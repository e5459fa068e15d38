import shutil
import sys
import warnings
from pathlib import Path
from typing import Annotated, Optional

import duckdb
import typer
from rich.text import Text

import flaketrack.repl
from flaketrack import cli, queries
from flaketrack.cli import flakes as flakes_cli
from flaketrack.cli import project as project_cli
from flaketrack.cli.output import print_result
from flaketrack.cli.params import (
    DEFAULT_CONFIG,
    MinRunsOption,
    ProjectOption,
    ThresholdOption,
    WindowDaysOption,
    make_config,
)
from flaketrack.cli.reports import RunsReport
from flaketrack.db import DB
from flaketrack.exceptions import FlaketrackException, ProjectNotFound
from flaketrack.ingest import Ingester, SubmissionMetadata
from flaketrack.log import error, info
from flaketrack.models import Project
from flaketrack.rich import print

app = typer.Typer(rich_markup_mode="rich")

app.callback()(cli.set_options)

app.add_typer(project_cli.app, name="project", help="Manage projects.")
app.add_typer(flakes_cli.app, name="flakes", help="Inspect and manage flaky tests.")


@app.command()
def ingest(
    report: Annotated[
        str,
        typer.Argument(help="Path to a Playwright JSON report, or `-` to read stdin."),
    ],
    project: ProjectOption,
    commit: Annotated[str, typer.Option(help="Commit SHA the report was produced for.")],
    branch: Annotated[str, typer.Option(help="Branch the report was produced for.")] = "main",
    pipeline: Annotated[Optional[str], typer.Option(help="CI pipeline ID.")] = None,
    create_project: Annotated[
        bool, typer.Option(help="Create the project if it does not exist.")
    ] = False,
    window_days: WindowDaysOption = DEFAULT_CONFIG.window_days,
    threshold: ThresholdOption = DEFAULT_CONFIG.flake_threshold,
    min_runs: MinRunsOption = DEFAULT_CONFIG.min_runs,
) -> None:
    """
    Ingest a Playwright JSON report and update the project's flaky tests.
    """
    config = make_config(window_days, threshold, min_runs)
    metadata = SubmissionMetadata.parse(branch=branch, commit=commit, pipeline=pipeline)
    data = _read_report(report)
    with cli.options.db_config.connect() as db:
        p = _get_project(db, project, create_project)
        with Ingester(db, config) as ingester:
            ingestion = ingester.ingest(p, data, metadata)
        print_result(ingestion.submission)


def _read_report(report: str) -> bytes:
    if report == "-":
        return sys.stdin.buffer.read()
    path = Path(report)
    if not path.is_file():
        raise typer.BadParameter(f"No such file: {report}")
    return path.read_bytes()


def _get_project(db: DB, name: str, create: bool) -> Project:
    try:
        return queries.project_by_name(db, name)
    except ProjectNotFound:
        if not create:
            raise
        info("Creating project", name)
        return db.create_project(name)


@app.command()
def runs(
    project: ProjectOption,
    limit: Annotated[int, typer.Option(help="Number of runs to show (1-100).")] = 20,
) -> None:
    """Show the most recent report submissions of a project."""
    with cli.options.db_config.connect() as db:
        p = queries.project_by_name(db, project)
        print_result(RunsReport(p, queries.recent_submissions(db, p.id, limit)))


@app.command()
def history(
    test_name: Annotated[str, typer.Argument(help="Full test name.")],
    project: ProjectOption,
    limit: Annotated[int, typer.Option(help="Number of runs to show (1-100).")] = 50,
) -> None:
    """Show the run history of a single test."""
    with cli.options.db_config.connect() as db:
        p = queries.project_by_name(db, project)
        test_history = queries.history(db, p.id, test_name, limit)
        print_result(test_history)
        if cli.options.verbose > 1 and not cli.options.json:
            for entry in test_history.entries:
                if entry.error_message:
                    # Error messages are test output, not markup.
                    print(
                        Text(entry.commit_sha[:12], style="bold red"),
                        Text(entry.error_message),
                    )


@app.command()
def repl(
    repl: Annotated[
        Optional[flaketrack.repl.Repl],
        typer.Option(
            help=(
                "REPL type. "
                "Default is sql if duckdb CLI is installed, otherwise python. "
                "See https://duckdb.org/docs/api/python/overview.html for the duckdb Python API."
            ),
        ),
    ] = None,
) -> None:
    """
    Start an interactive REPL allowing execution of SQL queries against the database.
    """
    if repl is None:
        repl = (
            flaketrack.repl.Repl.SQL
            if shutil.which("duckdb") and cli.options.db_config.path
            else flaketrack.repl.Repl.PYTHON
        )
    with cli.options.db_config.connect() as db:
        flaketrack.repl.repl(db, repl)


@app.command()
def dropdb() -> None:
    """
    Delete the database.
    """
    path = cli.options.db_config.path
    if not path:
        error("No database path configured")
        exit(1)
    if not path.exists():
        error("Path does not exist:", path)
        exit(1)
    path.unlink()
    info("Deleted database at", path)


warnings.filterwarnings(
    "ignore",
    message="Attempting to work in a virtualenv. If you encounter problems, please install IPython inside the virtualenv.",
)


def main():
    try:
        app()
    except FlaketrackException as e:
        error(e)
        exit(1)
    except duckdb.IOException as e:
        error(
            f"{e}\n\nIt looks like you left a flaketrack REPL open? Connecting to the DB from multiple processes is not supported currently."
        )
        exit(1)
