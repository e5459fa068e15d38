from enum import StrEnum
from typing import Annotated, Optional

import typer

from flaketrack import analysis, cli, queries
from flaketrack.cli.output import print_result
from flaketrack.cli.params import (
    DEFAULT_CONFIG,
    MinRunsOption,
    ProjectOption,
    ThresholdOption,
    WindowDaysOption,
    make_config,
)
from flaketrack.cli.reports import AnalysisReport, FlakyTestsReport
from flaketrack.exceptions import FlaketrackException
from flaketrack.log import info
from flaketrack.models import FlakyStatus
from flaketrack.reconcile import update_flaky_tests

app = typer.Typer(rich_markup_mode="rich")


class StatusFilter(StrEnum):
    ACTIVE = "active"
    RESOLVED = "resolved"
    IGNORED = "ignored"
    ALL = "all"

    def to_status(self) -> Optional[FlakyStatus]:
        return None if self == StatusFilter.ALL else FlakyStatus(self.value)


TestNameArgument = Annotated[
    str,
    typer.Argument(
        help="Full test name, e.g. 'Login flow › should login'.",
    ),
]


@app.command("list")
def list_(
    project: ProjectOption,
    status: Annotated[
        StatusFilter, typer.Option(help="Only show records with this status.")
    ] = StatusFilter.ACTIVE,
) -> None:
    """List the recorded flaky tests of a project, highest flake rate first."""
    with cli.options.db_config.connect() as db:
        p = queries.project_by_name(db, project)
        print_result(FlakyTestsReport(p, queries.flaky_tests(db, p.id, status.to_status())))


@app.command()
def analyze(
    project: ProjectOption,
    window_days: WindowDaysOption = DEFAULT_CONFIG.window_days,
    threshold: ThresholdOption = DEFAULT_CONFIG.flake_threshold,
    min_runs: MinRunsOption = DEFAULT_CONFIG.min_runs,
) -> None:
    """
    Analyze the current window of test outcomes without updating the recorded flaky tests.
    """
    config = make_config(window_days, threshold, min_runs)
    with cli.options.db_config.connect() as db:
        p = queries.project_by_name(db, project)
        tests = analysis.analyze(db, p.id, config)
        print_result(AnalysisReport(p, window_days, threshold, tests))


@app.command()
def update(
    project: ProjectOption,
    window_days: WindowDaysOption = DEFAULT_CONFIG.window_days,
    threshold: ThresholdOption = DEFAULT_CONFIG.flake_threshold,
    min_runs: MinRunsOption = DEFAULT_CONFIG.min_runs,
) -> None:
    """
    Re-run the analysis and reconcile the recorded flaky tests with it.
    """
    config = make_config(window_days, threshold, min_runs)
    with cli.options.db_config.connect() as db:
        p = queries.project_by_name(db, project)
        summary = update_flaky_tests(db, p.id, config)
        info(f"{summary.updated} updated, {summary.resolved} resolved")
        print_result(FlakyTestsReport(p, queries.flaky_tests(db, p.id, FlakyStatus.ACTIVE)))


@app.command()
def ignore(test_name: TestNameArgument, project: ProjectOption) -> None:
    """
    Ignore a flaky test. Ignored tests are never reactivated or resolved by analysis.
    """
    _set_status(project, test_name, FlakyStatus.IGNORED)


@app.command()
def unignore(test_name: TestNameArgument, project: ProjectOption) -> None:
    """
    Stop ignoring a flaky test. The next analysis decides whether it is active.
    """
    _set_status(project, test_name, FlakyStatus.RESOLVED)


def _set_status(project: str, test_name: str, status: FlakyStatus) -> None:
    with cli.options.db_config.connect() as db:
        p = queries.project_by_name(db, project)
        if not db.set_flaky_test_status(p.id, test_name, status):
            raise FlaketrackException(f"No flaky test record for {test_name!r} in {project}")
        info(f"Marked {test_name!r} as {status.value}")
