from datetime import datetime
from typing import TYPE_CHECKING, Optional

import humanize
from rich.console import Console, RenderResult
from rich.table import Table
from rich.text import Text

from flaketrack.utils import utcnow

if TYPE_CHECKING:
    from flaketrack.models import (
        FlakyTestRecord,
        Project,
        ProjectStats,
        ReportSubmission,
        TestFlakiness,
        TestHistory,
    )

console = Console()

print = console.print
print_json = console.print_json


STATUS_STYLES = {
    "passed": "green",
    "failed": "bold red",
    "skipped": "dim",
    "flaky": "bold yellow",
    "active": "bold yellow",
    "resolved": "green",
    "ignored": "dim",
}


def styled_status(status: str) -> Text:
    return Text(status, style=STATUS_STYLES.get(status, ""))


def naturaltime(dt: Optional[datetime]) -> str:
    if dt is None:
        return "-"
    return humanize.naturaltime(dt, when=utcnow())


def percent(rate: float) -> str:
    return f"{rate:.1%}"


def render_submission(submission: "ReportSubmission") -> RenderResult:
    s = submission

    def rows():
        yield ("Submission", s.id)
        yield ("Branch", s.branch)
        yield ("Commit", s.commit_sha)
        if s.pipeline_id:
            yield ("Pipeline", s.pipeline_id)
        if s.started_at and s.finished_at:
            elapsed = humanize.precisedelta(
                s.finished_at - s.started_at, minimum_unit="milliseconds"
            )
            yield ("Elapsed", elapsed)
        yield ("Total", Text(str(s.summary.total), style="bold"))
        yield ("Passed", Text(str(s.summary.passed), style=STATUS_STYLES["passed"]))
        yield ("Failed", Text(str(s.summary.failed), style=STATUS_STYLES["failed"]))
        yield ("Flaky", Text(str(s.summary.flaky), style=STATUS_STYLES["flaky"]))
        yield ("Skipped", Text(str(s.summary.skipped), style=STATUS_STYLES["skipped"]))

    table = Table(show_header=False)
    for row in rows():
        table.add_row(*row)
    yield table


def render_submissions(submissions: list["ReportSubmission"]) -> RenderResult:
    table = Table("Submitted", "Branch", "Commit", "Pipeline", "Total", "Failed", "Flaky")
    for s in submissions:
        table.add_row(
            naturaltime(s.created_at),
            s.branch,
            s.commit_sha[:12],
            s.pipeline_id or "",
            str(s.summary.total),
            Text(str(s.summary.failed), style=STATUS_STYLES["failed"]),
            Text(str(s.summary.flaky), style=STATUS_STYLES["flaky"]),
        )
    yield table


def render_flaky_records(records: list["FlakyTestRecord"]) -> RenderResult:
    table = Table("Test", "File", "Rate", "Flakes", "Runs", "Last seen", "Status")
    for r in records:
        table.add_row(
            r.test_name,
            r.test_file,
            percent(r.flake_rate),
            str(r.flake_count),
            str(r.total_runs),
            naturaltime(r.last_seen),
            styled_status(r.status.value),
        )
    yield table


def render_analysis(
    tests: list["TestFlakiness"], window_days: int, threshold: float
) -> RenderResult:
    yield Text(
        f"Last {window_days} days, flaky at >= {percent(threshold)}", style="bold"
    )
    table = Table("Test", "Rate", "Passed", "Failed", "Flaky", "Runs", "Last seen")
    for t in tests:
        table.add_row(
            Text(t.test_name, style=STATUS_STYLES["flaky"] if t.is_flaky else ""),
            percent(t.flake_rate),
            str(t.pass_count),
            str(t.fail_count),
            str(t.flaky_count),
            str(t.total_runs),
            naturaltime(t.last_seen),
        )
    yield table


def render_projects(projects: list["Project"]) -> RenderResult:
    table = Table("Project", "Created")
    for p in projects:
        table.add_row(p.name, naturaltime(p.created_at))
    yield table


def render_project_stats(stats: "ProjectStats") -> RenderResult:
    def rows():
        yield ("Project", Text(stats.project.name, style="bold"))
        yield (
            "Active flaky tests",
            Text(str(stats.active_flaky_tests), style=STATUS_STYLES["active"]),
        )
        yield ("Resolved this week", str(stats.resolved_this_week))
        yield ("Report submissions", str(stats.total_runs))
        yield ("Tests executed", str(stats.total_tests))

    table = Table(show_header=False)
    for row in rows():
        table.add_row(*row)
    yield table


def render_test_history(history: "TestHistory") -> RenderResult:
    h = history
    summary = h.summary

    def rows():
        yield ("Test", Text(h.test_name, style="bold"))
        if h.flaky_record is not None:
            yield ("Flaky status", styled_status(h.flaky_record.status.value))
            yield ("Flake rate", percent(h.flaky_record.flake_rate))
            yield ("First detected", naturaltime(h.flaky_record.first_detected))
        yield ("Runs", str(summary.total))
        yield (
            "Passed / failed / flaky / skipped",
            f"{summary.passed} / {summary.failed} / {summary.flaky} / {summary.skipped}",
        )
        yield ("Average duration", f"{h.avg_duration_ms} ms")

    table = Table(show_header=False)
    for row in rows():
        table.add_row(*row)
    yield table

    history_table = Table("When", "Branch", "Commit", "Status", "Retries", "Duration")
    for e in h.entries:
        history_table.add_row(
            naturaltime(e.created_at),
            e.branch,
            e.commit_sha[:12],
            styled_status(e.status.value),
            str(e.retry_count),
            f"{e.duration_ms} ms",
        )
    yield history_table
