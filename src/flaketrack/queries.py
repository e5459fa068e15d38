"""
A query is a function
(DB, Params) -> T
or
(DB, Params) -> list[T].

Parameters are bound by DuckDB ($name placeholders), never interpolated.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from textwrap import dedent
from typing import Any, Generic, Mapping, Optional, TypedDict, TypeVar

from flaketrack.db import DB
from flaketrack.exceptions import FlaketrackQueryException, ProjectNotFound
from flaketrack.models import (
    FlakyStatus,
    FlakyTestRecord,
    HistoryEntry,
    OutcomeSummary,
    Project,
    ProjectStats,
    ReportSubmission,
    TestHistory,
    TestStatus,
    WindowOutcome,
)
from flaketrack.utils import clamp, utcnow


P = TypeVar("P", bound=Mapping[str, Any])
R = TypeVar("R")


@dataclass
class Query(Generic[P, R]):
    sql: str

    def fetchall(self, db: DB, params: P) -> list[R]:
        return db.connection.execute(self.sql, dict(params) or None).fetchall()

    def fetchone(self, db: DB, params: P) -> R:
        return db.fetchone(self.sql, dict(params) or None)

    def __post_init__(self):
        self.sql = dedent(self.sql).strip()


class EmptyParams(TypedDict):
    pass


class ProjectParams(TypedDict):
    project_id: str


class NameParams(TypedDict):
    name: str


_project_by_name = Query[NameParams, tuple[str, str, datetime]](
    "select id, name, created_at from project where name = $name;"
).fetchone


def project_by_name(db: DB, name: str) -> Project:
    try:
        return Project(*_project_by_name(db, {"name": name}))
    except FlaketrackQueryException as err:
        raise ProjectNotFound(f"No such project: {name}") from err


_projects = Query[EmptyParams, tuple[str, str, datetime]](
    "select id, name, created_at from project order by name;"
).fetchall


def projects(db: DB) -> list[Project]:
    return [Project(*row) for row in _projects(db, {})]


class WindowParams(TypedDict):
    project_id: str
    cutoff: datetime


_window_outcomes = Query[WindowParams, tuple[str, str, str, datetime]](
    """
    select o.test_name, o.test_file, o.status, o.created_at
    from test_outcome o
    join report_submission s on o.submission_id = s.id
    where s.project_id = $project_id and o.created_at >= $cutoff
    order by o.created_at desc;
    """
).fetchall


def window_outcomes(
    db: DB, project_id: str, window_days: int, now: Optional[datetime] = None
) -> list[WindowOutcome]:
    """
    All outcomes of a project's tests in the trailing window, newest first.
    """
    cutoff = (now or utcnow()) - timedelta(days=window_days)
    return [
        WindowOutcome(test_name, test_file, TestStatus(status), created_at)
        for test_name, test_file, status, created_at in _window_outcomes(
            db, {"project_id": project_id, "cutoff": cutoff}
        )
    ]


FLAKY_TEST_COLUMNS = """
    id, project_id, test_name, test_file, first_detected, last_seen,
    flake_count, total_runs, flake_rate, status
"""


def _flaky_test_record(row: tuple) -> FlakyTestRecord:
    (
        id,
        project_id,
        test_name,
        test_file,
        first_detected,
        last_seen,
        flake_count,
        total_runs,
        flake_rate,
        status,
    ) = row
    return FlakyTestRecord(
        id=id,
        project_id=project_id,
        test_name=test_name,
        test_file=test_file,
        first_detected=first_detected,
        last_seen=last_seen,
        flake_count=flake_count,
        total_runs=total_runs,
        flake_rate=float(flake_rate) if isinstance(flake_rate, Decimal) else flake_rate,
        status=FlakyStatus(status),
    )


_flaky_tests = Query[ProjectParams, tuple](
    f"""
    select {FLAKY_TEST_COLUMNS} from flaky_test
    where project_id = $project_id
    order by flake_rate desc, test_name;
    """
).fetchall


class StatusParams(TypedDict):
    project_id: str
    status: str


_flaky_tests_with_status = Query[StatusParams, tuple](
    f"""
    select {FLAKY_TEST_COLUMNS} from flaky_test
    where project_id = $project_id and status = $status
    order by flake_rate desc, test_name;
    """
).fetchall


def flaky_tests(
    db: DB, project_id: str, status: Optional[FlakyStatus] = None
) -> list[FlakyTestRecord]:
    if status is None:
        rows = _flaky_tests(db, {"project_id": project_id})
    else:
        rows = _flaky_tests_with_status(
            db, {"project_id": project_id, "status": status.value}
        )
    return [_flaky_test_record(row) for row in rows]


class RecordParams(TypedDict):
    project_id: str
    test_name: str


_flaky_test = Query[RecordParams, tuple](
    f"""
    select {FLAKY_TEST_COLUMNS} from flaky_test
    where project_id = $project_id and test_name = $test_name;
    """
).fetchall


def flaky_test(db: DB, project_id: str, test_name: str) -> Optional[FlakyTestRecord]:
    rows = _flaky_test(db, {"project_id": project_id, "test_name": test_name})
    return _flaky_test_record(rows[0]) if rows else None


class LimitParams(TypedDict):
    project_id: str
    limit: int


_submissions = Query[LimitParams, tuple](
    """
    select id, project_id, branch, commit_sha, pipeline_id, started_at, finished_at,
        total_tests, passed, failed, skipped, flaky, created_at
    from report_submission
    where project_id = $project_id
    order by created_at desc
    limit $limit;
    """
).fetchall


def recent_submissions(db: DB, project_id: str, limit: int = 20) -> list[ReportSubmission]:
    def make(row: tuple) -> ReportSubmission:
        (
            id,
            project_id,
            branch,
            commit_sha,
            pipeline_id,
            started_at,
            finished_at,
            total,
            passed,
            failed,
            skipped,
            flaky,
            created_at,
        ) = row
        return ReportSubmission(
            id=id,
            project_id=project_id,
            branch=branch,
            commit_sha=commit_sha,
            pipeline_id=pipeline_id,
            started_at=started_at,
            finished_at=finished_at,
            summary=OutcomeSummary(total, passed, failed, skipped, flaky),
            created_at=created_at,
        )

    params: LimitParams = {"project_id": project_id, "limit": clamp(limit, 1, 100)}
    return [make(row) for row in _submissions(db, params)]


class HistoryParams(TypedDict):
    project_id: str
    test_name: str
    limit: int


_history = Query[HistoryParams, tuple](
    """
    select s.id, s.branch, s.commit_sha, s.pipeline_id,
        o.test_file, o.status, o.duration_ms, o.retry_count, o.error_message, o.created_at
    from test_outcome o
    join report_submission s on o.submission_id = s.id
    where s.project_id = $project_id and o.test_name = $test_name
    order by o.created_at desc
    limit $limit;
    """
).fetchall


def history(db: DB, project_id: str, test_name: str, limit: int = 50) -> TestHistory:
    params: HistoryParams = {
        "project_id": project_id,
        "test_name": test_name,
        "limit": clamp(limit, 1, 100),
    }
    entries = [
        HistoryEntry(
            submission_id,
            branch,
            commit_sha,
            pipeline_id,
            test_file,
            TestStatus(status),
            duration_ms,
            retry_count,
            error_message,
            created_at,
        )
        for (
            submission_id,
            branch,
            commit_sha,
            pipeline_id,
            test_file,
            status,
            duration_ms,
            retry_count,
            error_message,
            created_at,
        ) in _history(db, params)
    ]
    return TestHistory(
        test_name=test_name,
        flaky_record=flaky_test(db, project_id, test_name),
        entries=entries,
    )


class StatsParams(TypedDict):
    project_id: str
    since: datetime


_project_stats = Query[StatsParams, tuple[int, int, int, int]](
    """
    select
        (select count(*) from flaky_test
            where project_id = $project_id and status = 'active'),
        (select count(*) from flaky_test
            where project_id = $project_id and status = 'resolved' and last_seen >= $since),
        (select count(*) from report_submission where project_id = $project_id),
        (select coalesce(sum(total_tests), 0) from report_submission
            where project_id = $project_id);
    """
).fetchone


def project_stats(db: DB, project: Project, now: Optional[datetime] = None) -> ProjectStats:
    since = (now or utcnow()) - timedelta(days=7)
    active, resolved, runs, tests = _project_stats(
        db, {"project_id": project.id, "since": since}
    )
    return ProjectStats(
        project=project,
        active_flaky_tests=active,
        resolved_this_week=resolved,
        total_runs=runs,
        total_tests=int(tests),
    )
