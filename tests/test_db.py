from datetime import datetime, timedelta

import duckdb
import pytest

from flaketrack import queries
from flaketrack.db import BATCH_SIZE, DBConfig
from flaketrack.exceptions import DuplicateProject, ProjectNotFound, ValidationError
from flaketrack.models import (
    FlakyStatus,
    FlakyTestRecord,
    NormalizedReport,
    TestOutcome,
    TestStatus,
)
from flaketrack.playwright import normalize

NOW = datetime(2024, 1, 15, 12, 0, 0)


def outcome(name: str, status: TestStatus = TestStatus.PASSED, **kwargs) -> TestOutcome:
    fields = dict(
        test_name=name,
        test_file="e2e/a.spec.ts",
        status=status,
        duration_ms=100,
        retry_count=0,
        error_message=None,
    )
    fields.update(kwargs)
    return TestOutcome(**fields)


def report(*outcomes: TestOutcome) -> NormalizedReport:
    return NormalizedReport(outcomes=list(outcomes), started_at=None, finished_at=None)


def flaky_record(project_id: str, test_name: str, **kwargs) -> FlakyTestRecord:
    fields = dict(
        project_id=project_id,
        test_name=test_name,
        test_file="e2e/a.spec.ts",
        first_detected=NOW,
        last_seen=NOW,
        flake_count=1,
        total_runs=4,
        flake_rate=0.25,
        status=FlakyStatus.ACTIVE,
    )
    fields.update(kwargs)
    return FlakyTestRecord(**fields)


def test_create_and_look_up_project(db, project):
    assert queries.project_by_name(db, "web-e2e") == project
    assert queries.projects(db) == [project]


def test_duplicate_project_name(db, project):
    with pytest.raises(DuplicateProject):
        db.create_project("web-e2e")


def test_empty_project_name(db):
    with pytest.raises(ValidationError):
        db.create_project("")


def test_unknown_project(db):
    with pytest.raises(ProjectNotFound):
        queries.project_by_name(db, "nope")


def test_insert_submission(db, project, sample_report):
    submission = db.insert_submission(
        project.id,
        normalize(sample_report),
        branch="main",
        commit_sha="abc123",
        pipeline_id="42",
    )
    [stored] = queries.recent_submissions(db, project.id)
    assert stored == submission
    assert stored.summary.total == 6
    assert stored.summary.flaky == 1
    assert stored.started_at == datetime(2024, 1, 15, 10, 30, 0)
    assert stored.pipeline_id == "42"

    count = db.connection.execute(
        "select count(*) from test_outcome where submission_id = ?", [submission.id]
    ).fetchone()
    assert count == (6,)


def test_insert_submission_without_outcomes(db, project):
    submission = db.insert_submission(project.id, report(), "main", "abc123")
    assert submission.summary.total == 0
    assert len(queries.recent_submissions(db, project.id)) == 1


def test_insert_many_outcomes(db, project):
    n = BATCH_SIZE * 2 + 500
    db.insert_submission(
        project.id,
        report(*(outcome(f"test {i}") for i in range(n))),
        "main",
        "abc123",
    )
    [(count,)] = db.connection.execute("select count(*) from test_outcome").fetchall()
    assert count == n


def test_failed_submission_is_rolled_back(db, project):
    # A NULL test name violates a NOT NULL constraint.
    bad = report(outcome("fine"), outcome(None))
    with pytest.raises(duckdb.ConstraintException):
        db.insert_submission(project.id, bad, "main", "abc123")
    assert queries.recent_submissions(db, project.id) == []
    [(count,)] = db.connection.execute("select count(*) from test_outcome").fetchall()
    assert count == 0


def test_recent_submissions_newest_first_and_limited(db, project):
    for i in range(5):
        db.insert_submission(
            project.id, report(), "main", f"sha{i}", created_at=NOW + timedelta(hours=i)
        )
    assert [s.commit_sha for s in queries.recent_submissions(db, project.id, 2)] == [
        "sha4",
        "sha3",
    ]
    assert len(queries.recent_submissions(db, project.id, 0)) == 1
    assert len(queries.recent_submissions(db, project.id, 1000)) == 5


def test_upsert_keeps_one_record_per_test(db, project):
    db.upsert_flaky_test(flaky_record(project.id, "t"))
    db.upsert_flaky_test(
        flaky_record(
            project.id,
            "t",
            first_detected=NOW + timedelta(days=1),
            last_seen=NOW + timedelta(days=1),
            flake_count=3,
            flake_rate=0.75,
        )
    )
    [r] = queries.flaky_tests(db, project.id)
    assert r.flake_count == 3
    assert r.flake_rate == 0.75
    assert r.last_seen == NOW + timedelta(days=1)
    assert r.first_detected == NOW
    assert r.id is not None


def test_same_test_name_in_two_projects(db, project):
    other = db.create_project("other")
    db.upsert_flaky_test(flaky_record(project.id, "t"))
    db.upsert_flaky_test(flaky_record(other.id, "t"))
    assert len(queries.flaky_tests(db, project.id)) == 1
    assert len(queries.flaky_tests(db, other.id)) == 1


def test_resolve_only_affects_active_records(db, project):
    db.upsert_flaky_test(flaky_record(project.id, "active"))
    db.upsert_flaky_test(flaky_record(project.id, "ignored", status=FlakyStatus.IGNORED))
    db.resolve_flaky_test(project.id, "active")
    db.resolve_flaky_test(project.id, "ignored")
    statuses = {r.test_name: r.status for r in queries.flaky_tests(db, project.id)}
    assert statuses == {"active": FlakyStatus.RESOLVED, "ignored": FlakyStatus.IGNORED}


def test_flaky_tests_filter_and_order(db, project):
    db.upsert_flaky_test(flaky_record(project.id, "low", flake_rate=0.1))
    db.upsert_flaky_test(flaky_record(project.id, "high", flake_rate=0.9))
    db.upsert_flaky_test(
        flaky_record(project.id, "done", flake_rate=0.5, status=FlakyStatus.RESOLVED)
    )
    assert [r.test_name for r in queries.flaky_tests(db, project.id)] == [
        "high",
        "done",
        "low",
    ]
    assert [
        r.test_name for r in queries.flaky_tests(db, project.id, FlakyStatus.ACTIVE)
    ] == ["high", "low"]
    assert queries.flaky_test(db, project.id, "done").status == FlakyStatus.RESOLVED
    assert queries.flaky_test(db, project.id, "missing") is None


def test_set_flaky_test_status(db, project):
    db.upsert_flaky_test(flaky_record(project.id, "t"))
    assert db.set_flaky_test_status(project.id, "t", FlakyStatus.IGNORED)
    assert queries.flaky_test(db, project.id, "t").status == FlakyStatus.IGNORED
    assert not db.set_flaky_test_status(project.id, "missing", FlakyStatus.IGNORED)


def test_history(db, project):
    for i, status in enumerate([TestStatus.PASSED, TestStatus.FLAKY, TestStatus.FAILED]):
        db.insert_submission(
            project.id,
            report(
                outcome(
                    "t",
                    status,
                    duration_ms=100 * (i + 1),
                    error_message=None if status == TestStatus.PASSED else "boom",
                ),
                outcome("other"),
            ),
            branch=f"branch-{i}",
            commit_sha=f"sha{i}",
            created_at=NOW + timedelta(hours=i),
        )
    history = queries.history(db, project.id, "t")
    assert [e.status for e in history.entries] == [
        TestStatus.FAILED,
        TestStatus.FLAKY,
        TestStatus.PASSED,
    ]
    assert history.entries[0].branch == "branch-2"
    assert history.entries[0].error_message == "boom"
    assert history.summary.total == 3
    assert history.summary.flaky == 1
    assert history.avg_duration_ms == 200
    assert history.flaky_record is None

    assert len(queries.history(db, project.id, "t", limit=2).entries) == 2
    assert queries.history(db, project.id, "missing").entries == []


def test_project_stats(db, project):
    db.insert_submission(project.id, report(outcome("a"), outcome("b")), "main", "sha1")
    db.insert_submission(project.id, report(outcome("a")), "main", "sha2")
    db.upsert_flaky_test(flaky_record(project.id, "active"))
    db.upsert_flaky_test(
        flaky_record(project.id, "recent", status=FlakyStatus.RESOLVED, last_seen=NOW)
    )
    db.upsert_flaky_test(
        flaky_record(
            project.id,
            "old",
            status=FlakyStatus.RESOLVED,
            last_seen=NOW - timedelta(days=30),
        )
    )
    stats = queries.project_stats(db, project, now=NOW)
    assert stats.active_flaky_tests == 1
    assert stats.resolved_this_week == 1
    assert stats.total_runs == 2
    assert stats.total_tests == 3


def test_project_stats_empty_project(db, project):
    stats = queries.project_stats(db, project)
    assert (stats.active_flaky_tests, stats.total_runs, stats.total_tests) == (0, 0, 0)


def test_delete_project(db, project, sample_report):
    other = db.create_project("other")
    for p in (project, other):
        db.insert_submission(p.id, normalize(sample_report), "main", "abc123")
        db.upsert_flaky_test(flaky_record(p.id, "t"))

    db.delete_project(project.id)

    with pytest.raises(ProjectNotFound):
        queries.project_by_name(db, "web-e2e")
    [(outcomes,)] = db.connection.execute("select count(*) from test_outcome").fetchall()
    assert outcomes == 6
    assert len(queries.recent_submissions(db, other.id)) == 1
    assert len(queries.flaky_tests(db, other.id)) == 1
    assert queries.flaky_tests(db, project.id) == []


def test_database_file_persists(tmp_path, sample_report):
    config = DBConfig(path=tmp_path / "flaketrack.duckdb")
    with config.connect() as db:
        project = db.create_project("web-e2e")
        db.insert_submission(project.id, normalize(sample_report), "main", "abc123")
    with config.connect() as db:
        [submission] = queries.recent_submissions(db, project.id)
        assert submission.summary.total == 6
