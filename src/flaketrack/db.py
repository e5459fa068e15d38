import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, Optional

import duckdb
import pandas as pd

from flaketrack.exceptions import (
    DuplicateProject,
    FlaketrackQueryException,
    ValidationError,
)
from flaketrack.log import debug
from flaketrack.models import (
    FlakyStatus,
    FlakyTestRecord,
    NormalizedReport,
    Project,
    ReportSubmission,
)
from flaketrack.utils import utcnow

# Outcome rows are inserted in chunks of this size.
BATCH_SIZE = 1000

CREATE_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS project (
    id VARCHAR PRIMARY KEY,
    name VARCHAR NOT NULL UNIQUE,
    created_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS report_submission (
    id VARCHAR PRIMARY KEY,
    project_id VARCHAR NOT NULL,
    branch VARCHAR NOT NULL,
    commit_sha VARCHAR NOT NULL,
    pipeline_id VARCHAR,
    started_at TIMESTAMP,
    finished_at TIMESTAMP,
    total_tests INTEGER NOT NULL,
    passed INTEGER NOT NULL,
    failed INTEGER NOT NULL,
    skipped INTEGER NOT NULL,
    flaky INTEGER NOT NULL,
    created_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS test_outcome (
    id VARCHAR NOT NULL,
    submission_id VARCHAR NOT NULL,
    test_name VARCHAR NOT NULL,
    test_file VARCHAR NOT NULL,
    status VARCHAR NOT NULL,
    duration_ms BIGINT NOT NULL,
    retry_count INTEGER NOT NULL,
    error_message VARCHAR,
    created_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS flaky_test (
    id VARCHAR PRIMARY KEY,
    project_id VARCHAR NOT NULL,
    test_name VARCHAR NOT NULL,
    test_file VARCHAR NOT NULL,
    first_detected TIMESTAMP NOT NULL,
    last_seen TIMESTAMP NOT NULL,
    flake_count INTEGER NOT NULL,
    total_runs INTEGER NOT NULL,
    flake_rate DECIMAL(5, 4) NOT NULL,
    status VARCHAR NOT NULL,
    UNIQUE (project_id, test_name)
);
"""

CREATE_INDEX_SQL = """
CREATE INDEX IF NOT EXISTS idx_submission_project ON report_submission(project_id);
CREATE INDEX IF NOT EXISTS idx_outcome_submission ON test_outcome(submission_id);
CREATE INDEX IF NOT EXISTS idx_outcome_test_name ON test_outcome(test_name);
"""

OUTCOME_COLUMNS = (
    "id",
    "submission_id",
    "test_name",
    "test_file",
    "status",
    "duration_ms",
    "retry_count",
    "error_message",
    "created_at",
)

INSERT_SUBMISSION_SQL = """
INSERT INTO report_submission (
    id,
    project_id,
    branch,
    commit_sha,
    pipeline_id,
    started_at,
    finished_at,
    total_tests,
    passed,
    failed,
    skipped,
    flaky,
    created_at
)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

# first_detected is written on insert only.
UPSERT_FLAKY_TEST_SQL = """
INSERT INTO flaky_test (
    id,
    project_id,
    test_name,
    test_file,
    first_detected,
    last_seen,
    flake_count,
    total_runs,
    flake_rate,
    status
)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (project_id, test_name) DO UPDATE SET
    last_seen = excluded.last_seen,
    flake_count = excluded.flake_count,
    total_runs = excluded.total_runs,
    flake_rate = excluded.flake_rate,
    status = excluded.status;
"""


@dataclass
class DB:
    connection: duckdb.DuckDBPyConnection
    path: Optional[Path]

    def create_schema(self) -> None:
        self.connection.execute(CREATE_SCHEMA_SQL)
        self.connection.execute(CREATE_INDEX_SQL)

    def cursor(self) -> "DB":
        """
        A new connection to the same database, for use from another thread.
        """
        return DB(self.connection.cursor(), self.path)

    @contextmanager
    def transaction(self) -> Iterator[None]:
        self.connection.begin()
        try:
            yield
        except BaseException:
            self.connection.rollback()
            raise
        else:
            self.connection.commit()

    def fetchone(self, sql: str, params: Optional[dict[str, Any]] = None) -> Any:
        rows = self.connection.execute(sql, params).fetchall()
        if not rows:
            raise FlaketrackQueryException(f"Query returned no results:\n{sql}")
        if not len(rows) == 1:
            raise FlaketrackQueryException(f"Query did not return a single row:\n{sql}")
        return rows[0]

    def create_project(self, name: str) -> Project:
        if not name:
            raise ValidationError("Project name must not be empty")
        project = Project(id=str(uuid.uuid4()), name=name, created_at=utcnow())
        try:
            self.connection.execute(
                "INSERT INTO project (id, name, created_at) VALUES (?, ?, ?)",
                [project.id, project.name, project.created_at],
            )
        except duckdb.ConstraintException as err:
            raise DuplicateProject(f"Project already exists: {name}") from err
        debug(f"Created project {name} ({project.id})")
        return project

    def delete_project(self, project_id: str) -> None:
        """Delete a project together with all of its submissions and records."""
        with self.transaction():
            self.connection.execute(
                """
                DELETE FROM test_outcome WHERE submission_id IN (
                    SELECT id FROM report_submission WHERE project_id = ?
                )
                """,
                [project_id],
            )
            self.connection.execute(
                "DELETE FROM report_submission WHERE project_id = ?", [project_id]
            )
            self.connection.execute(
                "DELETE FROM flaky_test WHERE project_id = ?", [project_id]
            )
            self.connection.execute("DELETE FROM project WHERE id = ?", [project_id])

    def insert_submission(
        self,
        project_id: str,
        report: NormalizedReport,
        branch: str,
        commit_sha: str,
        pipeline_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> ReportSubmission:
        """
        Persist a submission and its outcome rows atomically.
        """
        submission = ReportSubmission(
            id=str(uuid.uuid4()),
            project_id=project_id,
            branch=branch,
            commit_sha=commit_sha,
            pipeline_id=pipeline_id,
            started_at=report.started_at,
            finished_at=report.finished_at,
            summary=report.summary,
            created_at=created_at or utcnow(),
        )
        s = submission.summary
        with self.transaction():
            self.connection.execute(
                INSERT_SUBMISSION_SQL,
                [
                    submission.id,
                    submission.project_id,
                    submission.branch,
                    submission.commit_sha,
                    submission.pipeline_id,
                    submission.started_at,
                    submission.finished_at,
                    s.total,
                    s.passed,
                    s.failed,
                    s.skipped,
                    s.flaky,
                    submission.created_at,
                ],
            )
            self._insert_outcomes(submission, report)
        return submission

    def _insert_outcomes(
        self, submission: ReportSubmission, report: NormalizedReport
    ) -> None:
        # Inserting columns from a dataframe is more efficient than inserting
        # rows from a SQL INSERT statement.
        df = pd.DataFrame(
            [
                (
                    str(uuid.uuid4()),
                    submission.id,
                    o.test_name,
                    o.test_file,
                    o.status.value,
                    o.duration_ms,
                    o.retry_count,
                    o.error_message,
                    submission.created_at,
                )
                for o in report.outcomes
            ],
            columns=list(OUTCOME_COLUMNS),
        )
        if df.empty:
            return
        debug(f"Inserting {len(df)} outcome rows into {self}")
        columns = ", ".join(OUTCOME_COLUMNS)
        for start in range(0, len(df), BATCH_SIZE):
            chunk = df.iloc[start : start + BATCH_SIZE]
            self.connection.register("outcome_chunk", chunk)
            try:
                self.connection.execute(
                    f"INSERT INTO test_outcome ({columns}) "
                    f"SELECT {columns} FROM outcome_chunk"
                )
            finally:
                self.connection.unregister("outcome_chunk")

    def upsert_flaky_test(self, record: FlakyTestRecord) -> None:
        # The id is only used on insert; a conflicting row keeps its own id.
        self.connection.execute(
            UPSERT_FLAKY_TEST_SQL,
            [
                str(uuid.uuid4()),
                record.project_id,
                record.test_name,
                record.test_file,
                record.first_detected,
                record.last_seen,
                record.flake_count,
                record.total_runs,
                record.flake_rate,
                record.status.value,
            ],
        )

    def resolve_flaky_test(self, project_id: str, test_name: str) -> None:
        self.connection.execute(
            """
            UPDATE flaky_test SET status = ?
            WHERE project_id = ? AND test_name = ? AND status = ?
            """,
            [
                FlakyStatus.RESOLVED.value,
                project_id,
                test_name,
                FlakyStatus.ACTIVE.value,
            ],
        )

    def set_flaky_test_status(
        self, project_id: str, test_name: str, status: FlakyStatus
    ) -> bool:
        """
        Set the lifecycle status of a record from outside the analysis, e.g.
        to ignore a test. Returns False if there is no record for the test.
        """
        updated = self.connection.execute(
            """
            UPDATE flaky_test SET status = ?
            WHERE project_id = ? AND test_name = ?
            RETURNING id
            """,
            [status.value, project_id, test_name],
        ).fetchall()
        return bool(updated)

    def __str__(self) -> str:
        return f"DuckDB({self.path or ':memory:'})"


@dataclass
class DBConfig:
    path: Optional[Path]

    @contextmanager
    def connect(self) -> Iterator[DB]:
        conn = duckdb.connect(str(self.path)) if self.path else duckdb.connect()
        try:
            db = DB(conn, self.path)
            db.create_schema()
            yield db
        finally:
            conn.close()
