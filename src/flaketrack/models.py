from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Iterable, NamedTuple, Optional, Protocol, assert_never

from rich.console import Console, ConsoleOptions, RenderResult

from flaketrack import rich


class Serializable(Protocol):
    def to_dict(self) -> dict: ...


class TestStatus(StrEnum):
    __test__ = False

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    FLAKY = "flaky"


class FlakyStatus(StrEnum):
    ACTIVE = "active"
    RESOLVED = "resolved"
    IGNORED = "ignored"


def _isoformat(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt is not None else None


@dataclass
class Project(Serializable):
    id: str
    name: str
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": _isoformat(self.created_at),
        }


class TestOutcome(NamedTuple):
    """The resolved result of one spec in one report."""

    __test__ = False

    test_name: str
    test_file: str
    status: TestStatus
    duration_ms: int  # Summed over all attempts
    retry_count: int
    error_message: Optional[str]


@dataclass
class OutcomeSummary(Serializable):
    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    flaky: int = 0

    @classmethod
    def from_statuses(cls, statuses: Iterable[TestStatus]) -> "OutcomeSummary":
        summary = cls()
        for status in statuses:
            summary.total += 1
            match status:
                case TestStatus.PASSED:
                    summary.passed += 1
                case TestStatus.FAILED:
                    summary.failed += 1
                case TestStatus.SKIPPED:
                    summary.skipped += 1
                case TestStatus.FLAKY:
                    summary.flaky += 1
                case _:
                    assert_never(status)
        return summary

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "skipped": self.skipped,
            "flaky": self.flaky,
        }


@dataclass
class NormalizedReport:
    outcomes: list[TestOutcome]
    started_at: Optional[datetime]
    finished_at: Optional[datetime]

    @property
    def summary(self) -> OutcomeSummary:
        return OutcomeSummary.from_statuses(o.status for o in self.outcomes)


@dataclass
class ReportSubmission(Serializable):
    id: str
    project_id: str
    branch: str
    commit_sha: str
    pipeline_id: Optional[str]
    started_at: Optional[datetime]
    finished_at: Optional[datetime]
    summary: OutcomeSummary
    created_at: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "branch": self.branch,
            "commit": self.commit_sha,
            "pipeline": self.pipeline_id,
            "started_at": _isoformat(self.started_at),
            "finished_at": _isoformat(self.finished_at),
            "summary": self.summary.to_dict(),
            "created_at": _isoformat(self.created_at),
        }

    def __rich_console__(
        self, console: Console, options: ConsoleOptions
    ) -> RenderResult:
        return rich.render_submission(self)


class WindowOutcome(NamedTuple):
    test_name: str
    test_file: str
    status: TestStatus
    created_at: datetime


@dataclass
class TestFlakiness(Serializable):
    __test__ = False

    test_name: str
    test_file: str
    total_runs: int  # passed + failed + flaky; skipped runs are not counted
    pass_count: int
    fail_count: int
    flaky_count: int
    skip_count: int
    flake_rate: float
    is_flaky: bool
    last_seen: datetime

    @property
    def flake_count(self) -> int:
        return self.fail_count + self.flaky_count

    def to_dict(self) -> dict:
        return {
            "test_name": self.test_name,
            "test_file": self.test_file,
            "total_runs": self.total_runs,
            "pass_count": self.pass_count,
            "fail_count": self.fail_count,
            "flaky_count": self.flaky_count,
            "skip_count": self.skip_count,
            "flake_rate": self.flake_rate,
            "is_flaky": self.is_flaky,
            "last_seen": _isoformat(self.last_seen),
        }


@dataclass
class FlakyTestRecord(Serializable):
    project_id: str
    test_name: str
    test_file: str
    first_detected: datetime
    last_seen: datetime
    flake_count: int
    total_runs: int
    flake_rate: float  # Rounded to 4 decimal places
    status: FlakyStatus
    id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "test_name": self.test_name,
            "test_file": self.test_file,
            "first_detected": _isoformat(self.first_detected),
            "last_seen": _isoformat(self.last_seen),
            "flake_count": self.flake_count,
            "total_runs": self.total_runs,
            "flake_rate": self.flake_rate,
            "status": self.status.value,
        }


class HistoryEntry(NamedTuple):
    submission_id: str
    branch: str
    commit_sha: str
    pipeline_id: Optional[str]
    test_file: str
    status: TestStatus
    duration_ms: int
    retry_count: int
    error_message: Optional[str]
    created_at: datetime


@dataclass
class TestHistory(Serializable):
    __test__ = False

    test_name: str
    flaky_record: Optional[FlakyTestRecord]
    entries: list[HistoryEntry] = field(default_factory=list)

    @property
    def summary(self) -> OutcomeSummary:
        return OutcomeSummary.from_statuses(e.status for e in self.entries)

    @property
    def avg_duration_ms(self) -> int:
        if not self.entries:
            return 0
        return round(sum(e.duration_ms for e in self.entries) / len(self.entries))

    def to_dict(self) -> dict:
        return {
            "test_name": self.test_name,
            "flaky_record": self.flaky_record.to_dict() if self.flaky_record else None,
            "stats": {**self.summary.to_dict(), "avg_duration_ms": self.avg_duration_ms},
            "history": [
                {
                    "submission_id": e.submission_id,
                    "branch": e.branch,
                    "commit": e.commit_sha,
                    "pipeline": e.pipeline_id,
                    "test_file": e.test_file,
                    "status": e.status.value,
                    "duration_ms": e.duration_ms,
                    "retry_count": e.retry_count,
                    "error_message": e.error_message,
                    "created_at": _isoformat(e.created_at),
                }
                for e in self.entries
            ],
        }

    def __rich_console__(
        self, console: Console, options: ConsoleOptions
    ) -> RenderResult:
        return rich.render_test_history(self)


@dataclass
class ProjectStats(Serializable):
    project: Project
    active_flaky_tests: int
    resolved_this_week: int
    total_runs: int
    total_tests: int

    def to_dict(self) -> dict:
        return {
            "project": self.project.to_dict(),
            "active_flaky_tests": self.active_flaky_tests,
            "resolved_this_week": self.resolved_this_week,
            "total_runs": self.total_runs,
            "total_tests": self.total_tests,
        }

    def __rich_console__(
        self, console: Console, options: ConsoleOptions
    ) -> RenderResult:
        return rich.render_project_stats(self)
