from dataclasses import dataclass

from rich.console import Console, ConsoleOptions, RenderResult

from flaketrack import rich
from flaketrack.models import (
    FlakyTestRecord,
    Project,
    ReportSubmission,
    Serializable,
    TestFlakiness,
)


@dataclass
class ProjectsReport(Serializable):
    projects: list[Project]

    def to_dict(self) -> dict:
        return {"projects": [p.to_dict() for p in self.projects]}

    def __rich_console__(
        self, console: Console, options: ConsoleOptions
    ) -> RenderResult:
        return rich.render_projects(self.projects)


@dataclass
class RunsReport(Serializable):
    project: Project
    submissions: list[ReportSubmission]

    def to_dict(self) -> dict:
        return {
            "project": self.project.name,
            "runs": [s.to_dict() for s in self.submissions],
        }

    def __rich_console__(
        self, console: Console, options: ConsoleOptions
    ) -> RenderResult:
        return rich.render_submissions(self.submissions)


@dataclass
class FlakyTestsReport(Serializable):
    project: Project
    records: list[FlakyTestRecord]

    def to_dict(self) -> dict:
        return {
            "project": self.project.name,
            "flaky_tests": [r.to_dict() for r in self.records],
        }

    def __rich_console__(
        self, console: Console, options: ConsoleOptions
    ) -> RenderResult:
        return rich.render_flaky_records(self.records)


@dataclass
class AnalysisReport(Serializable):
    project: Project
    window_days: int
    threshold: float
    tests: list[TestFlakiness]

    @property
    def flaky_tests(self) -> list[TestFlakiness]:
        return [t for t in self.tests if t.is_flaky]

    def to_dict(self) -> dict:
        return {
            "project": self.project.name,
            "window_days": self.window_days,
            "threshold": self.threshold,
            "flaky_tests": [t.to_dict() for t in self.flaky_tests],
            "all_tests": [t.to_dict() for t in self.tests],
        }

    def __rich_console__(
        self, console: Console, options: ConsoleOptions
    ) -> RenderResult:
        return rich.render_analysis(self.tests, self.window_days, self.threshold)
