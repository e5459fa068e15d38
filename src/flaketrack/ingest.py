import concurrent.futures
from dataclasses import dataclass
from typing import Any, Optional

import pydantic
from pydantic import BaseModel, Field

from flaketrack import playwright
from flaketrack.config import FlakinessConfig
from flaketrack.db import DB
from flaketrack.exceptions import ValidationError
from flaketrack.log import info, project_context, project_error
from flaketrack.models import Project, ReportSubmission
from flaketrack.reconcile import ReconcileSummary, update_flaky_tests


class SubmissionMetadata(BaseModel):
    branch: str = Field(default="main", min_length=1)
    commit: str = Field(min_length=1, max_length=40)
    pipeline: Optional[str] = None

    @classmethod
    def parse(
        cls, branch: str, commit: str, pipeline: Optional[str] = None
    ) -> "SubmissionMetadata":
        try:
            return cls(branch=branch, commit=commit, pipeline=pipeline or None)
        except pydantic.ValidationError as err:
            [first, *_] = err.errors()
            location = ".".join(str(part) for part in first["loc"])
            raise ValidationError(f"{location}: {first['msg']}") from err


@dataclass
class Ingestion:
    submission: ReportSubmission
    # Resolves to None if the flaky-test update failed; the failure is logged.
    reconciliation: concurrent.futures.Future[Optional[ReconcileSummary]]


class Ingester:
    """
    Persist test reports and keep the project's flaky-test records up to date.

    The report and its outcomes are written synchronously. The flaky-test
    update runs afterwards on a worker thread, so that its failure cannot
    affect the submission that triggered it.
    """

    def __init__(self, db: DB, config: FlakinessConfig = FlakinessConfig()):
        self.db = db
        self.config = config
        self.executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="flaketrack-reconcile"
        )

    def ingest(
        self,
        project: Project,
        raw_report: Any,
        metadata: SubmissionMetadata,
    ) -> Ingestion:
        """
        `raw_report` is either a decoded JSON report or the JSON text itself.

        Raises ValidationError if the report or metadata is malformed, in which
        case nothing is written.
        """
        if isinstance(raw_report, (str, bytes)):
            report = playwright.normalize_json(raw_report)
        else:
            report = playwright.normalize(raw_report)

        submission = self.db.insert_submission(
            project.id,
            report,
            branch=metadata.branch,
            commit_sha=metadata.commit,
            pipeline_id=metadata.pipeline,
        )
        s = submission.summary
        info(
            f"Ingested report for {project_context(project)} branch={metadata.branch} "
            f"commit={metadata.commit}: {s.total} tests, {s.passed} passed, "
            f"{s.failed} failed, {s.flaky} flaky, {s.skipped} skipped"
        )
        # DuckDB connections are not shared across threads.
        future = self.executor.submit(
            self._update_flaky_tests, self.db.cursor(), project
        )
        return Ingestion(submission=submission, reconciliation=future)

    def _update_flaky_tests(
        self, db: DB, project: Project
    ) -> Optional[ReconcileSummary]:
        try:
            summary = update_flaky_tests(db, project.id, self.config)
        except Exception as err:
            project_error(project, "Flaky test update failed", err)
            return None
        finally:
            db.connection.close()
        info(
            f"Updated flaky tests for {project_context(project)}: "
            f"{summary.updated} updated, {summary.resolved} resolved"
        )
        return summary

    def close(self) -> None:
        self.executor.shutdown(wait=True)

    def __enter__(self) -> "Ingester":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
