"""
Normalize Playwright JSON reports into one outcome per spec.

A report is a tree of suites. Suites contain specs and further suites, and
each spec carries the ordered attempts made by the test runner (the first
run plus any retries). Normalization collapses the attempts of a spec into a
single status, duration, retry count and error message.

https://playwright.dev/docs/test-reporters#json-reporter
"""

from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any, Iterator, Optional, assert_never

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from flaketrack.exceptions import ValidationError
from flaketrack.models import NormalizedReport, TestOutcome, TestStatus
from flaketrack.utils import as_utc

# Part of every test's identity: stored history is looked up by the joined name.
TEST_NAME_SEPARATOR = " › "

SOURCE_EXTENSIONS = (".ts", ".tsx", ".mts", ".cts", ".js", ".jsx", ".mjs", ".cjs")

# Longest attempt duration accepted, in milliseconds (one week).
MAX_ATTEMPT_DURATION_MS = 7 * 24 * 60 * 60 * 1000


class AttemptStatus(StrEnum):
    PASSED = "passed"
    FAILED = "failed"
    TIMED_OUT = "timedOut"
    SKIPPED = "skipped"
    INTERRUPTED = "interrupted"


class _Model(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class AttemptError(_Model):
    message: Optional[str] = None
    stack: Optional[str] = None
    value: Optional[str] = None
    snippet: Optional[str] = None


class Attempt(_Model):
    status: AttemptStatus
    duration: float = Field(ge=0, le=MAX_ATTEMPT_DURATION_MS)
    start_time: Optional[datetime] = Field(default=None, alias="startTime")
    retry: Optional[int] = None
    worker_index: Optional[int] = Field(default=None, alias="workerIndex")
    error: Optional[AttemptError] = None
    errors: list[AttemptError] = []


class Location(_Model):
    file: str
    line: Optional[int] = None
    column: Optional[int] = None


class Spec(_Model):
    title: str
    file: Optional[str] = None
    location: Optional[Location] = None
    results: list[Attempt] = []


class Suite(_Model):
    title: str
    file: Optional[str] = None
    specs: list[Spec] = []
    suites: list["Suite"] = []


class RawReport(_Model):
    config: Optional[dict[str, Any]] = None
    suites: list[Suite]
    errors: list[Any] = []
    stats: Optional[dict[str, Any]] = None


def normalize(raw_report: Any) -> NormalizedReport:
    """
    Validate a decoded report (e.g. the result of `json.load`) and flatten it.

    Raises ValidationError describing the first violation if the report does
    not have the expected shape.
    """
    try:
        report = RawReport.model_validate(raw_report)
    except pydantic.ValidationError as err:
        raise _validation_error(err) from err
    return _normalize(report)


def normalize_json(data: str | bytes) -> NormalizedReport:
    try:
        report = RawReport.model_validate_json(data)
    except pydantic.ValidationError as err:
        raise _validation_error(err) from err
    return _normalize(report)


def _validation_error(err: pydantic.ValidationError) -> ValidationError:
    [first, *_] = err.errors()
    location = ".".join(str(part) for part in first["loc"]) or "report"
    return ValidationError(f"Invalid Playwright report: {location}: {first['msg']}")


def _normalize(report: RawReport) -> NormalizedReport:
    outcomes = []
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    for spec, title_path, suite_file in _walk(report.suites, (), None):
        if not spec.results:
            continue
        test_name = TEST_NAME_SEPARATOR.join((*title_path, spec.title))
        outcomes.append(
            TestOutcome(
                test_name=test_name,
                test_file=_resolve_file(spec, suite_file),
                status=resolve_status([a.status for a in spec.results]),
                duration_ms=round(sum(a.duration for a in spec.results)),
                retry_count=max(0, len(spec.results) - 1),
                error_message=_first_error_message(spec.results),
            )
        )
        # Tests run in parallel, so the report spans from the earliest attempt
        # start to the latest attempt end.
        for attempt in spec.results:
            start = as_utc(attempt.start_time)
            if start is None:
                continue
            try:
                end = start + timedelta(milliseconds=attempt.duration)
            except OverflowError as err:
                raise ValidationError(
                    f"Invalid Playwright report: {test_name}: attempt {attempt.retry}: "
                    f"startTime {attempt.start_time} plus duration is out of range"
                ) from err
            if started_at is None or start < started_at:
                started_at = start
            if finished_at is None or end > finished_at:
                finished_at = end

    return NormalizedReport(
        outcomes=outcomes, started_at=started_at, finished_at=finished_at
    )


def _walk(
    suites: list[Suite], title_path: tuple[str, ...], suite_file: Optional[str]
) -> Iterator[tuple[Spec, tuple[str, ...], Optional[str]]]:
    for suite in suites:
        file = suite.file or suite_file
        path = title_path
        if suite.title and not is_file_title(suite.title):
            path = (*title_path, suite.title)
        for spec in suite.specs:
            yield spec, path, file
        yield from _walk(suite.suites, path, file)


def is_file_title(title: str) -> bool:
    """
    Playwright emits a suite per test file, titled with the file path. Such
    suites carry the file association only and are not part of the test name.
    """
    return title.endswith(SOURCE_EXTENSIONS) or "/" in title or "\\" in title


def resolve_status(attempts: list[AttemptStatus]) -> TestStatus:
    """
    Collapse the attempts of one spec into a single status.

    Any pass together with any failure is flaky, whatever the order of the
    attempts. Otherwise the last attempt decides.
    """
    if not attempts:
        raise ValueError("A spec without attempts has no status")
    if all(a == AttemptStatus.SKIPPED for a in attempts):
        return TestStatus.SKIPPED
    passed = AttemptStatus.PASSED in attempts
    failed = any(a in (AttemptStatus.FAILED, AttemptStatus.TIMED_OUT) for a in attempts)
    if passed and failed:
        return TestStatus.FLAKY
    match attempts[-1]:
        case AttemptStatus.PASSED:
            return TestStatus.PASSED
        case AttemptStatus.SKIPPED:
            return TestStatus.SKIPPED
        case AttemptStatus.FAILED | AttemptStatus.TIMED_OUT | AttemptStatus.INTERRUPTED:
            return TestStatus.FAILED
        case _:
            assert_never(attempts[-1])


def _resolve_file(spec: Spec, suite_file: Optional[str]) -> str:
    if spec.file:
        return spec.file
    if spec.location is not None and spec.location.file:
        return spec.location.file
    return suite_file or ""


def _first_error_message(attempts: list[Attempt]) -> Optional[str]:
    for attempt in attempts:
        errors = [attempt.error] if attempt.error is not None else []
        for error in errors + attempt.errors:
            if error.message:
                return error.message
    return None
