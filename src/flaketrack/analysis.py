"""
Our definition of a flaky test is deliberately simple:

> A test is flaky if, among its non-skipped runs in the trailing window, the
fraction that failed or were flaky is at least the configured threshold.

A test that fails on every run therefore counts as flaky (with a flake rate
of 1) rather than as broken; there is no separate "broken" category.

Tests are identified by name only, so a renamed test starts a new history.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, assert_never

from flaketrack import queries
from flaketrack.config import FlakinessConfig
from flaketrack.db import DB
from flaketrack.log import debug
from flaketrack.models import TestFlakiness, TestStatus, WindowOutcome


@dataclass
class _Counts:
    test_file: str
    last_seen: datetime
    passed: int = 0
    failed: int = 0
    flaky: int = 0
    skipped: int = 0


def analyze_outcomes(
    outcomes: Iterable[WindowOutcome], config: FlakinessConfig
) -> list[TestFlakiness]:
    """
    Compute per-test flakiness from the outcomes of one analysis window.

    Tests with fewer than `config.min_runs` non-skipped runs are left out.
    The result is ordered by flake rate, highest first.
    """
    counts: dict[str, _Counts] = {}
    for outcome in outcomes:
        c = counts.get(outcome.test_name)
        if c is None:
            # Outcomes arrive newest first, so this is the most recent file.
            c = counts[outcome.test_name] = _Counts(
                test_file=outcome.test_file or "", last_seen=outcome.created_at
            )
        match outcome.status:
            case TestStatus.PASSED:
                c.passed += 1
            case TestStatus.FAILED:
                c.failed += 1
            case TestStatus.FLAKY:
                c.flaky += 1
            case TestStatus.SKIPPED:
                c.skipped += 1
            case _:
                assert_never(outcome.status)
        if outcome.created_at > c.last_seen:
            c.last_seen = outcome.created_at

    results = []
    for test_name, c in counts.items():
        total_runs = c.passed + c.failed + c.flaky
        if total_runs < config.min_runs:
            continue
        flake_rate = (c.failed + c.flaky) / total_runs
        results.append(
            TestFlakiness(
                test_name=test_name,
                test_file=c.test_file,
                total_runs=total_runs,
                pass_count=c.passed,
                fail_count=c.failed,
                flaky_count=c.flaky,
                skip_count=c.skipped,
                flake_rate=flake_rate,
                is_flaky=flake_rate >= config.flake_threshold,
                last_seen=c.last_seen,
            )
        )
    results.sort(key=lambda t: t.flake_rate, reverse=True)
    return results


def analyze(
    db: DB,
    project_id: str,
    config: FlakinessConfig,
    now: Optional[datetime] = None,
) -> list[TestFlakiness]:
    outcomes = queries.window_outcomes(db, project_id, config.window_days, now)
    debug(
        f"Analyzing {len(outcomes)} outcomes for project {project_id} "
        f"over {config.window_days} days"
    )
    return analyze_outcomes(outcomes, config)
