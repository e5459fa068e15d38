"""
Bring the persisted flaky-test records of a project into agreement with the
latest analysis.

    (none)  --flaky-->  active  --flaky-->  active (refreshed)
    active  --not flaky, or absent from the window-->  resolved
    resolved  --flaky-->  active

Ignored records are set from outside and are never changed here. They still
count as existing, so a test that flakes again while ignored does not get a
second record.

Every run re-derives the state from the analysis alone, so a failed or
partial run is corrected by the next one.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Iterable, Optional, assert_never

from flaketrack import analysis, queries
from flaketrack.config import FlakinessConfig
from flaketrack.db import DB
from flaketrack.log import debug
from flaketrack.models import FlakyStatus, FlakyTestRecord, TestFlakiness
from flaketrack.utils import utcnow

FLAKE_RATE_DECIMALS = 4


@dataclass
class Reconciliation:
    to_upsert: list[FlakyTestRecord] = field(default_factory=list)
    to_resolve: list[FlakyTestRecord] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.to_upsert or self.to_resolve)


@dataclass
class ReconcileSummary:
    updated: int
    resolved: int


def reconcile(
    project_id: str,
    tests: Iterable[TestFlakiness],
    existing: Iterable[FlakyTestRecord],
    now: Optional[datetime] = None,
) -> Reconciliation:
    """
    Compute the upserts and resolves that take `existing` to the state implied
    by `tests`. Pure: nothing is read or written.

    An upsert is only emitted when it would change the record, so applying the
    result and reconciling again yields an empty Reconciliation.
    """
    now = now or utcnow()
    existing_by_name = {r.test_name: r for r in existing}
    result = Reconciliation()
    seen = set()

    for test in tests:
        seen.add(test.test_name)
        record = existing_by_name.get(test.test_name)
        if test.is_flaky:
            upsert = _upsert(project_id, test, record, now)
            if upsert is not None:
                result.to_upsert.append(upsert)
        elif record is not None and _is_active(record):
            result.to_resolve.append(replace(record, status=FlakyStatus.RESOLVED))

    # Tests that are absent from the window were removed or renamed.
    for name, record in existing_by_name.items():
        if name not in seen and _is_active(record):
            result.to_resolve.append(replace(record, status=FlakyStatus.RESOLVED))

    return result


def _upsert(
    project_id: str,
    test: TestFlakiness,
    record: Optional[FlakyTestRecord],
    now: datetime,
) -> Optional[FlakyTestRecord]:
    flake_rate = round(test.flake_rate, FLAKE_RATE_DECIMALS)
    if record is None:
        return FlakyTestRecord(
            project_id=project_id,
            test_name=test.test_name,
            test_file=test.test_file,
            first_detected=now,
            last_seen=test.last_seen,
            flake_count=test.flake_count,
            total_runs=test.total_runs,
            flake_rate=flake_rate,
            status=FlakyStatus.ACTIVE,
        )
    match record.status:
        case FlakyStatus.IGNORED:
            return None
        case FlakyStatus.ACTIVE | FlakyStatus.RESOLVED:
            updated = replace(
                record,
                last_seen=test.last_seen,
                flake_count=test.flake_count,
                total_runs=test.total_runs,
                flake_rate=flake_rate,
                status=FlakyStatus.ACTIVE,
            )
            return updated if updated != record else None
        case _:
            assert_never(record.status)


def _is_active(record: FlakyTestRecord) -> bool:
    match record.status:
        case FlakyStatus.ACTIVE:
            return True
        case FlakyStatus.RESOLVED | FlakyStatus.IGNORED:
            return False
        case _:
            assert_never(record.status)


def apply(db: DB, reconciliation: Reconciliation) -> None:
    """
    Write a reconciliation to the store. Not transactional: a run that fails
    part-way is corrected by the next run.
    """
    for record in reconciliation.to_upsert:
        db.upsert_flaky_test(record)
    for record in reconciliation.to_resolve:
        db.resolve_flaky_test(record.project_id, record.test_name)


def update_flaky_tests(
    db: DB,
    project_id: str,
    config: FlakinessConfig,
    now: Optional[datetime] = None,
) -> ReconcileSummary:
    """
    Analyze the project's current window and reconcile its flaky-test records.
    """
    tests = analysis.analyze(db, project_id, config, now)
    existing = queries.flaky_tests(db, project_id)
    reconciliation = reconcile(project_id, tests, existing, now)
    debug(
        f"Reconciling project {project_id}: {len(reconciliation.to_upsert)} upserts, "
        f"{len(reconciliation.to_resolve)} resolves"
    )
    apply(db, reconciliation)
    return ReconcileSummary(
        updated=len(reconciliation.to_upsert),
        resolved=len(reconciliation.to_resolve),
    )
