import json
from pathlib import Path
from typing import Iterator

import pytest

from flaketrack.db import DB, DBConfig
from flaketrack.models import Project


def attempt(
    status: str,
    duration: float = 1000,
    error: str | None = None,
    start: str | None = "2024-01-15T10:30:00.000Z",
) -> dict:
    result: dict = {"workerIndex": 0, "status": status, "duration": duration}
    if start is not None:
        result["startTime"] = start
    if error is not None:
        result["error"] = {"message": error}
    return result


def spec(title: str, *attempts: dict, file: str | None = None) -> dict:
    results = [dict(a, retry=i) for i, a in enumerate(attempts)]
    s: dict = {"title": title, "ok": True, "results": results}
    if file is not None:
        s["file"] = file
    return s


def file_suite(file: str, title: str, *specs: dict) -> dict:
    return {
        "title": file,
        "file": file,
        "specs": [],
        "suites": [{"title": title, "file": file, "specs": list(specs)}],
    }


SAMPLE_REPORT = {
    "config": {"rootDir": "/app/e2e", "version": "1.41.0", "workers": 2},
    "suites": [
        file_suite(
            "e2e/auth.spec.ts",
            "Login flow",
            spec(
                "should login with valid credentials",
                attempt("passed", 1200, start="2024-01-15T10:30:00.000Z"),
            ),
            spec(
                "should show error for invalid password",
                attempt("passed", 800, start="2024-01-15T10:30:01.500Z"),
            ),
        ),
        file_suite(
            "e2e/dashboard.spec.ts",
            "Dashboard",
            spec(
                "should load widgets",
                attempt("passed", 1500, start="2024-01-15T10:30:00.200Z"),
            ),
            spec(
                "should filter by date",
                attempt(
                    "failed",
                    2100,
                    error="Timeout 5000ms exceeded waiting for locator('.date-picker')",
                    start="2024-01-15T10:30:02.000Z",
                ),
                attempt("passed", 2400, start="2024-01-15T10:30:04.200Z"),
            ),
        ),
        file_suite(
            "e2e/checkout.spec.ts",
            "Checkout",
            spec(
                "should add item to cart",
                attempt("passed", 900, start="2024-01-15T10:30:00.400Z"),
            ),
            spec(
                "should complete purchase",
                attempt(
                    "failed",
                    3000,
                    error="expect(locator).toBeVisible() failed: Locator: getByText('Order confirmed')",
                    start="2024-01-15T10:30:01.400Z",
                ),
                attempt(
                    "failed",
                    3100,
                    error="expect(locator).toBeVisible() failed: Locator: getByText('Order confirmed')",
                    start="2024-01-15T10:30:04.500Z",
                ),
            ),
        ),
    ],
    "errors": [],
    "stats": {"startTime": "2024-01-15T10:30:00.000Z", "duration": 7600},
}


@pytest.fixture
def sample_report() -> dict:
    return json.loads(json.dumps(SAMPLE_REPORT))


@pytest.fixture
def sample_report_path(tmp_path: Path, sample_report: dict) -> Path:
    path = tmp_path / "report.json"
    path.write_text(json.dumps(sample_report))
    return path


@pytest.fixture
def db() -> Iterator[DB]:
    with DBConfig(path=None).connect() as db:
        yield db


@pytest.fixture
def project(db: DB) -> Project:
    return db.create_project("web-e2e")
