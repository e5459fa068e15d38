from typing import Annotated

import typer

from flaketrack.config import FlakinessConfig

DEFAULT_CONFIG = FlakinessConfig()

ProjectOption = Annotated[
    str,
    typer.Option(
        "--project",
        "-p",
        help="Name of the project, e.g. `--project web-e2e`.",
    ),
]

WindowDaysOption = Annotated[
    int,
    typer.Option(help="Number of trailing days of test outcomes to analyze."),
]

ThresholdOption = Annotated[
    float,
    typer.Option(help="Flake rate (0-1) at or above which a test is flaky."),
]

MinRunsOption = Annotated[
    int,
    typer.Option(help="Minimum non-skipped runs in the window for a test to be analyzed."),
]


def make_config(window_days: int, threshold: float, min_runs: int) -> FlakinessConfig:
    return FlakinessConfig(
        window_days=window_days, flake_threshold=threshold, min_runs=min_runs
    )