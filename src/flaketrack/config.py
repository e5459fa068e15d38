from dataclasses import dataclass

from flaketrack.exceptions import ConfigurationError


@dataclass(frozen=True)
class FlakinessConfig:
    # Trailing number of days of test outcomes considered by one analysis.
    window_days: int = 14
    # A test whose flake rate is at or above this is flaky.
    flake_threshold: float = 0.05
    # Tests with fewer non-skipped runs in the window are left out.
    min_runs: int = 3

    def __post_init__(self):
        if self.window_days < 1:
            raise ConfigurationError(
                f"window_days must be at least 1, got {self.window_days}"
            )
        if not 0 <= self.flake_threshold <= 1:
            raise ConfigurationError(
                f"flake_threshold must be between 0 and 1, got {self.flake_threshold}"
            )
        if self.min_runs < 1:
            raise ConfigurationError(f"min_runs must be at least 1, got {self.min_runs}")
