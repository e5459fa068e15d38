from datetime import datetime, timedelta, timezone

from flaketrack.utils import as_utc, clamp, utcnow


def test_utcnow_is_naive():
    assert utcnow().tzinfo is None


def test_as_utc():
    tz = timezone(timedelta(hours=-5))
    assert as_utc(datetime(2024, 1, 15, 7, 0, tzinfo=tz)) == datetime(2024, 1, 15, 12, 0)
    assert as_utc(datetime(2024, 1, 15, 7, 0)) == datetime(2024, 1, 15, 7, 0)
    assert as_utc(None) is None


def test_clamp():
    assert [clamp(n, 1, 100) for n in (-5, 0, 1, 50, 100, 101)] == [1, 1, 1, 50, 100, 100]
