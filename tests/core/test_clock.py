from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from taskload.core.clock import FixedClock, SystemClock


def test_system_clock_returns_aware_utc() -> None:
    now = SystemClock().now()

    assert now.tzinfo is not None
    assert now.utcoffset() == timedelta(0)


def test_fixed_clock_set_and_advance() -> None:
    clock = FixedClock(datetime(2025, 1, 10, 8, 0, tzinfo=timezone.utc))

    assert clock.now() == datetime(2025, 1, 10, 8, 0, tzinfo=timezone.utc)
    assert clock.advance(minutes=5) == datetime(2025, 1, 10, 8, 5, tzinfo=timezone.utc)
    assert clock.advance(days=1, seconds=30) == datetime(2025, 1, 11, 8, 5, 30, tzinfo=timezone.utc)

    clock.set(datetime(2025, 2, 1))
    assert clock.now() == datetime(2025, 2, 1, tzinfo=timezone.utc)


def test_fixed_clock_normalizes_offsets_to_utc() -> None:
    tz = timezone(timedelta(hours=8))
    clock = FixedClock(datetime(2025, 1, 10, 16, 0, tzinfo=tz))

    assert clock.now() == datetime(2025, 1, 10, 8, 0, tzinfo=timezone.utc)
    assert clock.now().tzinfo == timezone.utc


@pytest.mark.parametrize("kwargs", [{}, {"seconds": 0}, {"minutes": -1}])
def test_fixed_clock_rejects_non_positive_advance(kwargs: dict[str, float]) -> None:
    clock = FixedClock(datetime(2025, 1, 10, tzinfo=timezone.utc))

    with pytest.raises(ValueError):
        clock.advance(**kwargs)
