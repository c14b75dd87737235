"""Tests for frequency descriptor parsing."""

from datetime import UTC, datetime, timedelta

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from vigil.scheduler.frequency import (
    CONTINUOUS,
    DEFAULT_INTERVAL,
    Interval,
    is_continuous,
    next_run_after,
    parse_frequency,
)

T = datetime(2025, 6, 1, 9, 0, tzinfo=UTC)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("Every 5 minutes", timedelta(minutes=5)),
        ("Every 30 minutes", timedelta(minutes=30)),
        ("Every minute", timedelta(minutes=1)),
        ("Every hour", timedelta(hours=1)),
        ("Hourly", timedelta(hours=1)),
        ("Every 6 hours", timedelta(hours=6)),
        ("Every 24 hours", timedelta(hours=24)),
        ("Daily", timedelta(days=1)),
        ("Every 2 days", timedelta(days=2)),
        ("Weekly", timedelta(days=7)),
        ("Every 2 weeks", timedelta(weeks=2)),
        ("  EVERY 10 MINUTES  ", timedelta(minutes=10)),
    ],
)
def test_parses_known_descriptors(text: str, expected: timedelta) -> None:
    assert parse_frequency(text) == Interval(expected)


@pytest.mark.parametrize(
    "text", ["Real-time", "real-time", "REAL-TIME", " Real-time ", "Continuous", "continuous"]
)
def test_real_time_and_continuous_are_continuous(text: str) -> None:
    assert parse_frequency(text) is CONTINUOUS
    assert is_continuous(text)


@pytest.mark.parametrize("text", ["garbage", "", "Every blue moon", "Now and then"])
def test_unrecognized_defaults_to_24_hours(text: str) -> None:
    assert parse_frequency(text) == Interval(DEFAULT_INTERVAL)
    assert DEFAULT_INTERVAL == timedelta(hours=24)


def test_none_defaults_to_24_hours() -> None:
    assert parse_frequency(None) == Interval(timedelta(hours=24))


def test_zero_count_falls_back_to_one() -> None:
    assert parse_frequency("Every 0 minutes") == Interval(timedelta(minutes=1))


def test_huge_count_does_not_raise() -> None:
    assert parse_frequency("Every 99999999999999 weeks") == Interval(DEFAULT_INTERVAL)


def test_unrecognized_logs_warning(caplog: pytest.LogCaptureFixture) -> None:
    parse_frequency("sometimes")
    assert "Unrecognized frequency" in caplog.text


# -- next_run_after ------------------------------------------------------------


def test_next_run_after_interval() -> None:
    assert next_run_after("Every 24 hours", T) == T + timedelta(hours=24)


def test_next_run_after_continuous_is_none() -> None:
    assert next_run_after("Real-time", T) is None
    assert next_run_after("Continuous", T) is None


# -- Properties ----------------------------------------------------------------


@given(text=st.text())
@settings(deadline=None)
def test_property_parse_is_total(text: str) -> None:
    """Any string parses to an interval or the continuous marker."""
    result = parse_frequency(text)
    assert result is CONTINUOUS or isinstance(result, Interval)
    if isinstance(result, Interval):
        assert result.delta > timedelta(0)


@given(text=st.text(), count=st.integers(min_value=1, max_value=10_000))
@settings(deadline=None)
def test_property_parse_is_deterministic(text: str, count: int) -> None:
    descriptor = f"Every {count} {text}"
    assert parse_frequency(descriptor) == parse_frequency(descriptor)
