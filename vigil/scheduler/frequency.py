"""Frequency descriptors — "Every 5 minutes", "Weekly", "Real-time", "Continuous"

A descriptor parses to either a fixed :class:`Interval` or the
:data:`CONTINUOUS` marker.  Parsing never raises: text that names no known
unit falls back to :data:`DEFAULT_INTERVAL` so a malformed task still
reschedules instead of running on every tick.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Final

logger = logging.getLogger(__name__)

_CONTINUOUS_WORDS: Final = frozenset({"real-time", "continuous"})
DEFAULT_INTERVAL: Final = timedelta(hours=24)

# Order matters: the first keyword found in the text wins.
_UNITS: Final = (
    ("minute", timedelta(minutes=1)),
    ("hour", timedelta(hours=1)),
    ("day", timedelta(days=1)),
    ("week", timedelta(weeks=1)),
)

_LEADING_INT = re.compile(r"\d+")

# Shorthands whose spelling does not contain their unit keyword.
_ALIASES: Final = {"daily": "day"}


@dataclass(frozen=True)
class Interval:
    """A fixed rescheduling interval."""

    delta: timedelta

    def __str__(self) -> str:
        return f"every {self.delta}"


class _Continuous:
    """Marker for tasks that are due on every tick."""

    _instance: _Continuous | None = None

    def __new__(cls) -> _Continuous:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "CONTINUOUS"


CONTINUOUS: Final = _Continuous()

Frequency = Interval | _Continuous


def _leading_count(text: str) -> int:
    match = _LEADING_INT.search(text)
    if match is None:
        return 1
    try:
        count = int(match.group())
    except ValueError:
        return 1
    return max(count, 1)


def parse_frequency(text: str | None) -> Frequency:
    """Translate a frequency descriptor into an interval or ``CONTINUOUS``."""
    normalized = (text or "").strip().lower()
    if normalized in _CONTINUOUS_WORDS:
        return CONTINUOUS

    for alias, keyword in _ALIASES.items():
        normalized = normalized.replace(alias, keyword)

    count = _leading_count(normalized)
    for keyword, unit in _UNITS:
        if keyword in normalized:
            try:
                return Interval(unit * count)
            except OverflowError:
                break

    logger.warning("Unrecognized frequency %r, defaulting to %s", text, DEFAULT_INTERVAL)
    return Interval(DEFAULT_INTERVAL)


def is_continuous(text: str | None) -> bool:
    return parse_frequency(text) is CONTINUOUS


def next_run_after(frequency: str | None, start: datetime) -> datetime | None:
    """Return when a task with *frequency* is next due after running at *start*.

    ``None`` means continuous: due again on the very next tick.
    """
    parsed = parse_frequency(frequency)
    if not isinstance(parsed, Interval):
        return None
    try:
        return start + parsed.delta
    except OverflowError:
        return datetime.max.replace(tzinfo=start.tzinfo)
