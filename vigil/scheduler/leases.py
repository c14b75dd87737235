"""In-process leases that keep a task from being dispatched twice at once.

Leases live in memory only.  They serialize overlapping ticks and manual
runs inside one process; they do not protect against a second process or
deployment running the same task.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

logger = logging.getLogger(__name__)

LeaseKey = tuple[str, str]  # (owner_id, task_id)


@dataclass(frozen=True)
class Lease:
    key: LeaseKey
    acquired_at: datetime


class LeaseMap:
    """Tracks which tasks are currently executing.

    ``acquire`` and ``release`` never await, so on a single event loop the
    check-and-set in ``acquire`` cannot interleave with another coroutine.
    """

    def __init__(self) -> None:
        self._leases: dict[LeaseKey, Lease] = {}

    def acquire(self, key: LeaseKey, now: datetime) -> bool:
        """Take the lease for *key*. Returns False if it is already held."""
        if key in self._leases:
            return False
        self._leases[key] = Lease(key=key, acquired_at=now)
        return True

    def release(self, key: LeaseKey) -> None:
        if self._leases.pop(key, None) is None:
            logger.debug("Released lease that was not held: %s", key)

    def held(self, key: LeaseKey) -> bool:
        return key in self._leases

    def active(self) -> list[Lease]:
        """Snapshot of leases currently held, oldest first."""
        return sorted(self._leases.values(), key=lambda lease: lease.acquired_at)

    def __len__(self) -> int:
        return len(self._leases)
