"""
Identifier and clock providers.

Engines never build IDs from wall-clock time. A generator is injected so
that concurrent callers can share one (UUID based, or a lock-protected
counter for reproducible runs and tests).
"""

from __future__ import annotations

import itertools
import threading
import uuid
from datetime import datetime, timezone
from typing import Callable, Protocol


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_naive_utc(value: datetime) -> datetime:
    """Schedules run on naive wall-clock datetimes; aware inputs are converted to UTC first."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class IdGenerator(Protocol):
    def next_id(self, prefix: str) -> str:
        ...


class UuidIdGenerator:
    """Random IDs, safe under concurrent use without coordination."""

    def next_id(self, prefix: str) -> str:
        return f"{prefix}-{uuid.uuid4().hex[:12]}"


class SequentialIdGenerator:
    """
    Monotonic counter IDs: ``task-000001``, ``plan-000002``...

    One counter is shared by every prefix; increments are serialized.
    """

    def __init__(self, start: int = 1):
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next_id(self, prefix: str) -> str:
        with self._lock:
            value = next(self._counter)
        return f"{prefix}-{value:06d}"


class FixedClock:
    """Clock returning a constant instant (reproducible timestamps)."""

    def __init__(self, instant: datetime):
        self.instant = instant

    def __call__(self) -> datetime:
        return self.instant
