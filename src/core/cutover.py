"""Cutover clock and store timestamp helpers (core domain).

The cutover boundary is stamped once per process: anything the bridge stored
at or before it is history and must never be answered. The bridge persists
timestamps as local time with an explicit ``+HH:MM`` offset, so the boundary
is also exposed in that exact text form for lexical comparison in SQL.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Union

LOGGER = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD = timedelta(seconds=10)

# The bridge may write nanosecond precision; datetime keeps microseconds.
_EXCESS_FRACTION = re.compile(r"(\.\d{6})\d+")

Clock = Callable[[], datetime]


def local_now() -> datetime:
    """Return the current time as an aware datetime in the local timezone."""

    return datetime.now().astimezone()


def format_store_timestamp(value: datetime) -> str:
    """Format a datetime the way the bridge stores it.

    Example: ``2024-05-01 09:30:00+02:00``. Naive values are taken as local
    time; sub-second precision is dropped.
    """

    return value.astimezone().isoformat(sep=" ", timespec="seconds")


def parse_store_timestamp(value: Union[str, int, float, datetime]) -> datetime:
    """Parse a stored timestamp into an aware datetime.

    Accepts datetimes, epoch seconds and ISO-8601 strings with either a ``T``
    or a space separator, any fractional precision and an optional offset.
    Values without an offset are interpreted as local time.
    """

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc).astimezone()
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("Empty timestamp")
        parsed = datetime.fromisoformat(_EXCESS_FRACTION.sub(r"\1", text))
    else:
        raise ValueError(f"Unsupported timestamp value: {value!r}")

    if parsed.tzinfo is None:
        return parsed.astimezone()
    return parsed


class CutoverClock:
    """One-shot anti-replay boundary fixed at process start."""

    def __init__(self, clock: Clock = local_now) -> None:
        self._clock = clock
        self._boundary: Optional[datetime] = None

    @property
    def initialized(self) -> bool:
        return self._boundary is not None

    @property
    def boundary(self) -> datetime:
        if self._boundary is None:
            raise RuntimeError("Cutover clock has not been initialized")
        return self._boundary

    @property
    def formatted(self) -> str:
        """Boundary in the store's native text representation."""

        return format_store_timestamp(self.boundary)

    def initialize(self, grace_period: timedelta = DEFAULT_GRACE_PERIOD) -> datetime:
        """Stamp ``now + grace_period`` as the boundary and return it.

        The grace period absorbs clock skew between this process and the
        bridge. Later calls return the existing boundary unchanged.
        """

        if self._boundary is not None:
            return self._boundary
        if grace_period < timedelta(0):
            raise ValueError("Cutover grace period must not be negative")

        self._boundary = self._clock() + grace_period
        LOGGER.info("Only messages after %s will be processed", self.formatted)
        return self._boundary

    def is_stale(self, timestamp: datetime) -> bool:
        """True when ``timestamp`` is at or before the boundary."""

        return timestamp <= self.boundary
