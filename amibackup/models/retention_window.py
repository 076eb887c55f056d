"""Retention window model and window specification parsing.

A window spec has the form ``INTERVAL:START:END``. START and END are ages
("time ago"); the window keeps one image per INTERVAL among images whose age
lies between START and END. For example ``1d:4d:30d`` keeps one image per day
for images between 4 and 30 days old.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterator, List, Tuple

from ..errors import ConfigurationError

DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)([dhms])")
DURATION_FULL = re.compile(r"(?:\d+(?:\.\d+)?[dhms])+")

UNIT_SECONDS = {"d": 86400, "h": 3600, "m": 60, "s": 1}


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``7d``, ``36h``, ``1h30m`` or ``90s``.

    Args:
        text: Duration text; ``d`` is shorthand for 24 hours

    Returns:
        Parsed timedelta

    Raises:
        ConfigurationError: If the text is not a valid duration
    """
    value = text.strip()
    if value == "0":
        return timedelta(0)
    if not DURATION_FULL.fullmatch(value):
        raise ConfigurationError(f"Invalid duration: {text!r} (use e.g. 7d, 36h, 1h30m)")

    seconds = 0.0
    for number, unit in DURATION_PART.findall(value):
        seconds += float(number) * UNIT_SECONDS[unit]
    try:
        return timedelta(seconds=seconds)
    except OverflowError as e:
        raise ConfigurationError(f"Duration out of range: {text!r}") from e


@dataclass(frozen=True)
class RetentionWindow:
    """Keep one image per ``interval`` between ``start`` and ``stop``.

    ``start`` is the older boundary and ``stop`` the newer one, so
    ``start < stop``. Slices are walked forward from ``start`` in
    ``interval`` hops; each slice is the half-open range
    ``[cursor, min(cursor + interval, stop))``.

    Attributes:
        interval: Sampling granularity
        start: Oldest instant covered by the window (inclusive)
        stop: Newest instant covered by the window (exclusive)
        spec: The specification text the window was built from
    """

    interval: timedelta
    start: datetime
    stop: datetime
    spec: str = ""

    def __post_init__(self) -> None:
        if self.interval <= timedelta(0):
            raise ConfigurationError(f"Retention window interval must be positive: {self.spec or self.interval}")
        if self.start >= self.stop:
            raise ConfigurationError(f"Retention window must end further in the past than it starts: {self.spec}")

    def slices(self) -> Iterator[Tuple[datetime, datetime]]:
        """Yield the half-open ``(slice_start, slice_end)`` bounds of every slice."""
        cursor = self.start
        while cursor < self.stop:
            # An interval longer than the remaining span would overflow datetime
            end = self.stop if self.stop - cursor <= self.interval else cursor + self.interval
            yield cursor, end
            cursor = end

    def contains(self, when: datetime) -> bool:
        """Whether an instant falls inside the window's ``[start, stop)`` span."""
        return self.start <= when < self.stop

    def describe(self) -> str:
        """Human-readable summary used in log messages."""
        return (
            f"1 per {self.interval} from {self.start:%Y-%m-%d %H:%M:%S} "
            f"to {self.stop:%Y-%m-%d %H:%M:%S}"
        )

    @classmethod
    def parse(cls, spec: str, now: datetime) -> "RetentionWindow":
        """Build a window from an ``INTERVAL:START:END`` specification.

        Args:
            spec: Window specification, e.g. ``7d:30d:90d``
            now: Invocation instant the ages are measured from

        Returns:
            RetentionWindow with absolute boundaries

        Raises:
            ConfigurationError: If the spec is malformed
        """
        parts = spec.split(":")
        if len(parts) != 3:
            raise ConfigurationError(f"Malformed prune window: {spec!r} (expected INTERVAL:START:END)")

        labels = ("interval", "start", "end")
        durations = []
        for label, part in zip(labels, parts):
            try:
                durations.append(parse_duration(part))
            except ConfigurationError as e:
                raise ConfigurationError(f"Malformed prune window {label}: {spec!r}: {e}") from e

        interval, start_age, end_age = durations
        try:
            start, stop = now - end_age, now - start_age
        except OverflowError as e:
            raise ConfigurationError(f"Prune window reaches too far into the past: {spec!r}") from e
        return cls(interval=interval, start=start, stop=stop, spec=spec)


def parse_windows(specs: List[str], now: datetime) -> List[RetentionWindow]:
    """Parse a list of window specifications against one invocation instant."""
    return [RetentionWindow.parse(spec, now) for spec in specs]
