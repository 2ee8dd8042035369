"""Logical-day boundaries and splitting of time-spanning sessions.

A logical day starts at a configurable hour instead of midnight. With a
4 AM boundary, a task worked on from 23:00 to 02:00 still belongs to the
day it started on; with a 4 PM boundary, an overnight sleep session that
starts in the evening stays grouped with that evening's day.
"""

from dataclasses import dataclass
from datetime import timedelta


def start_of_day(dt):
    """Truncate *dt* to midnight of its calendar day (tzinfo is kept)."""
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def add_days(dt, days):
    """Move *dt* by whole calendar days, keeping its wall-clock time."""
    return dt + timedelta(days=days)


def seconds_between(start, end):
    """Elapsed seconds from *start* to *end* in absolute time."""
    return end.timestamp() - start.timestamp()


@dataclass(frozen=True)
class DayBoundaryConfig:
    """Hour of day (0-23) at which one logical day ends and the next begins."""
    boundary_hour: int

    def __post_init__(self):
        if not isinstance(self.boundary_hour, int) or not 0 <= self.boundary_hour <= 23:
            raise ValueError(f"boundary_hour must be 0-23, got {self.boundary_hour!r}")

    def logical_day(self, dt):
        """Return the start of the logical day *dt* belongs to.

        With a 4 AM boundary, 02:00 on Jan 16 belongs to Jan 15 and 05:00 on
        Jan 16 belongs to Jan 16.
        """
        day = start_of_day(dt)
        if dt.hour < self.boundary_hour:
            return add_days(day, -1)
        return day

    def next_boundary(self, dt):
        """Return the first boundary strictly after *dt*."""
        day = start_of_day(dt)
        if dt.hour < self.boundary_hour:
            return day.replace(hour=self.boundary_hour)
        return add_days(day, 1).replace(hour=self.boundary_hour)

    def day_window(self, logical_day):
        """Return ``(start, end)`` of the time span covered by *logical_day*."""
        start = start_of_day(logical_day).replace(hour=self.boundary_hour)
        return start, add_days(start, 1)


TASKS = DayBoundaryConfig(boundary_hour=4)
LOCATIONS = DayBoundaryConfig(boundary_hour=4)
SLEEP = DayBoundaryConfig(boundary_hour=16)


@dataclass(frozen=True)
class Segment:
    """The part of a session that falls inside a single logical day."""
    logical_day: object
    start_time: object
    end_time: object
    payload: object = None

    @property
    def duration(self):
        return seconds_between(self.start_time, self.end_time)

    @property
    def hour_offset(self):
        """24 when the segment sits on the calendar day after its logical day.

        Chart axes measured in hours from the logical day's midnight place
        such a segment at ``hour + 24`` (e.g. 01:00 becomes 25).
        """
        if self.logical_day < start_of_day(self.start_time):
            return 24
        return 0


def split(start_time, end_time, payload, config):
    """Split ``[start_time, end_time)`` into one :class:`Segment` per logical day.

    With a 4 AM boundary, 23:00 Jan 15 to 06:00 Jan 16 becomes
    ``[23:00, 04:00)`` on Jan 15 and ``[04:00, 06:00)`` on Jan 16. The
    segments are contiguous and cover the interval exactly. An empty or
    inverted interval yields no segments.
    """
    segments = []
    if end_time <= start_time:
        return segments

    current = start_time
    while current < end_time:
        logical_day = config.logical_day(current)
        segment_end = min(config.next_boundary(current), end_time)
        if segment_end > current:
            segments.append(Segment(
                logical_day=logical_day,
                start_time=current,
                end_time=segment_end,
                payload=payload,
            ))
        current = segment_end
    return segments
