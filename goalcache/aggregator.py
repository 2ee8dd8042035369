"""Per-logical-day aggregation of sessions and daily records.

Summaries are rebuilt from sessions on every call. A session that is still
running has no end time; its duration depends on the reference time passed
in, so figures for "today" change as that reference advances.
:func:`total_duration` recomputes them for a new reference time without
re-aggregating the whole history.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime

from .day_boundary import LOCATIONS, add_days, seconds_between, split, start_of_day
from .records import parse_datetime


@dataclass(frozen=True)
class Session:
    """A time-spanning activity attributed to one entity (location, task…).

    ``end_time is None`` marks a session that is still in progress.
    """
    entity_id: str
    start_time: datetime
    end_time: datetime = None
    label: str = ""
    payload: object = None

    @property
    def is_active(self):
        return self.end_time is None

    def effective_end(self, reference_date):
        return self.end_time if self.end_time is not None else reference_date

    def duration(self, reference_date):
        return seconds_between(self.start_time, self.effective_end(reference_date))

    @classmethod
    def from_record(cls, record, entity_key="entity"):
        """Build a session from a cached record with ``start``/``end`` payload keys."""
        payload = record.payload
        end = payload.get("end")
        return cls(
            entity_id=str(payload.get(entity_key, record.identity)),
            start_time=parse_datetime(payload["start"]),
            end_time=parse_datetime(end) if end else None,
            label=payload.get("label", ""),
            payload=record,
        )


@dataclass
class DailySummary:
    """Everything that happened on one logical day.

    *segments* holds the completed sessions' pieces that fall on this day.
    *active_sessions* holds sessions still in progress that reach into it;
    their contribution is computed on demand for a given reference time.
    """
    date: datetime
    config: object
    segments: list = field(default_factory=list)
    active_sessions: list = field(default_factory=list)

    @property
    def durations(self):
        """Completed seconds per entity id."""
        totals = defaultdict(float)
        for seg in self.segments:
            totals[seg.payload.entity_id] += seg.duration
        return dict(totals)

    @property
    def completed_duration(self):
        return sum(seg.duration for seg in self.segments)

    @property
    def entities(self):
        ids = {seg.payload.entity_id for seg in self.segments}
        ids.update(s.entity_id for s in self.active_sessions)
        return sorted(ids)


def aggregate_sessions(sessions, reference_date, config=LOCATIONS):
    """Group *sessions* into one :class:`DailySummary` per logical day.

    Each session is split at the day boundaries of *config*; sessions
    without an end run until *reference_date*. Sessions that start after
    *reference_date* are ignored. Summaries are returned oldest first.
    """
    by_day = {}

    def summary_for(day):
        if day not in by_day:
            by_day[day] = DailySummary(date=day, config=config)
        return by_day[day]

    for session in sessions:
        if session.start_time > reference_date:
            continue
        end = session.effective_end(reference_date)
        segments = split(session.start_time, end, session, config)
        if session.is_active:
            days = [seg.logical_day for seg in segments] or [config.logical_day(session.start_time)]
            for day in days:
                summary_for(day).active_sessions.append(session)
            continue
        for seg in segments:
            summary_for(seg.logical_day).segments.append(seg)

    return [by_day[day] for day in sorted(by_day)]


def _day_spans(summary, at):
    """Yield ``(entity_id, start, end)`` for every piece of time on the day.

    Active sessions are clipped to the day's window and to *at*.
    """
    for seg in summary.segments:
        yield seg.payload.entity_id, seg.start_time, seg.end_time
    window_start, window_end = summary.config.day_window(summary.date)
    for session in summary.active_sessions:
        lo = max(session.start_time, window_start)
        hi = min(at, window_end)
        if hi > lo:
            yield session.entity_id, lo, hi


def total_duration(summary, at):
    """Seconds tracked on *summary*'s day, counting active sessions up to *at*."""
    return sum(seconds_between(lo, hi) for _, lo, hi in _day_spans(summary, at))


def _active_window(day, active_window):
    start_hour, end_hour = active_window
    base = start_of_day(day)
    start = add_days(base, start_hour // 24).replace(hour=start_hour % 24)
    end = add_days(base, end_hour // 24).replace(hour=end_hour % 24)
    return start, end


def dominant_entity(summary, at, active_window=(6, 24)):
    """Return the entity with the most time inside the day's active window.

    *active_window* is a pair of hours on the logical day's calendar date;
    the default covers 06:00 to midnight. Equal totals go to the entity id
    that sorts first. Returns None when nothing overlaps the window.
    """
    window_start, window_end = _active_window(summary.date, active_window)
    totals = defaultdict(float)
    for entity_id, lo, hi in _day_spans(summary, at):
        overlap_start = max(lo, window_start)
        overlap_end = min(hi, window_end)
        if overlap_end > overlap_start:
            totals[entity_id] += seconds_between(overlap_start, overlap_end)
    if not totals:
        return None
    return min(totals.items(), key=lambda item: (-item[1], item[0]))[0]


def daily_totals(records, value_extractor, date_extractor=None, config=None):
    """Sum already-daily records per day.

    Days are calendar days, or logical days of *config* when given.
    Returns ``[(day, total), ...]`` oldest first.
    """
    date_of = date_extractor or (lambda r: r.record_date)
    totals = defaultdict(float)
    for record in records:
        when = date_of(record)
        day = config.logical_day(when) if config is not None else start_of_day(when)
        totals[day] += value_extractor(record)
    return sorted(totals.items())
