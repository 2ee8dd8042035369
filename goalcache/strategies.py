"""Incremental fetch strategies.

A strategy decides how much of a requested date range has to come from the
remote source again, given what it remembers about earlier fetches. Ranges
are always aligned to whole calendar days.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from .day_boundary import add_days, start_of_day

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DateBasedMetadata:
    last_fetch_date: datetime

    def to_dict(self):
        return {"last_fetch_date": self.last_fetch_date.isoformat()}

    @classmethod
    def from_dict(cls, data):
        return cls(last_fetch_date=datetime.fromisoformat(data["last_fetch_date"]))


@dataclass(frozen=True)
class RecentMetadata:
    """Empty metadata of the stateless strategy."""

    def to_dict(self):
        return {}

    @classmethod
    def from_dict(cls, data):
        return cls()


@dataclass(frozen=True)
class VersionMetadata:
    last_version: int
    last_fetch_date: datetime

    def to_dict(self):
        return {
            "last_version": self.last_version,
            "last_fetch_date": self.last_fetch_date.isoformat(),
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            last_version=int(data["last_version"]),
            last_fetch_date=datetime.fromisoformat(data["last_fetch_date"]),
        )


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

class IncrementalFetchStrategy:
    """Base class. *strategy_key* names the dataset whose metadata is tracked."""

    metadata_class = None

    def __init__(self, strategy_key):
        self.strategy_key = strategy_key

    def calculate_fetch_range(self, requested, metadata):
        """Return the ``(start, end)`` to fetch for the *requested* range."""
        raise NotImplementedError

    def update_metadata(self, previous, fetched_range, fetched_at):
        """Return the metadata to keep after *fetched_range* was fetched."""
        raise NotImplementedError

    def __repr__(self):
        return f"{type(self).__name__}({self.strategy_key!r})"


class DateBasedStrategy(IncrementalFetchStrategy):
    """For sources whose past data never changes once finalized.

    Only the volatile tail (the last *volatile_window_days* before the last
    fetch) plus any newly requested days is fetched again.
    """

    metadata_class = DateBasedMetadata

    def __init__(self, strategy_key, volatile_window_days=1):
        super().__init__(strategy_key)
        self.volatile_window_days = volatile_window_days

    def calculate_fetch_range(self, requested, metadata):
        start, end = requested
        if metadata is None:
            return start_of_day(start), end
        volatile_start = add_days(metadata.last_fetch_date, -self.volatile_window_days)
        fetch_start = max(start_of_day(volatile_start), start_of_day(start))
        return fetch_start, end

    def update_metadata(self, previous, fetched_range, fetched_at):
        return DateBasedMetadata(last_fetch_date=start_of_day(fetched_range[1]))


class AlwaysFetchRecentStrategy(IncrementalFetchStrategy):
    """Stateless: always re-fetch the last *recent_days* of the request.

    For sources whose recent data is edited often enough that a watermark
    cannot be trusted.
    """

    metadata_class = RecentMetadata

    def __init__(self, strategy_key, recent_days):
        super().__init__(strategy_key)
        self.recent_days = recent_days

    def calculate_fetch_range(self, requested, metadata):
        start, end = requested
        recent_start = add_days(end, -self.recent_days)
        return max(start_of_day(recent_start), start_of_day(start)), end

    def update_metadata(self, previous, fetched_range, fetched_at):
        return RecentMetadata()


class VersionBasedStrategy(IncrementalFetchStrategy):
    """For APIs that track changes with a library version number.

    The full requested range is always fetched; the remote call narrows the
    result server-side with :meth:`version_for_incremental_fetch`.
    """

    metadata_class = VersionMetadata

    def calculate_fetch_range(self, requested, metadata):
        return tuple(requested)

    def update_metadata(self, previous, fetched_range, fetched_at, new_version=None):
        if new_version is None:
            new_version = previous.last_version if previous is not None else 0
        return VersionMetadata(last_version=new_version, last_fetch_date=fetched_at)

    def version_for_incremental_fetch(self, metadata):
        return metadata.last_version if metadata is not None else None


def calculate_missing_date_ranges(start, end, cached_dates):
    """Return the ``(first_day, last_day)`` runs of days in *start*..*end*
    that are absent from *cached_dates*.

    Adjacent missing days are merged into one range. Both ends of each range
    are start-of-day datetimes and inclusive.
    """
    cached = {start_of_day(d) for d in cached_dates}
    missing = []
    run_start = None
    day = start_of_day(start)
    last_day = start_of_day(end)
    while day <= last_day:
        if day not in cached:
            if run_start is None:
                run_start = day
        elif run_start is not None:
            missing.append((run_start, add_days(day, -1)))
            run_start = None
        day = add_days(day, 1)
    if run_start is not None:
        missing.append((run_start, last_day))
    return missing


# ---------------------------------------------------------------------------
# Cached fetch
# ---------------------------------------------------------------------------

def cached_fetch(store, metadata_store, strategy, kind, fetcher, start, end, clock=None):
    """Fetch *kind* for ``[start, end]`` through the cache.

    1. Work out the range to fetch from *strategy* and its stored metadata.
    2. Call ``fetcher(kind, fetch_start, fetch_end)`` and store the result.
    3. Update the metadata only after the fetch and the store succeeded.

    When the remote call fails and the cache already holds records for the
    requested range, the failure is logged and the cached records are
    returned; otherwise the error propagates. Errors storing the result or
    saving the metadata always propagate. The result always comes from the
    cache.
    """
    metadata = metadata_store.load(strategy)
    fetch_start, fetch_end = strategy.calculate_fetch_range((start, end), metadata)
    log.debug("%s: fetching %s … %s", kind, fetch_start.isoformat(), fetch_end.isoformat())
    try:
        records = fetcher(kind, fetch_start, fetch_end)
    except Exception as exc:
        cached = store.fetch(kind, start, end)
        if not cached:
            raise
        log.warning("%s: remote fetch failed, serving cached data — %s", kind, exc)
        return cached
    if records:
        store.store(records)
    fetched_at = clock() if clock else datetime.now(fetch_end.tzinfo)
    metadata_store.save(
        strategy,
        strategy.update_metadata(metadata, (fetch_start, fetch_end), fetched_at),
    )
    return store.fetch(kind, start, end)


def fill_gaps(store, kind, fetcher, start, end):
    """Fetch only the days of ``[start, end]`` that have nothing cached.

    For sources tracked per day rather than by a watermark. Returns the
    number of records stored.
    """
    cached = store.cached_days(kind, start_of_day(start), end)
    missing = calculate_missing_date_ranges(start, end, cached)
    stored = 0
    for gap_start, gap_end in missing:
        log.info("%s: filling gap %s … %s", kind, gap_start.date(), gap_end.date())
        records = fetcher(kind, gap_start, gap_end)
        stored += store.store(records)
    return stored
