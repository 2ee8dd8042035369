"""Garmin Connect as a remote data source for the cache.

Three kinds are fetched: one ``daily-stats`` record per calendar day, one
``sleep-session`` per night and one ``activity`` per recorded workout.
Payloads keep a normalized subset of Garmin's fields; numeric fields Garmin
adds later are picked up automatically.
"""

import logging
from datetime import datetime, timedelta, timezone

from garminconnect import Garmin
from requests.exceptions import HTTPError

from .day_boundary import add_days, start_of_day
from .records import DataSource, RecordKind
from .strategies import AlwaysFetchRecentStrategy, DateBasedStrategy

log = logging.getLogger(__name__)

DAILY_STATS = "daily-stats"
SLEEP_SESSION = "sleep-session"
ACTIVITY = "activity"


# ---------------------------------------------------------------------------
# Kinds
# ---------------------------------------------------------------------------

DAILY_STATS_KIND = RecordKind(
    name=DAILY_STATS,
    source=DataSource.GARMIN,
    identity=lambda p: p["date"][:10],
    record_date=lambda p: p["date"],
)

# Keyed by the calendar date Garmin files the night under; the payload
# carries the actual start/end of the sleep interval.
SLEEP_SESSION_KIND = RecordKind(
    name=SLEEP_SESSION,
    source=DataSource.GARMIN,
    identity=lambda p: p["date"][:10],
    record_date=lambda p: p["date"],
)

ACTIVITY_KIND = RecordKind(
    name=ACTIVITY,
    source=DataSource.GARMIN,
    identity=lambda p: p["activity_id"],
    record_date=lambda p: p["start"],
)


def register_garmin_kinds(registry):
    for kind in (DAILY_STATS_KIND, SLEEP_SESSION_KIND, ACTIVITY_KIND):
        registry.register(kind)
    return registry


def default_strategies():
    """Incremental fetch strategy per Garmin kind.

    Daily stats settle within a day. Sleep scores are revised for a few
    nights after the fact. Activities can be edited or uploaded late.
    """
    return {
        DAILY_STATS: DateBasedStrategy("garmin.daily-stats", volatile_window_days=1),
        SLEEP_SESSION: AlwaysFetchRecentStrategy("garmin.sleep", recent_days=3),
        ACTIVITY: DateBasedStrategy("garmin.activity", volatile_window_days=2),
    }


def connect(email, password):
    """Log in to Garmin Connect and return the client."""
    log.info("Logging in to Garmin Connect…")
    client = Garmin(email, password)
    client.login()
    log.info("Garmin login successful.")
    return client


# ---------------------------------------------------------------------------
# Payload normalization
# ---------------------------------------------------------------------------

def _safe_float(val, field_name, kind):
    """Convert *val* to float, logging a warning on failure instead of raising."""
    try:
        return float(val)
    except (ValueError, TypeError):
        log.warning(
            "Could not convert %s=%r to float for '%s'; skipping field.",
            field_name, val, kind,
        )
        return None


# Keys that are metadata / non-numeric and should never be treated as fields.
_IGNORED_GENERIC_KEYS = frozenset({
    "calendarDate", "startTimestampGMT", "endTimestampGMT",
    "startTimestampLocal", "endTimestampLocal",
    "userProfilePK", "startOfDayGMT", "startOfDayLocal",
    "userDailySummaryId", "id",
    "wellnessStartTimeGmt", "wellnessStartTimeLocal",
    "wellnessEndTimeGmt", "wellnessEndTimeLocal",
    "source", "stressQualifier",
    "sleepStartTimestampGMT", "sleepEndTimestampGMT",
    "sleepStartTimestampLocal", "sleepEndTimestampLocal",
    "autoSleepStartTimestampGMT", "autoSleepEndTimestampGMT",
})

DAILY_STATS_FIELDS = {
    "totalSteps": "steps",
    "totalDistanceMeters": "distance_meters",
    "activeKilocalories": "active_kcal",
    "totalKilocalories": "total_kcal",
    "restingHeartRate": "resting_hr",
    "maxHeartRate": "max_hr",
    "minHeartRate": "min_hr",
    "moderateIntensityMinutes": "moderate_intensity_min",
    "vigorousIntensityMinutes": "vigorous_intensity_min",
    "floorsAscended": "floors_ascended",
    "averageStressLevel": "avg_stress",
    "bodyBatteryHighestValue": "body_battery_high",
    "bodyBatteryLowestValue": "body_battery_low",
}

SLEEP_FIELDS = {
    "sleepTimeSeconds": "sleep_time_sec",
    "deepSleepSeconds": "deep_sleep_sec",
    "lightSleepSeconds": "light_sleep_sec",
    "remSleepSeconds": "rem_sleep_sec",
    "awakeSleepSeconds": "awake_sec",
    "averageRespirationValue": "avg_respiration",
    "averageSpO2Value": "avg_spo2",
}

ACTIVITY_FIELDS = {
    "distance": "distance_meters",
    "duration": "duration_sec",
    "movingDuration": "moving_sec",
    "averageHR": "avg_hr",
    "maxHR": "max_hr",
    "calories": "calories",
    "elevationGain": "elevation_gain",
    "steps": "steps",
}


def _map_fields(data, field_map, kind):
    fields = {}
    for garmin_key, name in field_map.items():
        val = data.get(garmin_key)
        if val is None:
            continue
        fval = _safe_float(val, garmin_key, kind)
        if fval is not None:
            fields[name] = fval
    return fields


def _collect_extra_fields(data, known_keys, kind):
    """Return ``{key: float_value}`` for numeric fields in *data* that are
    not in *known_keys*.

    This allows newly-added Garmin fields to be captured automatically.
    """
    extras = {}
    if not isinstance(data, dict):
        return extras
    for key, val in data.items():
        if key in known_keys or key in _IGNORED_GENERIC_KEYS:
            continue
        if val is None or isinstance(val, (bool, dict, list, str)):
            continue
        fval = _safe_float(val, key, kind)
        if fval is not None:
            log.debug("Discovered extra numeric field '%s'=%s in '%s'", key, fval, kind)
            extras[key] = fval
    return extras


def daily_stats_payload(stats, day):
    """Normalize a ``get_stats`` response. Returns None for an empty day."""
    if not stats:
        return None
    fields = _map_fields(stats, DAILY_STATS_FIELDS, DAILY_STATS)
    if not fields:
        return None
    return {
        "date": day.isoformat(),
        **fields,
        "extra": _collect_extra_fields(stats, set(DAILY_STATS_FIELDS), DAILY_STATS),
    }


def sleep_payload(sleep_data, day, tz):
    """Normalize a ``get_sleep_data`` response into an interval payload.

    Returns None when the night has no recorded sleep window.
    """
    summary = (sleep_data or {}).get("dailySleepDTO") or {}
    start_ms = summary.get("sleepStartTimestampGMT")
    end_ms = summary.get("sleepEndTimestampGMT")
    if not start_ms or not end_ms:
        return None
    payload = {
        "date": day.isoformat(),
        "entity": "sleep",
        "start": datetime.fromtimestamp(start_ms / 1000, tz).isoformat(),
        "end": datetime.fromtimestamp(end_ms / 1000, tz).isoformat(),
        **_map_fields(summary, SLEEP_FIELDS, SLEEP_SESSION),
    }
    scores = summary.get("sleepScores") or {}
    overall = scores.get("overall")
    if isinstance(overall, dict):
        overall = overall.get("value")
    if overall is not None:
        score = _safe_float(overall, "score_overall", SLEEP_SESSION)
        if score is not None:
            payload["score_overall"] = score
    return payload


def activity_payload(act, tz):
    """Normalize one entry of ``get_activities_by_date``.

    Returns None for entries without an id or a parseable start time.
    """
    act_id = act.get("activityId")
    ts_str = act.get("startTimeGMT")
    if not act_id or not ts_str:
        return None
    try:
        start = datetime.strptime(ts_str, "%Y-%m-%d %H:%M:%S").replace(tzinfo=timezone.utc)
    except (ValueError, TypeError):
        log.warning("Skipping activity %s with unparseable start %r", act_id, ts_str)
        return None
    start = start.astimezone(tz)
    fields = _map_fields(act, ACTIVITY_FIELDS, ACTIVITY)
    end = start + timedelta(seconds=fields.get("duration_sec", 0.0))
    return {
        "activity_id": str(act_id),
        "entity": (act.get("activityType") or {}).get("typeKey", "unknown"),
        "label": act.get("activityName") or "",
        "start": start.isoformat(),
        "end": end.isoformat(),
        **fields,
    }


# ---------------------------------------------------------------------------
# Source
# ---------------------------------------------------------------------------

def _is_not_found(exc):
    if isinstance(exc, HTTPError):
        resp = getattr(exc, "response", None)
        return getattr(resp, "status_code", None) == 404
    return False


class GarminSource:
    """Fetches cache records from a logged-in :class:`garminconnect.Garmin`.

    *tz* is the ``tzinfo`` days are interpreted in. :meth:`fetch` has the
    signature :func:`~goalcache.strategies.cached_fetch` expects of a
    fetcher.
    """

    def __init__(self, client, tz):
        self.client = client
        self.tz = tz

    def _days(self, start, end):
        day = start_of_day(start.astimezone(self.tz) if start.tzinfo else start.replace(tzinfo=self.tz))
        last = end.astimezone(self.tz) if end.tzinfo else end.replace(tzinfo=self.tz)
        while day <= last:
            yield day
            day = add_days(day, 1)

    def _call(self, label, func, *args):
        try:
            return func(*args)
        except HTTPError as exc:
            if _is_not_found(exc):
                log.debug("  %s: no data (not found)", label)
                return None
            raise

    def fetch(self, kind, start, end):
        """Return the records of *kind* for every day in ``[start, end]``."""
        if kind == DAILY_STATS:
            return self._fetch_per_day(kind, self.client.get_stats, daily_stats_payload, DAILY_STATS_KIND, start, end)
        if kind == SLEEP_SESSION:
            return self._fetch_per_day(
                kind, self.client.get_sleep_data,
                lambda data, day: sleep_payload(data, day, self.tz),
                SLEEP_SESSION_KIND, start, end,
            )
        if kind == ACTIVITY:
            return self._fetch_activities(start, end)
        raise ValueError(f"Garmin does not provide {kind!r}")

    def _fetch_per_day(self, kind, call, normalize, record_kind, start, end):
        records = []
        for day in self._days(start, end):
            day_str = day.strftime("%Y-%m-%d")
            payload = normalize(self._call(f"{kind} {day_str}", call, day_str), day)
            if payload is not None:
                records.append(record_kind.make(payload))
        log.info("  %s: fetched %d record(s)", kind, len(records))
        return records

    def _fetch_activities(self, start, end):
        days = list(self._days(start, end))
        if not days:
            return []
        first, last = days[0].strftime("%Y-%m-%d"), days[-1].strftime("%Y-%m-%d")
        activities = self._call(ACTIVITY, self.client.get_activities_by_date, first, last) or []
        records = []
        for act in activities:
            payload = activity_payload(act, self.tz)
            if payload is not None:
                records.append(ACTIVITY_KIND.make(payload))
        log.info("  %s: fetched %d record(s)", ACTIVITY, len(records))
        return records
