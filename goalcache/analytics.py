"""Trend, moving-average and intensity calculations over daily series.

All functions are pure. A series is a list of ``(date, value)`` pairs.
"""

import statistics
from enum import Enum

from .day_boundary import add_days, start_of_day


class GapPolicy(Enum):
    """How :func:`calculate_moving_average` treats days missing from a series."""

    # Average the trailing points that exist; missing days are skipped.
    SKIP = "skip"
    # Insert missing calendar days as 0 first, so idle days pull the average
    # down. Used for duration series.
    ZERO_FILL = "zero-fill"


def calculate_trend(values):
    """Percentage change of the recent window's mean over the window before it.

    The recent window is the last ``min(7, n // 2)`` values and the previous
    window is the same number of values right before it. Returns None for
    fewer than 7 values or when the previous mean is 0.
    """
    values = list(values)
    if len(values) < 7:
        return None
    recent_count = min(7, len(values) // 2)
    recent = values[-recent_count:]
    previous = values[:-recent_count][-recent_count:]
    if not previous:
        return None
    previous_avg = statistics.mean(previous)
    if previous_avg == 0:
        return None
    recent_avg = statistics.mean(recent)
    return (recent_avg - previous_avg) / previous_avg * 100


def fill_missing_days(data):
    """Return one point per calendar day from the first to the last date.

    Days without data get 0. When a day appears more than once, the last
    value wins.
    """
    if not data:
        return []
    by_day = {}
    for when, value in sorted(data, key=lambda p: p[0]):
        by_day[start_of_day(when)] = value
    first, last = min(by_day), max(by_day)
    filled = []
    day = first
    while day <= last:
        filled.append((day, by_day.get(day, 0.0)))
        day = add_days(day, 1)
    return filled


def calculate_moving_average(data, window, gap_policy=GapPolicy.SKIP):
    """Trailing moving average over *window* points.

    Each output point averages the up to *window* points ending at it, so the
    first points average fewer values. See :class:`GapPolicy` for how missing
    days are handled.
    """
    if window < 1:
        raise ValueError(f"window must be at least 1, got {window}")
    if gap_policy is GapPolicy.ZERO_FILL:
        series = fill_missing_days(data)
    else:
        series = sorted(data, key=lambda p: p[0])
    result = []
    for i, (when, _) in enumerate(series):
        trailing = [value for _, value in series[max(0, i - window + 1):i + 1]]
        result.append((when, sum(trailing) / len(trailing)))
    return result


def build_activity_days(records, value_extractor, date_extractor=None, target=None):
    """Return ``(date, intensity)`` per record for a calendar heatmap.

    Intensity is the value divided by the largest value, or by *target* when
    one is given, clamped to 0..1.
    """
    date_of = date_extractor or (lambda r: r.record_date)
    values = [value_extractor(r) for r in records]
    scale = target if target is not None else max(values, default=0)
    days = []
    for record, value in zip(records, values):
        intensity = value / scale if scale and scale > 0 else 0.0
        days.append((date_of(record), min(max(intensity, 0.0), 1.0)))
    return days


# ---------------------------------------------------------------------------
# Report helpers
# ---------------------------------------------------------------------------

def compute_field_stats(values):
    """Compute summary statistics for a list of numeric values.

    Returns a dict with mean, median, min, max, stdev, and count.
    """
    if not values:
        return None
    n = len(values)
    result = {
        "count": n,
        "min": min(values),
        "max": max(values),
        "mean": statistics.mean(values),
        "median": statistics.median(values),
    }
    result["stdev"] = statistics.stdev(values) if n >= 2 else 0.0
    return result


def format_stat_value(val):
    """Format a number for display: whole numbers without decimals."""
    if val == int(val) and abs(val) < 1_000_000:
        return str(int(val))
    return f"{val:.1f}"


def format_duration(seconds):
    """Format seconds as ``"2h 5m"``, ``"45m"``, ``"3h"`` or ``"0m"``."""
    total_minutes = int(seconds // 60)
    hours, minutes = divmod(total_minutes, 60)
    if hours and minutes:
        return f"{hours}h {minutes}m"
    if hours:
        return f"{hours}h"
    return f"{minutes}m"


def build_histogram(values, bins=10, width=30):
    """Build a compact horizontal ASCII histogram and return its lines."""
    if not values:
        return []
    lo, hi = min(values), max(values)
    if lo == hi:
        return [f"  [{format_stat_value(lo)}] {'█' * width} ({len(values)})"]
    step = (hi - lo) / bins
    counts = [0] * bins
    for v in values:
        counts[min(int((v - lo) / step), bins - 1)] += 1
    max_count = max(counts)
    lines = []
    for i, c in enumerate(counts):
        bin_lo = lo + i * step
        bin_hi = lo + (i + 1) * step
        bar = "█" * int(c / max_count * width)
        label = f"{format_stat_value(bin_lo):>8}-{format_stat_value(bin_hi):<8}"
        lines.append(f"  {label} {bar} {c}")
    return lines
