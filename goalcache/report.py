"""Offline report over the cache: daily totals, trends and distributions."""

from .aggregator import Session, aggregate_sessions, daily_totals, dominant_entity, total_duration
from .analytics import (
    GapPolicy,
    build_histogram,
    calculate_moving_average,
    calculate_trend,
    compute_field_stats,
    format_duration,
    format_stat_value,
)
from .day_boundary import SLEEP, TASKS, add_days, start_of_day
from .garmin import ACTIVITY, DAILY_STATS, SLEEP_SESSION

MOVING_AVERAGE_WINDOW = 7

# (name, label, gap policy, is a duration in seconds)
SERIES = (
    ("sleep", "Sleep", GapPolicy.ZERO_FILL, True),
    ("activity", "Activity", GapPolicy.ZERO_FILL, True),
    ("steps", "Steps", GapPolicy.SKIP, False),
)


def _sessions(store, kind, start, end):
    return [Session.from_record(r) for r in store.fetch(kind, start, end)]


def _in_range(summaries, start):
    first = start_of_day(start)
    return [s for s in summaries if s.date >= first]


def build_report(store, start, end, at):
    """Aggregate cached Garmin records for ``[start, end]`` as of *at*.

    Sleep is grouped by the evening it started (4 PM boundary), activity by
    logical day (4 AM boundary) and steps by calendar day.
    """
    # A night is filed under the morning it ended, so look one day back.
    sleep = _in_range(aggregate_sessions(
        _sessions(store, SLEEP_SESSION, add_days(start, -1), end), at, SLEEP,
    ), start)
    activity = _in_range(aggregate_sessions(
        _sessions(store, ACTIVITY, start, end), at, TASKS,
    ), start)
    steps = daily_totals(
        store.fetch(DAILY_STATS, start, end),
        lambda r: r.payload.get("steps", 0.0),
    )

    series = {
        "sleep": [(s.date, total_duration(s, at)) for s in sleep],
        "activity": [(s.date, total_duration(s, at)) for s in activity],
        "steps": steps,
    }
    report = {
        "start": start,
        "end": end,
        "summaries": {"sleep": sleep, "activity": activity},
        "series": series,
        "moving_averages": {},
        "trends": {},
        "dominant": {s.date: dominant_entity(s, at) for s in activity},
    }
    for name, _, policy, _ in SERIES:
        report["moving_averages"][name] = calculate_moving_average(
            series[name], MOVING_AVERAGE_WINDOW, gap_policy=policy,
        )
        report["trends"][name] = calculate_trend([v for _, v in series[name]])
    return report


def _fmt(value, is_duration):
    if value is None:
        return "·"
    return format_duration(value) if is_duration else format_stat_value(value)


def print_report(report):
    """Print a TUI-style summary of *report* (from :func:`build_report`)."""
    values = {
        name: {day.date(): value for day, value in series}
        for name, series in report["series"].items()
    }
    days = sorted({day for by_day in values.values() for day in by_day})

    print()
    print("═" * 80)
    print("  goalcache Summary")
    print(f"  {report['start']:%Y-%m-%d} … {report['end']:%Y-%m-%d}")
    print("═" * 80)
    print()

    print("─" * 80)
    print("  DAILY TOTALS")
    print("─" * 80)
    print(f"  {'Day':<12} {'Sleep':>10} {'Activity':>10} {'Steps':>10}  {'Top activity':<20}")
    print(f"  {'─' * 12} {'─' * 10} {'─' * 10} {'─' * 10}  {'─' * 20}")
    dominant = {day.date(): entity for day, entity in report["dominant"].items()}
    for day in days:
        row = {name: by_day.get(day) for name, by_day in values.items()}
        print(
            f"  {day.isoformat():<12}"
            f" {_fmt(row['sleep'], True):>10}"
            f" {_fmt(row['activity'], True):>10}"
            f" {_fmt(row['steps'], False):>10}"
            f"  {dominant.get(day) or '·':<20}"
        )
    if not days:
        print("  No cached data in this range.")

    print()
    print("─" * 80)
    print(f"  TRENDS ({MOVING_AVERAGE_WINDOW}-day moving average, change vs. previous week)")
    print("─" * 80)
    for name, label, _, is_duration in SERIES:
        averages = report["moving_averages"][name]
        latest = averages[-1][1] if averages else None
        trend = report["trends"][name]
        trend_str = f"{trend:+.1f}%" if trend is not None else "·"
        print(f"  {label:<12} {_fmt(latest, is_duration):>10}  {trend_str:>8}")

    print()
    print("─" * 80)
    print("  DISTRIBUTIONS")
    print("─" * 80)
    shown_any = False
    for name, label, _, _ in SERIES:
        vals = [v for _, v in report["series"][name]]
        if len(vals) < 2:
            continue
        shown_any = True
        st = compute_field_stats(vals)
        print()
        print(f"  {label}  (n={st['count']}, mean={format_stat_value(st['mean'])}, median={format_stat_value(st['median'])})")
        for line in build_histogram(vals, bins=min(10, len(vals))):
            print(f"  {line}")
    if not shown_any:
        print()
        print("  No data available for distribution charts.")

    print()
    print("═" * 80)
    print()


def print_sync_summary(counts, days, errors, kinds=(DAILY_STATS, SLEEP_SESSION, ACTIVITY)):
    """Print a TUI-style summary table of a refresh."""
    print()
    print("┌──────────────────────────────────────────┐")
    print("│          goalcache Sync Summary          │")
    print("├────────────────────────┬─────────────────┤")
    print("│ Kind                   │ Cached Records  │")
    print("├────────────────────────┼─────────────────┤")
    total = 0
    failed = {kind for kind, _ in errors}
    for name in kinds:
        count = counts.get(name, 0)
        total += count
        marker = "✗" if name in failed else ("✓" if count > 0 else "·")
        print(f"│ {marker} {name:<20} │ {count:>15,} │")
    print("├────────────────────────┼─────────────────┤")
    print(f"│ {'Total':<22} │ {total:>15,} │")
    print(f"│ {'Days requested':<22} │ {days:>15,} │")
    if errors:
        print(f"│ {'Errors':<22} │ {len(errors):>15,} │")
    print("└────────────────────────┴─────────────────┘")
    print()
