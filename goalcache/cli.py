"""goalcache — cache Garmin data locally and report on it.

Usage:
    goalcache                     # refresh the last 30 days incrementally
    goalcache --days 7            # refresh the last 7 days
    goalcache --fill-gaps         # fetch only days with no cached stats
    goalcache --summary           # offline report from the cache
    goalcache --export            # write daily aggregates to InfluxDB
    goalcache --clear-cache       # drop all cached data and fetch metadata
    goalcache --prune-entries 30  # drop location pings older than 30 days
    goalcache --queue-status      # show pending replication operations
"""

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path

from influxdb_client import InfluxDBClient
from influxdb_client.client.write_api import SYNCHRONOUS

from .cache_store import CacheStore
from .config import GARMIN_KEYS, INFLUX_KEYS, get_config, get_timezone
from .day_boundary import add_days, start_of_day
from .export import build_series_points, build_summary_points, ensure_bucket, write_points
from .garmin import DAILY_STATS, GarminSource, connect, default_strategies, register_garmin_kinds
from .records import LOCATION_ENTRY, KindRegistry, register_local_kinds
from .refresh import refresh_all, refresh_gaps
from .report import build_report, print_report, print_sync_summary
from .state import MetadataStore
from .sync import LocalRepository, SyncingRepository, SyncQueue

log = logging.getLogger("goalcache")


def build_registry():
    registry = KindRegistry()
    register_local_kinds(registry)
    register_garmin_kinds(registry)
    return registry


def open_store(cfg):
    db_path = Path(cfg["GOALCACHE_DB"])
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return CacheStore(db_path, build_registry())


def clear_cache(store, metadata_store):
    total = sum(store.delete_all(kind) for kind in store.registry.names())
    metadata_store.clear_all()
    log.info("Cleared %d cached record(s) and all fetch metadata.", total)


def export_report(cfg, report, at):
    """Write the aggregates of *report* to InfluxDB. Returns points written."""
    influx = InfluxDBClient(
        url=cfg["INFLUXDB_URL"],
        token=cfg["INFLUXDB_TOKEN"],
        org=cfg["INFLUXDB_ORG"],
    )
    bucket, org = cfg["INFLUXDB_BUCKET"], cfg["INFLUXDB_ORG"]
    try:
        ensure_bucket(influx, bucket, org)
        write_api = influx.write_api(write_options=SYNCHRONOUS)
        total = 0
        for name, summaries in report["summaries"].items():
            total += write_points(
                write_api, bucket, org,
                build_summary_points(summaries, f"{name}_daily", at), f"{name} daily",
            )
        total += write_points(
            write_api, bucket, org,
            build_series_points(report["series"]["steps"], "steps_daily", "steps"), "steps daily",
        )
        for name, series in report["moving_averages"].items():
            total += write_points(
                write_api, bucket, org,
                build_series_points(series, "moving_average", f"{name}_7d"), f"{name} 7d average",
            )
    finally:
        influx.close()
    return total


def main():
    parser = argparse.ArgumentParser(description="Cache Garmin data locally and report on it")
    parser.add_argument("--days", type=int, default=30, help="Number of past days to cover (default: 30)")
    parser.add_argument("--fill-gaps", action="store_true", help="Fetch daily stats only for days missing from the cache")
    parser.add_argument("--summary", action="store_true", help="Print a report from cached data and exit (no login)")
    parser.add_argument("--export", action="store_true", help="Write daily aggregates from the cache to InfluxDB and exit")
    parser.add_argument("--clear-cache", action="store_true", help="Delete all cached records and fetch metadata, then exit")
    parser.add_argument("--prune-entries", type=int, metavar="DAYS", default=None, help="Delete location entries older than DAYS days, then exit")
    parser.add_argument("--queue-status", action="store_true", help="Print the replication queue status and exit")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )
    if args.days < 1:
        parser.error("--days must be at least 1")

    required = ()
    if args.export:
        required = INFLUX_KEYS
    elif not (args.summary or args.clear_cache or args.prune_entries is not None or args.queue_status):
        required = GARMIN_KEYS
    cfg = get_config(required)
    tz = get_timezone(cfg)

    now = datetime.now(tz)
    start = start_of_day(add_days(now, -(args.days - 1)))

    queue = SyncQueue(cfg["GOALCACHE_QUEUE_FILE"])
    queue.load()
    if args.queue_status:
        status = queue.status()
        print(f"Pending operations: {status['pending_count']}")
        print(f"Last error:         {status['last_error'] or '·'}")
        return

    store = open_store(cfg)
    metadata_store = MetadataStore(cfg["GOALCACHE_STATE_FILE"])
    try:
        if args.clear_cache:
            clear_cache(store, metadata_store)
            return

        if args.prune_entries is not None:
            repo = SyncingRepository(LocalRepository(store), queue)
            removed = repo.prune_entries(LOCATION_ENTRY.name, add_days(now, -args.prune_entries))
            log.info("Pruned %d location entr%s.", removed, "y" if removed == 1 else "ies")
            return

        if args.summary or args.export:
            report = build_report(store, start, now, now)
            if args.summary:
                print_report(report)
            if args.export:
                total = export_report(cfg, report, now)
                log.info("Done. Wrote %d total points.", total)
            return

        source = GarminSource(connect(cfg["GARMIN_EMAIL"], cfg["GARMIN_PASSWORD"]), tz)
        log.info("Refreshing %s … %s", start.date(), now.date())
        if args.fill_gaps:
            counts, errors = refresh_gaps(store, source, [DAILY_STATS], start, now)
        else:
            counts, errors = refresh_all(
                store, metadata_store, source, default_strategies(), start, now,
            )
    finally:
        store.close()

    print_sync_summary(counts, args.days, errors)
    if errors:
        log.warning("Encountered %d error(s) during refresh.", len(errors))
        sys.exit(1)
