"""Write daily aggregates to InfluxDB for dashboards."""

import logging

from influxdb_client import Point, WritePrecision
from influxdb_client.domain.bucket_retention_rules import BucketRetentionRules
from influxdb_client.rest import ApiException

from .aggregator import dominant_entity, total_duration

log = logging.getLogger(__name__)


def ensure_bucket(influx_client, bucket, org):
    """Ensure the target InfluxDB bucket exists with infinite retention.

    Creates the bucket with no expiration (``every_seconds=0``) if missing.
    If the bucket already exists, logs a warning when its retention policy
    is not set to infinite so the operator can adjust it manually.
    Raises ``ApiException`` when the bucket cannot be created.
    """
    buckets_api = influx_client.buckets_api()
    existing = buckets_api.find_bucket_by_name(bucket)
    if existing:
        for rule in existing.retention_rules or []:
            if rule.every_seconds and rule.every_seconds > 0:
                log.warning(
                    "Bucket '%s' has a finite retention of %d seconds. "
                    "Data may be dropped. Consider setting retention to infinite (0).",
                    bucket,
                    rule.every_seconds,
                )
        return
    try:
        retention = BucketRetentionRules(type="expire", every_seconds=0)
        buckets_api.create_bucket(
            bucket_name=bucket, org=org, retention_rules=[retention],
        )
        log.info("Created InfluxDB bucket '%s' with infinite retention.", bucket)
    except ApiException as exc:
        log.error("Failed to create bucket '%s': %s", bucket, exc)
        raise


def build_summary_points(summaries, measurement, at):
    """One point per logical day with tracked seconds and the dominant entity."""
    points = []
    for summary in summaries:
        p = (
            Point(measurement)
            .time(summary.date, WritePrecision.S)
            .field("total_sec", float(total_duration(summary, at)))
            .field("completed_sec", float(summary.completed_duration))
        )
        dominant = dominant_entity(summary, at)
        if dominant is not None:
            p = p.tag("dominant", dominant)
        points.append(p)
    return points


def build_series_points(series, measurement, field):
    """Convert ``[(date, value), ...]`` into points of a single field."""
    return [
        Point(measurement).time(when, WritePrecision.S).field(field, float(value))
        for when, value in series
        if value is not None
    ]


def write_points(write_api, bucket, org, points, name):
    if not points:
        log.info("  %s: no data", name)
        return 0
    write_api.write(bucket=bucket, org=org, record=points)
    log.info("  %s: wrote %d points", name, len(points))
    return len(points)
