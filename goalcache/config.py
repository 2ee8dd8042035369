"""Environment-based configuration.

Values come from the process environment, with a ``.env`` file in the
working directory loaded first.
"""

import logging
import os
import sys
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

load_dotenv()

log = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path.home() / ".goalcache"

# None means "no default"; such a key is only an error when required.
CONFIG_KEYS = {
    "GARMIN_EMAIL": None,
    "GARMIN_PASSWORD": None,
    "INFLUXDB_URL": "http://localhost:8086",
    "INFLUXDB_TOKEN": None,
    "INFLUXDB_ORG": None,
    "INFLUXDB_BUCKET": "goalcache",
    "GOALCACHE_DB": str(DEFAULT_DATA_DIR / "cache.sqlite3"),
    "GOALCACHE_STATE_FILE": str(DEFAULT_DATA_DIR / "state.json"),
    "GOALCACHE_QUEUE_FILE": str(DEFAULT_DATA_DIR / "sync_queue.json"),
    "GOALCACHE_TIMEZONE": "UTC",
}

GARMIN_KEYS = ("GARMIN_EMAIL", "GARMIN_PASSWORD")
INFLUX_KEYS = ("INFLUXDB_TOKEN", "INFLUXDB_ORG")


def get_config(required=()):
    """Return a dict of config values from the environment.

    Exits with status 1 when a key named in *required* has no value.
    """
    cfg = {}
    for key, default in CONFIG_KEYS.items():
        val = os.environ.get(key, default)
        if val is None and key in required:
            log.error("Missing required environment variable: %s", key)
            sys.exit(1)
        cfg[key] = val
    return cfg


def get_timezone(cfg):
    """Return the configured ``ZoneInfo``; exits on an unknown zone name."""
    name = cfg["GOALCACHE_TIMEZONE"]
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        log.error("Unknown time zone in GOALCACHE_TIMEZONE: %r", name)
        sys.exit(1)
