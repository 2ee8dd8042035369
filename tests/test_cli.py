"""Tests for configuration, the offline report, refresh orchestration and the CLI."""

import io
import os
import tempfile
import unittest
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch
from zoneinfo import ZoneInfo

from goalcache import cli
from goalcache.cache_store import CacheStore
from goalcache.config import get_config, get_timezone
from goalcache.garmin import ACTIVITY, DAILY_STATS, SLEEP_SESSION, register_garmin_kinds
from goalcache.garmin import ACTIVITY_KIND, DAILY_STATS_KIND, SLEEP_SESSION_KIND
from goalcache.records import KindRegistry, TASK_SESSION, register_local_kinds
from goalcache.refresh import refresh_all, refresh_gaps
from goalcache.report import build_report, print_report, print_sync_summary
from goalcache.state import MetadataStore
from goalcache.strategies import DateBasedStrategy

UTC = timezone.utc


def utc(day, hour=0):
    return datetime(2025, 1, day, hour, tzinfo=UTC)


class TestConfig(unittest.TestCase):
    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            cfg = get_config()
        self.assertEqual(cfg["INFLUXDB_URL"], "http://localhost:8086")
        self.assertEqual(cfg["INFLUXDB_BUCKET"], "goalcache")
        self.assertEqual(cfg["GOALCACHE_TIMEZONE"], "UTC")
        self.assertIsNone(cfg["GARMIN_EMAIL"])

    def test_missing_required_exits(self):
        with patch.dict(os.environ, {}, clear=True):
            with self.assertRaises(SystemExit) as ctx:
                get_config(required=("GARMIN_EMAIL",))
        self.assertEqual(ctx.exception.code, 1)

    def test_timezone(self):
        self.assertEqual(get_timezone({"GOALCACHE_TIMEZONE": "Europe/Berlin"}), ZoneInfo("Europe/Berlin"))
        with self.assertRaises(SystemExit):
            get_timezone({"GOALCACHE_TIMEZONE": "Not/AZone"})


class StoreMixin:
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        registry = register_garmin_kinds(register_local_kinds(KindRegistry()))
        self.store = CacheStore(":memory:", registry)
        self.meta = MetadataStore(os.path.join(self.tmpdir.name, "state.json"))

    def tearDown(self):
        self.store.close()
        self.tmpdir.cleanup()


class TestRefresh(StoreMixin, unittest.TestCase):
    def test_one_failing_kind_does_not_abort_others(self):
        def fetch(kind, start, end):
            if kind == "location-session":
                raise ConnectionError("offline")
            return [TASK_SESSION.make({"id": "t1", "start": utc(2, 9).isoformat()})]

        source = MagicMock()
        source.fetch.side_effect = fetch
        strategies = {"task-session": DateBasedStrategy("a"), "location-session": DateBasedStrategy("b")}
        counts, errors = refresh_all(self.store, self.meta, source, strategies, utc(1), utc(3))
        self.assertEqual(counts, {"task-session": 1})
        self.assertEqual([kind for kind, _ in errors], ["location-session"])

    def test_refresh_gaps(self):
        source = MagicMock()
        source.fetch.return_value = []
        counts, errors = refresh_gaps(self.store, source, [DAILY_STATS], utc(1), utc(3))
        self.assertEqual(counts, {DAILY_STATS: 0})
        self.assertEqual(errors, [])
        source.fetch.assert_called_once_with(DAILY_STATS, utc(1), utc(3))


class TestReport(StoreMixin, unittest.TestCase):
    def setUp(self):
        super().setUp()
        self.store.store([
            DAILY_STATS_KIND.make({"date": utc(d).isoformat(), "steps": 1000.0 * d}) for d in range(1, 4)
        ])
        self.store.store([SLEEP_SESSION_KIND.make({
            "date": utc(2).isoformat(), "entity": "sleep",
            "start": utc(1, 23).isoformat(), "end": utc(2, 7).isoformat(),
        })])
        self.store.store([ACTIVITY_KIND.make({
            "activity_id": "9", "entity": "running",
            "start": utc(2, 8).isoformat(), "end": utc(2, 9).isoformat(),
        })])

    def test_build_report(self):
        report = build_report(self.store, utc(1), utc(3, 12), utc(3, 12))
        self.assertEqual(report["series"]["steps"], [(utc(1), 1000.0), (utc(2), 2000.0), (utc(3), 3000.0)])
        self.assertEqual(report["series"]["sleep"], [(utc(1), 8 * 3600)])
        self.assertEqual(report["series"]["activity"], [(utc(2), 3600)])
        self.assertEqual(report["dominant"], {utc(2): "running"})
        self.assertAlmostEqual(report["moving_averages"]["steps"][-1][1], 2000.0)
        self.assertIsNone(report["trends"]["steps"])

    def test_print_report(self):
        report = build_report(self.store, utc(1), utc(3, 12), utc(3, 12))
        with patch("sys.stdout", new_callable=io.StringIO) as mock_out:
            print_report(report)
        out = mock_out.getvalue()
        self.assertIn("DAILY TOTALS", out)
        self.assertIn("2025-01-02", out)
        self.assertIn("running", out)
        self.assertIn("8h", out)

    def test_print_sync_summary(self):
        with patch("sys.stdout", new_callable=io.StringIO) as mock_out:
            print_sync_summary({DAILY_STATS: 3, ACTIVITY: 1}, 3, [(SLEEP_SESSION, Exception("x"))])
        out = mock_out.getvalue()
        self.assertIn("Sync Summary", out)
        self.assertIn("Errors", out)
        self.assertIn("✗ sleep-session", out)


class TestMain(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.env = {
            "GOALCACHE_DB": os.path.join(self.tmpdir.name, "cache.sqlite3"),
            "GOALCACHE_STATE_FILE": os.path.join(self.tmpdir.name, "state.json"),
            "GOALCACHE_QUEUE_FILE": os.path.join(self.tmpdir.name, "queue.json"),
            "GARMIN_EMAIL": "me@example.com",
            "GARMIN_PASSWORD": "secret",
        }

    def tearDown(self):
        self.tmpdir.cleanup()

    def run_main(self, *argv):
        with patch.dict(os.environ, self.env, clear=True), \
                patch("sys.argv", ["goalcache", *argv]), \
                patch("sys.stdout", new_callable=io.StringIO) as mock_out:
            cli.main()
        return mock_out.getvalue()

    def test_refresh_prints_summary(self):
        client = MagicMock()
        client.get_stats.return_value = {"totalSteps": 10}
        client.get_sleep_data.return_value = {}
        client.get_activities_by_date.return_value = []
        with patch("goalcache.cli.connect", return_value=client):
            out = self.run_main("--days", "2")
        self.assertIn("Sync Summary", out)
        self.assertEqual(client.get_stats.call_count, 2)

    def test_refresh_errors_exit_1(self):
        client = MagicMock()
        client.get_stats.side_effect = RuntimeError("boom")
        client.get_sleep_data.return_value = {}
        client.get_activities_by_date.return_value = []
        with patch("goalcache.cli.connect", return_value=client):
            with self.assertRaises(SystemExit) as ctx:
                self.run_main("--days", "1")
        self.assertEqual(ctx.exception.code, 1)

    def test_summary_needs_no_login(self):
        with patch("goalcache.cli.connect") as connect:
            out = self.run_main("--summary", "--days", "3")
        connect.assert_not_called()
        self.assertIn("No cached data in this range.", out)

    def test_clear_cache_and_queue_status(self):
        self.run_main("--clear-cache")
        out = self.run_main("--queue-status")
        self.assertIn("Pending operations: 0", out)

    def test_prune_entries(self):
        self.run_main("--prune-entries", "30")


if __name__ == "__main__":
    unittest.main()
