"""Unit tests for the SQLite cache store and the kind registry."""

import random
import threading
import unittest
from datetime import datetime, timedelta, timezone

from goalcache.cache_store import CacheStore
from goalcache.records import (
    LOCATION_ENTRY,
    TASK_SESSION,
    CacheRecord,
    DataSource,
    KindRegistry,
    NotFound,
    RecordKind,
    UnsupportedKind,
    day_identity,
    register_local_kinds,
)

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


def task(identity, day, **extra):
    payload = {"id": identity, "start": datetime(2025, 1, day, 9).isoformat(), **extra}
    return TASK_SESSION.make(payload)


class StoreTestCase(unittest.TestCase):
    def setUp(self):
        self.registry = register_local_kinds(KindRegistry())
        self.store = CacheStore(":memory:", self.registry, clock=lambda: T0)

    def tearDown(self):
        self.store.close()


class TestKindRegistry(unittest.TestCase):
    def test_unknown_kind_raises(self):
        with self.assertRaises(UnsupportedKind) as ctx:
            KindRegistry().get("nope")
        self.assertEqual(ctx.exception.kind, "nope")

    def test_duplicate_name_rejected(self):
        registry = KindRegistry([TASK_SESSION])
        registry.register(TASK_SESSION)  # same object is fine
        other = RecordKind(
            name=TASK_SESSION.name, source=DataSource.MANUAL,
            identity=lambda p: p["id"], record_date=lambda p: p["start"],
        )
        with self.assertRaises(ValueError):
            registry.register(other)

    def test_make_builds_record(self):
        rec = task("a", 5)
        self.assertEqual(rec.identity, "a")
        self.assertEqual(rec.kind, "task-session")
        self.assertEqual(rec.source, DataSource.TASKS)
        self.assertEqual(rec.record_date, datetime(2025, 1, 5, 9))
        self.assertEqual(rec.cache_key, "tasks:task-session:a")

    def test_day_identity(self):
        self.assertEqual(day_identity(datetime(2025, 1, 5, 13)), "2025-01-05")


class TestStore(StoreTestCase):
    def test_store_and_fetch_round_trip(self):
        self.store.store([task("a", 5, note="hi")])
        rec = self.store.fetch_one("task-session", "a")
        self.assertEqual(rec.payload["note"], "hi")
        self.assertEqual(rec.record_date, datetime(2025, 1, 5, 9))

    def test_store_is_idempotent(self):
        recs = [task("a", 5), task("b", 6)]
        self.assertEqual(self.store.store(recs), 2)
        self.assertEqual(self.store.store(recs), 0)
        self.assertEqual(self.store.count("task-session"), 2)

    def test_newer_write_wins(self):
        self.store.store([task("a", 5, v=1)], fetched_at=T0)
        self.store.store([task("a", 5, v=2)], fetched_at=T0 + timedelta(seconds=1))
        self.assertEqual(self.store.fetch_one("task-session", "a").payload["v"], 2)

    def test_older_or_equal_write_discarded(self):
        self.store.store([task("a", 5, v=1)], fetched_at=T0)
        self.assertEqual(self.store.store([task("a", 5, v=0)], fetched_at=T0 - timedelta(hours=1)), 0)
        self.assertEqual(self.store.store([task("a", 5, v=3)], fetched_at=T0), 0)
        self.assertEqual(self.store.fetch_one("task-session", "a").payload["v"], 1)

    def test_entry_keeps_fetched_at(self):
        self.store.store([task("a", 5)], fetched_at=T0)
        self.assertEqual(self.store.entry("task-session", "a").fetched_at, T0)

    def test_fetch_range_is_inclusive_and_sorted(self):
        self.store.store([task("c", 7), task("a", 3), task("b", 5)])
        got = self.store.fetch("task-session", datetime(2025, 1, 3, 9), datetime(2025, 1, 5, 9))
        self.assertEqual([r.identity for r in got], ["a", "b"])
        self.assertEqual([r.identity for r in self.store.fetch("task-session")], ["a", "b", "c"])

    def test_fetch_open_ended(self):
        self.store.store([task("a", 3), task("b", 5)])
        got = self.store.fetch("task-session", start=datetime(2025, 1, 4))
        self.assertEqual([r.identity for r in got], ["b"])

    def test_unsupported_kind(self):
        with self.assertRaises(UnsupportedKind):
            self.store.fetch("garbage")
        bad = CacheRecord(DataSource.MANUAL, "garbage", "x", T0, {})
        with self.assertRaises(UnsupportedKind):
            self.store.store([bad])

    def test_delete(self):
        self.store.store([task("a", 5)])
        self.store.delete("task-session", "a")
        self.assertIsNone(self.store.fetch_one("task-session", "a"))
        with self.assertRaises(NotFound):
            self.store.delete("task-session", "a")

    def test_require_missing(self):
        with self.assertRaises(NotFound):
            self.store.require("task-session", "zzz")

    def test_delete_all_only_touches_kind(self):
        self.store.store([task("a", 5)])
        self.store.store([LOCATION_ENTRY.make({"id": "p1", "timestamp": "2025-01-05T10:00:00"})])
        self.assertEqual(self.store.delete_all("task-session"), 1)
        self.assertFalse(self.store.has_cached_data("task-session"))
        self.assertTrue(self.store.has_cached_data("location-entry"))

    def test_delete_older_than(self):
        self.store.store([task("a", 2), task("b", 8)])
        self.assertEqual(self.store.delete_older_than(datetime(2025, 1, 5), "task-session"), 1)
        self.assertEqual([r.identity for r in self.store.fetch("task-session")], ["b"])

    def test_record_date_edges(self):
        self.assertIsNone(self.store.latest_record_date("task-session"))
        self.store.store([task("a", 2), task("b", 8)])
        self.assertEqual(self.store.earliest_record_date("task-session"), datetime(2025, 1, 2, 9))
        self.assertEqual(self.store.latest_record_date("task-session"), datetime(2025, 1, 8, 9))

    def test_cached_days(self):
        self.store.store([task("a", 2), task("b", 2, x=1), task("c", 4)])
        self.assertEqual(
            self.store.cached_days("task-session"),
            {datetime(2025, 1, 2), datetime(2025, 1, 4)},
        )

    def test_random_ranges_match_filtered_records(self):
        rng = random.Random(7)
        base = datetime(2025, 1, 1)
        dates = [base + timedelta(minutes=rng.randrange(60 * 24 * 60)) for _ in range(200)]
        records = [
            TASK_SESSION.make({"id": f"r{i:03d}", "start": dt.isoformat()})
            for i, dt in enumerate(dates)
        ]
        self.store.store(records)
        for _ in range(50):
            a, b = sorted(base + timedelta(minutes=rng.randrange(60 * 24 * 60)) for _ in range(2))
            expected = sorted(
                (r for r in records if a <= r.record_date <= b),
                key=lambda r: (r.record_date, r.identity),
            )
            got = self.store.fetch("task-session", a, b)
            self.assertEqual([r.identity for r in got], [r.identity for r in expected])


class TestConcurrentWrites(StoreTestCase):
    def test_latest_fetched_at_wins_across_threads(self):
        versions = list(range(20))
        random.Random(3).shuffle(versions)
        threads = [
            threading.Thread(
                target=self.store.store,
                args=([task("a", 5, v=v)],),
                kwargs={"fetched_at": T0 + timedelta(seconds=v)},
            )
            for v in versions
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(self.store.count("task-session"), 1)
        entry = self.store.entry("task-session", "a")
        self.assertEqual(entry.record.payload["v"], max(versions))
        self.assertEqual(entry.fetched_at, T0 + timedelta(seconds=max(versions)))


if __name__ == "__main__":
    unittest.main()
