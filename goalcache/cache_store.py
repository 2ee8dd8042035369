"""SQLite-backed cache of records fetched from remote data sources.

All reads and writes go through one lock per store instance, so the
"read existing entry, decide, write" sequence in :meth:`CacheStore.store`
is atomic with respect to other threads using the same store.
"""

import logging
import sqlite3
from datetime import datetime, timezone
from threading import RLock

from .records import CacheRecord, DataSource, NotFound, StoredEntry
from .day_boundary import start_of_day

log = logging.getLogger(__name__)

_SCHEMA = (
    "CREATE TABLE IF NOT EXISTS cache_entries ("
    "kind TEXT NOT NULL, "
    "identity TEXT NOT NULL, "
    "source TEXT NOT NULL, "
    "record_date TEXT NOT NULL, "
    "record_ts REAL NOT NULL, "
    "fetched_at TEXT NOT NULL, "
    "fetched_ts REAL NOT NULL, "
    "payload TEXT NOT NULL, "
    "PRIMARY KEY(kind, identity)"
    ")"
)
_INDEX = (
    "CREATE INDEX IF NOT EXISTS cache_entries_by_date "
    "ON cache_entries(kind, record_ts)"
)


def _utcnow():
    return datetime.now(timezone.utc)


class CacheStore:
    """Conflict-safe store of :class:`~goalcache.records.CacheRecord` objects.

    *db_path* is a file path or ``":memory:"``. *registry* is the
    :class:`~goalcache.records.KindRegistry` consulted for every kind;
    operations on unregistered kinds raise ``UnsupportedKind``. *clock*
    returns the ``fetched_at`` used when :meth:`store` is not given one.
    """

    def __init__(self, db_path, registry, clock=None):
        self.db_path = str(db_path)
        self.registry = registry
        self._clock = clock or _utcnow
        self._lock = RLock()
        self._conn = sqlite3.connect(self.db_path, timeout=5.0, check_same_thread=False)
        with self._lock, self._conn:
            self._conn.execute(_SCHEMA)
            self._conn.execute(_INDEX)

    def close(self):
        with self._lock:
            self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    def store(self, records, fetched_at=None):
        """Insert or overwrite *records*, keeping the newest write per identity.

        An existing entry is replaced only when *fetched_at* is strictly
        later than the one on file; older or equal writes are discarded, so
        repeating a store is harmless. Returns how many rows were written.
        """
        records = list(records)
        for record in records:
            self.registry.get(record.kind)
        if not records:
            return 0
        fetched_at = fetched_at or self._clock()
        fetched_ts = fetched_at.timestamp()
        written = 0
        with self._lock, self._conn:
            for record in records:
                kind = self.registry.get(record.kind)
                row = self._conn.execute(
                    "SELECT fetched_ts FROM cache_entries WHERE kind = ? AND identity = ?",
                    (record.kind, record.identity),
                ).fetchone()
                if row is not None and not fetched_ts > row[0]:
                    log.debug(
                        "Discarding stale write for %s (fetched_at %s)",
                        record.cache_key, fetched_at.isoformat(),
                    )
                    continue
                self._conn.execute(
                    "INSERT OR REPLACE INTO cache_entries("
                    "kind, identity, source, record_date, record_ts, fetched_at, fetched_ts, payload"
                    ") VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        record.kind,
                        record.identity,
                        record.source.value,
                        record.record_date.isoformat(),
                        record.record_date.timestamp(),
                        fetched_at.isoformat(),
                        fetched_ts,
                        kind.encode(record.payload),
                    ),
                )
                written += 1
        return written

    def delete(self, kind, identity):
        """Delete one record; raises ``NotFound`` when it does not exist."""
        self.registry.get(kind)
        with self._lock, self._conn:
            cur = self._conn.execute(
                "DELETE FROM cache_entries WHERE kind = ? AND identity = ?",
                (kind, str(identity)),
            )
            if cur.rowcount == 0:
                raise NotFound(kind, identity)

    def delete_all(self, kind):
        """Delete every record of *kind*. Returns the number removed."""
        self.registry.get(kind)
        with self._lock, self._conn:
            cur = self._conn.execute("DELETE FROM cache_entries WHERE kind = ?", (kind,))
        log.info("Cleared %d cached %s record(s)", cur.rowcount, kind)
        return cur.rowcount

    def delete_older_than(self, date, kind):
        """Delete records of *kind* whose record date is before *date*."""
        self.registry.get(kind)
        with self._lock, self._conn:
            cur = self._conn.execute(
                "DELETE FROM cache_entries WHERE kind = ? AND record_ts < ?",
                (kind, date.timestamp()),
            )
        log.info("Pruned %d %s record(s) older than %s", cur.rowcount, kind, date.isoformat())
        return cur.rowcount

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def _row_to_entry(self, row):
        kind_name, identity, source, record_date, fetched_at, payload = row
        kind = self.registry.get(kind_name)
        record = CacheRecord(
            source=DataSource(source),
            kind=kind_name,
            identity=identity,
            record_date=datetime.fromisoformat(record_date),
            payload=kind.decode(payload),
        )
        return StoredEntry(record=record, fetched_at=datetime.fromisoformat(fetched_at))

    def fetch(self, kind, start=None, end=None):
        """Return records of *kind* dated within ``[start, end]``, oldest first.

        A ``None`` bound leaves that side of the range open.
        """
        self.registry.get(kind)
        query = (
            "SELECT kind, identity, source, record_date, fetched_at, payload "
            "FROM cache_entries WHERE kind = ?"
        )
        params = [kind]
        if start is not None:
            query += " AND record_ts >= ?"
            params.append(start.timestamp())
        if end is not None:
            query += " AND record_ts <= ?"
            params.append(end.timestamp())
        query += " ORDER BY record_ts ASC, identity ASC"
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [self._row_to_entry(row).record for row in rows]

    def entry(self, kind, identity):
        """Return the :class:`StoredEntry` for one identity, or ``None``."""
        self.registry.get(kind)
        with self._lock:
            row = self._conn.execute(
                "SELECT kind, identity, source, record_date, fetched_at, payload "
                "FROM cache_entries WHERE kind = ? AND identity = ?",
                (kind, str(identity)),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_entry(row)

    def fetch_one(self, kind, identity):
        """Point lookup by identity. Returns ``None`` when absent."""
        found = self.entry(kind, identity)
        return found.record if found is not None else None

    def require(self, kind, identity):
        """Like :meth:`fetch_one` but raises ``NotFound`` when absent."""
        record = self.fetch_one(kind, identity)
        if record is None:
            raise NotFound(kind, identity)
        return record

    def _edge_record_date(self, kind, order):
        self.registry.get(kind)
        with self._lock:
            row = self._conn.execute(
                "SELECT record_date FROM cache_entries WHERE kind = ? "
                f"ORDER BY record_ts {order} LIMIT 1",
                (kind,),
            ).fetchone()
        return datetime.fromisoformat(row[0]) if row else None

    def latest_record_date(self, kind):
        return self._edge_record_date(kind, "DESC")

    def earliest_record_date(self, kind):
        return self._edge_record_date(kind, "ASC")

    def has_cached_data(self, kind):
        self.registry.get(kind)
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM cache_entries WHERE kind = ? LIMIT 1", (kind,),
            ).fetchone()
        return row is not None

    def count(self, kind):
        self.registry.get(kind)
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM cache_entries WHERE kind = ?", (kind,),
            ).fetchone()
        return int(row[0])

    def cached_days(self, kind, start=None, end=None):
        """Return the set of start-of-day datetimes that have cached records."""
        return {start_of_day(r.record_date) for r in self.fetch(kind, start, end)}
