"""Local repositories and the queue that replicates their writes.

:class:`LocalRepository` is the read/write surface over the cache store for
records authored on this device (locations, tasks). :class:`SyncingRepository`
wraps one and forwards each successful write to a :class:`SyncQueue`, which
persists pending operations to a JSON file and hands them in batches to a
pluggable handler. What the handler does with them (a remote backup, a
peer) is up to the caller.
"""

import json
import logging
import os
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from threading import RLock

from .records import encode_payload

log = logging.getLogger(__name__)

UPSERT = "upsert"
DELETE = "delete"


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(dt):
    return dt.isoformat() if dt is not None else None


def _from_iso(text):
    return datetime.fromisoformat(text) if text else None


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SyncOperation:
    """A pending upsert or delete of one record.

    *data* is the serialized payload of an upsert and ``None`` for deletes.
    """
    action: str
    record_type: str
    id: str
    data: str = None
    timestamp: datetime = None

    def __post_init__(self):
        if self.action not in (UPSERT, DELETE):
            raise ValueError(f"Unknown sync action: {self.action!r}")

    @property
    def is_delete(self):
        return self.action == DELETE

    def to_dict(self):
        return {
            "action": self.action,
            "record_type": self.record_type,
            "id": self.id,
            "data": self.data,
            "timestamp": _iso(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            action=data["action"],
            record_type=data["record_type"],
            id=str(data["id"]),
            data=data.get("data"),
            timestamp=_from_iso(data.get("timestamp")),
        )


@dataclass(frozen=True)
class QueuedOperation:
    """A :class:`SyncOperation` plus its retry bookkeeping."""
    operation: SyncOperation
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    queued_at: datetime = field(default_factory=_utcnow)
    retry_count: int = 0
    last_attempt_at: datetime = None
    last_error: str = None

    def with_retry(self, error, at=None):
        return replace(
            self,
            retry_count=self.retry_count + 1,
            last_attempt_at=at or _utcnow(),
            last_error=error,
        )

    def to_dict(self):
        return {
            "id": self.id,
            "operation": self.operation.to_dict(),
            "queued_at": _iso(self.queued_at),
            "retry_count": self.retry_count,
            "last_attempt_at": _iso(self.last_attempt_at),
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data["id"],
            operation=SyncOperation.from_dict(data["operation"]),
            queued_at=_from_iso(data.get("queued_at")) or _utcnow(),
            retry_count=int(data.get("retry_count", 0)),
            last_attempt_at=_from_iso(data.get("last_attempt_at")),
            last_error=data.get("last_error"),
        )


# ---------------------------------------------------------------------------
# Queue
# ---------------------------------------------------------------------------

class SyncQueue:
    """Crash-safe queue of pending :class:`SyncOperation` objects.

    A newer operation for the same ``(record_type, id)`` replaces the older
    one. :meth:`process` passes batches of up to *batch_size* entries to
    ``handler(batch)``, which returns the entries that failed. Failed
    entries are retried until they have failed *max_retries* times, then
    dropped and reported in ``status()["last_error"]``.

    Every change is written to *storage_path*. Write failures are logged and
    recorded as the last error; they never raise.
    """

    def __init__(self, storage_path, max_retries=3, batch_size=50, handler=None):
        self.storage_path = Path(storage_path)
        self.max_retries = max_retries
        self.batch_size = batch_size
        self.handler = handler
        self._queue = []
        self._lock = RLock()
        self._processing = False
        self.last_sync_at = None
        self.last_error = None

    # -- persistence ---------------------------------------------------------

    def load(self):
        """Replace the in-memory queue with the one saved on disk.

        A missing file leaves the queue empty. An unreadable file is logged
        and recorded as the last error.
        """
        if not self.storage_path.exists():
            return
        try:
            data = json.loads(self.storage_path.read_text())
            entries = [QueuedOperation.from_dict(d) for d in data]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            log.warning("Could not load sync queue from %s: %s", self.storage_path, exc)
            self.last_error = f"Failed to load queue: {exc}"
            return
        with self._lock:
            self._queue = entries
        log.info("Loaded %d pending sync operation(s)", len(entries))

    def _persist(self):
        try:
            self.storage_path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.storage_path.with_name(self.storage_path.name + ".tmp")
            tmp.write_text(json.dumps([e.to_dict() for e in self._queue], indent=2))
            os.replace(tmp, self.storage_path)
        except OSError as exc:
            log.warning("Failed to persist sync queue to %s: %s", self.storage_path, exc)
            self.last_error = f"Failed to persist queue: {exc}"

    # -- queue management ----------------------------------------------------

    def _add(self, operation):
        self._queue = [
            e for e in self._queue
            if (e.operation.record_type, e.operation.id) != (operation.record_type, operation.id)
        ]
        self._queue.append(QueuedOperation(operation=operation))

    def enqueue(self, operations):
        """Queue one operation or an iterable of them, then persist once."""
        if isinstance(operations, SyncOperation):
            operations = [operations]
        with self._lock:
            for operation in operations:
                self._add(operation)
            self._persist()

    def enqueue_upsert(self, record, timestamp=None):
        """Queue an upsert of a :class:`~goalcache.records.CacheRecord`."""
        try:
            data = encode_payload(record.payload)
        except (TypeError, ValueError) as exc:
            self.last_error = f"Failed to encode {record.cache_key} for sync: {exc}"
            log.warning(self.last_error)
            return
        self.enqueue(SyncOperation(
            action=UPSERT,
            record_type=record.kind,
            id=record.identity,
            data=data,
            timestamp=timestamp or _utcnow(),
        ))

    def enqueue_delete(self, record_type, id):
        self.enqueue(SyncOperation(
            action=DELETE, record_type=record_type, id=str(id), timestamp=_utcnow(),
        ))

    def pending(self):
        with self._lock:
            return list(self._queue)

    @property
    def pending_count(self):
        with self._lock:
            return len(self._queue)

    def status(self):
        with self._lock:
            return {
                "pending_count": len(self._queue),
                "last_sync_at": self.last_sync_at,
                "last_error": self.last_error,
                "is_processing": self._processing,
            }

    def clear(self):
        with self._lock:
            self._queue = []
            self._persist()

    def remove_record_type(self, record_type):
        with self._lock:
            self._queue = [e for e in self._queue if e.operation.record_type != record_type]
            self._persist()

    # -- processing ----------------------------------------------------------

    def process(self, handler=None):
        """Drain the queue through *handler* (or the one given at construction).

        Returns True when every operation went through. Returns False when
        another call is already processing or when an operation ran out of
        retries.
        """
        handler = handler or self.handler
        if handler is None:
            raise ValueError("No sync handler configured")
        with self._lock:
            if self._processing:
                return False
            if not self._queue:
                return True
            self._processing = True
        all_ok = True
        try:
            while True:
                with self._lock:
                    batch = self._queue[:self.batch_size]
                if not batch:
                    break
                try:
                    failed = [e.with_retry("rejected by sync handler") for e in handler(batch) or []]
                except Exception as exc:
                    log.warning("Sync handler failed for a batch of %d: %s", len(batch), exc)
                    failed = [e.with_retry(str(exc)) for e in batch]
                done = {e.id for e in batch}
                with self._lock:
                    self._queue = [e for e in self._queue if e.id not in done]
                    queued_keys = {(e.operation.record_type, e.operation.id) for e in self._queue}
                    for entry in failed:
                        key = (entry.operation.record_type, entry.operation.id)
                        if key in queued_keys:
                            # Replaced by a newer operation while in flight.
                            log.debug("Dropping superseded sync operation %s", entry.id)
                        elif entry.retry_count < self.max_retries:
                            self._queue.append(entry)
                        else:
                            self.last_error = (
                                f"Operation {entry.id} exceeded max retries: {entry.last_error}"
                            )
                            log.warning(self.last_error)
                            all_ok = False
                    self._persist()
        finally:
            with self._lock:
                self._processing = False
        if all_ok:
            self.last_sync_at = _utcnow()
            self.last_error = None
        return all_ok


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------

class LocalRepository:
    """Read/write access to locally-authored records in a cache store."""

    def __init__(self, store):
        self.store = store

    def get(self, kind, identity):
        return self.store.fetch_one(kind, identity)

    def list(self, kind, start=None, end=None):
        return self.store.fetch(kind, start, end)

    def save(self, record, updated_at=None):
        """Write *record* unless a newer version is already stored.

        Returns ``(current, written)``: the record that is current after
        the call, and whether *record* replaced it.
        """
        written = self.store.store([record], fetched_at=updated_at) > 0
        return self.store.fetch_one(record.kind, record.identity), written

    def upsert(self, record, updated_at=None):
        """Like :meth:`save` but returns only the current record."""
        return self.save(record, updated_at=updated_at)[0]

    def delete(self, kind, identity):
        self.store.delete(kind, identity)

    def add_entries(self, records):
        return self.store.store(records)

    def prune_entries(self, kind, older_than):
        return self.store.delete_older_than(older_than, kind)


class SyncingRepository:
    """Wraps a :class:`LocalRepository` and queues its writes for replication.

    A write is forwarded only after the local write succeeded; local errors
    propagate unchanged. Queue problems are logged and never reach the
    caller. Records of *unsynced_kinds* (high-frequency pings) stay local.
    """

    def __init__(self, local, queue, unsynced_kinds=frozenset({"location-entry"})):
        self.local = local
        self.queue = queue
        self.unsynced_kinds = frozenset(unsynced_kinds)

    def get(self, kind, identity):
        return self.local.get(kind, identity)

    def list(self, kind, start=None, end=None):
        return self.local.list(kind, start, end)

    def _forward(self, enqueue, *args, **kwargs):
        try:
            enqueue(*args, **kwargs)
        except Exception as exc:
            log.debug("Could not queue sync operation: %s", exc)

    def upsert(self, record, updated_at=None):
        current, written = self.local.save(record, updated_at=updated_at)
        # A stale write leaves the local copy untouched; nothing to replicate.
        if written and current.kind not in self.unsynced_kinds:
            self._forward(self.queue.enqueue_upsert, current, timestamp=updated_at)
        return current

    def delete(self, kind, identity):
        self.local.delete(kind, identity)
        if kind not in self.unsynced_kinds:
            self._forward(self.queue.enqueue_delete, kind, identity)

    def add_entries(self, records):
        return self.local.add_entries(records)

    def prune_entries(self, kind, older_than):
        return self.local.prune_entries(kind, older_than)
