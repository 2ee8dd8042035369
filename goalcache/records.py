"""Cacheable records, per-kind descriptors and the kind registry.

Every record kept by the cache is a :class:`CacheRecord`. How a kind turns a
payload into an identity and a record date, and how it serializes the
payload, is described once by a :class:`RecordKind` and looked up through a
:class:`KindRegistry`, so the store itself never switches on record type.
"""

import json
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum


class DataSource(Enum):
    """Providers a record can originate from."""

    GARMIN = "garmin"
    ATCODER = "atcoder"
    ANKI = "anki"
    TYPEQUICKER = "typequicker"
    ZOTERO = "zotero"
    TASKS = "tasks"
    LOCATIONS = "locations"
    MANUAL = "manual"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class CacheError(Exception):
    """Base class for cache errors."""


class UnsupportedKind(CacheError):
    """Raised when an operation names a record kind nobody registered."""

    def __init__(self, kind):
        super().__init__(f"Unsupported record kind: {kind!r}")
        self.kind = kind


class NotFound(CacheError):
    """Raised when a lookup or update by identity finds nothing."""

    def __init__(self, kind, identity):
        super().__init__(f"No {kind!r} record with identity {identity!r}")
        self.kind = kind
        self.identity = identity


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CacheRecord:
    """One cached record. ``(source, kind, identity)`` is unique."""
    source: DataSource
    kind: str
    identity: str
    record_date: datetime
    payload: dict = field(default_factory=dict)

    @property
    def cache_key(self):
        return f"{self.source.value}:{self.kind}:{self.identity}"


@dataclass(frozen=True)
class StoredEntry:
    """A record as persisted, with the wall-clock time it was written."""
    record: CacheRecord
    fetched_at: datetime


def _json_default(val):
    if isinstance(val, (datetime, date)):
        return val.isoformat()
    raise TypeError(f"Object of type {type(val).__name__} is not JSON serializable")


def encode_payload(payload):
    """Serialize *payload* to a JSON string (datetimes become ISO strings)."""
    return json.dumps(payload, sort_keys=True, default=_json_default)


def decode_payload(text):
    return json.loads(text)


def parse_datetime(value):
    """Return *value* as a datetime, parsing ISO strings."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return datetime.fromisoformat(str(value))


def day_identity(day):
    """Identity used by one-record-per-day kinds, e.g. ``"2025-01-15"``."""
    return day.strftime("%Y-%m-%d")


@dataclass(frozen=True)
class RecordKind:
    """Descriptor telling the store how to handle one record kind.

    *identity* and *record_date* are callables taking the payload dict.
    *encode* / *decode* convert the payload to and from its stored text.
    """
    name: str
    source: DataSource
    identity: object
    record_date: object
    encode: object = encode_payload
    decode: object = decode_payload

    def make(self, payload):
        """Build a :class:`CacheRecord` of this kind from *payload*."""
        return CacheRecord(
            source=self.source,
            kind=self.name,
            identity=str(self.identity(payload)),
            record_date=parse_datetime(self.record_date(payload)),
            payload=dict(payload),
        )


class KindRegistry:
    """Maps kind names to their :class:`RecordKind` descriptors."""

    def __init__(self, kinds=()):
        self._kinds = {}
        for kind in kinds:
            self.register(kind)

    def register(self, kind):
        if kind.name in self._kinds and self._kinds[kind.name] is not kind:
            raise ValueError(f"Record kind {kind.name!r} is already registered")
        self._kinds[kind.name] = kind
        return kind

    def get(self, name):
        try:
            return self._kinds[name]
        except KeyError:
            raise UnsupportedKind(name) from None

    def names(self):
        return sorted(self._kinds)

    def __contains__(self, name):
        return name in self._kinds

    def __len__(self):
        return len(self._kinds)


# ---------------------------------------------------------------------------
# Locally-authored kinds
# ---------------------------------------------------------------------------

LOCATION_SESSION = RecordKind(
    name="location-session",
    source=DataSource.LOCATIONS,
    identity=lambda p: p["id"],
    record_date=lambda p: p["start"],
)

# Raw location pings. High frequency, pruned by age, never replicated.
LOCATION_ENTRY = RecordKind(
    name="location-entry",
    source=DataSource.LOCATIONS,
    identity=lambda p: p["id"],
    record_date=lambda p: p["timestamp"],
)

TASK_SESSION = RecordKind(
    name="task-session",
    source=DataSource.TASKS,
    identity=lambda p: p["id"],
    record_date=lambda p: p["start"],
)


def register_local_kinds(registry):
    """Register the kinds authored on this device (locations, tasks)."""
    for kind in (LOCATION_SESSION, LOCATION_ENTRY, TASK_SESSION):
        registry.register(kind)
    return registry
