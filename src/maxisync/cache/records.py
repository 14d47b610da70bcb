"""Cached-record helpers.

A cached record is the backend's JSON dict plus two metadata keys owned by
the cache store: ``_cached_at`` (insertion time) and ``_last_modified``
(set on update). Views only ever see copies with both keys removed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

CACHED_AT = "_cached_at"
LAST_MODIFIED = "_last_modified"
ID_KEY = "_id"

_METADATA_KEYS = (CACHED_AT, LAST_MODIFIED)

Record = dict[str, Any]


def stamp(record: Record, now: float) -> Record:
    """Copy of ``record`` stamped with its insertion time."""
    stamped = dict(record)
    stamped[CACHED_AT] = now
    stamped.pop(LAST_MODIFIED, None)
    return stamped


def strip(record: Record) -> Record:
    """Copy of ``record`` without cache metadata."""
    return {k: v for k, v in record.items() if k not in _METADATA_KEYS}


def strip_all(records: list[Record]) -> list[Record]:
    return [strip(r) for r in records]


def record_id(record: Any) -> str | None:
    if isinstance(record, dict):
        value = record.get(ID_KEY)
        return str(value) if value is not None else None
    return None


@dataclass
class CacheEntry:
    """Records cached for one entity kind.

    Attributes:
        records: Stamped records, unique by ``_id``
        refreshed_at: Last time the entry was fetched or mutated
        loaded: True once a full list from the backend filled the entry;
            an entry built only from domain events holds a partial list
    """

    records: list[Record] = field(default_factory=list)
    refreshed_at: float = 0.0
    loaded: bool = False

    def index_of(self, rid: str) -> int:
        for index, record in enumerate(self.records):
            if record_id(record) == rid:
                return index
        return -1

    def get(self, rid: str) -> Record | None:
        index = self.index_of(rid)
        return self.records[index] if index >= 0 else None

    def insert(self, record: Record, now: float) -> bool:
        """Add ``record`` unless its id is already present."""
        rid = record_id(record)
        if rid is not None and self.index_of(rid) >= 0:
            return False
        self.records.append(stamp(record, now))
        return True

    def upsert(self, record: Record, now: float) -> bool:
        """Replace the record with the same id (keeping ``_cached_at``) or insert.

        Returns:
            True if an existing record was replaced.
        """
        rid = record_id(record)
        index = self.index_of(rid) if rid is not None else -1
        if index < 0:
            self.records.append(stamp(record, now))
            return False
        cached_at = self.records[index].get(CACHED_AT, now)
        updated = stamp(record, cached_at)
        updated[LAST_MODIFIED] = now
        self.records[index] = updated
        return True

    def patch(self, rid: str, fields: dict[str, Any], now: float) -> Record | None:
        index = self.index_of(rid)
        if index < 0:
            return None
        record = self.records[index]
        record.update({k: v for k, v in fields.items() if k not in _METADATA_KEYS})
        record[LAST_MODIFIED] = now
        return record

    def remove(self, rid: str) -> bool:
        before = len(self.records)
        self.records = [r for r in self.records if record_id(r) != rid]
        return len(self.records) != before

    def replace(self, records: list[Record], now: float) -> None:
        """Swap in ``records``; a later duplicate id wins over an earlier one."""
        by_id: dict[str, int] = {}
        fresh: list[Record] = []
        for record in records:
            rid = record_id(record)
            if rid is not None and rid in by_id:
                fresh[by_id[rid]] = stamp(record, now)
                continue
            if rid is not None:
                by_id[rid] = len(fresh)
            fresh.append(stamp(record, now))
        self.records = fresh

    def age(self, now: float) -> float:
        return now - self.refreshed_at

    def is_stale(self, now: float, max_age: float) -> bool:
        return self.age(now) > max_age


__all__ = [
    "CACHED_AT",
    "LAST_MODIFIED",
    "ID_KEY",
    "Record",
    "CacheEntry",
    "stamp",
    "strip",
    "strip_all",
    "record_id",
]
