"""
In-memory cache of backend records, one entry per entity kind.

Manifesto:
    Several views render the same products, sales and transactions. The
    cache store is the single in-memory source of truth for them: reads are
    served from it while fresh, domain events mutate it, and every mutation
    is fanned out to the views subscribed to that kind. A failed fetch never
    leaves a view empty-handed when older data exists.

Architecture:
    ::

        CacheStore(bus, fetchers, max_age=600)
          _entries:  {EntityKind: CacheEntry(records, refreshed_at, loaded)}
          registry:  SubscriptionRegistry (per kind:view callbacks)

          get_data(kind)            fresh → copies | stale/partial/miss → fetch
          update_cache(kind, act, data)   created | updated | deleted | replace
          notify_subscribers(kind, action, data)
          bind_events()             data:<noun>:<action> → mutate → notify
          refresh_data / refresh_all_data / invalidate_cache / clear_all_cache
          cache_stats / health_check

Guardrails:
    ❌ DON'T: Hand cached dicts to views (metadata leaks, shared mutation)
    ✅ DO: Return stripped copies from every read

    ❌ DON'T: Notify before mutating
    ✅ DO: Apply the cache mutation, then notify subscribers

Tags:
    cache, staleness, fan-out, subscriptions, maxisync

Doc-Types:
    - API Reference
    - Technical Design
"""

from __future__ import annotations

import json
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from maxisync.api.client import ApiResponse
from maxisync.cache.records import (
    CACHED_AT,
    CacheEntry,
    Record,
    record_id,
    strip,
    strip_all,
)
from maxisync.cache.subscriptions import (
    Notification,
    NotificationCallback,
    SubscriptionRegistry,
)
from maxisync.core.enums import CacheAction, EntityKind
from maxisync.core.errors import CacheError
from maxisync.core.logging import get_logger
from maxisync.events.bus import EventBus
from maxisync.events.payloads import CacheUpdated, Events

logger = get_logger(__name__)

Fetcher = Callable[[], Awaitable[Any]]
Clock = Callable[[], float]

# Notification action for each cache mutation.
_NOTIFY_ACTION = {
    CacheAction.CREATED: "created",
    CacheAction.UPDATED: "updated",
    CacheAction.DELETED: "deleted",
    CacheAction.REPLACED: "refreshed",
}


@dataclass
class RefreshOutcome:
    """Result of refreshing one entity kind."""

    kind: EntityKind
    success: bool
    record_count: int = 0
    error: str | None = None
    records: list[Record] = field(default_factory=list, repr=False)


@dataclass
class CacheCounters:
    hits: int = 0
    misses: int = 0
    sync_operations: int = 0
    errors: int = 0
    last_sync: float | None = None

    @property
    def error_rate(self) -> float:
        if self.sync_operations == 0:
            return 0.0
        return self.errors / self.sync_operations


class CacheStore:
    """Per-kind record cache with staleness control and view fan-out.

    Args:
        bus: Event bus used for diagnostic events and domain-event binding
        fetchers: List fetch per entity kind; each returns an ``ApiResponse``
            or a plain payload
        max_age: Seconds after which an entry is stale
        subscriber_error_threshold: Failures before a view callback is removed
        memory_threshold_bytes: Health-check memory limit
        error_rate_threshold: Health-check sync error-rate limit
        clock: Returns the current time in epoch seconds
    """

    def __init__(
        self,
        bus: EventBus,
        fetchers: Mapping[EntityKind, Fetcher] | None = None,
        *,
        max_age: float = 600.0,
        subscriber_error_threshold: int = 5,
        memory_threshold_bytes: int = 5 * 1024 * 1024,
        error_rate_threshold: float = 0.10,
        clock: Clock = time.time,
    ) -> None:
        self.bus = bus
        self._fetchers: dict[EntityKind, Fetcher] = dict(fetchers or {})
        self.max_age = max_age
        self.registry = SubscriptionRegistry(error_threshold=subscriber_error_threshold)
        self._memory_threshold = memory_threshold_bytes
        self._error_rate_threshold = error_rate_threshold
        self._clock = clock
        self._entries: dict[EntityKind, CacheEntry] = {}
        self._counters = CacheCounters()
        self._unbind: list[Callable[[], int]] = []

    def set_fetcher(self, kind: EntityKind, fetcher: Fetcher) -> None:
        self._fetchers[kind] = fetcher

    # ── Reads ────────────────────────────────────────────────────

    async def get_data(self, kind: EntityKind | str) -> list[Record]:
        """Records for ``kind``; never raises.

        Serves the cached entry while fresh. Otherwise fetches and stores the
        result; if the fetch fails, falls back to the stale entry, or to an
        empty list when nothing is cached. An entry that only domain events
        have filled is a partial list, so it counts as a miss; its records
        are kept alongside the fetched ones.
        """
        kind = EntityKind.coerce(kind)
        entry = self._entries.get(kind)
        if entry is not None and entry.loaded and not entry.is_stale(self._clock(), self.max_age):
            self._counters.hits += 1
            logger.debug("cache_hit", kind=kind.value, records=len(entry.records))
            return strip_all(entry.records)

        self._counters.misses += 1
        records, error = await self._fetch(kind)
        if records is None:
            # the entry may have changed while the fetch was pending
            entry = self._entries.get(kind)
            if entry is not None:
                logger.warning(
                    "cache_serving_stale",
                    kind=kind.value,
                    age_seconds=round(entry.age(self._clock()), 1),
                    error=error,
                )
                return strip_all(entry.records)
            return []

        now = self._clock()
        fresh = CacheEntry(refreshed_at=now, loaded=True)
        fresh.replace(records, now)
        partial = self._entries.get(kind)
        merged = 0
        if partial is not None and not partial.loaded:
            for record in partial.records:
                merged += fresh.insert(record, record.get(CACHED_AT, now))
        self._entries[kind] = fresh
        logger.info(
            "cache_loaded", kind=kind.value, records=len(fresh.records), merged_from_events=merged
        )
        return strip_all(fresh.records)

    async def _fetch(self, kind: EntityKind) -> tuple[list[Record] | None, str | None]:
        fetcher = self._fetchers.get(kind)
        if fetcher is None:
            logger.warning("cache_no_fetcher", kind=kind.value)
            return None, f"No fetcher registered for {kind.value}"

        self._counters.sync_operations += 1
        self._counters.last_sync = self._clock()
        try:
            response = await fetcher()
        except Exception as exc:
            self._counters.errors += 1
            logger.error("cache_fetch_error", kind=kind.value, error=str(exc))
            return None, str(exc)

        if isinstance(response, ApiResponse):
            if not response.success:
                self._counters.errors += 1
                logger.error(
                    "cache_fetch_failed",
                    kind=kind.value,
                    message=response.message,
                    status=response.status,
                )
                return None, response.message
            payload = response.data
        else:
            payload = response
        return _unwrap(kind, payload), None

    def peek(self, kind: EntityKind | str) -> list[Record] | None:
        """Stripped copies of the cached records without freshness checks or fetching."""
        entry = self._entries.get(EntityKind.coerce(kind))
        return strip_all(entry.records) if entry is not None else None

    def get_record(self, kind: EntityKind | str, rid: str) -> Record | None:
        entry = self._entries.get(EntityKind.coerce(kind))
        if entry is None:
            return None
        record = entry.get(rid)
        return strip(record) if record is not None else None

    def is_stale(self, kind: EntityKind | str) -> bool:
        entry = self._entries.get(EntityKind.coerce(kind))
        return entry is None or not entry.loaded or entry.is_stale(self._clock(), self.max_age)

    # ── Mutations ────────────────────────────────────────────────

    def update_cache(self, kind: EntityKind | str, action: CacheAction | str, data: Any) -> bool:
        """Apply a mutation to the entry for ``kind``.

        Returns:
            False when the action keyword is unknown or the payload unusable.
        """
        kind = EntityKind.coerce(kind)
        try:
            parsed = CacheAction.parse(action)
        except CacheError:
            logger.warning("cache_unknown_action", kind=kind.value, action=str(action))
            return False

        now = self._clock()
        entry = self._entries.get(kind)
        if entry is None:
            entry = self._entries[kind] = CacheEntry(refreshed_at=now)

        if parsed is CacheAction.CREATED:
            if not isinstance(data, dict):
                logger.warning("cache_invalid_payload", kind=kind.value, action=parsed.value)
                return False
            if not entry.insert(data, now):
                logger.debug("cache_create_duplicate", kind=kind.value, id=record_id(data))
        elif parsed is CacheAction.UPDATED:
            if not isinstance(data, dict):
                logger.warning("cache_invalid_payload", kind=kind.value, action=parsed.value)
                return False
            entry.upsert(data, now)
        elif parsed is CacheAction.DELETED:
            rid = record_id(data) if isinstance(data, dict) else data
            if rid is None:
                logger.warning("cache_invalid_payload", kind=kind.value, action=parsed.value)
                return False
            entry.remove(str(rid))
        elif parsed is CacheAction.REPLACED:
            records = data if isinstance(data, list) else [data] if isinstance(data, dict) else []
            entry.replace([r for r in records if isinstance(r, dict)], now)
            # a refreshed list is the whole collection
            entry.loaded = entry.loaded or isinstance(data, list)

        entry.refreshed_at = now
        self.bus.emit(
            Events.CACHE_UPDATED,
            CacheUpdated(entity_kind=kind, action=parsed.value, record_count=len(entry.records)),
        )
        return True

    def patch_record(
        self, kind: EntityKind | str, rid: str, fields: dict[str, Any]
    ) -> Record | None:
        """Update selected fields of one cached record.

        Returns:
            Stripped copy of the patched record, or None if it is not cached.
        """
        kind = EntityKind.coerce(kind)
        entry = self._entries.get(kind)
        if entry is None:
            return None
        now = self._clock()
        record = entry.patch(rid, fields, now)
        if record is None:
            logger.debug("cache_patch_miss", kind=kind.value, id=rid)
            return None
        entry.refreshed_at = now
        self.bus.emit(
            Events.CACHE_UPDATED,
            CacheUpdated(entity_kind=kind, action="patched", record_count=len(entry.records)),
        )
        return strip(record)

    # ── Subscriptions ────────────────────────────────────────────

    def subscribe(
        self,
        view_name: str,
        kind: EntityKind | str,
        callback: NotificationCallback,
    ) -> Callable[[], int]:
        return self.registry.subscribe(view_name, kind, callback)

    def unsubscribe(
        self,
        view_name: str,
        kind: EntityKind | str,
        callback: NotificationCallback | None = None,
    ) -> int:
        return self.registry.unsubscribe(view_name, kind, callback)

    def is_subscribed(self, view_name: str, kind: EntityKind | str) -> bool:
        return self.registry.is_subscribed(view_name, kind)

    def notify_subscribers(
        self,
        kind: EntityKind | str,
        action: str,
        data: Any,
        *,
        source: str = "cache-store",
    ) -> int:
        """Fan a change out to every view subscribed to ``kind``."""
        kind = EntityKind.coerce(kind)
        notification = Notification(
            action=action,
            data=data,
            data_type=kind,
            timestamp=self._clock(),
            source=source,
        )
        delivered = self.registry.notify(kind, notification)
        logger.debug("subscribers_notified", kind=kind.value, action=action, delivered=delivered)
        return delivered

    # ── Event binding ────────────────────────────────────────────

    def bind_events(self, *, priority: int = 100) -> None:
        """Listen to domain events so the cache mutates ahead of other consumers."""
        if self._unbind:
            return
        for kind in EntityKind:
            for event_action, cache_action in (
                ("created", CacheAction.CREATED),
                ("updated", CacheAction.UPDATED),
                ("deleted", CacheAction.DELETED),
                ("refreshed", CacheAction.REPLACED),
            ):
                self._unbind.append(
                    self.bus.on(
                        Events.domain(kind, event_action),
                        self._domain_handler(kind, cache_action),
                        priority=priority,
                    )
                )
        self._unbind.append(
            self.bus.on(Events.CACHE_INVALIDATE, self._on_invalidate, priority=priority)
        )
        logger.info("cache_events_bound", listeners=len(self._unbind))

    def unbind_events(self) -> None:
        for unbind in self._unbind:
            unbind()
        self._unbind.clear()

    def _domain_handler(self, kind: EntityKind, action: CacheAction) -> Callable[[Any], None]:
        def handle(data: Any) -> None:
            if self.update_cache(kind, action, data):
                self.notify_subscribers(kind, _NOTIFY_ACTION[action], data)

        handle.__name__ = f"cache_{kind.value}_{action.value}"
        return handle

    def _on_invalidate(self, kind: Any) -> None:
        if kind is None:
            self.clear_all_cache()
        else:
            self.invalidate_cache(kind)

    # ── Refresh & eviction ───────────────────────────────────────

    async def refresh_data(self, kind: EntityKind | str) -> RefreshOutcome:
        """Drop the entry for ``kind``, re-fetch it and notify subscribers.

        When the fetch fails the previous entry is put back so readers keep
        the degraded (stale) view rather than nothing.
        """
        kind = EntityKind.coerce(kind)
        previous = self._entries.pop(kind, None)
        self._counters.misses += 1
        records, error = await self._fetch(kind)
        if records is None:
            if previous is not None and kind not in self._entries:
                self._entries[kind] = previous
            logger.warning("cache_refresh_failed", kind=kind.value, error=error)
            return RefreshOutcome(kind=kind, success=False, error=error)

        now = self._clock()
        fresh = CacheEntry(refreshed_at=now, loaded=True)
        fresh.replace(records, now)
        self._entries[kind] = fresh
        data = strip_all(fresh.records)
        self.notify_subscribers(kind, "refreshed", data)
        logger.info("cache_refreshed", kind=kind.value, records=len(data))
        return RefreshOutcome(kind=kind, success=True, record_count=len(data), records=data)

    async def refresh_all_data(self) -> dict[EntityKind, RefreshOutcome]:
        """Refresh every kind in turn; one failure does not stop the rest."""
        outcomes: dict[EntityKind, RefreshOutcome] = {}
        for kind in EntityKind:
            outcomes[kind] = await self.refresh_data(kind)
        failed = [k.value for k, o in outcomes.items() if not o.success]
        logger.info("cache_refresh_all", refreshed=len(outcomes) - len(failed), failed=failed)
        return outcomes

    def invalidate_cache(self, kind: EntityKind | str, *, notify: bool = True) -> bool:
        kind = EntityKind.coerce(kind)
        existed = self._entries.pop(kind, None) is not None
        logger.info("cache_invalidated", kind=kind.value, existed=existed)
        self.bus.emit(Events.CACHE_INVALIDATED, kind.value)
        if notify:
            self.notify_subscribers(kind, "cache-invalidated", None)
        return existed

    def clear_all_cache(self) -> None:
        count = len(self._entries)
        self._entries.clear()
        logger.info("cache_cleared", kinds=count)
        self.bus.emit(Events.CACHE_CLEARED, None)

    # ── Diagnostics ──────────────────────────────────────────────

    def memory_estimate_bytes(self) -> int:
        size = 0
        for entry in self._entries.values():
            size += len(json.dumps(entry.records, default=str)) * 2
        return size

    def cache_stats(self) -> dict[str, Any]:
        now = self._clock()
        lookups = self._counters.hits + self._counters.misses
        return {
            "kinds": {
                kind.value: {
                    "records": len(entry.records),
                    "age_seconds": round(entry.age(now), 3),
                    "stale": entry.is_stale(now, self.max_age),
                    "loaded": entry.loaded,
                }
                for kind, entry in self._entries.items()
            },
            "hits": self._counters.hits,
            "misses": self._counters.misses,
            "hit_rate": self._counters.hits / lookups if lookups else 0.0,
            "sync_operations": self._counters.sync_operations,
            "errors": self._counters.errors,
            "error_rate": self._counters.error_rate,
            "last_sync": self._counters.last_sync,
            "memory_bytes": self.memory_estimate_bytes(),
        }

    def subscriber_stats(self) -> dict[str, Any]:
        return {
            "total": self.registry.count(),
            "subscriptions": self.registry.stats(),
            "open_circuits": self.registry.open_circuits(),
        }

    def health_check(self) -> dict[str, Any]:
        """Advisory health report; never alters behavior."""
        stats = self.cache_stats()
        issues = []
        stale = [kind for kind, info in stats["kinds"].items() if info["stale"]]
        if stale:
            issues.append(f"Stale cache entries: {', '.join(stale)}")
        if stats["error_rate"] > self._error_rate_threshold:
            issues.append(f"High sync error rate: {stats['error_rate']:.1%}")
        if stats["memory_bytes"] > self._memory_threshold:
            issues.append(f"High memory estimate: {stats['memory_bytes'] // 1024} KB")
        if self.registry.open_circuits():
            issues.append(f"{len(self.registry.open_circuits())} subscriber circuit(s) open")
        return {"healthy": not issues, "issues": issues, "stats": stats}


def _unwrap(kind: EntityKind, payload: Any) -> list[Record]:
    if isinstance(payload, list):
        return [r for r in payload if isinstance(r, dict)]
    if isinstance(payload, dict):
        for key in (kind.value, "data", "items"):
            value = payload.get(key)
            if isinstance(value, list):
                return [r for r in value if isinstance(r, dict)]
    logger.warning("cache_unrecognized_payload", kind=kind.value, type=type(payload).__name__)
    return []


__all__ = ["CacheStore", "CacheCounters", "RefreshOutcome", "Fetcher", "Clock"]
