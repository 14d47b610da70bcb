"""Record cache and view subscription registry.

Modules
-------
records         Cached-record metadata helpers and CacheEntry
subscriptions   Per-(kind, view) callback registry with circuit breakers
store           CacheStore -- staleness, mutations, fan-out, refresh
"""

from maxisync.cache.records import CacheEntry, strip, strip_all
from maxisync.cache.store import CacheStore, RefreshOutcome
from maxisync.cache.subscriptions import Notification, Subscription, SubscriptionRegistry

__all__ = [
    "CacheEntry",
    "CacheStore",
    "Notification",
    "RefreshOutcome",
    "Subscription",
    "SubscriptionRegistry",
    "strip",
    "strip_all",
]
