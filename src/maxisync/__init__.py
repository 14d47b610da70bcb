"""
maxisync: client-side data synchronization core for an optical-lens
point-of-sale application.

Keeps several independently rendered views consistent with one in-memory
source of truth fetched from a local REST backend.

Packages
--------
core      settings, logging, errors, enums, circuit breaker, retry, context
events    EventBus and typed event payloads
cache     CacheStore and the view subscription registry
sync      SyncCoordinator, PushChannel, ConnectionMonitor, SyncHelper
offline   OfflineQueue and its persistence backends
api       httpx-based backend client
views     view controllers (products, sales, transactions)
cli       Typer command-line interface

Usage::

    from maxisync import build_context

    ctx = build_context()
    await ctx.start()
    products = await ctx.cache.get_data("products")
"""

from maxisync.core.context import SyncContext, build_context

__version__ = "0.1.0"

__all__ = ["SyncContext", "build_context", "__version__"]
