"""
Shared pytest fixtures for maxisync tests.

This module provides:
- A controllable clock for cache staleness
- Fake list fetchers that count calls and can be made to fail
- An in-memory fake backend served through ``httpx.MockTransport``
- A fully wired ``SyncContext`` built on top of the fake backend
"""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from maxisync.api.client import ApiClient, ApiResponse
from maxisync.cache.store import CacheStore
from maxisync.core.context import SyncContext, build_context
from maxisync.core.enums import EntityKind
from maxisync.core.settings import SyncSettings, clear_settings_cache
from maxisync.events.bus import EventBus
from maxisync.offline.storage import MemoryQueueStorage

TOKEN = "test-token"
BASE_URL = "http://backend.test/api"


# =============================================================================
# Clock and fetchers
# =============================================================================


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeFetcher:
    """List fetcher returning ``records``; ``fail`` switches it to failures."""

    def __init__(self, records: list[dict[str, Any]] | None = None) -> None:
        self.records = records or []
        self.calls = 0
        self.fail = False
        self.raise_error = False

    async def __call__(self) -> ApiResponse:
        self.calls += 1
        if self.raise_error:
            raise RuntimeError("fetch exploded")
        if self.fail:
            return ApiResponse.failure("backend unavailable")
        return ApiResponse.ok([dict(r) for r in self.records])


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fetchers() -> dict[EntityKind, FakeFetcher]:
    return {kind: FakeFetcher() for kind in EntityKind}


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def cache(bus, fetchers, clock) -> CacheStore:
    return CacheStore(bus, fetchers, max_age=600, clock=clock)


# =============================================================================
# Fake backend
# =============================================================================


class FakeBackend:
    """In-memory REST backend for ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.online = True
        self.collections: dict[str, dict[str, dict[str, Any]]] = {
            "products": {},
            "sales": {},
            "transactions": {},
            "users": {},
        }
        self.requests: list[tuple[str, str]] = []
        self._counter = 0

    # -- seeding ------------------------------------------------------------

    def add(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        record = dict(record)
        if "_id" not in record:
            record["_id"] = self._next_id(collection)
        self.collections[collection][record["_id"]] = record
        return record

    def _next_id(self, collection: str) -> str:
        while True:
            self._counter += 1
            candidate = f"{collection[0]}{self._counter}"
            if candidate not in self.collections[collection]:
                return candidate

    # -- transport ----------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/api/").strip("/")
        method = request.method
        self.requests.append((method, path))

        if not self.online:
            raise httpx.ConnectError("connection refused", request=request)

        if path == "health":
            return httpx.Response(200, json={"status": "ok"})

        if request.headers.get("Authorization") != f"Bearer {TOKEN}":
            return httpx.Response(401, json={"message": "Token inválido"})

        parts = path.split("/")
        collection = parts[0]
        if collection not in self.collections:
            return httpx.Response(404, json={"message": "Not found"})
        records = self.collections[collection]
        body = json.loads(request.content) if request.content else None

        if len(parts) == 1:
            if method == "GET":
                return httpx.Response(200, json=list(records.values()))
            if method == "POST":
                return httpx.Response(201, json=self.add(collection, body or {}))

        if len(parts) == 3 and parts[1] == "barcode" and method == "GET":
            for record in records.values():
                if record.get("barcode") == parts[2]:
                    return httpx.Response(200, json=record)
            return httpx.Response(404, json={"message": "Producto no encontrado"})

        record = records.get(parts[1])
        if record is None:
            return httpx.Response(404, json={"message": "Not found"})

        if len(parts) == 3 and parts[2] == "stock" and method == "PATCH":
            record.update(body or {})
            return httpx.Response(200, json={"message": "Stock actualizado", "product": record})
        if method == "GET":
            return httpx.Response(200, json=record)
        if method == "PUT":
            record.update(body or {})
            return httpx.Response(200, json=record)
        if method == "DELETE":
            del records[parts[1]]
            return httpx.Response(200, json={"message": "Eliminado"})
        return httpx.Response(405, json={"message": "Method not allowed"})


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def api(backend) -> ApiClient:
    return ApiClient(BASE_URL, token=TOKEN, transport=httpx.MockTransport(backend.handler))


# =============================================================================
# Settings and context
# =============================================================================


@pytest.fixture
def settings(tmp_path) -> SyncSettings:
    return SyncSettings(
        _env_file=None,
        data_dir=tmp_path,
        offline_replay_delay_seconds=0,
        offline_retry_base_delay_seconds=0,
    )


@pytest.fixture
def ctx(settings, api, clock) -> SyncContext:
    return build_context(settings, client=api, storage=MemoryQueueStorage(), clock=clock)


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    clear_settings_cache()
    yield
    clear_settings_cache()
