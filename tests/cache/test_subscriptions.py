"""Tests for maxisync.cache.subscriptions — SubscriptionRegistry."""

import asyncio

import pytest

from maxisync.cache.subscriptions import Notification, SubscriptionRegistry, subscription_key
from maxisync.core.enums import EntityKind
from maxisync.core.errors import InvalidArgumentError


def note(action="updated", data=None, kind=EntityKind.PRODUCTS):
    return Notification(action=action, data=data, data_type=kind)


class TestSubscribe:
    def test_key_format(self):
        assert subscription_key(EntityKind.PRODUCTS, "productsView") == "products:productsView"

    @pytest.mark.parametrize(
        "view,kind,callback",
        [
            ("", EntityKind.PRODUCTS, print),
            ("v", "widgets", print),
            ("v", 3, print),
            ("v", EntityKind.PRODUCTS, "nope"),
        ],
    )
    def test_invalid_arguments(self, view, kind, callback):
        registry = SubscriptionRegistry()
        with pytest.raises(InvalidArgumentError):
            registry.subscribe(view, kind, callback)

    def test_noun_accepted_for_kind(self):
        registry = SubscriptionRegistry()
        registry.subscribe("v", "product", print)
        assert registry.is_subscribed("v", EntityKind.PRODUCTS)

    def test_unsubscribe_by_view_removes_all_callbacks(self):
        registry = SubscriptionRegistry()
        registry.subscribe("v", EntityKind.PRODUCTS, lambda n: None)
        registry.subscribe("v", EntityKind.PRODUCTS, lambda n: None)
        registry.subscribe("other", EntityKind.PRODUCTS, lambda n: None)
        assert registry.unsubscribe("v", EntityKind.PRODUCTS) == 2
        assert registry.count() == 1

    def test_unsubscribe_by_callback(self):
        registry = SubscriptionRegistry()
        keep = lambda n: None  # noqa: E731
        drop = lambda n: None  # noqa: E731
        registry.subscribe("v", EntityKind.PRODUCTS, keep)
        registry.subscribe("v", EntityKind.PRODUCTS, drop)
        assert registry.unsubscribe("v", EntityKind.PRODUCTS, drop) == 1
        assert [s.callback for s in registry.subscriptions_for(EntityKind.PRODUCTS)] == [keep]

    def test_unsubscribe_fn_is_single_use(self):
        registry = SubscriptionRegistry()
        off = registry.subscribe("v", EntityKind.SALES, print)
        assert off() == 1
        assert off() == 0
        assert registry.unsubscribe("v", EntityKind.SALES) == 0


class TestNotify:
    def test_delivers_across_views_of_one_kind(self):
        registry = SubscriptionRegistry()
        a, b, other = [], [], []
        registry.subscribe("a", EntityKind.PRODUCTS, a.append)
        registry.subscribe("b", EntityKind.PRODUCTS, b.append)
        registry.subscribe("a", EntityKind.SALES, other.append)
        n = note()
        assert registry.notify(EntityKind.PRODUCTS, n) == 2
        assert a == [n] and b == [n] and other == []

    def test_tracks_calls_and_errors(self):
        registry = SubscriptionRegistry()

        def broken(_):
            raise ValueError("bad render")

        registry.subscribe("v", EntityKind.PRODUCTS, broken)
        registry.notify(EntityKind.PRODUCTS, note())
        registry.notify(EntityKind.PRODUCTS, note())
        stats = registry.stats()["products:v"]
        assert stats["call_count"] == 2
        assert stats["error_count"] == 2
        assert stats["last_called"] is not None

    def test_threshold_removes_subscription(self):
        registry = SubscriptionRegistry(error_threshold=2)

        def broken(_):
            raise ValueError("bad render")

        registry.subscribe("v", EntityKind.PRODUCTS, broken)
        assert registry.notify(EntityKind.PRODUCTS, note()) == 0
        assert registry.is_subscribed("v", EntityKind.PRODUCTS)
        registry.notify(EntityKind.PRODUCTS, note())
        assert not registry.is_subscribed("v", EntityKind.PRODUCTS)
        circuit = registry.open_circuits()[0]
        assert circuit["name"] == "products:v"
        assert circuit["last_error"] == "bad render"

    @pytest.mark.asyncio
    async def test_async_callback_scheduled(self):
        registry = SubscriptionRegistry()
        received = []

        async def handler(n):
            received.append(n.action)

        registry.subscribe("v", EntityKind.PRODUCTS, handler)
        assert registry.notify(EntityKind.PRODUCTS, note("created")) == 1
        await asyncio.sleep(0)
        assert received == ["created"]

    @pytest.mark.asyncio
    async def test_async_callback_failure_counted(self):
        registry = SubscriptionRegistry()

        async def handler(_):
            raise RuntimeError("async render failed")

        registry.subscribe("v", EntityKind.PRODUCTS, handler)
        registry.notify(EntityKind.PRODUCTS, note())
        await asyncio.sleep(0.01)
        assert registry.stats()["products:v"]["error_count"] == 1

    def test_async_callback_without_loop_is_a_failure(self):
        registry = SubscriptionRegistry()

        async def handler(_):
            return None

        registry.subscribe("v", EntityKind.PRODUCTS, handler)
        assert registry.notify(EntityKind.PRODUCTS, note()) == 0
        assert registry.stats()["products:v"]["error_count"] == 1

    def test_clear(self):
        registry = SubscriptionRegistry()
        registry.subscribe("v", EntityKind.PRODUCTS, print)
        registry.clear()
        assert registry.count() == 0
