"""Tests for maxisync.core.errors and maxisync.core.retry."""

import pytest

from maxisync.core.errors import (
    ApiError,
    CacheError,
    ConnectionUnavailableError,
    ErrorCategory,
    InvalidArgumentError,
    MaxiSyncError,
    QueueReplayError,
    ValidationError,
    categorize_error,
    is_retryable,
)
from maxisync.core.enums import CacheAction
from maxisync.core.retry import ConstantBackoff, ExponentialBackoff, NoRetry


class TestErrorHierarchy:
    def test_defaults_per_class(self):
        assert InvalidArgumentError("x").category == ErrorCategory.INVOCATION
        assert ValidationError("x").category == ErrorCategory.VALIDATION
        assert ApiError("x").category == ErrorCategory.NETWORK
        assert ConnectionUnavailableError("x").retryable is True
        assert ApiError("x", status=500).retryable is False
        assert QueueReplayError("x").retryable is True

    def test_with_context_is_fluent(self):
        err = ApiError("not found", status=404).with_context(endpoint="products/p1", attempt=2)
        data = err.to_dict()
        assert data["error_type"] == "ApiError"
        assert data["context"] == {"endpoint": "products/p1", "http_status": 404, "attempt": 2}

    def test_cause_chained(self):
        cause = OSError("socket closed")
        err = MaxiSyncError("wrapped", cause=cause)
        assert err.__cause__ is cause
        assert err.to_dict()["cause"] == "socket closed"

    def test_argument_and_field_in_dict(self):
        assert InvalidArgumentError("bad", argument="callback").to_dict()["argument"] == "callback"
        data = ValidationError("low stock", field="stock", value=1).to_dict()
        assert data["field"] == "stock"
        assert data["value"] == "1"

    @pytest.mark.parametrize(
        "error,expected",
        [
            (ConnectionUnavailableError("down"), True),
            (ValidationError("bad"), False),
            (ConnectionError("reset"), True),
            (TimeoutError(), True),
            (KeyError("k"), False),
        ],
    )
    def test_is_retryable(self, error, expected):
        assert is_retryable(error) is expected

    def test_categorize(self):
        assert categorize_error(QueueReplayError("x")) == ErrorCategory.QUEUE

    def test_unknown_cache_action_raises_cache_error(self):
        assert CacheAction.parse("refreshed") is CacheAction.REPLACED
        with pytest.raises(CacheError) as exc:
            CacheAction.parse("frobnicate")
        assert exc.value.category == ErrorCategory.CACHE
        assert exc.value.to_dict()["context"]["action"] == "frobnicate"


class TestRetryStrategies:
    def test_exponential_without_jitter(self):
        strategy = ExponentialBackoff(max_retries=3, base_delay=0.5, jitter=False)
        assert [strategy.next_delay(a) for a in range(4)] == [0.5, 1.0, 2.0, 4.0]
        assert strategy.should_retry(2)
        assert not strategy.should_retry(3)

    def test_exponential_capped(self):
        strategy = ExponentialBackoff(base_delay=1, max_delay=5, jitter=False)
        assert strategy.next_delay(10) == 5

    def test_jitter_bounds(self):
        strategy = ExponentialBackoff(base_delay=1, jitter=True, jitter_range=0.25)
        for _ in range(20):
            assert 0.75 <= strategy.next_delay(0) <= 1.25

    def test_constant_and_none(self):
        assert ConstantBackoff(delay=2).next_delay(5) == 2
        assert not NoRetry().should_retry(0)
