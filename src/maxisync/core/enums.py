"""Closed enumerations shared across the synchronization core."""

from __future__ import annotations

from enum import Enum

from maxisync.core.errors import CacheError


class EntityKind(str, Enum):
    """Partition key for cached domain data and view subscriptions."""

    PRODUCTS = "products"
    SALES = "sales"
    TRANSACTIONS = "transactions"
    USERS = "users"

    @property
    def noun(self) -> str:
        """Singular noun used in domain event names (``data:<noun>:<action>``)."""
        return _NOUNS[self]

    @classmethod
    def from_noun(cls, noun: str) -> EntityKind:
        for kind, value in _NOUNS.items():
            if value == noun:
                return kind
        raise ValueError(f"Unknown entity noun: {noun!r}")

    @classmethod
    def coerce(cls, value: EntityKind | str) -> EntityKind:
        """Accept an enum member, its value (``products``) or its noun (``product``)."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.from_noun(value)


_NOUNS = {
    EntityKind.PRODUCTS: "product",
    EntityKind.SALES: "sale",
    EntityKind.TRANSACTIONS: "transaction",
    EntityKind.USERS: "user",
}


class CacheAction(str, Enum):
    """Mutation applied to a cache entry.

    The wire vocabulary has aliases (``add``, ``update``, ``remove``,
    ``refreshed``); :meth:`parse` folds them onto the four variants.
    """

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    REPLACED = "replace"

    @classmethod
    def parse(cls, value: CacheAction | str) -> CacheAction:
        """Resolve an action keyword.

        Raises:
            CacheError: If the keyword is not a known action or alias.
        """
        if isinstance(value, cls):
            return value
        try:
            return _ACTION_ALIASES[value]
        except (KeyError, TypeError):
            error = CacheError(f"Unknown cache action: {value!r}").with_context(action=value)
            raise error from None


_ACTION_ALIASES = {
    "created": CacheAction.CREATED,
    "add": CacheAction.CREATED,
    "updated": CacheAction.UPDATED,
    "update": CacheAction.UPDATED,
    "deleted": CacheAction.DELETED,
    "remove": CacheAction.DELETED,
    "replace": CacheAction.REPLACED,
    "refreshed": CacheAction.REPLACED,
}


class QueuePolicy(str, Enum):
    """What the offline queue does with an operation that fails on replay."""

    DROP = "drop"
    RETRY = "retry"
    DEAD_LETTER = "dead_letter"


class ConnectionState(str, Enum):
    """Push channel connection states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class HistoryType(str, Enum):
    """Kind of event bus history entry."""

    EMITTED = "emitted"
    ERROR = "error"


__all__ = [
    "EntityKind",
    "CacheAction",
    "QueuePolicy",
    "ConnectionState",
    "HistoryType",
]
