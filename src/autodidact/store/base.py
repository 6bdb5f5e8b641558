"""Row store protocol and the per-owner change feed shared by its implementations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol, Sequence

logger = logging.getLogger(__name__)

OWNER_COLUMN = "user_id"
TABLES = ("tasks", "activities", "agent_metrics", "knowledge_nodes", "github_installations")


class RowStoreError(RuntimeError):
    """Raised when the backing store rejects a read or write."""


class RowNotFoundError(RowStoreError):
    """Raised when an update or delete targets a missing row."""


class ChangeEvent(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True, slots=True)
class RowChange:
    """Row-level change notification delivered to subscribers."""

    table: str
    event: ChangeEvent
    owner_id: str | None
    row: dict[str, Any]


ChangeCallback = Callable[[RowChange], Awaitable[None]]


class Subscription:
    """Cancellable handle for one table's changes, filtered by owning user."""

    def __init__(self, feed: "ChangeFeed", table: str, owner_id: str, callback: ChangeCallback) -> None:
        self._feed = feed
        self.table = table
        self.owner_id = owner_id
        self.callback = callback
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> "Subscription":
        if not self._active:
            self._feed.register(self)
            self._active = True
        return self

    def stop(self) -> None:
        if self._active:
            self._feed.unregister(self)
            self._active = False

    def __repr__(self) -> str:
        state = "active" if self._active else "stopped"
        return f"Subscription(table={self.table!r}, owner_id={self.owner_id!r}, {state})"


class ChangeFeed:
    """Fan row changes out to the subscriptions whose owner filter matches."""

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    def register(self, subscription: Subscription) -> None:
        self._subscriptions.append(subscription)

    def unregister(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions)

    async def publish(self, change: RowChange) -> None:
        for subscription in list(self._subscriptions):
            if not subscription.active:
                continue
            if subscription.table != change.table or subscription.owner_id != change.owner_id:
                continue
            try:
                await subscription.callback(change)
            except Exception:  # subscriber errors stay with the subscriber
                logger.exception(
                    "Change subscriber failed",
                    extra={"table": change.table, "owner_id": change.owner_id},
                )


class RowStore(Protocol):
    """Narrow interface to the backing store (rows plus change feed)."""

    async def select(
        self,
        table: str,
        *,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        ...

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        ...

    async def upsert(
        self, table: str, row: dict[str, Any], *, on_conflict: Sequence[str]
    ) -> dict[str, Any]:
        ...

    async def update(self, table: str, row_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        ...

    async def delete(self, table: str, row_id: str) -> None:
        ...

    def channel(self, table: str, owner_id: str, callback: ChangeCallback) -> Subscription:
        ...


def matches_filters(row: dict[str, Any], filters: dict[str, Any] | None) -> bool:
    if not filters:
        return True
    return all(row.get(key) == value for key, value in filters.items())


def order_rows(
    rows: list[dict[str, Any]],
    order_by: str | None,
    descending: bool,
    limit: int | None,
) -> list[dict[str, Any]]:
    if order_by:
        rows = sorted(rows, key=lambda row: str(row.get(order_by) or ""), reverse=descending)
    if limit is not None:
        rows = rows[:limit]
    return rows


__all__ = [
    "ChangeCallback",
    "ChangeEvent",
    "ChangeFeed",
    "OWNER_COLUMN",
    "RowChange",
    "RowNotFoundError",
    "RowStore",
    "RowStoreError",
    "Subscription",
    "TABLES",
    "matches_filters",
    "order_rows",
]
