"""Dict-backed row store with a local change feed."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable, Sequence
from uuid import uuid4

from .base import (
    OWNER_COLUMN,
    ChangeCallback,
    ChangeEvent,
    ChangeFeed,
    RowChange,
    RowNotFoundError,
    Subscription,
    matches_filters,
    order_rows,
)


class MemoryRowStore:
    """In-process backing store; every write is pushed to matching subscriptions."""

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._tables: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._id_factory = id_factory or (lambda: str(uuid4()))
        self.feed = ChangeFeed()

    def _now(self) -> str:
        return self._clock().isoformat()

    async def select(
        self,
        table: str,
        *,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        rows = [dict(row) for row in self._tables[table].values() if matches_filters(row, filters)]
        return order_rows(rows, order_by, descending, limit)

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        record = dict(row)
        timestamp = self._now()
        record.setdefault("id", self._id_factory())
        record.setdefault("created_at", timestamp)
        record.setdefault("updated_at", timestamp)
        self._tables[table][record["id"]] = record
        await self._publish(table, ChangeEvent.INSERT, record)
        return dict(record)

    async def upsert(
        self, table: str, row: dict[str, Any], *, on_conflict: Sequence[str]
    ) -> dict[str, Any]:
        conflict = {column: row.get(column) for column in on_conflict}
        for existing in self._tables[table].values():
            if matches_filters(existing, conflict):
                merged = {
                    **existing,
                    **row,
                    "id": existing["id"],
                    "created_at": existing.get("created_at"),
                    "updated_at": self._now(),
                }
                self._tables[table][merged["id"]] = merged
                await self._publish(table, ChangeEvent.UPDATE, merged)
                return dict(merged)
        return await self.insert(table, row)

    async def update(self, table: str, row_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        try:
            existing = self._tables[table][row_id]
        except KeyError as exc:
            raise RowNotFoundError(f"{table} row '{row_id}' not found") from exc
        merged = {**existing, **changes, "id": row_id, "updated_at": self._now()}
        self._tables[table][row_id] = merged
        await self._publish(table, ChangeEvent.UPDATE, merged)
        return dict(merged)

    async def delete(self, table: str, row_id: str) -> None:
        try:
            existing = self._tables[table].pop(row_id)
        except KeyError as exc:
            raise RowNotFoundError(f"{table} row '{row_id}' not found") from exc
        await self._publish(table, ChangeEvent.DELETE, existing)

    def channel(self, table: str, owner_id: str, callback: ChangeCallback) -> Subscription:
        return Subscription(self.feed, table, owner_id, callback)

    async def _publish(self, table: str, event: ChangeEvent, row: dict[str, Any]) -> None:
        await self.feed.publish(RowChange(table, event, row.get(OWNER_COLUMN), dict(row)))


__all__ = ["MemoryRowStore"]
