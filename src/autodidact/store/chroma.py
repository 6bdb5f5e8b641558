"""Chroma-based persistence for backing-store rows."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol, Sequence
from uuid import uuid4

from .base import (
    OWNER_COLUMN,
    ChangeCallback,
    ChangeEvent,
    ChangeFeed,
    RowChange,
    RowNotFoundError,
    Subscription,
    order_rows,
)

# rows are fetched by metadata filters only, never by similarity
_PLACEHOLDER_EMBEDDING = [1.0]


class ChromaUnavailableError(RuntimeError):
    """Raised when the Chroma client cannot be constructed."""


class CollectionProtocol(Protocol):
    """Protocol for the minimal Chroma collection API used by the row store."""

    def upsert(
        self,
        *,
        ids: Iterable[str],
        documents: Iterable[str],
        metadatas: Iterable[dict[str, Any]],
        embeddings: Iterable[list[float]],
    ) -> None:
        ...

    def get(
        self,
        *,
        ids: Iterable[str] | None = None,
        where: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> dict[str, list[Any]]:
        ...

    def delete(self, *, ids: Iterable[str]) -> None:
        ...


class ClientProtocol(Protocol):
    """Protocol for the minimal Chroma client API used by the row store."""

    def get_or_create_collection(self, name: str) -> CollectionProtocol:
        ...


class ChromaRowStore:
    """Persist rows as JSON documents, one Chroma collection per table.

    Scalar columns are mirrored into the document metadata so they can be used
    in ``where`` filters. Changes are published on a local feed after each write.
    """

    def __init__(
        self,
        path: Path,
        *,
        collection_prefix: str = "autodidact",
        client_factory: Callable[[], ClientProtocol] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._path = Path(path)
        self._collection_prefix = collection_prefix
        self._client_factory = client_factory or self._default_client_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._client: ClientProtocol | None = None
        self._collections: dict[str, CollectionProtocol] = {}
        self.feed = ChangeFeed()
        # upsert is a read followed by a write; keep concurrent ones from both inserting
        self._upsert_lock = asyncio.Lock()

    def _default_client_factory(self) -> ClientProtocol:
        try:
            import chromadb
        except ImportError as exc:  # pragma: no cover - depends on environment
            raise ChromaUnavailableError(
                "chromadb package is not installed; install autodidact-core with its dependencies"
            ) from exc

        return chromadb.PersistentClient(path=str(self._path))

    def _ensure_collection(self, table: str) -> CollectionProtocol:
        if table not in self._collections:
            client = self._client or self._client_factory()
            self._client = client
            self._collections[table] = client.get_or_create_collection(
                f"{self._collection_prefix}_{table}"
            )
        return self._collections[table]

    def ping(self) -> bool:
        """Verify that the underlying client can be obtained."""

        self._ensure_collection("tasks")
        return True

    @staticmethod
    def _where(filters: dict[str, Any] | None) -> dict[str, Any] | None:
        if not filters:
            return None
        clauses = [{key: value} for key, value in filters.items()]
        if len(clauses) == 1:
            return clauses[0]
        return {"$and": clauses}

    @staticmethod
    def _metadata_for(row: dict[str, Any]) -> dict[str, Any]:
        return {
            key: value
            for key, value in row.items()
            if isinstance(value, (str, int, float, bool)) and key != "metadata"
        }

    @staticmethod
    def _convert_result(result: dict[str, list[Any]]) -> list[dict[str, Any]]:
        return [json.loads(document) for document in result.get("documents", []) or []]

    def _write(self, table: str, row: dict[str, Any]) -> None:
        collection = self._ensure_collection(table)
        collection.upsert(
            ids=[row["id"]],
            documents=[json.dumps(row)],
            metadatas=[self._metadata_for(row)],
            embeddings=[_PLACEHOLDER_EMBEDDING],
        )

    def _query(self, table: str, where: dict[str, Any] | None) -> list[dict[str, Any]]:
        return self._convert_result(self._ensure_collection(table).get(where=where))

    def _remove(self, table: str, row_id: str) -> None:
        self._ensure_collection(table).delete(ids=[row_id])

    def _get_one(self, table: str, row_id: str) -> dict[str, Any] | None:
        result = self._ensure_collection(table).get(ids=[row_id])
        rows = self._convert_result(result)
        return rows[0] if rows else None

    async def select(
        self,
        table: str,
        *,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        rows = await asyncio.to_thread(self._query, table, self._where(filters))
        return order_rows(rows, order_by, descending, limit)

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        timestamp = self._clock().isoformat()
        record = dict(row)
        record.setdefault("id", str(uuid4()))
        record.setdefault("created_at", timestamp)
        record.setdefault("updated_at", timestamp)
        await asyncio.to_thread(self._write, table, record)
        await self._publish(table, ChangeEvent.INSERT, record)
        return record

    async def upsert(
        self, table: str, row: dict[str, Any], *, on_conflict: Sequence[str]
    ) -> dict[str, Any]:
        conflict = {column: row.get(column) for column in on_conflict}
        async with self._upsert_lock:
            existing = await self.select(table, filters=conflict, limit=1)
            if not existing:
                return await self.insert(table, row)
            current = existing[0]
            merged = {
                **current,
                **row,
                "id": current["id"],
                "created_at": current.get("created_at"),
                "updated_at": self._clock().isoformat(),
            }
            await asyncio.to_thread(self._write, table, merged)
        await self._publish(table, ChangeEvent.UPDATE, merged)
        return merged

    async def update(self, table: str, row_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        current = await asyncio.to_thread(self._get_one, table, row_id)
        if current is None:
            raise RowNotFoundError(f"{table} row '{row_id}' not found")
        merged = {**current, **changes, "id": row_id, "updated_at": self._clock().isoformat()}
        await asyncio.to_thread(self._write, table, merged)
        await self._publish(table, ChangeEvent.UPDATE, merged)
        return merged

    async def delete(self, table: str, row_id: str) -> None:
        current = await asyncio.to_thread(self._get_one, table, row_id)
        if current is None:
            raise RowNotFoundError(f"{table} row '{row_id}' not found")
        await asyncio.to_thread(self._remove, table, row_id)
        await self._publish(table, ChangeEvent.DELETE, current)

    def channel(self, table: str, owner_id: str, callback: ChangeCallback) -> Subscription:
        return Subscription(self.feed, table, owner_id, callback)

    async def _publish(self, table: str, event: ChangeEvent, row: dict[str, Any]) -> None:
        await self.feed.publish(RowChange(table, event, row.get(OWNER_COLUMN), dict(row)))


__all__ = ["ChromaRowStore", "ChromaUnavailableError"]
