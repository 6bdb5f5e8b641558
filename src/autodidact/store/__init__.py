"""Backing store abstractions: rows, change feed and validated records."""

from __future__ import annotations

from functools import lru_cache

from ..config import get_settings
from .base import (
    OWNER_COLUMN,
    TABLES,
    ChangeEvent,
    ChangeFeed,
    RowChange,
    RowNotFoundError,
    RowStore,
    RowStoreError,
    Subscription,
)
from .chroma import ChromaRowStore, ChromaUnavailableError
from .memory import MemoryRowStore
from .models import Activity, AgentMetric, AgentStats, KnowledgeNode, Task, TaskMetadata


@lru_cache(maxsize=1)
def get_row_store() -> RowStore:
    """Return the process-wide backing store handle, constructed on first use."""

    settings = get_settings()
    if settings.row_store == "chroma":
        store = ChromaRowStore(settings.chroma_persist_path)
        store.ping()
        return store
    return MemoryRowStore()


__all__ = [
    "Activity",
    "AgentMetric",
    "AgentStats",
    "ChangeEvent",
    "ChangeFeed",
    "ChromaRowStore",
    "ChromaUnavailableError",
    "KnowledgeNode",
    "MemoryRowStore",
    "OWNER_COLUMN",
    "RowChange",
    "RowNotFoundError",
    "RowStore",
    "RowStoreError",
    "Subscription",
    "TABLES",
    "Task",
    "TaskMetadata",
    "get_row_store",
]
