"""Keep per-user collections in step with the backing store's change feed."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Iterable

from pydantic import BaseModel, ValidationError

from ..store.base import OWNER_COLUMN, RowChange, RowStore, Subscription
from ..store.models import Activity, AgentMetric, AgentStats, KnowledgeNode, Task, can_transition

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CollectionSpec:
    """How one tracked collection is queried and validated."""

    name: str
    table: str
    model: type[BaseModel]
    order_by: str = "created_at"
    descending: bool = True
    limit: int | None = 50


DEFAULT_COLLECTIONS: tuple[CollectionSpec, ...] = (
    CollectionSpec("tasks", "tasks", Task),
    CollectionSpec("activities", "activities", Activity),
    CollectionSpec("metrics", "agent_metrics", AgentMetric, order_by="updated_at", limit=1),
    CollectionSpec("knowledge_nodes", "knowledge_nodes", KnowledgeNode, limit=100),
)


class RealtimeStateSync:
    """Hold one subscription per collection for the current user.

    Every change notification triggers a full refetch of that collection, and
    the result replaces the local tuple in a single assignment. Switching users
    stops every subscription before the next user's are started; fetches that
    finish after a switch are discarded.
    """

    def __init__(self, store: RowStore, specs: Iterable[CollectionSpec] = DEFAULT_COLLECTIONS) -> None:
        self._store = store
        self._specs = {spec.name: spec for spec in specs}
        self._user_id: str | None = None
        self._generation = 0
        self._subscriptions: dict[str, Subscription] = {}
        self._collections: dict[str, tuple[Any, ...]] = {name: () for name in self._specs}
        self._errors: dict[str, str] = {}

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def errors(self) -> dict[str, str]:
        return dict(self._errors)

    @property
    def active_subscriptions(self) -> list[Subscription]:
        return [subscription for subscription in self._subscriptions.values() if subscription.active]

    def collection(self, name: str) -> tuple[Any, ...]:
        if name not in self._specs:
            raise KeyError(f"Unknown collection '{name}'")
        return self._collections[name]

    @property
    def tasks(self) -> tuple[Task, ...]:
        return self.collection("tasks")

    @property
    def activities(self) -> tuple[Activity, ...]:
        return self.collection("activities")

    @property
    def metrics(self) -> tuple[AgentMetric, ...]:
        return self.collection("metrics")

    @property
    def knowledge_nodes(self) -> tuple[KnowledgeNode, ...]:
        return self.collection("knowledge_nodes")

    @property
    def stats(self) -> AgentStats:
        metrics = self.metrics
        return AgentStats.from_sources(metrics[0] if metrics else None, len(self.knowledge_nodes))

    async def set_user(self, user_id: str | None) -> None:
        if user_id == self._user_id:
            return

        self._teardown()
        self._generation += 1
        self._user_id = user_id
        self._collections = {name: () for name in self._specs}
        self._errors = {}
        if user_id is None:
            logger.info("Realtime sync stopped")
            return

        generation = self._generation
        for spec in self._specs.values():
            subscription = self._store.channel(spec.table, user_id, self._handler(spec.name, generation))
            self._subscriptions[spec.name] = subscription.start()
        logger.info(
            "Realtime sync started",
            extra={"user_id": user_id, "collections": list(self._specs)},
        )
        await asyncio.gather(*(self._refresh(name, generation) for name in self._specs))

    async def refresh(self, name: str) -> None:
        if name not in self._specs:
            raise KeyError(f"Unknown collection '{name}'")
        await self._refresh(name, self._generation)

    def prepend(self, name: str, record: Any) -> None:
        """Put ``record`` first in the collection, replacing any entry with its id."""

        current = self.collection(name)
        record_id = getattr(record, "id", None)
        self._collections[name] = (record,) + tuple(
            item for item in current if getattr(item, "id", None) != record_id
        )

    async def close(self) -> None:
        await self.set_user(None)

    def _teardown(self) -> None:
        for subscription in self._subscriptions.values():
            subscription.stop()
        self._subscriptions = {}

    def _handler(self, name: str, generation: int):
        async def on_change(change: RowChange) -> None:
            if generation != self._generation:
                return
            logger.debug(
                "Row change received",
                extra={"collection": name, "event": change.event.value},
            )
            await self._refresh(name, generation)

        return on_change

    async def _refresh(self, name: str, generation: int) -> None:
        spec = self._specs[name]
        user_id = self._user_id
        if user_id is None:
            return

        try:
            rows = await self._store.select(
                spec.table,
                filters={OWNER_COLUMN: user_id},
                order_by=spec.order_by,
                descending=spec.descending,
                limit=spec.limit,
            )
        except Exception as exc:  # one collection's failure stays with that collection
            if generation != self._generation:
                return
            logger.warning(
                "Collection fetch failed",
                extra={"collection": name, "error": str(exc)},
            )
            self._errors[name] = str(exc) or f"Failed to fetch {name}"
            return

        if generation != self._generation:
            logger.debug("Discarding stale fetch", extra={"collection": name})
            return

        records = tuple(self._parse(spec, rows))
        if spec.model is Task:
            self._observe_status_changes(self._collections.get(name, ()), records)
        self._collections[name] = records
        self._errors.pop(name, None)

    @staticmethod
    def _observe_status_changes(previous: Iterable[Task], current: Iterable[Task]) -> None:
        known = {task.id: task.status for task in previous}
        for task in current:
            before = known.get(task.id)
            if before is None or before == task.status:
                continue
            if can_transition(before, task.status):
                logger.info(
                    "Task status changed",
                    extra={"task_id": task.id, "from_status": before, "to_status": task.status},
                )
            else:
                logger.warning(
                    "Unexpected task status change",
                    extra={"task_id": task.id, "from_status": before, "to_status": task.status},
                )

    @staticmethod
    def _parse(spec: CollectionSpec, rows: list[dict[str, Any]]) -> Iterable[Any]:
        parse = getattr(spec.model, "from_row", spec.model.model_validate)
        for row in rows:
            try:
                yield parse(row)
            except ValidationError as exc:
                logger.warning(
                    "Skipping invalid row",
                    extra={"collection": spec.name, "row_id": row.get("id"), "errors": exc.error_count()},
                )


__all__ = ["CollectionSpec", "DEFAULT_COLLECTIONS", "RealtimeStateSync"]
