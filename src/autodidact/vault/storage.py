"""Local persistent key-value stores shared between execution contexts."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Protocol

logger = logging.getLogger(__name__)

PROBE_KEY = "autodidact-builder:__availability_test__"


class StorageUnavailableError(RuntimeError):
    """Raised when the persistent key-value medium cannot be used."""


@dataclass(frozen=True, slots=True)
class StorageChange:
    """A key modified by another execution context."""

    key: str
    old_present: bool
    new_present: bool


StorageListener = Callable[[StorageChange], Awaitable[None]]


class KeyValueStore(Protocol):
    """Minimal localStorage-like API used by the credential vault."""

    def probe(self) -> bool:
        ...

    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...

    def subscribe(self, listener: StorageListener) -> Callable[[], None]:
        ...


class _ListenerMixin:
    def _init_listeners(self) -> None:
        self._listeners: list[StorageListener] = []

    def subscribe(self, listener: StorageListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def _dispatch(self, change: StorageChange) -> None:
        for listener in list(self._listeners):
            try:
                await listener(change)
            except Exception:  # listeners belong to other components
                logger.exception("Storage listener failed", extra={"key": change.key})


class MemoryKeyValueStore(_ListenerMixin):
    """In-process store; ``available=False`` simulates blocked storage."""

    def __init__(self, *, available: bool = True) -> None:
        self._data: dict[str, str] = {}
        self.available = available
        self._init_listeners()

    def probe(self) -> bool:
        try:
            self.set(PROBE_KEY, "1")
            self.remove(PROBE_KEY)
        except StorageUnavailableError:
            return False
        return True

    def _check(self) -> None:
        if not self.available:
            raise StorageUnavailableError("Persistent storage is disabled")

    def get(self, key: str) -> str | None:
        self._check()
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._check()
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._check()
        self._data.pop(key, None)

    async def simulate_external_write(self, key: str, value: str | None) -> None:
        """Mutate ``key`` as another tab would and notify listeners."""

        old_present = key in self._data
        if value is None:
            self._data.pop(key, None)
        else:
            self._data[key] = value
        await self._dispatch(StorageChange(key, old_present, value is not None))


class FileKeyValueStore(_ListenerMixin):
    """Directory-backed store: one JSON document per key.

    Several instances pointed at the same directory behave like browser tabs
    sharing ``localStorage``; :meth:`poll_changes` reports what the others did.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)
        self._probe_result: bool | None = None
        self._snapshot: dict[str, tuple[int, str]] = self._scan()
        self._init_listeners()

    @property
    def root(self) -> Path:
        return self._root

    def probe(self) -> bool:
        if self._probe_result is None:
            try:
                self._root.mkdir(parents=True, exist_ok=True)
                self.set(PROBE_KEY, "1")
                self.remove(PROBE_KEY)
                self._probe_result = True
            except OSError as exc:
                logger.warning("Secure storage is unavailable", extra={"error": str(exc)})
                self._probe_result = False
        return self._probe_result

    def _path_for(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:32]
        return self._root / f"{digest}.json"

    def get(self, key: str) -> str | None:
        path = self._path_for(key)
        try:
            document = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable storage entry", extra={"key": key})
            return None
        return document.get("value")

    def set(self, key: str, value: str) -> None:
        path = self._path_for(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps({"key": key, "value": value}), encoding="utf-8")
        tmp.replace(path)
        self._remember(key, path)

    def remove(self, key: str) -> None:
        path = self._path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        self._snapshot.pop(key, None)

    def _remember(self, key: str, path: Path) -> None:
        try:
            self._snapshot[key] = self._fingerprint(path)
        except FileNotFoundError:
            self._snapshot.pop(key, None)

    @staticmethod
    def _fingerprint(path: Path) -> tuple[int, str]:
        stat = path.stat()
        content = path.read_bytes()
        return stat.st_mtime_ns, hashlib.sha256(content).hexdigest()

    def _scan(self) -> dict[str, tuple[int, str]]:
        current: dict[str, tuple[int, str]] = {}
        if not self._root.is_dir():
            return current
        for path in self._root.glob("*.json"):
            try:
                document = json.loads(path.read_text(encoding="utf-8"))
                current[document["key"]] = self._fingerprint(path)
            except (FileNotFoundError, json.JSONDecodeError, KeyError):
                continue
        return current

    async def poll_changes(self) -> list[StorageChange]:
        """Report keys changed by other instances since the previous poll."""

        current = await asyncio.to_thread(self._scan)
        changes: list[StorageChange] = []
        for key in sorted(set(current) | set(self._snapshot)):
            if key == PROBE_KEY:
                continue
            before = self._snapshot.get(key)
            after = current.get(key)
            if before == after:
                continue
            changes.append(StorageChange(key, before is not None, after is not None))
        self._snapshot = current
        for change in changes:
            await self._dispatch(change)
        return changes

    async def watch(self, interval: float = 1.0) -> None:
        """Poll for external changes until cancelled."""

        while True:
            try:
                await self.poll_changes()
            except OSError as exc:
                logger.warning("Polling secure storage failed", extra={"error": str(exc)})
            await asyncio.sleep(interval)


__all__ = [
    "FileKeyValueStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "PROBE_KEY",
    "StorageChange",
    "StorageListener",
    "StorageUnavailableError",
]
