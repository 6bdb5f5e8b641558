from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from autodidact.vault.storage import (
    FileKeyValueStore,
    MemoryKeyValueStore,
    StorageChange,
    StorageUnavailableError,
)


def test_memory_store_round_trip_and_probe() -> None:
    store = MemoryKeyValueStore()

    assert store.probe() is True
    store.set("key", "value")
    assert store.get("key") == "value"
    store.remove("key")
    assert store.get("key") is None


def test_memory_store_unavailable_raises() -> None:
    store = MemoryKeyValueStore(available=False)

    assert store.probe() is False
    with pytest.raises(StorageUnavailableError):
        store.get("key")


def test_memory_store_external_write_notifies_until_unsubscribed() -> None:
    store = MemoryKeyValueStore()
    seen: list[StorageChange] = []

    async def listener(change: StorageChange) -> None:
        seen.append(change)

    unsubscribe = store.subscribe(listener)
    asyncio.run(store.simulate_external_write("key", "value"))
    unsubscribe()
    asyncio.run(store.simulate_external_write("key", None))

    assert seen == [StorageChange("key", False, True)]
    assert store.get("key") is None


def test_listener_failure_does_not_block_other_listeners() -> None:
    store = MemoryKeyValueStore()
    seen: list[str] = []

    async def broken(change: StorageChange) -> None:
        raise RuntimeError("boom")

    async def healthy(change: StorageChange) -> None:
        seen.append(change.key)

    store.subscribe(broken)
    store.subscribe(healthy)
    asyncio.run(store.simulate_external_write("key", "value"))

    assert seen == ["key"]


def test_file_store_persists_across_instances(tmp_path: Path) -> None:
    first = FileKeyValueStore(tmp_path / "vault")
    assert first.probe() is True
    first.set("autodidact-builder:github-token:u1", "sealed")

    second = FileKeyValueStore(tmp_path / "vault")
    assert second.get("autodidact-builder:github-token:u1") == "sealed"
    assert second.get("missing") is None


def test_file_store_probe_fails_when_root_is_a_file(tmp_path: Path) -> None:
    blocker = tmp_path / "vault"
    blocker.write_text("not a directory", encoding="utf-8")

    store = FileKeyValueStore(blocker)

    assert store.probe() is False


def test_file_store_reports_changes_from_other_instances(tmp_path: Path) -> None:
    root = tmp_path / "vault"
    tab_a = FileKeyValueStore(root)
    tab_a.probe()
    tab_b = FileKeyValueStore(root)
    seen: list[StorageChange] = []

    async def listener(change: StorageChange) -> None:
        seen.append(change)

    tab_b.subscribe(listener)

    tab_a.set("shared", "one")
    first = asyncio.run(tab_b.poll_changes())
    tab_a.remove("shared")
    second = asyncio.run(tab_b.poll_changes())
    third = asyncio.run(tab_b.poll_changes())

    assert first == [StorageChange("shared", False, True)]
    assert second == [StorageChange("shared", True, False)]
    assert third == []
    assert seen == first + second


def test_file_store_ignores_its_own_writes(tmp_path: Path) -> None:
    store = FileKeyValueStore(tmp_path / "vault")
    store.probe()
    store.set("own", "value")

    assert asyncio.run(store.poll_changes()) == []
