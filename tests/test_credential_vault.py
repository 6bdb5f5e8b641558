from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

from autodidact.outcomes import ErrorKind
from autodidact.vault import CredentialVault, MemoryKeyValueStore, VaultRecord, VaultStatus
from autodidact.vault.cipher import encrypt, key_fingerprint, split_payload

FIXED_NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)


def make_vault(storage: MemoryKeyValueStore | None = None) -> CredentialVault:
    return CredentialVault(storage or MemoryKeyValueStore(), clock=lambda: FIXED_NOW)


def sealed(token: str, secret: str) -> str:
    nonce, ciphertext = split_payload(encrypt(token, secret))
    return VaultRecord(
        ciphertext=ciphertext,
        nonce=nonce,
        key_check=key_fingerprint(secret),
        updated_at=FIXED_NOW,
    ).to_storage()


def test_token_unlocks_with_same_secret_and_locks_after_rotation() -> None:
    storage = MemoryKeyValueStore()

    async def scenario():
        writer = make_vault(storage)
        saved = await writer.persist("u1", "ghp_abc123", "sess-1")

        reloaded = make_vault(storage)
        same = await reloaded.load("u1", "sess-1")
        same_state = reloaded.state
        rotated = await reloaded.load("u1", "sess-2")
        return saved, same, same_state, rotated, reloaded.state

    saved, same, same_state, rotated, rotated_state = asyncio.run(scenario())

    assert saved.status is VaultStatus.SAVED
    assert same.status is VaultStatus.UNLOCKED
    assert same.token == "ghp_abc123"
    assert same_state.has_stored_token is True
    assert same_state.last_updated == FIXED_NOW

    assert rotated.status is VaultStatus.LOCKED
    assert rotated.error is ErrorKind.SESSION_LOCKED
    assert rotated_state.has_stored_token is True
    assert rotated_state.token == ""
    assert rotated_state.error == "Sign in again to unlock your stored GitHub token."


def test_locked_record_is_kept_and_unlocks_again_with_original_secret() -> None:
    storage = MemoryKeyValueStore()
    vault = make_vault(storage)

    async def scenario():
        await vault.persist("u1", "ghp_abc123", "sess-1")
        locked = await vault.load("u1", "sess-2")
        still_stored = storage.get(vault.storage_key("u1")) is not None
        unlocked = await vault.load("u1", "sess-1")
        return locked, still_stored, unlocked

    locked, still_stored, unlocked = asyncio.run(scenario())

    assert locked.status is VaultStatus.LOCKED
    assert still_stored is True
    assert unlocked.token == "ghp_abc123"


def test_load_without_secret_reports_locked() -> None:
    storage = MemoryKeyValueStore()
    storage.set("autodidact-builder:github-token:u1", sealed("ghp_abc123", "sess-1"))
    vault = make_vault(storage)

    outcome = asyncio.run(vault.load("u1", None))

    assert outcome.status is VaultStatus.LOCKED
    assert vault.has_stored_token is True


def test_tampered_record_is_purged_as_corrupt() -> None:
    storage = MemoryKeyValueStore()
    vault = make_vault(storage)
    key = vault.storage_key("u1")

    async def scenario():
        await vault.persist("u1", "ghp_abc123", "sess-1")
        document = json.loads(storage.get(key))
        nonce_part, cipher_part = document["payload"].split(".")
        replacement = "A" if cipher_part[0] != "A" else "B"
        document["payload"] = f"{nonce_part}.{replacement}{cipher_part[1:]}"
        storage.set(key, json.dumps(document))

        corrupt = await vault.load("u1", "sess-1")
        after = await vault.load("u1", "sess-1")
        return corrupt, after

    corrupt, after = asyncio.run(scenario())

    assert corrupt.status is VaultStatus.CORRUPT
    assert corrupt.error is ErrorKind.PAYLOAD_CORRUPT
    assert corrupt.message == "Failed to load stored token. Please re-save it."
    assert storage.get(key) is None
    assert after.status is VaultStatus.ABSENT
    assert vault.has_stored_token is False


def test_unparseable_record_is_purged() -> None:
    storage = MemoryKeyValueStore()
    storage.set("autodidact-builder:github-token:u1", "{not json")
    vault = make_vault(storage)

    outcome = asyncio.run(vault.load("u1", "sess-1"))

    assert outcome.status is VaultStatus.CORRUPT
    assert storage.get("autodidact-builder:github-token:u1") is None


def test_unavailable_storage_short_circuits() -> None:
    vault = make_vault(MemoryKeyValueStore(available=False))

    async def scenario():
        return (
            await vault.persist("u1", "ghp_abc123", "sess-1"),
            await vault.load("u1", "sess-1"),
            await vault.clear("u1"),
        )

    persisted, loaded, cleared = asyncio.run(scenario())

    for outcome in (persisted, loaded, cleared):
        assert outcome.status is VaultStatus.UNAVAILABLE
        assert outcome.error is ErrorKind.STORAGE_UNAVAILABLE
    assert vault.storage_available is False
    assert vault.state.storage_available is False
    assert vault.state.status is VaultStatus.UNAVAILABLE


def test_persist_rejects_blank_token_and_missing_session() -> None:
    storage = MemoryKeyValueStore()
    vault = make_vault(storage)

    async def scenario():
        return (
            await vault.persist("u1", "   ", "sess-1"),
            await vault.persist(None, "ghp_abc123", "sess-1"),
            await vault.persist("u1", "ghp_abc123", None),
        )

    blank, no_user, no_secret = asyncio.run(scenario())

    assert blank.status is VaultStatus.EMPTY_INPUT
    assert blank.error is ErrorKind.VALIDATION_FAILED
    assert no_user.status is VaultStatus.LOCKED
    assert no_secret.status is VaultStatus.LOCKED
    assert storage.get(vault.storage_key("u1")) is None


def test_persist_trims_token_before_sealing() -> None:
    storage = MemoryKeyValueStore()
    vault = make_vault(storage)

    async def scenario():
        await vault.persist("u1", "  ghp_abc123\n", "sess-1")
        return await make_vault(storage).load("u1", "sess-1")

    assert asyncio.run(scenario()).token == "ghp_abc123"


def test_clear_removes_record_and_is_idempotent() -> None:
    storage = MemoryKeyValueStore()
    vault = make_vault(storage)

    async def scenario():
        await vault.persist("u1", "ghp_abc123", "sess-1")
        first = await vault.clear("u1")
        second = await vault.clear("u1")
        return first, second

    first, second = asyncio.run(scenario())

    assert first.status is VaultStatus.CLEARED
    assert second.status is VaultStatus.CLEARED
    assert storage.get(vault.storage_key("u1")) is None
    assert vault.token == ""
    assert vault.has_stored_token is False


def test_bound_vault_reloads_on_change_from_another_context() -> None:
    storage = MemoryKeyValueStore()
    vault = make_vault(storage)
    key = vault.storage_key("u1")

    async def scenario():
        await vault.bind("u1", "sess-1")
        before = vault.state.status
        await storage.simulate_external_write(key, sealed("ghp_other_tab", "sess-1"))
        written = vault.token
        await storage.simulate_external_write(key, None)
        removed = vault.state
        return before, written, removed

    before, written, removed = asyncio.run(scenario())

    assert before is VaultStatus.ABSENT
    assert written == "ghp_other_tab"
    assert removed.status is VaultStatus.ABSENT
    assert removed.has_stored_token is False


def test_changes_for_other_users_and_after_unbind_are_ignored() -> None:
    storage = MemoryKeyValueStore()
    vault = make_vault(storage)

    async def scenario():
        await vault.bind("u1", "sess-1")
        await storage.simulate_external_write(vault.storage_key("u2"), sealed("ghp_u2", "sess-1"))
        other_user = vault.token
        await vault.unbind()
        await storage.simulate_external_write(vault.storage_key("u1"), sealed("ghp_late", "sess-1"))
        return other_user, vault.token

    other_user, after_unbind = asyncio.run(scenario())

    assert other_user == ""
    assert after_unbind == ""
