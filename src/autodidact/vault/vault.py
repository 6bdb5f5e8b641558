"""Encrypted-at-rest storage of the provider access token, keyed by user id."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from pydantic import BaseModel, ConfigDict, ValidationError

from ..outcomes import ErrorKind
from .cipher import (
    VaultCipherError,
    decrypt,
    encrypt,
    join_payload,
    key_fingerprint,
    split_payload,
)
from .storage import KeyValueStore, StorageChange, StorageUnavailableError

logger = logging.getLogger(__name__)

STORAGE_PREFIX = "autodidact-builder:github-token"

UNAVAILABLE_MESSAGE = "Secure storage is not available in this environment."
LOCKED_MESSAGE = "Sign in again to unlock your stored GitHub token."
CORRUPT_MESSAGE = "Failed to load stored token. Please re-save it."


class VaultStatus(str, Enum):
    UNLOCKED = "unlocked"
    SAVED = "saved"
    CLEARED = "cleared"
    ABSENT = "absent"
    LOCKED = "locked"
    UNAVAILABLE = "unavailable"
    CORRUPT = "corrupt"
    EMPTY_INPUT = "empty-input"


_FAILURE_KINDS = {
    VaultStatus.LOCKED: ErrorKind.SESSION_LOCKED,
    VaultStatus.UNAVAILABLE: ErrorKind.STORAGE_UNAVAILABLE,
    VaultStatus.CORRUPT: ErrorKind.PAYLOAD_CORRUPT,
    VaultStatus.EMPTY_INPUT: ErrorKind.VALIDATION_FAILED,
}


@dataclass(frozen=True, slots=True)
class VaultOutcome:
    status: VaultStatus
    token: str = ""
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status not in _FAILURE_KINDS

    @property
    def error(self) -> ErrorKind | None:
        return _FAILURE_KINDS.get(self.status)


@dataclass(frozen=True, slots=True)
class VaultState:
    """Snapshot of what the vault currently knows for the bound user."""

    token: str = ""
    has_stored_token: bool = False
    last_updated: datetime | None = None
    error: str | None = None
    status: VaultStatus = VaultStatus.ABSENT
    storage_available: bool = True


class VaultRecord(BaseModel):
    """Sealed token as persisted in the key-value store."""

    model_config = ConfigDict(frozen=True)

    ciphertext: bytes
    nonce: bytes
    key_check: str
    updated_at: datetime

    @property
    def payload(self) -> str:
        return join_payload(self.nonce, self.ciphertext)

    def to_storage(self) -> str:
        return json.dumps(
            {
                "payload": self.payload,
                "keyCheck": self.key_check,
                "updatedAt": self.updated_at.isoformat(),
            }
        )

    @classmethod
    def from_storage(cls, raw: str) -> "VaultRecord":
        document = json.loads(raw)
        if not isinstance(document, dict):
            raise ValueError("Vault record must be a JSON object")
        nonce, ciphertext = split_payload(document.get("payload"))
        return cls(
            ciphertext=ciphertext,
            nonce=nonce,
            key_check=document.get("keyCheck"),
            updated_at=document.get("updatedAt"),
        )


class CredentialVault:
    """Seal, load and clear one provider token per local user.

    The encryption key is derived from the session access secret, which rotates.
    A record sealed under an earlier secret is reported as ``locked`` and kept so
    that signing in again can unlock it; a record that fails authentication
    under the secret it was sealed with is ``corrupt`` and purged.
    """

    def __init__(
        self,
        storage: KeyValueStore,
        *,
        prefix: str = STORAGE_PREFIX,
        clock: Callable[[], datetime] | None = None,
        watch_interval: float = 1.0,
    ) -> None:
        self._storage = storage
        self._watch_interval = watch_interval
        self._watcher: asyncio.Task[None] | None = None
        self._prefix = prefix
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._storage_available: bool | None = None
        self._state = VaultState()
        self._user_id: str | None = None
        self._secret: str | None = None
        self._unsubscribe: Callable[[], None] | None = None
        self._epoch = 0

    @property
    def storage_available(self) -> bool:
        return self._probe()

    def _probe(self) -> bool:
        if self._storage_available is None:
            self._storage_available = bool(self._storage.probe())
            if not self._storage_available:
                self._state = replace(
                    self._state,
                    storage_available=False,
                    status=VaultStatus.UNAVAILABLE,
                    error=UNAVAILABLE_MESSAGE,
                )
        return self._storage_available

    @property
    def state(self) -> VaultState:
        self._probe()
        return self._state

    @property
    def token(self) -> str:
        return self._state.token

    @property
    def has_stored_token(self) -> bool:
        return self._state.has_stored_token

    def storage_key(self, user_id: str) -> str:
        return f"{self._prefix}:{user_id}"

    async def bind(self, user_id: str | None, secret: str | None) -> VaultOutcome:
        """Attach the vault to a session and load whatever is stored for it."""

        await self._detach()
        self._epoch += 1
        self._user_id = user_id
        self._secret = secret
        if user_id and self.storage_available:
            self._unsubscribe = self._storage.subscribe(self._on_storage_change)
            self._start_watch()
        return await self.load(user_id, secret)

    async def unbind(self) -> None:
        await self._detach()
        self._epoch += 1
        self._user_id = None
        self._secret = None
        self._state = VaultState(
            storage_available=self.storage_available,
            status=VaultStatus.ABSENT if self.storage_available else VaultStatus.UNAVAILABLE,
            error=None if self.storage_available else UNAVAILABLE_MESSAGE,
        )

    def _start_watch(self) -> None:
        # stores that only see their own writes need polling for other contexts
        watch = getattr(self._storage, "watch", None)
        if watch is None or self._watch_interval <= 0:
            return
        self._watcher = asyncio.create_task(watch(self._watch_interval))

    async def _detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        watcher, self._watcher = self._watcher, None
        if watcher is not None:
            watcher.cancel()
            try:
                await watcher
            except asyncio.CancelledError:
                pass

    async def _on_storage_change(self, change: StorageChange) -> None:
        if self._user_id is None or change.key != self.storage_key(self._user_id):
            return
        logger.debug("Stored token changed in another context", extra={"user_id": self._user_id})
        await self.load(self._user_id, self._secret)

    async def persist(self, user_id: str | None, plaintext: str | None, secret: str | None) -> VaultOutcome:
        if not self.storage_available:
            return self._fail(VaultStatus.UNAVAILABLE, UNAVAILABLE_MESSAGE)
        if not user_id:
            return self._fail(VaultStatus.LOCKED, "Sign in to store a GitHub token securely.")
        token = (plaintext or "").strip()
        if not token:
            return self._fail(VaultStatus.EMPTY_INPUT, "Enter a personal access token before saving.")
        if not secret:
            return self._fail(
                VaultStatus.LOCKED, "Unable to encrypt token without an active session."
            )

        updated_at = self._clock()
        try:
            payload = await asyncio.to_thread(encrypt, token, secret)
            nonce, ciphertext = split_payload(payload)
            record = VaultRecord(
                ciphertext=ciphertext,
                nonce=nonce,
                key_check=key_fingerprint(secret),
                updated_at=updated_at,
            )
            await asyncio.to_thread(self._storage.set, self.storage_key(user_id), record.to_storage())
        except (OSError, StorageUnavailableError) as exc:
            logger.error("Failed to persist secure GitHub token", extra={"error": str(exc)})
            return self._fail(
                VaultStatus.UNAVAILABLE, "Unable to store token securely. Please try again."
            )

        self._state = replace(
            self._state,
            token=token,
            has_stored_token=True,
            last_updated=updated_at,
            error=None,
            status=VaultStatus.SAVED,
        )
        logger.info("Stored GitHub token", extra={"user_id": user_id})
        return VaultOutcome(VaultStatus.SAVED, token=token)

    async def load(self, user_id: str | None, secret: str | None) -> VaultOutcome:
        epoch = self._epoch
        if not self.storage_available:
            return self._fail(VaultStatus.UNAVAILABLE, UNAVAILABLE_MESSAGE)
        if not user_id:
            self._apply(epoch, token="", has_stored_token=False, last_updated=None, error=None, status=VaultStatus.ABSENT)
            return VaultOutcome(VaultStatus.ABSENT)

        key = self.storage_key(user_id)
        try:
            raw = await asyncio.to_thread(self._storage.get, key)
        except (OSError, StorageUnavailableError) as exc:
            logger.error("Failed to read secure storage", extra={"error": str(exc)})
            return self._fail(VaultStatus.UNAVAILABLE, UNAVAILABLE_MESSAGE, epoch=epoch)

        if raw is None:
            self._apply(epoch, token="", has_stored_token=False, last_updated=None, error=None, status=VaultStatus.ABSENT)
            return VaultOutcome(VaultStatus.ABSENT)

        try:
            record = VaultRecord.from_storage(raw)
        except (ValueError, ValidationError, VaultCipherError) as exc:
            logger.error("Stored token record is malformed", extra={"user_id": user_id, "error": str(exc)})
            return await self._purge(key, epoch)

        if not secret or record.key_check != key_fingerprint(secret):
            self._apply(
                epoch,
                token="",
                has_stored_token=True,
                last_updated=record.updated_at,
                error=LOCKED_MESSAGE,
                status=VaultStatus.LOCKED,
            )
            return VaultOutcome(VaultStatus.LOCKED, message=LOCKED_MESSAGE)

        try:
            token = await asyncio.to_thread(decrypt, record.payload, secret)
        except VaultCipherError as exc:
            logger.error("Failed to load secure GitHub token", extra={"user_id": user_id, "error": str(exc)})
            return await self._purge(key, epoch)

        self._apply(
            epoch,
            token=token,
            has_stored_token=True,
            last_updated=record.updated_at,
            error=None,
            status=VaultStatus.UNLOCKED,
        )
        return VaultOutcome(VaultStatus.UNLOCKED, token=token)

    async def clear(self, user_id: str | None) -> VaultOutcome:
        if not self.storage_available:
            return self._fail(VaultStatus.UNAVAILABLE, UNAVAILABLE_MESSAGE)
        if user_id:
            try:
                await asyncio.to_thread(self._storage.remove, self.storage_key(user_id))
            except (OSError, StorageUnavailableError) as exc:
                logger.error("Failed to clear secure storage", extra={"error": str(exc)})
                return self._fail(VaultStatus.UNAVAILABLE, UNAVAILABLE_MESSAGE)
        self._state = replace(
            self._state,
            token="",
            has_stored_token=False,
            last_updated=None,
            error=None,
            status=VaultStatus.CLEARED,
        )
        return VaultOutcome(VaultStatus.CLEARED)

    async def _purge(self, key: str, epoch: int) -> VaultOutcome:
        try:
            await asyncio.to_thread(self._storage.remove, key)
        except (OSError, StorageUnavailableError) as exc:
            logger.warning("Could not purge corrupt token record", extra={"error": str(exc)})
        self._apply(
            epoch,
            token="",
            has_stored_token=False,
            last_updated=None,
            error=CORRUPT_MESSAGE,
            status=VaultStatus.CORRUPT,
        )
        return VaultOutcome(VaultStatus.CORRUPT, message=CORRUPT_MESSAGE)

    def _apply(self, epoch: int, **changes) -> None:
        # a bind/unbind happened while this call was suspended
        if epoch != self._epoch:
            return
        self._state = replace(self._state, **changes)

    def _fail(self, status: VaultStatus, message: str, *, epoch: int | None = None) -> VaultOutcome:
        changes = {"error": message}
        if status is VaultStatus.UNAVAILABLE and not self.storage_available:
            changes.update(token="", has_stored_token=False, last_updated=None, status=status)
        if epoch is None or epoch == self._epoch:
            self._state = replace(self._state, **changes)
        return VaultOutcome(status, message=message)


__all__ = [
    "CredentialVault",
    "STORAGE_PREFIX",
    "VaultOutcome",
    "VaultRecord",
    "VaultState",
    "VaultStatus",
]
