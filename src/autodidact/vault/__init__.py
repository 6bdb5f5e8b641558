"""Local encrypted credential vault."""

from .cipher import AuthenticationFailure, MalformedPayload, VaultCipherError, decrypt, derive_key, encrypt
from .storage import FileKeyValueStore, KeyValueStore, MemoryKeyValueStore, StorageChange, StorageUnavailableError
from .vault import CredentialVault, VaultOutcome, VaultRecord, VaultState, VaultStatus

__all__ = [
    "AuthenticationFailure",
    "CredentialVault",
    "FileKeyValueStore",
    "KeyValueStore",
    "MalformedPayload",
    "MemoryKeyValueStore",
    "StorageChange",
    "StorageUnavailableError",
    "VaultCipherError",
    "VaultOutcome",
    "VaultRecord",
    "VaultState",
    "VaultStatus",
    "decrypt",
    "derive_key",
    "encrypt",
]
