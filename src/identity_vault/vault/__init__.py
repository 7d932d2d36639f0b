# Vault Module - Local identity vault
#
# Vault session lifecycle (create / connect / clear / cancel), encrypted
# at-rest storage (SQLite + AES-256-GCM), and the identity payload kept
# inside the vault.

from .backend import LocalVaultBackend, LocalVaultHandle
from .cancellation import CancellationToken
from .encryption import DeviceKeyProvider, EncryptionService, PassphraseKeyProvider
from .identity import Identity, IdentityStore, KeypairProvider
from .storage import MemoryKeyValueStore, SQLiteKeyValueStore
from .vault_manager import (
    VAULT_ID_KEY,
    VaultManager,
    VaultState,
    create_vault_manager,
    get_vault_manager,
    set_vault_manager,
)

__all__ = [
    "CancellationToken",
    "DeviceKeyProvider",
    "EncryptionService",
    "Identity",
    "IdentityStore",
    "KeypairProvider",
    "LocalVaultBackend",
    "LocalVaultHandle",
    "MemoryKeyValueStore",
    "PassphraseKeyProvider",
    "SQLiteKeyValueStore",
    "VAULT_ID_KEY",
    "VaultManager",
    "VaultState",
    "create_vault_manager",
    "get_vault_manager",
    "set_vault_manager",
]
