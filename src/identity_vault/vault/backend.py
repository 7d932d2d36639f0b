# Vault Storage Backend
#
# SQLite store of encrypted vault records:
#   - vaults:  one row per vault (salt + encrypted canary)
#   - entries: JSON values encrypted with AES-256-GCM under the vault key
#
# Security:
#   - The vault key never touches disk; it comes from a KeyProvider
#     (device key file or passphrase) at connect time
#   - A canary per vault rejects the wrong key before any record is read
#   - Each write uses a fresh GCM nonce
#
# Design:
#   - Blocking sqlite and KDF work runs in a worker thread
#     (asyncio.to_thread); the caller's CancellationToken is checked
#     before and after each suspend point
#   - Handles are cheap objects holding (vault_id, key)

import asyncio
import json
import logging
import sqlite3
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Protocol, Union

from cryptography.exceptions import InvalidTag

from ..core.db import transaction
from ..errors import (
    BackendUnavailable,
    StorageWriteError,
    VaultError,
    VaultKeyRejected,
    VaultNotFound,
)
from .cancellation import CancellationToken
from .encryption import EncryptionService, KeyProvider

logger = logging.getLogger(__name__)

CANARY_PLAINTEXT = "IDENTITY_VAULT_OK"


def _check(token: Optional[CancellationToken]) -> None:
    if token is not None:
        token.raise_if_cancelled()


class VaultHandle(Protocol):
    """An open vault session."""

    @property
    def id(self) -> str: ...

    async def get(self, key: str, token: Optional[CancellationToken] = None) -> Any: ...

    async def set(self, key: str, value: Any, token: Optional[CancellationToken] = None) -> None: ...


class VaultBackend(Protocol):
    """Opens vault sessions and wipes vault storage."""

    async def connect(
        self,
        vault_id: Optional[str] = None,
        add_new_vault: bool = False,
        token: Optional[CancellationToken] = None,
    ) -> VaultHandle: ...

    async def remove_all(self) -> None: ...


class LocalVaultHandle:
    """Open session on a LocalVaultBackend vault."""

    def __init__(self, backend: "LocalVaultBackend", vault_id: str, key: bytes):
        self._backend = backend
        self._vault_id = vault_id
        self._key = key

    def __repr__(self) -> str:
        return f"<LocalVaultHandle {self._vault_id}>"

    @property
    def id(self) -> str:
        return self._vault_id

    async def get(self, key: str, token: Optional[CancellationToken] = None) -> Any:
        """Decrypt and return the value stored under ``key`` (None if absent)."""
        _check(token)
        value = await asyncio.to_thread(self._backend._read_entry, self._vault_id, key, self._key)
        _check(token)
        return value

    async def set(self, key: str, value: Any, token: Optional[CancellationToken] = None) -> None:
        """Encrypt and store a JSON-serialisable value under ``key``."""
        _check(token)
        await asyncio.to_thread(self._backend._write_entry, self._vault_id, key, value, self._key)
        _check(token)


class LocalVaultBackend:
    """SQLite + AES-256-GCM vault backend.

    Usage::

        backend = LocalVaultBackend("data/vault_records.db", DeviceKeyProvider("data/device.key"))
        handle = await backend.connect(add_new_vault=True)
        await handle.set(handle.id, "payload")
    """

    def __init__(self, db_path: Union[str, Path], key_provider: KeyProvider):
        self.db_path = Path(db_path)
        self.key_provider = key_provider
        self._init_database()

    def _init_database(self):
        with transaction(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS vaults (
                    vault_id TEXT PRIMARY KEY,
                    salt TEXT NOT NULL,
                    verify_nonce TEXT NOT NULL,
                    verify_ciphertext TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS entries (
                    vault_id TEXT NOT NULL REFERENCES vaults(vault_id) ON DELETE CASCADE,
                    key TEXT NOT NULL,
                    nonce TEXT NOT NULL,
                    ciphertext TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (vault_id, key)
                )
            """)

    # ── Sessions ─────────────────────────────────────────────────────

    async def connect(
        self,
        vault_id: Optional[str] = None,
        add_new_vault: bool = False,
        token: Optional[CancellationToken] = None,
    ) -> LocalVaultHandle:
        """Open an existing vault by id, or create a new one.

        Raises:
            VaultNotFound: Unknown vault id.
            VaultKeyRejected: Key provider yielded the wrong key.
            CeremonyCancelled: User refused the presence check.
            OperationCancelled: Token cancelled at a suspend point.
            BackendUnavailable: Database could not be read or written.
        """
        if not add_new_vault and not vault_id:
            raise ValueError("connect() needs a vault_id or add_new_vault=True")

        _check(token)
        if add_new_vault:
            handle = await asyncio.to_thread(self._create_vault)
        else:
            handle = await asyncio.to_thread(self._open_vault, vault_id)
        _check(token)
        return handle

    def _create_vault(self) -> LocalVaultHandle:
        vault_id = uuid.uuid4().hex
        salt = EncryptionService.generate_salt()
        key = self.key_provider.unlock(vault_id, salt, new_vault=True)
        nonce, ciphertext = EncryptionService.encrypt(CANARY_PLAINTEXT, key)

        try:
            with transaction(self.db_path) as conn:
                conn.execute(
                    """INSERT INTO vaults
                       (vault_id, salt, verify_nonce, verify_ciphertext, created_at)
                       VALUES (?, ?, ?, ?, ?)""",
                    (
                        vault_id,
                        EncryptionService.encode_for_storage(salt),
                        EncryptionService.encode_for_storage(nonce),
                        EncryptionService.encode_for_storage(ciphertext),
                        datetime.utcnow().isoformat(),
                    ),
                )
        except sqlite3.Error as e:
            raise BackendUnavailable(f"Failed to create vault: {e}") from e

        logger.info("Created vault %s", vault_id)
        return LocalVaultHandle(self, vault_id, key)

    def _open_vault(self, vault_id: str) -> LocalVaultHandle:
        try:
            with transaction(self.db_path) as conn:
                row = conn.execute(
                    "SELECT salt, verify_nonce, verify_ciphertext FROM vaults WHERE vault_id = ?",
                    (vault_id,),
                ).fetchone()
        except sqlite3.Error as e:
            raise BackendUnavailable(f"Failed to open vault: {e}") from e

        if row is None:
            raise VaultNotFound(f"Vault {vault_id} does not exist")

        salt = EncryptionService.decode_from_storage(row["salt"])
        key = self.key_provider.unlock(vault_id, salt, new_vault=False)

        try:
            plaintext = EncryptionService.decrypt(
                EncryptionService.decode_from_storage(row["verify_nonce"]),
                EncryptionService.decode_from_storage(row["verify_ciphertext"]),
                key,
            )
        except InvalidTag:
            plaintext = None
        if plaintext != CANARY_PLAINTEXT:
            raise VaultKeyRejected("Incorrect vault key")

        return LocalVaultHandle(self, vault_id, key)

    # ── Records ──────────────────────────────────────────────────────

    def _read_entry(self, vault_id: str, key: str, vault_key: bytes) -> Any:
        try:
            with transaction(self.db_path) as conn:
                row = conn.execute(
                    "SELECT nonce, ciphertext FROM entries WHERE vault_id = ? AND key = ?",
                    (vault_id, key),
                ).fetchone()
        except sqlite3.Error as e:
            raise BackendUnavailable(f"Failed to read vault record: {e}") from e

        if row is None:
            return None

        try:
            text = EncryptionService.decrypt(
                EncryptionService.decode_from_storage(row["nonce"]),
                EncryptionService.decode_from_storage(row["ciphertext"]),
                vault_key,
            )
        except InvalidTag as e:
            raise VaultError(f"Vault record {key!r} failed authentication") from e
        return json.loads(text)

    def _write_entry(self, vault_id: str, key: str, value: Any, vault_key: bytes) -> None:
        nonce, ciphertext = EncryptionService.encrypt(json.dumps(value), vault_key)
        try:
            with transaction(self.db_path) as conn:
                conn.execute(
                    """INSERT INTO entries (vault_id, key, nonce, ciphertext, updated_at)
                       VALUES (?, ?, ?, ?, ?)
                       ON CONFLICT(vault_id, key) DO UPDATE SET
                           nonce = excluded.nonce,
                           ciphertext = excluded.ciphertext,
                           updated_at = excluded.updated_at""",
                    (
                        vault_id,
                        key,
                        EncryptionService.encode_for_storage(nonce),
                        EncryptionService.encode_for_storage(ciphertext),
                        datetime.utcnow().isoformat(),
                    ),
                )
        except sqlite3.Error as e:
            raise StorageWriteError(f"Failed to write vault record: {e}") from e

    # ── Maintenance ──────────────────────────────────────────────────

    async def remove_all(self) -> None:
        """Delete every vault and record."""
        await asyncio.to_thread(self._remove_all)

    def _remove_all(self) -> None:
        try:
            with transaction(self.db_path) as conn:
                conn.execute("DELETE FROM entries")
                conn.execute("DELETE FROM vaults")
        except sqlite3.Error as e:
            raise StorageWriteError(f"Failed to clear vault storage: {e}") from e

    def vault_exists(self, vault_id: str) -> bool:
        with transaction(self.db_path) as conn:
            row = conn.execute(
                "SELECT 1 FROM vaults WHERE vault_id = ?", (vault_id,)
            ).fetchone()
        return row is not None
