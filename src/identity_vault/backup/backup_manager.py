"""Backup manager: save and restore portable identity backup files.

Export writes the vault's Identity to a single ``vault.data`` file
(raw ciphertext, see backup_codec) and, like a logout, can clear the
local vault afterwards. Import decrypts a file and replaces the vault's
Identity with it.

Passphrase policy (minimum 12 characters) is enforced here, before the
codec is called.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Union

from ..core import EventSeverity, EventType
from ..crypto import shortcode
from ..errors import DecryptionError, ValidationError, VaultError
from ..vault.identity import Identity, IdentityStore
from ..vault.vault_manager import VaultManager
from .backup_codec import export_vault, import_vault

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 12
DEFAULT_BACKUP_FILENAME = "vault.data"


def check_password(password: str) -> None:
    """Raise ValidationError if the passphrase is shorter than 12 characters."""
    if password is None or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Passphrase must be at least {MIN_PASSWORD_LENGTH} characters."
        )


def save_backup(identity: Identity, password: str, path: Union[str, Path]) -> Path:
    """Encrypt ``identity`` and write it to ``path``. Returns the path written."""
    check_password(password)
    path = Path(path)
    if path.is_dir():
        path = path / DEFAULT_BACKUP_FILENAME
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(export_vault(identity, password))
    return path


def load_backup(path: Union[str, Path], password: str) -> Identity:
    """Read and decrypt a backup file.

    Raises:
        ValidationError: Passphrase too short.
        DecryptionError: Wrong passphrase or corrupted file.
    """
    check_password(password)
    return import_vault(Path(path).read_bytes(), password)


class BackupManager:
    """Moves the vault Identity in and out of portable backup files.

    Args:
        manager: Vault session manager.
        store: IdentityStore (created from ``manager`` if None).
    """

    def __init__(self, manager: VaultManager, store: Optional[IdentityStore] = None):
        self.manager = manager
        self.store = store or IdentityStore(manager)
        self.audit = manager.audit
        self._lock = asyncio.Lock()

    async def export_to_file(
        self,
        password: str,
        path: Union[str, Path],
        clear_after: bool = True,
    ) -> Path:
        """Write the vault Identity to a backup file.

        With ``clear_after`` (the logout flow) the local vault is cleared
        once the file is written.

        Raises:
            ValidationError: Passphrase too short.
            VaultError: The vault holds no identity.
        """
        check_password(password)
        async with self._lock:
            identity = await self.store.load()
            if identity is None:
                raise VaultError("Vault holds no identity to export")

            written = await asyncio.to_thread(save_backup, identity, password, path)

            self.audit.log_vault_event(
                EventType.BACKUP_EXPORTED,
                "identity exported to backup file",
                details={
                    "path": str(written),
                    "shortcode": shortcode(identity.keypair.public_bytes),
                },
            )
            logger.info("Exported identity backup to %s", written)

            if clear_after:
                await self.manager.clear_vault()
            return written

    async def import_from_file(self, password: str, path: Union[str, Path]) -> Identity:
        """Restore the vault Identity from a backup file.

        Raises:
            ValidationError: Passphrase too short.
            DecryptionError: Wrong passphrase or corrupted file.
        """
        check_password(password)
        async with self._lock:
            try:
                identity = await asyncio.to_thread(load_backup, path, password)
            except DecryptionError:
                self.audit.log_event(
                    event_type=EventType.BACKUP_FAILED,
                    severity=EventSeverity.ALERT,
                    message="Backup import failed: incorrect password or corrupted data",
                    details={"path": str(path)},
                )
                raise

            await self.store.save(identity)
            self.audit.log_vault_event(
                EventType.BACKUP_IMPORTED,
                "identity imported from backup file",
                details={
                    "path": str(path),
                    "shortcode": shortcode(identity.keypair.public_bytes),
                },
            )
            logger.info("Imported identity backup from %s", path)
            return identity
