"""Identity Vault - Portable identity backups."""

from .backup_codec import decode_payload, encode_payload, export_vault, import_vault
from .backup_manager import (
    DEFAULT_BACKUP_FILENAME,
    MIN_PASSWORD_LENGTH,
    BackupManager,
    check_password,
    load_backup,
    save_backup,
)

__all__ = [
    "BackupManager",
    "DEFAULT_BACKUP_FILENAME",
    "MIN_PASSWORD_LENGTH",
    "check_password",
    "decode_payload",
    "encode_payload",
    "export_vault",
    "import_vault",
    "load_backup",
    "save_backup",
]
