# Identity Vault - Configuration
#
# Settings come from environment variables (optionally loaded from a .env
# file). Explicit arguments always win over the environment.
#
#   IDENTITY_VAULT_DATA_DIR       data directory (default: data)
#   IDENTITY_VAULT_AUDIT_DIR      audit log directory (default: audit_logs)
#   IDENTITY_VAULT_KEY_MODE       "device" or "passphrase" (default: device)
#   IDENTITY_VAULT_CHAT_BASE_URL  base URL for chat links (default: empty)

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

KEY_MODE_DEVICE = "device"
KEY_MODE_PASSPHRASE = "passphrase"
KEY_MODES = (KEY_MODE_DEVICE, KEY_MODE_PASSPHRASE)


@dataclass(frozen=True)
class VaultConfig:
    """Resolved runtime configuration."""
    data_dir: Path
    audit_dir: Path
    key_mode: str = KEY_MODE_DEVICE
    chat_base_url: str = ""

    @property
    def meta_db_path(self) -> Path:
        """Raw key-value store holding the vault id."""
        return self.data_dir / "vault_meta.db"

    @property
    def records_db_path(self) -> Path:
        """Encrypted vault records."""
        return self.data_dir / "vault_records.db"

    @property
    def device_key_path(self) -> Path:
        return self.data_dir / "device.key"


def load_config(
    data_dir: Optional[str] = None,
    audit_dir: Optional[str] = None,
    key_mode: Optional[str] = None,
    chat_base_url: Optional[str] = None,
    env_file: Optional[str] = None,
) -> VaultConfig:
    """
    Build a VaultConfig from arguments, falling back to the environment.

    Args:
        data_dir: Data directory (env: IDENTITY_VAULT_DATA_DIR)
        audit_dir: Audit log directory (env: IDENTITY_VAULT_AUDIT_DIR)
        key_mode: "device" or "passphrase" (env: IDENTITY_VAULT_KEY_MODE)
        chat_base_url: Chat link base URL (env: IDENTITY_VAULT_CHAT_BASE_URL)
        env_file: Optional .env file to load first (existing variables win)

    Raises:
        ValueError: If key_mode is not a known mode
    """
    if env_file:
        load_dotenv(env_file, override=False)

    data_dir = data_dir or os.getenv("IDENTITY_VAULT_DATA_DIR", "data")
    audit_dir = audit_dir or os.getenv("IDENTITY_VAULT_AUDIT_DIR", "audit_logs")
    key_mode = (key_mode or os.getenv("IDENTITY_VAULT_KEY_MODE", KEY_MODE_DEVICE)).lower()
    if chat_base_url is None:
        chat_base_url = os.getenv("IDENTITY_VAULT_CHAT_BASE_URL", "")

    if key_mode not in KEY_MODES:
        raise ValueError(
            f"Unknown key mode {key_mode!r}; expected one of {', '.join(KEY_MODES)}"
        )

    return VaultConfig(
        data_dir=Path(data_dir),
        audit_dir=Path(audit_dir),
        key_mode=key_mode,
        chat_base_url=chat_base_url,
    )
