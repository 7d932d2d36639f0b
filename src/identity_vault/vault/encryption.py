# Vault - Encryption Service
#
# At-rest protection for vault records:
#   Device key file or passphrase → per-vault key (HKDF / PBKDF2)
#   Record encryption (AES-256-GCM, unique nonce per write)
#   Key verification via an encrypted canary per vault
#
# Key providers stand in for the device user-presence ceremony: an
# optional presence_check callable must approve before a key is released.

import base64
import logging
import os
from pathlib import Path
from typing import Callable, Optional, Protocol, Tuple, Union

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..errors import BackendUnavailable, CeremonyCancelled

logger = logging.getLogger(__name__)

# Messages match the ones user-presence ceremonies report on refusal, so
# the vault manager classifies them as user cancellation.
REGISTRATION_REFUSED = "Identity/Passkey registration failed"
AUTHENTICATION_REFUSED = "Credential auth failed"
CEREMONY_ABORTED = "The operation either timed out or was not allowed"

DEVICE_KEY_INFO = b"IdentityVault_DeviceKey_v1"

PresenceCheck = Callable[[str], bool]


class EncryptionService:
    """
    Handles encryption/decryption of vault records.

    Flow:
    1. A key provider yields a 256-bit key for the vault
    2. AES-256-GCM encrypts each record with a fresh nonce
    3. The GCM tag rejects a wrong key or tampered record
    """

    # PBKDF2 parameters (OWASP recommendations)
    PBKDF2_ITERATIONS = 600_000  # OWASP 2023: 600k iterations for PBKDF2-SHA256
    KEY_LENGTH = 32  # 256 bits for AES-256
    SALT_LENGTH = 32  # 256-bit salt
    NONCE_LENGTH = 12  # 96-bit nonce for GCM (recommended)

    @staticmethod
    def derive_key(passphrase: str, salt: bytes, iterations: Optional[int] = None) -> bytes:
        """Derive a 256-bit key from a passphrase and salt with PBKDF2-SHA256."""
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=EncryptionService.KEY_LENGTH,
            salt=salt,
            iterations=iterations or EncryptionService.PBKDF2_ITERATIONS,
        )
        return kdf.derive(passphrase.encode('utf-8'))

    @staticmethod
    def derive_subkey(master_key: bytes, salt: bytes, context: str) -> bytes:
        """Derive a per-vault key from a device master key with HKDF-SHA256."""
        return HKDF(
            algorithm=hashes.SHA256(),
            length=EncryptionService.KEY_LENGTH,
            salt=salt,
            info=DEVICE_KEY_INFO + b":" + context.encode('utf-8'),
        ).derive(master_key)

    @staticmethod
    def generate_salt() -> bytes:
        """Generate cryptographically random salt."""
        return os.urandom(EncryptionService.SALT_LENGTH)

    @staticmethod
    def generate_key() -> bytes:
        """Generate a random 256-bit key."""
        return AESGCM.generate_key(bit_length=256)

    @staticmethod
    def encrypt(plaintext: str, key: bytes) -> Tuple[bytes, bytes]:
        """
        Encrypt text with AES-256-GCM.

        Returns:
            (nonce, ciphertext) - both needed for decryption
        """
        nonce = os.urandom(EncryptionService.NONCE_LENGTH)
        ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode('utf-8'), None)
        return nonce, ciphertext

    @staticmethod
    def decrypt(nonce: bytes, ciphertext: bytes, key: bytes) -> str:
        """
        Decrypt AES-256-GCM ciphertext.

        Raises:
            cryptography.exceptions.InvalidTag: If authentication fails
        """
        plaintext_bytes = AESGCM(key).decrypt(nonce, ciphertext, None)
        return plaintext_bytes.decode('utf-8')

    @staticmethod
    def encode_for_storage(data: bytes) -> str:
        """Encode binary data as base64 text for SQLite TEXT columns."""
        return base64.b64encode(data).decode('utf-8')

    @staticmethod
    def decode_from_storage(data: str) -> bytes:
        """Decode base64-encoded data from the database.

        Raises:
            binascii.Error: If the column is not strict base64
        """
        return base64.b64decode(data.encode('utf-8'), validate=True)


# ── Key Providers ────────────────────────────────────────────────────


class KeyProvider(Protocol):
    """Source of per-vault encryption keys."""

    def unlock(self, vault_id: str, salt: bytes, *, new_vault: bool = False) -> bytes: ...


def _run_presence_check(check: Optional[PresenceCheck], new_vault: bool) -> None:
    """Run the user-presence ceremony; refusal raises CeremonyCancelled."""
    if check is None:
        return
    action = "register" if new_vault else "authenticate"
    try:
        approved = check(action)
    except Exception as e:
        raise CeremonyCancelled(f"{CEREMONY_ABORTED}: {e}") from e
    if not approved:
        raise CeremonyCancelled(
            REGISTRATION_REFUSED if new_vault else AUTHENTICATION_REFUSED
        )


class DeviceKeyProvider:
    """Keys bound to this device through a random master key file.

    The key file is created on first use with owner-only permissions.
    Each vault gets its own HKDF subkey (vault salt + vault id).

    Args:
        key_path: Location of the 32-byte master key file.
        presence_check: Optional ceremony callable, given "register" or
            "authenticate"; must return True to release the key.
    """

    def __init__(
        self,
        key_path: Union[str, Path],
        presence_check: Optional[PresenceCheck] = None,
    ):
        self.key_path = Path(key_path)
        self.presence_check = presence_check

    def _master_key(self) -> bytes:
        if not self.key_path.exists():
            self.key_path.parent.mkdir(parents=True, exist_ok=True)
            key = EncryptionService.generate_key()
            fd = os.open(self.key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "wb") as fh:
                fh.write(key)
            logger.info("Created device key at %s", self.key_path)
            return key

        key = self.key_path.read_bytes()
        if len(key) != EncryptionService.KEY_LENGTH:
            raise BackendUnavailable(f"Device key file {self.key_path} is corrupted")
        return key

    def unlock(self, vault_id: str, salt: bytes, *, new_vault: bool = False) -> bytes:
        _run_presence_check(self.presence_check, new_vault)
        return EncryptionService.derive_subkey(self._master_key(), salt, vault_id)


class PassphraseKeyProvider:
    """Keys derived from a user passphrase with PBKDF2 over the vault salt.

    Args:
        passphrase: Vault passphrase.
        presence_check: Optional ceremony callable (see DeviceKeyProvider).
        iterations: PBKDF2 iteration count (default: 600k).
    """

    def __init__(
        self,
        passphrase: str,
        presence_check: Optional[PresenceCheck] = None,
        iterations: Optional[int] = None,
    ):
        self._passphrase = passphrase
        self.presence_check = presence_check
        self.iterations = iterations or EncryptionService.PBKDF2_ITERATIONS

    def __repr__(self) -> str:
        return f"PassphraseKeyProvider(iterations={self.iterations})"

    def unlock(self, vault_id: str, salt: bytes, *, new_vault: bool = False) -> bytes:
        _run_presence_check(self.presence_check, new_vault)
        return EncryptionService.derive_key(self._passphrase, salt, self.iterations)
