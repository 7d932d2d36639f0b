"""
Identity Vault Exception Classes
"""


class IdentityVaultError(Exception):
    """Base exception for identity vault operations"""
    pass


# ── Crypto ───────────────────────────────────────────────────────────


class CryptoError(IdentityVaultError):
    """Raised by cryptographic primitives and the backup codec"""
    pass


class MalformedEncoding(CryptoError):
    """Raised when base64/hex/UTF-8 input is not well formed"""
    pass


class InvalidKeyMaterial(CryptoError):
    """Raised when a secret or key has the wrong size or is not on the curve"""
    pass


class DecryptionError(CryptoError):
    """Raised when decrypted output does not parse as the expected structure.

    A wrong password and a corrupted blob are indistinguishable: the cipher
    carries no integrity tag.
    """
    pass


# ── Vault ────────────────────────────────────────────────────────────


class VaultError(IdentityVaultError):
    """Raised for vault lifecycle and storage failures"""
    pass


class BackendUnavailable(VaultError):
    """Raised when the vault storage backend cannot be reached or opened"""
    pass


class CeremonyCancelled(VaultError):
    """Raised when the user declines the user-presence ceremony"""
    pass


class OperationCancelled(VaultError):
    """Raised when an in-flight operation observes a cancelled token"""
    pass


class StorageWriteError(VaultError):
    """Raised when a vault record cannot be written"""
    pass


class VaultNotFound(VaultError):
    """Raised when connecting to a vault id the backend does not know"""
    pass


class VaultKeyRejected(VaultError):
    """Raised when the unlocked key does not open the vault (wrong passphrase)"""
    pass


# ── Validation ───────────────────────────────────────────────────────


class ValidationError(IdentityVaultError):
    """Raised when caller input fails a policy check (e.g. passphrase length)"""
    pass
