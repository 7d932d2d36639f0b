# Identity Vault
#
# Local cryptographic identity vault: a secp256k1 keypair and user name,
# encrypted at rest under a device-bound or passphrase-derived key, with
# portable encrypted backups.

__version__ = "0.1.0"
__author__ = "Identity Vault Team"

from .errors import (
    CryptoError,
    DecryptionError,
    IdentityVaultError,
    ValidationError,
    VaultError,
)

__all__ = [
    "__version__",
    "CryptoError",
    "DecryptionError",
    "IdentityVaultError",
    "ValidationError",
    "VaultError",
]
