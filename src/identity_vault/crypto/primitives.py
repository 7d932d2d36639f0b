# Identity Vault - Crypto Primitives
#
# Stateless building blocks for the identity vault:
#   - SHA3-256 for password preprocessing and public-key shortcodes
#   - Blowfish-CFB (64-bit segments) keyed from a 32-byte secret
#   - secp256k1 keypairs (raw 32-byte scalar, 33-byte compressed point)
#   - ECDH shared secrets
#
# Security:
#   - The secret → (key, IV) derivation has no salt: identical secrets
#     always give identical key/IV pairs. Backup files depend on this
#     exact scheme, so it must not change without a format version.
#   - There is no MAC. Decrypting with the wrong secret returns garbage
#     bytes; callers detect failure when the output does not parse.
#
# Design:
#   - Pure functions, bytes in / bytes out
#   - No logging, no storage access

import hashlib
from typing import Tuple

from Crypto.Cipher import Blowfish
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from ..errors import InvalidKeyMaterial
from .keys import PRIVATE_KEY_SIZE, PUBLIC_KEY_SIZE, Keypair

# ── Constants ────────────────────────────────────────────────────────

SECRET_SIZE = 32        # minimum secret length for key/IV derivation
CIPHER_KEY_SIZE = 16    # Blowfish key taken from secret[8:24]
IV_SIZE = 8             # Blowfish block size
SHORTCODE_SIZE = 3      # bytes of the public-key hash shown to users

CURVE = ec.SECP256K1()


# ── Hashing ──────────────────────────────────────────────────────────


def hash_data(data: bytes) -> bytes:
    """SHA3-256 digest (32 bytes). Not an integrity check."""
    return hashlib.sha3_256(bytes(data)).digest()


def password_secret(password: str) -> bytes:
    """Turn a user passphrase into the 32-byte secret used by encrypt()."""
    return hash_data(password.encode("utf-8"))


# ── Symmetric Encryption ─────────────────────────────────────────────


def derive_key_and_iv(secret: bytes) -> Tuple[bytes, bytes]:
    """Split a secret into a 16-byte Blowfish key and an 8-byte IV.

    key = secret[8:24]
    iv  = secret[0:8] XOR secret[24:32]

    Secrets shorter than 32 bytes are rejected; anything past byte 32 is
    ignored.

    Raises:
        InvalidKeyMaterial: If the secret is shorter than 32 bytes.
    """
    secret = bytes(secret)
    if len(secret) < SECRET_SIZE:
        raise InvalidKeyMaterial(
            f"Secret must be at least {SECRET_SIZE} bytes, got {len(secret)}"
        )
    key = secret[8:24]
    iv = bytes(a ^ b for a, b in zip(secret[0:8], secret[24:32]))
    return key, iv


def _blowfish_cfb(secret: bytes):
    key, iv = derive_key_and_iv(secret)
    return Blowfish.new(key, Blowfish.MODE_CFB, iv=iv, segment_size=IV_SIZE * 8)


def encrypt(plaintext: bytes, secret: bytes) -> bytes:
    """Encrypt with Blowfish-CFB. Output length equals input length."""
    return _blowfish_cfb(secret).encrypt(bytes(plaintext))


def decrypt(ciphertext: bytes, secret: bytes) -> bytes:
    """Decrypt Blowfish-CFB. A wrong secret yields garbage, not an error."""
    return _blowfish_cfb(secret).decrypt(bytes(ciphertext))


# ── secp256k1 Keypairs ───────────────────────────────────────────────


def _load_private_key(private_key: bytes) -> ec.EllipticCurvePrivateKey:
    if len(private_key) != PRIVATE_KEY_SIZE:
        raise InvalidKeyMaterial(
            f"Private key must be {PRIVATE_KEY_SIZE} bytes, got {len(private_key)}"
        )
    try:
        return ec.derive_private_key(int.from_bytes(private_key, "big"), CURVE)
    except ValueError as e:
        raise InvalidKeyMaterial(f"Private key out of range: {e}") from e


def _load_public_key(public_key: bytes) -> ec.EllipticCurvePublicKey:
    if len(public_key) != PUBLIC_KEY_SIZE:
        raise InvalidKeyMaterial(
            f"Public key must be {PUBLIC_KEY_SIZE} bytes, got {len(public_key)}"
        )
    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(CURVE, bytes(public_key))
    except ValueError as e:
        raise InvalidKeyMaterial(f"Invalid public key point: {e}") from e


def _compressed_point(public: ec.EllipticCurvePublicKey) -> bytes:
    return public.public_bytes(
        serialization.Encoding.X962,
        serialization.PublicFormat.CompressedPoint,
    )


def generate_keypair() -> Keypair:
    """Generate a random secp256k1 keypair."""
    private = ec.generate_private_key(CURVE)
    scalar = private.private_numbers().private_value.to_bytes(PRIVATE_KEY_SIZE, "big")
    return Keypair.from_bytes(scalar, _compressed_point(private.public_key()))


def derive_public(private_key: bytes) -> bytes:
    """Compute the 33-byte compressed public point for a private scalar."""
    return _compressed_point(_load_private_key(private_key).public_key())


def compute_shared_secret(private_key: bytes, peer_public_key: bytes) -> bytes:
    """ECDH over secp256k1. Returns the 32-byte shared x-coordinate."""
    private = _load_private_key(private_key)
    peer = _load_public_key(peer_public_key)
    return private.exchange(ec.ECDH(), peer)


def encrypt_with_shared_secret(
    plaintext: bytes, private_key: bytes, peer_public_key: bytes,
) -> bytes:
    """Encrypt for a peer under the ECDH secret (not yet used by messaging)."""
    return encrypt(plaintext, compute_shared_secret(private_key, peer_public_key))


def decrypt_with_shared_secret(
    ciphertext: bytes, private_key: bytes, peer_public_key: bytes,
) -> bytes:
    return decrypt(ciphertext, compute_shared_secret(private_key, peer_public_key))


def shortcode(public_key: bytes) -> str:
    """Short hex code identifying a public key (first 3 bytes of its hash)."""
    return hash_data(public_key)[:SHORTCODE_SIZE].hex()
