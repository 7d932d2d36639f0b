# Crypto Module - Stateless primitives
#
# SHA3-256, Blowfish-CFB password encryption, secp256k1 keypairs / ECDH,
# and the text encodings used for key material.

from .encoding import (
    base64_to_bytes,
    base64_to_hex,
    base64_to_string,
    bytes_to_base64,
    bytes_to_hex,
    hex_to_bytes,
    string_to_base64,
)
from .keys import (
    COMBINED_KEY_SIZE,
    PRIVATE_KEY_SIZE,
    PUBLIC_KEY_SIZE,
    Keypair,
    build_user_link,
    combine_keypair,
    private_key_hex,
    public_key_hex,
    split_keypair,
)
from .primitives import (
    compute_shared_secret,
    decrypt,
    decrypt_with_shared_secret,
    derive_key_and_iv,
    derive_public,
    encrypt,
    encrypt_with_shared_secret,
    generate_keypair,
    hash_data,
    password_secret,
    shortcode,
)

__all__ = [
    # Encoding
    "base64_to_bytes",
    "base64_to_hex",
    "base64_to_string",
    "bytes_to_base64",
    "bytes_to_hex",
    "hex_to_bytes",
    "string_to_base64",
    # Keys
    "COMBINED_KEY_SIZE",
    "PRIVATE_KEY_SIZE",
    "PUBLIC_KEY_SIZE",
    "Keypair",
    "build_user_link",
    "combine_keypair",
    "private_key_hex",
    "public_key_hex",
    "split_keypair",
    # Primitives
    "compute_shared_secret",
    "decrypt",
    "decrypt_with_shared_secret",
    "derive_key_and_iv",
    "derive_public",
    "encrypt",
    "encrypt_with_shared_secret",
    "generate_keypair",
    "hash_data",
    "password_secret",
    "shortcode",
]
