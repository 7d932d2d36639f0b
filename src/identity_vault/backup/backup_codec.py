"""Portable identity backup encoding.

A backup file is the raw Blowfish-CFB ciphertext (see crypto.primitives)
of a compact UTF-8 JSON document:

    [[user_name, combined_key_b64], rooms, contacts]

where ``combined_key_b64`` is base64 of private‖public key bytes and
``rooms`` / ``contacts`` are placeholders (``[]`` / ``{}``). The secret is
SHA3-256 of the UTF-8 passphrase. There is no header, version byte, salt
or integrity tag.

When the combined form alone cannot reproduce a keypair exactly (key
sizes other than 32+33 bytes, or non-canonical base64 text) the identity
entry carries the structured keypair as a third element:

    [[user_name, combined_key_b64, {"privateKey": ..., "publicKey": ...}], [], {}]

Import validates the decrypted structure, not just that it parses: a
wrong passphrase and a corrupted file both raise DecryptionError with
the same message.
"""

import json
from typing import Any

from ..crypto import (
    COMBINED_KEY_SIZE,
    PRIVATE_KEY_SIZE,
    PUBLIC_KEY_SIZE,
    Keypair,
    base64_to_bytes,
    bytes_to_base64,
    combine_keypair,
    decrypt,
    derive_public,
    encrypt,
    password_secret,
    split_keypair,
)
from ..errors import CryptoError, DecryptionError
from ..vault.identity import Identity

INCORRECT_PASSWORD_MESSAGE = "Decryption error: incorrect password or corrupted data"


def _is_canonical_base64(text: str) -> bool:
    return bytes_to_base64(base64_to_bytes(text)) == text


def _needs_structured_keypair(keypair: Keypair) -> bool:
    return (
        len(keypair.private_bytes) != PRIVATE_KEY_SIZE
        or len(keypair.public_bytes) != PUBLIC_KEY_SIZE
        or not _is_canonical_base64(keypair.private_key)
        or not _is_canonical_base64(keypair.public_key)
    )


def encode_payload(identity: Identity) -> bytes:
    """Serialize an Identity to the plaintext bytes of a backup file."""
    keypair = identity.keypair
    entry: list = [identity.user_name, bytes_to_base64(combine_keypair(keypair))]
    if _needs_structured_keypair(keypair):
        entry.append(keypair.to_dict())
    payload = [entry, [], {}]
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _reject() -> DecryptionError:
    return DecryptionError(INCORRECT_PASSWORD_MESSAGE)


def decode_payload(data: bytes) -> Identity:
    """Parse and validate decrypted backup bytes.

    Raises:
        DecryptionError: Not UTF-8, not JSON, or not a well-formed identity.
    """
    try:
        payload: Any = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise _reject() from e

    if not (
        isinstance(payload, list)
        and len(payload) == 3
        and isinstance(payload[0], list)
        and isinstance(payload[1], list)
        and isinstance(payload[2], dict)
        and len(payload[0]) in (2, 3)
    ):
        raise _reject()

    entry = payload[0]
    user_name, combined_b64 = entry[0], entry[1]
    if not isinstance(user_name, str) or not isinstance(combined_b64, str):
        raise _reject()

    try:
        combined = base64_to_bytes(combined_b64)
        if len(entry) == 3:
            keypair = Keypair.from_dict(entry[2])
            if combine_keypair(keypair) != combined:
                raise _reject()
        else:
            if len(combined) != COMBINED_KEY_SIZE:
                raise _reject()
            keypair = split_keypair(combined)
            if derive_public(keypair.private_bytes) != keypair.public_bytes:
                raise _reject()
    except CryptoError as e:
        if isinstance(e, DecryptionError):
            raise
        raise _reject() from e

    return Identity(user_name=user_name, keypair=keypair)


def export_vault(identity: Identity, password: str) -> bytes:
    """Encrypt an Identity into portable backup bytes.

    The caller enforces the passphrase policy; no strength check here.
    """
    return encrypt(encode_payload(identity), password_secret(password))


def import_vault(blob: bytes, password: str) -> Identity:
    """Decrypt portable backup bytes back into an Identity.

    Raises:
        DecryptionError: Wrong passphrase or corrupted data (indistinguishable).
    """
    return decode_payload(decrypt(blob, password_secret(password)))
