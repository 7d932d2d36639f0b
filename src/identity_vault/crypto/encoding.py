"""Text encodings for key material and payloads.

Keys and ciphertexts cross storage and file boundaries as base64 text;
hex is used for user-facing identifiers (chat links, shortcodes).
Every decoder is strict and raises ``MalformedEncoding`` on bad input.
"""

import base64
import binascii

from ..errors import MalformedEncoding


def bytes_to_base64(data: bytes) -> str:
    """Encode raw bytes as standard (padded) base64 text."""
    return base64.b64encode(bytes(data)).decode("ascii")


def base64_to_bytes(text: str) -> bytes:
    """Decode standard base64 text, rejecting non-alphabet characters."""
    try:
        if isinstance(text, str):
            text = text.encode("ascii")
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise MalformedEncoding(f"Invalid base64 data: {e}") from e


def string_to_base64(text: str) -> str:
    """UTF-8 encode a string and return it as base64 text."""
    return bytes_to_base64(text.encode("utf-8"))


def base64_to_string(text: str) -> str:
    """Decode base64 text and interpret the bytes as UTF-8."""
    raw = base64_to_bytes(text)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedEncoding(f"Invalid UTF-8 data: {e}") from e


def bytes_to_hex(data: bytes) -> str:
    return bytes(data).hex()


def hex_to_bytes(text: str) -> bytes:
    try:
        return bytes.fromhex(text)
    except (ValueError, TypeError) as e:
        raise MalformedEncoding(f"Invalid hex data: {e}") from e


def base64_to_hex(text: str) -> str:
    """Re-encode base64 key material as lowercase hex."""
    return bytes_to_hex(base64_to_bytes(text))
