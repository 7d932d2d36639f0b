# Keypair model and key-material conversions
#
# Canonical representation: a structured Keypair (base64 private key +
# base64 compressed public key). The combined private‖public form exists
# only inside portable backup files; combine_keypair / split_keypair are
# the only conversions between the two.

from dataclasses import dataclass
from typing import Any, Dict

from ..errors import InvalidKeyMaterial, MalformedEncoding
from .encoding import base64_to_bytes, bytes_to_base64, bytes_to_hex

# secp256k1 sizes
PRIVATE_KEY_SIZE = 32   # raw scalar
PUBLIC_KEY_SIZE = 33    # SEC1 compressed point
COMBINED_KEY_SIZE = PRIVATE_KEY_SIZE + PUBLIC_KEY_SIZE


@dataclass(frozen=True)
class Keypair:
    """Asymmetric keypair with both halves held as base64 text."""
    private_key: str
    public_key: str

    def __repr__(self) -> str:
        """Redact the private key to prevent accidental logging of secrets."""
        return f"Keypair(public_key={self.public_key!r}, private_key=<redacted>)"

    @property
    def private_bytes(self) -> bytes:
        return base64_to_bytes(self.private_key)

    @property
    def public_bytes(self) -> bytes:
        return base64_to_bytes(self.public_key)

    @classmethod
    def from_bytes(cls, private_key: bytes, public_key: bytes) -> "Keypair":
        return cls(
            private_key=bytes_to_base64(private_key),
            public_key=bytes_to_base64(public_key),
        )

    def to_dict(self) -> Dict[str, str]:
        return {"privateKey": self.private_key, "publicKey": self.public_key}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Keypair":
        if not isinstance(d, dict):
            raise MalformedEncoding("Keypair must be a mapping")
        private_key = d.get("privateKey")
        public_key = d.get("publicKey")
        if not isinstance(private_key, str) or not isinstance(public_key, str):
            raise MalformedEncoding("Keypair requires privateKey and publicKey strings")
        # Validate both halves decode before accepting them
        base64_to_bytes(private_key)
        base64_to_bytes(public_key)
        return cls(private_key=private_key, public_key=public_key)


def combine_keypair(keypair: Keypair) -> bytes:
    """Concatenate private‖public key bytes (private first)."""
    return keypair.private_bytes + keypair.public_bytes


def split_keypair(combined: bytes, private_size: int = PRIVATE_KEY_SIZE) -> Keypair:
    """Split a combined key back into its halves.

    The first ``private_size`` bytes are the private key, the remainder is
    the public key.
    """
    if private_size < 0 or private_size > len(combined):
        raise InvalidKeyMaterial(
            f"Cannot split {len(combined)}-byte key at offset {private_size}"
        )
    return Keypair.from_bytes(combined[:private_size], combined[private_size:])


def public_key_hex(keypair: Keypair) -> str:
    return bytes_to_hex(keypair.public_bytes)


def private_key_hex(keypair: Keypair) -> str:
    return bytes_to_hex(keypair.private_bytes)


def build_user_link(base_url: str, keypair: Keypair) -> str:
    """Chat link that identifies the user by hex public key."""
    return f"{base_url.rstrip('/')}/chat/{public_key_hex(keypair)}"
