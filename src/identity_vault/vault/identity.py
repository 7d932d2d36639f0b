# Identity Store - user name + keypair inside the vault payload
#
# The vault payload is a JSON document:
#   {"userName": str,
#    "userKeipair": {"privateKey": b64, "publicKey": b64},
#    "userData": {...}}
#
# IdentityStore reads/writes it through the VaultManager; KeypairProvider
# is what the messaging layer holds to get the current keypair.

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..core import EventType
from ..crypto import Keypair, generate_keypair, shortcode
from ..errors import IdentityVaultError, MalformedEncoding, VaultError
from .vault_manager import VaultManager

logger = logging.getLogger(__name__)

USER_NAME_FIELD = "userName"
KEYPAIR_FIELD = "userKeipair"
USER_DATA_FIELD = "userData"


@dataclass(frozen=True)
class Identity:
    """The secret the vault protects: a display name and its keypair."""
    user_name: str
    keypair: Keypair

    def to_payload(self, user_data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return {
            USER_NAME_FIELD: self.user_name,
            KEYPAIR_FIELD: self.keypair.to_dict(),
            USER_DATA_FIELD: dict(user_data or {}),
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Identity":
        if not isinstance(payload, dict):
            raise MalformedEncoding("Vault payload must be a JSON object")
        user_name = payload.get(USER_NAME_FIELD)
        if not isinstance(user_name, str):
            raise MalformedEncoding("Vault payload has no userName")
        return cls(user_name=user_name, keypair=Keypair.from_dict(payload.get(KEYPAIR_FIELD)))


def _user_data(payload: Dict[str, Any]) -> Dict[str, Any]:
    data = payload.get(USER_DATA_FIELD)
    return data if isinstance(data, dict) else {}


class IdentityStore:
    """Load, save and migrate the Identity held in the vault payload."""

    def __init__(self, manager: VaultManager):
        self.manager = manager

    async def _read_payload(self) -> Dict[str, Any]:
        raw = await self.manager.get_data()
        if not raw:
            return {}
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise VaultError("Vault payload is not valid JSON") from e
        if not isinstance(payload, dict):
            raise VaultError("Vault payload must be a JSON object")
        return payload

    async def load(self) -> Optional[Identity]:
        """Return the stored Identity, or None if the vault holds none."""
        payload = await self._read_payload()
        if KEYPAIR_FIELD not in payload:
            return None
        return Identity.from_payload(payload)

    async def load_user_data(self) -> Dict[str, Any]:
        payload = await self._read_payload()
        return _user_data(payload)

    async def save(self, identity: Identity, user_data: Optional[Dict[str, Any]] = None) -> None:
        """Replace the stored Identity; keeps existing user data unless given."""
        if user_data is None:
            user_data = await self.load_user_data()
        await self.manager.set_data(json.dumps(identity.to_payload(user_data)))

    async def update_user_data(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Merge ``data`` into the stored user data; returns the merged result."""
        payload = await self._read_payload()
        merged = {**_user_data(payload), **data}
        payload[USER_DATA_FIELD] = merged
        await self.manager.set_data(json.dumps(payload))
        return merged

    async def ensure_identity(
        self,
        user_name: str,
        user_data: Optional[Dict[str, Any]] = None,
    ) -> Identity:
        """Return the stored Identity, creating one if the vault has none.

        An existing identity keeps its keypair; new user data is merged in.
        Otherwise a fresh keypair is generated for ``user_name``.
        """
        payload = await self._read_payload()
        if KEYPAIR_FIELD in payload:
            identity = Identity.from_payload(payload)
            if user_data:
                payload[USER_DATA_FIELD] = {**_user_data(payload), **user_data}
                await self.manager.set_data(json.dumps(payload))
            return identity

        identity = Identity(user_name=user_name, keypair=generate_keypair())
        await self.manager.set_data(json.dumps(identity.to_payload(user_data)))
        self.manager.audit.log_vault_event(
            EventType.IDENTITY_CREATED,
            "new identity generated",
            details={"shortcode": shortcode(identity.keypair.public_bytes)},
        )
        return identity


class KeypairProvider:
    """Keypair source for the messaging layer.

    Follows the vault's notifications: the keypair is loaded when the vault
    becomes authenticated, replaced on every payload write (new identity,
    backup import) and dropped when the vault is locked or cleared.
    """

    def __init__(self, manager: VaultManager, store: Optional[IdentityStore] = None):
        self.manager = manager
        self.store = store or IdentityStore(manager)
        self._keypair: Optional[Keypair] = None
        self._pending: Optional[asyncio.Task] = None
        # Bumped on every change so a slower vault read cannot overwrite it
        self._generation = 0
        self._unsubscribe_auth = manager.subscribe(self._on_auth_change)
        self._unsubscribe_data = manager.subscribe_data(self._on_data_change)

    def get_keypair(self) -> Optional[Keypair]:
        return self._keypair

    async def refresh(self) -> Optional[Keypair]:
        """Load the keypair from the vault now."""
        generation = self._generation
        identity = await self.store.load()
        if generation == self._generation:
            self._keypair = identity.keypair if identity else None
        return self._keypair

    async def wait_loaded(self) -> Optional[Keypair]:
        """Wait for a refresh triggered by auth_change to finish."""
        if self._pending is not None:
            await asyncio.shield(self._pending)
        return self._keypair

    def close(self) -> None:
        self._unsubscribe_auth()
        self._unsubscribe_data()

    def _set_keypair(self, keypair: Optional[Keypair]) -> None:
        self._generation += 1
        self._keypair = keypair

    def _on_auth_change(self, is_authenticated: bool) -> None:
        if not is_authenticated:
            self._set_keypair(None)
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the caller must await refresh() itself
            return
        self._pending = loop.create_task(self._refresh_in_background())

    def _on_data_change(self, raw: Any) -> None:
        try:
            payload = json.loads(raw) if raw else {}
            identity = (
                Identity.from_payload(payload)
                if isinstance(payload, dict) and KEYPAIR_FIELD in payload
                else None
            )
        except (TypeError, ValueError, IdentityVaultError) as e:
            logger.warning("Vault payload written without a readable identity: %s", e)
            identity = None
        self._set_keypair(identity.keypair if identity else None)

    async def _refresh_in_background(self) -> None:
        try:
            await self.refresh()
        except IdentityVaultError as e:
            logger.warning("Failed to load keypair after authentication: %s", e)
