# Vault Manager - Vault Session Lifecycle
#
# Owns at most one open vault session per process:
#   - remembers the device's vault id in the raw key-value store
#   - creates or reconnects the vault session through the backend
#   - reads/writes the application payload under the vault id
#   - notifies subscribers on every authentication change and payload write
#
# State machine:
#   uninitialized → (initialize) → creating | connecting → authenticated
#   any step → unauthenticated on failure
#   authenticated → (clear_vault) → uninitialized
#
# Failure policy:
#   - user cancellation (token abort, refused ceremony) clears the vault so
#     no half-initialised session is left behind, then re-raises
#   - any other failure re-raises as VaultError; persisted data is kept

import asyncio
import logging
import threading
from enum import Enum
from typing import Any, Callable, List, Optional

from ..core import EventSeverity, EventType, get_audit_logger
from ..core.config import KEY_MODE_PASSPHRASE, VaultConfig, load_config
from ..errors import (
    CeremonyCancelled,
    IdentityVaultError,
    OperationCancelled,
    StorageWriteError,
    VaultError,
)
from .backend import LocalVaultBackend, VaultBackend, VaultHandle
from .cancellation import CancellationToken
from .encryption import (
    AUTHENTICATION_REFUSED,
    CEREMONY_ABORTED,
    REGISTRATION_REFUSED,
    DeviceKeyProvider,
    PassphraseKeyProvider,
    PresenceCheck,
)
from .storage import KeyValueStore, SQLiteKeyValueStore

logger = logging.getLogger(__name__)

VAULT_ID_KEY = "vault-id"

# Error messages that mean the user (not the system) aborted the operation
CANCEL_ERROR_MARKERS = (
    CEREMONY_ABORTED,
    AUTHENTICATION_REFUSED,
    REGISTRATION_REFUSED,
)

AuthListener = Callable[[bool], None]
DataListener = Callable[[Any], None]


class VaultState(str, Enum):
    """Lifecycle state of the vault session."""
    UNINITIALIZED = "uninitialized"
    CREATING = "creating"
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


class VaultManager:
    """
    Manages the process's single vault session.

    Usage::

        manager = get_vault_manager()
        unsubscribe = manager.subscribe(lambda is_auth: print(is_auth))
        await manager.set_data(json.dumps(payload))
        payload = json.loads(await manager.get_data())

    Every storage call receives the cancellation token that was active when
    the operation started; cancel_operation() cancels it and installs a
    fresh one.
    """

    def __init__(
        self,
        raw_store: KeyValueStore,
        backend: VaultBackend,
        audit_logger=None,
    ):
        self._raw_store = raw_store
        self._backend = backend
        self._vault: Optional[VaultHandle] = None
        self._is_authenticated = False
        self._state = VaultState.UNINITIALIZED
        self._token = CancellationToken()
        self._listeners: List[AuthListener] = []
        self._data_listeners: List[DataListener] = []
        self._init_lock = asyncio.Lock()
        self.audit = audit_logger or get_audit_logger()

    # ── State & Notifications ────────────────────────────────────────

    @property
    def is_authenticated(self) -> bool:
        return self._is_authenticated

    @property
    def state(self) -> VaultState:
        return self._state

    @property
    def vault_id(self) -> Optional[str]:
        """Id of the open session, or None when no session is open."""
        return self._vault.id if self._vault else None

    @property
    def token(self) -> CancellationToken:
        """The currently active cancellation token."""
        return self._token

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        """Register an auth_change listener. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def subscribe_data(self, listener: DataListener) -> Callable[[], None]:
        """Register a listener for payload writes. Returns an unsubscribe callable.

        Listeners receive the stored value after every successful set_data(),
        whether or not the auth state changed.
        """
        self._data_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._data_listeners:
                self._data_listeners.remove(listener)

        return unsubscribe

    def _set_authenticated(self, value: bool) -> None:
        """Update AuthState; notify listeners only when it actually changes."""
        if self._is_authenticated == value:
            return
        self._is_authenticated = value
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logger.exception("auth_change listener %r failed", listener)

    # ── Lifecycle ────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Reconnect to the saved vault, or create one if none is saved."""
        try:
            vault_id = self._raw_store.get(VAULT_ID_KEY)
        except Exception as e:
            raise await self._failure(e, "Failed to initialize vault")

        if vault_id:
            await self.connect(vault_id)
        else:
            await self.create_vault()

    async def create_vault(self) -> None:
        """Create a new vault session and remember its id."""
        token = self._token
        self._state = VaultState.CREATING
        try:
            token.raise_if_cancelled()
            vault = await self._backend.connect(add_new_vault=True, token=token)
            token.raise_if_cancelled()
            self._raw_store.set(VAULT_ID_KEY, vault.id)
        except Exception as e:
            raise await self._failure(e, "Failed to create vault")

        self._open(vault)
        self.audit.log_vault_event(
            EventType.VAULT_CREATED,
            "new vault created",
            details={"vault_id": vault.id},
        )
        logger.info("Created new vault %s", vault.id)

    async def connect(self, vault_id: str) -> None:
        """Resume an existing vault session by id."""
        token = self._token
        self._state = VaultState.CONNECTING
        try:
            token.raise_if_cancelled()
            vault = await self._backend.connect(vault_id=vault_id, token=token)
            token.raise_if_cancelled()
        except Exception as e:
            raise await self._failure(e, "Failed to connect to vault")

        self._open(vault)
        self.audit.log_vault_event(
            EventType.VAULT_CONNECTED,
            "connected to existing vault",
            details={"vault_id": vault_id},
        )
        logger.info("Connected to vault %s", vault_id)

    def _open(self, vault: VaultHandle) -> None:
        # Handle is in place before listeners run so they can read data
        self._vault = vault
        self._state = VaultState.AUTHENTICATED
        self._set_authenticated(True)

    async def _ensure_vault(self) -> VaultHandle:
        """Lazily initialize once, even with concurrent callers."""
        if self._vault is None:
            async with self._init_lock:
                if self._vault is None:
                    logger.warning("Vault not initialized, initializing")
                    await self.initialize()
        if self._vault is None:
            raise VaultError("No active vault session")
        return self._vault

    # ── Payload ──────────────────────────────────────────────────────

    async def set_data(self, value: Any) -> None:
        """Store the application payload under the current vault id."""
        vault = await self._ensure_vault()
        token = self._token
        try:
            token.raise_if_cancelled()
            await vault.set(vault.id, value, token=token)
        except Exception as e:
            raise await self._failure(e, "Failed to save data")

        self.audit.log_vault_event(
            EventType.VAULT_DATA_WRITTEN,
            "payload written",
            details={"vault_id": vault.id},
        )
        for listener in list(self._data_listeners):
            try:
                listener(value)
            except Exception:
                logger.exception("data_change listener %r failed", listener)

    async def get_data(self) -> Any:
        """Return the application payload (None if nothing stored yet)."""
        vault = await self._ensure_vault()
        token = self._token
        try:
            token.raise_if_cancelled()
            value = await vault.get(vault.id, token=token)
        except Exception as e:
            raise await self._failure(e, "Failed to read data")

        self.audit.log_vault_event(
            EventType.VAULT_DATA_READ,
            "payload read",
            details={"vault_id": vault.id, "empty": value is None},
        )
        return value

    def has_vault(self) -> bool:
        """True iff a vault id is saved, whether or not a session is open."""
        return bool(self._raw_store.get(VAULT_ID_KEY))

    async def clear_vault(self) -> None:
        """Erase all vault storage and the saved vault id. Idempotent."""
        self._vault = None
        self._state = VaultState.UNINITIALIZED
        self._set_authenticated(False)
        try:
            await self._backend.remove_all()
            self._raw_store.remove(VAULT_ID_KEY)
        except Exception as e:
            logger.error("Failed to clear vault: %s", e)
            raise StorageWriteError(f"Failed to clear vault: {e}") from e

        self.audit.log_vault_event(EventType.VAULT_CLEARED, "vault cleared")
        logger.info("Vault cleared")

    # ── Cancellation & Errors ────────────────────────────────────────

    def cancel_operation(self, reason: str = "Operation cancelled") -> None:
        """Abort the in-flight operation; later operations get a fresh token."""
        previous = self._token
        self._token = CancellationToken()
        previous.cancel(reason)

        self._vault = None
        if self._state != VaultState.UNINITIALIZED:
            self._state = VaultState.UNAUTHENTICATED
        self._set_authenticated(False)

        self.audit.log_event(
            event_type=EventType.VAULT_CANCELLED,
            severity=EventSeverity.INVESTIGATE,
            message=f"Vault operation cancelled: {reason}",
        )
        logger.warning("Operation cancelled: %s", reason)

    @staticmethod
    def is_cancel_error(error: BaseException) -> bool:
        """True if the error means the user aborted, not a transient failure."""
        if isinstance(error, (OperationCancelled, CeremonyCancelled)):
            return True
        if type(error).__name__ == "AbortError":
            return True
        message = str(error)
        return any(marker in message for marker in CANCEL_ERROR_MARKERS)

    async def _failure(self, error: Exception, message: str) -> IdentityVaultError:
        """Record a failed operation and return the exception to raise."""
        self._vault = None
        self._state = VaultState.UNAUTHENTICATED
        self._set_authenticated(False)

        if self.is_cancel_error(error):
            logger.warning("%s: operation cancelled by user, clearing vault", message)
            self.audit.log_event(
                event_type=EventType.VAULT_CANCELLED,
                severity=EventSeverity.INVESTIGATE,
                message=f"{message}: cancelled by user, vault cleared",
            )
            try:
                await self.clear_vault()
            except StorageWriteError:
                logger.exception("Vault cleanup after cancellation failed")
        else:
            logger.error("%s: %s", message, error)
            self.audit.log_event(
                event_type=EventType.VAULT_ERROR,
                severity=EventSeverity.ALERT,
                message=f"{message}: {error}",
            )

        if isinstance(error, IdentityVaultError):
            return error
        wrapped = VaultError(f"{message}: {error}")
        wrapped.__cause__ = error
        return wrapped


# ── Factory & Singleton ──────────────────────────────────────────────


def create_vault_manager(
    config: Optional[VaultConfig] = None,
    passphrase: Optional[str] = None,
    presence_check: Optional[PresenceCheck] = None,
    audit_logger=None,
) -> VaultManager:
    """Build a VaultManager wired to the sqlite raw store and local backend.

    Raises:
        ValueError: Passphrase key mode without a passphrase.
    """
    config = config or load_config()
    if config.key_mode == KEY_MODE_PASSPHRASE:
        if not passphrase:
            raise ValueError("Passphrase key mode requires a vault passphrase")
        provider = PassphraseKeyProvider(passphrase, presence_check=presence_check)
    else:
        provider = DeviceKeyProvider(config.device_key_path, presence_check=presence_check)

    return VaultManager(
        raw_store=SQLiteKeyValueStore(config.meta_db_path),
        backend=LocalVaultBackend(config.records_db_path, provider),
        audit_logger=audit_logger,
    )


_vault_manager: Optional[VaultManager] = None
_vault_manager_lock = threading.Lock()


def get_vault_manager() -> VaultManager:
    """Get the process-wide VaultManager; concurrent callers share one instance."""
    global _vault_manager
    if _vault_manager is None:
        with _vault_manager_lock:
            if _vault_manager is None:
                _vault_manager = create_vault_manager()
    return _vault_manager


def set_vault_manager(manager: Optional[VaultManager]) -> None:
    """Install the shared VaultManager (entry point or tests)."""
    global _vault_manager
    with _vault_manager_lock:
        _vault_manager = manager
