"""Tests for VaultManager: lazy init, persistence, auth notifications,
cancellation and failure handling."""

import asyncio
import sqlite3
from concurrent.futures import ThreadPoolExecutor

import pytest

from identity_vault.errors import (
    BackendUnavailable,
    CeremonyCancelled,
    OperationCancelled,
    StorageWriteError,
    VaultError,
)
from identity_vault.vault import (
    VAULT_ID_KEY,
    DeviceKeyProvider,
    LocalVaultBackend,
    MemoryKeyValueStore,
    VaultManager,
    VaultState,
    get_vault_manager,
    set_vault_manager,
)


class WrappedBackend:
    """Delegates to a real backend; counts connects and can inject failures."""

    def __init__(self, inner):
        self.inner = inner
        self.connect_calls = 0
        self.fail_next = None
        self.gate = None
        self.started = asyncio.Event()

    async def connect(self, vault_id=None, add_new_vault=False, token=None):
        self.connect_calls += 1
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0.01)
        if self.fail_next is not None:
            error, self.fail_next = self.fail_next, None
            raise error
        return await self.inner.connect(vault_id=vault_id, add_new_vault=add_new_vault, token=token)

    async def remove_all(self):
        await self.inner.remove_all()


@pytest.fixture
def parts(tmp_path):
    inner = LocalVaultBackend(tmp_path / "records.db", DeviceKeyProvider(tmp_path / "device.key"))
    return MemoryKeyValueStore(), WrappedBackend(inner)


def make_manager(parts):
    raw_store, backend = parts
    return VaultManager(raw_store=raw_store, backend=backend)


# ── Lifecycle ───────────────────────────────────────────────────────


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_first_use_creates_vault(self, parts):
        manager = make_manager(parts)
        assert manager.has_vault() is False
        assert manager.state == VaultState.UNINITIALIZED

        assert await manager.get_data() is None

        assert manager.has_vault() is True
        assert manager.is_authenticated is True
        assert manager.state == VaultState.AUTHENTICATED
        assert parts[0].get(VAULT_ID_KEY) == manager.vault_id

    @pytest.mark.asyncio
    async def test_set_then_get(self, parts):
        manager = make_manager(parts)
        await manager.set_data('{"userName": "Alice"}')
        assert await manager.get_data() == '{"userName": "Alice"}'

    @pytest.mark.asyncio
    async def test_restart_reconnects_to_same_vault(self, parts):
        first = make_manager(parts)
        await first.set_data("payload")
        vault_id = first.vault_id

        second = make_manager(parts)
        assert second.has_vault() is True
        assert await second.get_data() == "payload"
        assert second.vault_id == vault_id

    @pytest.mark.asyncio
    async def test_clear_then_has_vault_false(self, parts):
        manager = make_manager(parts)
        await manager.set_data("payload")
        await manager.clear_vault()

        assert manager.has_vault() is False
        assert manager.is_authenticated is False
        assert manager.state == VaultState.UNINITIALIZED

    @pytest.mark.asyncio
    async def test_clear_is_idempotent(self, parts):
        manager = make_manager(parts)
        await manager.clear_vault()
        await manager.clear_vault()
        assert manager.has_vault() is False

    @pytest.mark.asyncio
    async def test_data_after_clear_starts_fresh_vault(self, parts):
        manager = make_manager(parts)
        await manager.set_data("old")
        old_id = manager.vault_id
        await manager.clear_vault()

        assert await manager.get_data() is None
        assert manager.vault_id != old_id

    @pytest.mark.asyncio
    async def test_concurrent_first_calls_initialize_once(self, parts):
        manager = make_manager(parts)
        await asyncio.gather(
            manager.get_data(),
            manager.set_data("x"),
            manager.get_data(),
        )
        assert parts[1].connect_calls == 1

    @pytest.mark.asyncio
    async def test_audit_records_creation(self, parts):
        manager = make_manager(parts)
        await manager.get_data()
        text = manager.audit.log_file.read_text(encoding="utf-8")
        assert "vault.created" in text


# ── Auth Notifications ──────────────────────────────────────────────


class TestAuthNotifications:
    @pytest.mark.asyncio
    async def test_notifies_only_on_change(self, parts):
        manager = make_manager(parts)
        events = []
        manager.subscribe(events.append)

        await manager.get_data()
        await manager.set_data("x")
        await manager.clear_vault()
        await manager.clear_vault()

        assert events == [True, False]

    @pytest.mark.asyncio
    async def test_listeners_called_in_order(self, parts):
        manager = make_manager(parts)
        calls = []
        manager.subscribe(lambda v: calls.append(("a", v)))
        manager.subscribe(lambda v: calls.append(("b", v)))
        await manager.get_data()
        assert calls == [("a", True), ("b", True)]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, parts):
        manager = make_manager(parts)
        events = []
        unsubscribe = manager.subscribe(events.append)
        unsubscribe()
        unsubscribe()
        await manager.get_data()
        assert events == []

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_others(self, parts):
        manager = make_manager(parts)
        events = []

        def broken(value):
            raise RuntimeError("listener bug")

        manager.subscribe(broken)
        manager.subscribe(events.append)
        await manager.get_data()
        assert events == [True]


class TestDataNotifications:
    @pytest.mark.asyncio
    async def test_listener_receives_each_write(self, parts):
        manager = make_manager(parts)
        writes = []
        unsubscribe = manager.subscribe_data(writes.append)

        await manager.set_data("one")
        await manager.set_data("two")
        unsubscribe()
        await manager.set_data("three")

        assert writes == ["one", "two"]

    @pytest.mark.asyncio
    async def test_failed_write_not_announced(self, parts):
        manager = make_manager(parts)
        writes = []
        manager.subscribe_data(writes.append)
        parts[1].fail_next = BackendUnavailable("database is locked")

        with pytest.raises(BackendUnavailable):
            await manager.set_data("lost")
        assert writes == []


# ── Cancellation ────────────────────────────────────────────────────


class TestCancellation:
    def test_cancel_twice_leaves_one_live_token(self, parts):
        manager = make_manager(parts)
        t0 = manager.token
        manager.cancel_operation()
        t1 = manager.token
        manager.cancel_operation()
        t2 = manager.token

        assert t0.cancelled and t1.cancelled
        assert not t2.cancelled
        assert len({id(t0), id(t1), id(t2)}) == 3

    @pytest.mark.asyncio
    async def test_cancel_drops_session(self, parts):
        manager = make_manager(parts)
        events = []
        manager.subscribe(events.append)
        await manager.set_data("keep me")

        manager.cancel_operation()

        assert manager.is_authenticated is False
        assert manager.vault_id is None
        assert events == [True, False]
        # Nothing was in flight: data survives and the next call reconnects
        assert await manager.get_data() == "keep me"

    @pytest.mark.asyncio
    async def test_cancel_in_flight_clears_vault(self, parts):
        first = make_manager(parts)
        await first.set_data("secret")

        raw_store, backend = parts
        manager = make_manager(parts)
        backend.gate = asyncio.Event()
        backend.started.clear()

        task = asyncio.create_task(manager.get_data())
        await backend.started.wait()
        manager.cancel_operation("user closed the dialog")
        backend.gate.set()

        with pytest.raises(OperationCancelled):
            await task

        assert manager.has_vault() is False
        assert manager.is_authenticated is False

    @pytest.mark.asyncio
    async def test_refused_ceremony_clears_vault(self, tmp_path):
        backend = LocalVaultBackend(
            tmp_path / "records.db",
            DeviceKeyProvider(tmp_path / "device.key", presence_check=lambda action: False),
        )
        manager = VaultManager(raw_store=MemoryKeyValueStore(), backend=backend)

        with pytest.raises(CeremonyCancelled):
            await manager.set_data("x")
        assert manager.has_vault() is False

    def test_is_cancel_error(self):
        class AbortError(Exception):
            pass

        assert VaultManager.is_cancel_error(AbortError("aborted"))
        assert VaultManager.is_cancel_error(OperationCancelled("AbortError: stop"))
        assert VaultManager.is_cancel_error(
            Exception("The operation either timed out or was not allowed. See docs.")
        )
        assert VaultManager.is_cancel_error(Exception("Credential auth failed"))
        assert not VaultManager.is_cancel_error(BackendUnavailable("disk full"))
        assert not VaultManager.is_cancel_error(ValueError("nope"))


# ── Failures ────────────────────────────────────────────────────────


class TestFailures:
    @pytest.mark.asyncio
    async def test_transient_error_keeps_data(self, parts):
        first = make_manager(parts)
        await first.set_data("precious")

        manager = make_manager(parts)
        parts[1].fail_next = BackendUnavailable("database is locked")
        with pytest.raises(BackendUnavailable):
            await manager.get_data()

        assert manager.is_authenticated is False
        assert manager.has_vault() is True
        assert await manager.get_data() == "precious"

    @pytest.mark.asyncio
    async def test_foreign_errors_wrapped(self, parts):
        manager = make_manager(parts)
        parts[1].fail_next = RuntimeError("boom")
        with pytest.raises(VaultError) as exc_info:
            await manager.get_data()
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert manager.state == VaultState.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_clear_failure_raises_storage_error(self, parts):
        manager = make_manager(parts)

        async def broken_remove_all():
            raise sqlite3.OperationalError("disk I/O error")

        parts[1].remove_all = broken_remove_all
        with pytest.raises(StorageWriteError):
            await manager.clear_vault()


# ── Shared Instance ─────────────────────────────────────────────────


class TestSharedInstance:
    def test_get_vault_manager_is_singleton(self, tmp_path, monkeypatch):
        monkeypatch.setenv("IDENTITY_VAULT_DATA_DIR", str(tmp_path / "data"))

        with ThreadPoolExecutor(max_workers=4) as pool:
            managers = list(pool.map(lambda _: get_vault_manager(), range(8)))

        assert all(m is managers[0] for m in managers)

    def test_set_vault_manager(self, parts):
        manager = make_manager(parts)
        set_vault_manager(manager)
        assert get_vault_manager() is manager
