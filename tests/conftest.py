"""
Shared pytest fixtures for the Identity Vault test suite.

Autouse fixtures below isolate tests from live application data:
  - Audit logger   -> temp directory  (prevents test events in ./audit_logs)
  - Vault manager  -> reset singleton (no manager leaks between tests)
  - Environment    -> IDENTITY_VAULT_* variables cleared
"""

import pytest


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path, monkeypatch):
    """Redirect the global AuditLogger to a temp directory for every test."""
    import identity_vault.core.audit_log as audit_mod

    old_logger = audit_mod._audit_logger

    orig_init = audit_mod.AuditLogger.__init__

    def patched_init(self, log_dir=None):
        orig_init(self, log_dir=log_dir or tmp_path / "audit_logs")

    monkeypatch.setattr(audit_mod.AuditLogger, "__init__", patched_init)

    # get_audit_logger() would otherwise resolve ./audit_logs from config
    audit_mod._audit_logger = audit_mod.AuditLogger(tmp_path / "audit_logs")

    yield

    audit_mod._audit_logger = old_logger


@pytest.fixture(autouse=True)
def _isolate_vault_manager():
    """Drop the shared VaultManager before and after each test."""
    from identity_vault.vault import set_vault_manager

    set_vault_manager(None)
    yield
    set_vault_manager(None)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "IDENTITY_VAULT_DATA_DIR",
        "IDENTITY_VAULT_AUDIT_DIR",
        "IDENTITY_VAULT_KEY_MODE",
        "IDENTITY_VAULT_CHAT_BASE_URL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def memory_manager(tmp_path):
    """VaultManager over an in-memory raw store and a temp-dir sqlite backend."""
    from identity_vault.vault import (
        DeviceKeyProvider,
        LocalVaultBackend,
        MemoryKeyValueStore,
        VaultManager,
    )

    backend = LocalVaultBackend(
        tmp_path / "records.db",
        DeviceKeyProvider(tmp_path / "device.key"),
    )
    return VaultManager(raw_store=MemoryKeyValueStore(), backend=backend)
