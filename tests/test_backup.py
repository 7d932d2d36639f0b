"""Tests for portable identity backups: codec and file manager."""

import base64
import json

import pytest

from identity_vault.backup import (
    DEFAULT_BACKUP_FILENAME,
    BackupManager,
    decode_payload,
    encode_payload,
    export_vault,
    import_vault,
    load_backup,
    save_backup,
)
from identity_vault.crypto import Keypair, encrypt, generate_keypair, password_secret
from identity_vault.errors import DecryptionError, ValidationError, VaultError
from identity_vault.vault import Identity, IdentityStore

PASSWORD = "aaaaaaaaaaaa"
INCORRECT = "Decryption error: incorrect password or corrupted data"


# ── Codec ───────────────────────────────────────────────────────────


class TestBackupCodec:
    def test_roundtrip_generated_identity(self):
        identity = Identity("Alice", generate_keypair())
        assert import_vault(export_vault(identity, PASSWORD), PASSWORD) == identity

    def test_short_opaque_keys_roundtrip(self):
        identity = Identity("Alice", Keypair(private_key="AA==", public_key="BB=="))
        restored = import_vault(export_vault(identity, PASSWORD), PASSWORD)
        assert restored.user_name == "Alice"
        assert restored.keypair.private_key == "AA=="
        assert restored.keypair.public_key == "BB=="

    def test_empty_name_roundtrip(self):
        identity = Identity("", generate_keypair())
        assert import_vault(export_vault(identity, PASSWORD), PASSWORD) == identity

    def test_payload_layout(self):
        kp = generate_keypair()
        payload = json.loads(encode_payload(Identity("Alice", kp)))
        assert payload[1:] == [[], {}]
        name, combined_b64 = payload[0]
        assert name == "Alice"
        assert combined_b64 == base64.b64encode(
            kp.private_bytes + kp.public_bytes
        ).decode()

    def test_payload_is_compact_utf8(self):
        raw = encode_payload(Identity("Zoë", generate_keypair()))
        assert b" " not in raw
        assert "Zoë".encode("utf-8") in raw

    def test_ciphertext_has_no_header(self):
        identity = Identity("Alice", generate_keypair())
        assert len(export_vault(identity, PASSWORD)) == len(encode_payload(identity))

    def test_wrong_password(self):
        blob = export_vault(Identity("Alice", generate_keypair()), PASSWORD)
        with pytest.raises(DecryptionError, match=INCORRECT):
            import_vault(blob, "bbbbbbbbbbbb")

    def test_corrupted_blob(self):
        blob = bytearray(export_vault(Identity("Alice", generate_keypair()), PASSWORD))
        blob[0] ^= 0xFF
        with pytest.raises(DecryptionError, match=INCORRECT):
            import_vault(bytes(blob), PASSWORD)

    @pytest.mark.parametrize("document", [
        [1, 2, 3],
        {"a": 1},
        [["Alice"], [], {}],
        [[7, "AA=="], [], {}],
        [["Alice", "not base64!"], [], {}],
        [["Alice", "AAAA"], [], {}],
    ])
    def test_valid_json_wrong_shape_rejected(self, document):
        blob = encrypt(json.dumps(document).encode("utf-8"), password_secret(PASSWORD))
        with pytest.raises(DecryptionError, match=INCORRECT):
            import_vault(blob, PASSWORD)

    def test_mismatched_public_key_rejected(self):
        a, b = generate_keypair(), generate_keypair()
        forged = Keypair(private_key=a.private_key, public_key=b.public_key)
        with pytest.raises(DecryptionError):
            decode_payload(json.dumps(
                [["Mallory", base64.b64encode(
                    forged.private_bytes + forged.public_bytes
                ).decode()], [], {}]
            ).encode())


# ── Files & BackupManager ───────────────────────────────────────────


class TestBackupFiles:
    def test_save_into_directory_uses_default_name(self, tmp_path):
        written = save_backup(Identity("Alice", generate_keypair()), PASSWORD, tmp_path)
        assert written == tmp_path / DEFAULT_BACKUP_FILENAME
        assert load_backup(written, PASSWORD).user_name == "Alice"

    def test_password_policy(self, tmp_path):
        with pytest.raises(ValidationError):
            save_backup(Identity("Alice", generate_keypair()), "short", tmp_path)


class TestBackupManager:
    @pytest.mark.asyncio
    async def test_export_clears_vault(self, memory_manager, tmp_path):
        store = IdentityStore(memory_manager)
        identity = await store.ensure_identity("Alice")

        written = await BackupManager(memory_manager, store).export_to_file(
            PASSWORD, tmp_path / "out" / "vault.data",
        )

        assert written.exists()
        assert memory_manager.has_vault() is False
        assert load_backup(written, PASSWORD) == identity

    @pytest.mark.asyncio
    async def test_export_unnamed_identity_then_restore(self, memory_manager, tmp_path):
        store = IdentityStore(memory_manager)
        identity = await store.ensure_identity("")

        manager = BackupManager(memory_manager, store)
        written = await manager.export_to_file(PASSWORD, tmp_path)
        assert memory_manager.has_vault() is False

        restored = await manager.import_from_file(PASSWORD, written)
        assert restored == identity
        assert await store.load() == identity

    @pytest.mark.asyncio
    async def test_export_keep(self, memory_manager, tmp_path):
        await IdentityStore(memory_manager).ensure_identity("Alice")
        await BackupManager(memory_manager).export_to_file(PASSWORD, tmp_path, clear_after=False)
        assert memory_manager.has_vault() is True

    @pytest.mark.asyncio
    async def test_export_empty_vault(self, memory_manager, tmp_path):
        with pytest.raises(VaultError):
            await BackupManager(memory_manager).export_to_file(PASSWORD, tmp_path)

    @pytest.mark.asyncio
    async def test_export_rejects_short_password(self, memory_manager, tmp_path):
        with pytest.raises(ValidationError):
            await BackupManager(memory_manager).export_to_file("tooshort", tmp_path)

    @pytest.mark.asyncio
    async def test_import_restores_identity(self, memory_manager, tmp_path):
        identity = Identity("Alice", generate_keypair())
        path = save_backup(identity, PASSWORD, tmp_path / "vault.data")

        restored = await BackupManager(memory_manager).import_from_file(PASSWORD, path)

        assert restored == identity
        assert memory_manager.has_vault() is True
        assert await IdentityStore(memory_manager).load() == identity

    @pytest.mark.asyncio
    async def test_import_wrong_password_audited(self, memory_manager, tmp_path):
        path = save_backup(Identity("Alice", generate_keypair()), PASSWORD, tmp_path / "vault.data")

        with pytest.raises(DecryptionError):
            await BackupManager(memory_manager).import_from_file("wrongpassword", path)

        assert memory_manager.has_vault() is False
        log = memory_manager.audit.log_file.read_text(encoding="utf-8")
        assert "backup.failed" in log
