# Identity Vault - Command Line Entry Point
#
# The entry point owns the vault manager lifecycle: it builds one manager
# from configuration, installs it as the shared instance, and hands it to
# the identity store and backup manager.
#
#   identity-vault status
#   identity-vault init "Alice"
#   identity-vault show
#   identity-vault export vault.data [--keep]
#   identity-vault import vault.data
#   identity-vault clear
#   identity-vault keygen [--reveal]

import argparse
import asyncio
import getpass
import logging
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .backup import MIN_PASSWORD_LENGTH, BackupManager
from .core import AuditLogger, EventSeverity, EventType, load_config
from .core.config import KEY_MODE_PASSPHRASE
from .crypto import build_user_link, generate_keypair, private_key_hex, public_key_hex, shortcode
from .errors import IdentityVaultError
from .vault import IdentityStore, VaultManager, create_vault_manager, set_vault_manager

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="identity-vault",
        description="Local cryptographic identity vault",
    )
    parser.add_argument("--data-dir", help="Data directory (env: IDENTITY_VAULT_DATA_DIR)")
    parser.add_argument("--audit-dir", help="Audit log directory (env: IDENTITY_VAULT_AUDIT_DIR)")
    parser.add_argument(
        "--key-mode",
        choices=["device", "passphrase"],
        help="At-rest key source (env: IDENTITY_VAULT_KEY_MODE, default: device)",
    )
    parser.add_argument("--vault-passphrase", help="Vault passphrase for passphrase key mode")
    parser.add_argument("--env-file", default=".env", help="Optional .env file (default: .env)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--version", action="version", version=f"identity-vault {__version__}")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Show whether a vault exists on this device")

    init = sub.add_parser("init", help="Create the vault identity if missing")
    init.add_argument("name", help="Display name for a new identity")

    sub.add_parser("show", help="Show the stored identity (public parts only)")

    export = sub.add_parser("export", help="Write the identity to a backup file")
    export.add_argument("path", help="Backup file or directory")
    export.add_argument("--password", help=f"Backup passphrase (min {MIN_PASSWORD_LENGTH} chars)")
    export.add_argument("--keep", action="store_true", help="Keep the local vault after export")

    restore = sub.add_parser("import", help="Restore the identity from a backup file")
    restore.add_argument("path", help="Backup file")
    restore.add_argument("--password", help="Backup passphrase")

    sub.add_parser("clear", help="Erase the local vault")

    keygen = sub.add_parser("keygen", help="Print a fresh keypair without storing it")
    keygen.add_argument("--reveal", action="store_true", help="Also print the private key")

    return parser


def _password(args: argparse.Namespace) -> str:
    if args.password:
        return args.password
    return getpass.getpass("Backup passphrase: ")


async def _run(args: argparse.Namespace, manager: VaultManager) -> int:
    store = IdentityStore(manager)
    config = args.config

    if args.command == "status":
        print(f"vault: {'present' if manager.has_vault() else 'none'}")
        return 0

    if args.command == "init":
        identity = await store.ensure_identity(args.name)
        print(f"name: {identity.user_name}")
        print(f"public key: {public_key_hex(identity.keypair)}")
        print(f"shortcode: {shortcode(identity.keypair.public_bytes)}")
        if config.chat_base_url:
            print(f"chat: {build_user_link(config.chat_base_url, identity.keypair)}")
        return 0

    if args.command == "show":
        if not manager.has_vault():
            print("no vault on this device", file=sys.stderr)
            return 1
        identity = await store.load()
        if identity is None:
            print("vault holds no identity", file=sys.stderr)
            return 1
        print(f"name: {identity.user_name}")
        print(f"public key: {public_key_hex(identity.keypair)}")
        print(f"shortcode: {shortcode(identity.keypair.public_bytes)}")
        return 0

    if args.command == "export":
        backups = BackupManager(manager, store)
        written = await backups.export_to_file(
            _password(args), args.path, clear_after=not args.keep,
        )
        print(f"backup written: {written}")
        return 0

    if args.command == "import":
        backups = BackupManager(manager, store)
        identity = await backups.import_from_file(_password(args), args.path)
        print(f"restored identity: {identity.user_name}")
        return 0

    if args.command == "clear":
        await manager.clear_vault()
        print("vault cleared")
        return 0

    if args.command == "keygen":
        keypair = generate_keypair()
        print(f"public key: {public_key_hex(keypair)}")
        print(f"shortcode: {shortcode(keypair.public_bytes)}")
        if args.reveal:
            print(f"private key: {private_key_hex(keypair)}")
        return 0

    return 2


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the identity-vault command."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    env_file = args.env_file if args.env_file and Path(args.env_file).exists() else None
    try:
        config = load_config(
            data_dir=args.data_dir,
            audit_dir=args.audit_dir,
            key_mode=args.key_mode,
            env_file=env_file,
        )
        passphrase = args.vault_passphrase
        if config.key_mode == KEY_MODE_PASSPHRASE and not passphrase:
            passphrase = getpass.getpass("Vault passphrase: ")
        audit = AuditLogger(config.audit_dir)
        manager = create_vault_manager(config, passphrase=passphrase, audit_logger=audit)
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    args.config = config
    set_vault_manager(manager)
    audit.log_event(
        event_type=EventType.SYSTEM_START,
        severity=EventSeverity.INFO,
        message="identity-vault command started",
        details={"version": __version__, "command": args.command},
    )

    try:
        return asyncio.run(_run(args, manager))
    except IdentityVaultError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    finally:
        set_vault_manager(None)


if __name__ == "__main__":
    sys.exit(main())
