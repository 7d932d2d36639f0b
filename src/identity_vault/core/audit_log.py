# Identity Vault - Audit Logging
#
# Append-only audit log for vault security events.
# Every lifecycle transition (create, connect, clear, cancel) and every
# backup export/import is logged with a timestamp and event id.
# Key material, passphrases and vault payloads are never logged.

import logging
import os
import socket
import sys
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog

AUDIT_LOGGER_NAME = "identity_vault.audit"


class EventType(str, Enum):
    """Types of security events that can be logged."""
    # Vault lifecycle
    VAULT_CREATED = "vault.created"
    VAULT_CONNECTED = "vault.connected"
    VAULT_CLEARED = "vault.cleared"
    VAULT_CANCELLED = "vault.cancelled"
    VAULT_ERROR = "vault.error"

    # Vault payload access
    VAULT_DATA_READ = "vault.data.read"
    VAULT_DATA_WRITTEN = "vault.data.written"

    # Identity
    IDENTITY_CREATED = "identity.created"

    # Portable backups
    BACKUP_EXPORTED = "backup.exported"
    BACKUP_IMPORTED = "backup.imported"
    BACKUP_FAILED = "backup.failed"

    # System
    SYSTEM_START = "system.start"


class EventSeverity(str, Enum):
    """
    Severity levels for security events.

    - INFO: normal activity, logged only
    - INVESTIGATE: unusual but expected (e.g. user cancelled a ceremony)
    - ALERT: an operation failed
    - CRITICAL: vault state may be inconsistent
    """
    INFO = "info"
    INVESTIGATE = "investigate"
    ALERT = "alert"
    CRITICAL = "critical"


class AuditLogger:
    """
    Append-only audit logger for vault security events.

    Features:
    - Structured JSON logging (structlog)
    - Automatic timestamp and event ID
    - Daily log file under ``log_dir``
    """

    def __init__(self, log_dir: Optional[Path] = None):
        """
        Initialize audit logger.

        Args:
            log_dir: Directory for audit logs (default: ./audit_logs)
        """
        self.log_dir = Path(log_dir) if log_dir else Path("./audit_logs")
        self.log_dir.mkdir(parents=True, exist_ok=True)

        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer()
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=False,
        )

        self._setup_file_handler()

        self.logger = structlog.get_logger(AUDIT_LOGGER_NAME)

    def _setup_file_handler(self):
        """Attach the daily file handler, replacing one from a previous instance."""
        today = datetime.now().strftime("%Y-%m-%d")
        self.log_file = self.log_dir / f"audit_{today}.log"

        audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)
        for handler in list(audit_logger.handlers):
            if getattr(handler, "_identity_vault_audit", False):
                audit_logger.removeHandler(handler)
                handler.close()

        file_handler = logging.FileHandler(self.log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter("%(message)s"))  # structlog renders JSON
        file_handler._identity_vault_audit = True

        audit_logger.addHandler(file_handler)
        audit_logger.setLevel(logging.INFO)

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Log a security event.

        Args:
            event_type: Type of event
            severity: Severity level
            message: Human-readable description
            details: Additional details (never key material)

        Returns:
            str: Event ID (UUID) for reference
        """
        event_id = str(uuid4())

        self.logger.info(
            "security_event",
            event_id=event_id,
            event_type=event_type.value,
            severity=severity.value,
            message=message,
            timestamp=datetime.utcnow().isoformat(),
            details=details or {},
            user_context=self._get_default_user_context(),
        )

        return event_id

    def log_vault_event(
        self,
        event_type: EventType,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Log an INFO-level vault event with a ``Vault:`` prefix."""
        return self.log_event(
            event_type=event_type,
            severity=EventSeverity.INFO,
            message=f"Vault: {message}",
            details=details,
        )

    def _get_default_user_context(self) -> Dict[str, Any]:
        """OS user, hostname and platform for forensic context."""
        return {
            "os_user": os.getenv("USERNAME") or os.getenv("USER"),
            "hostname": socket.gethostname(),
            "platform": sys.platform,
        }


# Global logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get global audit logger (singleton pattern)."""
    global _audit_logger
    if _audit_logger is None:
        from .config import load_config
        _audit_logger = AuditLogger(load_config().audit_dir)
    return _audit_logger


def log_security_event(
    event_type: EventType,
    severity: EventSeverity,
    message: str,
    **kwargs
) -> str:
    """
    Convenience function for logging security events.

    Usage:
        log_security_event(
            EventType.VAULT_CLEARED,
            EventSeverity.INFO,
            "Vault cleared on logout",
        )
    """
    return get_audit_logger().log_event(event_type, severity, message, **kwargs)
