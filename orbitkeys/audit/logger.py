"""Audit logging for authentication decisions and key management.

Writes one JSON object per line with:
- Authentication successes and failures (with failure code)
- Key and role lifecycle events
- Size-based log rotation
- Token redaction (raw keys are never written)
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from .redaction import Redactor

logger = logging.getLogger("orbitkeys.audit")


class AuditEventType(str, Enum):
    """Types of audit events."""

    # Authentication events
    AUTH_SUCCESS = "auth_success"
    AUTH_FAILURE = "auth_failure"

    # Key lifecycle events
    KEY_CREATED = "key_created"
    KEY_DELETED = "key_deleted"
    KEY_EXPIRATION_CHANGED = "key_expiration_changed"

    # Role events
    ROLE_CREATED = "role_created"
    ROLE_UPDATED = "role_updated"
    ROLE_DELETED = "role_deleted"

    # System events
    SYSTEM_START = "system_start"
    SYSTEM_SHUTDOWN = "system_shutdown"


class AuditEntry(BaseModel):
    """A single audit log entry.

    Attributes:
        timestamp: ISO 8601 timestamp
        event_type: Type of audit event
        key_id: ID of the API key involved
        role_id: ID of the role involved
        required_permission: Permission the request required
        allowed: Whether the request was allowed
        code: Failure code for denied requests
        reason: Human-readable explanation
        source_ip: Client address
        metadata: Additional context
    """

    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    event_type: AuditEventType
    key_id: int | None = None
    role_id: int | None = None
    required_permission: str | None = None
    allowed: bool | None = None
    code: str | None = None
    reason: str | None = None
    source_ip: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class AuditLogConfig(BaseModel):
    """Configuration for the audit logger.

    Attributes:
        enabled: Whether audit logging is enabled
        log_path: Path to the audit log file
        max_file_size_mb: Maximum size before rotation (MB)
        max_file_size_bytes: Overrides max_file_size_mb when set
        max_files: Maximum number of rotated files to keep
        redact_sensitive: Enable token redaction
    """

    enabled: bool = True
    log_path: Path = Field(default=Path("./logs/audit.jsonl"))
    max_file_size_mb: int = 100
    max_file_size_bytes: int | None = None
    max_files: int = 10
    redact_sensitive: bool = True


class AuditLogger:
    """Thread-safe JSONL audit logger with size-based rotation."""

    def __init__(self, config: AuditLogConfig | None = None):
        """Initialize the audit logger.

        Args:
            config: Audit logging configuration
        """
        self.config = config or AuditLogConfig()
        self._redactor = Redactor() if self.config.redact_sensitive else None
        self._file_handle: Any | None = None
        self._lock = threading.Lock()
        self._current_file_size = 0

        if self.config.enabled:
            self._open_log_file()

    def _open_log_file(self) -> None:
        """Open the log file for appending, creating directories if needed."""
        try:
            self.config.log_path.parent.mkdir(parents=True, exist_ok=True)
            self._file_handle = open(self.config.log_path, "a", encoding="utf-8")
            self._current_file_size = self.config.log_path.stat().st_size
            logger.info(f"Audit logging initialized: {self.config.log_path}")
        except OSError as e:
            logger.error(f"Failed to initialize audit log: {e}")
            self.config.enabled = False

    def _max_size_bytes(self) -> int:
        if self.config.max_file_size_bytes is not None:
            return self.config.max_file_size_bytes
        return self.config.max_file_size_mb * 1024 * 1024

    def _rotate_logs(self) -> None:
        """Rotate the current log file (must be called with lock held)."""
        if self._file_handle:
            self._file_handle.close()
            self._file_handle = None

        log_path = self.config.log_path
        timestamp = datetime.now(UTC).strftime("%Y%m%d_%H%M%S_%f")
        rotated_path = log_path.parent / f"{log_path.stem}_{timestamp}{log_path.suffix}"

        try:
            log_path.rename(rotated_path)
            logger.info(f"Rotated audit log to: {rotated_path}")
        except OSError as e:
            logger.error(f"Failed to rotate audit log: {e}")

        rotated = sorted(
            log_path.parent.glob(f"{log_path.stem}_*{log_path.suffix}"),
            key=lambda p: p.name,
            reverse=True,
        )
        for old_file in rotated[self.config.max_files :]:
            try:
                old_file.unlink()
            except OSError as e:
                logger.warning(f"Failed to remove old audit log {old_file}: {e}")

        self._open_log_file()

    def write(self, entry: AuditEntry) -> None:
        """Write an audit entry to the log file.

        Write failures are logged and never raised to the caller.
        """
        if not self.config.enabled:
            return

        entry_dict = entry.model_dump(mode="json", exclude_none=True)
        if self._redactor:
            entry_dict = self._redactor.redact_value(entry_dict)
        json_line = json.dumps(entry_dict, default=str) + "\n"

        with self._lock:
            try:
                if self._file_handle is None:
                    self._open_log_file()
                if self._file_handle is None:
                    return

                if self._current_file_size >= self._max_size_bytes():
                    self._rotate_logs()

                self._file_handle.write(json_line)
                self._file_handle.flush()
                self._current_file_size += len(json_line.encode("utf-8"))
            except OSError as e:
                logger.error(f"Failed to write audit entry: {e}")

    def close(self) -> None:
        """Close the audit log file."""
        with self._lock:
            if self._file_handle:
                self._file_handle.close()
                self._file_handle = None

    # --- High-level logging methods ---

    def log_auth_event(
        self,
        allowed: bool,
        key_id: int | None = None,
        role_id: int | None = None,
        required_permission: str | None = None,
        code: str | None = None,
        reason: str | None = None,
        source_ip: str | None = None,
        **metadata: Any,
    ) -> None:
        """Log an authentication decision.

        Args:
            allowed: Whether authentication succeeded
            key_id: Authenticated key ID (known only after lookup)
            role_id: Role of the authenticated key
            required_permission: Permission the request required
            code: Failure code for denied requests
            reason: Failure message
            source_ip: Client address
            **metadata: Additional metadata
        """
        self.write(
            AuditEntry(
                event_type=AuditEventType.AUTH_SUCCESS if allowed else AuditEventType.AUTH_FAILURE,
                key_id=key_id,
                role_id=role_id,
                required_permission=required_permission,
                allowed=allowed,
                code=code,
                reason=reason,
                source_ip=source_ip,
                metadata=metadata,
            )
        )

    def log_key_event(
        self,
        event_type: AuditEventType,
        key_id: int | None,
        role_id: int | None = None,
        **metadata: Any,
    ) -> None:
        """Log an API key lifecycle event."""
        self.write(
            AuditEntry(event_type=event_type, key_id=key_id, role_id=role_id, metadata=metadata)
        )

    def log_role_event(self, event_type: AuditEventType, role_id: int | None, **metadata: Any) -> None:
        """Log a role lifecycle event."""
        self.write(AuditEntry(event_type=event_type, role_id=role_id, metadata=metadata))

    def log_system_event(self, event_type: AuditEventType, details: str | None = None, **metadata: Any) -> None:
        """Log a system event."""
        self.write(AuditEntry(event_type=event_type, reason=details, metadata=metadata))
