"""OrbitKeys audit logging.

Example usage:
    from orbitkeys.audit import AuditLogConfig, AuditLogger

    audit = AuditLogger(AuditLogConfig(log_path=Path("./logs/audit.jsonl")))
    audit.log_auth_event(allowed=False, code="AUTHENTICATION_FAILED", source_ip="10.0.0.7")
"""

from __future__ import annotations

from .logger import AuditEntry, AuditEventType, AuditLogConfig, AuditLogger
from .redaction import RedactionConfig, Redactor, redact_string

__all__ = [
    "AuditEntry",
    "AuditEventType",
    "AuditLogConfig",
    "AuditLogger",
    "RedactionConfig",
    "Redactor",
    "redact_string",
]
