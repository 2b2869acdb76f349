"""
Audit logging for the referral platform.

CRITICAL SECURITY REQUIREMENTS:
- Audit logs MUST be append-only (no UPDATE/DELETE)
- Every cross-tenant denial MUST write exactly one audit event
- PII fields MUST be redacted before persistence
- Failed logging attempts MUST fall back to secondary logger
- Audit failures MUST NEVER fail the request that produced the event

Event shape:
    {action, actor_id, tenant_id, resource_id?, detail?, timestamp}

Sinks:
- DatabaseAuditSink: appends to audit_logs synchronously on its own session
- BackgroundAuditSink: hands the write to the BackgroundDispatcher
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, FrozenSet, Optional, Protocol

from sqlalchemy import Column, String, DateTime, Index, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Session

from referralflow.db_base import Base
from referralflow.platform.background import BackgroundDispatcher

# Use JSON with PostgreSQL variant for JSONB - allows SQLite in tests
JSONType = JSON().with_variant(JSONB(), "postgresql")

logger = logging.getLogger(__name__)
fallback_logger = logging.getLogger("audit.fallback")


class AuditAction(str, Enum):
    """Enumeration of all auditable actions."""
    # Auth events
    AUTH_LOGIN = "auth.login"
    AUTH_LOGOUT = "auth.logout"
    AUTH_LOGIN_FAILED = "auth.login_failed"

    # Data access events
    DATA_ACCESSED = "data.accessed"
    DATA_UPDATED = "data.updated"

    # Security events
    SECURITY_CROSS_TENANT_DENIED = "security.cross_tenant_denied"

    # Settings events
    SETTINGS_UPDATED = "settings.updated"

    # Identity / provisioning events
    IDENTITY_TENANT_CREATED = "identity.tenant_created"
    IDENTITY_TENANT_SLUG_CHANGED = "identity.tenant_slug_changed"

    # Public intake
    REFERRAL_SUBMITTED = "referral.submitted"


class AuditOutcome(str, Enum):
    """Outcome of the audited action."""
    SUCCESS = "success"
    FAILURE = "failure"
    DENIED = "denied"


class PIIRedactor:
    """
    Redacts PII fields from audit detail before persistence.

    Redacted fields are replaced with "[REDACTED]" to maintain structure
    while removing sensitive data. Emails keep their domain.
    """

    REDACTED_FIELDS: FrozenSet[str] = frozenset({
        "email",
        "owner_email",
        "confirmation_email",
        "phone",
        "phone_number",
        "token",
        "id_token",
        "session_token",
        "password",
        "secret",
        "patient_name",
        "date_of_birth",
        "ssn",
        "medicaid_id",
        "medicare_id",
        "street_address",
    })

    _EMAIL_FIELDS: FrozenSet[str] = frozenset({"email", "owner_email", "confirmation_email"})

    REDACTION_MARKER = "[REDACTED]"

    @classmethod
    def redact(cls, data: dict[str, Any]) -> dict[str, Any]:
        """
        Recursively redact PII from a dictionary.

        Args:
            data: Dictionary potentially containing PII

        Returns:
            New dictionary with PII fields redacted
        """
        if not isinstance(data, dict):
            return data
        return cls._redact_dict(data)

    @classmethod
    def redact_email(cls, value: Optional[str]) -> str:
        """Partially redact an email to ***@domain."""
        if isinstance(value, str) and "@" in value:
            return f"***@{value.rsplit('@', 1)[1]}"
        return cls.REDACTION_MARKER

    @classmethod
    def _redact_dict(cls, d: dict[str, Any]) -> dict[str, Any]:
        result = {}
        for key, value in d.items():
            lower_key = key.lower()
            if lower_key in cls.REDACTED_FIELDS:
                result[key] = cls._redact_value(lower_key, value)
            elif isinstance(value, dict):
                result[key] = cls._redact_dict(value)
            elif isinstance(value, list):
                result[key] = [
                    cls._redact_dict(item) if isinstance(item, dict) else item
                    for item in value
                ]
            else:
                result[key] = value
        return result

    @classmethod
    def _redact_value(cls, key: str, value: Any) -> str:
        if value is None:
            return cls.REDACTION_MARKER
        if key in cls._EMAIL_FIELDS:
            return cls.redact_email(value)
        if key in ("phone", "phone_number"):
            str_val = str(value)
            if len(str_val) >= 4:
                return f"***{str_val[-4:]}"
        return cls.REDACTION_MARKER


class AuditLog(Base):
    """
    Audit log database model.

    CRITICAL: This table is append-only.
    """
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    tenant_id = Column(String(255), nullable=False, index=True)
    actor_id = Column(String(255), nullable=True, index=True)  # NULL for anonymous/system
    action = Column(String(100), nullable=False, index=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    resource_id = Column(String(255), nullable=True, index=True)
    detail = Column(JSONType, nullable=False, default=dict)
    outcome = Column(String(20), nullable=False, default="success")
    correlation_id = Column(String(36), nullable=True)

    __table_args__ = (
        Index("ix_audit_logs_tenant_timestamp", "tenant_id", "timestamp"),
        Index("ix_audit_logs_tenant_action", "tenant_id", "action"),
    )


@dataclass
class AuditEvent:
    """
    Audit event data structure.

    PII in detail is redacted when the event is serialized for storage.
    """
    action: AuditAction
    tenant_id: str
    actor_id: Optional[str] = None
    resource_id: Optional[str] = None
    detail: dict[str, Any] = field(default_factory=dict)
    outcome: AuditOutcome = AuditOutcome.SUCCESS
    correlation_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for database insertion with PII redaction."""
        return {
            "action": self.action.value if isinstance(self.action, AuditAction) else self.action,
            "tenant_id": self.tenant_id,
            "actor_id": self.actor_id,
            "resource_id": self.resource_id,
            "detail": PIIRedactor.redact(self.detail),
            "outcome": self.outcome.value if isinstance(self.outcome, AuditOutcome) else self.outcome,
            "correlation_id": self.correlation_id,
            "timestamp": self.timestamp,
        }


def write_audit_log_sync(db: Session, event: AuditEvent) -> Optional[AuditLog]:
    """
    Write an audit event to the database.

    On failure, writes to the fallback logger and returns None (never
    crashes request flow).

    Args:
        db: SQLAlchemy Session
        event: The audit event to write

    Returns:
        The created AuditLog record, or None if fallback was used
    """
    audit_id = str(uuid.uuid4())
    try:
        audit_log = AuditLog(id=audit_id, **event.to_dict())
        db.add(audit_log)
        db.commit()

        logger.info(
            "Audit event recorded",
            extra={
                "audit_id": audit_id,
                "tenant_id": event.tenant_id,
                "actor_id": event.actor_id,
                "action": audit_log.action,
                "outcome": audit_log.outcome,
            },
        )
        return audit_log

    except Exception as e:
        try:
            db.rollback()
        except Exception:
            logger.debug("Rollback after audit failure also failed", exc_info=True)

        write_fallback_log(event, audit_id, str(e))
        return None


def write_fallback_log(event: AuditEvent, audit_id: str, error_reason: str) -> None:
    """Write audit event to fallback logger when primary storage fails."""
    entry = event.to_dict()
    entry["timestamp"] = event.timestamp.isoformat()
    entry["event_id"] = audit_id
    entry["fallback_reason"] = error_reason
    fallback_logger.error(
        "Audit log fallback",
        extra={"audit_entry": json.dumps(entry, default=str)},
    )


class AuditSink(Protocol):
    """Destination for audit events. Implementations must never raise."""

    def record(self, event: AuditEvent) -> None:
        ...


class DatabaseAuditSink:
    """Append events to audit_logs on a dedicated session per write."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def record(self, event: AuditEvent) -> None:
        try:
            session = self._session_factory()
        except Exception as e:
            write_fallback_log(event, str(uuid.uuid4()), str(e))
            return
        try:
            write_audit_log_sync(session, event)
        finally:
            session.close()


class BackgroundAuditSink:
    """Persist events off the request path via the BackgroundDispatcher."""

    def __init__(self, dispatcher: BackgroundDispatcher):
        self._dispatcher = dispatcher

    def record(self, event: AuditEvent) -> None:
        queued = self._dispatcher.submit(
            f"audit:{event.action}",
            lambda db: write_audit_log_sync(db, event),
        )
        if not queued:
            write_fallback_log(event, str(uuid.uuid4()), "background queue unavailable")
