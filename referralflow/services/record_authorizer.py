"""
Record Authorizer: may this principal touch this tenant-scoped record?

Decision order:
1. No principal                      -> deny
2. Platform admin                    -> allow
3. Record belongs to the root tenant -> deny (root tenant is admin-only)
4. Record's tenant_id is one of the principal's memberships -> allow
5. Otherwise                         -> deny

SECURITY REQUIREMENTS:
- This check runs server-side on EVERY authenticated read or write of a
  tenant-scoped record. Client-side checks are never trusted.
- A membership lookup failure DENIES. The authorizer never fails open.
- Every denial emits exactly ONE security.cross_tenant_denied audit event.
- Allowed reads of sensitive records (referrals carry patient data) emit
  data.accessed.
- Audit failures are logged and swallowed; they never change the decision.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from referralflow.auth.principal import Principal
from referralflow.config.platform import PlatformConfig
from referralflow.platform.audit import AuditSink, AuditEvent, AuditAction, AuditOutcome
from referralflow.platform.errors import AuthenticationError, TenantIsolationError
from referralflow.platform.tenant_context import ROOT_TENANT_ID
from referralflow.services.membership_index import MembershipIndex

logger = logging.getLogger(__name__)


class AccessMode(str, Enum):
    """Kind of access being requested."""
    READ = "read"
    WRITE = "write"


@dataclass(frozen=True)
class ResourceRef:
    """Minimal view of a tenant-scoped record for authorization."""
    tenant_id: str
    id: Optional[str] = None
    resource_type: str = "record"
    sensitive: bool = False


# Recorded as the tenant of a denial when the requested record does not exist
UNRESOLVED_TENANT_ID = "unresolved"

# Tables whose rows carry patient data
SENSITIVE_TABLES = frozenset({"referrals"})


def resource_ref(record: Any) -> ResourceRef:
    """Build a ResourceRef from an ORM record or pass a ResourceRef through."""
    if isinstance(record, ResourceRef):
        return record
    table = getattr(record, "__tablename__", None) or type(record).__name__.lower()
    return ResourceRef(
        tenant_id=record.tenant_id,
        id=getattr(record, "id", None),
        resource_type=table,
        sensitive=table in SENSITIVE_TABLES,
    )


class RecordAuthorizer:
    """Per-record authorization with audit."""

    def __init__(
        self,
        membership_index: MembershipIndex,
        config: PlatformConfig,
        audit_sink: AuditSink,
    ):
        self.membership_index = membership_index
        self.config = config
        self.audit_sink = audit_sink

    def authorize(
        self,
        principal: Optional[Principal],
        record: Any,
        mode: AccessMode = AccessMode.READ,
    ) -> bool:
        """
        Decide whether the principal may access the record.

        Args:
            principal: Session principal, or None when unauthenticated
            record: ORM record with tenant_id/id, or a ResourceRef
            mode: READ or WRITE

        Returns:
            True if allowed. A denial has already been audited.
        """
        ref = resource_ref(record)

        if principal is None:
            logger.info(
                "Access denied: no principal",
                extra={"tenant_id": ref.tenant_id, "resource_type": ref.resource_type},
            )
            return False

        allowed = self._decide(principal, ref)

        if not allowed:
            self._audit_denied(principal, ref, mode)
            return False

        if mode == AccessMode.READ and ref.sensitive:
            self._audit(AuditEvent(
                action=AuditAction.DATA_ACCESSED,
                tenant_id=ref.tenant_id,
                actor_id=principal.subject_id,
                resource_id=ref.id,
                detail={"resource_type": ref.resource_type},
            ))
        return True

    def require(
        self,
        principal: Optional[Principal],
        record: Any,
        mode: AccessMode = AccessMode.READ,
    ) -> None:
        """
        Like authorize(), but raise instead of returning False.

        Raises:
            AuthenticationError: If there is no principal
            TenantIsolationError: If the principal may not access the record
        """
        if principal is None:
            raise AuthenticationError()
        if not self.authorize(principal, record, mode):
            ref = resource_ref(record)
            raise TenantIsolationError(
                f"{mode.value} denied on {ref.resource_type} in tenant {ref.tenant_id}"
            )

    def deny_missing(
        self,
        principal: Principal,
        resource_type: str,
        resource_id: str,
        mode: AccessMode = AccessMode.READ,
        tenant_id: Optional[str] = None,
    ) -> TenantIsolationError:
        """
        Audit a request for a record that does not exist and return the
        error to raise.

        Non-admins get the same denial as for a foreign record, so missing
        ids cannot be told apart from other agencies' ids.
        """
        ref = ResourceRef(
            tenant_id=tenant_id or UNRESOLVED_TENANT_ID,
            id=resource_id,
            resource_type=resource_type,
        )
        self._audit_denied(principal, ref, mode)
        return TenantIsolationError(f"{mode.value} denied on missing {resource_type}")

    def _decide(self, principal: Principal, ref: ResourceRef) -> bool:
        if self.config.is_platform_admin(principal.email):
            return True

        if not ref.tenant_id or ref.tenant_id == ROOT_TENANT_ID:
            return False

        try:
            return self.membership_index.is_member(principal.email, ref.tenant_id)
        except Exception:
            logger.error(
                "Membership lookup failed during authorization, denying",
                extra={"tenant_id": ref.tenant_id, "subject_id": principal.subject_id},
                exc_info=True,
            )
            return False

    def _audit_denied(self, principal: Principal, ref: ResourceRef, mode: AccessMode) -> None:
        logger.warning(
            "Cross-tenant access denied",
            extra={
                "subject_id": principal.subject_id,
                "attempted_tenant_id": ref.tenant_id,
                "resource_type": ref.resource_type,
                "action": mode.value,
            },
        )
        self._audit(AuditEvent(
            action=AuditAction.SECURITY_CROSS_TENANT_DENIED,
            tenant_id=ref.tenant_id,
            actor_id=principal.subject_id,
            resource_id=ref.id,
            outcome=AuditOutcome.DENIED,
            detail={
                "attempted_tenant_id": ref.tenant_id,
                "action": mode.value,
                "resource_type": ref.resource_type,
            },
        ))

    def _audit(self, event: AuditEvent) -> None:
        try:
            self.audit_sink.record(event)
        except Exception:
            logger.warning(
                "Failed to record audit event",
                extra={"action": event.action.value},
                exc_info=True,
            )
