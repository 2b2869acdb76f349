"""
Session establishment and resolution.

A session is issued ONLY when both hold:
1. the credential verifies with the identity provider, and
2. the verified email has at least one tenant membership, OR is the
   configured platform admin.

Otherwise no artifact is created and the caller gets an "Unauthorized"
result. There is no refresh: once SESSION_TTL elapses the user signs in
again.

Session lifecycle:
    NoSession --create_session--> Active --(expiry | delete_session | revocation)--> NoSession
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from referralflow.auth.identity_provider import (
    IdentityProvider,
    IdentityVerificationError,
)
from referralflow.auth.principal import Principal
from referralflow.config.platform import PlatformConfig, SESSION_TTL
from referralflow.platform.audit import AuditSink, AuditEvent, AuditAction, AuditOutcome, PIIRedactor
from referralflow.platform.background import BackgroundDispatcher
from referralflow.platform.tenant_context import ROOT_TENANT_ID
from referralflow.repositories.tenant_repository import TenantRepository
from referralflow.services.membership_index import MembershipIndex
from referralflow.services.tenant_directory import TenantRecord

logger = logging.getLogger(__name__)

UNAUTHORIZED = "Unauthorized"
NO_MEMBERSHIP = "Unauthorized: no active tenant membership"


@dataclass
class SessionResult:
    """Outcome of a login attempt."""
    success: bool
    token: Optional[str] = None
    expires_at: Optional[datetime] = None
    principal: Optional[Principal] = None
    tenants: List[TenantRecord] = field(default_factory=list)
    error: Optional[str] = None


class SessionService:
    """Creates, resolves and ends principal sessions."""

    def __init__(
        self,
        identity_provider: IdentityProvider,
        membership_index: MembershipIndex,
        config: PlatformConfig,
        audit_sink: AuditSink,
        dispatcher: Optional[BackgroundDispatcher] = None,
    ):
        self.identity_provider = identity_provider
        self.membership_index = membership_index
        self.config = config
        self.audit_sink = audit_sink
        self.dispatcher = dispatcher

    def create_session(
        self,
        credential: str,
        scoped_tenant_id: str = ROOT_TENANT_ID,
    ) -> SessionResult:
        """
        Verify a credential and issue a session artifact.

        Args:
            credential: Identity provider ID token
            scoped_tenant_id: Host-scoped tenant (recorded in audit only)

        Returns:
            SessionResult with success=False and an error message when the
            credential is invalid or the principal has no membership.
        """
        try:
            identity = self.identity_provider.verify(credential)
        except IdentityVerificationError as e:
            logger.info("Login rejected: credential verification failed", extra={"error_code": e.error_code})
            self._audit_login_failed(scoped_tenant_id, None, e.error_code)
            return SessionResult(success=False, error=UNAUTHORIZED)

        memberships = self.membership_index.memberships_for(identity.email)
        is_admin = self.config.is_platform_admin(identity.email)

        if not memberships and not is_admin:
            logger.info(
                "Login rejected: no tenant membership",
                extra={"email": PIIRedactor.redact_email(identity.email)},
            )
            self._audit_login_failed(scoped_tenant_id, identity.subject_id, "no_membership")
            return SessionResult(success=False, error=NO_MEMBERSHIP)

        try:
            artifact = self.identity_provider.create_session_artifact(credential, SESSION_TTL)
        except IdentityVerificationError as e:
            logger.warning("Session artifact creation failed", extra={"error_code": e.error_code})
            self._audit_login_failed(scoped_tenant_id, identity.subject_id, e.error_code)
            return SessionResult(success=False, error=UNAUTHORIZED)

        principal = Principal(
            email=identity.email,
            subject_id=identity.subject_id,
            display_name=identity.display_name,
            session_id=artifact.session_id,
        )

        self._record_activity([t.id for t in memberships])
        self._audit(AuditEvent(
            action=AuditAction.AUTH_LOGIN,
            tenant_id=scoped_tenant_id,
            actor_id=principal.subject_id,
            detail={
                "email": principal.email,
                "tenant_count": len(memberships),
                "platform_admin": is_admin,
            },
        ))

        logger.info(
            "Session created",
            extra={
                "subject_id": principal.subject_id,
                "tenant_count": len(memberships),
                "platform_admin": is_admin,
            },
        )
        return SessionResult(
            success=True,
            token=artifact.token,
            expires_at=artifact.expires_at,
            principal=principal,
            tenants=memberships,
        )

    def verify_session(self, artifact: Optional[str]) -> Optional[Principal]:
        """
        Resolve a session artifact to its principal.

        Never raises: returns None for missing, malformed, expired or revoked
        artifacts.
        """
        if not artifact:
            return None
        try:
            return self.identity_provider.verify_session_artifact(artifact, check_revoked=True)
        except IdentityVerificationError as e:
            logger.debug("Session rejected", extra={"error_code": e.error_code})
            return None
        except Exception:
            logger.warning("Unexpected session verification failure", exc_info=True)
            return None

    def delete_session(self, artifact: Optional[str], scoped_tenant_id: str = ROOT_TENANT_ID) -> bool:
        """
        End a session by revoking its session id.

        Returns:
            True if a session was revoked, False if the artifact was unusable.
        """
        if not artifact:
            return False
        try:
            principal = self.identity_provider.verify_session_artifact(artifact, check_revoked=False)
        except IdentityVerificationError:
            return False

        self.identity_provider.revoke_session(principal.session_id)
        self._audit(AuditEvent(
            action=AuditAction.AUTH_LOGOUT,
            tenant_id=scoped_tenant_id,
            actor_id=principal.subject_id,
        ))
        return True

    def _record_activity(self, tenant_ids: List[str]) -> None:
        """Queue last_active_at updates. Failures never reach the caller."""
        if not tenant_ids or self.dispatcher is None:
            return
        now = datetime.now(timezone.utc)
        try:
            self.dispatcher.submit(
                "touch_last_active",
                lambda db: TenantRepository(db).touch_last_active(tenant_ids, now),
            )
        except Exception:
            logger.warning("Failed to queue tenant activity update", exc_info=True)

    def _audit_login_failed(self, tenant_id: str, actor_id: Optional[str], reason: str) -> None:
        self._audit(AuditEvent(
            action=AuditAction.AUTH_LOGIN_FAILED,
            tenant_id=tenant_id,
            actor_id=actor_id,
            outcome=AuditOutcome.FAILURE,
            detail={"reason": reason},
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
