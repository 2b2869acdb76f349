"""
Referral access: authorized staff operations and the two public paths.

Authenticated paths (read, status update, list) always pass RecordAuthorizer
against the referral's tenant_id.

Public paths bypass the authorizer but are deliberately narrow:
- submit_public_referral: creates ONE record, owned by the host-scoped
  tenant. The tenant id is never taken from the submitted form.
- lookup_public_status: reads ONE record by its exact high-entropy id, only
  within the host-scoped tenant, and exposes only id, status and timestamps.

Both public paths refuse agencies that do not exist or whose subscription
is SUSPENDED or CANCELLED, with the same response either way.
"""

import logging
from datetime import datetime, timezone
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from referralflow.auth.principal import Principal
from referralflow.constants.email_domains import normalize_email
from referralflow.models.referral import Referral, ReferralStatus
from referralflow.platform.audit import AuditSink, AuditEvent, AuditAction
from referralflow.platform.errors import (
    AuthenticationError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from referralflow.services.record_authorizer import RecordAuthorizer, AccessMode, ResourceRef
from referralflow.services.tenant_directory import TenantDirectory, TenantRecord

logger = logging.getLogger(__name__)

AGENCY_UNAVAILABLE = "This agency is not accepting referrals"


def public_status_view(referral: Referral) -> dict[str, Any]:
    """The only referral fields the public status page may see."""
    return {
        "id": referral.id,
        "status": referral.status.value,
        "created_at": referral.created_at.isoformat() if referral.created_at else None,
        "updated_at": referral.updated_at.isoformat() if referral.updated_at else None,
        "status_history": [
            {"status": entry.get("status"), "changed_at": entry.get("changed_at")}
            for entry in (referral.status_history or [])
        ],
    }


def staff_view(referral: Referral) -> dict[str, Any]:
    return {
        "id": referral.id,
        "tenant_id": referral.tenant_id,
        "status": referral.status.value,
        "referrer_name": referral.referrer_name,
        "confirmation_email": referral.confirmation_email,
        "patient_name": referral.patient_name,
        "form_data": referral.form_data or {},
        "status_history": referral.status_history or [],
        "is_archived": referral.is_archived,
        "created_at": referral.created_at.isoformat() if referral.created_at else None,
        "updated_at": referral.updated_at.isoformat() if referral.updated_at else None,
    }


class ReferralAccessService:
    """Authorized and public access to referral records."""

    def __init__(
        self,
        session: Session,
        directory: TenantDirectory,
        authorizer: RecordAuthorizer,
        audit_sink: AuditSink,
    ):
        self.session = session
        self.directory = directory
        self.authorizer = authorizer
        self.audit_sink = audit_sink

    # ------------------------------------------------------------------
    # Authenticated staff paths
    # ------------------------------------------------------------------

    def get_referral(self, principal: Optional[Principal], referral_id: str) -> Referral:
        """
        Read one referral.

        Raises:
            AuthenticationError: No principal
            TenantIsolationError: Not a member of the referral's agency, or
                the referral does not exist (non-admins cannot tell these apart)
            NotFoundError: Referral does not exist (platform admin only)
        """
        referral = self._load_for(principal, referral_id, AccessMode.READ)
        self.authorizer.require(principal, referral, AccessMode.READ)
        return referral

    def update_status(
        self,
        principal: Optional[Principal],
        referral_id: str,
        status: str,
        note: Optional[str] = None,
    ) -> Referral:
        """Move a referral to a new status and append to its history."""
        try:
            new_status = ReferralStatus(status)
        except ValueError:
            raise ValidationError("Unknown referral status", details={"status": status})

        referral = self._load_for(principal, referral_id, AccessMode.WRITE)
        self.authorizer.require(principal, referral, AccessMode.WRITE)

        entry = {
            "status": new_status.value,
            "changed_at": datetime.now(timezone.utc).isoformat(),
        }
        if note:
            entry["notes"] = note
        # Reassign so the JSON column is flagged dirty
        referral.status_history = list(referral.status_history or []) + [entry]
        referral.status = new_status
        self.session.flush()

        self.audit_sink.record(AuditEvent(
            action=AuditAction.DATA_UPDATED,
            tenant_id=referral.tenant_id,
            actor_id=principal.subject_id,
            resource_id=referral.id,
            detail={"resource_type": "referrals", "status": new_status.value},
        ))
        return referral

    def list_referrals(
        self,
        principal: Optional[Principal],
        id_or_slug: str,
        include_archived: bool = False,
    ) -> List[Referral]:
        """List an agency's referrals, newest first."""
        tenant = self.directory.resolve_tenant(id_or_slug)
        self.authorizer.require(
            principal,
            ResourceRef(tenant_id=tenant.id, resource_type="referrals", sensitive=True),
            AccessMode.READ,
        )
        query = self.session.query(Referral).filter(Referral.tenant_id == tenant.id)
        if not include_archived:
            query = query.filter(Referral.is_archived.is_(False))
        return query.order_by(Referral.created_at.desc()).all()

    # ------------------------------------------------------------------
    # Public paths
    # ------------------------------------------------------------------

    def submit_public_referral(self, scoped_tenant_id: str, payload: dict[str, Any]) -> Referral:
        """
        Create a referral for the host-scoped agency.

        Args:
            scoped_tenant_id: Tenant id derived from the request host
            payload: Intake form fields (referrer_name, patient_name required)

        Raises:
            PermissionDeniedError: Agency missing, suspended or cancelled
            ValidationError: Required fields missing
        """
        tenant = self._available_tenant(scoped_tenant_id)

        referrer_name = (payload.get("referrer_name") or "").strip()
        patient_name = (payload.get("patient_name") or "").strip()
        if not referrer_name or not patient_name:
            raise ValidationError("referrer_name and patient_name are required")

        form_data = {
            k: v for k, v in payload.items()
            if k not in ("referrer_name", "patient_name", "confirmation_email", "tenant_id")
        }
        now = datetime.now(timezone.utc)
        referral = Referral(
            tenant_id=tenant.id,
            status=ReferralStatus.RECEIVED,
            referrer_name=referrer_name,
            confirmation_email=normalize_email(payload.get("confirmation_email")) or None,
            patient_name=patient_name,
            form_data=form_data,
            status_history=[{"status": ReferralStatus.RECEIVED.value, "changed_at": now.isoformat()}],
        )
        self.session.add(referral)
        self.session.flush()

        self.audit_sink.record(AuditEvent(
            action=AuditAction.REFERRAL_SUBMITTED,
            tenant_id=tenant.id,
            resource_id=referral.id,
            detail={"resource_type": "referrals"},
        ))
        logger.info("Public referral submitted", extra={"tenant_id": tenant.id, "referral_id": referral.id})
        return referral

    def lookup_public_status(self, scoped_tenant_id: str, referral_id: str) -> dict[str, Any]:
        """
        Public status lookup by exact referral id within the host's agency.

        Raises:
            PermissionDeniedError: Agency missing, suspended or cancelled
            NotFoundError: No referral with this id in this agency
        """
        tenant = self._available_tenant(scoped_tenant_id)
        key = (referral_id or "").strip()
        if not key:
            raise NotFoundError("Referral")

        referral = (
            self.session.query(Referral)
            .filter(Referral.id == key, Referral.tenant_id == tenant.id)
            .first()
        )
        if referral is None:
            raise NotFoundError("Referral")
        return public_status_view(referral)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _available_tenant(self, scoped_tenant_id: str) -> TenantRecord:
        tenant = self.directory.resolve_tenant(scoped_tenant_id)
        if not tenant.is_available:
            logger.info(
                "Public request refused for unavailable agency",
                extra={
                    "tenant_key": scoped_tenant_id,
                    "exists": tenant.exists,
                    "subscription_status": tenant.subscription_status.value,
                },
            )
            raise PermissionDeniedError(AGENCY_UNAVAILABLE)
        return tenant

    def _load_for(self, principal: Optional[Principal], referral_id: str, mode: AccessMode) -> Referral:
        if principal is None:
            raise AuthenticationError()
        referral = self.session.query(Referral).filter(Referral.id == referral_id).first()
        if referral is None:
            if self.authorizer.config.is_platform_admin(principal.email):
                raise NotFoundError("Referral", referral_id)
            raise self.authorizer.deny_missing(principal, "referrals", referral_id, mode)
        return referral
