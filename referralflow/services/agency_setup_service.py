"""
Agency provisioning and platform-admin agency management.

Only the platform admin may create agencies, change their slug or change
their subscription.

Provisioning creates the agency with:
- id = the normalized slug (stable forever, even if the slug later changes)
- the owner email as the first authorized email
- the owner email as primary notification recipient

Slug rules: lower-case letters, digits and hyphens, 3 to 63 characters, no
leading or trailing hyphen, not reserved. Slugs and ids share one routing
namespace, so a slug is "taken" if any agency uses it as id OR slug.

The service flushes; the route commits.
"""

import logging
import re
from typing import Optional

from referralflow.auth.principal import Principal
from referralflow.config.platform import PlatformConfig
from referralflow.constants.email_domains import normalize_email
from referralflow.constants.tenant_defaults import DEFAULT_NOTIFICATION_TYPES
from referralflow.models.tenant import Tenant, SubscriptionPlan, SubscriptionStatus
from referralflow.models.tenant_access_grant import TenantAccessGrant, GrantKind
from referralflow.platform.audit import AuditSink, AuditEvent, AuditAction
from referralflow.platform.errors import (
    AuthenticationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from referralflow.platform.tenant_context import ROOT_TENANT_ID
from referralflow.repositories.tenant_repository import TenantRepository
from referralflow.services.tenant_directory import TenantRecord, hydrate_tenant

logger = logging.getLogger(__name__)

SLUG_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]{1,61})[a-z0-9]$")

# Host labels that can never be an agency
RESERVED_SLUGS = frozenset({ROOT_TENANT_ID, "www", "api", "app", "admin", "static", "mail"})

SLUG_TAKEN = "This workspace URL is already taken. Please choose another."


def normalize_slug(raw: Optional[str]) -> str:
    """Lower-case, trim and drop every character outside [a-z0-9-]."""
    return re.sub(r"[^a-z0-9-]", "", (raw or "").strip().lower())


def validate_slug(raw: Optional[str]) -> str:
    """
    Normalize and validate a slug.

    Raises:
        ValidationError: If the slug is malformed or reserved
    """
    slug = normalize_slug(raw)
    if not SLUG_PATTERN.match(slug):
        raise ValidationError(
            "Workspace URL must be 3-63 characters of letters, digits and hyphens",
            details={"slug": slug},
        )
    if slug in RESERVED_SLUGS:
        raise ValidationError("This workspace URL is reserved", details={"slug": slug})
    return slug


class AgencySetupService:
    """Platform-admin operations that create or re-key agencies."""

    def __init__(self, repository: TenantRepository, config: PlatformConfig, audit_sink: AuditSink):
        self.repository = repository
        self.config = config
        self.audit_sink = audit_sink

    def provision_agency(
        self,
        principal: Optional[Principal],
        slug: str,
        name: str,
        owner_email: str,
        plan: SubscriptionPlan = SubscriptionPlan.PRO,
    ) -> TenantRecord:
        """
        Create a new agency.

        Args:
            principal: Must be the platform admin
            slug: Requested subdomain (normalized; becomes the tenant id)
            name: Agency display name
            owner_email: Owner contact; first authorized email
            plan: Initial subscription plan

        Returns:
            The hydrated record of the new agency

        Raises:
            AuthenticationError / PermissionDeniedError: Not the platform admin
            ValidationError: Bad slug, name or email
            ConflictError: Slug already used as an id or slug
        """
        self._require_admin(principal)

        tenant_id = validate_slug(slug)
        display_name = (name or "").strip()
        if not display_name:
            raise ValidationError("Agency name is required")
        email = normalize_email(owner_email)
        if "@" not in email:
            raise ValidationError("A valid owner email is required")

        if self.repository.identifier_taken(tenant_id):
            raise ConflictError(SLUG_TAKEN, details={"slug": tenant_id})

        tenant = Tenant(
            id=tenant_id,
            slug=tenant_id,
            name=display_name,
            owner_email=email,
            subscription_plan=plan,
            subscription_status=SubscriptionStatus.ACTIVE,
            settings={
                "company_profile": {"name": display_name, "email": email},
                "notifications": {
                    "email_recipients": [email],
                    "enabled_types": list(DEFAULT_NOTIFICATION_TYPES),
                    "staff": [],
                    "primary_admin_email": email,
                },
            },
        )
        tenant.access_grants.append(TenantAccessGrant(kind=GrantKind.EMAIL, value=email))
        self.repository.add(tenant)

        self.audit_sink.record(AuditEvent(
            action=AuditAction.IDENTITY_TENANT_CREATED,
            tenant_id=tenant_id,
            actor_id=principal.subject_id,
            resource_id=tenant_id,
            detail={"owner_email": email, "plan": plan.value},
        ))
        logger.info("Agency provisioned", extra={"tenant_id": tenant_id, "plan": plan.value})
        return hydrate_tenant(tenant)

    def change_slug(self, principal: Optional[Principal], tenant_id: str, new_slug: str) -> TenantRecord:
        """
        Change an agency's slug. The tenant id never changes.

        Raises:
            ConflictError: Slug already used by another agency (as id or slug)
            NotFoundError: No agency with this id
        """
        self._require_admin(principal)
        slug = validate_slug(new_slug)

        tenant = self.repository.get_by_id(tenant_id)
        if tenant is None:
            raise NotFoundError("Agency", tenant_id)

        if tenant.slug == slug:
            return hydrate_tenant(tenant)

        if self.repository.identifier_taken(slug, exclude_tenant_id=tenant.id):
            raise ConflictError(SLUG_TAKEN, details={"slug": slug})

        previous = tenant.slug
        tenant.slug = slug
        self.repository.db_session.flush()

        self.audit_sink.record(AuditEvent(
            action=AuditAction.IDENTITY_TENANT_SLUG_CHANGED,
            tenant_id=tenant.id,
            actor_id=principal.subject_id,
            resource_id=tenant.id,
            detail={"previous_slug": previous, "slug": slug},
        ))
        logger.info("Agency slug changed", extra={"tenant_id": tenant.id, "slug": slug})
        return hydrate_tenant(tenant)

    def update_subscription(
        self,
        principal: Optional[Principal],
        tenant_id: str,
        plan: Optional[SubscriptionPlan] = None,
        status: Optional[SubscriptionStatus] = None,
    ) -> TenantRecord:
        """Set an agency's plan and/or subscription status."""
        self._require_admin(principal)
        tenant = self.repository.get_by_id(tenant_id)
        if tenant is None:
            raise NotFoundError("Agency", tenant_id)

        if plan is not None:
            tenant.subscription_plan = plan
        if status is not None:
            tenant.subscription_status = status
        self.repository.db_session.flush()

        self.audit_sink.record(AuditEvent(
            action=AuditAction.SETTINGS_UPDATED,
            tenant_id=tenant.id,
            actor_id=principal.subject_id,
            resource_id=tenant.id,
            detail={
                "subscription_plan": tenant.subscription_plan.value,
                "subscription_status": tenant.subscription_status.value,
            },
        ))
        return hydrate_tenant(tenant)

    def _require_admin(self, principal: Optional[Principal]) -> None:
        if principal is None:
            raise AuthenticationError()
        if not self.config.is_platform_admin(principal.email):
            logger.warning("Non-admin attempted agency administration", extra={"subject_id": principal.subject_id})
            raise PermissionDeniedError("Platform admin access required")
