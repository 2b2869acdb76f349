"""
Agency settings read and update.

Settings are stored per section (company_profile, branding, notifications,
configuration). The two access lists (authorized emails, authorized domains)
live in tenant_access_grants and are replaced wholesale on update.

SECURITY:
- Every read and write passes RecordAuthorizer first. A caller that is not a
  member gets the same ACCESS_DENIED whether or not the agency exists.
- Authorized domains may never be public consumer email providers.

The service flushes; the route commits.
"""

import logging
from typing import Any, List, Optional

from referralflow.auth.principal import Principal
from referralflow.constants.email_domains import is_public_email_domain, normalize_email
from referralflow.constants.tenant_defaults import SETTINGS_SECTIONS
from referralflow.models.tenant_access_grant import GrantKind
from referralflow.platform.audit import AuditSink, AuditEvent, AuditAction
from referralflow.platform.errors import NotFoundError, ValidationError
from referralflow.repositories.tenant_repository import TenantRepository
from referralflow.services.record_authorizer import RecordAuthorizer, AccessMode, ResourceRef
from referralflow.services.tenant_directory import TenantDirectory, TenantRecord, hydrate_tenant

logger = logging.getLogger(__name__)


def tenant_ref(tenant: TenantRecord) -> ResourceRef:
    """ResourceRef for authorizing access to the agency itself."""
    return ResourceRef(tenant_id=tenant.id, id=tenant.id, resource_type="tenants")


class TenantSettingsService:
    """Authorized access to an agency's settings and access lists."""

    def __init__(
        self,
        directory: TenantDirectory,
        authorizer: RecordAuthorizer,
        audit_sink: AuditSink,
    ):
        self.directory = directory
        self.authorizer = authorizer
        self.audit_sink = audit_sink
        self.repository = TenantRepository(directory.session)

    def get_settings(self, principal: Optional[Principal], id_or_slug: str) -> TenantRecord:
        """
        Return the agency's hydrated record.

        Raises:
            AuthenticationError: No principal
            TenantIsolationError: Principal may not read this agency
            NotFoundError: Agency does not exist (platform admin only)
        """
        tenant = self.directory.resolve_tenant(id_or_slug)
        self.authorizer.require(principal, tenant_ref(tenant), AccessMode.READ)
        if not tenant.exists:
            raise NotFoundError("Agency", id_or_slug)
        return tenant

    def update_settings(
        self,
        principal: Optional[Principal],
        id_or_slug: str,
        sections: Optional[dict[str, Any]] = None,
        authorized_emails: Optional[List[str]] = None,
        authorized_domains: Optional[List[str]] = None,
    ) -> TenantRecord:
        """
        Merge settings sections and optionally replace the access lists.

        Args:
            principal: Session principal
            id_or_slug: Agency id or slug
            sections: {section_name: {key: value}} partial updates
            authorized_emails: Replacement list of authorized emails
            authorized_domains: Replacement list of authorized domains

        Returns:
            The updated, re-hydrated record

        Raises:
            ValidationError: Unknown section or public email domain
        """
        tenant = self.directory.resolve_tenant(id_or_slug)
        self.authorizer.require(principal, tenant_ref(tenant), AccessMode.WRITE)
        if not tenant.exists:
            raise NotFoundError("Agency", id_or_slug)

        sections = sections or {}
        unknown = sorted(set(sections) - set(SETTINGS_SECTIONS))
        if unknown:
            raise ValidationError("Unknown settings section", details={"sections": unknown})

        if authorized_domains is not None:
            public = sorted({
                d.strip().lower() for d in authorized_domains if is_public_email_domain(d)
            })
            if public:
                raise ValidationError(
                    "Public email providers cannot be authorized domains",
                    details={"domains": public},
                )

        if authorized_emails is not None:
            invalid = [e for e in authorized_emails if "@" not in normalize_email(e)]
            if invalid:
                raise ValidationError("Invalid email address in authorized emails")

        model = self.repository.get_by_id(tenant.id)
        if model is None:
            raise NotFoundError("Agency", id_or_slug)

        if sections:
            self.repository.merge_settings(model, sections)
            new_name = (sections.get("company_profile") or {}).get("name")
            if new_name:
                model.name = new_name.strip()

        changed_lists = []
        if authorized_emails is not None:
            self.repository.replace_grants(model.id, GrantKind.EMAIL, authorized_emails)
            changed_lists.append("authorized_emails")
        if authorized_domains is not None:
            self.repository.replace_grants(model.id, GrantKind.DOMAIN, authorized_domains)
            changed_lists.append("authorized_domains")

        self.directory.session.flush()
        self.directory.session.expire(model)

        self.audit_sink.record(AuditEvent(
            action=AuditAction.SETTINGS_UPDATED,
            tenant_id=model.id,
            actor_id=principal.subject_id,
            resource_id=model.id,
            detail={"sections": sorted(sections), "access_lists": changed_lists},
        ))
        logger.info(
            "Agency settings updated",
            extra={"tenant_id": model.id, "sections": sorted(sections), "access_lists": changed_lists},
        )
        return hydrate_tenant(model)
