"""
Tenant Directory: resolve an agency by id or slug.

Resolution order is fixed:
1. exact id match
2. exact slug match

An id match always wins over a slug match, so an agency whose slug happens to
equal another agency's id can never shadow it.

The directory NEVER raises for a missing or unreachable tenant. It returns a
placeholder record (exists=False) built from defaults, so public pages can
render a "not found" / "not available" state. Placeholders carry no access
grants and therefore grant no membership.

This service is read-only.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from referralflow.config.platform import PlatformConfig
from referralflow.constants.tenant_defaults import (
    DEFAULT_AGENCY_NAME,
    SYSTEM_ERROR_AGENCY_NAME,
    merge_with_defaults,
)
from referralflow.models.tenant import Tenant, SubscriptionPlan, SubscriptionStatus
from referralflow.models.tenant_access_grant import GrantKind
from referralflow.repositories.tenant_repository import TenantRepository

logger = logging.getLogger(__name__)


@dataclass
class TenantRecord:
    """A tenant hydrated with default-merged settings."""
    id: str
    slug: str
    name: str
    exists: bool
    subscription_plan: SubscriptionPlan = SubscriptionPlan.FREE
    subscription_status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    owner_email: Optional[str] = None
    authorized_emails: List[str] = field(default_factory=list)
    authorized_domains: List[str] = field(default_factory=list)
    settings: dict[str, Any] = field(default_factory=dict)
    last_active_at: Optional[datetime] = None

    @property
    def is_available(self) -> bool:
        """True when the agency exists and its subscription allows public use."""
        return self.exists and self.subscription_status not in (
            SubscriptionStatus.SUSPENDED,
            SubscriptionStatus.CANCELLED,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "exists": self.exists,
            "subscription_plan": self.subscription_plan.value,
            "subscription_status": self.subscription_status.value,
            "settings": self.settings,
        }

    def to_public_dict(self) -> dict[str, Any]:
        """Fields safe to render on public intake pages."""
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "exists": self.exists,
            "available": self.is_available,
            "branding": self.settings.get("branding", {}),
            "configuration": self.settings.get("configuration", {}),
        }


def hydrate_tenant(tenant: Tenant) -> TenantRecord:
    """
    Build a TenantRecord from a stored Tenant, merging default settings.

    Shared by TenantDirectory and MembershipIndex so both produce the same
    shape for the same row.
    """
    settings = merge_with_defaults(tenant.settings)
    stored_name = settings["company_profile"].get("name")
    name = tenant.name or stored_name or DEFAULT_AGENCY_NAME
    settings["company_profile"]["name"] = name

    emails = [g.value for g in tenant.access_grants if g.kind == GrantKind.EMAIL]
    domains = [g.value for g in tenant.access_grants if g.kind == GrantKind.DOMAIN]

    return TenantRecord(
        id=tenant.id,
        slug=tenant.effective_slug,
        name=name,
        exists=True,
        subscription_plan=tenant.subscription_plan or SubscriptionPlan.FREE,
        subscription_status=tenant.subscription_status or SubscriptionStatus.ACTIVE,
        owner_email=tenant.owner_email,
        authorized_emails=emails,
        authorized_domains=domains,
        settings=settings,
        last_active_at=tenant.last_active_at,
    )


def placeholder_tenant(
    id_or_slug: str,
    config: PlatformConfig,
    name: str = DEFAULT_AGENCY_NAME,
) -> TenantRecord:
    """
    Build the record returned for an agency that could not be found.

    In production an unknown agency is SUSPENDED so public pages refuse
    submissions; elsewhere it is ACTIVE so local hosts render a form.
    """
    settings = merge_with_defaults(None)
    settings["company_profile"]["name"] = name
    status = SubscriptionStatus.SUSPENDED if config.is_production else SubscriptionStatus.ACTIVE
    return TenantRecord(
        id=id_or_slug,
        slug=id_or_slug,
        name=name,
        exists=False,
        subscription_plan=SubscriptionPlan.FREE,
        subscription_status=status,
        settings=settings,
    )


class TenantDirectory:
    """Read-only tenant resolution by id or slug."""

    def __init__(self, session: Session, config: PlatformConfig):
        self.session = session
        self.config = config
        self.repository = TenantRepository(session)

    def resolve_tenant(self, id_or_slug: Optional[str]) -> TenantRecord:
        """
        Resolve an agency by id, then by slug.

        Args:
            id_or_slug: Tenant id or slug (typically the host-scoped tenant id)

        Returns:
            The hydrated TenantRecord, or a placeholder with exists=False when
            not found or when storage fails.
        """
        key = (id_or_slug or "").strip()
        if not key:
            return placeholder_tenant(key, self.config)

        try:
            tenant = self.repository.get_by_id(key)
            if tenant is None:
                tenant = self.repository.get_by_slug(key)
            if tenant is None:
                logger.info("Tenant not found, using placeholder", extra={"tenant_key": key})
                return placeholder_tenant(key, self.config)
            return hydrate_tenant(tenant)

        except SQLAlchemyError:
            logger.error(
                "Tenant lookup failed, using placeholder",
                extra={"tenant_key": key},
                exc_info=True,
            )
            return placeholder_tenant(key, self.config, name=SYSTEM_ERROR_AGENCY_NAME)
