"""
Membership Index: which agencies may a given email act within?

Membership is computed, not stored. An email is a member of a tenant when ANY
of three independent signals holds:

1. Domain grant: the tenant authorizes the email's domain, and that domain is
   NOT a public consumer provider (gmail.com etc.). Public domains are
   rejected BEFORE the query is issued.
2. Email grant: the tenant authorizes the exact address.
3. Ownership: the tenant's owner_email is the address.

Results are unioned and de-duplicated by tenant id (first signal wins).

SECURITY:
- A failed signal query can only REMOVE memberships from the result, never
  add one. Under the "partial" policy the other signals' results are kept;
  under "fail_closed" the result is empty.
- Queries run sequentially on the caller's session, each inside its own
  SAVEPOINT; SQLAlchemy sessions are not safe for concurrent use.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from referralflow.config.platform import PlatformConfig, MembershipFailurePolicy
from referralflow.constants.email_domains import (
    normalize_email,
    email_domain,
    is_public_email_domain,
)
from referralflow.models.tenant import Tenant
from referralflow.models.tenant_access_grant import GrantKind
from referralflow.repositories.tenant_repository import TenantRepository
from referralflow.services.tenant_directory import TenantRecord, hydrate_tenant

logger = logging.getLogger(__name__)


class MembershipSignal(str, Enum):
    """Why an email is a member of a tenant."""
    DOMAIN = "domain"
    EMAIL = "email"
    OWNER = "owner"


class RoutingAction(str, Enum):
    """Where a signed-in user should land."""
    STAY = "stay"          # Already on one of their agencies
    REDIRECT = "redirect"  # Exactly one agency, go there
    SELECT = "select"      # Several agencies, let the user pick
    DENY = "deny"          # No agency at all


@dataclass
class TenantRouting:
    """Routing decision for a signed-in principal."""
    action: RoutingAction
    tenant_id: Optional[str] = None
    tenant_slug: Optional[str] = None
    tenants: List[TenantRecord] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "action": self.action.value,
            "tenant_id": self.tenant_id,
            "tenant_slug": self.tenant_slug,
            "agencies": [
                {"id": t.id, "slug": t.slug, "name": t.name} for t in self.tenants
            ],
        }


class MembershipIndex:
    """Computes tenant memberships for an email from the three signals."""

    def __init__(self, session: Session, config: PlatformConfig):
        self.session = session
        self.config = config
        self.repository = TenantRepository(session)

    def memberships_for(self, email: Optional[str]) -> List[TenantRecord]:
        """
        Compute every tenant the email is a member of.

        Args:
            email: Principal email (any case, surrounding whitespace allowed)

        Returns:
            Hydrated TenantRecords, one per tenant id, in signal order
            (domain, email, owner).
        """
        normalized = normalize_email(email)
        if not normalized:
            return []

        domain = email_domain(normalized)
        found: Dict[str, TenantRecord] = {}
        failed_signals: List[MembershipSignal] = []

        signals: List[tuple[MembershipSignal, Callable[[], List[Tenant]]]] = []
        if domain and not is_public_email_domain(domain):
            signals.append(
                (MembershipSignal.DOMAIN, lambda: self.repository.find_by_grant(GrantKind.DOMAIN, domain))
            )
        signals.append(
            (MembershipSignal.EMAIL, lambda: self.repository.find_by_grant(GrantKind.EMAIL, normalized))
        )
        signals.append(
            (MembershipSignal.OWNER, lambda: self.repository.find_by_owner_email(normalized))
        )

        for signal, query in signals:
            try:
                # Savepoint per signal: a failed query leaves the caller's transaction usable
                with self.session.begin_nested():
                    tenants = query()
            except SQLAlchemyError:
                failed_signals.append(signal)
                logger.error(
                    "Membership signal query failed",
                    extra={"signal": signal.value, "email_domain": domain},
                    exc_info=True,
                )
                continue
            for tenant in tenants:
                if tenant.id not in found:
                    found[tenant.id] = hydrate_tenant(tenant)

        if failed_signals and self.config.membership_failure_policy == MembershipFailurePolicy.FAIL_CLOSED:
            logger.warning(
                "Membership lookup incomplete, failing closed",
                extra={"failed_signals": [s.value for s in failed_signals]},
            )
            return []

        return list(found.values())

    def is_member(self, email: Optional[str], tenant_id: str) -> bool:
        """Check whether the email is a member of the tenant with this id."""
        return any(t.id == tenant_id for t in self.memberships_for(email))

    def route_for(
        self,
        email: Optional[str],
        scoped_tenant_id: Optional[str],
        is_admin: bool = False,
    ) -> TenantRouting:
        """
        Decide where a signed-in user should land.

        - scoped tenant (matched by id or slug) is one of their agencies: stay
        - exactly one agency: redirect to it
        - several agencies: select
        - none: deny (platform admin stays wherever they are)
        """
        memberships = self.memberships_for(email)

        if scoped_tenant_id:
            for tenant in memberships:
                if scoped_tenant_id in (tenant.id, tenant.slug):
                    return TenantRouting(
                        action=RoutingAction.STAY,
                        tenant_id=tenant.id,
                        tenant_slug=tenant.slug,
                        tenants=memberships,
                    )

        if is_admin:
            return TenantRouting(
                action=RoutingAction.STAY,
                tenant_id=scoped_tenant_id,
                tenant_slug=scoped_tenant_id,
                tenants=memberships,
            )

        if len(memberships) == 1:
            only = memberships[0]
            return TenantRouting(
                action=RoutingAction.REDIRECT,
                tenant_id=only.id,
                tenant_slug=only.slug,
                tenants=memberships,
            )

        if memberships:
            return TenantRouting(action=RoutingAction.SELECT, tenants=memberships)

        return TenantRouting(action=RoutingAction.DENY)
