"""
Tenant storage access.

Wraps the tenants and tenant_access_grants tables. Every membership signal is
a plain field-equals query on an indexed column:
- grants by (kind, value)
- tenants by owner_email

This repository is intentionally NOT tenant-scoped: it is the directory that
resolves tenants in the first place. Callers are responsible for deciding
whether the current principal may see what it returns.
"""

import logging
from datetime import datetime
from typing import Any, Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from referralflow.models.tenant import Tenant
from referralflow.models.tenant_access_grant import TenantAccessGrant, GrantKind

logger = logging.getLogger(__name__)


class TenantRepository:
    """Queries and updates over tenants and their access grants."""

    def __init__(self, db_session: Session):
        self.db_session = db_session

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_by_id(self, tenant_id: str) -> Optional[Tenant]:
        return self.db_session.query(Tenant).filter(Tenant.id == tenant_id).first()

    def get_by_slug(self, slug: str) -> Optional[Tenant]:
        return self.db_session.query(Tenant).filter(Tenant.slug == slug).first()

    def find_by_grant(self, kind: GrantKind, value: str) -> List[Tenant]:
        """Tenants holding an access grant of the given kind and value."""
        return (
            self.db_session.query(Tenant)
            .join(TenantAccessGrant, TenantAccessGrant.tenant_id == Tenant.id)
            .filter(
                TenantAccessGrant.kind == kind,
                TenantAccessGrant.value == value,
            )
            .all()
        )

    def find_by_owner_email(self, email: str) -> List[Tenant]:
        return self.db_session.query(Tenant).filter(Tenant.owner_email == email).all()

    def identifier_taken(self, value: str, exclude_tenant_id: Optional[str] = None) -> bool:
        """
        Check whether a value is already used as any tenant's id or slug.

        Slugs and ids share one routing namespace, so a new slug must not
        collide with either.
        """
        query = self.db_session.query(Tenant.id).filter(
            or_(Tenant.id == value, Tenant.slug == value)
        )
        if exclude_tenant_id:
            query = query.filter(Tenant.id != exclude_tenant_id)
        return query.first() is not None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add(self, tenant: Tenant) -> Tenant:
        self.db_session.add(tenant)
        self.db_session.flush()
        return tenant

    def merge_settings(self, tenant: Tenant, updates: dict[str, Any]) -> Tenant:
        """
        Merge settings section by section.

        Each top-level key replaces the keys it names inside that section;
        sections not mentioned are left untouched.
        """
        merged = dict(tenant.settings or {})
        for section, values in updates.items():
            if isinstance(values, dict):
                current = dict(merged.get(section) or {})
                current.update(values)
                merged[section] = current
            else:
                merged[section] = values
        # Reassign so the JSON column is flagged dirty
        tenant.settings = merged
        self.db_session.flush()
        return tenant

    def replace_grants(self, tenant_id: str, kind: GrantKind, values: Iterable[str]) -> List[str]:
        """Replace every grant of one kind for a tenant. Values are lower-cased and de-duplicated."""
        normalized: List[str] = []
        for value in values:
            cleaned = (value or "").strip().lower()
            if cleaned and cleaned not in normalized:
                normalized.append(cleaned)

        self.db_session.query(TenantAccessGrant).filter(
            TenantAccessGrant.tenant_id == tenant_id,
            TenantAccessGrant.kind == kind,
        ).delete(synchronize_session=False)

        for value in normalized:
            self.db_session.add(TenantAccessGrant(tenant_id=tenant_id, kind=kind, value=value))
        self.db_session.flush()
        return normalized

    def touch_last_active(self, tenant_ids: Iterable[str], at: datetime) -> int:
        """Set last_active_at for the given tenants. Returns rows updated."""
        ids = list(tenant_ids)
        if not ids:
            return 0
        updated = (
            self.db_session.query(Tenant)
            .filter(Tenant.id.in_(ids))
            .update({Tenant.last_active_at: at}, synchronize_session=False)
        )
        self.db_session.commit()
        logger.debug("Tenant activity recorded", extra={"tenant_count": updated})
        return updated
