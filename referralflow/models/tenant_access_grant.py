"""
Tenant access grants: the explicit allow-lists of an agency.

Each row grants membership in one tenant to either:
- one exact email address (kind=email), or
- every address at one email domain (kind=domain)

Values are stored lower-cased so membership lookups are plain equality
queries on (kind, value).
"""

import uuid
import enum

from sqlalchemy import Column, String, DateTime, Enum, ForeignKey, Index, UniqueConstraint, func
from sqlalchemy.orm import relationship

from referralflow.db_base import Base


class GrantKind(str, enum.Enum):
    """Kind of access grant."""
    EMAIL = "email"
    DOMAIN = "domain"


class TenantAccessGrant(Base):
    """One entry of a tenant's authorized emails or authorized domains."""

    __tablename__ = "tenant_access_grants"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    tenant_id = Column(
        String(255),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    kind = Column(
        Enum(GrantKind, name="grant_kind", create_constraint=True),
        nullable=False,
    )

    value = Column(
        String(320),
        nullable=False,
        comment="Lower-cased email address or email domain"
    )

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    tenant = relationship("Tenant", back_populates="access_grants")

    __table_args__ = (
        UniqueConstraint("tenant_id", "kind", "value", name="uq_tenant_access_grant"),
        Index("ix_tenant_access_grants_kind_value", "kind", "value"),
    )

    def __repr__(self) -> str:
        return f"<TenantAccessGrant(tenant_id={self.tenant_id}, kind={self.kind}, value={self.value})>"
