"""
Tenant model for the multi-agency referral platform.

A Tenant is one subscribing agency. Tenant.id is the tenant_id referenced by
every tenant-scoped record (referrals, contacts) and by the access grants
that decide who may act within the agency.

Identity:
- id: stable, assigned at provisioning, never changes
- slug: human-chosen subdomain alias, globally unique, may change

Membership is NOT stored per user. It is computed from three signals:
- TenantAccessGrant rows of kind "email"
- TenantAccessGrant rows of kind "domain"
- owner_email on the tenant itself
"""

import uuid
import enum
from typing import TYPE_CHECKING

from sqlalchemy import Column, String, DateTime, Enum, Index, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from referralflow.db_base import Base
from referralflow.models.base import TimestampMixin

if TYPE_CHECKING:
    from referralflow.models.tenant_access_grant import TenantAccessGrant

# Use JSON with PostgreSQL variant for JSONB - allows SQLite in tests
JSONType = JSON().with_variant(JSONB(), "postgresql")


class SubscriptionStatus(str, enum.Enum):
    """Agency subscription lifecycle status."""
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    PAST_DUE = "PAST_DUE"
    SUSPENDED = "SUSPENDED"  # Also the default for unknown agencies in production


class SubscriptionPlan(str, enum.Enum):
    """Agency subscription plan."""
    FREE = "FREE"
    BASIC = "BASIC"
    PRO = "PRO"


class Tenant(Base, TimestampMixin):
    """
    One subscribing agency.

    The settings column holds the agency's display configuration as
    independent sections (company_profile, branding, notifications,
    configuration). Missing sections are filled from defaults when the
    record is hydrated by TenantDirectory.
    """

    __tablename__ = "tenants"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Primary key - this IS the tenant_id used across all models"
    )

    slug = Column(
        String(100),
        nullable=True,
        unique=True,
        index=True,
        comment="Subdomain alias (e.g., 'sunrise-home-health'). Falls back to id."
    )

    name = Column(
        String(255),
        nullable=False,
        comment="Agency display name"
    )

    owner_email = Column(
        String(320),
        nullable=True,
        index=True,
        comment="Owner contact email (lower-cased). Always an implicit member."
    )

    subscription_plan = Column(
        Enum(SubscriptionPlan, name="subscription_plan", create_constraint=True),
        nullable=False,
        default=SubscriptionPlan.FREE,
    )

    subscription_status = Column(
        Enum(SubscriptionStatus, name="subscription_status", create_constraint=True),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
        index=True,
    )

    settings = Column(
        JSONType,
        nullable=True,
        comment="Agency profile, branding, notification and form configuration"
    )

    last_active_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="Latest staff login session for this agency"
    )

    access_grants = relationship(
        "TenantAccessGrant",
        back_populates="tenant",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_tenants_status_last_active", "subscription_status", "last_active_at"),
    )

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, slug={self.slug}, status={self.subscription_status})>"

    @property
    def effective_slug(self) -> str:
        """Slug used for subdomain routing (defaults to id)."""
        return self.slug or self.id
