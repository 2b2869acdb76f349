"""
Referral model - the primary tenant-scoped record.

Referrals are created by the public intake form of an agency and worked by
that agency's staff. Only the authorization-relevant columns and the fields
surfaced by the public status page are modelled here; the full intake form
payload is kept in form_data.

SECURITY:
- tenant_id is taken from the host scope at submission, never from the form
- id is high-entropy; it is the only key accepted by public lookups
"""

import enum

from sqlalchemy import Column, String, Boolean, Enum, Index, JSON
from sqlalchemy.dialects.postgresql import JSONB

from referralflow.db_base import Base
from referralflow.models.base import TimestampMixin, TenantScopedMixin, generate_record_id

JSONType = JSON().with_variant(JSONB(), "postgresql")


class ReferralStatus(str, enum.Enum):
    """Referral workflow status."""
    RECEIVED = "RECEIVED"
    IN_REVIEW = "IN_REVIEW"
    ACCEPTED = "ACCEPTED"
    NEED_MORE_INFO = "NEED_MORE_INFO"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"


class Referral(Base, TimestampMixin, TenantScopedMixin):
    """A patient referral owned by exactly one agency."""

    __tablename__ = "referrals"

    id = Column(String(64), primary_key=True, default=generate_record_id)

    status = Column(
        Enum(ReferralStatus, name="referral_status", create_constraint=True),
        nullable=False,
        default=ReferralStatus.RECEIVED,
    )

    referrer_name = Column(String(255), nullable=False)
    confirmation_email = Column(String(320), nullable=True)
    patient_name = Column(String(255), nullable=False)

    form_data = Column(JSONType, nullable=False, default=dict)
    status_history = Column(JSONType, nullable=False, default=list)

    is_archived = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_referrals_tenant_archived", "tenant_id", "is_archived"),
    )

    def __repr__(self) -> str:
        return f"<Referral(id={self.id}, tenant_id={self.tenant_id}, status={self.status})>"
