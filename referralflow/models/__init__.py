"""
Database models for agencies, access grants and referrals.

Tenant-scoped models inherit from TenantScopedMixin.
"""

from referralflow.models.base import TimestampMixin, TenantScopedMixin, generate_record_id
from referralflow.models.tenant import Tenant, SubscriptionStatus, SubscriptionPlan
from referralflow.models.tenant_access_grant import TenantAccessGrant, GrantKind
from referralflow.models.referral import Referral, ReferralStatus

__all__ = [
    "TimestampMixin",
    "TenantScopedMixin",
    "generate_record_id",
    "Tenant",
    "SubscriptionStatus",
    "SubscriptionPlan",
    "TenantAccessGrant",
    "GrantKind",
    "Referral",
    "ReferralStatus",
]
