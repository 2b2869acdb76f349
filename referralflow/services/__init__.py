"""
Business logic services.
"""

from referralflow.services.tenant_directory import TenantDirectory, TenantRecord
from referralflow.services.membership_index import MembershipIndex, TenantRouting, RoutingAction
from referralflow.services.record_authorizer import RecordAuthorizer, AccessMode, ResourceRef
from referralflow.services.tenant_settings_service import TenantSettingsService
from referralflow.services.referral_access_service import ReferralAccessService
from referralflow.services.agency_setup_service import AgencySetupService

__all__ = [
    "TenantDirectory",
    "TenantRecord",
    "MembershipIndex",
    "TenantRouting",
    "RoutingAction",
    "RecordAuthorizer",
    "AccessMode",
    "ResourceRef",
    "TenantSettingsService",
    "ReferralAccessService",
    "AgencySetupService",
]
