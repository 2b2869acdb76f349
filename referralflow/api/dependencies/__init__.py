"""
API Dependencies module.

Provides shared FastAPI dependencies for route handlers.
"""

from referralflow.api.dependencies.services import (
    get_config,
    get_audit_sink,
    get_dispatcher,
    get_identity_provider,
    get_tenant_directory,
    get_membership_index,
    get_record_authorizer,
    get_session_service,
    get_tenant_settings_service,
    get_referral_access_service,
    get_agency_setup_service,
    extract_session_artifact,
    get_current_principal,
    require_principal,
)

__all__ = [
    "get_config",
    "get_audit_sink",
    "get_dispatcher",
    "get_identity_provider",
    "get_tenant_directory",
    "get_membership_index",
    "get_record_authorizer",
    "get_session_service",
    "get_tenant_settings_service",
    "get_referral_access_service",
    "get_agency_setup_service",
    "extract_session_artifact",
    "get_current_principal",
    "require_principal",
]
