"""
Service wiring for route handlers.

Each request gets services built over its own database session. Process-wide
collaborators (configuration, identity provider, audit sink, background
dispatcher) are created in the application lifespan and kept on app.state.

Tests replace any of these with app.dependency_overrides.
"""

import logging
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from referralflow.auth.identity_provider import IdentityProvider, JWTIdentityProvider
from referralflow.auth.principal import Principal
from referralflow.auth.session_service import SessionService
from referralflow.auth.token_service import get_token_service
from referralflow.config.platform import PlatformConfig, get_platform_config
from referralflow.database.session import get_db_session
from referralflow.platform.audit import AuditSink
from referralflow.platform.background import BackgroundDispatcher
from referralflow.platform.errors import AuthenticationError, ServiceUnavailableError
from referralflow.repositories.tenant_repository import TenantRepository
from referralflow.services.agency_setup_service import AgencySetupService
from referralflow.services.membership_index import MembershipIndex
from referralflow.services.record_authorizer import RecordAuthorizer
from referralflow.services.referral_access_service import ReferralAccessService
from referralflow.services.tenant_directory import TenantDirectory
from referralflow.services.tenant_settings_service import TenantSettingsService

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


# ---------------------------------------------------------------------------
# Process-wide collaborators
# ---------------------------------------------------------------------------

def get_config() -> PlatformConfig:
    return get_platform_config()


def get_audit_sink(request: Request) -> AuditSink:
    sink = getattr(request.app.state, "audit_sink", None)
    if sink is None:
        logger.error("Audit sink not configured", extra={"path": request.url.path})
        raise ServiceUnavailableError()
    return sink


def get_dispatcher(request: Request) -> Optional[BackgroundDispatcher]:
    return getattr(request.app.state, "dispatcher", None)


def get_identity_provider(
    request: Request,
    config: PlatformConfig = Depends(get_config),
) -> IdentityProvider:
    provider = getattr(request.app.state, "identity_provider", None)
    if provider is None:
        provider = JWTIdentityProvider(config, get_token_service())
        request.app.state.identity_provider = provider
    return provider


# ---------------------------------------------------------------------------
# Per-request services
# ---------------------------------------------------------------------------

def get_tenant_directory(
    db: Session = Depends(get_db_session),
    config: PlatformConfig = Depends(get_config),
) -> TenantDirectory:
    return TenantDirectory(db, config)


def get_membership_index(
    db: Session = Depends(get_db_session),
    config: PlatformConfig = Depends(get_config),
) -> MembershipIndex:
    return MembershipIndex(db, config)


def get_record_authorizer(
    membership_index: MembershipIndex = Depends(get_membership_index),
    config: PlatformConfig = Depends(get_config),
    audit_sink: AuditSink = Depends(get_audit_sink),
) -> RecordAuthorizer:
    return RecordAuthorizer(membership_index, config, audit_sink)


def get_session_service(
    identity_provider: IdentityProvider = Depends(get_identity_provider),
    membership_index: MembershipIndex = Depends(get_membership_index),
    config: PlatformConfig = Depends(get_config),
    audit_sink: AuditSink = Depends(get_audit_sink),
    dispatcher: Optional[BackgroundDispatcher] = Depends(get_dispatcher),
) -> SessionService:
    return SessionService(identity_provider, membership_index, config, audit_sink, dispatcher)


def get_tenant_settings_service(
    directory: TenantDirectory = Depends(get_tenant_directory),
    authorizer: RecordAuthorizer = Depends(get_record_authorizer),
    audit_sink: AuditSink = Depends(get_audit_sink),
) -> TenantSettingsService:
    return TenantSettingsService(directory, authorizer, audit_sink)


def get_referral_access_service(
    db: Session = Depends(get_db_session),
    directory: TenantDirectory = Depends(get_tenant_directory),
    authorizer: RecordAuthorizer = Depends(get_record_authorizer),
    audit_sink: AuditSink = Depends(get_audit_sink),
) -> ReferralAccessService:
    return ReferralAccessService(db, directory, authorizer, audit_sink)


def get_agency_setup_service(
    db: Session = Depends(get_db_session),
    config: PlatformConfig = Depends(get_config),
    audit_sink: AuditSink = Depends(get_audit_sink),
) -> AgencySetupService:
    return AgencySetupService(TenantRepository(db), config, audit_sink)


# ---------------------------------------------------------------------------
# Principal resolution
# ---------------------------------------------------------------------------

def extract_session_artifact(request: Request, config: PlatformConfig) -> Optional[str]:
    """Session artifact from the session cookie, else a Bearer header."""
    cookie_value = request.cookies.get(config.session_cookie_name)
    if cookie_value:
        return cookie_value
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith(BEARER_PREFIX):
        return auth_header[len(BEARER_PREFIX):].strip() or None
    return None


def get_current_principal(
    request: Request,
    config: PlatformConfig = Depends(get_config),
    session_service: SessionService = Depends(get_session_service),
) -> Optional[Principal]:
    """The session principal, or None when there is no valid session."""
    return session_service.verify_session(extract_session_artifact(request, config))


def require_principal(
    principal: Optional[Principal] = Depends(get_current_principal),
) -> Principal:
    if principal is None:
        raise AuthenticationError()
    return principal
