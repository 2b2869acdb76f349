"""
Authentication module.

This module provides:
- ID token verification against the identity provider's JWKS
- Short-lived, revocable session artifacts
- Session establishment gated on tenant membership

SECURITY NOTES:
- Sessions carry the verified principal only, never a tenant or role
- Tenant access is recomputed from the principal's email on every request
"""

from referralflow.auth.principal import Principal
from referralflow.auth.token_service import TokenService, RevocationReason, get_token_service
from referralflow.auth.identity_provider import (
    IdentityProvider,
    JWTIdentityProvider,
    IdentityVerificationError,
    VerifiedIdentity,
    SessionArtifact,
)
from referralflow.auth.session_service import SessionService, SessionResult

__all__ = [
    "Principal",
    "TokenService",
    "RevocationReason",
    "get_token_service",
    "IdentityProvider",
    "JWTIdentityProvider",
    "IdentityVerificationError",
    "VerifiedIdentity",
    "SessionArtifact",
    "SessionService",
    "SessionResult",
]
