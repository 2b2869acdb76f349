"""
Identity provider integration.

Two kinds of token pass through this module:

1. ID tokens, issued by the external identity provider after the user signs
   in. RS256 JWTs verified against the provider's JWKS endpoint.
2. Session artifacts, issued by THIS service once the ID token is verified
   and the user has a tenant membership. HS256 JWTs signed with the session
   secret, carrying only the verified principal and a session id (sid).

SECURITY:
- A session artifact never carries a tenant id or role. Tenant access is
  recomputed from the email on every request.
- Session artifacts are short-lived (see SESSION_TTL) and revocable by sid.
- Any verification problem raises IdentityVerificationError; callers decide
  whether that becomes a 401 or a silent "no session".
"""

import time
import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Any, Dict, Optional, Protocol

import jwt
from jwt import PyJWKClient, PyJWKClientError
from jwt.exceptions import (
    InvalidTokenError,
    ExpiredSignatureError,
    InvalidAudienceError,
    InvalidIssuerError,
)

from referralflow.auth.principal import Principal
from referralflow.auth.token_service import TokenService, RevocationReason
from referralflow.config.platform import PlatformConfig
from referralflow.constants.email_domains import normalize_email

logger = logging.getLogger(__name__)

SESSION_ISSUER = "referralflow-session"
SESSION_ALGORITHM = "HS256"


class IdentityVerificationError(Exception):
    """Raised when an ID token or session artifact cannot be verified."""

    def __init__(self, message: str, error_code: str = "verification_failed"):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


@dataclass(frozen=True)
class VerifiedIdentity:
    """Claims extracted from a verified ID token."""
    email: str
    subject_id: str
    display_name: Optional[str] = None


@dataclass(frozen=True)
class SessionArtifact:
    """A signed session token and its metadata."""
    token: str
    session_id: str
    expires_at: datetime


class IdentityProvider(Protocol):
    """Operations the session layer needs from an identity provider."""

    def verify(self, token: str) -> VerifiedIdentity:
        ...

    def create_session_artifact(self, token: str, ttl: timedelta) -> SessionArtifact:
        ...

    def verify_session_artifact(self, artifact: str, check_revoked: bool = True) -> Principal:
        ...

    def revoke_session(self, session_id: str) -> None:
        ...


class JWTIdentityProvider:
    """
    IdentityProvider backed by PyJWT.

    Usage:
        provider = JWTIdentityProvider(config, get_token_service())
        identity = provider.verify(id_token)
        artifact = provider.create_session_artifact(id_token, SESSION_TTL)
    """

    # JWKS cache duration in seconds
    JWKS_CACHE_DURATION = 3600

    # Clock skew tolerance in seconds (for exp/iat validation)
    CLOCK_SKEW_SECONDS = 60

    def __init__(
        self,
        config: PlatformConfig,
        token_service: TokenService,
        jwks_client: Optional[PyJWKClient] = None,
    ):
        self._issuer = config.id_token_issuer
        self._audience = config.id_token_audience
        self._jwks_url = config.jwks_url
        self._session_secret = config.session_secret
        self._token_service = token_service

        self._jwks_client = jwks_client
        self._jwks_client_lock = Lock()
        self._jwks_last_refresh: float = time.time() if jwks_client else 0

    def _get_jwks_client(self) -> PyJWKClient:
        with self._jwks_client_lock:
            now = time.time()
            if (
                self._jwks_client is None
                or now - self._jwks_last_refresh > self.JWKS_CACHE_DURATION
            ):
                if not self._jwks_url:
                    raise IdentityVerificationError(
                        "Identity provider JWKS URL is not configured",
                        error_code="config_error",
                    )
                self._jwks_client = PyJWKClient(
                    self._jwks_url,
                    cache_keys=True,
                    lifespan=self.JWKS_CACHE_DURATION,
                )
                self._jwks_last_refresh = now
                logger.debug("Refreshed JWKS client", extra={"jwks_url": self._jwks_url})
            return self._jwks_client

    # ------------------------------------------------------------------
    # ID tokens
    # ------------------------------------------------------------------

    def verify(self, token: str) -> VerifiedIdentity:
        """
        Verify an identity provider ID token.

        Raises:
            IdentityVerificationError: If verification fails or the token
                carries no usable email
        """
        if not token:
            raise IdentityVerificationError("Token is required", error_code="missing_token")

        if token.startswith("Bearer "):
            token = token[7:]

        try:
            signing_key = self._get_jwks_client().get_signing_key_from_jwt(token)
            claims = jwt.decode(
                token,
                signing_key.key,
                algorithms=["RS256"],
                issuer=self._issuer,
                audience=self._audience,
                options={
                    "verify_signature": True,
                    "verify_exp": True,
                    "verify_aud": self._audience is not None,
                    "require": ["sub", "iss", "exp", "iat"],
                },
                leeway=self.CLOCK_SKEW_SECONDS,
            )
        except ExpiredSignatureError:
            logger.warning("ID token has expired")
            raise IdentityVerificationError("Token has expired", error_code="token_expired")
        except InvalidIssuerError:
            logger.warning("Invalid ID token issuer")
            raise IdentityVerificationError("Invalid token issuer", error_code="invalid_issuer")
        except InvalidAudienceError:
            logger.warning("Invalid ID token audience")
            raise IdentityVerificationError("Invalid token audience", error_code="invalid_audience")
        except PyJWKClientError as e:
            logger.error("JWKS client error", extra={"error": str(e)})
            raise IdentityVerificationError("Failed to fetch signing key", error_code="jwks_error")
        except InvalidTokenError as e:
            logger.warning("Invalid ID token", extra={"error": str(e)})
            raise IdentityVerificationError("Invalid token", error_code="invalid_token")

        email = normalize_email(claims.get("email"))
        if not email or "@" not in email:
            raise IdentityVerificationError("Token has no email claim", error_code="missing_email")
        if claims.get("email_verified") is False:
            raise IdentityVerificationError("Email is not verified", error_code="email_unverified")

        return VerifiedIdentity(
            email=email,
            subject_id=str(claims["sub"]),
            display_name=claims.get("name"),
        )

    # ------------------------------------------------------------------
    # Session artifacts
    # ------------------------------------------------------------------

    def create_session_artifact(self, token: str, ttl: timedelta) -> SessionArtifact:
        """
        Exchange a verified ID token for a session artifact.

        The ID token is verified again here so an artifact can never be minted
        from an unverified credential.
        """
        identity = self.verify(token)
        now = datetime.now(timezone.utc)
        expires_at = now + ttl
        session_id = str(uuid.uuid4())

        payload: Dict[str, Any] = {
            "iss": SESSION_ISSUER,
            "sub": identity.subject_id,
            "email": identity.email,
            "name": identity.display_name,
            "sid": session_id,
            "iat": int(now.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        encoded = jwt.encode(payload, self._session_secret, algorithm=SESSION_ALGORITHM)
        return SessionArtifact(token=encoded, session_id=session_id, expires_at=expires_at)

    def verify_session_artifact(self, artifact: str, check_revoked: bool = True) -> Principal:
        """
        Verify a session artifact and return its principal.

        Raises:
            IdentityVerificationError: If malformed, expired or revoked
        """
        if not artifact:
            raise IdentityVerificationError("Session is required", error_code="missing_session")

        try:
            claims = jwt.decode(
                artifact,
                self._session_secret,
                algorithms=[SESSION_ALGORITHM],
                issuer=SESSION_ISSUER,
                options={"require": ["sub", "email", "sid", "exp", "iat"]},
            )
        except ExpiredSignatureError:
            raise IdentityVerificationError("Session has expired", error_code="session_expired")
        except InvalidTokenError:
            raise IdentityVerificationError("Invalid session", error_code="invalid_session")

        session_id = claims["sid"]
        if check_revoked and self._token_service.is_revoked(session_id):
            raise IdentityVerificationError("Session has been revoked", error_code="session_revoked")

        return Principal(
            email=claims["email"],
            subject_id=str(claims["sub"]),
            display_name=claims.get("name"),
            session_id=session_id,
        )

    def revoke_session(self, session_id: str) -> None:
        self._token_service.revoke_session(session_id, RevocationReason.LOGOUT)
