"""
Platform configuration value object.

All environment-derived settings are read ONCE into PlatformConfig and the
resulting object is passed explicitly into the services that need it
(SessionService, RecordAuthorizer, TenantDirectory). Business logic must not
read os.environ directly.

Environment variables:
    ENV                         development | test | production
    PLATFORM_ADMIN_EMAIL        the single platform-admin identity
    ROOT_DOMAINS                comma-separated apex hosts that map to the root tenant
    SESSION_SECRET              HMAC key for session artifacts
    SESSION_COOKIE_NAME         defaults to "session"
    ID_TOKEN_ISSUER             expected "iss" of identity provider ID tokens
    ID_TOKEN_AUDIENCE           expected "aud" of identity provider ID tokens
    ID_TOKEN_JWKS_URL           JWKS endpoint (defaults to <issuer>/.well-known/jwks.json)
    MEMBERSHIP_FAILURE_POLICY   partial | fail_closed
    ALLOWED_ORIGINS             comma-separated CORS origins

Usage:
    from referralflow.config.platform import get_platform_config

    config = get_platform_config()
    if config.is_platform_admin(principal.email):
        ...
"""

import os
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from threading import Lock
from typing import Optional, Tuple

from referralflow.constants.email_domains import normalize_email

logger = logging.getLogger(__name__)

# Session artifacts expire after this long; re-authentication is required
# afterwards (there is no refresh transition).
SESSION_TTL = timedelta(minutes=5)

DEFAULT_ROOT_DOMAINS: Tuple[str, ...] = (
    "localhost",
    "referralflow.health",
    "www.referralflow.health",
)

_DEV_SESSION_SECRET = "dev-session-secret-change-in-production"


class MembershipFailurePolicy(str, Enum):
    """What membership computation returns when one of its queries fails."""
    PARTIAL = "partial"          # Keep memberships from the queries that succeeded
    FAIL_CLOSED = "fail_closed"  # Return no memberships at all


def _split_csv(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return ()
    return tuple(part.strip().lower() for part in value.split(",") if part.strip())


@dataclass(frozen=True)
class PlatformConfig:
    """Immutable platform settings injected into the tenancy services."""

    platform_admin_email: Optional[str] = None
    environment: str = "development"
    root_domains: Tuple[str, ...] = DEFAULT_ROOT_DOMAINS
    session_secret: str = _DEV_SESSION_SECRET
    session_cookie_name: str = "session"
    id_token_issuer: Optional[str] = None
    id_token_audience: Optional[str] = None
    jwks_url: Optional[str] = None
    membership_failure_policy: MembershipFailurePolicy = MembershipFailurePolicy.PARTIAL
    allowed_origins: Tuple[str, ...] = field(default_factory=lambda: ("http://localhost:3000",))

    def __post_init__(self):
        # Normalize once so every comparison is case-insensitive
        object.__setattr__(
            self,
            "platform_admin_email",
            normalize_email(self.platform_admin_email) or None,
        )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def is_platform_admin(self, email: Optional[str]) -> bool:
        """Check whether an email is the configured platform admin."""
        if not self.platform_admin_email:
            return False
        return normalize_email(email) == self.platform_admin_email

    @classmethod
    def from_env(cls) -> "PlatformConfig":
        """Build configuration from process environment."""
        environment = os.getenv("ENV", "development").strip().lower()

        session_secret = os.getenv("SESSION_SECRET")
        if not session_secret:
            if environment == "production":
                raise ValueError("SESSION_SECRET environment variable is required in production")
            session_secret = _DEV_SESSION_SECRET

        policy_raw = os.getenv("MEMBERSHIP_FAILURE_POLICY", MembershipFailurePolicy.PARTIAL.value)
        try:
            policy = MembershipFailurePolicy(policy_raw.strip().lower())
        except ValueError:
            logger.warning(
                "Unknown membership failure policy, using partial",
                extra={"value": policy_raw},
            )
            policy = MembershipFailurePolicy.PARTIAL

        issuer = os.getenv("ID_TOKEN_ISSUER")
        jwks_url = os.getenv("ID_TOKEN_JWKS_URL")
        if not jwks_url and issuer:
            jwks_url = f"{issuer.rstrip('/')}/.well-known/jwks.json"

        return cls(
            platform_admin_email=os.getenv("PLATFORM_ADMIN_EMAIL"),
            environment=environment,
            root_domains=_split_csv(os.getenv("ROOT_DOMAINS")) or DEFAULT_ROOT_DOMAINS,
            session_secret=session_secret,
            session_cookie_name=os.getenv("SESSION_COOKIE_NAME", "session"),
            id_token_issuer=issuer,
            id_token_audience=os.getenv("ID_TOKEN_AUDIENCE"),
            jwks_url=jwks_url,
            membership_failure_policy=policy,
            allowed_origins=_split_csv(os.getenv("ALLOWED_ORIGINS")) or ("http://localhost:3000",),
        )


# Singleton config instance (lazy initialization)
_config_instance: Optional[PlatformConfig] = None
_config_lock = Lock()


def get_platform_config() -> PlatformConfig:
    """
    Get the process-wide PlatformConfig.

    Raises:
        ValueError: If configuration is invalid for the environment
    """
    global _config_instance

    with _config_lock:
        if _config_instance is None:
            _config_instance = PlatformConfig.from_env()
            logger.info(
                "Platform configuration loaded",
                extra={
                    "environment": _config_instance.environment,
                    "admin_configured": _config_instance.platform_admin_email is not None,
                    "membership_failure_policy": _config_instance.membership_failure_policy.value,
                },
            )
        return _config_instance


def reset_platform_config() -> None:
    """Drop the cached configuration (tests and reloads)."""
    global _config_instance
    with _config_lock:
        _config_instance = None
