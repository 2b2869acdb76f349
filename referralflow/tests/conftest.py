"""
Root test configuration and fixtures.

Provides:
- db_engine / db_session: in-memory SQLite with per-test rollback
- session_factory: extra sessions joined to the test transaction (background tasks)
- platform_config: test PlatformConfig with a configured platform admin
- audit_sink: RecordingAuditSink capturing every event
- rsa_keypair / make_id_token / identity_provider: locally signed ID tokens
- make_tenant: factory for agencies with access grants
"""

import os
import time
import uuid
from types import SimpleNamespace
from typing import Generator, Iterable, List, Optional
from unittest.mock import MagicMock

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Set test environment
os.environ.setdefault("ENV", "test")

from referralflow.auth.identity_provider import JWTIdentityProvider
from referralflow.auth.token_service import TokenService
from referralflow.config.platform import PlatformConfig
from referralflow.db_base import Base
from referralflow.models.tenant import Tenant, SubscriptionPlan, SubscriptionStatus
from referralflow.models.tenant_access_grant import TenantAccessGrant, GrantKind
from referralflow.platform.audit import AuditEvent

ADMIN_EMAIL = "admin@referralflow.health"
TEST_ISSUER = "https://id.referralflow.test"
TEST_AUDIENCE = "referralflow-test"


# =============================================================================
# Database
# =============================================================================

@pytest.fixture(scope="session")
def db_engine():
    """SQLite in-memory engine shared by the whole test session."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite: let SQLAlchemy emit BEGIN itself so SAVEPOINT works
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    # Import models so their tables are registered on Base
    from referralflow import models  # noqa: F401
    from referralflow.platform import audit  # noqa: F401 - Audit log model

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_connection(db_engine):
    """Connection holding the outer transaction that every test rolls back."""
    connection = db_engine.connect()
    transaction = connection.begin()

    yield connection

    transaction.rollback()
    connection.close()


@pytest.fixture
def session_factory(db_connection):
    """
    Session factory joined to the test's outer transaction.

    commit() and rollback() in code under test only release or roll back
    a SAVEPOINT, so the whole test still rolls back at the end.
    """
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=db_connection,
        join_transaction_mode="create_savepoint",
    )


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """
    Create database session with transaction rollback for test isolation.

    Each test gets a fresh session that rolls back after the test completes.
    """
    session = session_factory()

    yield session

    session.close()


# =============================================================================
# Configuration and audit
# =============================================================================

@pytest.fixture
def platform_config() -> PlatformConfig:
    return PlatformConfig(
        platform_admin_email=ADMIN_EMAIL,
        environment="test",
        session_secret="test-session-secret",
        id_token_issuer=TEST_ISSUER,
        id_token_audience=TEST_AUDIENCE,
        jwks_url=f"{TEST_ISSUER}/.well-known/jwks.json",
    )


@pytest.fixture
def production_config(platform_config) -> PlatformConfig:
    return PlatformConfig(
        platform_admin_email=ADMIN_EMAIL,
        environment="production",
        session_secret="test-session-secret",
        id_token_issuer=TEST_ISSUER,
        id_token_audience=TEST_AUDIENCE,
        jwks_url=f"{TEST_ISSUER}/.well-known/jwks.json",
    )


class RecordingAuditSink:
    """AuditSink that keeps events in memory."""

    def __init__(self):
        self.events: List[AuditEvent] = []

    def record(self, event: AuditEvent) -> None:
        self.events.append(event)

    def actions(self) -> List[str]:
        return [e.action.value for e in self.events]

    def of(self, action: str) -> List[AuditEvent]:
        return [e for e in self.events if e.action.value == action]


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


# =============================================================================
# Identity provider
# =============================================================================

@pytest.fixture(scope="session")
def rsa_keypair():
    """Generate RSA keypair for signing test ID tokens."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return {"private_key": private_key, "public_key": private_key.public_key()}


@pytest.fixture
def make_id_token(rsa_keypair):
    """Factory for RS256 ID tokens signed with the test key."""

    def _make(
        email: str,
        sub: Optional[str] = None,
        name: Optional[str] = None,
        issuer: str = TEST_ISSUER,
        audience: str = TEST_AUDIENCE,
        expires_in: int = 3600,
        **extra,
    ) -> str:
        now = int(time.time())
        claims = {
            "sub": sub or f"user_{uuid.uuid4().hex[:12]}",
            "iss": issuer,
            "aud": audience,
            "iat": now,
            "exp": now + expires_in,
            "email": email,
            **extra,
        }
        if name:
            claims["name"] = name
        return jwt.encode(
            claims,
            rsa_keypair["private_key"],
            algorithm="RS256",
            headers={"kid": "test-key"},
        )

    return _make


@pytest.fixture
def mock_jwks_client(rsa_keypair):
    client = MagicMock()
    client.get_signing_key_from_jwt.return_value = SimpleNamespace(key=rsa_keypair["public_key"])
    return client


@pytest.fixture
def token_service() -> TokenService:
    return TokenService()


@pytest.fixture
def identity_provider(platform_config, token_service, mock_jwks_client) -> JWTIdentityProvider:
    return JWTIdentityProvider(platform_config, token_service, jwks_client=mock_jwks_client)


# =============================================================================
# Tenants
# =============================================================================

def create_tenant(
    db: Session,
    tenant_id: str,
    name: Optional[str] = None,
    slug: Optional[str] = None,
    owner_email: Optional[str] = None,
    emails: Iterable[str] = (),
    domains: Iterable[str] = (),
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    plan: SubscriptionPlan = SubscriptionPlan.PRO,
    settings: Optional[dict] = None,
) -> Tenant:
    """Insert an agency with its access grants."""
    tenant = Tenant(
        id=tenant_id,
        slug=slug,
        name=name or f"Agency {tenant_id}",
        owner_email=owner_email,
        subscription_plan=plan,
        subscription_status=status,
        settings=settings,
    )
    for email in emails:
        tenant.access_grants.append(TenantAccessGrant(kind=GrantKind.EMAIL, value=email.lower()))
    for domain in domains:
        tenant.access_grants.append(TenantAccessGrant(kind=GrantKind.DOMAIN, value=domain.lower()))
    db.add(tenant)
    db.flush()
    return tenant


@pytest.fixture
def make_tenant(db_session):
    """Factory fixture: make_tenant("sunrise", emails=[...], domains=[...])."""

    def _make(tenant_id: str, **kwargs) -> Tenant:
        return create_tenant(db_session, tenant_id, **kwargs)

    return _make


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "security: mark test as security-focused")
