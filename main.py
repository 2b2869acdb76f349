"""
FastAPI application entry point for ReferralFlow.

Every request is scoped to an agency by TenantScopeMiddleware (from the
X-Agency-Id edge header or the Host header). Scoping never grants access:
session-bearing routes authorize each record against the caller's
memberships.
"""

import os
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from referralflow.api.routes import health
from referralflow.api.routes import auth
from referralflow.api.routes import user_agencies
from referralflow.api.routes import tenants
from referralflow.api.routes import referrals
from referralflow.api.routes import public
from referralflow.api.routes import admin_agencies
from referralflow.auth.identity_provider import JWTIdentityProvider
from referralflow.auth.token_service import get_token_service
from referralflow.config.platform import get_platform_config
from referralflow.database.session import get_session_factory
from referralflow.platform.audit import BackgroundAuditSink
from referralflow.platform.background import BackgroundDispatcher
from referralflow.platform.errors import register_error_handlers
from referralflow.platform.tenant_context import TenantScopeMiddleware

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def _probe_jwks(jwks_url: str) -> None:
    """Log whether the identity provider JWKS endpoint is reachable. Never blocks startup."""
    try:
        async with httpx.AsyncClient(timeout=5) as client:
            resp = await client.get(jwks_url)
        if resp.status_code == 200:
            logger.info(
                "JWKS probe: reachable",
                extra={"url": jwks_url, "key_count": len(resp.json().get("keys", []))},
            )
        else:
            logger.warning("JWKS probe: unexpected status", extra={"url": jwks_url, "status": resp.status_code})
    except Exception as e:
        logger.warning("JWKS probe: unreachable", extra={"url": jwks_url, "error": f"{type(e).__name__}: {e}"})


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting ReferralFlow API")
    config = get_platform_config()

    app.state.identity_provider = JWTIdentityProvider(config, get_token_service())
    if config.jwks_url:
        await _probe_jwks(config.jwks_url)
    else:
        logger.warning("Identity provider not configured (ID_TOKEN_ISSUER unset). Sign-in will fail.")

    if not config.platform_admin_email:
        logger.warning("PLATFORM_ADMIN_EMAIL is not set. No principal can provision agencies.")

    database_url = os.getenv("DATABASE_URL")
    app.state.database_configured = bool(database_url)
    dispatcher = None
    if not database_url:
        logger.error("DATABASE_URL is not set. Database-backed endpoints will return 503.")
    else:
        masked = database_url.split("@")[-1] if "@" in database_url else "(no @ found)"
        logger.info("DATABASE_URL configured", extra={"host_db": masked})
        dispatcher = BackgroundDispatcher(get_session_factory())
        dispatcher.start()
        app.state.dispatcher = dispatcher
        app.state.audit_sink = BackgroundAuditSink(dispatcher)

    yield

    logger.info("Shutting down ReferralFlow API")
    if dispatcher is not None:
        dispatcher.stop()


# Create FastAPI app
app = FastAPI(
    title="ReferralFlow API",
    description="Multi-agency referral intake with per-agency isolation",
    version="1.0.0",
    lifespan=lifespan,
)

register_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(get_platform_config().allowed_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# CRITICAL: every request is scoped to the agency of its host
app.middleware("http")(TenantScopeMiddleware(get_platform_config()))

# Health check (no session)
app.include_router(health.router)

# Sign in / sign out
app.include_router(auth.router)

# Agency routing for the signed-in user
app.include_router(user_agencies.router)

# Host agency profile and settings
app.include_router(tenants.router)

# Staff referral access (session + record authorization)
app.include_router(referrals.router)

# Public intake and status lookup (no session)
app.include_router(public.router)

# Platform admin agency management
app.include_router(admin_agencies.router)
