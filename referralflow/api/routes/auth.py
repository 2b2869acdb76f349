"""
Session API Routes - sign in and sign out.

Provides endpoints for:
- Exchanging an identity provider ID token for a session cookie
- Ending the current session

SECURITY:
- A session is issued only to principals with at least one agency
  membership, or to the platform admin
- The cookie is HttpOnly, SameSite=Lax, and Secure in production
- Sessions last SESSION_TTL; there is no refresh endpoint
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field

from referralflow.api.dependencies import (
    get_config,
    get_session_service,
    get_membership_index,
    extract_session_artifact,
)
from referralflow.auth.session_service import SessionService
from referralflow.config.platform import PlatformConfig, SESSION_TTL
from referralflow.platform.errors import AuthenticationError
from referralflow.platform.tenant_context import get_scoped_tenant_id
from referralflow.services.membership_index import MembershipIndex

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


# --- Request/Response Models ---


class CreateSessionBody(BaseModel):
    """Request body for creating a session."""
    id_token: str = Field(..., min_length=1, description="Identity provider ID token")


class SessionAgency(BaseModel):
    id: str
    slug: str
    name: str


class CreateSessionResponse(BaseModel):
    """Response for a successful sign-in."""
    success: bool = True
    email: str
    expires_at: str
    routing_action: str
    tenant_id: Optional[str] = None
    tenant_slug: Optional[str] = None
    agencies: List[SessionAgency] = []


# --- API Endpoints ---


@router.post("/session", response_model=CreateSessionResponse)
async def create_session(
    request: Request,
    response: Response,
    body: CreateSessionBody,
    config: PlatformConfig = Depends(get_config),
    session_service: SessionService = Depends(get_session_service),
    membership_index: MembershipIndex = Depends(get_membership_index),
):
    """
    Sign in with an identity provider ID token.

    Returns 401 when the token is invalid or the principal belongs to no
    agency. On success sets the session cookie and tells the client where to
    land (stay, redirect, select).
    """
    scoped_tenant_id = get_scoped_tenant_id(request)
    result = session_service.create_session(body.id_token, scoped_tenant_id=scoped_tenant_id)
    if not result.success:
        raise AuthenticationError(result.error or "Unauthorized")

    principal = result.principal
    routing = membership_index.route_for(
        principal.email,
        scoped_tenant_id,
        is_admin=config.is_platform_admin(principal.email),
    )

    response.set_cookie(
        key=config.session_cookie_name,
        value=result.token,
        max_age=int(SESSION_TTL.total_seconds()),
        httponly=True,
        secure=config.is_production,
        samesite="lax",
        path="/",
    )

    return CreateSessionResponse(
        email=principal.email,
        expires_at=result.expires_at.isoformat(),
        routing_action=routing.action.value,
        tenant_id=routing.tenant_id,
        tenant_slug=routing.tenant_slug,
        agencies=[SessionAgency(id=t.id, slug=t.slug, name=t.name) for t in result.tenants],
    )


@router.delete("/session")
async def delete_session(
    request: Request,
    response: Response,
    config: PlatformConfig = Depends(get_config),
    session_service: SessionService = Depends(get_session_service),
):
    """Sign out: revoke the session and clear the cookie. Always succeeds."""
    artifact = extract_session_artifact(request, config)
    revoked = session_service.delete_session(artifact, scoped_tenant_id=get_scoped_tenant_id(request))
    response.delete_cookie(key=config.session_cookie_name, path="/")
    return {"success": True, "revoked": revoked}
