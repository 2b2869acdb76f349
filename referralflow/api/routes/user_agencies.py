"""
User Agencies API Routes - which agencies can the signed-in user open?

Used after sign-in and by the agency switcher to decide whether to stay on
the current subdomain, redirect to the user's only agency, or show a picker.

SECURITY:
- Requires a session
- Memberships are computed from the session email on every call
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from referralflow.api.dependencies import get_config, get_membership_index, require_principal
from referralflow.auth.principal import Principal
from referralflow.config.platform import PlatformConfig
from referralflow.platform.tenant_context import get_scoped_tenant_id
from referralflow.services.membership_index import MembershipIndex

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/user", tags=["user-agencies"])


class UserAgency(BaseModel):
    id: str
    slug: str
    name: str


class UserAgenciesResponse(BaseModel):
    email: str
    is_platform_admin: bool
    action: str
    tenant_id: Optional[str] = None
    tenant_slug: Optional[str] = None
    agencies: List[UserAgency]


@router.get("/agencies", response_model=UserAgenciesResponse)
async def list_user_agencies(
    request: Request,
    principal: Principal = Depends(require_principal),
    config: PlatformConfig = Depends(get_config),
    membership_index: MembershipIndex = Depends(get_membership_index),
):
    """List the caller's agencies with a routing decision for the current host."""
    is_admin = config.is_platform_admin(principal.email)
    routing = membership_index.route_for(principal.email, get_scoped_tenant_id(request), is_admin=is_admin)

    return UserAgenciesResponse(
        email=principal.email,
        is_platform_admin=is_admin,
        action=routing.action.value,
        tenant_id=routing.tenant_id,
        tenant_slug=routing.tenant_slug,
        agencies=[UserAgency(id=t.id, slug=t.slug, name=t.name) for t in routing.tenants],
    )
