"""
Agency API Routes - public profile and settings of the host's agency.

Provides endpoints for:
- Public agency profile used to render the intake form (no session)
- Reading full settings (members only)
- Updating settings and access lists (members only)

The agency is ALWAYS the one scoped from the request host. There is no
tenant id parameter a client could tamper with.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from referralflow.api.dependencies import (
    get_tenant_directory,
    get_tenant_settings_service,
    require_principal,
)
from referralflow.auth.principal import Principal
from referralflow.database.session import get_db_session
from referralflow.platform.tenant_context import get_scoped_tenant_id
from referralflow.services.tenant_directory import TenantDirectory, TenantRecord
from referralflow.services.tenant_settings_service import TenantSettingsService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tenant", tags=["tenant"])


# --- Request/Response Models ---


class UpdateSettingsBody(BaseModel):
    """Partial settings update. Omitted fields are left unchanged."""
    company_profile: Optional[Dict[str, Any]] = None
    branding: Optional[Dict[str, Any]] = None
    notifications: Optional[Dict[str, Any]] = None
    configuration: Optional[Dict[str, Any]] = None
    authorized_emails: Optional[List[str]] = Field(None, description="Replaces the authorized email list")
    authorized_domains: Optional[List[str]] = Field(None, description="Replaces the authorized domain list")


class TenantSettingsResponse(BaseModel):
    id: str
    slug: str
    name: str
    subscription_plan: str
    subscription_status: str
    owner_email: Optional[str] = None
    authorized_emails: List[str]
    authorized_domains: List[str]
    settings: Dict[str, Any]


def _settings_response(tenant: TenantRecord) -> TenantSettingsResponse:
    return TenantSettingsResponse(
        id=tenant.id,
        slug=tenant.slug,
        name=tenant.name,
        subscription_plan=tenant.subscription_plan.value,
        subscription_status=tenant.subscription_status.value,
        owner_email=tenant.owner_email,
        authorized_emails=tenant.authorized_emails,
        authorized_domains=tenant.authorized_domains,
        settings=tenant.settings,
    )


# --- API Endpoints ---


@router.get("")
async def get_public_profile(
    request: Request,
    directory: TenantDirectory = Depends(get_tenant_directory),
):
    """Public profile of the host's agency (placeholder when unknown)."""
    return directory.resolve_tenant(get_scoped_tenant_id(request)).to_public_dict()


@router.get("/settings", response_model=TenantSettingsResponse)
async def get_settings(
    request: Request,
    principal: Principal = Depends(require_principal),
    service: TenantSettingsService = Depends(get_tenant_settings_service),
):
    """Full settings of the host's agency. Members and platform admin only."""
    tenant = service.get_settings(principal, get_scoped_tenant_id(request))
    return _settings_response(tenant)


@router.patch("/settings", response_model=TenantSettingsResponse)
async def update_settings(
    request: Request,
    body: UpdateSettingsBody,
    principal: Principal = Depends(require_principal),
    service: TenantSettingsService = Depends(get_tenant_settings_service),
    db: Session = Depends(get_db_session),
):
    """Update settings sections and/or access lists of the host's agency."""
    sections = {
        name: values
        for name, values in body.model_dump(
            exclude_none=True,
            exclude={"authorized_emails", "authorized_domains"},
        ).items()
    }
    tenant = service.update_settings(
        principal,
        get_scoped_tenant_id(request),
        sections=sections,
        authorized_emails=body.authorized_emails,
        authorized_domains=body.authorized_domains,
    )
    db.commit()
    return _settings_response(tenant)
