"""
Admin Agency API Routes - platform-admin agency management.

Provides endpoints for:
- Provisioning a new agency
- Changing an agency's slug
- Changing an agency's subscription

SECURITY:
- Platform admin only (checked in AgencySetupService)
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from referralflow.api.dependencies import get_agency_setup_service, require_principal
from referralflow.auth.principal import Principal
from referralflow.database.session import get_db_session
from referralflow.models.tenant import SubscriptionPlan, SubscriptionStatus
from referralflow.services.agency_setup_service import AgencySetupService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/agencies", tags=["admin-agencies"])


# --- Request Models ---


class ProvisionAgencyBody(BaseModel):
    slug: str = Field(..., description="Requested subdomain; becomes the agency id")
    name: str = Field(..., min_length=1, max_length=255)
    owner_email: str = Field(..., max_length=320)
    plan: SubscriptionPlan = SubscriptionPlan.PRO


class ChangeSlugBody(BaseModel):
    slug: str


class UpdateSubscriptionBody(BaseModel):
    plan: Optional[SubscriptionPlan] = None
    status: Optional[SubscriptionStatus] = None


# --- API Endpoints ---


@router.post("", status_code=status.HTTP_201_CREATED)
async def provision_agency(
    body: ProvisionAgencyBody,
    principal: Principal = Depends(require_principal),
    service: AgencySetupService = Depends(get_agency_setup_service),
    db: Session = Depends(get_db_session),
):
    """Create an agency. Returns 409 when the slug is taken."""
    tenant = service.provision_agency(principal, body.slug, body.name, body.owner_email, body.plan)
    db.commit()
    return {"success": True, "agency": tenant.to_dict()}


@router.patch("/{tenant_id}/slug")
async def change_slug(
    tenant_id: str,
    body: ChangeSlugBody,
    principal: Principal = Depends(require_principal),
    service: AgencySetupService = Depends(get_agency_setup_service),
    db: Session = Depends(get_db_session),
):
    """Change an agency's slug; its id stays the same."""
    tenant = service.change_slug(principal, tenant_id, body.slug)
    db.commit()
    return {"success": True, "agency": tenant.to_dict()}


@router.patch("/{tenant_id}/subscription")
async def update_subscription(
    tenant_id: str,
    body: UpdateSubscriptionBody,
    principal: Principal = Depends(require_principal),
    service: AgencySetupService = Depends(get_agency_setup_service),
    db: Session = Depends(get_db_session),
):
    """Set an agency's plan and/or subscription status."""
    tenant = service.update_subscription(principal, tenant_id, body.plan, body.status)
    db.commit()
    return {"success": True, "agency": tenant.to_dict()}
