"""
Public intake API Routes - no session required.

Provides endpoints for:
- Submitting a referral to the host's agency
- Looking up a referral's status by its exact id

SECURITY:
- The owning agency always comes from the request host, never the body
- Status lookups match one record by exact high-entropy id within the
  host's agency, and return only id, status and timestamps
- Suspended, cancelled and unknown agencies are refused identically
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from referralflow.api.dependencies import get_referral_access_service
from referralflow.database.session import get_db_session
from referralflow.platform.tenant_context import get_scoped_tenant_id
from referralflow.services.referral_access_service import ReferralAccessService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/public", tags=["public"])


class SubmitReferralBody(BaseModel):
    """Intake form. Extra fields are kept in the referral's form data."""
    model_config = {"extra": "allow"}

    referrer_name: str = Field(..., min_length=1, max_length=255)
    patient_name: str = Field(..., min_length=1, max_length=255)
    confirmation_email: Optional[str] = Field(None, max_length=320)


class SubmitReferralResponse(BaseModel):
    success: bool = True
    referral_id: str


@router.post("/referrals", response_model=SubmitReferralResponse, status_code=status.HTTP_201_CREATED)
async def submit_referral(
    request: Request,
    body: SubmitReferralBody,
    service: ReferralAccessService = Depends(get_referral_access_service),
    db: Session = Depends(get_db_session),
):
    """Submit a referral to the host's agency."""
    referral = service.submit_public_referral(get_scoped_tenant_id(request), body.model_dump())
    db.commit()
    return SubmitReferralResponse(referral_id=referral.id)


@router.get("/referrals/{referral_id}/status")
async def get_referral_status(
    request: Request,
    referral_id: str,
    service: ReferralAccessService = Depends(get_referral_access_service),
):
    """Status of one referral of the host's agency."""
    return service.lookup_public_status(get_scoped_tenant_id(request), referral_id)
