"""
Referral API Routes - staff access to referral records.

Provides endpoints for:
- Listing the host agency's referrals
- Reading one referral
- Updating a referral's status

SECURITY:
- Requires a session
- Every record is checked by RecordAuthorizer against its own tenant_id,
  regardless of which host the request arrived on
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from referralflow.api.dependencies import get_referral_access_service, require_principal
from referralflow.auth.principal import Principal
from referralflow.database.session import get_db_session
from referralflow.platform.tenant_context import get_scoped_tenant_id
from referralflow.services.referral_access_service import ReferralAccessService, staff_view

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/referrals", tags=["referrals"])


class UpdateStatusBody(BaseModel):
    status: str = Field(..., description="New referral status")
    note: Optional[str] = Field(None, max_length=2000, description="Optional note for the timeline")


class ReferralListResponse(BaseModel):
    referrals: List[Dict[str, Any]]
    total_count: int


@router.get("", response_model=ReferralListResponse)
async def list_referrals(
    request: Request,
    include_archived: bool = Query(False),
    principal: Principal = Depends(require_principal),
    service: ReferralAccessService = Depends(get_referral_access_service),
):
    """List referrals of the host's agency, newest first."""
    referrals = service.list_referrals(principal, get_scoped_tenant_id(request), include_archived)
    return ReferralListResponse(
        referrals=[staff_view(r) for r in referrals],
        total_count=len(referrals),
    )


@router.get("/{referral_id}")
async def get_referral(
    referral_id: str,
    principal: Principal = Depends(require_principal),
    service: ReferralAccessService = Depends(get_referral_access_service),
):
    """Read one referral."""
    return staff_view(service.get_referral(principal, referral_id))


@router.patch("/{referral_id}/status")
async def update_referral_status(
    referral_id: str,
    body: UpdateStatusBody,
    principal: Principal = Depends(require_principal),
    service: ReferralAccessService = Depends(get_referral_access_service),
    db: Session = Depends(get_db_session),
):
    """Move a referral to a new status."""
    referral = service.update_status(principal, referral_id, body.status, body.note)
    db.commit()
    logger.info(
        "Referral status updated",
        extra={"referral_id": referral.id, "tenant_id": referral.tenant_id, "status": referral.status.value},
    )
    return staff_view(referral)
