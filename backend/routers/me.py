"""
Member Self-Service API Router

Endpoints:
- GET /api/members/me - Own profile with balance, payments and fees
- PATCH /api/members/me - Edit contact details
- POST /api/members/me/custom-fee - Set a voluntary monthly fee (>= level amount)
- GET /api/members/me/qr - QR payment string for the amount currently due

The member record is created on the first authenticated request.
"""

import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from database.models import MemberDB
from middleware.auth import get_current_member
from reconciliation.errors import LedgerError
from routers.errors import ledger_http_exception
from services.members import MemberService, serialize_member

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/members/me", tags=["Member Profile"])


class UpdateProfileRequest(BaseModel):
    realname: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    altcontact: Optional[str] = Field(None, max_length=255)


class CustomFeeRequest(BaseModel):
    amount: Decimal = Field(..., max_digits=12, decimal_places=2)


@router.get("")
async def get_my_profile(
    member: MemberDB = Depends(get_current_member),
    db: AsyncSession = Depends(get_db)
):
    profile = await MemberService(db).profile(member)
    return {"success": True, **profile.to_dict()}


@router.patch("")
async def update_my_profile(
    request: UpdateProfileRequest,
    member: MemberDB = Depends(get_current_member),
    db: AsyncSession = Depends(get_db)
):
    member = await MemberService(db).update_profile(member, **request.model_dump(exclude_unset=True))
    return {"success": True, "member": serialize_member(member)}


@router.post("/custom-fee")
async def update_my_custom_fee(
    request: CustomFeeRequest,
    member: MemberDB = Depends(get_current_member),
    db: AsyncSession = Depends(get_db)
):
    try:
        member = await MemberService(db).update_custom_fee(member, request.amount)
    except LedgerError as e:
        raise ledger_http_exception(e)

    return {
        "success": True,
        "message": "Membership fee updated",
        "level_actual_amount": str(member.level_actual_amount),
    }


@router.get("/qr")
async def get_my_payment_qr(
    member: MemberDB = Depends(get_current_member),
    db: AsyncSession = Depends(get_db)
):
    """SPAYD payment string; null when the member has no VS or no bank account is configured."""
    profile = await MemberService(db).profile(member)
    return {
        "success": True,
        "payments_id": member.payments_id,
        "amount": str(profile.qr_amount),
        "spayd": profile.payment_qr,
    }
