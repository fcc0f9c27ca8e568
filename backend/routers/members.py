"""
Admin Members API Router

Endpoints:
- GET /api/admin/members - Members with balances (state / balance / search filters)
- GET /api/admin/members/{member_id} - Member profile with payments and fees
- POST /api/admin/members/{member_id}/state - Change membership state
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from database.models import MemberDB
from email_integration import EmailSender
from middleware.auth import AuthPrincipal, require_admin, get_admin_member
from reconciliation.errors import LedgerError
from routers.errors import ledger_http_exception
from services.members import MemberService, serialize_member

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/members", tags=["Admin Members"])


class ChangeStateRequest(BaseModel):
    state: str
    reason: str = ""
    payments_id: Optional[str] = None


def get_notifier(db: AsyncSession = Depends(get_db)) -> EmailSender:
    return EmailSender(db=db)


@router.get("")
async def list_members(
    principal: AuthPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    state: Optional[str] = Query(None, description="awaiting, accepted, suspended, rejected, exmember"),
    balance: Optional[str] = Query(None, pattern="^(positive|negative)$"),
    search: Optional[str] = Query(None, description="Email or real name substring"),
    sort: Optional[str] = Query(None, pattern="^(id_asc|id_desc|balance_asc|balance_desc)$"),
):
    members = await MemberService(db).list_members(
        state=state,
        balance=balance,
        search=search,
        sort=sort,
    )
    return {"success": True, "members": members, "total": len(members)}


@router.get("/{member_id}")
async def get_member_profile(
    member_id: int,
    principal: AuthPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    service = MemberService(db)
    try:
        member = await service.get_member(member_id)
    except LedgerError as e:
        raise ledger_http_exception(e)

    profile = await service.profile(member)
    return {"success": True, "is_admin_view": True, **profile.to_dict()}


@router.post("/{member_id}/state")
async def change_member_state(
    member_id: int,
    request: ChangeStateRequest,
    admin: MemberDB = Depends(get_admin_member),
    db: AsyncSession = Depends(get_db),
    notifier: EmailSender = Depends(get_notifier),
):
    """
    Move a member to another state (awaiting, accepted, suspended, rejected, exmember).

    Accepting sends the welcome email, suspending sends the suspension notice.
    payments_id optionally assigns the member's VS in the same step.
    """
    try:
        member = await MemberService(db).change_state(
            member_id,
            request.state,
            admin,
            reason=request.reason,
            payments_id=request.payments_id,
            notifier=notifier,
        )
    except LedgerError as e:
        raise ledger_http_exception(e)

    return {"success": True, "member": serialize_member(member)}
