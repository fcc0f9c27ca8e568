"""
Admin Payments API Router

Endpoints:
- GET /api/admin/payments/unmatched - Triage report of unassigned payments
- POST /api/admin/payments/assign - Assign a payment to a member
- POST /api/admin/payments/update - Reassign to member / project / nobody
- POST /api/admin/payments/dismiss - Move a payment to the dismissed archive
- POST /api/admin/payments/undismiss - Restore a dismissed payment
- POST /api/admin/payments/manual - Record a payment received outside the bank feed

Security:
- All endpoints require the admin role
- Every mutation writes a system_logs entry (subsystem "admin")
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from database.models import MemberDB
from middleware.auth import AuthPrincipal, require_admin, get_admin_member
from reconciliation.assignment import build_target
from reconciliation.errors import LedgerError
from reconciliation.services.assignment_service import PaymentAssignmentService
from reconciliation.services.triage_service import PaymentTriageService, serialize_payment
from routers.errors import ledger_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/payments", tags=["Admin Payments"])


# ==================== REQUEST MODELS ====================

class AssignPaymentRequest(BaseModel):
    payment_id: int
    member_id: int
    staff_comment: str = ""


class UpdatePaymentRequest(BaseModel):
    """
    Reassign a payment.

    assign_type "member" needs member_id, "project" needs project_id,
    "unassigned" clears both links and stores identification as given.
    """
    payment_id: int
    assign_type: str = "unassigned"
    member_id: Optional[int] = None
    project_id: Optional[int] = None
    identification: str = ""
    staff_comment: str = ""
    message: str = ""


class DismissPaymentRequest(BaseModel):
    payment_id: int
    reason: str = ""


class UndismissPaymentRequest(BaseModel):
    payment_id: int


class ManualPaymentRequest(BaseModel):
    payment_date: date
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    identification: str = ""
    remote_account: str = ""
    staff_comment: str = ""


# ==================== ENDPOINTS ====================

@router.get("/unmatched")
async def list_unmatched_payments(
    principal: AuthPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """
    Unassigned payments grouped by reason plus the dismissed archive.

    Categories: empty_identifier, user_not_found, sync_bug.
    Payments carrying a project VS are not listed.
    """
    report = await PaymentTriageService(db).build_report()
    return {"success": True, **report.to_dict()}


@router.post("/assign")
async def assign_payment(
    request: AssignPaymentRequest,
    admin: MemberDB = Depends(get_admin_member),
    db: AsyncSession = Depends(get_db)
):
    """Link a payment to a member. The payment's VS becomes the member's payments_id."""
    service = PaymentAssignmentService(db)
    try:
        payment = await service.assign(
            payment_id=request.payment_id,
            member_id=request.member_id,
            staff_comment=request.staff_comment,
            admin=admin,
        )
    except LedgerError as e:
        raise ledger_http_exception(e)

    return {
        "success": True,
        "message": "Payment assigned successfully",
        "payment": serialize_payment(payment),
    }


@router.post("/update")
async def update_payment(
    request: UpdatePaymentRequest,
    admin: MemberDB = Depends(get_admin_member),
    db: AsyncSession = Depends(get_db)
):
    """Reassign a payment to a member, a project, or nobody."""
    service = PaymentAssignmentService(db)
    try:
        target = build_target(
            request.assign_type,
            member_id=request.member_id,
            project_id=request.project_id,
            identification=request.identification,
        )
        payment = await service.update(
            payment_id=request.payment_id,
            target=target,
            staff_comment=request.staff_comment,
            admin=admin,
            message=request.message,
        )
    except LedgerError as e:
        raise ledger_http_exception(e)

    return {
        "success": True,
        "message": "Payment updated successfully",
        "payment": serialize_payment(payment),
    }


@router.post("/dismiss")
async def dismiss_payment(
    request: DismissPaymentRequest,
    admin: MemberDB = Depends(get_admin_member),
    db: AsyncSession = Depends(get_db)
):
    """Archive a payment that needs no further action (refund, test transfer...)."""
    service = PaymentAssignmentService(db)
    try:
        payment = await service.dismiss(request.payment_id, request.reason, admin)
    except LedgerError as e:
        raise ledger_http_exception(e)

    return {
        "success": True,
        "message": "Payment dismissed successfully",
        "payment": serialize_payment(payment),
    }


@router.post("/undismiss")
async def undismiss_payment(
    request: UndismissPaymentRequest,
    admin: MemberDB = Depends(get_admin_member),
    db: AsyncSession = Depends(get_db)
):
    service = PaymentAssignmentService(db)
    try:
        payment = await service.undismiss(request.payment_id, admin)
    except LedgerError as e:
        raise ledger_http_exception(e)

    return {
        "success": True,
        "message": "Payment restored successfully",
        "payment": serialize_payment(payment),
    }


@router.post("/manual", status_code=status.HTTP_201_CREATED)
async def create_manual_payment(
    request: ManualPaymentRequest,
    admin: MemberDB = Depends(get_admin_member),
    db: AsyncSession = Depends(get_db)
):
    """
    Record a payment received outside the bank feed (cash, other account).

    The payment is linked by its VS: a member's payments_id links the member,
    a project VS links the project, anything else stays unassigned.
    """
    if request.payment_date > date.today():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Payment date cannot be in the future"
        )

    service = PaymentAssignmentService(db)
    try:
        payment = await service.create_manual(
            payment_date=request.payment_date,
            amount=request.amount,
            identification=request.identification,
            admin=admin,
            remote_account=request.remote_account,
            staff_comment=request.staff_comment,
        )
    except LedgerError as e:
        raise ledger_http_exception(e)

    return {
        "success": True,
        "message": "Payment recorded successfully",
        "payment": serialize_payment(payment),
    }
