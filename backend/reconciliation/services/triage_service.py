"""
Unmatched Payment Triage

Classifies incoming payments that are not linked to any member so an
administrator can act on them. Considered: no member link, no project link,
not dismissed, amount of at least 5.

Classification, first match wins:
1. empty_identifier - the payment carries no variable symbol
2. (excluded)       - the symbol belongs to a project
3. user_not_found   - no member holds the symbol
4. sync_bug         - a member holds the symbol but the payment is not linked;
                      the sync should never produce this, so it is logged at ERROR

The report also carries the dismissed archive: dismissed payments of at
least 5 whose symbol does not belong to a project.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, Any, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import MemberDB, PaymentDB, ProjectIdentifierDB
from services.balance import NEGLIGIBLE_AMOUNT

logger = logging.getLogger(__name__)


class TriageCategory(str, Enum):
    EMPTY_IDENTIFIER = "empty_identifier"
    USER_NOT_FOUND = "user_not_found"
    SYNC_BUG = "sync_bug"


CATEGORY_REASONS = {
    TriageCategory.EMPTY_IDENTIFIER: "Empty variable symbol",
    TriageCategory.USER_NOT_FOUND: "No member with this payments_id exists",
    TriageCategory.SYNC_BUG: "Member with this payments_id exists but payment not assigned (sync issue)",
}


def serialize_payment(payment: PaymentDB) -> Dict[str, Any]:
    return {
        "id": payment.id,
        "kind": payment.kind,
        "kind_id": payment.kind_id,
        "date": payment.date.isoformat() if payment.date else None,
        "amount": str(payment.amount),
        "local_account": payment.local_account,
        "remote_account": payment.remote_account,
        "identification": payment.identification,
        "member_id": payment.member_id,
        "project_id": payment.project_id,
        "staff_comment": payment.staff_comment,
        "raw_data": payment.raw_data or {},
        "dismissed_at": payment.dismissed_at.isoformat() if payment.dismissed_at else None,
        "dismissed_by": payment.dismissed_by,
        "dismissed_reason": payment.dismissed_reason,
    }


@dataclass
class TriageItem:
    payment: PaymentDB
    category: TriageCategory
    member_id: Optional[int] = None  # owner of the symbol, sync_bug only

    @property
    def reason(self) -> str:
        return CATEGORY_REASONS[self.category]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payment": serialize_payment(self.payment),
            "category": self.category.value,
            "reason": self.reason,
            "user_exists": self.category == TriageCategory.SYNC_BUG,
            "matching_member_id": self.member_id,
        }


@dataclass
class TriageReport:
    items: List[TriageItem] = field(default_factory=list)
    dismissed: List[PaymentDB] = field(default_factory=list)

    def count(self, category: TriageCategory) -> int:
        return sum(1 for item in self.items if item.category == category)

    @property
    def counts(self) -> Dict[str, int]:
        return {category.value: self.count(category) for category in TriageCategory}

    @property
    def total_amount(self) -> Decimal:
        return sum((item.payment.amount for item in self.items), Decimal("0"))

    @property
    def dismissed_total(self) -> Decimal:
        return sum((p.amount for p in self.dismissed), Decimal("0"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "total_count": len(self.items),
            "counts": self.counts,
            "total_amount": str(self.total_amount),
            "dismissed": [serialize_payment(p) for p in self.dismissed],
            "dismissed_count": len(self.dismissed),
            "dismissed_total": str(self.dismissed_total),
        }


class PaymentTriageService:
    """Builds the unmatched-payment report for the admin UI and the cron report."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def build_report(self) -> TriageReport:
        project_identifiers = await self._project_identifiers()
        member_by_identifier = await self._member_identifiers()

        report = TriageReport()

        for payment in await self._unassigned_payments():
            identification = (payment.identification or "").strip()

            if not identification:
                report.items.append(TriageItem(payment, TriageCategory.EMPTY_IDENTIFIER))
                continue

            if identification in project_identifiers:
                continue

            member_id = member_by_identifier.get(identification)
            if member_id is None:
                report.items.append(TriageItem(payment, TriageCategory.USER_NOT_FOUND))
                continue

            logger.error(
                f"Payment #{payment.id} carries VS '{identification}' of member #{member_id} "
                f"but is not linked to it",
                extra={"payment_id": payment.id, "member_id": member_id, "identification": identification},
            )
            report.items.append(TriageItem(payment, TriageCategory.SYNC_BUG, member_id=member_id))

        for payment in await self._dismissed_payments():
            if payment.project_id is not None:
                continue
            if payment.identification and payment.identification in project_identifiers:
                continue
            report.dismissed.append(payment)

        return report

    async def _unassigned_payments(self) -> List[PaymentDB]:
        result = await self.db.execute(
            select(PaymentDB)
            .where(
                PaymentDB.member_id.is_(None),
                PaymentDB.project_id.is_(None),
                PaymentDB.dismissed_at.is_(None),
                PaymentDB.amount >= NEGLIGIBLE_AMOUNT,
            )
            .order_by(PaymentDB.date.desc(), PaymentDB.id.desc())
        )
        return list(result.scalars().all())

    async def _dismissed_payments(self) -> List[PaymentDB]:
        result = await self.db.execute(
            select(PaymentDB)
            .where(
                PaymentDB.dismissed_at.is_not(None),
                PaymentDB.amount >= NEGLIGIBLE_AMOUNT,
            )
            .order_by(PaymentDB.dismissed_at.desc(), PaymentDB.id.desc())
        )
        return list(result.scalars().all())

    async def _project_identifiers(self) -> set:
        result = await self.db.execute(select(ProjectIdentifierDB.vs))
        return set(result.scalars().all())

    async def _member_identifiers(self) -> Dict[str, int]:
        result = await self.db.execute(
            select(MemberDB.payments_id, MemberDB.id).where(MemberDB.payments_id.is_not(None))
        )
        return {vs: member_id for vs, member_id in result.all() if vs}
