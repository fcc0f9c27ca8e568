"""
Monthly Fee Service

Charges the monthly membership fee to every accepted member and warns
members whose debt exceeds two monthly fees.

Running the job twice for the same month is safe: existing fees are
skipped (and the (member, period_start) unique constraint backs this up).
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import MemberDB, MembershipLevelDB, FeeDB, MemberState, LogLevel
from services.audit import AuditLogger, AuditSubsystem
from services.balance import effective_monthly_fee, exceeds_debt_threshold, member_balance

logger = logging.getLogger(__name__)


def period_start_for(day: date) -> date:
    """First day of the month containing the given day."""
    return day.replace(day=1)


@dataclass
class FeeRunResult:
    period_start: date
    members: int = 0
    created: int = 0
    skipped: int = 0
    emails: int = 0
    errors: int = 0

    @property
    def period(self) -> str:
        return self.period_start.strftime("%Y-%m")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period": self.period,
            "created": self.created,
            "skipped": self.skipped,
            "emails": self.emails,
            "errors": self.errors,
        }


class MonthlyFeeService:
    """
    Usage:
        service = MonthlyFeeService(db, notifier=EmailSender(db=db))
        result = await service.create_monthly_fees()
    """

    def __init__(self, db: AsyncSession, notifier=None):
        self.db = db
        self.notifier = notifier
        self.audit = AuditLogger(db)

    async def create_monthly_fees(self, period_start: Optional[date] = None) -> FeeRunResult:
        """
        Create the fee for period_start (default: the current month) for all
        accepted members. Each member is committed on its own.
        """
        period_start = period_start_for(period_start or date.today())
        result = FeeRunResult(period_start=period_start)

        members = await self._accepted_members()
        result.members = len(members)
        logger.info(f"Creating fees for period {result.period} ({len(members)} accepted members)")

        for member_id, email in members:
            try:
                await self._charge_member(member_id, result)
            except Exception as e:
                await self.db.rollback()
                result.errors += 1
                logger.error(
                    f"Failed to create fee for {email}: {e}",
                    extra={"member_id": member_id, "period": result.period},
                    exc_info=True,
                )

        level = LogLevel.WARNING if result.errors else LogLevel.SUCCESS
        await self.audit.log(
            AuditSubsystem.CRON,
            f"Monthly fees created for {result.period}: {result.created} fees, "
            f"{result.emails} emails sent",
            level=level,
            metadata=result.to_dict(),
        )
        await self.db.commit()

        return result

    async def _accepted_members(self):
        query = (
            select(MemberDB.id, MemberDB.email)
            .where(MemberDB.state == MemberState.ACCEPTED.value)
            .order_by(MemberDB.id)
        )
        return list((await self.db.execute(query)).all())

    async def _charge_member(self, member_id: int, result: FeeRunResult) -> None:
        member = await self.db.get(MemberDB, member_id)
        level = await self.db.get(MembershipLevelDB, member.level_id)

        existing = await self.db.execute(
            select(FeeDB.id).where(
                FeeDB.member_id == member.id,
                FeeDB.period_start == result.period_start,
            )
        )
        if existing.scalar_one_or_none() is not None:
            logger.info(f"Skipping {member.email} - fee already exists for {result.period}")
            result.skipped += 1
            return

        monthly_fee = effective_monthly_fee(member, level)
        if member.level_actual_amount is None or member.level_actual_amount <= 0:
            logger.warning(f"Member {member.email} has no custom amount, using level default: {monthly_fee}")

        self.db.add(FeeDB(
            member_id=member.id,
            level_id=member.level_id,
            period_start=result.period_start,
            amount=monthly_fee,
        ))
        await self.db.commit()
        result.created += 1
        logger.info(f"Created fee for {member.email}: {monthly_fee} CZK")

        balance = await member_balance(self.db, member)
        if not exceeds_debt_threshold(balance, monthly_fee) or self.notifier is None:
            return

        try:
            email = await self.notifier.send_debt_warning(member, balance, monthly_fee)
            await self.db.commit()
        except Exception as e:
            logger.warning(f"Failed to send debt warning email to {member.email}: {e}")
            await self.db.rollback()
            return

        if email.success:
            result.emails += 1
            logger.info(f"Sent debt warning email to {member.email} (balance: {balance} CZK)")
        else:
            logger.warning(f"Debt warning email to {member.email} not sent: {email.error}")
