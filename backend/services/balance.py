"""
Balance Calculator

Balances are computed from the ledger on every read, never stored:
- member balance = payments linked to the member under the member's current
  payment identifier, minus all fees charged to the member
- project balance = distinct payments linked to the project or carrying one
  of its identifiers

A payment recorded under an identifier the member no longer holds stops
counting toward that member's balance.
"""

import logging
from decimal import Decimal
from typing import Dict, Iterable, Optional, Union

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import MemberDB, MembershipLevelDB, PaymentDB, FeeDB, ProjectIdentifierDB

logger = logging.getLogger(__name__)

# Payments below this amount are ignored by sync and triage
NEGLIGIBLE_AMOUNT = Decimal("5")

ZERO = Decimal("0")


def to_decimal(value: Union[Decimal, float, int, str, None]) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def effective_monthly_fee(member: MemberDB, level: Optional[MembershipLevelDB]) -> Decimal:
    """Custom amount when set, otherwise the level amount."""
    custom = to_decimal(member.level_actual_amount)
    if custom > 0:
        return custom
    return to_decimal(level.amount) if level is not None else ZERO


def exceeds_debt_threshold(balance: Decimal, monthly_fee: Decimal) -> bool:
    """True when the member owes more than two monthly fees."""
    return to_decimal(balance) < -(2 * to_decimal(monthly_fee))


async def member_payments_total(db: AsyncSession, member: MemberDB) -> Decimal:
    if not member.payments_id:
        return ZERO
    result = await db.execute(
        select(func.coalesce(func.sum(PaymentDB.amount), 0)).where(
            PaymentDB.member_id == member.id,
            PaymentDB.identification == member.payments_id,
        )
    )
    return to_decimal(result.scalar())


async def member_fees_total(db: AsyncSession, member_id: int) -> Decimal:
    result = await db.execute(
        select(func.coalesce(func.sum(FeeDB.amount), 0)).where(FeeDB.member_id == member_id)
    )
    return to_decimal(result.scalar())


async def member_balance(db: AsyncSession, member: MemberDB) -> Decimal:
    """Paid minus owed for one member."""
    paid = await member_payments_total(db, member)
    owed = await member_fees_total(db, member.id)
    return paid - owed


async def member_balances(db: AsyncSession, member_ids: Optional[Iterable[int]] = None) -> Dict[int, Decimal]:
    """
    Balances for many members in two aggregate queries.

    Args:
        member_ids: Restrict to these members (all members when None)

    Returns:
        member id -> balance
    """
    paid_query = (
        select(PaymentDB.member_id, func.sum(PaymentDB.amount))
        .join(MemberDB, MemberDB.id == PaymentDB.member_id)
        .where(PaymentDB.identification == MemberDB.payments_id)
        .group_by(PaymentDB.member_id)
    )
    owed_query = select(FeeDB.member_id, func.sum(FeeDB.amount)).group_by(FeeDB.member_id)
    members_query = select(MemberDB.id)

    if member_ids is not None:
        ids = list(member_ids)
        paid_query = paid_query.where(PaymentDB.member_id.in_(ids))
        owed_query = owed_query.where(FeeDB.member_id.in_(ids))
        members_query = members_query.where(MemberDB.id.in_(ids))

    balances = {row[0]: ZERO for row in (await db.execute(members_query)).all()}
    for member_id, total in (await db.execute(paid_query)).all():
        balances[member_id] = balances.get(member_id, ZERO) + to_decimal(total)
    for member_id, total in (await db.execute(owed_query)).all():
        balances[member_id] = balances.get(member_id, ZERO) - to_decimal(total)

    return balances


def project_payments_clause(project_id: int):
    """Payments belonging to a project: linked directly or by one of its identifiers."""
    identifiers = select(ProjectIdentifierDB.vs).where(ProjectIdentifierDB.project_id == project_id)
    return or_(
        PaymentDB.project_id == project_id,
        PaymentDB.identification.in_(identifiers),
    )


async def project_balance(db: AsyncSession, project_id: int) -> Decimal:
    """Sum of distinct payments belonging to the project."""
    distinct_payments = (
        select(PaymentDB.id, PaymentDB.amount)
        .where(project_payments_clause(project_id))
        .distinct()
        .subquery()
    )
    result = await db.execute(
        select(func.coalesce(func.sum(distinct_payments.c.amount), 0))
    )
    return to_decimal(result.scalar())
