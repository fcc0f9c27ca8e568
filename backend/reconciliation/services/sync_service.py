"""
Payment Sync Service

Imports bank transactions into the payments ledger:
- Negligible amounts (below 5, including all outgoing payments) are skipped
- The variable symbol is matched against members' payments_id
- Payments are upserted by ("fio", bank transaction id), so re-running the
  sync over an overlapping date range never duplicates a payment
- An existing payment is only rewritten when the sync finds a member that
  differs from the stored link; staff comments are preserved

Every transaction is committed on its own. A failing transaction is logged,
counted and rolled back without affecting the rest of the batch.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, Any, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bank_feed.fio_client import BankTransaction, parse_fio_date
from database.models import MemberDB, PaymentDB, PaymentKind
from reconciliation.errors import MalformedTransactionDate
from services.balance import NEGLIGIBLE_AMOUNT

logger = logging.getLogger(__name__)

LOCAL_ACCOUNT_FIO = "FIO"


@dataclass
class SyncResult:
    """Outcome of one sync run."""
    fetched: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    empty_identifier: List[BankTransaction] = field(default_factory=list)
    user_not_found: List[BankTransaction] = field(default_factory=list)

    @property
    def empty_identifier_total(self) -> Decimal:
        return sum((tx.amount for tx in self.empty_identifier), Decimal("0"))

    @property
    def user_not_found_total(self) -> Decimal:
        return sum((tx.amount for tx in self.user_not_found), Decimal("0"))

    @property
    def problematic_count(self) -> int:
        return len(self.empty_identifier) + len(self.user_not_found)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fetched": self.fetched,
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": self.errors,
            "empty_identifier": {
                "count": len(self.empty_identifier),
                "total": str(self.empty_identifier_total),
            },
            "user_not_found": {
                "count": len(self.user_not_found),
                "total": str(self.user_not_found_total),
            },
        }


class PaymentSyncService:
    """
    Reconciles bank transactions with the payments ledger.

    Usage:
        service = PaymentSyncService(db)
        result = await service.sync_transactions(transactions)
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def sync_transactions(self, transactions: List[BankTransaction]) -> SyncResult:
        """Process transactions in feed order."""
        result = SyncResult(fetched=len(transactions))

        for tx in transactions:
            try:
                problems = await self._sync_transaction(tx, result)
            except Exception as e:
                await self.db.rollback()
                result.errors += 1
                logger.error(
                    f"Failed to sync payment (bank id {tx.external_id}): {e}",
                    extra={"external_id": tx.external_id},
                    exc_info=True,
                )
            else:
                if problems is not None:
                    problems.append(tx)

        logger.info(
            f"Sync finished: {result.inserted} inserted, {result.updated} updated, "
            f"{result.skipped} skipped, {result.errors} errors",
            extra=result.to_dict(),
        )
        return result

    async def _sync_transaction(
        self, tx: BankTransaction, result: SyncResult
    ) -> Optional[List[BankTransaction]]:
        """
        Upsert one transaction. Returns the problem list the transaction
        belongs on (empty or unknown identifier), recorded by the caller once
        the write went through.
        """
        if tx.amount < NEGLIGIBLE_AMOUNT:
            result.skipped += 1
            return None

        if not tx.external_id:
            raise ValueError("Transaction has no bank id")

        member: Optional[MemberDB] = None
        problems: Optional[List[BankTransaction]] = None
        if tx.identifier:
            member = await self._member_by_identifier(tx.identifier)
            if member is None:
                logger.warning(
                    f"Member with payments_id '{tx.identifier}' not found "
                    f"({tx.amount} CZK from {tx.counterparty_name})"
                )
                problems = result.user_not_found
        else:
            logger.warning(f"Empty VS - {tx.amount} CZK from {tx.counterparty_name}")
            problems = result.empty_identifier

        payment_date = self._payment_date(tx)
        existing = await self._payment_by_source(PaymentKind.FIO.value, tx.external_id)

        if existing is None:
            payment = PaymentDB(
                kind=PaymentKind.FIO.value,
                kind_id=tx.external_id,
                date=payment_date,
                amount=tx.amount,
                local_account=LOCAL_ACCOUNT_FIO,
                remote_account=tx.remote_account,
                identification=member.payments_id if member else tx.identifier,
                member_id=member.id if member else None,
                raw_data=tx.to_dict(),
            )
            self.db.add(payment)
            await self.db.commit()
            result.inserted += 1
            logger.info(
                f"Inserted payment: {tx.amount} CZK from {tx.counterparty_name} "
                f"(VS: {tx.identifier}, bank id: {tx.external_id})"
            )
            return problems

        if member is not None and existing.member_id != member.id:
            existing.member_id = member.id
            existing.project_id = None
            existing.identification = member.payments_id
            existing.date = payment_date
            existing.amount = tx.amount
            existing.remote_account = tx.remote_account
            existing.raw_data = tx.to_dict()
            await self.db.commit()
            result.updated += 1
            logger.info(f"Updated payment: {tx.amount} CZK (bank id: {tx.external_id})")
            return problems

        result.skipped += 1
        return problems

    def _payment_date(self, tx: BankTransaction) -> date:
        try:
            return parse_fio_date(tx.date)
        except MalformedTransactionDate as e:
            logger.warning(f"{e}, using today's date", extra={"external_id": tx.external_id})
            return date.today()

    async def _member_by_identifier(self, identifier: str) -> Optional[MemberDB]:
        result = await self.db.execute(
            select(MemberDB).where(MemberDB.payments_id == identifier)
        )
        return result.scalar_one_or_none()

    async def _payment_by_source(self, kind: str, kind_id: str) -> Optional[PaymentDB]:
        result = await self.db.execute(
            select(PaymentDB).where(PaymentDB.kind == kind, PaymentDB.kind_id == kind_id)
        )
        return result.scalar_one_or_none()
