"""
Member Service

Member records behind the SSO principals:
- get_or_create_for_principal: resolve the member on every authenticated request
- list_members: admin listing with balances, filters and sorting
- profile: balance, level, payments, fees and the QR payment descriptor
- update_profile / update_custom_fee: self-service edits
- change_state: admin membership state transitions (with notification)

Members are never deleted; leaving the organization is a state change.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, Any, List

from sqlalchemy import select, or_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import (
    MemberDB, MembershipLevelDB, PaymentDB, FeeDB, ProjectIdentifierDB,
    MemberState, LogLevel,
)
from qrpay import PaymentQRService
from reconciliation.errors import LookupNotFound, InvalidAssignment, PersistenceConflict
from reconciliation.services.triage_service import serialize_payment
from services.audit import AuditLogger, AuditSubsystem
from services.balance import (
    NEGLIGIBLE_AMOUNT, ZERO, to_decimal, member_balance, member_balances, effective_monthly_fee
)

logger = logging.getLogger(__name__)

DEFAULT_LEVEL_ID = 1
PROFILE_FIELDS = ("realname", "phone", "altcontact")
QR_MESSAGE = "CLENSKY PRISPEVEK BASE48"

MEMBER_SORTS = ("id_asc", "id_desc", "balance_asc", "balance_desc")


def serialize_member(member: MemberDB, balance: Optional[Decimal] = None) -> Dict[str, Any]:
    data = {
        "id": member.id,
        "email": member.email,
        "username": member.username,
        "realname": member.realname,
        "phone": member.phone,
        "altcontact": member.altcontact,
        "level_id": member.level_id,
        "level_actual_amount": str(to_decimal(member.level_actual_amount)),
        "payments_id": member.payments_id,
        "state": member.state,
        "external_id": member.external_id,
        "is_council": member.is_council,
        "is_staff": member.is_staff,
        "created_at": member.created_at.isoformat() if member.created_at else None,
    }
    if balance is not None:
        data["balance"] = str(balance)
    return data


def serialize_fee(fee: FeeDB) -> Dict[str, Any]:
    return {
        "id": fee.id,
        "level_id": fee.level_id,
        "period_start": fee.period_start.isoformat(),
        "amount": str(fee.amount),
    }


@dataclass
class MemberProfile:
    """Everything the profile page shows for one member."""
    member: MemberDB
    level: Optional[MembershipLevelDB]
    balance: Decimal
    monthly_fee: Decimal
    payments: List[PaymentDB] = field(default_factory=list)
    fees: List[FeeDB] = field(default_factory=list)
    total_paid: Decimal = ZERO
    qr_amount: Decimal = ZERO
    payment_qr: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "member": serialize_member(self.member),
            "level": {
                "id": self.level.id,
                "name": self.level.name,
                "amount": str(self.level.amount),
            } if self.level else None,
            "balance": str(self.balance),
            "monthly_fee": str(self.monthly_fee),
            "payments": [serialize_payment(p) for p in self.payments],
            "fees": [serialize_fee(f) for f in self.fees],
            "total_paid": str(self.total_paid),
            "qr_amount": str(self.qr_amount),
            "payment_qr": self.payment_qr,
        }


class MemberService:
    """
    Member lookups and membership changes.

    Usage:
        service = MemberService(db)
        member = await service.get_or_create_for_principal(principal)
    """

    def __init__(self, db: AsyncSession, qr_service: Optional[PaymentQRService] = None):
        self.db = db
        self.audit = AuditLogger(db)
        self.qr_service = qr_service or PaymentQRService()

    # ==================== IDENTITY ====================

    async def get_or_create_for_principal(self, principal) -> MemberDB:
        """
        Member for an authenticated principal.

        Lookup order:
        1. external_id == principal.subject
        2. email == principal.email; the subject is linked to the record
        3. otherwise a new member in state "awaiting" is created

        Raises:
            InvalidAssignment: no member matches and the principal has no email
        """
        result = await self.db.execute(
            select(MemberDB).where(MemberDB.external_id == principal.subject)
        )
        member = result.scalar_one_or_none()
        if member is not None:
            if self._sync_username(member, principal.username):
                await self.db.commit()
            return member

        if principal.email:
            result = await self.db.execute(select(MemberDB).where(MemberDB.email == principal.email))
            member = result.scalar_one_or_none()
            if member is not None:
                member.external_id = principal.subject
                self._sync_username(member, principal.username)
                await self.audit.log(
                    AuditSubsystem.KEYCLOAK,
                    f"Keycloak ID associated: {principal.email}",
                    level=LogLevel.SUCCESS,
                    member_id=member.id,
                    metadata={"keycloak_id": principal.subject, "email": principal.email},
                )
                await self.db.commit()
                return member

        if not principal.email:
            raise InvalidAssignment("Cannot register a member without an email address")

        member = MemberDB(
            external_id=principal.subject,
            email=principal.email,
            username=principal.username or None,
            realname=principal.name or None,
            level_id=DEFAULT_LEVEL_ID,
            level_actual_amount=ZERO,
            state=MemberState.AWAITING.value,
        )
        self.db.add(member)
        await self.db.flush()

        await self.audit.log(
            AuditSubsystem.AUTH,
            f"New user registered: {principal.email}",
            member_id=member.id,
            metadata={"keycloak_id": principal.subject, "email": principal.email},
        )
        await self.db.commit()
        await self.db.refresh(member)
        return member

    def _sync_username(self, member: MemberDB, username: str) -> bool:
        if username and member.username != username:
            member.username = username
            return True
        return False

    # ==================== LOOKUPS ====================

    async def get_member(self, member_id: int) -> MemberDB:
        member = await self.db.get(MemberDB, member_id)
        if member is None:
            raise LookupNotFound("Member not found")
        return member

    async def get_level(self, level_id: int) -> Optional[MembershipLevelDB]:
        return await self.db.get(MembershipLevelDB, level_id)

    async def monthly_fee(self, member: MemberDB) -> Decimal:
        return effective_monthly_fee(member, await self.get_level(member.level_id))

    async def list_members(
        self,
        state: Optional[str] = None,
        balance: Optional[str] = None,
        search: Optional[str] = None,
        sort: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Members with their balances.

        Args:
            state: Only members in this state
            balance: "positive" (>= 0) or "negative" (< 0)
            search: Case-insensitive substring of email or real name
            sort: id_asc, id_desc, balance_asc or balance_desc (default id_desc)
        """
        query = select(MemberDB)
        if state:
            query = query.where(MemberDB.state == state)
        if search:
            pattern = f"%{search.lower()}%"
            query = query.where(or_(
                func.lower(MemberDB.email).like(pattern),
                func.lower(MemberDB.realname).like(pattern),
            ))

        members = list((await self.db.execute(query)).scalars().all())
        balances = await member_balances(self.db, [m.id for m in members]) if members else {}

        items = [(m, balances.get(m.id, ZERO)) for m in members]
        if balance == "positive":
            items = [(m, b) for m, b in items if b >= 0]
        elif balance == "negative":
            items = [(m, b) for m, b in items if b < 0]

        if sort == "id_asc":
            items.sort(key=lambda item: item[0].id)
        elif sort == "balance_asc":
            items.sort(key=lambda item: (item[1], item[0].id))
        elif sort == "balance_desc":
            items.sort(key=lambda item: (-item[1], item[0].id))
        else:
            items.sort(key=lambda item: item[0].id, reverse=True)

        return [serialize_member(m, b) for m, b in items]

    # ==================== PROFILE ====================

    async def profile(self, member: MemberDB) -> MemberProfile:
        """
        Profile data for the member (own profile or admin view).

        The payment list hides amounts below 5 (bank interest and similar);
        total_paid still counts every linked payment.
        """
        level = await self.get_level(member.level_id)
        balance = await member_balance(self.db, member)

        payments = list((await self.db.execute(
            select(PaymentDB)
            .where(PaymentDB.member_id == member.id)
            .order_by(PaymentDB.date.desc(), PaymentDB.id.desc())
        )).scalars().all())
        fees = list((await self.db.execute(
            select(FeeDB).where(FeeDB.member_id == member.id).order_by(FeeDB.period_start.desc())
        )).scalars().all())

        profile = MemberProfile(
            member=member,
            level=level,
            balance=balance,
            monthly_fee=effective_monthly_fee(member, level),
            payments=[p for p in payments if to_decimal(p.amount) >= NEGLIGIBLE_AMOUNT],
            fees=fees,
            total_paid=sum((to_decimal(p.amount) for p in payments), ZERO),
        )

        if member.payments_id and self.qr_service.is_configured():
            profile.qr_amount = self._qr_amount(member, level, balance)
            if profile.qr_amount > 0:
                profile.payment_qr = self.qr_service.payment_descriptor(
                    profile.qr_amount, member.payments_id, QR_MESSAGE
                )

        return profile

    def _qr_amount(self, member: MemberDB, level: Optional[MembershipLevelDB], balance: Decimal) -> Decimal:
        """Whole debt when in debt, otherwise one monthly fee."""
        if balance < 0:
            return abs(balance)
        level_amount = to_decimal(level.amount) if level else ZERO
        return max(to_decimal(member.level_actual_amount), level_amount)

    async def update_profile(self, member: MemberDB, **fields: Optional[str]) -> MemberDB:
        """
        Member-editable contact fields.

        Only the fields passed in change; an empty value clears a field.
        """
        for name in PROFILE_FIELDS:
            if name in fields:
                setattr(member, name, fields[name] or None)
        await self.db.commit()
        return member

    async def update_custom_fee(self, member: MemberDB, amount) -> MemberDB:
        """
        Set the member's voluntary monthly fee.

        Raises:
            InvalidAssignment: amount is not a number or below the level amount
        """
        try:
            new_amount = to_decimal(amount)
        except (InvalidOperation, ValueError) as e:
            raise InvalidAssignment("Invalid amount") from e
        if not new_amount.is_finite():
            raise InvalidAssignment("Invalid amount")

        level = await self.get_level(member.level_id)
        level_minimum = to_decimal(level.amount) if level else ZERO
        if new_amount < level_minimum:
            level_name = level.name if level else "level"
            raise InvalidAssignment(
                f"Amount must be at least {level_minimum} CZK (minimum for {level_name})"
            )

        old_amount = to_decimal(member.level_actual_amount)
        new_amount = new_amount.quantize(Decimal("1"))
        member.level_actual_amount = new_amount

        await self.audit.log(
            AuditSubsystem.MEMBERSHIP,
            f"Custom fee amount updated: {new_amount} CZK (minimum: {level_minimum} CZK)",
            member_id=member.id,
            metadata={
                "old_amount": str(old_amount),
                "new_amount": str(new_amount),
                "level_minimum": str(level_minimum),
            },
        )
        await self.db.commit()
        return member

    # ==================== ADMIN ====================

    async def change_state(
        self,
        member_id: int,
        state: str,
        admin: MemberDB,
        reason: str = "",
        payments_id: Optional[str] = None,
        notifier=None,
    ) -> MemberDB:
        """
        Move a member to another state.

        Args:
            state: One of MemberState values
            reason: Shown in the suspension email and stored in the audit entry
            payments_id: Assign a payment identifier (VS) at the same time
            notifier: EmailSender used for welcome / suspension notices

        Notification failures are logged and never undo the state change.
        """
        try:
            new_state = MemberState(state)
        except ValueError as e:
            raise InvalidAssignment(f"Unknown member state '{state}'") from e

        member = await self.get_member(member_id)
        old_state = member.state
        old_payments_id = member.payments_id

        if payments_id and payments_id != member.payments_id:
            await self._ensure_identifier_free(payments_id)
            member.payments_id = payments_id

        member.state = new_state.value

        await self.audit.log(
            AuditSubsystem.ADMIN,
            f"Admin {admin.username or 'unknown'} ({admin.email}) changed state of member "
            f"{member.email} from '{old_state}' to '{new_state.value}'",
            member_id=admin.id,
            metadata={
                "admin_user_id": admin.id,
                "target_user_id": member.id,
                "old_state": old_state,
                "new_state": new_state.value,
                "old_payments_id": old_payments_id,
                "payments_id": member.payments_id,
                "reason": reason or "",
            },
        )
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise PersistenceConflict(f"Payment identifier '{payments_id}' is already in use") from e

        if notifier is not None and old_state != new_state.value:
            try:
                if new_state == MemberState.ACCEPTED:
                    await notifier.send_welcome(member)
                elif new_state == MemberState.SUSPENDED:
                    await notifier.send_membership_suspended(member, reason)
                await self.db.commit()
            except Exception as e:
                logger.error(f"Failed to notify member {member.email} about state change: {e}")

        return member

    async def _ensure_identifier_free(self, identifier: str) -> None:
        taken_by_member = await self.db.execute(
            select(MemberDB.id).where(MemberDB.payments_id == identifier)
        )
        if taken_by_member.scalar_one_or_none() is not None:
            raise PersistenceConflict(f"Payment identifier '{identifier}' is already used by another member")

        taken_by_project = await self.db.execute(
            select(ProjectIdentifierDB.id).where(ProjectIdentifierDB.vs == identifier)
        )
        if taken_by_project.scalar_one_or_none() is not None:
            raise PersistenceConflict(f"Payment identifier '{identifier}' is already used by a project")
