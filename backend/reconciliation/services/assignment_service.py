"""
Payment Assignment Service

Manual override path used by administrators:
- assign: link a payment to a member
- update: link to a member or a project, or clear both links
- dismiss / undismiss: move a payment to and from the dismissed archive
- create_manual: record a payment that did not come from the bank feed

Every path rewrites identification together with the link so that a linked
payment always carries the target's identifier, and every path writes an
audit entry (subsystem "admin") in the same commit as the change.
"""

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import (
    MemberDB, PaymentDB, ProjectDB, ProjectIdentifierDB, PaymentKind, DISMISSED_MARKER
)
from reconciliation.assignment import (
    AssignmentTarget, MemberTarget, ProjectTarget, Unassigned
)
from reconciliation.errors import LookupNotFound, InvalidAssignment
from services.audit import AuditLogger, AuditSubsystem

logger = logging.getLogger(__name__)


def _display_name(member: Optional[MemberDB]) -> str:
    if member is None:
        return "unknown"
    return member.username or "unknown"


def dismissed_comment(reason: str) -> str:
    reason = (reason or "").strip()
    return f"{DISMISSED_MARKER} {reason}" if reason else DISMISSED_MARKER


class PaymentAssignmentService:
    """
    Admin operations on individual payments.

    Usage:
        service = PaymentAssignmentService(db)
        payment = await service.assign(payment_id=12, member_id=3, staff_comment="", admin=admin)
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditLogger(db)

    # ==================== LOOKUPS ====================

    async def get_payment(self, payment_id: int) -> PaymentDB:
        payment = await self.db.get(PaymentDB, payment_id)
        if payment is None:
            raise LookupNotFound("Payment not found")
        return payment

    async def _get_member(self, member_id: int) -> MemberDB:
        member = await self.db.get(MemberDB, member_id)
        if member is None:
            raise LookupNotFound("Member not found")
        return member

    async def _get_project(self, project_id: int) -> ProjectDB:
        project = await self.db.get(ProjectDB, project_id)
        if project is None:
            raise LookupNotFound("Project not found")
        return project

    async def _project_identifier(self, project: ProjectDB) -> str:
        """Primary identifier of the project, falling back to its oldest one."""
        result = await self.db.execute(
            select(ProjectIdentifierDB.vs)
            .where(ProjectIdentifierDB.project_id == project.id)
            .order_by(ProjectIdentifierDB.id)
        )
        identifiers = list(result.scalars().all())
        if project.payments_id and project.payments_id in identifiers:
            return project.payments_id
        if identifiers:
            return identifiers[0]
        raise InvalidAssignment(f"Project '{project.name}' has no payment identifier")

    async def find_target_for_identifier(self, identification: str) -> AssignmentTarget:
        """Target implied by an identifier: its member, its project, or nothing."""
        if identification:
            result = await self.db.execute(
                select(MemberDB.id).where(MemberDB.payments_id == identification)
            )
            member_id = result.scalar_one_or_none()
            if member_id is not None:
                return MemberTarget(member_id=member_id)

            result = await self.db.execute(
                select(ProjectIdentifierDB.project_id).where(ProjectIdentifierDB.vs == identification)
            )
            project_id = result.scalar_one_or_none()
            if project_id is not None:
                return ProjectTarget(project_id=project_id)

        return Unassigned(identification=identification)

    # ==================== ASSIGNMENT ====================

    async def assign(
        self,
        payment_id: int,
        member_id: int,
        staff_comment: str,
        admin: MemberDB,
    ) -> PaymentDB:
        """Link a payment to a member; identification becomes the member's VS."""
        payment = await self.get_payment(payment_id)
        member = await self._get_member(member_id)
        old_identification = payment.identification

        self._link_member(payment, member)
        payment.staff_comment = staff_comment or None

        await self.audit.log(
            AuditSubsystem.ADMIN,
            f"Admin {_display_name(admin)} ({admin.email}) manually assigned payment "
            f"#{payment.id} ({payment.amount} CZK) to member {_display_name(member)} "
            f"({member.email}), VS changed from '{old_identification}' to '{payment.identification}'",
            member_id=admin.id,
            metadata={
                "admin_user_id": admin.id,
                "target_user_id": member.id,
                "payment_id": payment.id,
                "amount": str(payment.amount),
                "old_vs": old_identification,
                "vs": payment.identification,
                "staff_comment": staff_comment or "",
            },
        )
        await self.db.commit()
        return payment

    async def update(
        self,
        payment_id: int,
        target: AssignmentTarget,
        staff_comment: str,
        admin: MemberDB,
        message: str = "",
    ) -> PaymentDB:
        """
        Reassign a payment.

        Args:
            target: MemberTarget, ProjectTarget or Unassigned
            staff_comment: Replaces the stored comment (empty clears it)
            message: Free-form note stored in the audit entry
        """
        payment = await self.get_payment(payment_id)
        old_identification = payment.identification
        metadata: Dict[str, Any] = {
            "admin_user_id": admin.id,
            "payment_id": payment.id,
            "amount": str(payment.amount),
            "old_vs": old_identification,
            "staff_comment": staff_comment or "",
        }

        if isinstance(target, MemberTarget):
            member = await self._get_member(target.member_id)
            self._link_member(payment, member)
            metadata.update(action="assign_user", target_user_id=member.id)
            description = f"assigned to member {_display_name(member)} ({member.email})"
        elif isinstance(target, ProjectTarget):
            project = await self._get_project(target.project_id)
            identification = await self._project_identifier(project)
            payment.project_id = project.id
            payment.member_id = None
            payment.identification = identification
            metadata.update(action="assign_project", target_project_id=project.id, project_name=project.name)
            description = f"assigned to project '{project.name}'"
        else:
            payment.member_id = None
            payment.project_id = None
            payment.identification = target.identification
            metadata.update(action="update_unmatched", message=message)
            description = "updated without assignment"

        payment.staff_comment = staff_comment or None
        metadata["vs"] = payment.identification

        await self.audit.log(
            AuditSubsystem.ADMIN,
            f"Admin {_display_name(admin)} ({admin.email}) updated payment #{payment.id} "
            f"({payment.amount} CZK) and {description}, VS changed from "
            f"'{old_identification}' to '{payment.identification}'",
            member_id=admin.id,
            metadata=metadata,
        )
        await self.db.commit()
        return payment

    def _link_member(self, payment: PaymentDB, member: MemberDB) -> None:
        if not member.payments_id:
            raise InvalidAssignment(
                f"Member {_display_name(member)} has no payment identifier assigned"
            )
        payment.member_id = member.id
        payment.project_id = None
        payment.identification = member.payments_id

    # ==================== DISMISSAL ====================

    async def dismiss(self, payment_id: int, reason: str, admin: MemberDB) -> PaymentDB:
        """Move a payment to the dismissed archive."""
        payment = await self.get_payment(payment_id)

        payment.dismissed_at = datetime.now(timezone.utc)
        payment.dismissed_by = admin.id
        payment.dismissed_reason = reason or None
        payment.staff_comment = dismissed_comment(reason)

        await self.audit.log(
            AuditSubsystem.ADMIN,
            f"Admin {_display_name(admin)} ({admin.email}) dismissed payment #{payment.id} "
            f"({payment.amount} CZK) - reason: {reason}",
            member_id=admin.id,
            metadata={
                "admin_user_id": admin.id,
                "payment_id": payment.id,
                "amount": str(payment.amount),
                "reason": reason or "",
            },
        )
        await self.db.commit()
        return payment

    async def undismiss(self, payment_id: int, admin: MemberDB) -> PaymentDB:
        """Restore a payment from the archive. The staff comment is left as is."""
        payment = await self.get_payment(payment_id)

        payment.dismissed_at = None
        payment.dismissed_by = None
        payment.dismissed_reason = None

        await self.audit.log(
            AuditSubsystem.ADMIN,
            f"Admin {_display_name(admin)} ({admin.email}) restored payment #{payment.id} "
            f"({payment.amount} CZK) from archive",
            member_id=admin.id,
            metadata={
                "admin_user_id": admin.id,
                "payment_id": payment.id,
                "amount": str(payment.amount),
            },
        )
        await self.db.commit()
        return payment

    # ==================== MANUAL ENTRY ====================

    async def create_manual(
        self,
        payment_date: date,
        amount: Decimal,
        identification: str,
        admin: MemberDB,
        remote_account: str = "",
        staff_comment: str = "",
    ) -> PaymentDB:
        """
        Record a payment received outside the bank feed (cash, other account).

        The link follows the identifier: a member's VS links the member, a
        project identifier links the project, anything else stays unassigned.
        """
        identification = (identification or "").strip()
        target = await self.find_target_for_identifier(identification)

        payment = PaymentDB(
            kind=PaymentKind.MANUAL.value,
            kind_id=uuid.uuid4().hex,
            date=payment_date,
            amount=amount,
            local_account="manual",
            remote_account=remote_account or "",
            identification=identification,
            staff_comment=staff_comment or None,
            raw_data={},
        )
        if isinstance(target, MemberTarget):
            payment.member_id = target.member_id
        elif isinstance(target, ProjectTarget):
            payment.project_id = target.project_id

        self.db.add(payment)
        await self.db.flush()

        await self.audit.log(
            AuditSubsystem.ADMIN,
            f"Admin {_display_name(admin)} ({admin.email}) recorded manual payment "
            f"#{payment.id} ({amount} CZK, VS '{identification}')",
            member_id=admin.id,
            metadata={
                "admin_user_id": admin.id,
                "action": "manual_payment",
                "payment_id": payment.id,
                "amount": str(amount),
                "vs": identification,
                "target_user_id": payment.member_id,
                "target_project_id": payment.project_id,
                "staff_comment": staff_comment or "",
            },
        )
        await self.db.commit()
        return payment
