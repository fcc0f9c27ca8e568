"""
Unit Tests for Payment Assignment

Tests the admin override path:
- assign / update to member, project or nobody
- dismiss / undismiss
- manual payment entry
- audit entries written with every change

After every write a linked payment must carry the identifier of whatever
it is linked to.

Run with: pytest tests/test_assignment_service.py -v
"""

import pytest
from datetime import date
from decimal import Decimal

from sqlalchemy import select

from database.models import MemberDB, PaymentDB, PaymentKind, ProjectDB, SystemLogDB, DISMISSED_MARKER
from reconciliation.assignment import (
    MemberTarget, ProjectTarget, Unassigned, build_target, AssignType, parse_assign_type
)
from reconciliation.errors import LookupNotFound, InvalidAssignment
from reconciliation.services.assignment_service import PaymentAssignmentService, dismissed_comment


@pytest.fixture
def make_payment(db, level):
    counter = {"n": 0}

    async def _make(identification="", amount="500", member_id=None, project_id=None) -> PaymentDB:
        counter["n"] += 1
        payment = PaymentDB(
            kind=PaymentKind.FIO.value,
            kind_id=f"tx-{counter['n']}",
            date=date(2024, 3, 1),
            amount=Decimal(amount),
            identification=identification,
            member_id=member_id,
            project_id=project_id,
            raw_data={},
        )
        db.add(payment)
        await db.commit()
        return payment

    return _make


async def admin_logs(db):
    result = await db.execute(
        select(SystemLogDB).where(SystemLogDB.subsystem == "admin").order_by(SystemLogDB.id)
    )
    return list(result.scalars().all())


async def assert_link_matches_identifier(db, payment: PaymentDB):
    if payment.member_id is not None:
        member = await db.get(MemberDB, payment.member_id)
        assert payment.project_id is None
        assert payment.identification == member.payments_id
    if payment.project_id is not None:
        project = await db.get(ProjectDB, payment.project_id)
        assert payment.identification in project.identifier_values


class TestAssign:
    """Test assigning a payment to a member."""

    @pytest.mark.asyncio
    async def test_assign_rewrites_identification(self, db, admin, make_member, make_payment):
        member = await make_member(payments_id="1001")
        payment = await make_payment(identification="999")

        payment = await PaymentAssignmentService(db).assign(payment.id, member.id, "late payment", admin)

        assert payment.member_id == member.id
        assert payment.identification == "1001"
        assert payment.staff_comment == "late payment"
        await assert_link_matches_identifier(db, payment)

        logs = await admin_logs(db)
        assert len(logs) == 1
        assert logs[0].member_id == admin.id
        assert logs[0].log_metadata["old_vs"] == "999"
        assert logs[0].log_metadata["vs"] == "1001"
        assert logs[0].log_metadata["target_user_id"] == member.id

    @pytest.mark.asyncio
    async def test_assign_clears_project_link(self, db, admin, make_member, make_project, make_payment):
        member = await make_member(payments_id="1001")
        project = await make_project(identifiers=("9001",))
        payment = await make_payment(identification="9001", project_id=project.id)

        payment = await PaymentAssignmentService(db).assign(payment.id, member.id, "", admin)

        assert payment.project_id is None
        assert payment.staff_comment is None
        await assert_link_matches_identifier(db, payment)

    @pytest.mark.asyncio
    async def test_assign_to_member_without_identifier_fails(self, db, admin, make_member, make_payment):
        member = await make_member(payments_id=None)
        payment = await make_payment(identification="999")

        with pytest.raises(InvalidAssignment):
            await PaymentAssignmentService(db).assign(payment.id, member.id, "", admin)

    @pytest.mark.asyncio
    async def test_assign_unknown_payment(self, db, admin, make_member):
        member = await make_member(payments_id="1001")

        with pytest.raises(LookupNotFound):
            await PaymentAssignmentService(db).assign(12345, member.id, "", admin)

    @pytest.mark.asyncio
    async def test_assign_unknown_member(self, db, admin, make_payment):
        payment = await make_payment(identification="999")

        with pytest.raises(LookupNotFound):
            await PaymentAssignmentService(db).assign(payment.id, 12345, "", admin)


class TestUpdate:
    """Test reassigning payments to members, projects or nobody."""

    @pytest.mark.asyncio
    async def test_update_to_project_uses_primary_identifier(self, db, admin, make_project, make_payment):
        project = await make_project(identifiers=("9001", "9002"))
        payment = await make_payment(identification="")

        payment = await PaymentAssignmentService(db).update(
            payment.id, ProjectTarget(project_id=project.id), "", admin
        )

        assert payment.project_id == project.id
        assert payment.member_id is None
        assert payment.identification == "9001"
        await assert_link_matches_identifier(db, payment)

        logs = await admin_logs(db)
        assert logs[-1].log_metadata["action"] == "assign_project"

    @pytest.mark.asyncio
    async def test_update_from_member_to_project(self, db, admin, make_member, make_project, make_payment):
        member = await make_member(payments_id="1001")
        project = await make_project(identifiers=("9001",))
        payment = await make_payment(identification="1001", member_id=member.id)

        payment = await PaymentAssignmentService(db).update(
            payment.id, ProjectTarget(project_id=project.id), "", admin
        )

        assert payment.member_id is None
        assert payment.identification == "9001"

    @pytest.mark.asyncio
    async def test_update_to_member(self, db, admin, make_member, make_payment):
        member = await make_member(payments_id="1001")
        payment = await make_payment(identification="123")

        payment = await PaymentAssignmentService(db).update(
            payment.id, MemberTarget(member_id=member.id), "checked", admin
        )

        assert payment.member_id == member.id
        assert payment.identification == "1001"
        assert payment.staff_comment == "checked"

    @pytest.mark.asyncio
    async def test_update_unassigned_clears_links(self, db, admin, make_member, make_payment):
        member = await make_member(payments_id="1001")
        payment = await make_payment(identification="1001", member_id=member.id)
        payment.staff_comment = "old comment"
        await db.commit()

        payment = await PaymentAssignmentService(db).update(
            payment.id, Unassigned(identification="4242"), "", admin, message="wrong member"
        )

        assert payment.member_id is None
        assert payment.project_id is None
        assert payment.identification == "4242"
        assert payment.staff_comment is None

        logs = await admin_logs(db)
        assert logs[-1].log_metadata["action"] == "update_unmatched"
        assert logs[-1].log_metadata["message"] == "wrong member"

    @pytest.mark.asyncio
    async def test_update_to_missing_project(self, db, admin, make_payment):
        payment = await make_payment(identification="")

        with pytest.raises(LookupNotFound):
            await PaymentAssignmentService(db).update(payment.id, ProjectTarget(project_id=999), "", admin)


class TestDismissal:
    """Test the dismissed archive."""

    @pytest.mark.asyncio
    async def test_dismiss_marks_comment(self, db, admin, make_payment):
        payment = await make_payment(identification="")

        payment = await PaymentAssignmentService(db).dismiss(payment.id, "refund", admin)

        assert payment.is_dismissed
        assert payment.dismissed_by == admin.id
        assert payment.dismissed_reason == "refund"
        assert payment.staff_comment == f"{DISMISSED_MARKER} refund"

    @pytest.mark.asyncio
    async def test_undismiss_keeps_comment(self, db, admin, make_payment):
        payment = await make_payment(identification="")
        service = PaymentAssignmentService(db)
        await service.dismiss(payment.id, "refund", admin)

        payment = await service.undismiss(payment.id, admin)

        assert not payment.is_dismissed
        assert payment.dismissed_by is None
        assert payment.dismissed_reason is None
        assert payment.staff_comment == f"{DISMISSED_MARKER} refund"
        assert len(await admin_logs(db)) == 2

    def test_dismissed_comment_without_reason(self):
        assert dismissed_comment("") == DISMISSED_MARKER
        assert dismissed_comment("  test transfer ") == f"{DISMISSED_MARKER} test transfer"


class TestManualPayment:
    """Test manual payment entry."""

    @pytest.mark.asyncio
    async def test_manual_payment_links_member(self, db, admin, make_member):
        member = await make_member(payments_id="1001")

        payment = await PaymentAssignmentService(db).create_manual(
            payment_date=date(2024, 2, 10),
            amount=Decimal("1200"),
            identification=" 1001 ",
            admin=admin,
            staff_comment="cash at meetup",
        )

        assert payment.kind == PaymentKind.MANUAL.value
        assert payment.member_id == member.id
        assert payment.identification == "1001"
        assert payment.local_account == "manual"
        await assert_link_matches_identifier(db, payment)

        logs = await admin_logs(db)
        assert logs[-1].log_metadata["action"] == "manual_payment"

    @pytest.mark.asyncio
    async def test_manual_payment_links_project(self, db, admin, make_project):
        project = await make_project(identifiers=("9001", "9002"))

        payment = await PaymentAssignmentService(db).create_manual(
            payment_date=date(2024, 2, 10),
            amount=Decimal("300"),
            identification="9002",
            admin=admin,
        )

        assert payment.project_id == project.id
        assert payment.member_id is None
        await assert_link_matches_identifier(db, payment)

    @pytest.mark.asyncio
    async def test_manual_payment_unknown_identifier(self, db, admin, level):
        payment = await PaymentAssignmentService(db).create_manual(
            payment_date=date(2024, 2, 10),
            amount=Decimal("300"),
            identification="31337",
            admin=admin,
        )

        assert payment.member_id is None
        assert payment.project_id is None
        assert payment.identification == "31337"

    @pytest.mark.asyncio
    async def test_manual_payments_get_distinct_source_ids(self, db, admin, level):
        service = PaymentAssignmentService(db)
        first = await service.create_manual(date(2024, 2, 10), Decimal("100"), "", admin)
        second = await service.create_manual(date(2024, 2, 10), Decimal("100"), "", admin)

        assert first.kind_id != second.kind_id


class TestBuildTarget:
    """Test parsing of the flat request fields."""

    def test_member_target(self):
        assert build_target("member", member_id=3) == MemberTarget(member_id=3)

    def test_legacy_aliases(self):
        assert parse_assign_type("user") == AssignType.MEMBER
        assert parse_assign_type("unmatched") == AssignType.UNASSIGNED
        assert parse_assign_type(None) == AssignType.UNASSIGNED

    def test_unassigned_strips_identification(self):
        assert build_target("unassigned", identification=" 77 ") == Unassigned(identification="77")

    def test_missing_ids(self):
        with pytest.raises(InvalidAssignment):
            build_target("member")
        with pytest.raises(InvalidAssignment):
            build_target("project")

    def test_unknown_type(self):
        with pytest.raises(InvalidAssignment):
            build_target("friend", member_id=1)
