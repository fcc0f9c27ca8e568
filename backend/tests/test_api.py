"""
API Tests for the Admin and Member Endpoints

Runs the FastAPI app in-process with authentication overridden to an admin
principal and verifies the HTTP contract:
- ledger errors mapped to 404 / 409 / 400
- request validation
- response shapes

Run with: pytest tests/test_api.py -v
"""

import pytest
from datetime import date, timedelta
from decimal import Decimal

from database.models import PaymentDB, PaymentKind, MemberState


async def add_payment(db, kind_id="1", amount="500", identification=""):
    payment = PaymentDB(
        kind=PaymentKind.FIO.value,
        kind_id=kind_id,
        date=date(2024, 3, 1),
        amount=Decimal(amount),
        identification=identification,
    )
    db.add(payment)
    await db.commit()
    return payment


class TestHealth:
    @pytest.mark.asyncio
    async def test_liveness(self, api_client):
        response = await api_client.get("/api/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"


class TestPaymentsAPI:
    """Test /api/admin/payments."""

    @pytest.mark.asyncio
    async def test_unmatched_report(self, api_client, db):
        await add_payment(db, "1", identification="")
        await add_payment(db, "2", identification="4242")

        response = await api_client.get("/api/admin/payments/unmatched")

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["total_count"] == 2
        assert data["counts"] == {"empty_identifier": 1, "user_not_found": 1, "sync_bug": 0}

    @pytest.mark.asyncio
    async def test_assign(self, api_client, db, make_member):
        member = await make_member(payments_id="1001")
        payment = await add_payment(db, identification="4242")

        response = await api_client.post("/api/admin/payments/assign", json={
            "payment_id": payment.id,
            "member_id": member.id,
            "staff_comment": "matched by name",
        })

        assert response.status_code == 200
        data = response.json()["payment"]
        assert data["member_id"] == member.id
        assert data["identification"] == "1001"
        assert data["staff_comment"] == "matched by name"

    @pytest.mark.asyncio
    async def test_assign_unknown_payment(self, api_client, make_member):
        member = await make_member(payments_id="1001")

        response = await api_client.post("/api/admin/payments/assign", json={
            "payment_id": 999, "member_id": member.id,
        })

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_assign_member_without_identifier(self, api_client, db, make_member):
        member = await make_member(payments_id=None)
        payment = await add_payment(db)

        response = await api_client.post("/api/admin/payments/assign", json={
            "payment_id": payment.id, "member_id": member.id,
        })

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_update_to_project(self, api_client, db, make_project):
        project = await make_project(identifiers=("9001",))
        payment = await add_payment(db)

        response = await api_client.post("/api/admin/payments/update", json={
            "payment_id": payment.id,
            "assign_type": "project",
            "project_id": project.id,
        })

        assert response.status_code == 200
        data = response.json()["payment"]
        assert data["project_id"] == project.id
        assert data["identification"] == "9001"

    @pytest.mark.asyncio
    async def test_update_missing_target_id(self, api_client, db):
        payment = await add_payment(db)

        response = await api_client.post("/api/admin/payments/update", json={
            "payment_id": payment.id, "assign_type": "member",
        })

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_dismiss_and_undismiss(self, api_client, db):
        payment = await add_payment(db)

        dismissed = await api_client.post("/api/admin/payments/dismiss", json={
            "payment_id": payment.id, "reason": "refund",
        })
        report = (await api_client.get("/api/admin/payments/unmatched")).json()
        restored = await api_client.post("/api/admin/payments/undismiss", json={"payment_id": payment.id})

        assert dismissed.status_code == 200
        assert dismissed.json()["payment"]["dismissed_reason"] == "refund"
        assert report["total_count"] == 0
        assert report["dismissed_count"] == 1
        assert restored.status_code == 200
        assert restored.json()["payment"]["dismissed_at"] is None

    @pytest.mark.asyncio
    async def test_manual_payment(self, api_client, make_member):
        member = await make_member(payments_id="1001")

        response = await api_client.post("/api/admin/payments/manual", json={
            "payment_date": "2024-03-01",
            "amount": "600",
            "identification": "1001",
        })

        assert response.status_code == 201
        data = response.json()["payment"]
        assert data["kind"] == "manual"
        assert data["member_id"] == member.id

    @pytest.mark.asyncio
    async def test_manual_payment_in_future(self, api_client, level):
        response = await api_client.post("/api/admin/payments/manual", json={
            "payment_date": (date.today() + timedelta(days=2)).isoformat(),
            "amount": "600",
        })

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_manual_payment_needs_positive_amount(self, api_client, level):
        response = await api_client.post("/api/admin/payments/manual", json={
            "payment_date": "2024-03-01",
            "amount": "0",
        })

        assert response.status_code == 422


class TestProjectsAPI:
    """Test /api/admin/projects."""

    @pytest.mark.asyncio
    async def test_create_and_list(self, api_client):
        created = await api_client.post("/api/admin/projects", json={"name": "Laser", "payments_id": "9001"})
        listed = await api_client.get("/api/admin/projects")

        assert created.status_code == 201
        assert created.json()["project"]["vs_list"] == [{"vs": "9001", "note": "primary"}]
        assert [p["name"] for p in listed.json()["projects"]] == ["Laser"]

    @pytest.mark.asyncio
    async def test_create_with_member_identifier(self, api_client, make_member):
        await make_member(payments_id="1001")

        response = await api_client.post("/api/admin/projects", json={"name": "Laser", "payments_id": "1001"})

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_identifiers(self, api_client, make_project):
        project = await make_project(identifiers=("9001",))
        base = f"/api/admin/projects/{project.id}/identifiers"

        last = await api_client.delete(f"{base}/9001")
        added = await api_client.post(base, json={"vs": "9002", "note": "second"})
        duplicate = await api_client.post(base, json={"vs": "9002"})
        removed = await api_client.delete(f"{base}/9001")

        assert last.status_code == 400
        assert added.status_code == 201
        assert duplicate.status_code == 409
        assert removed.status_code == 200

    @pytest.mark.asyncio
    async def test_missing_project(self, api_client):
        assert (await api_client.get("/api/admin/projects/999/payments")).status_code == 404
        assert (await api_client.delete("/api/admin/projects/999")).status_code == 404


class TestMembersAPI:
    """Test /api/admin/members and /api/members/me."""

    @pytest.mark.asyncio
    async def test_list_members(self, api_client, make_member):
        member = await make_member(payments_id="1001")

        response = await api_client.get("/api/admin/members", params={"state": "accepted", "sort": "id_asc"})

        assert response.status_code == 200
        data = response.json()
        assert member.id in [m["id"] for m in data["members"]]
        assert all("balance" in m for m in data["members"])

    @pytest.mark.asyncio
    async def test_list_members_invalid_sort(self, api_client):
        response = await api_client.get("/api/admin/members", params={"sort": "name"})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_member_profile(self, api_client, make_member):
        member = await make_member(payments_id="1001")

        found = await api_client.get(f"/api/admin/members/{member.id}")
        missing = await api_client.get("/api/admin/members/999")

        assert found.status_code == 200
        assert found.json()["is_admin_view"] is True
        assert found.json()["member"]["payments_id"] == "1001"
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_change_state(self, api_client, make_member):
        member = await make_member(payments_id=None, state=MemberState.AWAITING.value)

        response = await api_client.post(f"/api/admin/members/{member.id}/state", json={
            "state": "accepted", "payments_id": "3003",
        })

        assert response.status_code == 200
        assert response.json()["member"]["state"] == "accepted"
        assert response.json()["member"]["payments_id"] == "3003"

    @pytest.mark.asyncio
    async def test_own_profile_and_fee(self, api_client):
        profile = await api_client.get("/api/members/me")
        too_low = await api_client.post("/api/members/me/custom-fee", json={"amount": "100"})
        accepted = await api_client.post("/api/members/me/custom-fee", json={"amount": "700"})

        assert profile.status_code == 200
        assert profile.json()["member"]["email"] == "admin@example.org"
        assert too_low.status_code == 400
        assert accepted.status_code == 200
        assert Decimal(accepted.json()["level_actual_amount"]) == Decimal("700")

    @pytest.mark.asyncio
    async def test_partial_profile_update(self, api_client):
        await api_client.patch("/api/members/me", json={"realname": "Jana Adminova", "altcontact": "jabber:jana"})

        response = await api_client.patch("/api/members/me", json={"phone": "123456"})

        assert response.status_code == 200
        member = response.json()["member"]
        assert member["realname"] == "Jana Adminova"
        assert member["altcontact"] == "jabber:jana"
        assert member["phone"] == "123456"

    @pytest.mark.asyncio
    async def test_logs(self, api_client):
        await api_client.post("/api/admin/projects", json={"name": "Laser", "payments_id": "9001"})

        response = await api_client.get("/api/admin/logs", params={"subsystem": "admin"})

        assert response.status_code == 200
        assert response.json()["count"] == 1
