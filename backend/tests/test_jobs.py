"""
Unit Tests for the Scheduled Jobs

Tests the command-line jobs end to end against the test database:
- sync_fio_payments (mocked Fio API)
- create_monthly_fees
- report_unmatched_payments

Run with: pytest tests/test_jobs.py -v
"""

import argparse
import pytest
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession

from bank_feed.fio_client import BankTransaction, FioClient
from database.models import FeeDB, PaymentDB, SystemLogDB
from jobs import create_monthly_fees, report_unmatched_payments, sync_fio_payments
from reconciliation.services.sync_service import SyncResult


@pytest.fixture
def job_sessions(db_engine, monkeypatch):
    """Point the jobs' session factory at the test database."""
    factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    for module in (sync_fio_payments, create_monthly_fees, report_unmatched_payments):
        monkeypatch.setattr(module, "AsyncSessionLocal", factory)
    return factory


def fio_statement(*transactions):
    return {"accountStatement": {"transactionList": {"transaction": list(transactions)}}}


def fio_transaction(tx_id, amount, vs):
    return {
        "column22": {"value": tx_id},
        "column0": {"value": "2024-03-15+0100"},
        "column1": {"value": amount},
        "column5": {"value": vs},
        "column10": {"value": "Jan Novak"},
    }


class TestSyncJob:
    """Test the Fio sync job."""

    @pytest.mark.asyncio
    async def test_not_configured(self):
        assert await sync_fio_payments.run(7, False, client=FioClient(token="")) == 1

    @pytest.mark.asyncio
    async def test_upstream_failure(self):
        client = FioClient(
            token="secret",
            base_url="https://fio.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="error")),
        )

        assert await sync_fio_payments.run(7, False, client=client) == 1

    @pytest.mark.asyncio
    async def test_sync_run(self, db, make_member, job_sessions, capsys):
        member = await make_member(payments_id="1001")
        client = FioClient(
            token="secret",
            base_url="https://fio.test",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=fio_statement(
                fio_transaction(1, 600.0, "1001"),
                fio_transaction(2, 300.0, None),
            ))),
        )

        exit_code = await sync_fio_payments.run(7, True, client=client)

        assert exit_code == 0
        payments = (await db.execute(select(PaymentDB).order_by(PaymentDB.kind_id))).scalars().all()
        assert [(p.kind_id, p.member_id) for p in payments] == [("1", member.id), ("2", None)]
        log = (await db.execute(select(SystemLogDB).where(SystemLogDB.subsystem == "cron"))).scalar_one()
        assert log.log_metadata["inserted"] == 2
        assert "SYNC SUMMARY" in capsys.readouterr().out

    def test_format_summary_lists_problems(self):
        result = SyncResult(fetched=2, inserted=2)
        result.empty_identifier.append(BankTransaction(
            external_id="2", date="2024-03-15+0100", amount=Decimal("300"), counterparty_name="Jan Novak"
        ))

        lines = sync_fio_payments.format_summary(result)

        assert "PROBLEMATIC PAYMENTS: 1" in lines
        assert "     - 300.00 CZK from Jan Novak on 2024-03-15" in lines

    def test_format_summary_clean_run(self):
        lines = sync_fio_payments.format_summary(SyncResult(fetched=1, inserted=1))

        assert not any("PROBLEMATIC" in line for line in lines)


class TestMonthlyFeesJob:
    """Test the monthly fee job."""

    @pytest.mark.asyncio
    async def test_run_creates_fees(self, db, make_member, job_sessions, capsys):
        member = await make_member()

        exit_code = await create_monthly_fees.run(date(2024, 3, 1))

        assert exit_code == 0
        fee = (await db.execute(select(FeeDB))).scalar_one()
        assert fee.member_id == member.id
        assert "  Created: 1" in capsys.readouterr().out

    def test_parse_period(self):
        assert create_monthly_fees.parse_period("2024-03") == date(2024, 3, 1)
        with pytest.raises(argparse.ArgumentTypeError):
            create_monthly_fees.parse_period("March")


class TestUnmatchedReportJob:
    """Test the unmatched payments report job."""

    @pytest.mark.asyncio
    async def test_clean_ledger(self, db, level, job_sessions, capsys):
        assert await report_unmatched_payments.run() == 0
        assert "No problematic payments found!" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_sync_bug_fails_job(self, db, make_member, job_sessions, capsys):
        await make_member(payments_id="1001")
        db.add(PaymentDB(kind="fio", kind_id="1", date=date(2024, 3, 1), amount=Decimal("600"),
                         identification="1001"))
        await db.commit()

        assert await report_unmatched_payments.run() == 1
        assert "MEMBER EXISTS BUT PAYMENT NOT ASSIGNED" in capsys.readouterr().out

    def test_main_enables_error_tracking(self, monkeypatch):
        init_sentry = MagicMock(return_value=False)
        set_tag = MagicMock()
        monkeypatch.setattr(report_unmatched_payments, "setup_logging", MagicMock())
        monkeypatch.setattr(report_unmatched_payments, "init_sentry", init_sentry)
        monkeypatch.setattr(report_unmatched_payments, "set_tag", set_tag)
        monkeypatch.setattr(report_unmatched_payments, "init_db", AsyncMock())
        monkeypatch.setattr(report_unmatched_payments, "run", AsyncMock(return_value=0))

        assert report_unmatched_payments.main([]) == 0

        init_sentry.assert_called_once()
        set_tag.assert_called_once_with("job", "report_unmatched_payments")
