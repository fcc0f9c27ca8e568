"""
Sync payments from the Fio bank API into the payments ledger.

Usage:
    python -m jobs.sync_fio_payments               # last SYNC_DAYS_BACK days (90)
    python -m jobs.sync_fio_payments --days 7      # last 7 days
    python -m jobs.sync_fio_payments --since-last  # only new transactions

Crontab (daily at 3:00):
    0 3 * * * cd /path/to/backend && python -m jobs.sync_fio_payments --since-last >> logs/fio-sync.log 2>&1
"""

import argparse
import asyncio
import logging
import sys
from datetime import date, timedelta
from typing import List, Optional

from bank_feed.fio_client import FioClient
from config import get_settings
from database.connection import AsyncSessionLocal, init_db
from database.models import LogLevel
from logging_config import setup_logging
from reconciliation.errors import UpstreamUnavailable
from reconciliation.services.sync_service import PaymentSyncService, SyncResult
from sentry_integration import init_sentry, set_tag
from services.audit import AuditLogger, AuditSubsystem

logger = logging.getLogger(__name__)

LINE_WIDTH = 80


def format_summary(result: SyncResult) -> List[str]:
    """End-of-run report lines."""
    lines = [
        "=" * LINE_WIDTH,
        "SYNC SUMMARY",
        "=" * LINE_WIDTH,
        f"Total transactions fetched: {result.fetched}",
        f"  Inserted: {result.inserted}",
        f"  Updated: {result.updated}",
        f"  Skipped (negligible or unchanged): {result.skipped}",
        f"  Errors: {result.errors}",
        "-" * LINE_WIDTH,
    ]

    if result.problematic_count:
        lines.append(f"PROBLEMATIC PAYMENTS: {result.problematic_count}")

        if result.empty_identifier:
            lines.append(f"  Empty variable symbol: {len(result.empty_identifier)} payments")
            for tx in result.empty_identifier:
                lines.append(f"     - {tx.amount:.2f} CZK from {tx.counterparty_name} on {tx.date[:10]}")
            lines.append(f"     Total: {result.empty_identifier_total:.2f} CZK")

        if result.user_not_found:
            lines.append(f"  User not found: {len(result.user_not_found)} payments")
            for tx in result.user_not_found:
                lines.append(
                    f"     - {tx.amount:.2f} CZK (VS/payments_id: {tx.identifier}) from {tx.counterparty_name}"
                )
            lines.append(f"     Total: {result.user_not_found_total:.2f} CZK")
            lines.append("     These payments have a VS that doesn't match any member's payments_id.")

        lines.append("Run 'python -m jobs.report_unmatched_payments' for a detailed report")

    lines.append("=" * LINE_WIDTH)
    return lines


async def run(days: int, since_last: bool, client: Optional[FioClient] = None) -> int:
    """
    Fetch and reconcile transactions.

    Returns:
        Process exit code (1 when fetching failed or any transaction failed)
    """
    client = client or FioClient()
    if not client.is_configured():
        logger.error("BANK_FIO_TOKEN is required")
        return 1

    try:
        if since_last:
            logger.info("Fetching Fio transactions since last download...")
            transactions = await client.fetch_since_last_download()
        else:
            date_to = date.today()
            date_from = date_to - timedelta(days=days)
            logger.info(f"Fetching Fio transactions from {date_from} to {date_to}...")
            transactions = await client.fetch_transactions_by_period(date_from, date_to)
    except UpstreamUnavailable as e:
        logger.error(f"Failed to fetch transactions: {e}")
        return 1

    async with AsyncSessionLocal() as db:
        result = await PaymentSyncService(db).sync_transactions(transactions)

        await AuditLogger(db).log(
            AuditSubsystem.CRON,
            f"Fio sync: {result.inserted} inserted, {result.updated} updated, "
            f"{result.problematic_count} unmatched",
            level=LogLevel.WARNING if result.errors else LogLevel.SUCCESS,
            metadata=result.to_dict(),
        )
        await db.commit()

    for line in format_summary(result):
        print(line)

    if result.errors > 0:
        logger.error("Job completed with errors")
        return 1
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Sync payments from the Fio bank API")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--days", type=int, default=settings.SYNC_DAYS_BACK,
                       help="Number of days to fetch (default: %(default)s)")
    group.add_argument("--since-last", action="store_true",
                       help="Fetch only transactions since the last download")
    args = parser.parse_args(argv)

    setup_logging(level=settings.LOG_LEVEL, json_format=settings.is_production)
    init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT)
    set_tag("job", "sync_fio_payments")

    async def _job() -> int:
        await init_db()
        return await run(args.days, args.since_last)

    return asyncio.run(_job())


if __name__ == "__main__":
    sys.exit(main())
