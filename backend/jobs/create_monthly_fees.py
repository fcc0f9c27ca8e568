"""
Create the monthly membership fee for every accepted member.

Usage:
    python -m jobs.create_monthly_fees
    python -m jobs.create_monthly_fees --period 2024-03

Crontab (first day of the month):
    0 0 1 * * cd /path/to/backend && python -m jobs.create_monthly_fees >> logs/fees.log 2>&1
"""

import argparse
import asyncio
import logging
import sys
from datetime import date, datetime
from typing import List, Optional

from config import get_settings
from database.connection import AsyncSessionLocal, init_db
from email_integration import EmailSender
from logging_config import setup_logging
from sentry_integration import init_sentry, set_tag
from services.fees import MonthlyFeeService, FeeRunResult

logger = logging.getLogger(__name__)


def parse_period(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m").date()
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Invalid period '{value}', expected YYYY-MM") from e


def format_summary(result: FeeRunResult) -> List[str]:
    return [
        "Summary:",
        f"  Period: {result.period}",
        f"  Total members: {result.members}",
        f"  Created: {result.created}",
        f"  Skipped (already exists): {result.skipped}",
        f"  Debt warning emails sent: {result.emails}",
        f"  Errors: {result.errors}",
    ]


async def run(period: Optional[date] = None) -> int:
    async with AsyncSessionLocal() as db:
        service = MonthlyFeeService(db, notifier=EmailSender(db=db))
        result = await service.create_monthly_fees(period)

    for line in format_summary(result):
        print(line)

    if result.errors > 0:
        logger.error("Job completed with errors")
        return 1

    logger.info("Job completed successfully")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Create monthly membership fees")
    parser.add_argument("--period", type=parse_period, default=None,
                        help="Month to charge as YYYY-MM (default: current month)")
    args = parser.parse_args(argv)

    setup_logging(level=settings.LOG_LEVEL, json_format=settings.is_production)
    init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT)
    set_tag("job", "create_monthly_fees")

    async def _job() -> int:
        await init_db()
        return await run(args.period)

    return asyncio.run(_job())


if __name__ == "__main__":
    sys.exit(main())
