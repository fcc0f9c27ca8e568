"""
Report payments that are not linked to any member.

Usage:
    python -m jobs.report_unmatched_payments
"""

import asyncio
import logging
import sys
from typing import List, Optional

from config import get_settings
from database.connection import AsyncSessionLocal, init_db
from logging_config import setup_logging
from reconciliation.services.triage_service import PaymentTriageService, TriageReport, TriageCategory
from sentry_integration import init_sentry, set_tag

logger = logging.getLogger(__name__)

LINE_WIDTH = 120

SECTION_TITLES = {
    TriageCategory.EMPTY_IDENTIFIER: "EMPTY VARIABLE SYMBOL",
    TriageCategory.USER_NOT_FOUND: "NO MEMBER WITH THIS VS",
    TriageCategory.SYNC_BUG: "MEMBER EXISTS BUT PAYMENT NOT ASSIGNED (sync bug?)",
}


def format_report(report: TriageReport) -> List[str]:
    lines = [
        "=" * LINE_WIDTH,
        "UNMATCHED PAYMENTS REPORT",
        "=" * LINE_WIDTH,
        f"Problematic payments: {len(report.items)}",
        f"Total unmatched amount: {report.total_amount:.2f} CZK",
        f"Dismissed payments: {len(report.dismissed)} ({report.dismissed_total:.2f} CZK)",
    ]

    if not report.items:
        lines.append("No problematic payments found!")
        return lines

    for category in TriageCategory:
        items = [item for item in report.items if item.category == category]
        if not items:
            continue
        lines.append("")
        lines.append(f"{SECTION_TITLES[category]} ({len(items)})")
        lines.append("-" * LINE_WIDTH)
        for item in items:
            payment = item.payment
            member_hint = f" -> member #{item.member_id}" if item.member_id else ""
            lines.append(
                f"  #{payment.id:<6} {payment.date} {payment.amount:>10} CZK  "
                f"VS '{payment.identification}'  from {payment.remote_account or '-'}{member_hint}"
            )

    lines.append("=" * LINE_WIDTH)
    return lines


async def run() -> int:
    async with AsyncSessionLocal() as db:
        report = await PaymentTriageService(db).build_report()

    for line in format_report(report):
        print(line)

    # A sync bug means the ledger is inconsistent
    return 1 if report.count(TriageCategory.SYNC_BUG) else 0


def main(argv: Optional[List[str]] = None) -> int:
    settings = get_settings()
    setup_logging(level=settings.LOG_LEVEL, json_format=settings.is_production)
    init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT)
    set_tag("job", "report_unmatched_payments")

    async def _job() -> int:
        await init_db()
        return await run()

    return asyncio.run(_job())


if __name__ == "__main__":
    sys.exit(main())
