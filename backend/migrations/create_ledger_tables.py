"""
Database Migration: Create Ledger Tables

Creates the member portal tables from the ORM metadata and seeds the
default membership level (id 1) new members are assigned to.
"""

import asyncio
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select, text
from database import engine, AsyncSessionLocal, Base
from database.models import MembershipLevelDB

DEFAULT_LEVEL = {"id": 1, "name": "Awaiting", "amount": 0, "active": True}

SQL_STATEMENTS = [
    # Lookup of a member's payments for the balance
    "CREATE INDEX IF NOT EXISTS idx_payments_member_identification ON payments(member_id, identification)",
    # Triage splits on dismissal
    "CREATE INDEX IF NOT EXISTS idx_payments_dismissed ON payments(dismissed_at)",
]


async def seed_default_level():
    async with AsyncSessionLocal() as session:
        existing = await session.execute(
            select(MembershipLevelDB).where(MembershipLevelDB.id == DEFAULT_LEVEL["id"])
        )
        if existing.scalar_one_or_none() is not None:
            print("  ✓ Default membership level present")
            return

        session.add(MembershipLevelDB(**DEFAULT_LEVEL))
        await session.commit()
        print("  ✓ Default membership level created")


async def create_tables():
    """Create the ledger tables."""
    print("Creating ledger tables...")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        print(f"  ✓ Tables: {', '.join(sorted(Base.metadata.tables.keys()))}")

        for i, sql in enumerate(SQL_STATEMENTS):
            try:
                await conn.execute(text(sql))
                print(f"  ✓ Statement {i+1}/{len(SQL_STATEMENTS)} executed")
            except Exception as e:
                print(f"  ✗ Statement {i+1}/{len(SQL_STATEMENTS)} failed: {e}")

    await seed_default_level()
    print("\n✅ Ledger tables created successfully!")


async def drop_tables():
    """Drop the tables (for testing)."""
    print("Dropping tables...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    print("✅ Tables dropped")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Manage member portal ledger tables")
    parser.add_argument("--drop", action="store_true", help="Drop tables instead of create")
    args = parser.parse_args()

    if args.drop:
        asyncio.run(drop_tables())
    else:
        asyncio.run(create_tables())
