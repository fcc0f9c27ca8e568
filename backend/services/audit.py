"""
Centralized Audit Logging for the Member Portal

Every mutating admin action, scheduled job summary, outbound email and
identity-linking event is written to the system_logs table:
- admin: payment assignment, dismissal, project and member changes
- cron: monthly fee and bank sync summaries
- email: notification deliveries
- auth / keycloak: member creation and identity linking
- membership: fee changes made by the member

Entries are added to the caller's session; the caller owns the commit so an
audit entry is persisted together with the change it describes.
"""

from typing import List, Optional, Dict, Any, Union
from enum import Enum
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import SystemLogDB, LogLevel

logger = logging.getLogger(__name__)


# ==================== ENUMS ====================

class AuditSubsystem(str, Enum):
    """Subsystems writing to the audit trail"""
    ADMIN = "admin"
    CRON = "cron"
    EMAIL = "email"
    AUTH = "auth"
    KEYCLOAK = "keycloak"
    MEMBERSHIP = "membership"


_LEVEL_TO_LOGGING = {
    LogLevel.INFO.value: logging.INFO,
    LogLevel.SUCCESS.value: logging.INFO,
    LogLevel.WARNING.value: logging.WARNING,
    LogLevel.ERROR.value: logging.ERROR,
}


# ==================== AUDIT LOGGER ====================

class AuditLogger:
    """
    Audit logger bound to a database session.

    Usage:
        audit = AuditLogger(db)
        await audit.log(
            AuditSubsystem.ADMIN,
            "Admin jan dismissed payment #12",
            member_id=admin.id,
            metadata={"payment_id": 12, "reason": "refund"},
        )
        await db.commit()
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        subsystem: Union[AuditSubsystem, str],
        message: str,
        level: Union[LogLevel, str] = LogLevel.INFO,
        member_id: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SystemLogDB:
        """
        Add an audit entry to the current session.

        Args:
            subsystem: Subsystem the entry belongs to
            message: Human readable description
            level: info, success, warning or error
            member_id: Acting (or affected) member
            metadata: Structured details stored as JSON

        Returns:
            The pending SystemLogDB row
        """
        subsystem_str = subsystem.value if isinstance(subsystem, AuditSubsystem) else subsystem
        level_str = level.value if isinstance(level, LogLevel) else level

        entry = SystemLogDB(
            subsystem=subsystem_str,
            level=level_str,
            member_id=member_id,
            message=message,
            log_metadata=metadata or {},
        )
        self.db.add(entry)

        # Mirror to the application log
        logger.log(
            _LEVEL_TO_LOGGING.get(level_str, logging.INFO),
            f"AUDIT [{subsystem_str}] {message}",
            extra={"audit_subsystem": subsystem_str, "member_id": member_id},
        )

        return entry

    async def list_entries(
        self,
        subsystem: Optional[str] = None,
        level: Optional[str] = None,
        member_id: Optional[int] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[SystemLogDB]:
        """Newest-first audit entries with optional filters."""
        query = select(SystemLogDB)
        if subsystem:
            query = query.where(SystemLogDB.subsystem == subsystem)
        if level:
            query = query.where(SystemLogDB.level == level)
        if member_id is not None:
            query = query.where(SystemLogDB.member_id == member_id)

        query = query.order_by(SystemLogDB.created_at.desc(), SystemLogDB.id.desc())
        query = query.offset(offset).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())


def serialize_log_entry(entry: SystemLogDB) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "subsystem": entry.subsystem,
        "level": entry.level,
        "member_id": entry.member_id,
        "message": entry.message,
        "metadata": entry.log_metadata or {},
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
