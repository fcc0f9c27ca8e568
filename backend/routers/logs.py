"""
Admin Logs API Router

Endpoints:
- GET /api/admin/logs - System log entries (newest first) filtered by subsystem, level, member
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from middleware.auth import AuthPrincipal, require_admin
from services.audit import AuditLogger, serialize_log_entry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/logs", tags=["Admin Logs"])


@router.get("")
async def list_logs(
    principal: AuthPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
    subsystem: Optional[str] = Query(None, description="admin, cron, email, auth, keycloak, membership"),
    level: Optional[str] = Query(None, description="info, success, warning, error"),
    member_id: Optional[int] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    entries = await AuditLogger(db).list_entries(
        subsystem=subsystem,
        level=level,
        member_id=member_id,
        limit=limit,
        offset=offset,
    )
    return {
        "success": True,
        "logs": [serialize_log_entry(e) for e in entries],
        "count": len(entries),
    }
