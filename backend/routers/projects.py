"""
Admin Projects API Router

Endpoints:
- GET /api/admin/projects - Projects with VS list and collected amount
- POST /api/admin/projects - Create a project with its primary VS
- DELETE /api/admin/projects/{project_id} - Delete a project
- GET /api/admin/projects/{project_id}/payments - Payments of a project
- POST /api/admin/projects/{project_id}/identifiers - Add a VS
- DELETE /api/admin/projects/{project_id}/identifiers/{vs} - Remove a VS

A project always keeps at least one VS; removing the last one returns 400.
"""

import logging

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from database.models import MemberDB
from middleware.auth import AuthPrincipal, require_admin, get_admin_member
from reconciliation.errors import LedgerError
from reconciliation.services.triage_service import serialize_payment
from routers.errors import ledger_http_exception
from services.projects import ProjectService, serialize_project

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/projects", tags=["Admin Projects"])


class CreateProjectRequest(BaseModel):
    name: str = Field(..., min_length=1)
    payments_id: str = Field(..., min_length=1, description="Primary VS")
    description: str = ""


class AddIdentifierRequest(BaseModel):
    vs: str = Field(..., min_length=1)
    note: str = ""


@router.get("")
async def list_projects(
    principal: AuthPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    projects = await ProjectService(db).list_projects()
    return {"success": True, "projects": projects}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_project(
    request: CreateProjectRequest,
    admin: MemberDB = Depends(get_admin_member),
    db: AsyncSession = Depends(get_db)
):
    """Create a project. The VS must not be used by another project or a member."""
    try:
        project = await ProjectService(db).create(
            name=request.name,
            payments_id=request.payments_id,
            admin=admin,
            description=request.description,
        )
    except LedgerError as e:
        raise ledger_http_exception(e)

    return {
        "success": True,
        "message": "Project created successfully",
        "project": serialize_project(project),
    }


@router.delete("/{project_id}")
async def delete_project(
    project_id: int,
    admin: MemberDB = Depends(get_admin_member),
    db: AsyncSession = Depends(get_db)
):
    """Delete a project and its VS list. Its payments stay in the ledger, unlinked."""
    try:
        await ProjectService(db).delete(project_id, admin)
    except LedgerError as e:
        raise ledger_http_exception(e)

    return {"success": True, "message": "Project deleted successfully"}


@router.get("/{project_id}/payments")
async def list_project_payments(
    project_id: int,
    principal: AuthPrincipal = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    try:
        payments = await ProjectService(db).payments(project_id)
    except LedgerError as e:
        raise ledger_http_exception(e)

    return {"success": True, "payments": [serialize_payment(p) for p in payments]}


@router.post("/{project_id}/identifiers", status_code=status.HTTP_201_CREATED)
async def add_project_identifier(
    project_id: int,
    request: AddIdentifierRequest,
    admin: MemberDB = Depends(get_admin_member),
    db: AsyncSession = Depends(get_db)
):
    try:
        await ProjectService(db).add_identifier(project_id, request.vs, admin, note=request.note)
    except LedgerError as e:
        raise ledger_http_exception(e)

    return {"success": True, "message": "VS added successfully"}


@router.delete("/{project_id}/identifiers/{vs}")
async def remove_project_identifier(
    project_id: int,
    vs: str,
    admin: MemberDB = Depends(get_admin_member),
    db: AsyncSession = Depends(get_db)
):
    try:
        await ProjectService(db).remove_identifier(project_id, vs, admin)
    except LedgerError as e:
        raise ledger_http_exception(e)

    return {"success": True, "message": "VS removed successfully"}
