"""
Project Service

Fundraising projects and their payment identifiers (VS).

A project owns one or more identifiers; each identifier belongs to exactly
one project and is never shared with a member. Payments count toward a
project when linked to it or when they carry one of its identifiers.
"""

import logging
from typing import Optional, Dict, Any, List

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import MemberDB, PaymentDB, ProjectDB, ProjectIdentifierDB
from reconciliation.errors import (
    LookupNotFound, PersistenceConflict, LastIdentifierRemoval, InvalidAssignment
)
from services.audit import AuditLogger, AuditSubsystem
from services.balance import project_balance, project_payments_clause

logger = logging.getLogger(__name__)

PRIMARY_NOTE = "primary"


def serialize_project(project: ProjectDB, total_amount=None) -> Dict[str, Any]:
    data = {
        "id": project.id,
        "name": project.name,
        "payments_id": project.payments_id,
        "description": project.description,
        "vs_list": [{"vs": i.vs, "note": i.note or ""} for i in project.identifiers],
        "created_at": project.created_at.isoformat() if project.created_at else None,
    }
    if total_amount is not None:
        data["total_amount"] = str(total_amount)
    return data


class ProjectService:
    """
    Admin operations on projects.

    Usage:
        service = ProjectService(db)
        project = await service.create(name="New 3D printer", payments_id="7001", admin=admin)
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditLogger(db)

    async def get_project(self, project_id: int) -> ProjectDB:
        project = await self.db.get(ProjectDB, project_id)
        if project is None:
            raise LookupNotFound("Project not found")
        return project

    async def list_projects(self) -> List[Dict[str, Any]]:
        """All projects with their identifiers and collected amount."""
        result = await self.db.execute(select(ProjectDB).order_by(ProjectDB.id))
        projects = []
        for project in result.scalars().all():
            total = await project_balance(self.db, project.id)
            projects.append(serialize_project(project, total))
        return projects

    async def create(
        self,
        name: str,
        payments_id: str,
        admin: MemberDB,
        description: str = "",
    ) -> ProjectDB:
        """
        Create a project with its primary identifier.

        Raises:
            InvalidAssignment: name or identifier missing
            PersistenceConflict: identifier already used
        """
        name = (name or "").strip()
        payments_id = (payments_id or "").strip()
        if not name:
            raise InvalidAssignment("Project name is required")
        if not payments_id:
            raise InvalidAssignment("Project payment identifier is required")

        await self._ensure_identifier_free(payments_id)

        project = ProjectDB(
            name=name,
            payments_id=payments_id,
            description=description or None,
        )
        project.identifiers.append(ProjectIdentifierDB(vs=payments_id, note=PRIMARY_NOTE))
        self.db.add(project)
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            raise PersistenceConflict(f"VS '{payments_id}' is already in use") from e

        await self.audit.log(
            AuditSubsystem.ADMIN,
            f"Admin {admin.username or 'unknown'} ({admin.email}) created project "
            f"'{project.name}' with VS '{payments_id}'",
            member_id=admin.id,
            metadata={
                "admin_user_id": admin.id,
                "action": "create_project",
                "project_id": project.id,
                "vs": payments_id,
            },
        )
        await self.db.commit()
        return project

    async def delete(self, project_id: int, admin: MemberDB) -> None:
        """
        Delete a project and its identifiers.

        Payments linked to the project stay in the ledger, unlinked.
        """
        project = await self.get_project(project_id)
        name = project.name
        identifiers = project.identifier_values

        unlinked = await self.db.execute(
            update(PaymentDB)
            .where(PaymentDB.project_id == project.id)
            .values(project_id=None)
            .execution_options(synchronize_session=False)
        )
        await self.db.delete(project)

        await self.audit.log(
            AuditSubsystem.ADMIN,
            f"Admin {admin.username or 'unknown'} ({admin.email}) deleted project '{name}'",
            member_id=admin.id,
            metadata={
                "admin_user_id": admin.id,
                "action": "delete_project",
                "project_id": project_id,
                "vs_list": identifiers,
                "unlinked_payments": unlinked.rowcount,
            },
        )
        await self.db.commit()

    async def payments(self, project_id: int) -> List[PaymentDB]:
        """Payments linked to the project or carrying one of its identifiers, newest first."""
        await self.get_project(project_id)
        result = await self.db.execute(
            select(PaymentDB)
            .where(project_payments_clause(project_id))
            .order_by(PaymentDB.date.desc(), PaymentDB.id.desc())
        )
        return list(result.scalars().all())

    # ==================== IDENTIFIERS ====================

    async def add_identifier(
        self,
        project_id: int,
        vs: str,
        admin: MemberDB,
        note: str = "",
    ) -> ProjectIdentifierDB:
        """
        Attach another identifier to a project.

        Raises:
            PersistenceConflict: identifier used by another project or a member
        """
        project = await self.get_project(project_id)
        vs = (vs or "").strip()
        if not vs:
            raise InvalidAssignment("VS is required")

        if vs in project.identifier_values:
            raise PersistenceConflict(f"VS '{vs}' is already assigned to this project")
        await self._ensure_identifier_free(vs)

        identifier = ProjectIdentifierDB(project_id=project.id, vs=vs, note=note or None)
        project.identifiers.append(identifier)

        await self.audit.log(
            AuditSubsystem.ADMIN,
            f"Admin {admin.username or 'unknown'} ({admin.email}) added VS '{vs}' to project '{project.name}'",
            member_id=admin.id,
            metadata={
                "admin_user_id": admin.id,
                "action": "add_project_vs",
                "project_id": project.id,
                "vs": vs,
                "note": note or "",
            },
        )
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise PersistenceConflict(f"VS '{vs}' is already in use") from e
        return identifier

    async def remove_identifier(self, project_id: int, vs: str, admin: MemberDB) -> None:
        """
        Detach an identifier from a project.

        Raises:
            LookupNotFound: the project does not own this identifier
            LastIdentifierRemoval: it is the project's only identifier
        """
        project = await self.get_project(project_id)
        identifier = next((i for i in project.identifiers if i.vs == vs), None)
        if identifier is None:
            raise LookupNotFound(f"VS '{vs}' does not belong to this project")
        if len(project.identifiers) <= 1:
            raise LastIdentifierRemoval("Cannot remove the last VS from a project")

        project.identifiers.remove(identifier)
        if project.payments_id == vs:
            project.payments_id = project.identifiers[0].vs

        await self.audit.log(
            AuditSubsystem.ADMIN,
            f"Admin {admin.username or 'unknown'} ({admin.email}) removed VS '{vs}' from project '{project.name}'",
            member_id=admin.id,
            metadata={
                "admin_user_id": admin.id,
                "action": "remove_project_vs",
                "project_id": project.id,
                "vs": vs,
            },
        )
        await self.db.commit()

    async def _ensure_identifier_free(self, vs: str) -> None:
        result = await self.db.execute(
            select(ProjectIdentifierDB.project_id).where(ProjectIdentifierDB.vs == vs)
        )
        if result.scalar_one_or_none() is not None:
            raise PersistenceConflict(f"VS '{vs}' is already used by another project")

        result = await self.db.execute(select(MemberDB.id).where(MemberDB.payments_id == vs))
        if result.scalar_one_or_none() is not None:
            raise PersistenceConflict(f"VS '{vs}' is already used by a member")
