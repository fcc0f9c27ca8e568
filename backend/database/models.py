"""
Member Portal - Ledger Database Models

Tables:
- levels: Membership levels and their monthly fee
- members: Members with their payment identifier (VS) and effective fee
- payments: Bank and manual payments, linked to a member or a project
- fees: Expected monthly fees (one per member per month)
- projects: Fundraising projects
- project_vs: Payment identifiers owned by a project
- system_logs: Audit trail for admin actions, jobs, emails and identity linking

Invariant kept by every write path: a payment linked to a member carries that
member's payments_id as identification; a payment linked to a project carries
one of the project's identifiers.
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import (
    Column, Integer, String, Text, Boolean, Date, DateTime,
    ForeignKey, Index, JSON, Numeric, UniqueConstraint
)
from sqlalchemy.orm import relationship

from database.connection import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ==================== ENUMS ====================

class MemberState(str, PyEnum):
    """Membership lifecycle state"""
    AWAITING = "awaiting"
    ACCEPTED = "accepted"
    SUSPENDED = "suspended"
    REJECTED = "rejected"
    EXMEMBER = "exmember"


class PaymentKind(str, PyEnum):
    """Origin of a payment record"""
    FIO = "fio"        # Fio bank sync
    MANUAL = "manual"  # Admin manual entry


class LogLevel(str, PyEnum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


# Staff comment prefix written when a payment is dismissed
DISMISSED_MARKER = "[DISMISSED]"


# ==================== DATABASE MODELS ====================

class MembershipLevelDB(Base):
    """Membership level with its default monthly fee."""
    __tablename__ = "levels"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)

    members = relationship("MemberDB", back_populates="level")


class MemberDB(Base):
    """
    Member of the organization.

    level_actual_amount is the effective monthly fee; zero means
    "use the level amount". payments_id is the member's VS.
    Members are never deleted, only moved to another state.
    """
    __tablename__ = "members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True)
    username = Column(String(100), nullable=True)
    realname = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    altcontact = Column(String(255), nullable=True)

    level_id = Column(Integer, ForeignKey("levels.id"), nullable=False, default=1)
    level_actual_amount = Column(Numeric(12, 2), nullable=False, default=0)
    payments_id = Column(String(32), nullable=True, unique=True)

    state = Column(String(20), nullable=False, default=MemberState.AWAITING.value, index=True)
    external_id = Column(String(255), nullable=True, unique=True)

    is_council = Column(Boolean, nullable=False, default=False)
    is_staff = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    level = relationship("MembershipLevelDB", back_populates="members", lazy="selectin")


class PaymentDB(Base):
    """
    Incoming payment (bank or manual).

    (kind, kind_id) identifies the source record, so re-importing the same
    bank transaction updates instead of duplicating.
    """
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(String(20), nullable=False, default=PaymentKind.FIO.value)
    kind_id = Column(String(64), nullable=False)

    date = Column(Date, nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    local_account = Column(String(64), nullable=True)
    remote_account = Column(String(64), nullable=True)
    identification = Column(String(64), nullable=False, default="", index=True)

    member_id = Column(Integer, ForeignKey("members.id"), nullable=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True)

    raw_data = Column(JSON, nullable=True)
    staff_comment = Column(Text, nullable=True)

    dismissed_at = Column(DateTime(timezone=True), nullable=True)
    dismissed_by = Column(Integer, ForeignKey("members.id"), nullable=True)
    dismissed_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)

    member = relationship("MemberDB", foreign_keys=[member_id], lazy="selectin")
    project = relationship("ProjectDB", back_populates="payments")

    __table_args__ = (
        UniqueConstraint('kind', 'kind_id', name='uq_payments_kind_kind_id'),
        Index('ix_payments_member_date', 'member_id', 'date'),
    )

    @property
    def is_dismissed(self) -> bool:
        return self.dismissed_at is not None


class FeeDB(Base):
    """Expected monthly fee for one member and one period."""
    __tablename__ = "fees"

    id = Column(Integer, primary_key=True, autoincrement=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=False, index=True)
    level_id = Column(Integer, ForeignKey("levels.id"), nullable=False)
    period_start = Column(Date, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        UniqueConstraint('member_id', 'period_start', name='uq_fees_member_period'),
    )


class ProjectDB(Base):
    """
    Fundraising project.

    payments_id is the legacy primary VS; the full identifier set lives in
    project_vs and always holds at least one row.
    """
    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    payments_id = Column(String(32), nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    identifiers = relationship(
        "ProjectIdentifierDB",
        back_populates="project",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ProjectIdentifierDB.id",
    )
    payments = relationship("PaymentDB", back_populates="project", passive_deletes=True)

    @property
    def identifier_values(self) -> list:
        return [i.vs for i in self.identifiers]


class ProjectIdentifierDB(Base):
    """Payment identifier (VS) belonging to a project. Unique across all projects."""
    __tablename__ = "project_vs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    vs = Column(String(32), nullable=False, unique=True)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    project = relationship("ProjectDB", back_populates="identifiers")


class SystemLogDB(Base):
    """
    Audit trail entry.

    subsystem: admin, cron, email, auth, keycloak, membership, payments
    """
    __tablename__ = "system_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subsystem = Column(String(50), nullable=False, index=True)
    level = Column(String(20), nullable=False, default=LogLevel.INFO.value, index=True)
    member_id = Column(Integer, ForeignKey("members.id"), nullable=True, index=True)
    message = Column(Text, nullable=False)
    log_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, index=True)

    __table_args__ = (
        Index('ix_system_logs_subsystem_time', 'subsystem', 'created_at'),
    )
