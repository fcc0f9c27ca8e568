"""
Reconciliation Engine Module

Matches bank payments to members and projects by variable symbol (VS):
- Bank sync with idempotent upsert by bank transaction id
- Manual override path (assign / update / dismiss / undismiss / manual entry)
- Triage of payments no member could be matched to
"""

from reconciliation.errors import (
    LedgerError,
    UpstreamUnavailable,
    MalformedTransactionDate,
    PersistenceConflict,
    LookupNotFound,
    LastIdentifierRemoval,
    InvalidAssignment,
)
from reconciliation.assignment import (
    AssignType,
    MemberTarget,
    ProjectTarget,
    Unassigned,
    AssignmentTarget,
    build_target,
)

__all__ = [
    # Errors
    'LedgerError',
    'UpstreamUnavailable',
    'MalformedTransactionDate',
    'PersistenceConflict',
    'LookupNotFound',
    'LastIdentifierRemoval',
    'InvalidAssignment',
    # Assignment targets
    'AssignType',
    'MemberTarget',
    'ProjectTarget',
    'Unassigned',
    'AssignmentTarget',
    'build_target',
]
