from .connection import get_db, engine, AsyncSessionLocal, init_db, Base

# Import ledger models to ensure they are registered with Base
from .models import (
    MembershipLevelDB, MemberDB, PaymentDB, FeeDB,
    ProjectDB, ProjectIdentifierDB, SystemLogDB,
    MemberState, PaymentKind, LogLevel, DISMISSED_MARKER,
)

__all__ = [
    'get_db', 'engine', 'AsyncSessionLocal', 'init_db', 'Base',
    # Ledger models
    'MembershipLevelDB', 'MemberDB', 'PaymentDB', 'FeeDB',
    'ProjectDB', 'ProjectIdentifierDB', 'SystemLogDB',
    'MemberState', 'PaymentKind', 'LogLevel', 'DISMISSED_MARKER',
]
