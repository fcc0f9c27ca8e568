"""
Ledger error hierarchy.

Routers translate these into HTTP responses:
- LookupNotFound -> 404
- PersistenceConflict -> 409
- LastIdentifierRemoval, InvalidAssignment -> 400
- UpstreamUnavailable -> 502
"""


class LedgerError(Exception):
    """Base class for payment ledger errors"""


class UpstreamUnavailable(LedgerError):
    """Bank feed could not be fetched (network, HTTP status or malformed JSON)"""


class MalformedTransactionDate(LedgerError):
    """A bank transaction carries a date in neither supported format"""

    def __init__(self, value: str):
        super().__init__(f"Unable to parse transaction date: {value!r}")
        self.value = value


class PersistenceConflict(LedgerError):
    """A uniqueness rule would be violated (identifier already in use, duplicate payment)"""


class LookupNotFound(LedgerError):
    """Referenced payment, member or project does not exist"""


class LastIdentifierRemoval(LedgerError):
    """Attempt to remove the only remaining identifier of a project"""


class InvalidAssignment(LedgerError):
    """Assignment request is inconsistent (missing target, target without identifier)"""
