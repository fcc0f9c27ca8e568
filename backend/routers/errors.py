"""HTTP mapping for ledger errors raised by the services."""

import logging

from fastapi import HTTPException, status

from reconciliation.errors import (
    LedgerError,
    UpstreamUnavailable,
    PersistenceConflict,
    LookupNotFound,
    LastIdentifierRemoval,
    InvalidAssignment,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR = (
    (LookupNotFound, status.HTTP_404_NOT_FOUND),
    (PersistenceConflict, status.HTTP_409_CONFLICT),
    (LastIdentifierRemoval, status.HTTP_400_BAD_REQUEST),
    (InvalidAssignment, status.HTTP_400_BAD_REQUEST),
    (UpstreamUnavailable, status.HTTP_502_BAD_GATEWAY),
)


def ledger_http_exception(error: LedgerError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))

    logger.error(f"Unmapped ledger error: {error}")
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
