from fastapi import HTTPException, status

from bandi.services.repository import (
    ReconciliationError,
    RepositoryConflictError,
    RepositoryError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
)

# Client-side failures all share one status.
PRECONDITION_ERRORS = (RepositoryNotFoundError, RepositoryConflictError, RepositoryValidationError)


def http_error(exc: RepositoryError) -> HTTPException:
    if isinstance(exc, (RepositoryUnavailableError, ReconciliationError)):
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
    if isinstance(exc, PRECONDITION_ERRORS):
        return HTTPException(status_code=status.HTTP_412_PRECONDITION_FAILED, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
