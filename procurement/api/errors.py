from fastapi import HTTPException

from procurement.core.errors import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
    WorkflowError,
)

_STATUS_CODES = (
    (ValidationError, 400),
    (AuthorizationError, 403),
    (NotFoundError, 404),
    (InvalidStateError, 409),
)


def to_http_error(exc: WorkflowError) -> HTTPException:
    """Map a workflow error onto the HTTP status the API reports for it."""
    for error_type, status_code in _STATUS_CODES:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
