"""
Mapping from arcpay exceptions to HTTP responses.
"""

from fastapi import HTTPException

from .errors import (
    ArcpayError,
    ConfigurationError,
    InvalidInputError,
    JobStateError,
    NotAuthorizedError,
    NotFoundError,
    TransientStepError,
)

_STATUS_CODES = (
    (InvalidInputError, 400),
    (NotAuthorizedError, 403),
    (NotFoundError, 404),
    (JobStateError, 409),
    (ConfigurationError, 503),
    (TransientStepError, 503),
)


def to_http_exception(error: ArcpayError) -> HTTPException:
    """400 for bad input, 404 for unknown ids, 409 for state conflicts."""
    for error_type, status_code in _STATUS_CODES:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))
