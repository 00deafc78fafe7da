# routers/errors.py
# Maps service exceptions to HTTP errors for the routers.

import logging

from fastapi import HTTPException

from ..exceptions import (
    LoanServeError, NotFoundError, ValidationError, WebhookSignatureError
)

log = logging.getLogger(__name__)


def to_http_exception(error: Exception) -> HTTPException:
    if isinstance(error, HTTPException):
        return error
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, ValidationError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, WebhookSignatureError):
        return HTTPException(status_code=401, detail=str(error))
    if not isinstance(error, LoanServeError):
        log.error(f"Unhandled error: {type(error).__name__}: {error}")
    return HTTPException(status_code=500, detail=str(error))
