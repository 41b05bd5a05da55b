"""Map domain exceptions to HTTP responses.

Services raise Localstays exceptions only; the status code is decided here.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from Localstays.schemas.common import ErrorResponse
from Localstays.utils.exceptions import (
    APIException,
    BaseAppException,
    ConfigException,
    ConflictError,
    NotFoundError,
    StateError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# First match wins, subclasses before their bases
STATUS_BY_EXCEPTION = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (StateError, status.HTTP_409_CONFLICT),
    (ConfigException, status.HTTP_503_SERVICE_UNAVAILABLE),
    (APIException, status.HTTP_502_BAD_GATEWAY),
)


def status_for(exc: BaseAppException) -> int:
    for exc_type, status_code in STATUS_BY_EXCEPTION:
        if isinstance(exc, exc_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def app_exception_handler(request: Request, exc: BaseAppException) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc)
    else:
        logger.info(f"{request.method} {request.url.path} -> {status_code}: {exc.message}")
    body = ErrorResponse(code=exc.code, message=exc.message, details=exc.details or None)
    return JSONResponse(status_code=status_code, content={"detail": body.model_dump(mode="json")})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BaseAppException, app_exception_handler)
