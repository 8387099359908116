"""
Exception handlers for the FastAPI application.

Domain errors are rendered with DomainException.to_dict(); the status code
depends on the error family.
"""
import logging
from typing import List, Tuple, Type

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from domain.exceptions import (
    BusinessRuleViolationError,
    DomainException,
    DuplicateEmailError,
    DuplicateFavoriteError,
    EntityNotFoundError,
    ForbiddenActionError,
    InvalidStatusTransitionError,
    PersistenceError,
    PropertyNotAvailableError,
    ValidationException,
)

logger = logging.getLogger(__name__)

# first match wins
STATUS_CODES: List[Tuple[Type[DomainException], int]] = [
    (ValidationException, status.HTTP_400_BAD_REQUEST),
    (EntityNotFoundError, status.HTTP_404_NOT_FOUND),
    (ForbiddenActionError, status.HTTP_403_FORBIDDEN),
    (InvalidStatusTransitionError, status.HTTP_409_CONFLICT),
    (PropertyNotAvailableError, status.HTTP_409_CONFLICT),
    (DuplicateFavoriteError, status.HTTP_409_CONFLICT),
    (DuplicateEmailError, status.HTTP_409_CONFLICT),
    (BusinessRuleViolationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (PersistenceError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_code_for(exc: DomainException) -> int:
    for exc_type, code in STATUS_CODES:
        if isinstance(exc, exc_type):
            return code
    return status.HTTP_400_BAD_REQUEST


async def domain_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Render a DomainException with its error code and details"""
    if not isinstance(exc, DomainException):
        return await global_exception_handler(request, exc)

    code = status_code_for(exc)
    if code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {code} {exc.code}")
    return JSONResponse(status_code=code, content=exc.to_dict())


async def validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Request body / query validation errors, in the same shape as domain errors"""
    errors = []
    if isinstance(exc, RequestValidationError):
        for error in exc.errors():
            errors.append({
                "field": ".".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            })

    logger.warning(f"Validation error on {request.url.path}: {errors}")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"error": "REQUEST_VALIDATION_ERROR", "message": "Validation error", "details": {"errors": errors}},
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled exception on {request.method} {request.url.path}: {exc!s}",
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "INTERNAL_ERROR", "message": "Internal server error", "details": {}},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainException, domain_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    logger.info("Exception handlers registered")
