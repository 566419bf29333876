"""Exception to HTTP response mapping."""

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse

from txguard.domains.security.errors import (
    AttemptsExhaustedError,
    DependencyError,
    ExpiredError,
    InsufficientBalanceError,
    NotFoundError,
    NotVerifiedError,
    SecurityError,
    ValidationError,
    WrongCodeError,
)

logger = structlog.get_logger()

# Most specific first; SecurityError subclasses also inherit ValueError/LookupError
STATUS_CODES: list[tuple[type[SecurityError], int]] = [
    (ValidationError, 400),
    (WrongCodeError, 400),
    (InsufficientBalanceError, 400),
    (NotFoundError, 404),
    (ExpiredError, 410),
    (AttemptsExhaustedError, 429),
    (NotVerifiedError, 403),
    (DependencyError, 503),
]


def status_for(exc: SecurityError) -> int:
    for error_type, status_code in STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 400


async def security_exception_handler(request: Request, exc: SecurityError) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")
    status_code = status_for(exc)
    if exc.retryable:
        logger.error(
            "dependency_failure", request_id=request_id, error=exc.message, details=exc.details
        )
    else:
        logger.warning(exc.code, request_id=request_id, error=exc.message)
    return JSONResponse(
        status_code=status_code,
        content={**exc.to_dict(), "request_id": request_id},
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    if isinstance(exc, SecurityError):
        return await security_exception_handler(request, exc)

    request_id = getattr(request.state, "request_id", "unknown")

    if isinstance(exc, ValueError):
        logger.warning("bad_request", request_id=request_id, error=str(exc))
        return JSONResponse(
            status_code=400,
            content={"error": "bad_request", "message": str(exc), "request_id": request_id},
        )

    if isinstance(exc, LookupError):
        logger.warning("not_found", request_id=request_id, error=str(exc))
        return JSONResponse(
            status_code=404,
            content={"error": "not_found", "message": str(exc), "request_id": request_id},
        )

    logger.exception("unhandled_exception", request_id=request_id, error=str(exc))
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred",
            "request_id": request_id,
        },
    )
