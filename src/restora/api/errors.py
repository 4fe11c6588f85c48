"""Exception handlers mapping the service error taxonomy to HTTP responses.

- ValidationError / request validation: 400
- RefusalError: 422
- RateLimitError: 429 with structured quota metadata
- JobTimeoutError: 504
- SessionBusyError / InvalidStateTransition: 409
- Any other ServiceError (including aggregated fallback failures): 500
"""

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from restora.models.state import InvalidStateTransition
from restora.services.exceptions import (
    JobTimeoutError,
    RateLimitError,
    RefusalError,
    ServiceError,
    SessionBusyError,
    ValidationError,
    describe_error,
)

logger = structlog.get_logger(__name__)

STATUS_BY_ERROR: dict[type[Exception], int] = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    RefusalError: 422,
    JobTimeoutError: status.HTTP_504_GATEWAY_TIMEOUT,
    SessionBusyError: status.HTTP_409_CONFLICT,
    InvalidStateTransition: status.HTTP_409_CONFLICT,
}


def status_for(error: Exception) -> int:
    for error_type in type(error).__mro__:
        if error_type in STATUS_BY_ERROR:
            return STATUS_BY_ERROR[error_type]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def service_error_handler(request: Request, exc: Exception) -> JSONResponse:
    status_code = status_for(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "api.request_failed",
        path=request.url.path,
        status_code=status_code,
        error_type=type(exc).__name__,
        error_message=describe_error(exc),
    )
    return JSONResponse(status_code=status_code, content={"error": describe_error(exc)})


async def rate_limit_handler(request: Request, exc: RateLimitError) -> JSONResponse:
    logger.info(
        "api.rate_limited",
        path=request.url.path,
        country=exc.country,
        limit=exc.limit,
    )
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"error": str(exc), "isRateLimit": True, **exc.to_dict()},
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    details = [
        f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}"
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Missing required fields", "details": details},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(RateLimitError, rate_limit_handler)
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(InvalidStateTransition, service_error_handler)
