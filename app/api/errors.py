"""
Exception handlers - Render every failure as the error envelope.

{statusCode, data: null, message, success: false, errors: [...]}
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.routing import Match
from structlog import get_logger

from app.exceptions import IdentityError
from app.models.api import ErrorResponse
from app.observability.metrics import metrics

logger = get_logger(__name__)

UNMATCHED_ROUTE = "unmatched"


def route_label(request: Request) -> str:
    """
    Route template for metric labels.

    Raw paths carry usernames and ids, so they never become labels; requests
    matching no route share one label.
    """
    route = request.scope.get("route")
    if route is not None:
        return getattr(route, "path", UNMATCHED_ROUTE)

    for candidate in request.app.router.routes:
        match, _ = candidate.matches(request.scope)
        if match != Match.NONE:
            return getattr(candidate, "path", UNMATCHED_ROUTE)
    return UNMATCHED_ROUTE


def error_response(
    status_code: int,
    message: str,
    errors: list[str] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build a JSON failure envelope."""
    body = ErrorResponse(status_code=status_code, message=message, errors=errors or [])
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True),
        headers=headers,
    )


async def identity_error_handler(request: Request, exc: IdentityError) -> JSONResponse:
    """Typed service errors carry their own status."""
    if exc.status_code >= 500:
        metrics.record_error(type(exc).__name__, route_label(request))
        logger.error(
            "identity_error",
            path=request.url.path,
            error_type=type(exc).__name__,
            error=exc.message,
        )
    else:
        logger.info(
            "request_rejected",
            path=request.url.path,
            error_type=type(exc).__name__,
            status_code=exc.status_code,
        )

    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return error_response(exc.status_code, exc.message, exc.errors, headers)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Framework-raised HTTP errors (404 route, 405 method, ...)."""
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return error_response(exc.status_code, message, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed request bodies surface as 400 Validation errors."""
    errors = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        errors.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))

    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        errors=errors,
    )
    return error_response(400, "Invalid request", errors)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything unexpected becomes a 500 without leaking details."""
    metrics.record_error(type(exc).__name__, route_label(request))
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    return error_response(500, "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    """Attach all envelope handlers to the application."""
    app.add_exception_handler(IdentityError, identity_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(
        RequestValidationError, validation_exception_handler  # type: ignore[arg-type]
    )
    app.add_exception_handler(Exception, unhandled_exception_handler)
