import datetime
import logging
import traceback
from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from hc_registry.core.exceptions import RegistryError
from hc_registry.settings import settings

logger = logging.getLogger(__name__)


class ErrorResponse(Exception):
    """Standardised error response format.

    The client only ever sees ``{"error": {"message": ..., "details": [...]}}``.
    Request context and stack information are kept for the log record.
    """

    def __init__(
        self,
        status_code: int,
        message: str,
        *,
        request: Request | None = None,
        details: list[dict[str, Any]] | None = None,
        error_type: str = "error",
        exc: Exception | None = None,
        include_stack: bool = False,
    ) -> None:
        self.timestamp = datetime.datetime.now()
        self.status_code = status_code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.context: dict[str, Any] = {}

        if request:
            endpoint = request.scope.get("endpoint")
            self.context.update(
                {
                    "method": request.method,
                    "path": request.url.path,
                    "endpoint": (
                        f"{endpoint.__module__}.{endpoint.__name__}"
                        if endpoint
                        else None
                    ),
                }
            )

        if include_stack and exc and exc.__traceback__:
            tb_exc = traceback.TracebackException.from_exception(exc)
            if tb_exc.stack:
                last = tb_exc.stack[-1]
                self.context["source_location"] = {
                    "file": last.filename,
                    "line": last.lineno,
                    "function": last.name,
                }
            self.context["stack"] = list(tb_exc.format())

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"message": self.message}
        if self.details:
            error["details"] = self.details
        return {"error": error}

    def log_extra(self) -> dict[str, Any]:
        return {
            "status_code": self.status_code,
            "error_type": self.error_type,
            "error_message": self.message,
            "error_context": self.context,
        }

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.to_dict())


def _extract_value(body: Any, path: tuple[Any, ...]) -> Any:
    """
    Walk the request body using the error location to fetch the offending value
    ('body', 'foo', 0, 'bar') → body['foo'][0]['bar']
    """
    try:
        cur = body
        for part in path[1:]:
            if isinstance(cur, dict):
                cur = cur.get(part)
            elif isinstance(cur, list):
                cur = cur[part]
            else:
                return None
        return cur
    except (KeyError, IndexError, TypeError):
        return None


def _field_name(loc: tuple[Any, ...]) -> str:
    parts = [str(p) for p in loc if p not in ("body", "query", "path")]
    return ".".join(parts) if parts else str(loc[-1])


def format_validation_error(
    exc: RequestValidationError,
    request: Request,
) -> ErrorResponse:
    body = exc.body
    details: list[dict[str, Any]] = []
    invalid_values: dict[str, Any] = {}

    for err in exc.errors():
        loc_tuple: tuple[Any, ...] = tuple(err["loc"])
        field = _field_name(loc_tuple)
        message = err["msg"]
        # pydantic prefixes custom validator messages
        if message.startswith("Value error, "):
            message = message[len("Value error, ") :]
        details.append({"field": field, "message": message})
        if loc_tuple and loc_tuple[0] == "body":
            invalid_values[field] = _extract_value(body, loc_tuple)

    error_response = ErrorResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        message="Validation failed",
        request=request,
        details=details,
        error_type="validation_error",
    )
    error_response.context["invalid_values"] = invalid_values
    return error_response


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    error_response = format_validation_error(exc, request)
    logger.warning("Validation error", extra=error_response.log_extra())
    return error_response.to_response()


async def registry_exception_handler(
    request: Request, exc: RegistryError
) -> JSONResponse:
    """Render domain exceptions raised by the services."""
    error_response = ErrorResponse(
        status_code=exc.status_code,
        message=exc.message,
        request=request,
        details=exc.details,
        error_type=type(exc).__name__,
    )
    if exc.status_code >= 500:
        logger.error(f"Registry error: {exc.message}", extra=error_response.log_extra())
    else:
        logger.info(f"Request rejected: {exc.message}", extra=error_response.log_extra())
    return error_response.to_response()


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Handle HTTP exceptions."""
    error_response = ErrorResponse(
        status_code=exc.status_code,
        message=str(exc.detail),
        request=request,
        error_type="http_error",
    )
    logger.warning(f"HTTP error: {error_response.to_dict()}")
    response = error_response.to_response()
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Only expose the stack trace outside PROD
    show_stack = settings.ENVIRONMENT != "PROD"
    error_response = ErrorResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message=str(exc) if show_stack else "An unexpected error occurred.",
        request=request,
        error_type="server_error",
        exc=exc,
        include_stack=show_stack,
    )
    if show_stack:
        error_response.details = [
            {
                "exception_type": type(exc).__name__,
                "stack": error_response.context.get("stack", []),
            }
        ]
    logger.error("Unhandled exception", exc_info=exc, extra=error_response.log_extra())
    return error_response.to_response()
