import json
import logging
import traceback

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from sre_demo.core.config import get_settings

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Error carrying the HTTP status it should be reported with."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class BadRequestError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND


def _leaked_details(request: Request, exc: Exception) -> dict:
    # Deliberately unsafe, see CHAOS_MISSING_ERROR_HANDLING_ENABLED.
    settings = get_settings()
    raw_body = getattr(request.state, "raw_body", b"")
    try:
        body = json.loads(raw_body) if raw_body else None
    except ValueError:
        body = raw_body.decode("utf-8", errors="replace")

    return {
        "error": str(exc),
        "stack": "".join(
            traceback.format_exception(type(exc), exc, exc.__traceback__)
        ),
        "database": settings.database_url,
        "redis": settings.redis_connection_string,
        "environment": settings.environment,
        "path": request.url.path,
        "body": body,
    }


def error_response(
    request: Request, status_code: int, content: dict, exc: Exception
) -> JSONResponse:
    if get_settings().leak_error_details:
        content = {**content, **_leaked_details(request, exc)}
    content.setdefault("request_id", getattr(request.state, "request_id", None))
    return JSONResponse(status_code=status_code, content=content)


async def app_error_handler(request: Request, exc: AppError):
    logger.error(
        f"Error handled: {exc.message} ({request.method} {request.url.path})"
    )
    message = (
        "Internal Server Error"
        if exc.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        else exc.message
    )
    return error_response(request, exc.status_code, {"error": message}, exc)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = []
    for err in exc.errors():
        # "body" / "query" prefixes carry no information for the caller
        loc = [str(part) for part in err.get("loc", []) if part not in ("body", "query", "path")]
        details.append(
            {
                "type": str(err.get("type", "unknown")),
                "loc": loc,
                "msg": str(err.get("msg", "")),
            }
        )

    first = details[0] if details else {"loc": [], "msg": "Invalid request"}
    field = ".".join(first["loc"])
    message = f"{field}: {first['msg']}" if field else first["msg"]
    return error_response(
        request,
        status.HTTP_400_BAD_REQUEST,
        {"error": message, "details": details},
        exc,
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    content = {"error": exc.detail}
    if exc.status_code == status.HTTP_404_NOT_FOUND:
        content = {
            "error": "Not Found",
            "message": f"Cannot {request.method} {request.url.path}",
        }
    return error_response(request, exc.status_code, content, exc)


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=exc)
    return error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        {"error": "Internal Server Error"},
        exc,
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
