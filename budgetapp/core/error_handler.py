"""
Error handling and sanitization

- BudgetAppError subclasses -> their status and {"error", "message"} envelope
- Request validation errors -> 400 VALIDATION_ERROR (safe to expose)
- Anything else -> logged with traceback, generic 500 to the client
"""
import logging
import traceback

from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from budgetapp.core.config import settings
from budgetapp.core.exceptions import BudgetAppError, RateLimited

logger = logging.getLogger(__name__)


async def budgetapp_error_handler(request: Request, exc: BudgetAppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc!r} on {request.method} {request.url.path}: {exc.details}")
        body = {"error": exc.code, "message": exc.default_message}
    else:
        body = exc.to_dict()

    headers = None
    if isinstance(exc, RateLimited) and exc.retry_after_seconds is not None:
        headers = {"Retry-After": str(exc.retry_after_seconds)}

    return JSONResponse(status_code=exc.status_code, content=body, headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ())[1:]) or "body",
            "message": err.get("msg", "Invalid value"),
        }
        for err in exc.errors()
    ]
    first = errors[0]["message"] if errors else "Invalid request data"
    return JSONResponse(
        status_code=400,
        content={"error": "VALIDATION_ERROR", "message": first, "details": {"errors": errors}},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BudgetAppError, budgetapp_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)


class ErrorSanitizationMiddleware(BaseHTTPMiddleware):
    """
    Catch unhandled exceptions and sanitize error responses.

    - In production: Returns generic error, logs full details
    - In development: Returns full error for debugging
    """

    async def dispatch(self, request: Request, call_next):
        try:
            response = await call_next(request)
            return response
        except HTTPException:
            raise
        except Exception as e:
            error_id = f"{request.client.host if request.client else 'unknown'}-{id(e)}"
            logger.error(
                f"Unhandled exception [{error_id}]: {type(e).__name__}: {str(e)}\n"
                f"Path: {request.url.path}\n"
                f"Method: {request.method}\n"
                f"Traceback:\n{traceback.format_exc()}"
            )

            if settings.DEBUG:
                return JSONResponse(
                    status_code=500,
                    content={
                        "error": "INTERNAL_ERROR",
                        "message": str(e),
                        "type": type(e).__name__,
                        "error_id": error_id,
                    }
                )
            return JSONResponse(
                status_code=500,
                content={
                    "error": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred. Please try again later.",
                    "error_id": error_id,
                }
            )
