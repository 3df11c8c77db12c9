"""
FastAPI exception handlers. Every error reaches the client as {"error": "<message>"}.
"""
import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from utils.errors import (
    ConfigurationError,
    ExpenseTrackerError,
    ExternalCallError,
    NotFound,
    ValidationError,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = {
    ValidationError: 400,
    NotFound: 404,
    ExternalCallError: 502,
    ConfigurationError: 500,
}


def error_response(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def status_for(exc: ExpenseTrackerError) -> int:
    for error_type, status_code in STATUS_BY_ERROR.items():
        if isinstance(exc, error_type):
            return status_code
    return 500


def expense_error_handler(request: Request, exc: ExpenseTrackerError) -> JSONResponse:
    status_code = status_for(exc)
    logger.log(logging.ERROR if status_code >= 500 else logging.WARNING,
               f"{request.method} {request.url.path} failed with {status_code}: {exc.message}")
    return error_response(status_code, exc.message)


def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning(f"{request.method} {request.url.path} rejected invalid input: {exc.errors()}")
    return error_response(400, "Invalid request data.", details=jsonable_errors(exc))


def jsonable_errors(exc: RequestValidationError) -> list:
    """exc.errors() may hold exception objects in 'ctx', keep only what serializes."""
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", ""), "type": error.get("type", "")}
        for error in exc.errors()
    ]


def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=getattr(exc, "headers", None))
