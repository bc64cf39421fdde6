from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront.logger import get_logger

_logger = get_logger(__name__)


class ApiError(HTTPException):
    status_code = 500
    default_detail = "Internal server error"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(status_code=self.status_code, detail=detail or self.default_detail)


class InvalidRequest(ApiError):
    status_code = 400
    default_detail = "Invalid request"


class AuthenticationRequired(ApiError):
    status_code = 401
    default_detail = "Authentication required"


class AccessDenied(ApiError):
    status_code = 403
    default_detail = "Access denied. Admin role required."


class NotFound(ApiError):
    status_code = 404
    default_detail = "Not found"


class Conflict(ApiError):
    status_code = 409
    default_detail = "Conflict"


class ProductAlreadyDeleted(InvalidRequest):
    default_detail = "Product is already deleted"


def _field_errors(errors: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    details = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ())]
        if loc and loc[0] in ("body", "query"):
            loc = loc[1:]
        details.append({"field": ".".join(loc), "message": err.get("msg", "Invalid value")})
    return details


def install_error_handlers(app: FastAPI) -> None:
    """Render every failure as ``{"error": ...}`` with the matching status."""

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(
            {"error": "Invalid request data", "details": _field_errors(exc.errors())},
            status_code=400,
        )

    @app.exception_handler(ValidationError)
    async def model_validation_error(request: Request, exc: ValidationError):
        return JSONResponse(
            {"error": "Invalid request data", "details": _field_errors(exc.errors())},
            status_code=400,
        )

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        _logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse({"error": "Internal server error"}, status_code=500)
