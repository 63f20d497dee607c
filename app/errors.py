"""
errors.py — Error Taxonomy & Exception Handlers
Cattle Breed Recognition API

Every failure leaving a handler is one of the APIError subclasses below and is
rendered as the standard envelope ``{"success": false, "error": ...}``.
"""

from typing import Any, Dict, Optional
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
from loguru import logger


# ── Taxonomy ──────────────────────────────────────────────────────────────────
class APIError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(self, error: Optional[str] = None, **details: Any):
        self.error = error or self.default_message
        self.details = details
        super().__init__(self.error)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": self.error, **self.details}


class Unauthenticated(APIError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Access token required"


class Forbidden(APIError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Forbidden"


class NotFound(APIError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Not found"


class InvalidRequest(APIError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class ServiceUnavailable(APIError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Service temporarily unavailable"


class UpstreamError(APIError):
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Upstream service error"


class Internal(APIError):
    pass


AVAILABLE_ROUTES = [
    "GET /health",
    "POST {prefix}/auth/register",
    "POST {prefix}/auth/login",
    "GET {prefix}/users/profile",
    "POST {prefix}/predictions/breed",
]


# ── Handlers ──────────────────────────────────────────────────────────────────
async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} → {exc.status_code}: {exc.error}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path"))
        problems.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg"))
    return await api_error_handler(request, InvalidRequest("; ".join(problems) or "Invalid request"))


def _http_exception_handler(api_prefix: str):
    async def handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == status.HTTP_404_NOT_FOUND:
            body = NotFound(
                "Route not found",
                message=f"Cannot {request.method} {request.url.path}",
                availableRoutes=[r.format(prefix=api_prefix) for r in AVAILABLE_ROUTES],
            ).to_dict()
            return JSONResponse(status_code=exc.status_code, content=body)
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )
    return handler


async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.opt(exception=exc).error(f"Database error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content=Internal("Database error").to_dict())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content=Internal().to_dict())


def register_exception_handlers(app: FastAPI, api_prefix: str) -> None:
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler(api_prefix))
    app.add_exception_handler(SQLAlchemyError, database_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
