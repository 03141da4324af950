"""Global error handlers: every error leaves as ``{"detail", "errors"?}`` JSON."""

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from portal.errors import PortalError, field_error

logger = structlog.get_logger()

# Request sections FastAPI prefixes onto error locations
_LOCATION_ROOTS = frozenset({"body", "query", "path", "header", "cookie"})


def _field_errors(errors: list[dict[str, Any]]) -> list[dict[str, str]]:
    """Flatten pydantic error locations into dotted field names (aliases as sent)."""
    flattened = []
    for error in errors:
        loc = [str(part) for part in error.get("loc", ()) if part not in _LOCATION_ROOTS]
        flattened.append(field_error(".".join(loc) or "body", error.get("msg", "invalid")))
    return flattened


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(PortalError)
    async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
        logger.info(
            "request_rejected",
            path=request.url.path,
            status_code=exc.status_code,
            error=exc.detail,
        )
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = _field_errors(list(exc.errors()))
        logger.info("request_invalid", path=request.url.path, fields=[e["field"] for e in errors])
        return JSONResponse(status_code=422, content={"detail": "Validation error", "errors": errors})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Unhandled exceptions are logged with traceback and hidden from the caller."""
        logger.error("unhandled_exception", path=request.url.path, error=str(exc), exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
