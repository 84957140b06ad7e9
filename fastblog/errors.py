"""
Domain errors raised by the service layer and their HTTP rendering.

Services never build HTTP responses themselves; they raise one of the
exceptions below and ``register_exception_handlers`` turns it into a JSON
body.  ``Unauthorized`` is rendered exactly like ``NotFound`` so that a
caller cannot probe for another author's drafts.
"""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.__class__.__doc__ or self.code
        super().__init__(self.detail)


class NotFound(ServiceError):
    """Resource not found"""

    status_code = 404
    code = "not_found"


class Unauthorized(ServiceError):
    """Resource not found"""

    # Rendered as NotFound so existence is not leaked.
    status_code = 404
    code = "not_found"


class ValidationFailed(ServiceError):
    """Validation failed"""

    status_code = 422
    code = "validation_failed"

    def __init__(self, errors: dict[str, str], detail: str | None = None) -> None:
        self.errors = errors
        super().__init__(detail)


class Conflict(ServiceError):
    """Resource already exists"""

    status_code = 409
    code = "conflict"


class InternalFailure(ServiceError):
    """Storage unavailable"""

    status_code = 503
    code = "storage_unavailable"


def _body(exc: ServiceError) -> dict:
    body = {"error": exc.code, "detail": exc.detail}
    if isinstance(exc, ValidationFailed):
        body["errors"] = exc.errors
    return body


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ServiceError)
    async def service_error(request: Request, exc: ServiceError):
        if isinstance(exc, Unauthorized):
            # Logged with the real cause, reported as not found.
            logger.info("Ownership check failed on %s %s: %s", request.method, request.url.path, exc.detail)
            return JSONResponse(status_code=404, content={"error": "not_found", "detail": "Resource not found"})
        if exc.status_code >= 500:
            logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.detail)
        return JSONResponse(status_code=exc.status_code, content=_body(exc))

    @app.exception_handler(OperationalError)
    @app.exception_handler(InterfaceError)
    async def storage_unavailable(request: Request, exc: Exception):
        logger.exception("Storage failure on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=503, content=_body(InternalFailure()))
