"""Domain exceptions raised by service modules and their HTTP translation."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    status_code = 409


class PermissionDeniedError(ServiceError):
    status_code = 403


class InvalidStateError(ServiceError):
    """Raised when a record's lifecycle does not allow the requested change."""

    status_code = 400


class ValidationFailedError(ServiceError):
    status_code = 400


async def _service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    logger.debug("%s %s rejected: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, _service_error_handler)
