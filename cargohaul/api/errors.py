"""
Exception handlers mapping the domain error taxonomy onto HTTP.

Every rejected request gets the same body shape::

    {"error": {"kind": "InvalidTransition", "message": "..."}}
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from cargohaul.domain.errors import DomainError

logger = logging.getLogger(__name__)


def error_body(kind: str, message: str, **extra) -> dict:
    body = {"kind": kind, "message": message}
    body.update(extra)
    return {"error": body}


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError):
        logger.info(
            "%s %s rejected: %s (%s)",
            request.method, request.url.path, exc.kind, exc.message,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(exc.kind, exc.message),
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = first.get("msg", "Invalid request")
        if location:
            message = f"{location}: {message}"
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=error_body(
                "ValidationError", message, details=jsonable_encoder(exc.errors())
            ),
        )
