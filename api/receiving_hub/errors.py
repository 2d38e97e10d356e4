# receiving_hub/errors.py
"""
Typed failures raised by services and rendered by the app-level handlers.

Every error carries an HTTP status and a short machine-readable ``kind``;
routers never translate them by hand.
"""
from __future__ import annotations
import logging
import traceback
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

SOMETHING_WENT_WRONG = "Something went wrong"


class ReceivingError(Exception):
    status_code: int = 500
    kind: str = "internal"

    def __init__(self, message: str, data: Any = None):
        super().__init__(message)
        self.message = message
        self.data = data


class NotFoundError(ReceivingError):
    status_code = 404
    kind = "not_found"


class ForbiddenStateError(ReceivingError):
    status_code = 403
    kind = "forbidden_state"


class ValidationFailure(ReceivingError):
    status_code = 400
    kind = "validation"


class ConflictError(ReceivingError):
    status_code = 409
    kind = "conflict"


class AuthenticationError(ReceivingError):
    status_code = 401
    kind = "unauthenticated"


class PermissionDenied(ReceivingError):
    status_code = 403
    kind = "forbidden"


def error_body(
    request: Request,
    *,
    status_code: int,
    kind: str,
    message: str,
    data: Any = None,
    exc: Optional[BaseException] = None,
    production: bool = False,
) -> dict:
    body = {
        "success": False,
        "status_code": status_code,
        "kind": kind,
        "message": message,
        "data": data,
        "request": {
            "method": request.method,
            "url": str(request.url.path),
            "ip": request.client.host if request.client else None,
        },
        "trace": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)) if exc else None,
    }
    # don't leak caller ip or stack traces in production
    if production:
        body["request"].pop("ip", None)
        body.pop("trace", None)
    return body


def _is_production(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None)
    return bool(settings is not None and settings.is_production)


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ReceivingError)
    async def _receiving_error(request: Request, exc: ReceivingError):
        logger.info("%s %s -> %s %s: %s", request.method, request.url.path, exc.status_code, exc.kind, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(
                request,
                status_code=exc.status_code,
                kind=exc.kind,
                message=exc.message,
                data=exc.data,
                exc=exc,
                production=_is_production(request),
            ),
        )

    @app.exception_handler(RequestValidationError)
    async def _request_validation(request: Request, exc: RequestValidationError):
        fields = [
            {
                "field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"),
                "message": err.get("msg", ""),
            }
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content=error_body(
                request,
                status_code=400,
                kind=ValidationFailure.kind,
                message="Validation failed",
                data=fields,
                production=_is_production(request),
            ),
        )

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=error_body(
                request,
                status_code=500,
                kind="internal",
                message=SOMETHING_WENT_WRONG,
                exc=exc,
                production=_is_production(request),
            ),
        )
