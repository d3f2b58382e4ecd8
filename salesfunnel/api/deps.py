from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from salesfunnel.business.errors import FunnelError
from salesfunnel.context import get_correlation_id
from salesfunnel.core.auth import AuthUser, get_current_user as get_auth_user
from salesfunnel.core.rbac import primary_role
from salesfunnel.platform.security.context import Actor


logger = logging.getLogger("salesfunnel.api")


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorEnvelope(code=code, message=message, details=details, correlation_id=correlation_id)
    return JSONResponse(status_code=status_code, content=asdict(payload))


def get_current_actor(request: Request, auth_user: AuthUser = Depends(get_auth_user)) -> Actor:
    if auth_user.sub == "anonymous":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="authentication required")
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    return Actor(user_id=auth_user.sub, role=primary_role(auth_user.roles), correlation_id=correlation_id)


async def _funnel_error_handler(request: Request, exc: FunnelError) -> JSONResponse:
    logger.info(
        "api.funnel_error",
        extra={"path": request.url.path, "status_code": exc.status_code, "outcome": exc.code},
    )
    return error_response(request, status_code=exc.status_code, code=exc.code, message=exc.message, details=exc.details)


async def _http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code = {
        status.HTTP_401_UNAUTHORIZED: "unauthorized",
        status.HTTP_403_FORBIDDEN: "forbidden",
        status.HTTP_404_NOT_FOUND: "not_found",
    }.get(exc.status_code, "http_error")
    return error_response(request, status_code=exc.status_code, code=code, message=str(exc.detail), details=exc.detail)


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        code="validation_error",
        message="request validation failed",
        details=[{"loc": list(err.get("loc", ())), "msg": err.get("msg")} for err in exc.errors()],
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FunnelError, _funnel_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, _http_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _request_validation_handler)  # type: ignore[arg-type]
