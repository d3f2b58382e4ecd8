from __future__ import annotations

import logging
import time
import uuid

from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from salesfunnel.context import (
    reset_actor_user_id,
    reset_correlation_id,
    set_actor_user_id,
    set_correlation_id,
)
from salesfunnel.core.auth import decode_token
from salesfunnel.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("salesfunnel.request")


def _resolve_actor_user_id(request: Request) -> str | None:
    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    user = decode_token(auth_header[len("Bearer ") :])
    return user.sub if user is not None else None


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Binds correlation id and caller to the request, then logs and meters it."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = request.headers.get("x-correlation-id") or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        token = set_correlation_id(correlation_id)
        actor_token = set_actor_user_id(_resolve_actor_user_id(request))
        span = trace.get_current_span()
        if span is not None and span.is_recording():
            span.set_attribute("correlation_id", correlation_id)

        method = request.method
        path = resolve_http_path_label(request)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            observe_http_request(method=method, path=path, status=500, duration=duration_ms / 1000)
            logger.error(
                "http.error",
                exc_info=True,
                extra={
                    "correlation_id": correlation_id,
                    "method": method,
                    "path": path,
                    "status_code": 500,
                    "duration_ms": duration_ms,
                },
            )
            raise
        else:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            observe_http_request(method=method, path=path, status=response.status_code, duration=duration_ms / 1000)
            logger.info(
                "http.request",
                extra={
                    "correlation_id": correlation_id,
                    "method": method,
                    "path": path,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                },
            )
        finally:
            reset_actor_user_id(actor_token)
            reset_correlation_id(token)

        response.headers["x-correlation-id"] = correlation_id
        return response
