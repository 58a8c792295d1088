"""Structured request logging and request-scoped log context.

The middleware sets a RequestContext (request id plus the session id parsed
from /api/v1/sessions/{session_id}/... paths) in a contextvar for the
duration of the request. The ``add_request_context`` processor copies it onto
every log event, so stage logs emitted while handling a trigger call carry
the same request_id as the access log line.

Uses structlog for structured JSON logging in production and
human-readable console output in development.
"""

from __future__ import annotations

import contextvars
import logging
import re
import time
import uuid
from dataclasses import dataclass

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.app.config import Environment, get_settings

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Infrastructure routes logged at debug so health checks stay quiet
QUIET_PATHS = ("/metrics", "/api/v1/health")

_SESSION_PATH = re.compile(r"^/api/v1/sessions/([0-9a-fA-F-]{36})(?:/|$)")


# ── Request Context ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class RequestContext:
    """Identifiers attached to every log event of one request."""

    request_id: str
    session_id: str | None = None


_request_context: contextvars.ContextVar[RequestContext | None] = contextvars.ContextVar(
    "request_context", default=None
)


def get_request_context() -> RequestContext | None:
    """Context of the request being handled, or None outside a request."""
    return _request_context.get()


def add_request_context(logger, method_name, event_dict):
    """structlog processor: add request_id / session_id when inside a request."""
    ctx = _request_context.get()
    if ctx is not None:
        event_dict.setdefault("request_id", ctx.request_id)
        if ctx.session_id:
            event_dict.setdefault("session_id", ctx.session_id)
    return event_dict


def configure_structlog() -> None:
    """Configure structlog processors based on environment."""
    settings = get_settings()

    logging.basicConfig(format="%(message)s", level=settings.LOG_LEVEL.upper())

    processors: list = [
        add_request_context,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.ENVIRONMENT == Environment.production:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def session_id_from_path(path: str) -> str | None:
    match = _SESSION_PATH.match(path)
    return match.group(1).lower() if match else None


# ── Logging Middleware ───────────────────────────────────────────────────────


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs every request with timing and binds the request log context.

    An incoming X-Request-ID is reused so scheduler and webhook callers can
    correlate their own logs; otherwise a UUID is generated. The id is echoed
    on the response.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        ctx = RequestContext(
            request_id=request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4()),
            session_id=session_id_from_path(path),
        )
        token = _request_context.set(ctx)
        start_time = time.monotonic()

        try:
            try:
                response = await call_next(request)
            except Exception:
                logger.error(
                    "http.request_failed",
                    method=request.method,
                    path=path,
                    status_code=500,
                    duration_ms=round((time.monotonic() - start_time) * 1000, 2),
                    exc_info=True,
                )
                raise

            response.headers[REQUEST_ID_HEADER] = ctx.request_id

            if response.status_code >= 500:
                log_method = logger.error
            elif response.status_code >= 400:
                log_method = logger.warning
            elif path.startswith(QUIET_PATHS):
                log_method = logger.debug
            else:
                log_method = logger.info

            log_method(
                "http.request_completed",
                method=request.method,
                path=path,
                status_code=response.status_code,
                duration_ms=round((time.monotonic() - start_time) * 1000, 2),
            )
            return response
        finally:
            _request_context.reset(token)
