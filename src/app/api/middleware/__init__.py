"""API middleware package."""

from src.app.api.middleware.logging import LoggingMiddleware, RequestContext, get_request_context

__all__ = ["LoggingMiddleware", "RequestContext", "get_request_context"]
