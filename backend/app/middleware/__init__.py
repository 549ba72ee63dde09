"""
Middleware package.

WHY: Middleware provides cross-cutting concerns like request correlation
that apply to all requests.
"""

from app.middleware.request_context import (
    REQUEST_ID_HEADER,
    RequestContextMiddleware,
    get_request_context,
    get_request_id,
    get_client_ip,
    RequestContext,
)

__all__ = [
    "REQUEST_ID_HEADER",
    "RequestContextMiddleware",
    "get_request_context",
    "get_request_id",
    "get_client_ip",
    "RequestContext",
]
