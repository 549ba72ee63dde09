"""
Request context middleware for log correlation.

WHAT: Middleware that assigns every request an ID and records the client
address, making both available throughout the request lifecycle.

WHY: Webhook deliveries are acknowledged before they are processed, so the
log lines of one delivery are spread across the request and a background
task. A request ID in both lets operators tie them together, and the
X-Request-ID response header lets Paystack support reference a delivery.

HOW: Stores the context on request.state and in a ContextVar for async-safe
access from services without passing the request around.
"""

import uuid
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Optional, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


REQUEST_ID_HEADER = "X-Request-ID"


@dataclass(frozen=True)
class RequestContext:
    """
    Container for request-scoped context data.

    Fields:
    - request_id: Unique identifier for the request (for log correlation)
    - ip_address: Client's real IP (considering proxies)
    - path: Request path (for logging without full URL)
    - method: HTTP method (GET, POST, etc.)
    """

    request_id: str
    ip_address: str
    path: str
    method: str


# WHY: ContextVar ensures each async request gets its own isolated context
_request_context: ContextVar[Optional[RequestContext]] = ContextVar(
    "request_context", default=None
)


def get_request_context() -> Optional[RequestContext]:
    """
    Get the current request context.

    Returns:
        RequestContext if within a request, None otherwise
    """
    return _request_context.get()


def get_request_id() -> Optional[str]:
    """Request ID of the current request, if any."""
    context = _request_context.get()
    return context.request_id if context else None


def get_client_ip(request: Request) -> str:
    """
    Extract the real client IP address from a request.

    HOW: Checks headers in order of trust:
    1. X-Real-IP (set by some proxies like nginx)
    2. X-Forwarded-For (comma-separated list, first is original client)
    3. request.client.host (direct connection IP)

    Security Note:
        These headers can be spoofed by clients if not behind a trusted proxy.
        They are used for logging only, never for authorization.
    """
    x_real_ip = request.headers.get("X-Real-IP")
    if x_real_ip:
        return x_real_ip.strip()

    x_forwarded_for = request.headers.get("X-Forwarded-For")
    if x_forwarded_for:
        # Format: "client, proxy1, proxy2"
        return x_forwarded_for.split(",")[0].strip()

    if request.client and request.client.host:
        return request.client.host

    return "unknown"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware that captures and stores request context.

    HOW: Reuses an incoming X-Request-ID (so IDs survive a gateway hop) or
    generates a UUID4, then echoes it on the response.

    Example:
        @app.post("/api/webhooks/paystack")
        async def webhook(request: Request):
            ctx = request.state.context
            logger.info("received", extra={"request_id": ctx.request_id})
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """
        Process request and add context.

        Returns:
            Response with request ID header added
        """
        incoming = request.headers.get(REQUEST_ID_HEADER, "").strip()
        request_id = incoming[:64] if incoming else str(uuid.uuid4())

        context = RequestContext(
            request_id=request_id,
            ip_address=get_client_ip(request),
            path=request.url.path,
            method=request.method,
        )

        # Store in request state (for handlers with request access)
        request.state.context = context
        # Store in context var (for services without request access)
        token = _request_context.set(context)

        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            _request_context.reset(token)
