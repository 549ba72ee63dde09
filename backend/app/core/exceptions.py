"""
Custom exception hierarchy for structured error handling.

WHY: Custom exceptions provide:
1. Consistent error handling across the API
2. HTTP status code mapping for FastAPI
3. Structured error responses with contextual data
4. No secrets (API keys, webhook signatures) in error bodies

IMPORTANT: NEVER use base Exception class. Always use custom exceptions.
"""

from typing import Any, Dict, Optional


class AppException(Exception):
    """
    Base exception class for all application exceptions.

    WHY: Centralizing exception handling in a base class ensures consistent
    error responses, HTTP status code mapping, and prevents sensitive data
    leaks in error messages.

    All custom exceptions should inherit from this class.
    """

    status_code: int = 500
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        **context: Any,
    ):
        """
        Initialize exception with message and context.

        Args:
            message: Human-readable error message
            status_code: HTTP status code (overrides class default)
            **context: Additional context for debugging (filtered in to_dict)
        """
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Serialize exception to dictionary for JSON response.

        Returns:
            Dictionary with error details (sensitive fields filtered out)
        """
        # WHY: Filter out sensitive fields to prevent data leaks
        sensitive_fields = {"password", "token", "secret", "key", "api_key", "signature"}
        filtered_context = {
            k: v for k, v in self.context.items() if k.lower() not in sensitive_fields
        }

        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "status_code": self.status_code,
            "details": filtered_context if filtered_context else None,
        }


# ============================================================================
# Authentication & Authorization Exceptions
# ============================================================================


class AuthenticationError(AppException):
    """
    Raised when authentication fails.

    HTTP Status: 401 Unauthorized
    """

    status_code = 401
    default_message = "Authentication failed"


class AuthorizationError(AppException):
    """
    Raised when user lacks permissions for an action.

    WHY: Distinguishing authorization (403) from authentication (401) helps
    frontends show appropriate messages ("You don't have permission" vs
    "Please log in").

    HTTP Status: 403 Forbidden
    """

    status_code = 403
    default_message = "You do not have permission to perform this action"


class TokenExpiredError(AuthenticationError):
    """Raised when JWT token has expired."""

    default_message = "Token has expired"


class TokenInvalidError(AuthenticationError):
    """Raised when JWT token is malformed or has invalid signature."""

    default_message = "Token is invalid"


class WebhookSignatureError(AuthenticationError):
    """
    Raised when a webhook body does not match its claimed signature.

    WHY: Forged or tampered deliveries must be rejected before any state
    change, and reported as 401 so they are distinguishable from business
    failures (which are acknowledged with 200).

    HTTP Status: 401 Unauthorized
    """

    default_message = "Invalid webhook signature"


# ============================================================================
# Validation & Input Exceptions
# ============================================================================


class ValidationError(AppException):
    """
    Raised when input validation fails.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Validation failed"


# ============================================================================
# Resource Exceptions
# ============================================================================


class ResourceNotFoundError(AppException):
    """
    Raised when a requested resource doesn't exist.

    HTTP Status: 404 Not Found
    """

    status_code = 404
    default_message = "Resource not found"


class ResourceAlreadyExistsError(AppException):
    """
    Raised when attempting to create a resource that already exists.

    WHY: 409 Conflict indicates the request can't be completed due to
    conflicting state (e.g., a plan name that is already taken).

    HTTP Status: 409 Conflict
    """

    status_code = 409
    default_message = "Resource already exists"


class SubscriberNotFoundError(ResourceNotFoundError):
    """Raised when a user/subscriber doesn't exist."""

    default_message = "User not found"


class PlanNotFoundError(ResourceNotFoundError):
    """Raised when a catalog plan doesn't exist."""

    default_message = "Plan not found"


# ============================================================================
# Business Logic Exceptions
# ============================================================================


class BusinessRuleViolation(AppException):
    """
    Raised when a business rule is violated.

    WHY: Business rules (e.g., "at most three plans") are different from
    validation errors. 422 Unprocessable Entity indicates the request was
    well-formed but semantically incorrect.

    HTTP Status: 422 Unprocessable Entity
    """

    status_code = 422
    default_message = "Business rule violation"


class InvalidStateTransitionError(BusinessRuleViolation):
    """
    Raised when an invalid subscription transition is attempted.

    WHY: Cancelling a free plan or an already-expired subscription is a
    client mistake, reported as 400 with a clear message.

    HTTP Status: 400 Bad Request
    """

    status_code = 400
    default_message = "Invalid state transition"


# ============================================================================
# External Service Exceptions
# ============================================================================


class ExternalServiceError(AppException):
    """
    Base exception for external service failures.

    WHY: External API failures should return 502 Bad Gateway, indicating
    the problem is with an upstream service, not our application.

    HTTP Status: 502 Bad Gateway
    """

    status_code = 502
    default_message = "External service error"


class PaystackError(ExternalServiceError):
    """
    Raised when Paystack API calls fail.

    WHY: Provider failures during user-initiated actions (cancel, upgrade,
    plan creation) must surface as a failure of that action and leave the
    local record untouched. Context carries the provider's HTTP status and
    error code so callers can special-case e.g. duplicate subscriptions.

    HTTP Status: 502 Bad Gateway
    """

    default_message = "Payment provider error"

    @property
    def provider_status(self) -> Optional[int]:
        """HTTP status returned by Paystack, if a response was received."""
        return self.context.get("provider_status")

    @property
    def provider_code(self) -> Optional[str]:
        """Paystack machine-readable error code (e.g. duplicate_subscription)."""
        return self.context.get("provider_code")


# ============================================================================
# Configuration & Infrastructure Exceptions
# ============================================================================


class ConfigurationError(AppException):
    """
    Raised when required configuration is missing at the point of use.

    WHY: A missing webhook secret is a local fault, not the caller's; it is
    reported as 500 before any signature check so the provider retries
    after the operator fixes the deployment.

    HTTP Status: 500 Internal Server Error
    """

    status_code = 500
    default_message = "Server configuration error"
