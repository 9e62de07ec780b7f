"""
Budgeting App Exception Hierarchy

All exceptions include code, message, and details so they can be logged in
full and rendered to clients through a single handler.

Exception Hierarchy:
    BudgetAppError
    ├── ValidationError          400
    ├── InvalidCredentials       401
    ├── InvalidOrExpiredCode     400
    ├── AlreadyRegistered        400
    ├── EmailNotVerified         400
    ├── UserNotFound             404
    ├── Unauthorized             401
    ├── RateLimited              429
    ├── InternalError            500
    └── EmailDeliveryError       500 (never reaches clients)
"""
from typing import Optional, Dict, Any


class BudgetAppError(Exception):
    """
    Base exception for all Budgeting App errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context safe to return to the client
    """

    default_code: str = "BUDGETAPP_ERROR"
    default_message: str = "An error occurred"
    status_code: int = 500

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Client-facing error envelope."""
        body: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class ValidationError(BudgetAppError):
    """Malformed input. Surfaced verbatim."""
    default_code = "VALIDATION_ERROR"
    default_message = "Invalid request data"
    status_code = 400


class InvalidCredentials(BudgetAppError):
    """Wrong email or password. Never says which."""
    default_code = "INVALID_CREDENTIALS"
    default_message = "Invalid email or password"
    status_code = 401


class InvalidOrExpiredCode(BudgetAppError):
    """Wrong, expired or already used one-time code. Never says which."""
    default_code = "INVALID_OR_EXPIRED_CODE"
    default_message = "Invalid or expired verification code"
    status_code = 400


class AlreadyRegistered(BudgetAppError):
    default_code = "ALREADY_REGISTERED"
    default_message = "An account with this email already exists"
    status_code = 400


class EmailNotVerified(BudgetAppError):
    default_code = "EMAIL_NOT_VERIFIED"
    default_message = "Email verification required. Please verify your email with the code first."
    status_code = 400


class UserNotFound(BudgetAppError):
    default_code = "USER_NOT_FOUND"
    default_message = "User not found"
    status_code = 404


class Unauthorized(BudgetAppError):
    """Missing, invalid, expired or revoked session token."""
    default_code = "UNAUTHORIZED"
    default_message = "Authentication required"
    status_code = 401


class RateLimited(BudgetAppError):
    default_code = "RATE_LIMITED"
    default_message = "Too many attempts. Please try again later."
    status_code = 429

    def __init__(
        self,
        message: Optional[str] = None,
        retry_after_seconds: Optional[int] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details["retry_after_seconds"] = retry_after_seconds
        super().__init__(message, details=details, **kwargs)
        self.retry_after_seconds = retry_after_seconds


class InternalError(BudgetAppError):
    """Data store or transport failure. Detail is logged, not returned."""
    default_code = "INTERNAL_ERROR"
    default_message = "An unexpected error occurred. Please try again later."
    status_code = 500


class EmailDeliveryError(BudgetAppError):
    """Raised by email providers; always recovered by the caller."""
    default_code = "EMAIL_DELIVERY_FAILED"
    default_message = "Failed to deliver email"
    status_code = 500
