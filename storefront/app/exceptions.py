"""Custom exceptions for the storefront application.

Validators return result objects and never raise; these exceptions are raised
by the FastAPI dependencies that turn a rejected result into an HTTP response.
"""

from typing import Dict, Optional


class StorefrontException(Exception):
    """Base class for storefront exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code and error code for consistent responses.
    """
    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str = "Storefront error"):
        self.message = message
        super().__init__(message)

    def to_response(self) -> dict:
        return {"error": self.error_code, "message": self.message}

    def headers(self) -> Dict[str, str]:
        return {}


class InputValidationError(StorefrontException):
    """Raised when submitted form data is malformed.

    Maps to HTTP 400 Bad Request.
    """
    status_code = 400
    error_code = "validation_failed"

    def __init__(
        self,
        message: str = "Please correct the highlighted fields.",
        field_errors: Optional[Dict[str, str]] = None,
    ):
        self.field_errors = field_errors or {}
        super().__init__(message)

    def to_response(self) -> dict:
        response = super().to_response()
        response["field_errors"] = self.field_errors
        return response


class UploadRejectedError(StorefrontException):
    """Raised when an uploaded file fails content validation.

    Maps to HTTP 400 Bad Request.
    """
    status_code = 400
    error_code = "upload_rejected"


class RateLimitExceededError(StorefrontException):
    """Raised when a client exceeds the request budget for a route class.

    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429
    error_code = "rate_limit_exceeded"

    def __init__(
        self,
        limit: int,
        reset_at: int,
        retry_after: int,
        message: str = "Too many requests. Please wait before trying again.",
    ):
        self.limit = limit
        self.reset_at = reset_at
        self.retry_after = retry_after
        super().__init__(message)

    def to_response(self) -> dict:
        response = super().to_response()
        response["reset_at"] = self.reset_at
        response["retry_after"] = self.retry_after
        return response

    def headers(self) -> Dict[str, str]:
        return {
            "Retry-After": str(self.retry_after),
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Reset": str(self.reset_at),
        }


class CSRFValidationError(StorefrontException):
    """Raised when a form's security token is missing, invalid or replayed.

    The message is identical for every cause. Maps to HTTP 403 Forbidden.
    """
    status_code = 403
    error_code = "csrf_failed"

    def __init__(self):
        super().__init__(
            "Invalid security token. Please refresh the page and try again."
        )
