"""Error handling module for HoloHost.

This module defines error codes, exception classes, and response models.

Error Response Format:
{
    "error": {
        "code": "INSTANCE_NOT_FOUND",
        "message": "Instance not found"
    }
}

Usage:
    from holohost.core.errors import InstanceNotFoundError, DriverError

    raise InstanceNotFoundError()
    raise DriverError("No such image: holobridge:latest")
"""

from enum import Enum

from pydantic import BaseModel


class ErrorCode(str, Enum):
    """Error codes."""

    INSTANCE_NOT_FOUND = "INSTANCE_NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    DRIVER_ERROR = "DRIVER_ERROR"
    DRIVER_TIMEOUT = "DRIVER_TIMEOUT"
    PORT_EXHAUSTED = "PORT_EXHAUSTED"
    INVALID_FORMAT = "INVALID_FORMAT"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    STORE_ERROR = "STORE_ERROR"


class ErrorDetail(BaseModel):
    """Error detail containing code and message."""

    code: str
    message: str


class ErrorResponse(BaseModel):
    """Error response format."""

    error: ErrorDetail


class HoloHostError(Exception):
    """Base exception for HoloHost.

    Attributes:
        code: The error code from ErrorCode enum
        message: Human-readable error message
        status_code: HTTP status code a route layer should return
    """

    def __init__(self, code: ErrorCode, message: str, status_code: int) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert exception to ErrorResponse model."""
        return ErrorResponse(
            error=ErrorDetail(code=self.code.value, message=self.message)
        )


class InstanceNotFoundError(HoloHostError):
    """404 Not Found - Unknown instance or missing container reference."""

    def __init__(self, message: str = "Instance not found") -> None:
        super().__init__(ErrorCode.INSTANCE_NOT_FOUND, message, 404)


class InvalidRequestError(HoloHostError):
    """422 Unprocessable Entity - Malformed request or configuration."""

    def __init__(self, message: str = "Invalid request") -> None:
        super().__init__(ErrorCode.VALIDATION_ERROR, message, 422)


class DriverError(HoloHostError):
    """502 Bad Gateway - Container runtime call failed.

    The message carries the runtime's own error text.
    """

    def __init__(
        self,
        message: str = "Container runtime error",
        code: ErrorCode = ErrorCode.DRIVER_ERROR,
        status_code: int = 502,
    ) -> None:
        super().__init__(code, message, status_code)


class DriverTimeoutError(DriverError):
    """504 Gateway Timeout - Container runtime did not answer in time."""

    def __init__(self, message: str = "Container runtime timed out") -> None:
        super().__init__(message, ErrorCode.DRIVER_TIMEOUT, 504)


class PortExhaustedError(HoloHostError):
    """503 Service Unavailable - No free host port in the configured range."""

    def __init__(self, message: str = "No available ports in configured range") -> None:
        super().__init__(ErrorCode.PORT_EXHAUSTED, message, 503)


class InvalidFormatError(HoloHostError):
    """400 Bad Request - Encrypted envelope is malformed."""

    def __init__(self, message: str = "Invalid encrypted format") -> None:
        super().__init__(ErrorCode.INVALID_FORMAT, message, 400)


class AuthenticationFailedError(HoloHostError):
    """401 Unauthorized - Envelope tag did not verify."""

    def __init__(self, message: str = "Authentication tag mismatch") -> None:
        super().__init__(ErrorCode.AUTHENTICATION_FAILED, message, 401)


class StoreError(HoloHostError):
    """500 Internal Server Error - Persistence failure."""

    def __init__(self, message: str = "Instance store error") -> None:
        super().__init__(ErrorCode.STORE_ERROR, message, 500)
