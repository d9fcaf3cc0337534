"""
Shared error handling for the Trusted JWS service.
"""

from typing import Dict, Any, Optional

from opentelemetry import trace
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class TrustedJWSException(Exception):
    """Base exception for Trusted JWS components."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class DecodeError(TrustedJWSException):
    """The signature envelope is structurally unparseable."""

    def __init__(self, message: str = "Unable to decode signature", details: Optional[Dict[str, Any]] = None):
        super().__init__("DECODE_ERROR", message, details)


class RegistryFetchWarning(TrustedJWSException):
    """A single registry could not be fetched.

    Raised and recovered inside the registry aggregator; it never reaches
    callers of the verification pipeline.
    """

    def __init__(self, uri: str, message: str = "Registry fetch failed", details: Optional[Dict[str, Any]] = None):
        self.uri = uri
        super().__init__("REGISTRY_FETCH_WARNING", f"{uri}: {message}", details)


class KeyResolutionError(TrustedJWSException):
    """No verification key could be obtained for a signature."""

    status_code = 422

    def __init__(self, message: str = "Unable to resolve verification key", details: Optional[Dict[str, Any]] = None):
        super().__init__("KEY_RESOLUTION_ERROR", message, details)


class SignatureInvalidError(TrustedJWSException):
    """Cryptographic verification of the signature failed."""

    status_code = 401

    def __init__(self, message: str = "Invalid signature", details: Optional[Dict[str, Any]] = None):
        super().__init__("SIGNATURE_INVALID", message, details)


class ValidationError(TrustedJWSException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class ExternalServiceError(TrustedJWSException):
    """External service errors."""

    status_code = 502

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)


class FetchTimeoutError(ExternalServiceError):
    """An HTTP fetch did not complete within its timeout."""

    def __init__(self, uri: str, timeout_ms: int):
        super().__init__(uri, f"timed out after {timeout_ms}ms", {"timeout_ms": timeout_ms})
        self.code = "FETCH_TIMEOUT"


class FetchNetworkError(ExternalServiceError):
    """An HTTP fetch failed at the transport level."""

    def __init__(self, uri: str, error: str):
        super().__init__(uri, "network error", {"error": error})
        self.code = "FETCH_NETWORK_ERROR"
