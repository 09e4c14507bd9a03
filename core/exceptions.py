"""
Custom exceptions for the ingestion pipeline with structured error context.

Each exception carries context information for debugging and for the
Import Run audit trail.

Exception Hierarchy:
    ETLException (base)
    ├── ExtractionError
    │   ├── APIExtractionError
    │   ├── CSVExtractionError
    │   └── RSSExtractionError
    ├── TransformationError
    │   ├── ValidationError
    │   └── DataFormatError
    ├── LoadError
    │   ├── DatabaseError
    │   └── UpsertError
    │       └── DuplicateEntityError
    ├── SchedulerError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from core.clock import utc_now


class ETLException(Exception):
    """
    Base exception for all ingestion errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (source, url, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = utc_now()

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Short form used in Import Run error summaries."""
        if self.original_exception:
            return f"{self.message}: {type(self.original_exception).__name__}: {self.original_exception}"
        return self.message

    def describe(self) -> str:
        """Format error message with full context for logs."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Extraction Errors
# ============================================================================

class ExtractionError(ETLException):
    """Base exception for source fetch failures."""
    pass


class APIExtractionError(ExtractionError):
    """
    Exception raised when a JSON/GeoJSON endpoint fails.

    Context should include:
        - api_url: The endpoint that failed
        - status_code: HTTP status code (if applicable)
        - response_body: Response body (truncated)
    """
    pass


class CSVExtractionError(ExtractionError):
    """
    Exception raised when no usable layoff CSV could be obtained.

    Context should include:
        - urls_tried: Primary endpoints attempted
        - file_path: Manual fallback path
    """
    pass


class RSSExtractionError(ExtractionError):
    """
    Exception raised when an RSS/Atom feed cannot be parsed.

    Context should include:
        - feed_url: URL of the feed
    """
    pass


# ============================================================================
# Transformation Errors
# ============================================================================

class TransformationError(ETLException):
    """Base exception for record-level data problems."""
    pass


class ValidationError(TransformationError):
    """
    Raised when an identifying field is empty after normalization.

    Context should include:
        - field_name: Name of the field that failed validation
        - field_value: Raw value that failed
    """
    pass


# ============================================================================
# Load Errors
# ============================================================================

class LoadError(ETLException):
    """Base exception for store failures."""
    pass


class DatabaseError(LoadError):
    """
    Exception raised when a store operation fails.

    Context should include:
        - operation: find, create, update, delete
        - entity_kind: Kind of entity
    """
    pass


class UpsertError(LoadError):
    """Exception raised when a record cannot be written."""
    pass


class DuplicateEntityError(UpsertError):
    """
    Raised by a store when a create violates a uniqueness constraint.

    Context should include:
        - entity_kind: Kind of entity
        - conflict_fields: Fields of the violated key
    """
    pass


# ============================================================================
# Scheduler Errors
# ============================================================================

class SchedulerError(ETLException):
    """Raised for queue/scheduler misuse (unknown source, stopped queue)."""
    pass


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(ETLException):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Network timeouts
    - Rate limiting (HTTP 429)
    - Temporary database connection issues
    - Service unavailable (HTTP 503)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0
    ):
        super().__init__(message, context, original_exception)
        self.max_retries = max_retries
        self.retry_delay = retry_delay


class NonRetryableError(ETLException):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Authentication failures (HTTP 401, 403)
    - Invalid data format
    - Resource not found (HTTP 404)
    """
    pass


# ============================================================================
# Specific Retryable Errors
# ============================================================================

class NetworkError(RetryableError, APIExtractionError):
    """Network-related errors and timeouts that should be retried."""
    pass


class RateLimitError(RetryableError, APIExtractionError):
    """Rate limiting errors (HTTP 429)."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[int] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after  # Seconds to wait before retry
        if retry_after:
            self.context["retry_after"] = retry_after


class DatabaseConnectionError(RetryableError, DatabaseError):
    """Store connectivity errors that should be retried."""
    pass


# ============================================================================
# Specific Non-Retryable Errors
# ============================================================================

class AuthenticationError(NonRetryableError, APIExtractionError):
    """Authentication failures (HTTP 401, 403) that should not be retried."""
    pass


class DataFormatError(NonRetryableError, TransformationError):
    """Unparseable payloads or field values that should not be retried."""
    pass


class ResourceNotFoundError(NonRetryableError, ExtractionError):
    """Resource not found errors (HTTP 404) that should not be retried."""
    pass
