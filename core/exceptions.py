"""
Custom exceptions for the import pipeline with structured error context.

This module provides the exception hierarchy used throughout the importer.
Each exception carries context information (source, record, offending
value) so a failure can be diagnosed from the log without re-running.

Exception Hierarchy:
    ImporterException (base)
    ├── ExtractionError
    │   ├── SourceUnavailableError
    │   ├── CSVExtractionError
    │   └── HealthDataExtractionError
    ├── TransformationError
    │   └── RecordParseError
    ├── TransportError
    │   ├── WriteError
    │   ├── QueryError
    │   ├── NetworkError (retryable)
    │   └── AuthenticationError (non-retryable)
    ├── CheckpointError
    └── ConfigurationError
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class ImporterException(Exception):
    """
    Base exception for all importer errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (source, record, value, etc.)
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
        self.timestamp = datetime.now(timezone.utc)

        # Add timestamp to context
        self.context["error_timestamp"] = self.timestamp.isoformat()

        # Chain original exception if provided
        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        context = {k: v for k, v in self.context.items() if k != "error_timestamp"}
        if context:
            context_str = ", ".join(f"{k}={v}" for k, v in context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/reporting."""
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

class ExtractionError(ImporterException):
    """Base exception for source read failures."""
    pass


class SourceUnavailableError(ExtractionError):
    """
    Raised when the primary input of a run cannot be opened.

    Context should include:
        - source: Path of the missing file or database
    """
    pass


class CSVExtractionError(ExtractionError):
    """
    Exception raised when delimited file extraction fails.

    Context should include:
        - file_path: Path to the CSV file
        - line_number: Line number where error occurred (if applicable)
        - column_name: Column name that caused the error (if applicable)
    """
    pass


class HealthDataExtractionError(ExtractionError):
    """
    Exception raised when reading the Health Connect export fails.

    Context should include:
        - db_path: Path to the SQLite export
        - record_type: Record kind being read
    """
    pass


# ============================================================================
# Transformation Errors
# ============================================================================

class TransformationError(ImporterException):
    """Base exception for record normalization failures."""
    pass


class RecordParseError(TransformationError):
    """
    Raised when a single source record cannot be turned into points.

    Only the offending record is rejected; the rest of the batch continues.

    Context should include:
        - record_type: Record kind or "csv"
        - line_number: Line number of a delimited row (if applicable)
        - value: The offending value
    """
    pass


# ============================================================================
# Transport Errors
# ============================================================================

class TransportError(ImporterException):
    """Base exception for failures talking to the time-series store."""
    pass


class WriteError(TransportError):
    """
    Raised when a batch write is rejected by the store.

    Context should include:
        - batch_index: Index of the failing batch
        - points_sent: Points accepted before the failure
        - status_code: HTTP status code (if applicable)
    """
    pass


class QueryError(TransportError):
    """
    Raised when a range query against the store fails.

    Context should include:
        - measurement: Measurement being queried
        - status_code: HTTP status code (if applicable)
    """
    pass


class NetworkError(TransportError):
    """Timeouts, connection failures and 5xx responses; retried with backoff."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_count: int = 0
    ):
        super().__init__(message, context, original_exception)
        self.retry_count = retry_count
        if retry_count:
            self.context["retry_count"] = retry_count


class AuthenticationError(TransportError):
    """Authentication failures (HTTP 401, 403) that should not be retried."""
    pass


# ============================================================================
# State and configuration errors
# ============================================================================

class CheckpointError(ImporterException):
    """
    Exception raised when the watermark state file cannot be written.

    Context should include:
        - state_file: Path of the state file
        - source_file: Source identity of the watermark
        - operation: Operation that failed (save)
    """
    pass


class ConfigurationError(ImporterException):
    """Raised for invalid operator input (unknown data types, missing connection settings)."""
    pass
