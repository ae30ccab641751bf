"""
Custom exceptions for the IPEDS ingestion pipeline with structured error context.

Per-file and per-table failures are raised inside a component, caught at the
component boundary and turned into result values (DownloadResult,
ImportResult, ConsolidationResult). Only StoreConnectionError and invalid
caller input are allowed to stop a run.

Exception Hierarchy:
    PipelineError (base)
    ├── DownloadError
    │   ├── TransientNetworkError      (retryable)
    │   ├── PayloadValidationError     (retryable)
    │   └── PermanentDownloadError     (non-retryable)
    ├── ImportFailure
    │   ├── ParseError
    │   └── YearDerivationError
    ├── StoreWriteError
    │   └── SchemaUnionError
    ├── StoreConnectionError           (run-fatal)
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime


class PipelineError(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (table name, stage, url, ...)
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
        self.timestamp = datetime.utcnow()

        # Add timestamp to context
        self.context["error_timestamp"] = self.timestamp.isoformat()

        # Chain original exception if provided
        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(
                f"{k}={v}" for k, v in self.context.items() if k != "error_timestamp"
            )
            if context_str:
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
# Retry Strategy Mixins
# ============================================================================

class RetryableError(PipelineError):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Network timeouts and dropped connections
    - Server errors (HTTP 5xx), rate limiting (HTTP 429)
    - A landing page or truncated payload served instead of the file
    """
    pass


class NonRetryableError(PipelineError):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Resource not found (HTTP 404)
    - Authentication failures (HTTP 401, 403)
    """
    pass


# ============================================================================
# Download Errors
# ============================================================================

class DownloadError(PipelineError):
    """
    Base exception for remote fetch failures.

    Context should include:
        - url: The resolved download URL
        - dest: Local target path
        - attempt: Attempt number (1-based)
    """
    pass


class TransientNetworkError(RetryableError, DownloadError):
    """Network or server-side failure that is retried up to the attempt bound."""
    pass


class PayloadValidationError(RetryableError, DownloadError):
    """
    Downloaded payload failed a structural sanity check.

    Context should include:
        - check: "html_sniff" or "size_floor"
        - size: Payload size in bytes
        - min_bytes: Size floor that applied
    """
    pass


class PermanentDownloadError(NonRetryableError, DownloadError):
    """Client-side HTTP failure (4xx other than 408/429); not retried."""
    pass


# ============================================================================
# Import Errors
# ============================================================================

class ImportFailure(PipelineError):
    """
    Base exception for a file that could not be turned into a table.

    Context should include:
        - table_name: Canonical table name
        - stage: unpack, parse, coerce, year, persist
        - file_path: Local file being imported
    """
    pass


class ParseError(ImportFailure):
    """
    Delimited text could not be parsed after the full fallback chain.

    Context should include:
        - encodings_tried: Encodings attempted before the byte-strip pass
    """
    pass


class YearDerivationError(ImportFailure):
    """The table has no year column and its name carries no year."""
    pass


# ============================================================================
# Store Errors
# ============================================================================

class StoreWriteError(PipelineError):
    """
    Exception raised when a table or view write is rejected by the store.

    Context should include:
        - operation: replace_table, create_view
        - relation: Table or view name
    """
    pass


class SchemaUnionError(StoreWriteError):
    """
    A consolidated view could not be created even after casting.

    Context should include:
        - component: Survey component name
        - cast_columns: Columns cast to text on the retry
    """
    pass


class StoreConnectionError(PipelineError):
    """
    The store handle could not be opened or was lost.

    This is the only store failure that ends a whole run.
    """
    pass
