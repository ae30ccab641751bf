"""
Core utilities and configuration for the IPEDS ingestion pipeline.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Application configuration and environment variable management
    database: Store session (single connection per run) and table/view writes
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities

Usage:
    from core.config import settings
    from core.database import StoreSession
    from core.exceptions import DownloadError, StoreWriteError
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Open the store for one run
    with StoreSession(settings.DATABASE_URL) as store:
        print(store.list_tables())
"""

__all__ = [
    "settings",
    "StoreSession",
    "setup_logging",
    # Exceptions
    "PipelineError",
    "RetryableError",
    "NonRetryableError",
    "DownloadError",
    "TransientNetworkError",
    "PayloadValidationError",
    "PermanentDownloadError",
    "ImportFailure",
    "ParseError",
    "YearDerivationError",
    "StoreWriteError",
    "SchemaUnionError",
    "StoreConnectionError",
]
