"""
Core utilities and configuration for the ingestion pipeline.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Application configuration and environment variable management
    clock: Naive-UTC clock shared by runs, fingerprints and pruning
    database: Async engine and session factory
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities

Usage:
    from core.config import settings
    from core.database import create_engine, create_session_maker
    from core.exceptions import APIExtractionError, NetworkError
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Build a session factory for the store
    engine = create_engine()
    session_maker = create_session_maker(engine)
"""

__all__ = [
    "settings",
    "utc_now",
    "create_engine",
    "create_session_maker",
    "setup_logging",
    # Exceptions
    "ETLException",
    "ExtractionError",
    "APIExtractionError",
    "CSVExtractionError",
    "RSSExtractionError",
    "TransformationError",
    "ValidationError",
    "DataFormatError",
    "LoadError",
    "DatabaseError",
    "UpsertError",
    "DuplicateEntityError",
    "SchedulerError",
    "RetryableError",
    "NonRetryableError",
    "NetworkError",
    "RateLimitError",
    "DatabaseConnectionError",
    "AuthenticationError",
    "ResourceNotFoundError",
]
