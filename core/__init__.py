"""
Core utilities and configuration for home-db-importer.

This package provides foundational components used throughout the importer:

Modules:
    config: Application configuration and environment variable management
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration

Usage:
    from core.config import settings
    from core.exceptions import RecordParseError, TransportError
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Read the destination settings
    print(settings.INFLUX_URL, settings.INFLUX_BUCKET)
"""

__all__ = [
    "settings",
    "setup_logging",
    # Exceptions
    "ImporterException",
    "ExtractionError",
    "SourceUnavailableError",
    "CSVExtractionError",
    "HealthDataExtractionError",
    "TransformationError",
    "RecordParseError",
    "TransportError",
    "WriteError",
    "QueryError",
    "NetworkError",
    "AuthenticationError",
    "CheckpointError",
    "ConfigurationError",
]
