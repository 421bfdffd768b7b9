"""Structured logging for flowdesk sessions."""

from flowdesk.observability.logging import (
    LoggingConfig,
    StructuredLoggingHandle,
    correlation_scope,
    logging_config_from_settings,
    setup_structured_logging,
    shutdown_logging,
)

__all__ = [
    "LoggingConfig",
    "StructuredLoggingHandle",
    "correlation_scope",
    "logging_config_from_settings",
    "setup_structured_logging",
    "shutdown_logging",
]
