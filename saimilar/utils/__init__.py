"""Utility modules for the SAImilar application."""

from saimilar.utils.logging import LogContext, get_logger, setup_logging
from saimilar.utils.retry import RetryConfig, retry_async

__all__ = [
    # Logging
    "get_logger",
    "LogContext",
    "setup_logging",
    # Retry
    "retry_async",
    "RetryConfig",
]
