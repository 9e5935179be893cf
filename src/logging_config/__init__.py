"""Structured Logging & Tracing for notification routing.

Provides structured JSON logging, request and notification ID
propagation, and performance timing.
"""

from src.logging_config.config import LogFormat, LoggingConfig, LogLevel
from src.logging_config.context import (
    NotificationContext,
    RequestContext,
    generate_request_id,
    get_context_dict,
)
from src.logging_config.performance import PerformanceTimer, log_performance
from src.logging_config.setup import configure_logging, get_logger

__all__ = [
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "NotificationContext",
    "PerformanceTimer",
    "RequestContext",
    "configure_logging",
    "generate_request_id",
    "get_context_dict",
    "get_logger",
    "log_performance",
]
