"""Logging Configuration.

Settings for structured logging of the routing engine and its API.
"""

import os
from dataclasses import dataclass, field, replace
from enum import Enum


class LogLevel(str, Enum):
    """Log level options."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output format."""
    JSON = "json"
    CONSOLE = "console"


LEVEL_ENV_VAR = "NOTIFY_LOG_LEVEL"
FORMAT_ENV_VAR = "NOTIFY_LOG_FORMAT"


@dataclass
class LoggingConfig:
    """Structured logging configuration."""

    level: LogLevel = LogLevel.INFO
    format: LogFormat = LogFormat.JSON
    include_caller: bool = True
    slow_threshold_ms: float = 250.0
    exclude_paths: list[str] = field(default_factory=lambda: ["/health"])
    service_name: str = "notification-routing"

    def with_env_overrides(self) -> "LoggingConfig":
        """Copy of this config with NOTIFY_LOG_LEVEL / NOTIFY_LOG_FORMAT applied.

        Unrecognized values are ignored.
        """
        config = self
        env_level = os.environ.get(LEVEL_ENV_VAR, "").upper()
        if env_level in LogLevel.__members__:
            config = replace(config, level=LogLevel(env_level))

        env_format = os.environ.get(FORMAT_ENV_VAR, "").lower()
        if env_format in [f.value for f in LogFormat]:
            config = replace(config, format=LogFormat(env_format))
        return config


DEFAULT_LOGGING_CONFIG = LoggingConfig()
