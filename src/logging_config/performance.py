"""Performance Logging.

Decorator and context manager for timing routing work and logging
slow operations.
"""

import functools
import logging
import time
from typing import Any, Callable, Optional

from src.logging_config.config import DEFAULT_LOGGING_CONFIG

logger = logging.getLogger(__name__)


class PerformanceTimer:
    """Context manager for timing code blocks.

    Logs at DEBUG normally, at WARNING when the block is slower than the
    threshold, and at ERROR when it raises (the exception propagates).

    Example:
        with PerformanceTimer("route matching") as timer:
            matched = catalog.match(notification)
        print(f"Matching took {timer.duration_ms:.1f}ms")
    """

    def __init__(
        self,
        operation_name: str,
        threshold_ms: Optional[float] = None,
        log: Optional[logging.Logger] = None,
    ):
        self.operation_name = operation_name
        self.threshold_ms = (
            threshold_ms if threshold_ms is not None else DEFAULT_LOGGING_CONFIG.slow_threshold_ms
        )
        self.logger = log or logger
        self.start_time: float = 0
        self.duration_ms: float = 0

    def __enter__(self) -> "PerformanceTimer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.duration_ms = (time.perf_counter() - self.start_time) * 1000
        extra = {"duration_ms": round(self.duration_ms, 2)}

        if exc_type is not None:
            self.logger.error(
                "%s failed after %.1fms: %s",
                self.operation_name, self.duration_ms, exc_type.__name__,
                extra=extra,
            )
        elif self.duration_ms >= self.threshold_ms:
            self.logger.warning(
                "Slow operation: %s took %.1fms",
                self.operation_name, self.duration_ms,
                extra=extra,
            )
        else:
            self.logger.debug(
                "%s completed in %.1fms",
                self.operation_name, self.duration_ms,
                extra=extra,
            )

    @property
    def is_slow(self) -> bool:
        return self.duration_ms >= self.threshold_ms


def log_performance(threshold_ms: Optional[float] = None) -> Callable:
    """Decorator that times each call with a PerformanceTimer.

    Example:
        @log_performance(threshold_ms=50)
        def export_routing_data(self):
            ...
    """

    def decorator(func: Callable) -> Callable:
        func_logger = logging.getLogger(func.__module__)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            with PerformanceTimer(func.__qualname__, threshold_ms, log=func_logger):
                return func(*args, **kwargs)

        return wrapper

    return decorator
