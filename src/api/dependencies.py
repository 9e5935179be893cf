"""FastAPI Dependencies.

Provides the process-wide routing engine to request handlers. Tests swap
it with ``app.dependency_overrides[get_engine]`` or ``set_engine()``.
"""

import logging
from typing import Optional

from src.notification_routing.config import RoutingConfig
from src.notification_routing.engine import NotificationRoutingEngine

logger = logging.getLogger(__name__)

# ── Singleton instance (shared per process) ───────────────────────────

_engine: Optional[NotificationRoutingEngine] = None


def get_engine() -> NotificationRoutingEngine:
    """Return (or create) the global NotificationRoutingEngine singleton."""
    global _engine
    if _engine is None:
        _engine = NotificationRoutingEngine(config=RoutingConfig.from_env())
        logger.info("Routing engine created with %d routes", len(_engine.get_routes()))
    return _engine


def set_engine(engine: Optional[NotificationRoutingEngine]) -> None:
    """Replace the global engine (None forces a fresh one on next use)."""
    global _engine
    _engine = engine


def shutdown_engine() -> None:
    """Shut down the global engine if one was created."""
    global _engine
    if _engine is not None:
        _engine.shutdown()
        _engine = None
