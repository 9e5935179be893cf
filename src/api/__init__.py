"""Notification Routing REST API.

Thin FastAPI layer over NotificationRoutingEngine: notification intake,
route management, escalation resolution, delivery history and reports.

Example:
    from src.api import create_app
    app = create_app()
"""

from src.api.app import create_app
from src.api.config import APIConfig, DEFAULT_API_CONFIG
from src.api.dependencies import get_engine, set_engine

__all__ = [
    "APIConfig",
    "DEFAULT_API_CONFIG",
    "create_app",
    "get_engine",
    "set_engine",
]
