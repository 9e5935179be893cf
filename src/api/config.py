"""API Configuration.

Settings for the notification routing REST API.
"""

import os
from dataclasses import dataclass, field

CORS_ENV_VAR = "NOTIFY_CORS_ORIGINS"


@dataclass
class APIConfig:
    """Core API settings."""

    title: str = "Notification Routing API"
    version: str = "1.0.0"
    description: str = "Rule-based notification routing with timed escalation"
    prefix: str = "/api/v1"
    docs_url: str = "/docs"
    cors_origins: list[str] = field(default_factory=lambda: [
        "http://localhost:3000",   # Branch dashboard
        "http://localhost:8000",   # API self-reference
    ])
    cors_methods: list[str] = field(
        default_factory=lambda: ["GET", "POST", "PATCH", "DELETE", "OPTIONS"]
    )
    cors_headers: list[str] = field(default_factory=lambda: ["*"])
    suppress_internal_details: bool = True

    def resolved_cors_origins(self) -> list[str]:
        """CORS origins from NOTIFY_CORS_ORIGINS, falling back to the defaults."""
        origins = os.environ.get(CORS_ENV_VAR, "").split(",")
        return [o.strip() for o in origins if o.strip()] or self.cors_origins


DEFAULT_API_CONFIG = APIConfig()
