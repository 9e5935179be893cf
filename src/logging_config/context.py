"""Log Context Management.

Context-local identifiers bound to every log entry: the API request being
served and the notification, route and escalation being processed.
Timer callbacks run on their own threads, so each callback binds its own
NotificationContext.
"""

import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Optional


_request_id_var: ContextVar[str] = ContextVar("request_id", default="")
_notification_id_var: ContextVar[str] = ContextVar("notification_id", default="")
_route_id_var: ContextVar[str] = ContextVar("route_id", default="")
_escalation_id_var: ContextVar[str] = ContextVar("escalation_id", default="")

_VARS = {
    "request_id": _request_id_var,
    "notification_id": _notification_id_var,
    "route_id": _route_id_var,
    "escalation_id": _escalation_id_var,
}


def generate_request_id() -> str:
    """Generate a unique request ID using UUID4."""
    return str(uuid.uuid4())


def get_request_id() -> str:
    return _request_id_var.get()


def get_notification_id() -> str:
    return _notification_id_var.get()


def get_context_dict() -> dict[str, Any]:
    """Get all non-empty context values as a dictionary for log binding."""
    ctx = {}
    for key, var in _VARS.items():
        value = var.get()
        if value:
            ctx[key] = value
    return ctx


class _BoundContext:
    """Sets context variables on enter and restores the previous values on exit."""

    def _values(self) -> dict[str, str]:
        raise NotImplementedError

    def __enter__(self):
        self._tokens = [
            (_VARS[key], _VARS[key].set(value))
            for key, value in self._values().items()
            if value
        ]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens = []

    def bind(self, **kwargs: str) -> None:
        """Rebind identifiers for the rest of the block."""
        for key, value in kwargs.items():
            var = _VARS.get(key)
            if var is None:
                raise KeyError(f"Unknown log context key: {key}")
            self._tokens.append((var, var.set(value or "")))
            setattr(self, key, value or "")


@dataclass
class RequestContext(_BoundContext):
    """Binds an API request ID to all log entries within the block.

    Example:
        with RequestContext(request_id="abc-123"):
            logger.info("processing request")  # includes request_id
    """

    request_id: str = ""
    _tokens: list = field(default_factory=list, repr=False)

    def __post_init__(self):
        if not self.request_id:
            self.request_id = generate_request_id()

    def _values(self) -> dict[str, str]:
        return {"request_id": self.request_id}


@dataclass
class NotificationContext(_BoundContext):
    """Binds notification, route and escalation IDs to log entries.

    Nested contexts restore the outer values on exit, so a notification
    processed inside an API request keeps the request ID.

    Example:
        with NotificationContext(notification_id=n.id) as ctx:
            ctx.bind(route_id=route.id)
            logger.info("dispatching")  # includes notification_id, route_id
    """

    notification_id: str = ""
    route_id: Optional[str] = None
    escalation_id: Optional[str] = None
    _tokens: list = field(default_factory=list, repr=False)

    def _values(self) -> dict[str, str]:
        return {
            "notification_id": self.notification_id,
            "route_id": self.route_id or "",
            "escalation_id": self.escalation_id or "",
        }
