"""PRD-175: Notification Routing & Escalation - Exception Hierarchy.

Evaluation, execution and scheduling errors are caught at the engine's
isolation boundaries and turned into a False condition, a failed delivery
or a halted escalation. Catalog and resolution errors propagate to callers.
"""

from typing import Optional


class RoutingError(Exception):
    """Base exception for the routing engine."""


class ConditionEvaluationError(RoutingError):
    """A condition could not be evaluated (bad number, bad pattern)."""

    def __init__(self, operator: str, message: str):
        self.operator = operator
        super().__init__(f"{operator}: {message}")


class ActionExecutionError(RoutingError):
    """A single action could not be executed."""


class UnknownActionError(ActionExecutionError):
    """No channel sender is registered for the action type."""

    def __init__(self, action_type: str):
        self.action_type = action_type
        super().__init__(f"Unknown action type: {action_type}")


class ChannelSendError(ActionExecutionError):
    """The channel sender reported a failure."""

    def __init__(self, channel: str, reason: Optional[str] = None):
        self.channel = channel
        self.reason = reason or "send failed"
        super().__init__(f"{channel} send failed: {self.reason}")


class RecipientNotFoundError(ActionExecutionError):
    """A recipient reference could not be resolved."""

    def __init__(self, recipient_ref: str, message: Optional[str] = None):
        self.recipient_ref = recipient_ref
        super().__init__(message or f"Unknown recipient: {recipient_ref}")


class EscalationSchedulingError(RoutingError):
    """An escalation policy lacks the data needed to schedule the next level."""

    def __init__(self, instance_id: str, message: str):
        self.instance_id = instance_id
        super().__init__(f"Escalation {instance_id}: {message}")


class RouteNotFoundError(RoutingError):
    """No route with the given ID exists in the catalog."""

    def __init__(self, route_id: str):
        self.route_id = route_id
        super().__init__(f"Route not found: {route_id}")


class DuplicateRouteError(RoutingError):
    """A route with the given ID already exists in the catalog."""

    def __init__(self, route_id: str):
        self.route_id = route_id
        super().__init__(f"Route already exists: {route_id}")


class EscalationNotFoundError(RoutingError):
    """No escalation instance with the given ID exists."""

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__(f"Escalation not found: {instance_id}")
