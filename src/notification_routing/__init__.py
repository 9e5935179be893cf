"""PRD-175: Notification Routing & Escalation."""

from .config import (
    NotificationField,
    ConditionOperator,
    LogicalJoiner,
    ActionType,
    ContactChannel,
    RecipientType,
    DeliveryStatus,
    RoutingConfig,
)
from .exceptions import (
    RoutingError,
    ConditionEvaluationError,
    ActionExecutionError,
    UnknownActionError,
    ChannelSendError,
    RecipientNotFoundError,
    EscalationSchedulingError,
    RouteNotFoundError,
    DuplicateRouteError,
    EscalationNotFoundError,
)
from .models import (
    Notification,
    RouteCondition,
    RouteAction,
    EscalationLevel,
    EscalationPolicy,
    Route,
    ContactMethod,
    Recipient,
    Delivery,
    EscalationInstance,
)
from .conditions import evaluate, evaluate_conditions
from .catalog import RouteCatalog, match_routes
from .recipients import RecipientDirectory
from .channels import SendResult, ChannelSender, LoggingChannelSender, ChannelRegistry
from .clock import Clock, TimerHandle, SystemClock, VirtualClock
from .ledger import DeliveryLedger
from .dispatcher import ActionDispatcher
from .escalation import EscalationCoordinator
from .defaults import default_routes, default_recipients
from .engine import NotificationRoutingEngine

__all__ = [
    # Config
    "NotificationField",
    "ConditionOperator",
    "LogicalJoiner",
    "ActionType",
    "ContactChannel",
    "RecipientType",
    "DeliveryStatus",
    "RoutingConfig",
    # Exceptions
    "RoutingError",
    "ConditionEvaluationError",
    "ActionExecutionError",
    "UnknownActionError",
    "ChannelSendError",
    "RecipientNotFoundError",
    "EscalationSchedulingError",
    "RouteNotFoundError",
    "DuplicateRouteError",
    "EscalationNotFoundError",
    # Models
    "Notification",
    "RouteCondition",
    "RouteAction",
    "EscalationLevel",
    "EscalationPolicy",
    "Route",
    "ContactMethod",
    "Recipient",
    "Delivery",
    "EscalationInstance",
    # Matching
    "evaluate",
    "evaluate_conditions",
    "RouteCatalog",
    "match_routes",
    # Delivery
    "RecipientDirectory",
    "SendResult",
    "ChannelSender",
    "LoggingChannelSender",
    "ChannelRegistry",
    "DeliveryLedger",
    "ActionDispatcher",
    # Escalation
    "Clock",
    "TimerHandle",
    "SystemClock",
    "VirtualClock",
    "EscalationCoordinator",
    # Engine
    "default_routes",
    "default_recipients",
    "NotificationRoutingEngine",
]
