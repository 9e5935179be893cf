"""PRD-175: Notification Routing & Escalation - Configuration."""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet

logger = logging.getLogger(__name__)


class NotificationField(Enum):
    """Notification attributes a route condition can inspect."""

    ID = "id"
    TYPE = "type"
    SEVERITY = "severity"
    PRIORITY = "priority"
    TITLE = "title"
    MESSAGE = "message"
    BRANCH_ID = "branch_id"
    BRANCH_NAME = "branch_name"
    USER_ID = "user_id"
    USER_NAME = "user_name"
    TIMESTAMP = "timestamp"
    CREATED_AT = "created_at"
    IS_READ = "is_read"
    IS_ARCHIVED = "is_archived"
    ACTION_REQUIRED = "action_required"
    ACTION_URL = "action_url"
    EXPIRES_AT = "expires_at"


class ConditionOperator(Enum):
    """Comparison operators for route conditions."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    BETWEEN = "between"
    IN = "in"
    NOT_IN = "not_in"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"
    REGEX = "regex"


class LogicalJoiner(Enum):
    """How a condition folds into the result accumulated so far."""

    AND = "AND"
    OR = "OR"


class ActionType(Enum):
    """Effects a route or escalation level can dispatch."""

    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    WEBHOOK = "webhook"
    ESCALATE = "escalate"
    ASSIGN = "assign"
    ARCHIVE = "archive"


class ContactChannel(Enum):
    """Concrete channels a recipient can be reached on."""

    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    SLACK = "slack"
    TEAMS = "teams"


class RecipientType(Enum):
    """Kinds of logical addressee."""

    USER = "user"
    ROLE = "role"
    BRANCH = "branch"
    DEPARTMENT = "department"


class DeliveryStatus(Enum):
    """Delivery record status."""

    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    ACKNOWLEDGED = "acknowledged"


# Action types that must reach a contact on the same channel
ACTION_CHANNELS = {
    ActionType.EMAIL: ContactChannel.EMAIL,
    ActionType.SMS: ContactChannel.SMS,
    ActionType.PUSH: ContactChannel.PUSH,
}

SUCCESSFUL_STATUSES = frozenset({DeliveryStatus.SENT, DeliveryStatus.DELIVERED})


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in ("true", "1", "yes")


@dataclass
class RoutingConfig:
    """Global routing engine configuration."""

    enable_escalation: bool = True
    load_default_routes: bool = True
    load_default_recipients: bool = True
    metrics_window_hours: int = 24
    confirming_actions: FrozenSet[ActionType] = field(
        default_factory=lambda: frozenset(
            {ActionType.PUSH, ActionType.ASSIGN, ActionType.ARCHIVE}
        )
    )
    service_name: str = "notification-routing"

    @classmethod
    def from_env(cls, **defaults) -> "RoutingConfig":
        """Build a config from defaults with NOTIFY_* environment overrides applied."""
        config = cls(**defaults)
        config.enable_escalation = _env_flag(
            "NOTIFY_ENABLE_ESCALATION", config.enable_escalation
        )
        load_defaults = _env_flag("NOTIFY_LOAD_DEFAULTS", config.load_default_routes)
        config.load_default_routes = load_defaults
        config.load_default_recipients = load_defaults

        window = os.environ.get("NOTIFY_METRICS_WINDOW_HOURS", "").strip()
        if window:
            try:
                config.metrics_window_hours = int(window)
            except ValueError:
                logger.warning(
                    "Ignoring invalid NOTIFY_METRICS_WINDOW_HOURS=%r", window
                )
        return config

