"""PRD-175: Notification Routing & Escalation - Data Models.

Dataclasses for notifications, routes, escalation policies, recipients and
delivery records. Route configuration records are frozen: catalog updates
replace them wholesale so a matching pass never sees a half-edited route.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
import uuid

from src.notification_routing.config import (
    ActionType,
    ConditionOperator,
    ContactChannel,
    DeliveryStatus,
    LogicalJoiner,
    NotificationField,
    RecipientType,
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex[:16]


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


# ── Incoming notification ────────────────────────────────────────────


@dataclass
class Notification:
    """A multi-branch notification event; read-only input to the engine.

    Attributes set to None count as absent when a condition inspects them.
    """
    id: str = field(default_factory=_new_id)
    type: Optional[str] = None
    severity: Optional[str] = None
    priority: Optional[str] = None
    title: str = ""
    message: str = ""
    branch_id: Optional[int] = None
    branch_name: Optional[str] = None
    user_id: Optional[int] = None
    user_name: Optional[str] = None
    timestamp: datetime = field(default_factory=_utc_now)
    created_at: datetime = field(default_factory=_utc_now)
    is_read: bool = False
    is_archived: bool = False
    action_required: bool = False
    action_url: Optional[str] = None
    expires_at: Optional[datetime] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def get_field(self, name: NotificationField) -> Any:
        """Return the value of a condition field (None when absent)."""
        return getattr(self, name.value, None)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Notification":
        kwargs = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        for key in ("timestamp", "created_at", "expires_at"):
            if kwargs.get(key) is not None:
                kwargs[key] = _parse_datetime(kwargs[key])
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "severity": self.severity,
            "priority": self.priority,
            "title": self.title,
            "message": self.message,
            "branch_id": self.branch_id,
            "branch_name": self.branch_name,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "timestamp": _iso(self.timestamp),
            "created_at": _iso(self.created_at),
            "is_read": self.is_read,
            "is_archived": self.is_archived,
            "action_required": self.action_required,
            "action_url": self.action_url,
            "expires_at": _iso(self.expires_at),
            "metadata": dict(self.metadata),
        }


# ── Route configuration ──────────────────────────────────────────────


@dataclass(frozen=True)
class RouteCondition:
    """Single predicate against one notification field.

    Attributes:
        field: Notification attribute to inspect.
        operator: Comparison operator.
        value: Right-hand operand (a sequence for in/not_in/between).
        logical_joiner: How this condition folds into the result of the
            conditions before it. Ignored on the first condition.
    """
    field: NotificationField
    operator: ConditionOperator
    value: Any = None
    logical_joiner: Optional[LogicalJoiner] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RouteCondition":
        joiner = data.get("logical_joiner")
        return cls(
            field=NotificationField(data["field"]),
            operator=ConditionOperator(data["operator"]),
            value=data.get("value"),
            logical_joiner=LogicalJoiner(joiner.upper()) if joiner else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field.value,
            "operator": self.operator.value,
            "value": self.value,
            "logical_joiner": self.logical_joiner.value if self.logical_joiner else None,
        }


@dataclass(frozen=True)
class RouteAction:
    """One dispatchable effect with opaque channel config."""
    type: ActionType
    config: dict[str, Any] = field(default_factory=dict)
    delay_ms: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RouteAction":
        return cls(
            type=ActionType(data["type"]),
            config=dict(data.get("config") or {}),
            delay_ms=int(data.get("delay_ms") or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "config": dict(self.config),
            "delay_ms": self.delay_ms,
        }


@dataclass(frozen=True)
class EscalationLevel:
    """A responder tier activated when the previous tier times out.

    Attributes:
        recipients: Recipient IDs resolved through the directory.
        actions: Actions run against each recipient on entering the level.
        timeout_minutes: Minutes before moving past this level. None falls
            back to the policy-wide timeout.
    """
    recipients: list[str] = field(default_factory=list)
    actions: list[RouteAction] = field(default_factory=list)
    timeout_minutes: Optional[float] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EscalationLevel":
        return cls(
            recipients=list(data.get("recipients") or []),
            actions=[RouteAction.from_dict(a) for a in data.get("actions") or []],
            timeout_minutes=data.get("timeout_minutes"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "recipients": list(self.recipients),
            "actions": [a.to_dict() for a in self.actions],
            "timeout_minutes": self.timeout_minutes,
        }


@dataclass(frozen=True)
class EscalationPolicy:
    """Ordered escalation levels; len(levels) bounds the escalation depth."""
    levels: list[EscalationLevel] = field(default_factory=list)
    timeout_minutes: Optional[float] = None
    max_level: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EscalationPolicy":
        return cls(
            levels=[EscalationLevel.from_dict(lv) for lv in data.get("levels") or []],
            timeout_minutes=data.get("timeout_minutes"),
            max_level=data.get("max_level"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "levels": [lv.to_dict() for lv in self.levels],
            "timeout_minutes": self.timeout_minutes,
            "max_level": self.max_level,
        }


@dataclass(frozen=True)
class Route:
    """Named rule mapping notification conditions to actions.

    Priority only orders evaluation (lower first); it says nothing about
    how urgent the matched notification is.
    """
    id: str
    name: str = ""
    conditions: list[RouteCondition] = field(default_factory=list)
    actions: list[RouteAction] = field(default_factory=list)
    escalation: Optional[EscalationPolicy] = None
    is_active: bool = True
    priority: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Route":
        escalation = data.get("escalation")
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            conditions=[RouteCondition.from_dict(c) for c in data.get("conditions") or []],
            actions=[RouteAction.from_dict(a) for a in data.get("actions") or []],
            escalation=EscalationPolicy.from_dict(escalation) if escalation else None,
            is_active=bool(data.get("is_active", True)),
            priority=int(data.get("priority", 0)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "conditions": [c.to_dict() for c in self.conditions],
            "actions": [a.to_dict() for a in self.actions],
            "escalation": self.escalation.to_dict() if self.escalation else None,
            "is_active": self.is_active,
            "priority": self.priority,
        }


# ── Recipients ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class ContactMethod:
    """A concrete channel and address for reaching a recipient."""
    type: ContactChannel
    address: str
    is_active: bool = True
    priority: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "address": self.address,
            "is_active": self.is_active,
            "priority": self.priority,
        }


@dataclass(frozen=True)
class Recipient:
    """A logical addressee (user, role, branch or department)."""
    id: str
    type: RecipientType = RecipientType.USER
    identifier: str = ""
    contact_methods: list[ContactMethod] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "identifier": self.identifier,
            "contact_methods": [c.to_dict() for c in self.contact_methods],
        }


# ── Engine output ────────────────────────────────────────────────────


@dataclass(frozen=True)
class Delivery:
    """Record of one attempted action execution and its outcome."""
    notification_id: str
    recipient_ref: str
    method: ActionType
    status: DeliveryStatus = DeliveryStatus.PENDING
    id: str = field(default_factory=_new_id)
    route_id: Optional[str] = None
    attempts: int = 1
    last_attempt: datetime = field(default_factory=_utc_now)
    delivered_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    escalation_id: Optional[str] = None
    escalation_level: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status in (DeliveryStatus.SENT, DeliveryStatus.DELIVERED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "notification_id": self.notification_id,
            "recipient_ref": self.recipient_ref,
            "method": self.method.value,
            "status": self.status.value,
            "route_id": self.route_id,
            "attempts": self.attempts,
            "last_attempt": _iso(self.last_attempt),
            "delivered_at": _iso(self.delivered_at),
            "acknowledged_at": _iso(self.acknowledged_at),
            "failure_reason": self.failure_reason,
            "escalation_id": self.escalation_id,
            "escalation_level": self.escalation_level,
        }


@dataclass
class EscalationInstance:
    """Escalation track for one (notification, route) pair.

    Only the escalation coordinator mutates instances; current_level never
    decreases and is_resolved never reverts to False.
    """
    notification_id: str
    route_id: str
    id: str = field(default_factory=_new_id)
    current_level: int = 0
    started_at: datetime = field(default_factory=_utc_now)
    last_escalated_at: Optional[datetime] = None
    is_resolved: bool = False
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    is_exhausted: bool = False
    halted_reason: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return not self.is_resolved

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "notification_id": self.notification_id,
            "route_id": self.route_id,
            "current_level": self.current_level,
            "started_at": _iso(self.started_at),
            "last_escalated_at": _iso(self.last_escalated_at),
            "is_resolved": self.is_resolved,
            "resolved_at": _iso(self.resolved_at),
            "resolved_by": self.resolved_by,
            "is_exhausted": self.is_exhausted,
            "halted_reason": self.halted_reason,
        }
