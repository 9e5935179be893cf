"""API Request/Response Models.

Pydantic schemas for the routing API. Request bodies are converted to
engine dataclasses through their ``to_domain()`` methods.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from src.notification_routing.config import (
    ActionType,
    ConditionOperator,
    DeliveryStatus,
    LogicalJoiner,
    NotificationField,
)
from src.notification_routing.models import (
    EscalationPolicy,
    Notification,
    Route,
    RouteAction,
    RouteCondition,
)


# ─── Notifications ───────────────────────────────────────────────────────


class NotificationRequest(BaseModel):
    """Incoming notification event."""

    id: Optional[str] = None
    type: Optional[str] = None
    severity: Optional[str] = None
    priority: Optional[str] = None
    title: str = ""
    message: str = ""
    branch_id: Optional[int] = None
    branch_name: Optional[str] = None
    user_id: Optional[int] = None
    user_name: Optional[str] = None
    timestamp: Optional[datetime] = None
    created_at: Optional[datetime] = None
    is_read: bool = False
    is_archived: bool = False
    action_required: bool = False
    action_url: Optional[str] = None
    expires_at: Optional[datetime] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_domain(self) -> Notification:
        return Notification.from_dict(self.model_dump(exclude_none=True))


# ─── Routes ──────────────────────────────────────────────────────────────


class ConditionModel(BaseModel):
    field: NotificationField
    operator: ConditionOperator
    value: Any = None
    logical_joiner: Optional[LogicalJoiner] = None


class ActionModel(BaseModel):
    type: ActionType
    config: dict[str, Any] = Field(default_factory=dict)
    delay_ms: int = Field(default=0, ge=0)


class EscalationLevelModel(BaseModel):
    recipients: list[str] = Field(default_factory=list)
    actions: list[ActionModel] = Field(default_factory=list)
    timeout_minutes: Optional[float] = None


class EscalationPolicyModel(BaseModel):
    levels: list[EscalationLevelModel] = Field(default_factory=list)
    timeout_minutes: Optional[float] = None
    max_level: Optional[int] = None


class RouteModel(BaseModel):
    """A full route definition (create body and response)."""

    id: str = Field(..., min_length=1)
    name: str = ""
    conditions: list[ConditionModel] = Field(default_factory=list)
    actions: list[ActionModel] = Field(default_factory=list)
    escalation: Optional[EscalationPolicyModel] = None
    is_active: bool = True
    priority: int = 0

    def to_domain(self) -> Route:
        return Route.from_dict(self.model_dump(mode="json"))


class RouteUpdateRequest(BaseModel):
    """Partial route update; omitted fields keep their current value."""

    name: Optional[str] = None
    conditions: Optional[list[ConditionModel]] = None
    actions: Optional[list[ActionModel]] = None
    escalation: Optional[EscalationPolicyModel] = None
    is_active: Optional[bool] = None
    priority: Optional[int] = None

    def to_changes(self) -> dict[str, Any]:
        """Field changes as engine values, ready for update_route()."""
        data = self.model_dump(mode="json", exclude_unset=True)
        changes: dict[str, Any] = {}
        for key, value in data.items():
            if key == "conditions":
                changes[key] = [RouteCondition.from_dict(c) for c in value or []]
            elif key == "actions":
                changes[key] = [RouteAction.from_dict(a) for a in value or []]
            elif key == "escalation":
                changes[key] = EscalationPolicy.from_dict(value) if value else None
            elif value is not None:
                changes[key] = value
        return changes


# ─── Escalations & deliveries ────────────────────────────────────────────


class ResolveRequest(BaseModel):
    resolved_by: str = Field(..., min_length=1)


class EscalationResponse(BaseModel):
    id: str
    notification_id: str
    route_id: str
    current_level: int
    started_at: datetime
    last_escalated_at: Optional[datetime] = None
    is_resolved: bool
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    is_exhausted: bool = False
    halted_reason: Optional[str] = None


class DeliveryResponse(BaseModel):
    id: str
    notification_id: str
    recipient_ref: str
    method: ActionType
    status: DeliveryStatus
    route_id: Optional[str] = None
    attempts: int = 1
    last_attempt: datetime
    delivered_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    escalation_id: Optional[str] = None
    escalation_level: Optional[int] = None


# ─── Reports ─────────────────────────────────────────────────────────────


class RoutingStatsResponse(BaseModel):
    total_routes: int
    active_routes: int
    total_deliveries: int
    successful_deliveries: int
    failed_deliveries: int
    delivery_rate: float
    active_escalations: int


class PerformanceResponse(BaseModel):
    deliveries_in_window: int
    average_delivery_time: float
    failure_rate: float
    average_attempts: float


class RoutePerformanceResponse(BaseModel):
    route_id: str
    deliveries: int
    success_rate: float
    average_delivery_time: float
    last_used: Optional[datetime] = None


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "1.0.0"
    routes: int = 0
    active_escalations: int = 0
