"""PRD-175: Notification Routing & Escalation - Default Routes & Recipients.

Built-in routing for multi-branch operations: critical system failures
escalate to the admin on duty and then the system managers, transfer
approvals escalate to branch managers, and high transaction volume alerts
are forwarded without escalation.
"""

from typing import List

from src.notification_routing.config import (
    ActionType,
    ConditionOperator,
    ContactChannel,
    LogicalJoiner,
    NotificationField,
    RecipientType,
)
from src.notification_routing.models import (
    ContactMethod,
    EscalationLevel,
    EscalationPolicy,
    Recipient,
    Route,
    RouteAction,
    RouteCondition,
)


def default_routes() -> List[Route]:
    """Routes seeded into a new engine."""
    return [
        Route(
            id="critical-system-failures",
            name="Critical System Failures",
            conditions=[
                RouteCondition(NotificationField.SEVERITY, ConditionOperator.EQUALS, "error"),
                RouteCondition(
                    NotificationField.TYPE,
                    ConditionOperator.EQUALS,
                    "system",
                    LogicalJoiner.AND,
                ),
            ],
            actions=[
                RouteAction(ActionType.EMAIL, {"template": "critical-alert"}),
                RouteAction(ActionType.SMS, {"message": "URGENT: System failure detected"}),
                RouteAction(ActionType.PUSH, {"sound": "emergency"}),
            ],
            escalation=EscalationPolicy(
                levels=[
                    EscalationLevel(
                        recipients=["admin-on-duty"],
                        actions=[RouteAction(ActionType.EMAIL)],
                        timeout_minutes=5,
                    ),
                    EscalationLevel(
                        recipients=["system-managers"],
                        actions=[RouteAction(ActionType.EMAIL), RouteAction(ActionType.SMS)],
                        timeout_minutes=15,
                    ),
                ],
                timeout_minutes=30,
                max_level=2,
            ),
            priority=1,
        ),
        Route(
            id="transfer-approvals",
            name="Transfer Approvals Required",
            conditions=[
                RouteCondition(NotificationField.TYPE, ConditionOperator.EQUALS, "transfer"),
                RouteCondition(
                    NotificationField.ACTION_REQUIRED,
                    ConditionOperator.EQUALS,
                    True,
                    LogicalJoiner.AND,
                ),
            ],
            actions=[
                RouteAction(ActionType.EMAIL, {"template": "approval-request"}),
                RouteAction(ActionType.PUSH, {"category": "approval"}),
            ],
            escalation=EscalationPolicy(
                levels=[
                    EscalationLevel(
                        recipients=["branch-managers"],
                        actions=[RouteAction(ActionType.EMAIL)],
                        timeout_minutes=30,
                    ),
                ],
                timeout_minutes=60,
                max_level=1,
            ),
            priority=2,
        ),
        Route(
            id="high-volume-alerts",
            name="High Volume Transaction Alerts",
            conditions=[
                RouteCondition(NotificationField.TYPE, ConditionOperator.EQUALS, "alert"),
                RouteCondition(
                    NotificationField.MESSAGE,
                    ConditionOperator.CONTAINS,
                    "High Transaction Volume",
                    LogicalJoiner.AND,
                ),
            ],
            actions=[
                RouteAction(ActionType.EMAIL, {"template": "volume-alert"}),
                RouteAction(ActionType.WEBHOOK, {"url": "/api/analytics/volume-spike"}),
            ],
            priority=3,
        ),
    ]


def default_recipients() -> List[Recipient]:
    """Role recipients referenced by the default escalation policies."""
    return [
        Recipient(
            id="admin-on-duty",
            type=RecipientType.ROLE,
            identifier="admin",
            contact_methods=[
                ContactMethod(ContactChannel.EMAIL, "admin@company.com", priority=1),
                ContactMethod(ContactChannel.SMS, "+62812345678", priority=2),
            ],
        ),
        Recipient(
            id="system-managers",
            type=RecipientType.ROLE,
            identifier="system-manager",
            contact_methods=[
                ContactMethod(ContactChannel.EMAIL, "system-team@company.com", priority=1),
                ContactMethod(ContactChannel.SLACK, "#system-alerts", priority=2),
            ],
        ),
        Recipient(
            id="branch-managers",
            type=RecipientType.ROLE,
            identifier="branch-manager",
            contact_methods=[
                ContactMethod(ContactChannel.EMAIL, "branch-managers@company.com", priority=1),
                ContactMethod(ContactChannel.PUSH, "branch-manager-group", priority=2),
            ],
        ),
    ]
