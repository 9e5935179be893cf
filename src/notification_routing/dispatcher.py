"""PRD-175: Notification Routing & Escalation - Action Dispatch.

Turns a matched route's actions into Delivery records. Each action runs in
isolation: an unknown action type, an unresolvable recipient or a failing
channel becomes a failed Delivery and the remaining actions still run.
"""

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from src.notification_routing.channels import ChannelRegistry
from src.notification_routing.clock import Clock
from src.notification_routing.config import (
    ACTION_CHANNELS,
    ActionType,
    DeliveryStatus,
)
from src.notification_routing.exceptions import (
    ActionExecutionError,
    ChannelSendError,
    RecipientNotFoundError,
    UnknownActionError,
)
from src.notification_routing.ledger import DeliveryLedger
from src.notification_routing.models import (
    ContactMethod,
    Delivery,
    Notification,
    Route,
    RouteAction,
)
from src.notification_routing.recipients import RecipientDirectory

if TYPE_CHECKING:
    from src.notification_routing.escalation import EscalationCoordinator

logger = logging.getLogger(__name__)


def build_payload(
    notification: Notification,
    action: RouteAction,
    route_id: str,
    escalation_level: Optional[int] = None,
) -> Dict[str, Any]:
    """Channel-agnostic message payload for one action."""
    payload = {
        "notification_id": notification.id,
        "route_id": route_id,
        "type": notification.type,
        "severity": notification.severity,
        "priority": notification.priority,
        "title": notification.title,
        "message": notification.message,
        "branch_id": notification.branch_id,
        "action_url": notification.action_url,
        "config": dict(action.config),
    }
    if escalation_level is not None:
        payload["escalation_level"] = escalation_level
    return payload


class ActionDispatcher:
    """Executes route actions and records their outcome in the ledger.

    Example:
        dispatcher = ActionDispatcher(directory, channels, ledger, clock)
        deliveries = dispatcher.dispatch(notification, route)
    """

    def __init__(
        self,
        directory: RecipientDirectory,
        channels: ChannelRegistry,
        ledger: DeliveryLedger,
        clock: Clock,
        confirming_actions=frozenset(),
    ) -> None:
        self._directory = directory
        self._channels = channels
        self._ledger = ledger
        self._clock = clock
        self._confirming_actions = frozenset(confirming_actions)
        self.escalations: Optional["EscalationCoordinator"] = None

    def dispatch(self, notification: Notification, route: Route) -> List[Delivery]:
        """Run every action of a matched route.

        Immediate actions run in declared order and their deliveries are
        returned. Delayed actions are scheduled on the clock; their
        deliveries only reach the ledger. If the route carries an
        escalation policy, one escalation is started for the pair.

        Args:
            notification: The notification being routed.
            route: A route that matched it.

        Returns:
            Deliveries produced synchronously, in action order.
        """
        deliveries: List[Delivery] = []

        for action in route.actions:
            if action.delay_ms > 0:
                self._schedule_delayed(notification, action, route.id)
                continue
            deliveries.append(self.execute_action(notification, action, route.id))

        if route.escalation is not None and self.escalations is not None:
            try:
                self.escalations.start(notification, route)
            except Exception:
                logger.exception(
                    "Could not start escalation for notification %s on route %s",
                    notification.id,
                    route.id,
                )

        return deliveries

    def execute_action(
        self,
        notification: Notification,
        action: RouteAction,
        route_id: str,
        recipient_ref: Optional[str] = None,
        escalation_id: Optional[str] = None,
        escalation_level: Optional[int] = None,
    ) -> Delivery:
        """Execute one action and append its Delivery to the ledger.

        Never raises for action-level failures; they are recorded as a
        failed Delivery with a failure reason.

        Args:
            notification: The notification being delivered.
            action: The action to execute.
            route_id: Route the action belongs to.
            recipient_ref: Explicit recipient (escalation levels). Defaults
                to the action's ``recipient`` config entry.
            escalation_id: Escalation instance that triggered the action.
            escalation_level: Escalation level that triggered the action.

        Returns:
            The recorded Delivery.
        """
        recipient_ref = recipient_ref or action.config.get("recipient")
        attempted_at = self._clock.now()
        status = DeliveryStatus.FAILED
        delivered_at = None
        failure_reason = None

        try:
            sender = self._channels.get(action.type)
            if sender is None:
                raise UnknownActionError(action.type.value)

            contact = self._select_contact(action.type, recipient_ref)
            payload = build_payload(notification, action, route_id, escalation_level)
            result = sender.send(contact, payload)
            if not result.success:
                raise ChannelSendError(action.type.value, result.reason)

            if result.confirmed or action.type in self._confirming_actions:
                status = DeliveryStatus.DELIVERED
                delivered_at = self._clock.now()
            else:
                status = DeliveryStatus.SENT
        except ActionExecutionError as exc:
            failure_reason = str(exc)
        except Exception as exc:
            logger.exception(
                "Unexpected error executing %s for notification %s",
                action.type.value,
                notification.id,
            )
            failure_reason = f"{type(exc).__name__}: {exc}"

        delivery = Delivery(
            notification_id=notification.id,
            recipient_ref=recipient_ref or route_id,
            method=action.type,
            status=status,
            route_id=route_id,
            last_attempt=attempted_at,
            delivered_at=delivered_at,
            failure_reason=failure_reason,
            escalation_id=escalation_id,
            escalation_level=escalation_level,
        )
        return self._ledger.append(delivery)

    def _select_contact(
        self, action_type: ActionType, recipient_ref: Optional[str]
    ) -> Optional[ContactMethod]:
        """Pick the contact method an action should be sent to.

        Raises:
            RecipientNotFoundError: If the recipient is unknown or has no
                active contact on the channel the action requires.
        """
        if recipient_ref is None:
            return None

        contacts = self._directory.resolve(recipient_ref)
        channel = ACTION_CHANNELS.get(action_type)
        if channel is None:
            return contacts[0] if contacts else None

        for contact in contacts:
            if contact.type == channel:
                return contact
        raise RecipientNotFoundError(
            recipient_ref,
            f"No active {channel.value} contact for recipient {recipient_ref}",
        )

    def _schedule_delayed(
        self, notification: Notification, action: RouteAction, route_id: str
    ) -> None:
        def run() -> None:
            try:
                self.execute_action(notification, action, route_id)
            except Exception:
                logger.exception(
                    "Delayed %s for notification %s failed",
                    action.type.value,
                    notification.id,
                )

        self._clock.after(timedelta(milliseconds=action.delay_ms), run)
        logger.debug(
            "Scheduled %s for notification %s in %dms",
            action.type.value,
            notification.id,
            action.delay_ms,
        )
