"""PRD-175: Notification Routing & Escalation - Channel Senders.

Every transport is reached through one contract: a ChannelSender takes an
optional contact method and a payload and returns a SendResult. How a real
SMTP, SMS, push or webhook client shapes its own responses stays inside
its sender.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from src.notification_routing.config import ActionType
from src.notification_routing.models import ContactMethod

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendResult:
    """Normalized outcome of one channel send.

    Attributes:
        success: Whether the transport accepted the message.
        reason: Failure reason when success is False.
        confirmed: Whether receipt was confirmed immediately.
    """

    success: bool
    reason: Optional[str] = None
    confirmed: bool = False

    @classmethod
    def ok(cls, confirmed: bool = False) -> "SendResult":
        return cls(success=True, confirmed=confirmed)

    @classmethod
    def failed(cls, reason: str) -> "SendResult":
        return cls(success=False, reason=reason)


@runtime_checkable
class ChannelSender(Protocol):
    """Transport for one action type."""

    def send(self, contact: Optional[ContactMethod], payload: Dict[str, Any]) -> SendResult: ...


class LoggingChannelSender:
    """Sender that only logs the message and reports success.

    Stands in for a real transport until one is registered.
    """

    def __init__(self, action_type: ActionType, confirms: bool = False) -> None:
        self.action_type = action_type
        self.confirms = confirms

    def send(self, contact: Optional[ContactMethod], payload: Dict[str, Any]) -> SendResult:
        logger.info(
            "Sending %s for notification %s to %s: %s",
            self.action_type.value,
            payload.get("notification_id"),
            contact.address if contact else "default audience",
            payload.get("title", ""),
        )
        return SendResult.ok(confirmed=self.confirms)


class ChannelRegistry:
    """Maps action types to their channel senders."""

    def __init__(self) -> None:
        self._senders: Dict[ActionType, ChannelSender] = {}

    @classmethod
    def with_defaults(cls, confirming_actions=frozenset()) -> "ChannelRegistry":
        """Registry with a LoggingChannelSender for every routable action.

        ESCALATE gets no default sender.
        """
        registry = cls()
        for action_type in ActionType:
            if action_type == ActionType.ESCALATE:
                continue
            registry.register(
                action_type,
                LoggingChannelSender(action_type, confirms=action_type in confirming_actions),
            )
        return registry

    def register(self, action_type: ActionType, sender: ChannelSender) -> None:
        self._senders[action_type] = sender
        logger.debug("Registered %s sender for %s", type(sender).__name__, action_type.value)

    def unregister(self, action_type: ActionType) -> bool:
        return self._senders.pop(action_type, None) is not None

    def get(self, action_type: ActionType) -> Optional[ChannelSender]:
        return self._senders.get(action_type)

    def registered(self) -> list[ActionType]:
        return list(self._senders)
