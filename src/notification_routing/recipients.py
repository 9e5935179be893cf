"""PRD-175: Notification Routing & Escalation - Recipient Directory."""

import logging
import threading
from typing import Dict, Iterable, List, Optional

from src.notification_routing.exceptions import RecipientNotFoundError
from src.notification_routing.models import ContactMethod, Recipient

logger = logging.getLogger(__name__)


class RecipientDirectory:
    """Resolves recipient references to concrete contact methods.

    This in-memory directory keys recipients by ID. Role, branch or
    department expansion belongs to whatever populates it.
    """

    def __init__(self, recipients: Optional[Iterable[Recipient]] = None) -> None:
        self._lock = threading.Lock()
        self._recipients: Dict[str, Recipient] = {}
        for recipient in recipients or ():
            self._recipients[recipient.id] = recipient

    def register(self, recipient: Recipient) -> None:
        """Add or replace a recipient."""
        with self._lock:
            self._recipients[recipient.id] = recipient
        logger.info(
            "Registered recipient %s (%s:%s)",
            recipient.id,
            recipient.type.value,
            recipient.identifier,
        )

    def remove(self, recipient_id: str) -> bool:
        with self._lock:
            return self._recipients.pop(recipient_id, None) is not None

    def get(self, recipient_id: str) -> Optional[Recipient]:
        with self._lock:
            return self._recipients.get(recipient_id)

    def all(self) -> List[Recipient]:
        with self._lock:
            return list(self._recipients.values())

    def resolve(self, recipient_ref: str) -> List[ContactMethod]:
        """Resolve a recipient to its active contact methods.

        Args:
            recipient_ref: Recipient ID.

        Returns:
            Active contact methods ordered by ascending priority.

        Raises:
            RecipientNotFoundError: If the recipient is unknown.
        """
        recipient = self.get(recipient_ref)
        if recipient is None:
            raise RecipientNotFoundError(recipient_ref)
        active = [c for c in recipient.contact_methods if c.is_active]
        return sorted(active, key=lambda c: c.priority)
