"""PRD-175: Notification Routing & Escalation - Delivery Ledger."""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from src.notification_routing.config import DeliveryStatus, SUCCESSFUL_STATUSES
from src.notification_routing.models import Delivery

logger = logging.getLogger(__name__)


def delivery_rate(deliveries: List[Delivery]) -> float:
    """Percentage of deliveries that were sent or delivered."""
    if not deliveries:
        return 0.0
    ok = sum(1 for d in deliveries if d.status in SUCCESSFUL_STATUSES)
    return ok / len(deliveries) * 100


def failure_rate(deliveries: List[Delivery]) -> float:
    """Percentage of deliveries that failed."""
    if not deliveries:
        return 0.0
    failed = sum(1 for d in deliveries if d.status == DeliveryStatus.FAILED)
    return failed / len(deliveries) * 100


def average_delivery_time(deliveries: List[Delivery]) -> float:
    """Mean seconds from last attempt to confirmed delivery.

    Only deliveries with status DELIVERED and a delivered_at time count.
    """
    timed = [
        (d.delivered_at - d.last_attempt).total_seconds()
        for d in deliveries
        if d.status == DeliveryStatus.DELIVERED and d.delivered_at is not None
    ]
    if not timed:
        return 0.0
    return sum(timed) / len(timed)


class DeliveryLedger:
    """Append-only record of every dispatch attempt.

    Appends from concurrent dispatches are serialized by a lock; records
    are frozen, so a reader's copy never changes under it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: List[Delivery] = []
        self._by_notification: Dict[str, List[Delivery]] = {}

    def append(self, delivery: Delivery) -> Delivery:
        with self._lock:
            self._records.append(delivery)
            self._by_notification.setdefault(delivery.notification_id, []).append(delivery)
        if delivery.status == DeliveryStatus.FAILED:
            logger.warning(
                "Delivery %s (%s -> %s) failed: %s",
                delivery.id,
                delivery.method.value,
                delivery.recipient_ref,
                delivery.failure_reason,
                extra={"delivery_status": delivery.status.value},
            )
        else:
            logger.debug(
                "Recorded delivery %s (%s -> %s, %s)",
                delivery.id,
                delivery.method.value,
                delivery.recipient_ref,
                delivery.status.value,
                extra={"delivery_status": delivery.status.value},
            )
        return delivery

    def extend(self, deliveries: Iterable[Delivery]) -> None:
        for delivery in deliveries:
            self.append(delivery)

    def all(self) -> List[Delivery]:
        with self._lock:
            return list(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def get(self, delivery_id: str) -> Optional[Delivery]:
        with self._lock:
            for delivery in self._records:
                if delivery.id == delivery_id:
                    return delivery
        return None

    def query(
        self,
        notification_id: Optional[str] = None,
        recipient_ref: Optional[str] = None,
        route_id: Optional[str] = None,
        status: Optional[DeliveryStatus] = None,
        since: Optional[datetime] = None,
    ) -> List[Delivery]:
        """Get deliveries with optional filtering.

        Args:
            notification_id: Filter by notification.
            recipient_ref: Filter by recipient reference.
            route_id: Filter by originating route.
            status: Filter by status.
            since: Only deliveries attempted after this time.

        Returns:
            Matching deliveries in append order.
        """
        with self._lock:
            if notification_id is not None:
                results = list(self._by_notification.get(notification_id, []))
            else:
                results = list(self._records)

        if recipient_ref is not None:
            results = [d for d in results if d.recipient_ref == recipient_ref]
        if route_id is not None:
            results = [d for d in results if d.route_id == route_id]
        if status is not None:
            results = [d for d in results if d.status == status]
        if since is not None:
            results = [d for d in results if d.last_attempt > since]
        return results

    def delivery_rate(self) -> float:
        return delivery_rate(self.all())

    def average_delivery_time(self) -> float:
        return average_delivery_time(self.all())

    def stats(self) -> Dict[str, float]:
        """Overall delivery counts and rate."""
        records = self.all()
        return {
            "total_deliveries": len(records),
            "successful_deliveries": sum(
                1 for d in records if d.status in SUCCESSFUL_STATUSES
            ),
            "failed_deliveries": sum(
                1 for d in records if d.status == DeliveryStatus.FAILED
            ),
            "delivery_rate": delivery_rate(records),
        }

    def performance(
        self, now: Optional[datetime] = None, window_hours: int = 24
    ) -> Dict[str, float]:
        """Delivery performance over a trailing window.

        Args:
            now: End of the window (defaults to current UTC time).
            window_hours: Window length in hours.

        Returns:
            Dict with deliveries_in_window, average_delivery_time (seconds),
            failure_rate (percent) and average_attempts.
        """
        if now is None:
            now = datetime.now(timezone.utc)
        recent = self.query(since=now - timedelta(hours=window_hours))
        return {
            "deliveries_in_window": len(recent),
            "average_delivery_time": average_delivery_time(recent),
            "failure_rate": failure_rate(recent),
            "average_attempts": (
                sum(d.attempts for d in recent) / len(recent) if recent else 0.0
            ),
        }
