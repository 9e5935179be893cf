"""PRD-175: Notification Routing & Escalation - Routing Engine."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from src.logging_config.context import NotificationContext
from src.logging_config.performance import PerformanceTimer, log_performance
from src.notification_routing.catalog import RouteCatalog
from src.notification_routing.channels import ChannelRegistry
from src.notification_routing.clock import Clock, SystemClock
from src.notification_routing.config import RoutingConfig
from src.notification_routing.defaults import default_recipients, default_routes
from src.notification_routing.dispatcher import ActionDispatcher
from src.notification_routing.escalation import EscalationCoordinator
from src.notification_routing.exceptions import RouteNotFoundError
from src.notification_routing.ledger import (
    DeliveryLedger,
    average_delivery_time,
    delivery_rate,
)
from src.notification_routing.models import (
    Delivery,
    EscalationInstance,
    Notification,
    Recipient,
    Route,
)
from src.notification_routing.recipients import RecipientDirectory

logger = logging.getLogger(__name__)


class NotificationRoutingEngine:
    """Central notification routing and escalation system.

    Owns the route catalog, recipient directory, channel registry, delivery
    ledger and escalation coordinator; all state changes go through its
    methods. process_notification() may be called concurrently for
    independent notifications.

    Example:
        engine = NotificationRoutingEngine(clock=VirtualClock())
        deliveries = engine.process_notification(notification)
        for instance in engine.active_escalations():
            engine.resolve_escalation(instance.id, resolved_by="ops")
    """

    def __init__(
        self,
        config: Optional[RoutingConfig] = None,
        clock: Optional[Clock] = None,
        channels: Optional[ChannelRegistry] = None,
        directory: Optional[RecipientDirectory] = None,
        routes: Optional[List[Route]] = None,
    ) -> None:
        self._config = config or RoutingConfig()
        self._clock = clock or SystemClock()

        if routes is None:
            routes = default_routes() if self._config.load_default_routes else []
        self._catalog = RouteCatalog(routes)

        if directory is None:
            directory = RecipientDirectory(
                default_recipients() if self._config.load_default_recipients else []
            )
        self._directory = directory

        self._channels = channels or ChannelRegistry.with_defaults(
            self._config.confirming_actions
        )
        self._ledger = DeliveryLedger()
        self._dispatcher = ActionDispatcher(
            directory=self._directory,
            channels=self._channels,
            ledger=self._ledger,
            clock=self._clock,
            confirming_actions=self._config.confirming_actions,
        )
        self._escalations = EscalationCoordinator(self._dispatcher, self._clock)
        if self._config.enable_escalation:
            self._dispatcher.escalations = self._escalations

    @property
    def config(self) -> RoutingConfig:
        return self._config

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def catalog(self) -> RouteCatalog:
        return self._catalog

    @property
    def directory(self) -> RecipientDirectory:
        return self._directory

    @property
    def channels(self) -> ChannelRegistry:
        return self._channels

    @property
    def ledger(self) -> DeliveryLedger:
        return self._ledger

    @property
    def escalations(self) -> EscalationCoordinator:
        return self._escalations

    # ── Processing ───────────────────────────────────────────────────

    def process_notification(self, notification: Notification) -> List[Delivery]:
        """Route a notification and dispatch the matched routes' actions.

        Failures are isolated per route: one misbehaving route is logged
        and skipped, the others still run.

        Args:
            notification: The incoming notification.

        Returns:
            Deliveries produced immediately; delayed and escalation
            deliveries surface later through the ledger.
        """
        deliveries: List[Delivery] = []

        with NotificationContext(notification_id=notification.id) as ctx:
            with PerformanceTimer("route matching"):
                matched = self._catalog.match(notification)

            if not matched:
                logger.info("Notification %s matched no routes", notification.id)
                return deliveries

            logger.info(
                "Notification %s matched routes %s",
                notification.id,
                [r.id for r in matched],
            )
            for route in matched:
                ctx.bind(route_id=route.id)
                try:
                    deliveries.extend(self._dispatcher.dispatch(notification, route))
                except Exception:
                    logger.exception(
                        "Route %s failed for notification %s", route.id, notification.id
                    )

        return deliveries

    def resolve_escalation(self, instance_id: str, resolved_by: str) -> EscalationInstance:
        """Resolve an escalation instance (acknowledge the problem)."""
        return self._escalations.resolve(instance_id, resolved_by)

    def shutdown(self) -> None:
        """Cancel pending escalation timeouts and delayed actions."""
        cancelled = self._escalations.shutdown()
        shutdown = getattr(self._clock, "shutdown", None)
        if shutdown is not None:
            cancelled += shutdown()
        logger.info("Routing engine shut down (%d timers cancelled)", cancelled)

    # ── Route & recipient management ─────────────────────────────────

    def add_route(self, route: Route) -> None:
        self._catalog.add(route)

    def update_route(self, route_id: str, **changes: Any) -> Route:
        return self._catalog.update(route_id, **changes)

    def delete_route(self, route_id: str) -> Route:
        return self._catalog.remove(route_id)

    def toggle_route(self, route_id: str) -> Route:
        return self._catalog.toggle(route_id)

    def get_route(self, route_id: str) -> Optional[Route]:
        return self._catalog.get(route_id)

    def get_routes(self) -> List[Route]:
        return list(self._catalog.snapshot())

    def add_recipient(self, recipient: Recipient) -> None:
        self._directory.register(recipient)

    def get_recipients(self) -> List[Recipient]:
        return self._directory.all()

    # ── Reporting ────────────────────────────────────────────────────

    def get_escalations(self) -> List[EscalationInstance]:
        return self._escalations.instances()

    def active_escalations(self) -> List[EscalationInstance]:
        return self._escalations.active_instances()

    def routing_stats(self) -> Dict[str, Any]:
        """Route, delivery and escalation totals."""
        routes = self._catalog.snapshot()
        stats: Dict[str, Any] = {
            "total_routes": len(routes),
            "active_routes": sum(1 for r in routes if r.is_active),
        }
        stats.update(self._ledger.stats())
        stats["active_escalations"] = len(self.active_escalations())
        return stats

    def performance_metrics(self, now: Optional[datetime] = None) -> Dict[str, float]:
        """Delivery performance over the configured trailing window."""
        return self._ledger.performance(
            now=now or self._clock.now(),
            window_hours=self._config.metrics_window_hours,
        )

    def route_performance(self, route_id: str) -> Dict[str, Any]:
        """Delivery outcomes for a single route.

        Raises:
            RouteNotFoundError: If the route is not in the catalog.
        """
        if self._catalog.get(route_id) is None:
            raise RouteNotFoundError(route_id)
        deliveries = self._ledger.query(route_id=route_id)
        last_used = max((d.last_attempt for d in deliveries), default=None)
        return {
            "route_id": route_id,
            "deliveries": len(deliveries),
            "success_rate": delivery_rate(deliveries),
            "average_delivery_time": average_delivery_time(deliveries),
            "last_used": last_used.isoformat() if last_used else None,
        }

    @log_performance()
    def export_routing_data(self) -> Dict[str, Any]:
        """Serializable dump of routes, deliveries, escalations and metrics."""
        return {
            "routes": [r.to_dict() for r in self.get_routes()],
            "deliveries": [d.to_dict() for d in self._ledger.all()],
            "escalations": [e.to_dict() for e in self.get_escalations()],
            "recipients": [r.to_dict() for r in self.get_recipients()],
            "stats": self.routing_stats(),
            "performance": self.performance_metrics(),
            "exported_at": self._clock.now().isoformat(),
        }
