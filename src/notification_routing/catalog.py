"""PRD-175: Notification Routing & Escalation - Route Catalog & Matching."""

import dataclasses
import logging
import threading
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from src.notification_routing.conditions import evaluate_conditions
from src.notification_routing.exceptions import DuplicateRouteError, RouteNotFoundError
from src.notification_routing.models import Notification, Route

logger = logging.getLogger(__name__)

RouteSnapshot = Tuple[Route, ...]


def match_routes(notification: Notification, snapshot: Sequence[Route]) -> List[Route]:
    """Select the routes that apply to a notification.

    Keeps active routes whose conditions hold and orders them by ascending
    priority. The sort is stable, so equal priorities keep catalog order.

    Args:
        notification: The notification to route.
        snapshot: One consistent view of the route catalog.

    Returns:
        Matching routes in evaluation order.
    """
    matched = [
        route
        for route in snapshot
        if route.is_active and evaluate_conditions(notification, route.conditions)
    ]
    return sorted(matched, key=lambda r: r.priority)


class RouteCatalog:
    """Read-mostly store of route definitions.

    Writers swap in a new immutable tuple under a lock; readers take the
    current tuple with snapshot() and keep using it for a whole matching
    pass, so a concurrent update never mixes old and new definitions.
    """

    def __init__(self, routes: Optional[Iterable[Route]] = None) -> None:
        self._lock = threading.Lock()
        self._routes: RouteSnapshot = tuple(routes or ())

    def snapshot(self) -> RouteSnapshot:
        """Return the current catalog contents."""
        with self._lock:
            return self._routes

    def match(self, notification: Notification) -> List[Route]:
        """Match a notification against a fresh snapshot."""
        return match_routes(notification, self.snapshot())

    def add(self, route: Route) -> None:
        """Add a route.

        Raises:
            DuplicateRouteError: If a route with the same ID exists.
        """
        with self._lock:
            if any(r.id == route.id for r in self._routes):
                raise DuplicateRouteError(route.id)
            self._routes = self._routes + (route,)
        logger.info("Added route: %s (priority=%d)", route.id, route.priority)

    def update(self, route_id: str, **changes: Any) -> Route:
        """Replace a route with a copy carrying the given field changes.

        Raises:
            RouteNotFoundError: If the route does not exist.
        """
        changes.pop("id", None)
        with self._lock:
            index = self._index_of(route_id)
            updated = dataclasses.replace(self._routes[index], **changes)
            routes = list(self._routes)
            routes[index] = updated
            self._routes = tuple(routes)
        logger.info("Updated route %s: %s", route_id, sorted(changes))
        return updated

    def remove(self, route_id: str) -> Route:
        """Remove a route by ID.

        Raises:
            RouteNotFoundError: If the route does not exist.
        """
        with self._lock:
            index = self._index_of(route_id)
            removed = self._routes[index]
            self._routes = self._routes[:index] + self._routes[index + 1:]
        logger.info("Removed route: %s", route_id)
        return removed

    def toggle(self, route_id: str) -> Route:
        """Flip a route's active flag."""
        with self._lock:
            index = self._index_of(route_id)
            current = self._routes[index]
            toggled = dataclasses.replace(current, is_active=not current.is_active)
            routes = list(self._routes)
            routes[index] = toggled
            self._routes = tuple(routes)
        logger.info("Route %s active=%s", route_id, toggled.is_active)
        return toggled

    def get(self, route_id: str) -> Optional[Route]:
        for route in self.snapshot():
            if route.id == route_id:
                return route
        return None

    def __len__(self) -> int:
        return len(self.snapshot())

    def _index_of(self, route_id: str) -> int:
        for i, route in enumerate(self._routes):
            if route.id == route_id:
                return i
        raise RouteNotFoundError(route_id)
