"""PRD-175: Notification Routing & Escalation - Escalation Coordinator.

State machine per (notification, route) pair:

    NotStarted -> Level(0) -> Level(1) -> ... -> Level(n-1)   (exhausted)
    any level  -> Resolved

Each instance has at most one outstanding timer. A timeout re-checks
resolution under the instance lock before any side effect, so a resolve()
that wins the race suppresses the advance even if cancelling the timer
failed, and a resolve() that loses waits for the advance to finish.
"""

import dataclasses
import logging
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

from src.logging_config.context import NotificationContext
from src.notification_routing.clock import Clock, TimerHandle
from src.notification_routing.exceptions import (
    EscalationNotFoundError,
    EscalationSchedulingError,
)
from src.notification_routing.models import (
    EscalationInstance,
    Notification,
    Route,
    RouteAction,
)

if TYPE_CHECKING:
    from src.notification_routing.dispatcher import ActionDispatcher

logger = logging.getLogger(__name__)


@dataclass
class _EscalationTrack:
    """Internal state for one escalation instance."""

    instance: EscalationInstance
    notification: Notification
    route: Route
    lock: threading.Lock = field(default_factory=threading.Lock)
    handle: Optional[TimerHandle] = None


class EscalationCoordinator:
    """Runs timeout-driven escalation for routes with an escalation policy.

    Example:
        coordinator = EscalationCoordinator(dispatcher, clock)
        instance = coordinator.start(notification, route)
        ...
        coordinator.resolve(instance.id, resolved_by="admin")
    """

    def __init__(self, dispatcher: "ActionDispatcher", clock: Clock) -> None:
        self._dispatcher = dispatcher
        self._clock = clock
        self._lock = threading.Lock()
        self._tracks: Dict[str, _EscalationTrack] = {}
        self._active: Dict[Tuple[str, str], str] = {}

    # ── Lifecycle ────────────────────────────────────────────────────

    def start(
        self, notification: Notification, route: Route
    ) -> Optional[EscalationInstance]:
        """Start escalation for a notification on a route.

        Idempotent while an unresolved instance exists for the pair: the
        existing instance is returned and nothing is scheduled.

        Args:
            notification: The notification that matched the route.
            route: A route carrying an escalation policy.

        Returns:
            The new or existing instance, or None if the route has no
            usable policy.
        """
        policy = route.escalation
        if policy is None:
            return None
        if not policy.levels:
            logger.warning("Escalation policy on route %s has no levels", route.id)
            return None
        if policy.max_level is not None and policy.max_level != len(policy.levels):
            logger.warning(
                "Route %s escalation max_level=%d disagrees with %d levels; using levels",
                route.id,
                policy.max_level,
                len(policy.levels),
            )

        key = (notification.id, route.id)
        with self._lock:
            existing_id = self._active.get(key)
            if existing_id is not None:
                existing = self._tracks[existing_id]
                if not existing.instance.is_resolved:
                    logger.debug(
                        "Escalation %s already active for notification %s on route %s",
                        existing_id,
                        notification.id,
                        route.id,
                    )
                    return dataclasses.replace(existing.instance)

            instance = EscalationInstance(
                notification_id=notification.id,
                route_id=route.id,
                started_at=self._clock.now(),
            )
            track = _EscalationTrack(instance=instance, notification=notification, route=route)
            self._tracks[instance.id] = track
            self._active[key] = instance.id

        with track.lock:
            self._schedule_timeout(track, 0)
            snapshot = dataclasses.replace(track.instance)

        logger.info(
            "Started escalation %s for notification %s on route %s (%d levels)",
            instance.id,
            notification.id,
            route.id,
            len(policy.levels),
        )
        return snapshot

    def resolve(self, instance_id: str, resolved_by: str) -> EscalationInstance:
        """Mark an escalation resolved and stop it.

        Resolving twice is a no-op; the first resolver is kept.

        Raises:
            EscalationNotFoundError: If the instance does not exist.
        """
        with self._lock:
            track = self._tracks.get(instance_id)
        if track is None:
            raise EscalationNotFoundError(instance_id)

        with track.lock:
            instance = track.instance
            if instance.is_resolved:
                return dataclasses.replace(instance)
            instance.is_resolved = True
            instance.resolved_at = self._clock.now()
            instance.resolved_by = resolved_by
            handle, track.handle = track.handle, None
            snapshot = dataclasses.replace(instance)

        # Best effort; a timer that still fires finds the instance resolved
        if handle is not None:
            self._clock.cancel(handle)

        with self._lock:
            key = (instance.notification_id, instance.route_id)
            if self._active.get(key) == instance_id:
                del self._active[key]

        logger.info(
            "Escalation %s resolved by %s at level %d",
            instance_id,
            resolved_by,
            snapshot.current_level,
        )
        return snapshot

    def shutdown(self) -> int:
        """Cancel every outstanding escalation timer."""
        with self._lock:
            tracks = list(self._tracks.values())
        cancelled = 0
        for track in tracks:
            with track.lock:
                handle, track.handle = track.handle, None
            if handle is not None and self._clock.cancel(handle):
                cancelled += 1
        return cancelled

    # ── Queries ──────────────────────────────────────────────────────

    def get(self, instance_id: str) -> Optional[EscalationInstance]:
        with self._lock:
            track = self._tracks.get(instance_id)
        if track is None:
            return None
        with track.lock:
            return dataclasses.replace(track.instance)

    def find(self, notification_id: str, route_id: str) -> Optional[EscalationInstance]:
        """Return the unresolved instance for a pair, if any."""
        with self._lock:
            instance_id = self._active.get((notification_id, route_id))
        return self.get(instance_id) if instance_id else None

    def instances(self) -> List[EscalationInstance]:
        with self._lock:
            tracks = list(self._tracks.values())
        results = []
        for track in tracks:
            with track.lock:
                results.append(dataclasses.replace(track.instance))
        return results

    def active_instances(self) -> List[EscalationInstance]:
        return [i for i in self.instances() if not i.is_resolved]

    # ── Timeout handling ─────────────────────────────────────────────

    def _on_timeout(self, instance_id: str, level: int) -> None:
        with self._lock:
            track = self._tracks.get(instance_id)
        if track is None:
            return

        instance = track.instance
        with NotificationContext(
            notification_id=instance.notification_id,
            route_id=instance.route_id,
            escalation_id=instance_id,
        ):
            try:
                with track.lock:
                    self._advance(track, level)
            except Exception as exc:
                logger.exception("Escalation %s timeout handler failed", instance_id)
                with track.lock:
                    self._halt(track, f"{type(exc).__name__}: {exc}")

    def _advance(self, track: _EscalationTrack, level: int) -> None:
        """Advance past `level`; caller holds the track lock."""
        instance = track.instance
        track.handle = None

        if instance.is_resolved:
            logger.debug("Ignoring stale timeout for resolved escalation %s", instance.id)
            return
        if instance.current_level != level or instance.halted_reason:
            logger.debug(
                "Ignoring stale level-%d timeout for escalation %s", level, instance.id
            )
            return

        levels = track.route.escalation.levels
        next_level = level + 1
        if next_level >= len(levels):
            instance.is_exhausted = True
            logger.info(
                "Escalation %s exhausted at level %d without resolution",
                instance.id,
                level,
            )
            return

        instance.current_level = next_level
        instance.last_escalated_at = self._clock.now()
        logger.info("Escalation %s advanced to level %d", instance.id, next_level)

        self._execute_level(track, next_level)
        self._schedule_timeout(track, next_level)

    def _execute_level(self, track: _EscalationTrack, level: int) -> None:
        """Run a level's actions against each of its recipients."""
        escalation_level = track.route.escalation.levels[level]
        recipients = escalation_level.recipients or [None]

        for action in escalation_level.actions:
            for recipient in recipients:
                if track.instance.is_resolved:
                    return
                if action.delay_ms > 0:
                    self._schedule_level_action(track, action, recipient, level)
                else:
                    self._run_level_action(track, action, recipient, level)

    def _run_level_action(
        self,
        track: _EscalationTrack,
        action: RouteAction,
        recipient: Optional[str],
        level: int,
    ) -> None:
        self._dispatcher.execute_action(
            track.notification,
            action,
            track.route.id,
            recipient_ref=recipient,
            escalation_id=track.instance.id,
            escalation_level=level,
        )

    def _schedule_level_action(
        self,
        track: _EscalationTrack,
        action: RouteAction,
        recipient: Optional[str],
        level: int,
    ) -> None:
        def run() -> None:
            with track.lock:
                if track.instance.is_resolved:
                    logger.debug(
                        "Skipping delayed %s for resolved escalation %s",
                        action.type.value,
                        track.instance.id,
                    )
                    return
                self._run_level_action(track, action, recipient, level)

        self._clock.after(timedelta(milliseconds=action.delay_ms), run)

    def _schedule_timeout(self, track: _EscalationTrack, level: int) -> None:
        """Arm the timer for `level`; caller holds the track lock."""
        instance = track.instance
        if instance.is_resolved:
            return
        try:
            minutes = self._timeout_minutes(track, level)
        except EscalationSchedulingError as exc:
            self._halt(track, str(exc))
            return

        instance_id = instance.id
        track.handle = self._clock.after(
            timedelta(minutes=minutes),
            lambda: self._on_timeout(instance_id, level),
        )
        logger.debug(
            "Escalation %s level %d times out in %s minutes", instance_id, level, minutes
        )

    def _timeout_minutes(self, track: _EscalationTrack, level: int) -> float:
        policy = track.route.escalation
        instance_id = track.instance.id
        if level >= len(policy.levels):
            raise EscalationSchedulingError(instance_id, f"policy has no level {level}")

        raw = policy.levels[level].timeout_minutes
        if raw is None:
            raw = policy.timeout_minutes
        try:
            minutes = float(raw)
        except (TypeError, ValueError):
            raise EscalationSchedulingError(
                instance_id, f"level {level} has no usable timeout ({raw!r})"
            ) from None
        if minutes <= 0:
            raise EscalationSchedulingError(
                instance_id, f"level {level} timeout must be positive, got {minutes}"
            )
        return minutes

    def _halt(self, track: _EscalationTrack, reason: str) -> None:
        """Stop an instance without resolving it; caller holds the track lock."""
        track.instance.halted_reason = reason
        handle, track.handle = track.handle, None
        if handle is not None:
            self._clock.cancel(handle)
        logger.warning("Escalation %s halted: %s", track.instance.id, reason)
