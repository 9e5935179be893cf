"""CLI entry point: python main.py --event notification.json --advance-minutes 20"""

import argparse
import json
import logging
import sys
from datetime import timedelta

import config
from src.logging_config import LogFormat, LoggingConfig, LogLevel, configure_logging
from src.notification_routing import (
    Notification,
    NotificationRoutingEngine,
    Route,
    RoutingConfig,
    VirtualClock,
)

logger = logging.getLogger(__name__)


def load_json(path):
    if path == "-":
        return json.load(sys.stdin)
    with open(path, encoding="utf-8") as fh:
        return json.load(fh)


def simulate(engine, clock, minutes, step_minutes, resolve_at=None, resolved_by=None):
    """Advance the virtual clock in steps, optionally resolving everything at a given minute."""
    elapsed = 0.0
    resolved = False
    while elapsed < minutes:
        step = min(step_minutes, minutes - elapsed)
        clock.advance(timedelta(minutes=step))
        elapsed += step
        if resolve_at is not None and not resolved and elapsed >= resolve_at:
            for instance in engine.active_escalations():
                engine.resolve_escalation(instance.id, resolved_by)
            resolved = True
    return elapsed


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Notification routing - route a notification and simulate escalation"
    )
    parser.add_argument(
        "--event", required=True,
        help="Notification JSON file ('-' for stdin)"
    )
    parser.add_argument(
        "--routes", default=None,
        help="JSON file with a list of routes (replaces the built-in routes)"
    )
    parser.add_argument(
        "--advance-minutes", type=float, default=config.CLI_ADVANCE_MINUTES,
        help="Virtual minutes to simulate after processing (default: 0)"
    )
    parser.add_argument(
        "--resolve-after", type=float, default=None,
        help="Resolve open escalations after this many simulated minutes"
    )
    parser.add_argument(
        "--no-escalation", action="store_true",
        help="Disable escalation"
    )
    parser.add_argument(
        "--verbose", action="store_true",
        help="Log routing decisions to stderr"
    )
    args = parser.parse_args(argv)
    if args.resolve_after is not None and args.resolve_after > args.advance_minutes:
        parser.error("--resolve-after must not exceed --advance-minutes")

    configure_logging(LoggingConfig(
        level=LogLevel.DEBUG if args.verbose else LogLevel.WARNING,
        format=LogFormat.CONSOLE,
    ))

    routes = None
    if args.routes:
        routes = [Route.from_dict(r) for r in load_json(args.routes)]

    routing_config = RoutingConfig.from_env(metrics_window_hours=config.METRICS_WINDOW_HOURS)
    if args.no_escalation:
        routing_config.enable_escalation = False

    clock = VirtualClock()
    engine = NotificationRoutingEngine(config=routing_config, clock=clock, routes=routes)

    notification = Notification.from_dict(load_json(args.event))
    immediate = engine.process_notification(notification)

    elapsed = 0.0
    if args.advance_minutes > 0:
        elapsed = simulate(
            engine, clock, args.advance_minutes, config.CLI_STEP_MINUTES,
            resolve_at=args.resolve_after, resolved_by=config.CLI_RESOLVED_BY,
        )

    report = {
        "notification_id": notification.id,
        "immediate_deliveries": [d.to_dict() for d in immediate],
        "deliveries": [d.to_dict() for d in engine.ledger.query(notification_id=notification.id)],
        "escalations": [e.to_dict() for e in engine.get_escalations()],
        "simulated_minutes": elapsed,
        "stats": engine.routing_stats(),
    }
    engine.shutdown()

    print(json.dumps(report, indent=config.CLI_JSON_INDENT, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
