"""Tests for PRD-175: Notification Routing & Escalation."""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from src.notification_routing.catalog import RouteCatalog, match_routes
from src.notification_routing.channels import (
    ChannelRegistry,
    ChannelSender,
    LoggingChannelSender,
    SendResult,
)
from src.notification_routing.clock import SystemClock, VirtualClock
from src.notification_routing.conditions import evaluate, evaluate_conditions
from src.notification_routing.config import (
    ActionType,
    ConditionOperator,
    ContactChannel,
    DeliveryStatus,
    LogicalJoiner,
    NotificationField,
    RecipientType,
    RoutingConfig,
)
from src.notification_routing.defaults import default_recipients, default_routes
from src.notification_routing.dispatcher import ActionDispatcher, build_payload
from src.notification_routing.engine import NotificationRoutingEngine
from src.notification_routing.escalation import EscalationCoordinator
from src.notification_routing.exceptions import (
    ActionExecutionError,
    DuplicateRouteError,
    EscalationNotFoundError,
    RecipientNotFoundError,
    RouteNotFoundError,
    RoutingError,
    UnknownActionError,
)
from src.notification_routing.ledger import DeliveryLedger, delivery_rate
from src.notification_routing.models import (
    ContactMethod,
    Delivery,
    EscalationLevel,
    EscalationPolicy,
    Notification,
    Recipient,
    Route,
    RouteAction,
    RouteCondition,
)
from src.notification_routing.recipients import RecipientDirectory


def _cond(field, operator, value=None, joiner=None):
    return RouteCondition(field, operator, value, joiner)


def _system_failure(**overrides):
    data = dict(type="system", severity="error", title="Database down", message="Primary DB unreachable")
    data.update(overrides)
    return Notification(**data)


class RecordingSender:
    """Sender that records every call and returns a fixed result."""

    def __init__(self, result=None):
        self.result = result or SendResult.ok()
        self.calls = []

    def send(self, contact, payload):
        self.calls.append((contact, payload))
        return self.result


class ExplodingSender:
    def send(self, contact, payload):
        raise RuntimeError("transport crashed")


class NoCancelClock(VirtualClock):
    """Virtual clock whose cancel() never takes effect."""

    def cancel(self, handle):
        return False


# ── Config Tests ─────────────────────────────────────────────────────


class TestRoutingConfig:
    def test_operator_enum(self):
        assert len(ConditionOperator) == 14
        assert ConditionOperator.EQUALS.value == "equals"
        assert ConditionOperator.NOT_IN.value == "not_in"
        assert ConditionOperator.REGEX.value == "regex"

    def test_action_type_enum(self):
        assert len(ActionType) == 7
        assert ActionType.ESCALATE.value == "escalate"
        assert ActionType.WEBHOOK.value == "webhook"

    def test_delivery_status_enum(self):
        assert {s.value for s in DeliveryStatus} == {
            "pending", "sent", "delivered", "failed", "acknowledged",
        }

    def test_joiner_values(self):
        assert LogicalJoiner.AND.value == "AND"
        assert LogicalJoiner.OR.value == "OR"

    def test_default_config(self):
        cfg = RoutingConfig()
        assert cfg.enable_escalation is True
        assert cfg.load_default_routes is True
        assert cfg.metrics_window_hours == 24
        assert cfg.confirming_actions == frozenset(
            {ActionType.PUSH, ActionType.ASSIGN, ActionType.ARCHIVE}
        )

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("NOTIFY_ENABLE_ESCALATION", "false")
        monkeypatch.setenv("NOTIFY_LOAD_DEFAULTS", "0")
        monkeypatch.setenv("NOTIFY_METRICS_WINDOW_HOURS", "6")
        cfg = RoutingConfig.from_env()
        assert cfg.enable_escalation is False
        assert cfg.load_default_routes is False
        assert cfg.load_default_recipients is False
        assert cfg.metrics_window_hours == 6

    def test_from_env_ignores_bad_window(self, monkeypatch):
        monkeypatch.setenv("NOTIFY_METRICS_WINDOW_HOURS", "soon")
        assert RoutingConfig.from_env().metrics_window_hours == 24


# ── Model Tests ──────────────────────────────────────────────────────


class TestModels:
    def test_notification_get_field(self):
        n = Notification(type="alert", branch_id=7)
        assert n.get_field(NotificationField.TYPE) == "alert"
        assert n.get_field(NotificationField.BRANCH_ID) == 7
        assert n.get_field(NotificationField.SEVERITY) is None

    def test_notification_from_dict_parses_timestamps(self):
        n = Notification.from_dict({
            "id": "n-1",
            "type": "system",
            "timestamp": "2024-03-01T10:00:00Z",
            "unknown_key": "ignored",
        })
        assert n.id == "n-1"
        assert n.timestamp == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)

    def test_route_from_dict(self):
        route = Route.from_dict({
            "id": "r1",
            "name": "Critical",
            "conditions": [
                {"field": "severity", "operator": "equals", "value": "error"},
                {"field": "type", "operator": "in", "value": ["system"], "logical_joiner": "or"},
            ],
            "actions": [{"type": "email", "config": {"recipient": "ops"}, "delay_ms": 100}],
            "escalation": {
                "levels": [{"recipients": ["ops"], "actions": [{"type": "sms"}], "timeout_minutes": 5}],
                "max_level": 1,
            },
            "priority": 2,
        })
        assert route.conditions[1].logical_joiner == LogicalJoiner.OR
        assert route.actions[0].delay_ms == 100
        assert route.escalation.levels[0].actions[0].type == ActionType.SMS
        assert route.to_dict()["escalation"]["levels"][0]["timeout_minutes"] == 5

    def test_route_is_frozen(self):
        route = Route(id="r1")
        with pytest.raises(Exception):
            route.priority = 5

    def test_delivery_succeeded(self):
        ok = Delivery("n", "r", ActionType.EMAIL, DeliveryStatus.SENT)
        bad = Delivery("n", "r", ActionType.EMAIL, DeliveryStatus.FAILED)
        assert ok.succeeded and not bad.succeeded

    def test_exception_hierarchy(self):
        assert issubclass(UnknownActionError, ActionExecutionError)
        assert issubclass(RecipientNotFoundError, ActionExecutionError)
        assert issubclass(ActionExecutionError, RoutingError)
        assert str(UnknownActionError("escalate")) == "Unknown action type: escalate"


# ── Condition Tests ──────────────────────────────────────────────────


class TestConditions:
    def setup_method(self):
        self.n = Notification(
            type="system",
            severity="error",
            title="Disk Full on Branch Server",
            message="Usage at 97 percent",
            branch_id=12,
            user_name=None,
        )

    def _eval(self, field, operator, value=None):
        return evaluate(self.n, _cond(field, operator, value))

    def test_equals(self):
        assert self._eval(NotificationField.TYPE, ConditionOperator.EQUALS, "system")
        assert not self._eval(NotificationField.TYPE, ConditionOperator.EQUALS, "alert")

    def test_not_equals(self):
        assert self._eval(NotificationField.TYPE, ConditionOperator.NOT_EQUALS, "alert")

    def test_contains_is_case_insensitive(self):
        assert self._eval(NotificationField.TITLE, ConditionOperator.CONTAINS, "disk full")
        assert self._eval(NotificationField.TITLE, ConditionOperator.NOT_CONTAINS, "memory")

    def test_starts_and_ends_with(self):
        assert self._eval(NotificationField.TITLE, ConditionOperator.STARTS_WITH, "DISK")
        assert self._eval(NotificationField.TITLE, ConditionOperator.ENDS_WITH, "server")

    def test_numeric_comparisons(self):
        assert self._eval(NotificationField.BRANCH_ID, ConditionOperator.GREATER_THAN, 10)
        assert self._eval(NotificationField.BRANCH_ID, ConditionOperator.LESS_THAN, "20")
        assert not self._eval(NotificationField.BRANCH_ID, ConditionOperator.GREATER_THAN, 12)

    def test_non_numeric_comparison_is_false(self):
        assert not self._eval(NotificationField.TYPE, ConditionOperator.GREATER_THAN, 1)

    def test_between_inclusive(self):
        assert self._eval(NotificationField.BRANCH_ID, ConditionOperator.BETWEEN, [12, 15])
        assert self._eval(NotificationField.BRANCH_ID, ConditionOperator.BETWEEN, [1, 12])
        assert not self._eval(NotificationField.BRANCH_ID, ConditionOperator.BETWEEN, [13, 15])

    def test_between_malformed_operand_is_false(self):
        assert not self._eval(NotificationField.BRANCH_ID, ConditionOperator.BETWEEN, 12)
        assert not self._eval(NotificationField.BRANCH_ID, ConditionOperator.BETWEEN, [1, 2, 3])

    def test_between_requires_ordered_pair(self):
        assert self._eval(NotificationField.BRANCH_ID, ConditionOperator.BETWEEN, (10, 20))
        assert not self._eval(NotificationField.BRANCH_ID, ConditionOperator.BETWEEN, {10, 20})
        assert not self._eval(NotificationField.BRANCH_ID, ConditionOperator.BETWEEN, frozenset({2, 20}))

    def test_unhashable_value_against_set_is_false(self):
        n = Notification(type=["system"])
        condition = _cond(NotificationField.TYPE, ConditionOperator.IN, frozenset({"system"}))
        assert evaluate(n, condition) is False

    def test_in_and_not_in(self):
        assert self._eval(NotificationField.SEVERITY, ConditionOperator.IN, ["error", "warning"])
        assert self._eval(NotificationField.SEVERITY, ConditionOperator.NOT_IN, ["info"])

    def test_in_with_non_sequence_is_false(self):
        assert not self._eval(NotificationField.SEVERITY, ConditionOperator.IN, "error")
        assert not self._eval(NotificationField.SEVERITY, ConditionOperator.NOT_IN, "info")

    def test_null_checks(self):
        assert self._eval(NotificationField.USER_NAME, ConditionOperator.IS_NULL)
        assert not self._eval(NotificationField.USER_NAME, ConditionOperator.IS_NOT_NULL)
        assert self._eval(NotificationField.TYPE, ConditionOperator.IS_NOT_NULL)
        assert not self._eval(NotificationField.TYPE, ConditionOperator.IS_NULL)

    def test_absent_field_fails_every_other_operator(self):
        for operator in ConditionOperator:
            if operator == ConditionOperator.IS_NULL:
                continue
            assert not self._eval(NotificationField.USER_NAME, operator, "x"), operator

    def test_regex(self):
        assert self._eval(NotificationField.MESSAGE, ConditionOperator.REGEX, r"\d+ percent")
        assert not self._eval(NotificationField.MESSAGE, ConditionOperator.REGEX, r"^percent")

    def test_invalid_regex_is_false(self):
        assert not self._eval(NotificationField.MESSAGE, ConditionOperator.REGEX, "([unclosed")

    def test_empty_conditions_match(self):
        assert evaluate_conditions(self.n, [])

    def test_implicit_and(self):
        conditions = [
            _cond(NotificationField.TYPE, ConditionOperator.EQUALS, "system"),
            _cond(NotificationField.SEVERITY, ConditionOperator.EQUALS, "info"),
        ]
        assert not evaluate_conditions(self.n, conditions)

    def test_or_joiner_on_later_condition(self):
        conditions = [
            _cond(NotificationField.TYPE, ConditionOperator.EQUALS, "alert"),
            _cond(NotificationField.SEVERITY, ConditionOperator.EQUALS, "error", LogicalJoiner.OR),
        ]
        assert evaluate_conditions(self.n, conditions)

    def test_left_fold_without_precedence(self):
        # (false OR true) AND false
        conditions = [
            _cond(NotificationField.TYPE, ConditionOperator.EQUALS, "alert"),
            _cond(NotificationField.TYPE, ConditionOperator.EQUALS, "system", LogicalJoiner.OR),
            _cond(NotificationField.SEVERITY, ConditionOperator.EQUALS, "info", LogicalJoiner.AND),
        ]
        assert not evaluate_conditions(self.n, conditions)

    def test_first_condition_joiner_ignored(self):
        conditions = [
            _cond(NotificationField.TYPE, ConditionOperator.EQUALS, "system", LogicalJoiner.OR),
        ]
        assert evaluate_conditions(self.n, conditions)


# ── Matching & Catalog Tests ─────────────────────────────────────────


class TestRouteMatching:
    def setup_method(self):
        system = [_cond(NotificationField.TYPE, ConditionOperator.EQUALS, "system")]
        self.routes = [
            Route(id="late", conditions=system, priority=5),
            Route(id="first", conditions=system, priority=1),
            Route(id="tie-a", conditions=system, priority=3),
            Route(id="tie-b", conditions=system, priority=3),
            Route(id="inactive", conditions=system, priority=0, is_active=False),
            Route(id="other", conditions=[
                _cond(NotificationField.TYPE, ConditionOperator.EQUALS, "alert"),
            ]),
        ]

    def test_orders_by_priority_stable(self):
        matched = match_routes(Notification(type="system"), self.routes)
        assert [r.id for r in matched] == ["first", "tie-a", "tie-b", "late"]

    def test_skips_inactive_and_non_matching(self):
        matched = match_routes(Notification(type="alert"), self.routes)
        assert [r.id for r in matched] == ["other"]

    def test_no_match(self):
        assert match_routes(Notification(type="transfer"), self.routes) == []


class TestRouteCatalog:
    def setup_method(self):
        self.catalog = RouteCatalog([Route(id="a", priority=1), Route(id="b", priority=2)])

    def test_add_and_get(self):
        self.catalog.add(Route(id="c"))
        assert len(self.catalog) == 3
        assert self.catalog.get("c").id == "c"

    def test_add_duplicate(self):
        with pytest.raises(DuplicateRouteError):
            self.catalog.add(Route(id="a"))

    def test_update(self):
        updated = self.catalog.update("a", priority=9, id="ignored")
        assert updated.id == "a"
        assert self.catalog.get("a").priority == 9

    def test_update_unknown(self):
        with pytest.raises(RouteNotFoundError):
            self.catalog.update("zzz", priority=1)

    def test_remove(self):
        removed = self.catalog.remove("a")
        assert removed.id == "a"
        assert self.catalog.get("a") is None
        with pytest.raises(RouteNotFoundError):
            self.catalog.remove("a")

    def test_toggle(self):
        assert self.catalog.toggle("b").is_active is False
        assert self.catalog.toggle("b").is_active is True

    def test_snapshot_unaffected_by_update(self):
        snapshot = self.catalog.snapshot()
        self.catalog.update("a", priority=7)
        self.catalog.remove("b")
        assert [r.id for r in snapshot] == ["a", "b"]
        assert snapshot[0].priority == 1


# ── Recipients & Channels Tests ──────────────────────────────────────


class TestRecipientDirectory:
    def setup_method(self):
        self.directory = RecipientDirectory([
            Recipient(
                id="ops",
                type=RecipientType.ROLE,
                identifier="ops",
                contact_methods=[
                    ContactMethod(ContactChannel.SMS, "+100", priority=2),
                    ContactMethod(ContactChannel.EMAIL, "old@ops", is_active=False, priority=0),
                    ContactMethod(ContactChannel.EMAIL, "ops@co", priority=1),
                ],
            )
        ])

    def test_resolve_active_sorted(self):
        contacts = self.directory.resolve("ops")
        assert [c.address for c in contacts] == ["ops@co", "+100"]

    def test_resolve_unknown(self):
        with pytest.raises(RecipientNotFoundError):
            self.directory.resolve("nobody")

    def test_register_replaces(self):
        self.directory.register(Recipient(id="ops", identifier="new"))
        assert self.directory.get("ops").identifier == "new"
        assert self.directory.resolve("ops") == []

    def test_remove(self):
        assert self.directory.remove("ops") is True
        assert self.directory.remove("ops") is False


class TestChannelRegistry:
    def test_defaults_exclude_escalate(self):
        registry = ChannelRegistry.with_defaults()
        assert ActionType.ESCALATE not in registry.registered()
        assert len(registry.registered()) == 6

    def test_default_senders_confirm(self):
        registry = ChannelRegistry.with_defaults({ActionType.PUSH})
        assert registry.get(ActionType.PUSH).send(None, {}).confirmed is True
        assert registry.get(ActionType.EMAIL).send(None, {}).confirmed is False

    def test_sender_protocol(self):
        assert isinstance(LoggingChannelSender(ActionType.SMS), ChannelSender)
        assert isinstance(RecordingSender(), ChannelSender)

    def test_register_unregister(self):
        registry = ChannelRegistry()
        registry.register(ActionType.ESCALATE, RecordingSender())
        assert registry.get(ActionType.ESCALATE) is not None
        assert registry.unregister(ActionType.ESCALATE) is True
        assert registry.get(ActionType.ESCALATE) is None

    def test_send_result_helpers(self):
        assert SendResult.ok().success is True
        failed = SendResult.failed("bounced")
        assert failed.success is False and failed.reason == "bounced"


# ── Clock Tests ──────────────────────────────────────────────────────


class TestVirtualClock:
    def test_advance_fires_in_due_order(self, clock):
        fired = []
        clock.after(timedelta(minutes=10), lambda: fired.append("b"))
        clock.after(timedelta(minutes=5), lambda: fired.append("a"))
        assert clock.advance(timedelta(minutes=4)) == 0
        assert clock.advance(timedelta(minutes=6)) == 2
        assert fired == ["a", "b"]

    def test_chained_callbacks_fire_within_window(self, clock):
        fired = []
        clock.after(timedelta(minutes=1), lambda: clock.after(
            timedelta(minutes=1), lambda: fired.append(clock.now())
        ))
        clock.advance(timedelta(minutes=5))
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert fired == [start + timedelta(minutes=2)]
        assert clock.now() == start + timedelta(minutes=5)

    def test_cancel(self, clock):
        fired = []
        handle = clock.after(timedelta(seconds=1), lambda: fired.append(1))
        assert clock.pending() == 1
        assert clock.cancel(handle) is True
        assert clock.cancel(handle) is False
        clock.advance(timedelta(seconds=2))
        assert fired == []
        assert clock.pending() == 0


class TestSystemClock:
    def test_fires_and_shuts_down(self):
        clock = SystemClock()
        event = threading.Event()
        clock.after(timedelta(milliseconds=10), event.set)
        assert event.wait(timeout=2.0)

        clock.after(timedelta(hours=1), lambda: None)
        assert clock.pending() == 1
        assert clock.shutdown() == 1
        assert clock.pending() == 0


# ── Ledger Tests ─────────────────────────────────────────────────────


class TestDeliveryLedger:
    def setup_method(self):
        self.ledger = DeliveryLedger()
        now = datetime(2024, 1, 1, 12, tzinfo=timezone.utc)
        self.now = now
        self.ledger.extend([
            Delivery("n1", "ops", ActionType.EMAIL, DeliveryStatus.SENT, route_id="r1", last_attempt=now),
            Delivery(
                "n1", "ops", ActionType.PUSH, DeliveryStatus.DELIVERED, route_id="r1",
                last_attempt=now, delivered_at=now + timedelta(seconds=4),
            ),
            Delivery("n2", "mgr", ActionType.SMS, DeliveryStatus.DELIVERED, route_id="r2",
                     last_attempt=now - timedelta(hours=30), delivered_at=now - timedelta(hours=30)),
            Delivery("n2", "mgr", ActionType.SMS, DeliveryStatus.FAILED, route_id="r2",
                     last_attempt=now, failure_reason="no sms contact"),
        ])

    def test_delivery_rate(self):
        assert self.ledger.delivery_rate() == 75.0
        assert delivery_rate([]) == 0.0

    def test_query_filters(self):
        assert len(self.ledger.query(notification_id="n1")) == 2
        assert len(self.ledger.query(recipient_ref="mgr")) == 2
        assert len(self.ledger.query(route_id="r2", status=DeliveryStatus.FAILED)) == 1
        assert self.ledger.query(notification_id="missing") == []

    def test_stats(self):
        stats = self.ledger.stats()
        assert stats["total_deliveries"] == 4
        assert stats["successful_deliveries"] == 3
        assert stats["failed_deliveries"] == 1

    def test_performance_window(self):
        perf = self.ledger.performance(now=self.now, window_hours=24)
        assert perf["deliveries_in_window"] == 3
        assert perf["average_delivery_time"] == pytest.approx(4.0)
        assert perf["failure_rate"] == pytest.approx(100 / 3)
        assert perf["average_attempts"] == 1.0

    def test_concurrent_appends(self):
        ledger = DeliveryLedger()
        threads_count, per_thread = 8, 250

        def worker(n):
            for i in range(per_thread):
                ledger.append(Delivery(f"n{n}-{i}", "ops", ActionType.EMAIL, DeliveryStatus.SENT))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(threads_count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(ledger) == threads_count * per_thread
        assert len({d.id for d in ledger.all()}) == threads_count * per_thread

    def test_get(self):
        first = self.ledger.all()[0]
        assert self.ledger.get(first.id) is first
        assert self.ledger.get("nope") is None


# ── Dispatcher Tests ─────────────────────────────────────────────────


class TestActionDispatcher:
    def setup_method(self):
        self.clock = VirtualClock()
        self.directory = RecipientDirectory(default_recipients())
        self.channels = ChannelRegistry.with_defaults({ActionType.PUSH})
        self.ledger = DeliveryLedger()
        self.dispatcher = ActionDispatcher(
            self.directory, self.channels, self.ledger, self.clock,
            confirming_actions={ActionType.PUSH},
        )
        self.notification = _system_failure()

    def test_dispatch_runs_actions_in_order(self):
        route = Route(id="r1", actions=[
            RouteAction(ActionType.EMAIL),
            RouteAction(ActionType.SMS),
            RouteAction(ActionType.PUSH),
        ])
        deliveries = self.dispatcher.dispatch(self.notification, route)
        assert [d.method for d in deliveries] == [ActionType.EMAIL, ActionType.SMS, ActionType.PUSH]
        assert [d.status for d in deliveries] == [
            DeliveryStatus.SENT, DeliveryStatus.SENT, DeliveryStatus.DELIVERED,
        ]
        assert all(d.recipient_ref == "r1" for d in deliveries)
        assert deliveries[2].delivered_at == self.clock.now()
        assert len(self.ledger) == 3

    def test_failure_isolated_per_action(self):
        self.channels.register(ActionType.SMS, ExplodingSender())
        self.channels.register(ActionType.WEBHOOK, RecordingSender(SendResult.failed("HTTP 503")))
        route = Route(id="r1", actions=[
            RouteAction(ActionType.SMS),
            RouteAction(ActionType.WEBHOOK),
            RouteAction(ActionType.ESCALATE),
            RouteAction(ActionType.EMAIL),
        ])
        deliveries = self.dispatcher.dispatch(self.notification, route)
        assert len(deliveries) == 4
        assert "RuntimeError" in deliveries[0].failure_reason
        assert "HTTP 503" in deliveries[1].failure_reason
        assert deliveries[2].failure_reason == "Unknown action type: escalate"
        assert deliveries[3].status == DeliveryStatus.SENT

    def test_recipient_contact_selection(self):
        sender = RecordingSender()
        self.channels.register(ActionType.EMAIL, sender)
        action = RouteAction(ActionType.EMAIL, {"recipient": "admin-on-duty"})
        delivery = self.dispatcher.execute_action(self.notification, action, "r1")
        assert delivery.recipient_ref == "admin-on-duty"
        assert delivery.status == DeliveryStatus.SENT
        contact, payload = sender.calls[0]
        assert contact.address == "admin@company.com"
        assert payload["config"] == {"recipient": "admin-on-duty"}

    def test_missing_channel_contact_fails(self):
        action = RouteAction(ActionType.SMS, {"recipient": "system-managers"})
        delivery = self.dispatcher.execute_action(self.notification, action, "r1")
        assert delivery.status == DeliveryStatus.FAILED
        assert "sms" in delivery.failure_reason

    def test_unknown_recipient_fails(self):
        action = RouteAction(ActionType.WEBHOOK, {"recipient": "ghost"})
        delivery = self.dispatcher.execute_action(self.notification, action, "r1")
        assert delivery.status == DeliveryStatus.FAILED
        assert delivery.failure_reason == "Unknown recipient: ghost"

    def test_non_channel_action_gets_first_contact(self):
        sender = RecordingSender()
        self.channels.register(ActionType.WEBHOOK, sender)
        action = RouteAction(ActionType.WEBHOOK, {"recipient": "system-managers"})
        self.dispatcher.execute_action(self.notification, action, "r1")
        assert sender.calls[0][0].address == "system-team@company.com"

    def test_sender_confirmation_marks_delivered(self):
        self.channels.register(ActionType.EMAIL, RecordingSender(SendResult.ok(confirmed=True)))
        delivery = self.dispatcher.execute_action(self.notification, RouteAction(ActionType.EMAIL), "r1")
        assert delivery.status == DeliveryStatus.DELIVERED

    def test_delayed_action(self):
        route = Route(id="r1", actions=[
            RouteAction(ActionType.EMAIL),
            RouteAction(ActionType.SMS, delay_ms=5000),
        ])
        deliveries = self.dispatcher.dispatch(self.notification, route)
        assert len(deliveries) == 1
        assert len(self.ledger) == 1

        self.clock.advance(timedelta(seconds=4))
        assert len(self.ledger) == 1
        self.clock.advance(timedelta(seconds=1))
        assert len(self.ledger) == 2
        assert self.ledger.all()[1].method == ActionType.SMS

    def test_build_payload(self):
        payload = build_payload(self.notification, RouteAction(ActionType.EMAIL, {"template": "t"}), "r1", 1)
        assert payload["notification_id"] == self.notification.id
        assert payload["title"] == "Database down"
        assert payload["config"] == {"template": "t"}
        assert payload["escalation_level"] == 1


# ── Escalation Tests ─────────────────────────────────────────────────


def _two_level_route(level_timeouts=(5, 15), policy_timeout=None):
    return Route(
        id="esc",
        actions=[RouteAction(ActionType.EMAIL)],
        escalation=EscalationPolicy(
            levels=[
                EscalationLevel(["admin-on-duty"], [RouteAction(ActionType.EMAIL)], level_timeouts[0]),
                EscalationLevel(
                    ["system-managers", "admin-on-duty"],
                    [RouteAction(ActionType.EMAIL)],
                    level_timeouts[1],
                ),
            ],
            timeout_minutes=policy_timeout,
            max_level=2,
        ),
    )


class TestEscalationCoordinator:
    def setup_method(self):
        self._build(VirtualClock())

    def _build(self, clock):
        self.clock = clock
        self.ledger = DeliveryLedger()
        self.dispatcher = ActionDispatcher(
            RecipientDirectory(default_recipients()),
            ChannelRegistry.with_defaults(),
            self.ledger,
            self.clock,
        )
        self.coordinator = EscalationCoordinator(self.dispatcher, self.clock)
        self.dispatcher.escalations = self.coordinator
        self.notification = _system_failure()

    def _escalation_deliveries(self):
        return [d for d in self.ledger.all() if d.escalation_id is not None]

    def test_start_schedules_without_running_level_zero(self):
        instance = self.coordinator.start(self.notification, _two_level_route())
        assert instance.current_level == 0
        assert instance.started_at == self.clock.now()
        assert self.clock.pending() == 1
        assert self._escalation_deliveries() == []

    def test_advance_after_timeout(self):
        route = _two_level_route()
        instance = self.coordinator.start(self.notification, route)

        self.clock.advance(timedelta(minutes=4, seconds=59))
        assert self.coordinator.get(instance.id).current_level == 0

        self.clock.advance(timedelta(seconds=1))
        current = self.coordinator.get(instance.id)
        assert current.current_level == 1
        assert current.last_escalated_at == self.clock.now()

        deliveries = self._escalation_deliveries()
        assert [d.recipient_ref for d in deliveries] == ["system-managers", "admin-on-duty"]
        assert all(d.escalation_level == 1 and d.route_id == "esc" for d in deliveries)

    def test_exhaustion_leaves_no_timer(self):
        instance = self.coordinator.start(self.notification, _two_level_route())
        self.clock.advance(timedelta(minutes=5))
        self.clock.advance(timedelta(minutes=15))
        current = self.coordinator.get(instance.id)
        assert current.is_exhausted is True
        assert current.current_level == 1
        assert current.is_resolved is False
        assert self.clock.pending() == 0
        assert len(self._escalation_deliveries()) == 2

    def test_resolve_before_timeout(self):
        instance = self.coordinator.start(self.notification, _two_level_route())
        resolved = self.coordinator.resolve(instance.id, "admin")
        assert resolved.is_resolved is True
        assert resolved.resolved_by == "admin"
        assert resolved.resolved_at == self.clock.now()
        assert self.clock.pending() == 0

        self.clock.advance(timedelta(hours=1))
        assert self.coordinator.get(instance.id).current_level == 0
        assert self._escalation_deliveries() == []

    def test_resolve_when_cancel_fails(self):
        self._build(NoCancelClock())
        instance = self.coordinator.start(self.notification, _two_level_route())
        self.coordinator.resolve(instance.id, "admin")

        assert self.clock.advance(timedelta(minutes=5)) == 1
        assert self.coordinator.get(instance.id).current_level == 0
        assert self._escalation_deliveries() == []

    def test_resolve_racing_timeout(self):
        route = _two_level_route()
        for _ in range(20):
            self._build(VirtualClock())
            instance = self.coordinator.start(self.notification, route)
            barrier = threading.Barrier(2)

            def fire():
                barrier.wait()
                self.clock.advance(timedelta(minutes=5))

            worker = threading.Thread(target=fire)
            worker.start()
            barrier.wait()
            self.coordinator.resolve(instance.id, "racer")
            worker.join(timeout=5)

            final = self.coordinator.get(instance.id)
            assert final.is_resolved is True
            # Either the advance completed before resolve or it never ran
            assert len(self._escalation_deliveries()) in (0, 2)
            assert final.current_level in (0, 1)
            assert self.clock.pending() == 0

    def test_resolve_is_idempotent(self):
        instance = self.coordinator.start(self.notification, _two_level_route())
        self.coordinator.resolve(instance.id, "first")
        again = self.coordinator.resolve(instance.id, "second")
        assert again.resolved_by == "first"

    def test_resolve_unknown(self):
        with pytest.raises(EscalationNotFoundError):
            self.coordinator.resolve("missing", "admin")

    def test_start_is_idempotent_per_pair(self):
        route = _two_level_route()
        first = self.coordinator.start(self.notification, route)
        second = self.coordinator.start(self.notification, route)
        assert first.id == second.id
        assert len(self.coordinator.instances()) == 1
        assert self.clock.pending() == 1

    def test_restart_after_resolve(self):
        route = _two_level_route()
        first = self.coordinator.start(self.notification, route)
        self.coordinator.resolve(first.id, "admin")
        second = self.coordinator.start(self.notification, route)
        assert second.id != first.id
        assert self.coordinator.find(self.notification.id, "esc").id == second.id

    def test_policy_timeout_fallback(self):
        instance = self.coordinator.start(
            self.notification, _two_level_route(level_timeouts=(None, None), policy_timeout=30)
        )
        self.clock.advance(timedelta(minutes=29))
        assert self.coordinator.get(instance.id).current_level == 0
        self.clock.advance(timedelta(minutes=1))
        assert self.coordinator.get(instance.id).current_level == 1

    def test_missing_timeout_halts(self):
        instance = self.coordinator.start(
            self.notification, _two_level_route(level_timeouts=(None, None))
        )
        current = self.coordinator.get(instance.id)
        assert current.halted_reason is not None
        assert current.is_resolved is False
        assert self.clock.pending() == 0

    def test_non_positive_timeout_halts_at_next_level(self):
        instance = self.coordinator.start(
            self.notification, _two_level_route(level_timeouts=(5, 0))
        )
        self.clock.advance(timedelta(minutes=5))
        current = self.coordinator.get(instance.id)
        assert current.current_level == 1
        assert "positive" in current.halted_reason
        assert self.clock.pending() == 0

    def test_route_without_levels(self):
        route = Route(id="empty", escalation=EscalationPolicy(levels=[]))
        assert self.coordinator.start(self.notification, route) is None
        assert self.coordinator.instances() == []

    def test_delayed_level_action_skipped_after_resolve(self):
        route = Route(
            id="delayed",
            escalation=EscalationPolicy(levels=[
                EscalationLevel([], [], 1),
                EscalationLevel([], [RouteAction(ActionType.EMAIL, delay_ms=60_000)], 10),
            ]),
        )
        instance = self.coordinator.start(self.notification, route)
        self.clock.advance(timedelta(minutes=1))
        self.coordinator.resolve(instance.id, "admin")
        self.clock.advance(timedelta(minutes=2))
        assert self._escalation_deliveries() == []

    def test_level_without_recipients_addresses_route(self):
        route = Route(
            id="norcpt",
            escalation=EscalationPolicy(levels=[
                EscalationLevel([], [], 1),
                EscalationLevel([], [RouteAction(ActionType.PUSH)], 1),
            ]),
        )
        self.coordinator.start(self.notification, route)
        self.clock.advance(timedelta(minutes=1))
        deliveries = self._escalation_deliveries()
        assert len(deliveries) == 1
        assert deliveries[0].recipient_ref == "norcpt"

    def test_shutdown_cancels_timers(self):
        self.coordinator.start(self.notification, _two_level_route())
        assert self.coordinator.shutdown() == 1
        assert self.clock.pending() == 0


# ── Engine Tests ─────────────────────────────────────────────────────


class TestDefaults:
    def test_default_routes(self):
        routes = {r.id: r for r in default_routes()}
        assert set(routes) == {"critical-system-failures", "transfer-approvals", "high-volume-alerts"}
        assert len(routes["critical-system-failures"].escalation.levels) == 2
        assert routes["high-volume-alerts"].escalation is None

    def test_default_recipients_cover_policies(self):
        ids = {r.id for r in default_recipients()}
        for route in default_routes():
            if route.escalation:
                for level in route.escalation.levels:
                    assert set(level.recipients) <= ids


class TestNotificationRoutingEngine:
    def test_critical_failure_flow(self, engine, clock):
        deliveries = engine.process_notification(_system_failure())
        assert [d.method for d in deliveries] == [ActionType.EMAIL, ActionType.SMS, ActionType.PUSH]
        assert [d.status for d in deliveries] == [
            DeliveryStatus.SENT, DeliveryStatus.SENT, DeliveryStatus.DELIVERED,
        ]

        active = engine.active_escalations()
        assert len(active) == 1
        assert active[0].route_id == "critical-system-failures"

        clock.advance(timedelta(minutes=5))
        level_one = [d for d in engine.ledger.all() if d.escalation_level == 1]
        # system-managers has email but no sms contact
        assert [(d.method, d.status) for d in level_one] == [
            (ActionType.EMAIL, DeliveryStatus.SENT),
            (ActionType.SMS, DeliveryStatus.FAILED),
        ]

        engine.resolve_escalation(active[0].id, "admin")
        assert engine.active_escalations() == []
        assert clock.pending() == 0

    def test_transfer_approval_single_level(self, engine, clock):
        deliveries = engine.process_notification(
            Notification(type="transfer", action_required=True, title="Approve transfer")
        )
        assert [d.method for d in deliveries] == [ActionType.EMAIL, ActionType.PUSH]
        clock.advance(timedelta(minutes=30))
        instance = engine.get_escalations()[0]
        assert instance.is_exhausted is True
        assert clock.pending() == 0

    def test_high_volume_alert(self, engine):
        deliveries = engine.process_notification(
            Notification(type="alert", message="high transaction volume at branch 3")
        )
        assert [d.method for d in deliveries] == [ActionType.EMAIL, ActionType.WEBHOOK]
        assert engine.get_escalations() == []

    def test_unmatched_notification(self, engine):
        assert engine.process_notification(Notification(type="info")) == []
        assert len(engine.ledger) == 0

    def test_route_failure_isolated(self, engine, monkeypatch):
        engine.add_route(Route(id="catch-all", priority=0, actions=[RouteAction(ActionType.EMAIL)]))
        original = engine._dispatcher.dispatch

        def flaky(notification, route):
            if route.id == "catch-all":
                raise RuntimeError("boom")
            return original(notification, route)

        monkeypatch.setattr(engine._dispatcher, "dispatch", flaky)
        deliveries = engine.process_notification(_system_failure())
        assert len(deliveries) == 3

    def test_condition_error_does_not_stop_other_routes(self, engine):
        engine.add_route(Route(
            id="typed",
            conditions=[_cond(NotificationField.TYPE, ConditionOperator.IN, frozenset({"x"}))],
            actions=[RouteAction(ActionType.PUSH)],
        ))
        engine.add_route(Route(id="catch-all", actions=[RouteAction(ActionType.EMAIL)]))
        deliveries = engine.process_notification(Notification(type=["x"]))
        assert [d.route_id for d in deliveries] == ["catch-all"]

    def test_concurrent_processing(self, engine):
        threads_count, per_thread = 8, 25
        errors = []

        def worker():
            try:
                for _ in range(per_thread):
                    engine.process_notification(_system_failure())
            except Exception as exc:
                errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(threads_count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        events = threads_count * per_thread
        assert errors == []
        assert len(engine.ledger) == events * 3
        active = engine.active_escalations()
        assert len(active) == events
        assert len({(e.notification_id, e.route_id) for e in active}) == events

    def test_escalation_disabled(self, clock):
        engine = NotificationRoutingEngine(
            config=RoutingConfig(enable_escalation=False), clock=clock
        )
        engine.process_notification(_system_failure())
        assert engine.get_escalations() == []
        assert clock.pending() == 0

    def test_no_defaults(self, clock):
        engine = NotificationRoutingEngine(
            config=RoutingConfig(load_default_routes=False, load_default_recipients=False),
            clock=clock,
        )
        assert engine.get_routes() == []
        assert engine.get_recipients() == []

    def test_route_management(self, engine):
        engine.add_route(Route(id="custom", priority=4))
        with pytest.raises(DuplicateRouteError):
            engine.add_route(Route(id="custom"))
        assert engine.update_route("custom", name="Custom").name == "Custom"
        assert engine.toggle_route("custom").is_active is False
        engine.delete_route("custom")
        assert engine.get_route("custom") is None
        with pytest.raises(RouteNotFoundError):
            engine.toggle_route("custom")

    def test_inactive_route_not_matched(self, engine):
        engine.toggle_route("critical-system-failures")
        assert engine.process_notification(_system_failure()) == []

    def test_add_recipient(self, engine):
        engine.add_recipient(Recipient(id="night-shift"))
        assert "night-shift" in {r.id for r in engine.get_recipients()}

    def test_routing_stats(self, engine):
        engine.process_notification(_system_failure())
        stats = engine.routing_stats()
        assert stats["total_routes"] == 3
        assert stats["active_routes"] == 3
        assert stats["total_deliveries"] == 3
        assert stats["successful_deliveries"] == 3
        assert stats["failed_deliveries"] == 0
        assert stats["delivery_rate"] == 100.0
        assert stats["active_escalations"] == 1

    def test_performance_metrics(self, engine, clock):
        engine.process_notification(_system_failure())
        perf = engine.performance_metrics()
        assert perf["deliveries_in_window"] == 3
        assert perf["failure_rate"] == 0.0

        later = clock.now() + timedelta(hours=25)
        assert engine.performance_metrics(now=later)["deliveries_in_window"] == 0

    def test_route_performance(self, engine, clock):
        engine.process_notification(_system_failure())
        clock.advance(timedelta(minutes=5))
        report = engine.route_performance("critical-system-failures")
        assert report["deliveries"] == 5
        assert report["success_rate"] == 80.0
        assert report["last_used"] is not None

        with pytest.raises(RouteNotFoundError):
            engine.route_performance("missing")

    def test_export_routing_data(self, engine):
        engine.process_notification(_system_failure())
        data = engine.export_routing_data()
        assert len(data["routes"]) == 3
        assert len(data["deliveries"]) == 3
        assert len(data["escalations"]) == 1
        assert len(data["recipients"]) == 3
        assert data["stats"]["total_deliveries"] == 3
        assert "exported_at" in data

    def test_shutdown_cancels_everything(self, engine, clock):
        engine.add_route(Route(
            id="delayed", priority=9,
            conditions=[_cond(NotificationField.TYPE, ConditionOperator.EQUALS, "system")],
            actions=[RouteAction(ActionType.EMAIL, delay_ms=60_000)],
        ))
        engine.process_notification(_system_failure())
        assert clock.pending() == 2
        engine.shutdown()
        assert clock.pending() == 0
        clock.advance(timedelta(hours=1))
        assert len(engine.ledger) == 3
