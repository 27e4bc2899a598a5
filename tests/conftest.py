"""
Pytest configuration and fixtures for the automation engine tests
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

import pytest

from firmsync.automation.rules.actions import ActionExecutor
from firmsync.automation.rules.dispatcher import TriggerDispatcher
from firmsync.automation.rules.engine import RuleEngine
from firmsync.automation.rules.repositories import InMemoryActionLogStorage, InMemoryTenantGateway
from firmsync.automation.rules.scheduler import DelayedActionScheduler
from firmsync.automation.rules_loader import parse_rule
from firmsync.services.transports import NotifyTransport, WebhookTransport


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self._now = start
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def advance(self, **kwargs) -> None:
        with self._lock:
            self._now = self._now + timedelta(**kwargs)


class EventLog:
    """Общий упорядоченный журнал вызовов транспортов (для проверок порядка)."""

    def __init__(self) -> None:
        self.items: List[tuple] = []
        self._lock = threading.Lock()

    def add(self, *item) -> None:
        with self._lock:
            self.items.append(item)


class RecordingNotify(NotifyTransport):
    def __init__(self, channel: str, events: EventLog) -> None:
        self.channel = channel
        self.events = events
        self.calls: List[Dict[str, Any]] = []
        self.fail_targets: set = set()

    def send(self, tenant_id: str, target: str, payload: Dict[str, Any]) -> None:
        if target in self.fail_targets:
            raise ConnectionError(f"{self.channel} provider unavailable")
        self.calls.append({"tenant_id": tenant_id, "target": target, "payload": payload})
        self.events.add(self.channel, tenant_id, target, payload)


class RecordingWebhook(WebhookTransport):
    def __init__(self, events: EventLog) -> None:
        self.events = events
        self.calls: List[Dict[str, Any]] = []
        self.status_code = 200

    def post(self, url: str, body: Dict[str, Any], headers: Dict[str, str]) -> int:
        self.calls.append({"url": url, "body": body, "headers": headers})
        self.events.add("webhook", headers.get("X-Tenant-ID"), url, body)
        return self.status_code


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def events():
    return EventLog()


@pytest.fixture
def gateway():
    return InMemoryTenantGateway()


@pytest.fixture
def journal():
    return InMemoryActionLogStorage(max_entries=100)


@pytest.fixture
def email(events):
    return RecordingNotify("email", events)


@pytest.fixture
def sms(events):
    return RecordingNotify("sms", events)


@pytest.fixture
def webhook(events):
    return RecordingWebhook(events)


@pytest.fixture
def executor(gateway, email, sms, webhook, journal, clock):
    ex = ActionExecutor(
        gateway=gateway,
        email=email,
        sms=sms,
        webhook=webhook,
        write_action_log=journal.append,
        now_func=clock.now,
    )
    yield ex
    ex.shutdown()


@pytest.fixture
def scheduler(gateway, executor, clock):
    # поток не запускаем: тесты двигают часы и зовут run_due() сами
    return DelayedActionScheduler(gateway=gateway, executor=executor, now_func=clock.now)


@pytest.fixture
def engine(gateway, executor, scheduler):
    return RuleEngine(gateway=gateway, actions=executor, scheduler=scheduler)


@pytest.fixture
def dispatcher(engine):
    d = TriggerDispatcher(engine)
    yield d
    d.stop(drain=False)


@pytest.fixture
def make_rule(gateway):
    """Собрать правило из dict (как в YAML) и сразу положить в шлюз."""
    def _make(tenant_id: str = "firm-a", save: bool = True, **fields) -> Any:
        data = {
            "id": "rule-1",
            "name": "Test rule",
            "trigger_type": "client_added",
            "conditions": [],
            "actions": [],
        }
        data.update(fields)
        rule = parse_rule(data, tenant_id=tenant_id)
        if save:
            gateway.save_rule(rule)
        return rule

    return _make
