"""Unit tests for SqlTenantGateway on in-memory SQLite."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from firmsync.automation.rules.errors import FieldUpdateRejected, RuleLoadError
from firmsync.automation.rules.types import ExecutionStatus, ScheduledAction, ScheduledActionStatus
from firmsync.automation.rules_loader import parse_action, parse_rule
from firmsync.db.gateway import SqlTenantGateway
from firmsync.db.models import ActivityLogRow, AutomationRuleRow, Base, ClientRow, ScheduledActionRow, TaskRow


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
    engine.dispose()


@pytest.fixture
def sql_gateway(session_factory):
    return SqlTenantGateway(session_factory)


def _rule(rule_id="r1", tenant_id="firm-a", **fields):
    data = {
        "id": rule_id,
        "trigger_type": "client_added",
        "conditions": [{"field": "client.status", "operator": "equals", "value": "vip"}],
        "actions": [{"type": "send_email", "target": "a@firm.com", "payload": {"subject": "Hi"}}],
    }
    data.update(fields)
    return parse_rule(data, tenant_id=tenant_id)


def test_rules_round_trip_and_tenant_scoping(sql_gateway):
    sql_gateway.save_rule(_rule("r1"))
    sql_gateway.save_rule(_rule("r2", tenant_id="firm-b"))

    (loaded,) = sql_gateway.load_active_rules("firm-a", "client_added")
    assert loaded.id == "r1"
    assert loaded.tenant_id == "firm-a"
    assert loaded.conditions[0].value == "vip"
    assert loaded.actions[0].payload == {"subject": "Hi"}
    assert loaded.created_at.tzinfo is not None


def test_load_active_rules_filters_and_orders(sql_gateway):
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    sql_gateway.save_rule(_rule("old", created_at=base.isoformat()))
    sql_gateway.save_rule(_rule("new", created_at=(base + timedelta(days=1)).isoformat()))
    sql_gateway.save_rule(_rule("top", priority=9, created_at=base.isoformat()))
    sql_gateway.save_rule(_rule("off", is_active=False))
    sql_gateway.save_rule(_rule("case", trigger_type="case_created"))

    ids = [r.id for r in sql_gateway.load_active_rules("firm-a", "client_added")]

    assert ids == ["top", "new", "old"]
    assert len(sql_gateway.list_rules("firm-a")) == 5


def test_save_rule_updates_in_place_and_keeps_created_at(sql_gateway):
    rule = _rule("r1")
    sql_gateway.save_rule(rule)
    created = rule.created_at

    rule.name = "Renamed"
    rule.created_at = None
    sql_gateway.save_rule(rule)

    (again,) = sql_gateway.list_rules("firm-a")
    assert again.name == "Renamed"
    assert again.created_at == created


def test_delete_rule(sql_gateway):
    sql_gateway.save_rule(_rule("r1"))
    assert sql_gateway.delete_rule("firm-b", "r1") is False
    assert sql_gateway.delete_rule("firm-a", "r1") is True
    assert sql_gateway.list_rules("firm-a") == []


def test_corrupt_rule_row_raises_rule_load_error(sql_gateway, session_factory):
    with session_factory() as db:
        db.add(
            AutomationRuleRow(
                tenant_id="firm-a",
                id="broken",
                name="broken",
                trigger_type="client_added",
                conditions="[]",
                actions='[{"type": "teleport", "target": "x"}]',
                is_active=True,
                priority=0,
                created_at=datetime.now(timezone.utc),
            )
        )
        db.commit()

    with pytest.raises(RuleLoadError):
        sql_gateway.load_active_rules("firm-a", "client_added")


def test_create_task_and_activity_log(sql_gateway, session_factory):
    due = datetime(2024, 3, 2, 9, 0, tzinfo=timezone.utc)
    task_id = sql_gateway.create_task("firm-a", "Call client", "desc", "paralegal-1", due)
    sql_gateway.append_activity_log("firm-a", "client", "c-1", "automated_action", "done")

    with session_factory() as db:
        task = db.get(TaskRow, task_id)
        assert task.tenant_id == "firm-a"
        assert task.assigned_to == "paralegal-1"
        assert task.status == "pending"
        (log_row,) = db.query(ActivityLogRow).all()
        assert log_row.entity_id == "c-1"


def test_update_field_is_tenant_scoped(sql_gateway, session_factory):
    with session_factory() as db:
        db.add(ClientRow(id="c-1", tenant_id="firm-a", name="Acme", status="new"))
        db.add(ClientRow(id="c-2", tenant_id="firm-b", name="Other", status="new"))
        db.commit()

    sql_gateway.update_field("firm-a", "clients", "c-1", "status", "active")
    with pytest.raises(FieldUpdateRejected):
        sql_gateway.update_field("firm-a", "clients", "c-2", "status", "active")

    with session_factory() as db:
        assert db.get(ClientRow, "c-1").status == "active"
        assert db.get(ClientRow, "c-2").status == "new"


@pytest.mark.parametrize(
    "table, field",
    [("ittt_rules", "name"), ("clients", "tenant_id"), ("clients", "id"), ("clients", "no_such_column")],
)
def test_update_field_rejections(sql_gateway, session_factory, table, field):
    with session_factory() as db:
        db.add(ClientRow(id="c-1", tenant_id="firm-a", name="Acme"))
        db.commit()

    with pytest.raises(FieldUpdateRejected):
        sql_gateway.update_field("firm-a", table, "c-1", field, "x")


def test_update_field_parses_datetime_strings(sql_gateway, session_factory):
    sql_gateway.create_task("firm-a", "t", None, "p", datetime.now(timezone.utc))
    with session_factory() as db:
        task_id = db.query(TaskRow).one().id

    sql_gateway.update_field("firm-a", "tasks", task_id, "due_date", "2024-05-01T12:00:00Z")

    with session_factory() as db:
        assert db.get(TaskRow, task_id).due_date.replace(tzinfo=None) == datetime(2024, 5, 1, 12, 0)


def test_execution_records_newest_first(sql_gateway):
    sql_gateway.append_execution_record("firm-a", "r1", "client_added", {"n": 1})
    sql_gateway.append_execution_record("firm-a", "r2", "client_added", {"n": 2}, ExecutionStatus.PARTIAL_FAILURE)
    sql_gateway.append_execution_record("firm-b", "r1", "client_added", {"n": 3})

    recs = sql_gateway.list_execution_records("firm-a")
    assert [r.context_snapshot["n"] for r in recs] == [2, 1]
    assert recs[0].status == ExecutionStatus.PARTIAL_FAILURE
    assert [r.rule_id for r in sql_gateway.list_execution_records("firm-a", rule_id="r1")] == ["r1"]


def test_scheduled_actions_survive_reload(sql_gateway, session_factory):
    due = datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)
    item = ScheduledAction(
        tenant_id="firm-a",
        rule_id="r1",
        rule_name="Rule",
        action_index=1,
        action=parse_action({"type": "update_field", "target": "clients.c-1.status",
                             "delay_minutes": 30, "payload": {"value": "stale"}}),
        context={"client": {"id": "c-1"}},
        due_at=due,
    )
    action_id = sql_gateway.save_scheduled_action(item)

    # «новый процесс» — новый шлюз на той же БД
    (pending,) = SqlTenantGateway(session_factory).list_pending_scheduled_actions()
    assert pending.id == action_id
    assert pending.due_at == due
    assert pending.action.field_update.field == "status"
    assert pending.context == {"client": {"id": "c-1"}}

    sql_gateway.mark_scheduled_action(action_id, ScheduledActionStatus.DONE)
    assert sql_gateway.list_pending_scheduled_actions() == []


def test_unreadable_scheduled_action_is_marked_failed(sql_gateway, session_factory):
    with session_factory() as db:
        db.add(
            ScheduledActionRow(
                id="bad",
                tenant_id="firm-a",
                rule_id="r1",
                rule_name="r1",
                action_index=0,
                action='{"type": "teleport"}',
                context="{}",
                due_at=datetime.now(timezone.utc),
                status="pending",
            )
        )
        db.commit()

    assert sql_gateway.list_pending_scheduled_actions() == []
    with session_factory() as db:
        row = db.get(ScheduledActionRow, "bad")
        assert row.status == "failed"
        assert row.error
