# firmsync/db/gateway.py
"""
SqlTenantGateway — шлюз данных тенанта поверх SQLAlchemy.

Каждый запрос фильтруется по tenant_id; update_field трогает только
строки вызывающего тенанта в разрешённых таблицах.
"""
from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import DateTime
from sqlalchemy.orm import sessionmaker

from firmsync.automation.rules.errors import FieldUpdateRejected, RuleLoadError
from firmsync.automation.rules.repositories import PROTECTED_FIELDS, UPDATABLE_TABLES
from firmsync.automation.rules.storage import TenantDataGateway
from firmsync.automation.rules.types import (
    ExecutionRecord,
    ExecutionStatus,
    Rule,
    ScheduledAction,
    ScheduledActionStatus,
)
from firmsync.automation.rules_loader import (
    action_to_dict,
    condition_to_dict,
    parse_action,
    parse_datetime,
    parse_rule,
)
from firmsync.db.models import (
    ActivityLogRow,
    AutomationRuleRow,
    CaseRow,
    ClientRow,
    ExecutionRecordRow,
    ScheduledActionRow,
    TaskRow,
)

log = logging.getLogger("automation")

_TABLE_MODELS = {
    "clients": ClientRow,
    "cases": CaseRow,
    "tasks": TaskRow,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(ts: Optional[datetime]) -> Optional[datetime]:
    # sqlite отдаёт naive; считаем его UTC
    if ts is not None and ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def _dumps(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, default=str)


class SqlTenantGateway(TenantDataGateway):
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    # ------------------------------------------------------------------ #
    # ПРАВИЛА
    # ------------------------------------------------------------------ #
    def load_active_rules(self, tenant_id: str, trigger_type: str) -> List[Rule]:
        with self._session_factory() as db:
            rows = (
                db.query(AutomationRuleRow)
                .filter(
                    AutomationRuleRow.tenant_id == tenant_id,
                    AutomationRuleRow.trigger_type == trigger_type,
                    AutomationRuleRow.is_active.is_(True),
                )
                .order_by(
                    AutomationRuleRow.priority.desc(),
                    AutomationRuleRow.created_at.desc(),
                    AutomationRuleRow.id.asc(),
                )
                .all()
            )

        out: List[Rule] = []
        for row in rows:
            try:
                out.append(self._row_to_rule(row))
            except (ValueError, TypeError) as e:
                raise RuleLoadError(tenant_id, trigger_type, f"rule {row.id}: {e}") from e
        return out

    def save_rule(self, rule: Rule) -> None:
        now = _utcnow()
        with self._session_factory() as db:
            row = db.get(AutomationRuleRow, (rule.tenant_id, rule.id))
            if row is None:
                row = AutomationRuleRow(tenant_id=rule.tenant_id, id=rule.id)
                db.add(row)
                row.created_at = rule.created_at or now
            else:
                row.created_at = rule.created_at or row.created_at or now
                row.updated_at = now

            row.name = rule.name
            row.description = rule.description
            row.trigger_type = rule.trigger_type
            row.conditions = _dumps([condition_to_dict(c) for c in rule.conditions])
            row.actions = _dumps([action_to_dict(a) for a in rule.actions])
            row.is_active = bool(rule.is_active)
            row.priority = int(rule.priority)
            db.commit()

            rule.created_at = _as_utc(row.created_at)

    def list_rules(self, tenant_id: str) -> List[Rule]:
        with self._session_factory() as db:
            rows = (
                db.query(AutomationRuleRow)
                .filter(AutomationRuleRow.tenant_id == tenant_id)
                .order_by(
                    AutomationRuleRow.priority.desc(),
                    AutomationRuleRow.created_at.desc(),
                    AutomationRuleRow.id.asc(),
                )
                .all()
            )
        return [self._row_to_rule(r) for r in rows]

    def delete_rule(self, tenant_id: str, rule_id: str) -> bool:
        with self._session_factory() as db:
            n = (
                db.query(AutomationRuleRow)
                .filter(AutomationRuleRow.tenant_id == tenant_id, AutomationRuleRow.id == rule_id)
                .delete(synchronize_session=False)
            )
            db.commit()
        return n > 0

    @staticmethod
    def _row_to_rule(row: AutomationRuleRow) -> Rule:
        return parse_rule(
            {
                "id": row.id,
                "tenant_id": row.tenant_id,
                "name": row.name,
                "description": row.description,
                "trigger_type": row.trigger_type,
                "is_active": bool(row.is_active),
                "priority": row.priority or 0,
                "created_at": _as_utc(row.created_at),
                "conditions": json.loads(row.conditions or "[]"),
                "actions": json.loads(row.actions or "[]"),
            }
        )

    # ------------------------------------------------------------------ #
    # ДАННЫЕ ПРАКТИКИ
    # ------------------------------------------------------------------ #
    def create_task(
        self,
        tenant_id: str,
        title: str,
        description: Optional[str],
        assignee: str,
        due_date: datetime,
    ) -> str:
        task_id = str(uuid.uuid4())
        with self._session_factory() as db:
            db.add(
                TaskRow(
                    id=task_id,
                    tenant_id=tenant_id,
                    title=title,
                    description=description,
                    assigned_to=assignee,
                    due_date=due_date,
                    status="pending",
                    created_at=_utcnow(),
                )
            )
            db.commit()
        return task_id

    def update_field(self, tenant_id: str, table: str, record_id: str, field: str, value: Any) -> None:
        if table not in UPDATABLE_TABLES:
            raise FieldUpdateRejected(f"table '{table}' is not updatable")
        if field in PROTECTED_FIELDS:
            raise FieldUpdateRejected(f"field '{field}' is protected")

        model = _TABLE_MODELS[table]
        column = model.__table__.columns.get(field)
        if column is None:
            raise FieldUpdateRejected(f"{table} has no field '{field}'")

        if isinstance(column.type, DateTime) and isinstance(value, str):
            try:
                value = parse_datetime(value)
            except ValueError:
                raise FieldUpdateRejected(f"{table}.{field}: bad datetime {value!r}")

        with self._session_factory() as db:
            row = (
                db.query(model)
                .filter(model.tenant_id == tenant_id, model.id == str(record_id))
                .one_or_none()
            )
            if row is None:
                raise FieldUpdateRejected(f"{table} record '{record_id}' not found for tenant {tenant_id}")
            setattr(row, field, value)
            row.updated_at = _utcnow()
            db.commit()

    def append_activity_log(
        self,
        tenant_id: str,
        entity_type: str,
        entity_id: str,
        activity_type: str,
        description: str,
    ) -> None:
        with self._session_factory() as db:
            db.add(
                ActivityLogRow(
                    tenant_id=tenant_id,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    activity_type=activity_type,
                    description=description,
                    created_at=_utcnow(),
                )
            )
            db.commit()

    # ------------------------------------------------------------------ #
    # АУДИТ
    # ------------------------------------------------------------------ #
    def append_execution_record(
        self,
        tenant_id: str,
        rule_id: str,
        trigger_type: str,
        context_snapshot: Dict[str, Any],
        status: ExecutionStatus = ExecutionStatus.SUCCESS,
    ) -> None:
        with self._session_factory() as db:
            db.add(
                ExecutionRecordRow(
                    tenant_id=tenant_id,
                    rule_id=rule_id,
                    trigger_type=trigger_type,
                    context_snapshot=_dumps(context_snapshot),
                    execution_status=status.value,
                    executed_at=_utcnow(),
                )
            )
            db.commit()

    def list_execution_records(
        self,
        tenant_id: str,
        limit: int = 100,
        rule_id: Optional[str] = None,
    ) -> List[ExecutionRecord]:
        with self._session_factory() as db:
            q = db.query(ExecutionRecordRow).filter(ExecutionRecordRow.tenant_id == tenant_id)
            if rule_id:
                q = q.filter(ExecutionRecordRow.rule_id == rule_id)
            rows = q.order_by(ExecutionRecordRow.id.desc()).limit(limit).all()

        return [
            ExecutionRecord(
                tenant_id=r.tenant_id,
                rule_id=r.rule_id,
                trigger_type=r.trigger_type,
                context_snapshot=json.loads(r.context_snapshot or "{}"),
                executed_at=_as_utc(r.executed_at),
                status=ExecutionStatus(r.execution_status or "success"),
            )
            for r in rows
        ]

    # ------------------------------------------------------------------ #
    # ОТЛОЖЕННЫЕ ДЕЙСТВИЯ
    # ------------------------------------------------------------------ #
    def save_scheduled_action(self, item: ScheduledAction) -> str:
        item.id = item.id or str(uuid.uuid4())
        item.status = ScheduledActionStatus.PENDING
        with self._session_factory() as db:
            db.add(
                ScheduledActionRow(
                    id=item.id,
                    tenant_id=item.tenant_id,
                    rule_id=item.rule_id,
                    rule_name=item.rule_name,
                    action_index=item.action_index,
                    action=_dumps(action_to_dict(item.action)),
                    context=_dumps(item.context),
                    due_at=item.due_at,
                    status=item.status.value,
                    created_at=_utcnow(),
                )
            )
            db.commit()
        return item.id

    def list_pending_scheduled_actions(self) -> List[ScheduledAction]:
        with self._session_factory() as db:
            rows = (
                db.query(ScheduledActionRow)
                .filter(ScheduledActionRow.status == ScheduledActionStatus.PENDING.value)
                .order_by(ScheduledActionRow.due_at.asc())
                .all()
            )

        out: List[ScheduledAction] = []
        for r in rows:
            try:
                action = parse_action(json.loads(r.action or "{}"))
                context = json.loads(r.context or "{}")
            except (ValueError, TypeError) as e:
                log.error("scheduled action %s is unreadable, marking failed: %s", r.id, e)
                self.mark_scheduled_action(r.id, ScheduledActionStatus.FAILED, f"unreadable: {e}")
                continue
            out.append(
                ScheduledAction(
                    id=r.id,
                    tenant_id=r.tenant_id,
                    rule_id=r.rule_id,
                    rule_name=r.rule_name or r.rule_id,
                    action_index=r.action_index or 0,
                    action=action,
                    context=context,
                    due_at=_as_utc(r.due_at),
                    status=ScheduledActionStatus.PENDING,
                )
            )
        return out

    def mark_scheduled_action(
        self,
        action_id: str,
        status: ScheduledActionStatus,
        error: Optional[str] = None,
    ) -> None:
        with self._session_factory() as db:
            row = db.get(ScheduledActionRow, action_id)
            if row is None:
                log.warning("scheduled action %s not found", action_id)
                return
            row.status = status.value
            row.error = error
            row.updated_at = _utcnow()
            db.commit()
