# firmsync/automation/rules/repositories.py
from __future__ import annotations

import copy
import uuid
from collections import deque
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Deque, Dict, Iterable, List, Optional, Tuple

from .errors import FieldUpdateRejected
from .storage import ActionLogStorage, TenantDataGateway
from .types import (
    ActionLogEntry,
    ExecutionRecord,
    ExecutionStatus,
    Rule,
    ScheduledAction,
    ScheduledActionStatus,
)

UPDATABLE_TABLES = ("clients", "cases", "tasks")
PROTECTED_FIELDS = frozenset({"id", "tenant_id", "created_at"})

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def order_rules(rules: Iterable[Rule]) -> List[Rule]:
    """priority ↓, created_at ↓ (новые первыми), id ↑."""
    by_id = sorted(rules, key=lambda r: r.id)
    by_created = sorted(by_id, key=lambda r: r.created_at or _EPOCH, reverse=True)
    return sorted(by_created, key=lambda r: r.priority, reverse=True)


# ======================================================================
# 1. IN-MEMORY ШЛЮЗ ТЕНАНТА
# ======================================================================

class InMemoryTenantGateway(TenantDataGateway):
    """
    Простейший шлюз в памяти.
    Подходит для:
      - unit-тестов,
      - локального запуска без БД.
    """

    def __init__(self, updatable_tables: Iterable[str] = UPDATABLE_TABLES) -> None:
        self._lock = RLock()
        self._rules: Dict[Tuple[str, str], Rule] = {}
        self._records: Dict[Tuple[str, str], Dict[str, Dict[str, Any]]] = {}
        self._updatable = frozenset(updatable_tables)
        self.activity_logs: List[Dict[str, Any]] = []
        self.executions: List[ExecutionRecord] = []
        self._scheduled: Dict[str, ScheduledAction] = {}

    # --- правила -------------------------------------------------------

    def load_active_rules(self, tenant_id: str, trigger_type: str) -> List[Rule]:
        with self._lock:
            rules = [
                r for (tid, _), r in self._rules.items()
                if tid == tenant_id and r.is_active and r.trigger_type == trigger_type
            ]
        return order_rules(rules)

    def save_rule(self, rule: Rule) -> None:
        with self._lock:
            if rule.created_at is None:
                rule.created_at = datetime.now(timezone.utc)
            self._rules[(rule.tenant_id, rule.id)] = rule

    def list_rules(self, tenant_id: str) -> List[Rule]:
        with self._lock:
            rules = [r for (tid, _), r in self._rules.items() if tid == tenant_id]
        return order_rules(rules)

    def delete_rule(self, tenant_id: str, rule_id: str) -> bool:
        with self._lock:
            return self._rules.pop((tenant_id, rule_id), None) is not None

    # --- записи домена -------------------------------------------------

    def put_record(self, tenant_id: str, table: str, record: Dict[str, Any]) -> str:
        """Положить запись (для тестов/сидов). Вернёт её id."""
        rec = dict(record)
        rec.setdefault("id", uuid.uuid4().hex)
        rec["tenant_id"] = tenant_id
        with self._lock:
            self._records.setdefault((tenant_id, table), {})[str(rec["id"])] = rec
        return str(rec["id"])

    def get_record(self, tenant_id: str, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            rec = self._records.get((tenant_id, table), {}).get(str(record_id))
            return dict(rec) if rec is not None else None

    def list_records(self, tenant_id: str, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(r) for r in self._records.get((tenant_id, table), {}).values()]

    def create_task(
        self,
        tenant_id: str,
        title: str,
        description: Optional[str],
        assignee: str,
        due_date: datetime,
    ) -> str:
        return self.put_record(
            tenant_id,
            "tasks",
            {
                "title": title,
                "description": description,
                "assigned_to": assignee,
                "due_date": due_date,
                "status": "pending",
                "created_at": datetime.now(timezone.utc),
            },
        )

    def update_field(self, tenant_id: str, table: str, record_id: str, field: str, value: Any) -> None:
        if table not in self._updatable:
            raise FieldUpdateRejected(f"table '{table}' is not updatable")
        if field in PROTECTED_FIELDS:
            raise FieldUpdateRejected(f"field '{field}' is protected")
        with self._lock:
            rec = self._records.get((tenant_id, table), {}).get(str(record_id))
            if rec is None:
                raise FieldUpdateRejected(f"{table} record '{record_id}' not found for tenant {tenant_id}")
            rec[field] = value
            rec["updated_at"] = datetime.now(timezone.utc)

    def append_activity_log(
        self,
        tenant_id: str,
        entity_type: str,
        entity_id: str,
        activity_type: str,
        description: str,
    ) -> None:
        with self._lock:
            self.activity_logs.append({
                "tenant_id": tenant_id,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "activity_type": activity_type,
                "description": description,
                "created_at": datetime.now(timezone.utc),
            })

    # --- аудит ---------------------------------------------------------

    def append_execution_record(
        self,
        tenant_id: str,
        rule_id: str,
        trigger_type: str,
        context_snapshot: Dict[str, Any],
        status: ExecutionStatus = ExecutionStatus.SUCCESS,
    ) -> None:
        rec = ExecutionRecord(
            tenant_id=tenant_id,
            rule_id=rule_id,
            trigger_type=trigger_type,
            context_snapshot=copy.deepcopy(context_snapshot),
            executed_at=datetime.now(timezone.utc),
            status=status,
        )
        with self._lock:
            self.executions.append(rec)

    def list_execution_records(
        self,
        tenant_id: str,
        limit: int = 100,
        rule_id: Optional[str] = None,
    ) -> List[ExecutionRecord]:
        with self._lock:
            items = [
                e for e in reversed(self.executions)
                if e.tenant_id == tenant_id and (rule_id is None or e.rule_id == rule_id)
            ]
        return items[:limit]

    # --- отложенные действия -------------------------------------------

    def save_scheduled_action(self, item: ScheduledAction) -> str:
        with self._lock:
            if item.id is None:
                item.id = uuid.uuid4().hex
            item.status = ScheduledActionStatus.PENDING
            self._scheduled[item.id] = item
            return item.id

    def list_pending_scheduled_actions(self) -> List[ScheduledAction]:
        with self._lock:
            items = [s for s in self._scheduled.values() if s.status == ScheduledActionStatus.PENDING]
        return sorted(items, key=lambda s: s.due_at)

    def mark_scheduled_action(
        self,
        action_id: str,
        status: ScheduledActionStatus,
        error: Optional[str] = None,
    ) -> None:
        with self._lock:
            item = self._scheduled.get(action_id)
            if item is not None:
                item.status = status

    def get_scheduled_action(self, action_id: str) -> Optional[ScheduledAction]:
        with self._lock:
            return self._scheduled.get(action_id)


# ======================================================================
# 2. IN-MEMORY ЖУРНАЛ ДЕЙСТВИЙ
# ======================================================================

class InMemoryActionLogStorage(ActionLogStorage):
    """
    Журнал выполнения действий в памяти.
    Хранит последние N записей (по умолчанию 1000) в deque.
    """

    def __init__(self, max_entries: int = 1000) -> None:
        self._max_entries = max_entries
        self._entries: Deque[ActionLogEntry] = deque(maxlen=max_entries)
        self._lock = RLock()

    def append(self, entry: ActionLogEntry) -> None:
        with self._lock:
            self._entries.appendleft(entry)  # новые — в начало

    def list_recent(
        self,
        limit: int = 100,
        tenant_id: Optional[str] = None,
        rule_id: Optional[str] = None,
    ) -> List[ActionLogEntry]:
        with self._lock:
            filtered = [
                e for e in self._entries
                if (tenant_id is None or e.tenant_id == tenant_id)
                and (rule_id is None or e.rule_id == rule_id)
            ]
        return filtered[:limit]
