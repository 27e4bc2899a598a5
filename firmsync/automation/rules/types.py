# firmsync/automation/rules/types.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


# === 1. БАЗОВЫЕ ENUM'Ы =======================================================

class TriggerType(Enum):
    """Доменные события, на которые реагирует движок."""
    CLIENT_ADDED = "client_added"
    CLIENT_UPDATED = "client_updated"
    CLIENT_CONTACTED = "client_contacted"
    DOCUMENT_UPLOADED = "document_uploaded"
    CASE_CREATED = "case_created"
    TIME_ENTRY_ADDED = "time_entry_added"


class ConditionOperator(Enum):
    """Операторы условий."""
    EQUALS = "equals"              # строгое равенство
    CONTAINS = "contains"          # подстрока без учёта регистра
    GREATER_THAN = "greater_than"  # числовое сравнение
    LESS_THAN = "less_than"
    NOT_EMPTY = "not_empty"        # не None / не отсутствует / не ""
    IS_EMPTY = "is_empty"


class LogicalOperator(Enum):
    """Как условие связано со СЛЕДУЮЩИМ условием в списке."""
    AND = "AND"
    OR = "OR"


class ActionType(Enum):
    """Что умеет делать движок."""
    SEND_EMAIL = "send_email"
    SEND_SMS = "send_sms"
    CREATE_TASK = "create_task"
    UPDATE_FIELD = "update_field"
    LOG_ACTIVITY = "log_activity"
    WEBHOOK_CALL = "webhook_call"


class ActionStatus(Enum):
    """Результат исполнения конкретного действия."""
    SUCCESS = "success"
    FAILED = "failed"
    SCHEDULED = "scheduled"  # отложено, выполнит планировщик


class ExecutionStatus(Enum):
    """Итог срабатывания правила (пишется в аудит)."""
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"


class ScheduledActionStatus(Enum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


# === 2. ТРИГГЕР ==============================================================

@dataclass
class Trigger:
    """
    Событие от хост-приложения. Нигде не хранится,
    живёт только на время вызова движка.
    """
    type: str
    context_data: Dict[str, Any] = field(default_factory=dict)


# === 3. УСЛОВИЯ ==============================================================

@dataclass
class Condition:
    """
    Одно условие над контекстом триггера.
    Примеры:
      - field="client.status", operator=equals, value="vip"
      - field="client.email",  operator=not_empty

    logical_operator связывает это условие со СЛЕДУЮЩИМ (слева направо,
    без приоритетов и скобок).
    """
    field: str
    operator: ConditionOperator
    value: Any = None
    logical_operator: LogicalOperator = LogicalOperator.AND


# === 4. ДЕЙСТВИЯ =============================================================

@dataclass
class TaskPayload:
    title: str
    description: Optional[str] = None
    due_date: Optional[datetime] = None


@dataclass
class FieldUpdatePayload:
    """target вида table.recordId.field, разобранный на части."""
    table: str
    record_id: str
    field: str
    value: Any = None


@dataclass
class ActivityPayload:
    entity_type: str = "client"
    activity_type: str = "automated_action"
    description: Optional[str] = None


@dataclass
class Action:
    """
    Описание одного действия.

    target и payload хранятся как в конфигурации правила; для типов,
    где нужна структура, парсер дополнительно заполняет ровно одно
    типизированное поле (task / field_update / activity).
    """
    type: ActionType
    target: str
    payload: Dict[str, Any] = field(default_factory=dict)
    delay_minutes: float = 0.0
    task: Optional[TaskPayload] = None
    field_update: Optional[FieldUpdatePayload] = None
    activity: Optional[ActivityPayload] = None

    @property
    def is_delayed(self) -> bool:
        return self.delay_minutes > 0


@dataclass
class ActionResult:
    """Результат исполнения действия — пойдёт в журнал."""
    index: int
    type: ActionType
    status: ActionStatus
    ts: datetime
    error: Optional[str] = None


# === 5. ПРАВИЛО =============================================================

@dataclass
class Rule:
    """Правило автоматизации одного тенанта."""
    id: str
    tenant_id: str
    name: str
    trigger_type: str
    conditions: List[Condition] = field(default_factory=list)
    actions: List[Action] = field(default_factory=list)
    is_active: bool = True
    description: Optional[str] = None
    priority: int = 0
    created_at: Optional[datetime] = None


# === 6. АУДИТ, ОТЛОЖЕННЫЕ ДЕЙСТВИЯ, ЖУРНАЛ ===================================

@dataclass
class ExecutionRecord:
    """Одна запись аудита = одно срабатывание правила."""
    tenant_id: str
    rule_id: str
    trigger_type: str
    context_snapshot: Dict[str, Any]
    executed_at: datetime
    status: ExecutionStatus = ExecutionStatus.SUCCESS


@dataclass
class ScheduledAction:
    """Отложенное действие, переживающее рестарт процесса."""
    tenant_id: str
    rule_id: str
    rule_name: str
    action_index: int
    action: Action
    context: Dict[str, Any]
    due_at: datetime
    id: Optional[str] = None
    status: ScheduledActionStatus = ScheduledActionStatus.PENDING


@dataclass
class ActionLogEntry:
    """
    Запись оперативного журнала действий: кто, когда, что сделал
    и чем закончилось. Это НЕ аудит (аудит — ExecutionRecord).
    """
    ts: datetime
    tenant_id: str
    rule_id: str
    rule_name: str
    action_index: int
    action_type: ActionType
    status: ActionStatus
    error: Optional[str] = None
    payload_preview: Optional[str] = None


@dataclass
class TriggerResult:
    """Что произошло за один вызов process_trigger."""
    tenant_id: str
    trigger_type: str
    rules_loaded: int = 0
    fired: List[str] = field(default_factory=list)         # id правил, по которым есть аудит
    failed_rules: List[str] = field(default_factory=list)  # правила, упавшие целиком
    action_results: Dict[str, List[ActionResult]] = field(default_factory=dict)
