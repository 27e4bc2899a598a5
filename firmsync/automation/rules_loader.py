# firmsync/automation/rules_loader.py
from __future__ import annotations

import math
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from firmsync.automation.rules.storage import TenantDataGateway
from firmsync.automation.rules.types import (
    Action,
    ActionType,
    ActivityPayload,
    Condition,
    ConditionOperator,
    FieldUpdatePayload,
    LogicalOperator,
    Rule,
    TaskPayload,
)


def _pick(d: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Первый найденный ключ: поддерживаем и snake_case, и camelCase из старых строк БД."""
    for k in keys:
        if k in d and d[k] is not None:
            return d[k]
    return default


def parse_datetime(raw: Any) -> Optional[datetime]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        dt = raw
    else:
        dt = datetime.fromisoformat(str(raw).strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_condition(d: Dict[str, Any]) -> Condition:
    if not isinstance(d, dict):
        raise ValueError(f"condition must be an object, got {d!r}")

    field = str(_pick(d, "field", default="")).strip()
    if not field:
        raise ValueError("condition.field is required")

    op = ConditionOperator(str(_pick(d, "operator", "op", default="")).lower())
    logical = LogicalOperator(str(_pick(d, "logical_operator", "logicalOperator", default="AND")).upper())

    return Condition(
        field=field,
        operator=op,
        value=d.get("value"),
        logical_operator=logical,
    )


def parse_action(d: Dict[str, Any]) -> Action:
    if not isinstance(d, dict):
        raise ValueError(f"action must be an object, got {d!r}")

    at = ActionType(str(d.get("type", "")).lower())

    target = str(_pick(d, "target", default="")).strip()
    if not target:
        raise ValueError(f"{at.value}: target is required")

    payload = d.get("payload") or {}
    if not isinstance(payload, dict):
        raise ValueError(f"{at.value}: payload must be an object")

    delay_raw = _pick(d, "delay_minutes", "delayMinutes", default=0)
    if isinstance(delay_raw, bool):
        raise ValueError(f"{at.value}: delay_minutes must be a number, got {delay_raw!r}")
    try:
        # дробные минуты допустимы: 0.5 — это 30 секунд, а не «сразу»
        delay = float(delay_raw)
    except (TypeError, ValueError):
        raise ValueError(f"{at.value}: delay_minutes must be a number, got {delay_raw!r}")
    if not math.isfinite(delay) or delay < 0:
        raise ValueError(f"{at.value}: delay_minutes must be a finite number >= 0, got {delay_raw!r}")

    action = Action(type=at, target=target, payload=dict(payload), delay_minutes=delay)

    if at == ActionType.CREATE_TASK:
        action.task = TaskPayload(
            title=str(payload.get("title") or "Automated Task"),
            description=payload.get("description") or None,
            due_date=parse_datetime(_pick(payload, "dueDate", "due_date")),
        )

    elif at == ActionType.UPDATE_FIELD:
        parts = target.split(".")
        if len(parts) != 3 or not all(p.strip() for p in parts):
            raise ValueError(f"update_field: target must be 'table.recordId.field', got {target!r}")
        table, record_id, field = (p.strip() for p in parts)
        action.field_update = FieldUpdatePayload(
            table=table,
            record_id=record_id,
            field=field,
            value=payload.get("value"),
        )

    elif at == ActionType.LOG_ACTIVITY:
        action.activity = ActivityPayload(
            entity_type=str(_pick(payload, "entityType", "entity_type", default="client")),
            activity_type=str(_pick(payload, "activityType", "activity_type", default="automated_action")),
            description=payload.get("description") or None,
        )

    return action


def parse_rule(d: Dict[str, Any], tenant_id: Optional[str] = None) -> Rule:
    """
    Правило из dict (YAML, JSON-строка БД, тело запроса).
    tenant_id из аргумента используется, если в самом правиле его нет.
    """
    if not isinstance(d, dict):
        raise ValueError(f"rule must be an object, got {d!r}")

    rid = str(_pick(d, "id", default="")).strip()
    if not rid:
        raise ValueError("rule.id is required")

    tid = str(_pick(d, "tenant_id", "tenantId", default=tenant_id or "")).strip()
    if not tid:
        raise ValueError(f"rule {rid}: tenant_id is required")

    trigger = d.get("trigger")
    trigger_type = _pick(d, "trigger_type", "triggerType")
    if trigger_type is None and isinstance(trigger, dict):
        trigger_type = trigger.get("type")
    trigger_type = str(trigger_type or "").strip()
    if not trigger_type:
        raise ValueError(f"rule {rid}: trigger_type is required")

    active_raw = _pick(d, "is_active", "isActive")
    if active_raw is None:
        # формат с status: enabled/disabled
        is_active = str(d.get("status", "enabled")).lower() != "disabled"
    else:
        is_active = bool(active_raw)

    conds = d.get("conditions") or []
    acts = d.get("actions") or []
    if not isinstance(conds, list):
        raise ValueError(f"rule {rid}: conditions must be a list")
    if not isinstance(acts, list):
        raise ValueError(f"rule {rid}: actions must be a list")

    return Rule(
        id=rid,
        tenant_id=tid,
        name=str(d.get("name") or rid),
        trigger_type=trigger_type,
        conditions=[parse_condition(c) for c in conds],
        actions=[parse_action(a) for a in acts],
        is_active=is_active,
        description=d.get("description"),
        priority=int(d.get("priority") or 0),
        created_at=parse_datetime(_pick(d, "created_at", "createdAt")),
    )


# ---------------------------------------------------------------------------
# Обратно в dict (API, хранение в JSON-колонках)
# ---------------------------------------------------------------------------

def condition_to_dict(c: Condition) -> Dict[str, Any]:
    return {
        "field": c.field,
        "operator": c.operator.value,
        "value": c.value,
        "logical_operator": c.logical_operator.value,
    }


def action_to_dict(a: Action) -> Dict[str, Any]:
    return {
        "type": a.type.value,
        "target": a.target,
        "payload": dict(a.payload),
        "delay_minutes": a.delay_minutes,
    }


def rule_to_dict(rule: Rule) -> Dict[str, Any]:
    return {
        "id": rule.id,
        "tenant_id": rule.tenant_id,
        "name": rule.name,
        "description": rule.description,
        "trigger_type": rule.trigger_type,
        "is_active": rule.is_active,
        "priority": rule.priority,
        "created_at": rule.created_at.isoformat() if rule.created_at else None,
        "conditions": [condition_to_dict(c) for c in rule.conditions],
        "actions": [action_to_dict(a) for a in rule.actions],
    }


def load_rules_from_yaml(path: str, gateway: TenantDataGateway) -> List[Rule]:
    """
    Загружает правила из YAML-файла вида:

    tenant_id: "acme-law"          # по умолчанию для правил без своего tenant_id
    rules:
      - id: "welcome_email"
        name: "Письмо в приёмную о новом клиенте"
        trigger_type: "client_added"
        is_active: true
        priority: 10
        conditions:
          - field: "client.status"
            operator: "equals"
            value: "new"
            logical_operator: "AND"
        actions:
          - type: "send_email"
            target: "intake@firm.com"
            payload:
              subject: "New Client"
          - type: "create_task"
            target: "paralegal-1"
            delay_minutes: 60
            payload:
              title: "Call the new client"

    Старые правила тенантов, встречающихся в файле, перед загрузкой удаляются.
    Ошибка в любом правиле → ValueError, репозиторий не трогаем.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"rules file not found: {path}")

    data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError("rules file: root must be an object")

    default_tenant = data.get("tenant_id")
    items = data.get("rules") or []
    if not isinstance(items, list):
        raise ValueError("rules file: 'rules' must be a list")

    parsed: List[Rule] = []
    for idx, rd in enumerate(items):
        try:
            parsed.append(parse_rule(rd, tenant_id=default_tenant))
        except (ValueError, TypeError) as e:
            raise ValueError(f"rules[{idx}]: {e}") from e

    # очистим правила затронутых тенантов
    for tid in {r.tenant_id for r in parsed}:
        for old in gateway.list_rules(tid):
            gateway.delete_rule(tid, old.id)

    for rule in parsed:
        gateway.save_rule(rule)

    return parsed
