# firmsync/automation/api/rules_api.py
from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel

from firmsync.automation import runtime
from firmsync.automation.rules.errors import RuleLoadError, UnknownTriggerError
from firmsync.automation.rules.types import ActionLogEntry, ExecutionRecord, TriggerResult
from firmsync.automation.rules_loader import parse_rule, rule_to_dict

router = APIRouter(prefix="/api/automation", tags=["automation"])


# ---------------------------------------------------------------------------
# DTO
# ---------------------------------------------------------------------------

class ConditionDTO(BaseModel):
    field: str
    operator: str
    value: Optional[Any] = None
    logical_operator: str = "AND"


class ActionDTO(BaseModel):
    type: str
    target: str
    payload: Dict[str, Any] = {}
    delay_minutes: float = 0


class RuleSaveDTO(BaseModel):
    """
    Правило из UI/интеграции. id можно не присылать —
    тогда сделаем его из name.
    """
    id: Optional[str] = None
    name: str
    description: Optional[str] = None
    trigger_type: str
    is_active: bool = True
    priority: int = 0
    conditions: List[ConditionDTO] = []
    actions: List[ActionDTO] = []


class TriggerDTO(BaseModel):
    type: str
    context_data: Dict[str, Any] = {}


# ---------------------------------------------------------------------------
# Вспомогательное
# ---------------------------------------------------------------------------

def _gateway():
    gw = runtime.gateway_instance()
    if gw is None:
        raise HTTPException(500, "Automation engine is not initialized")
    return gw


def _slug(name: str) -> str:
    # простая нормализация: латиница/цифры/подчёркивания
    slug = re.sub(r"\s+", "_", name.strip())
    slug = re.sub(r"[^0-9A-Za-z_\-]+", "", slug)
    return slug or name.strip()


def _execution_to_dict(e: ExecutionRecord) -> Dict[str, Any]:
    return {
        "tenant_id": e.tenant_id,
        "rule_id": e.rule_id,
        "trigger_type": e.trigger_type,
        "context_snapshot": e.context_snapshot,
        "executed_at": e.executed_at.isoformat() if e.executed_at else None,
        "status": e.status.value,
    }


def _journal_to_dict(e: ActionLogEntry) -> Dict[str, Any]:
    return {
        "ts": e.ts.isoformat() if e.ts else None,
        "tenant_id": e.tenant_id,
        "rule_id": e.rule_id,
        "rule_name": e.rule_name,
        "action_index": e.action_index,
        "action_type": e.action_type.value,
        "status": e.status.value,
        "error": e.error,
        "payload": e.payload_preview,
    }


def _trigger_result_to_dict(res: TriggerResult) -> Dict[str, Any]:
    return {
        "tenant_id": res.tenant_id,
        "trigger_type": res.trigger_type,
        "rules_loaded": res.rules_loaded,
        "fired": list(res.fired),
        "failed_rules": list(res.failed_rules),
        "actions": {
            rule_id: [
                {
                    "index": r.index,
                    "type": r.type.value,
                    "status": r.status.value,
                    "error": r.error,
                }
                for r in results
            ]
            for rule_id, results in res.action_results.items()
        },
    }


# ---------------------------------------------------------------------------
# Правила
# ---------------------------------------------------------------------------

@router.get("/tenants/{tenant_id}/rules")
def list_rules(tenant_id: str) -> List[Dict[str, Any]]:
    return [rule_to_dict(r) for r in _gateway().list_rules(tenant_id)]


@router.post("/tenants/{tenant_id}/rules")
def save_rule(tenant_id: str, body: RuleSaveDTO):
    """Создать или обновить правило (upsert). created_at существующего правила сохраняем."""
    gw = _gateway()

    name = (body.name or "").strip()
    if not name:
        raise HTTPException(400, "rule name must not be empty")

    data = body.model_dump()
    data["id"] = (body.id or "").strip() or _slug(name)
    data["name"] = name

    try:
        rule = parse_rule(data, tenant_id=tenant_id)
    except (ValueError, TypeError) as e:
        raise HTTPException(400, f"invalid rule: {e}")
    # tenant берём только из пути
    rule.tenant_id = tenant_id

    existing = next((r for r in gw.list_rules(tenant_id) if r.id == rule.id), None)
    if existing is not None:
        rule.created_at = existing.created_at

    gw.save_rule(rule)
    return {"ok": True, "id": rule.id}


@router.delete("/tenants/{tenant_id}/rules/{rule_id}")
def delete_rule(tenant_id: str, rule_id: str):
    if not _gateway().delete_rule(tenant_id, rule_id):
        raise HTTPException(404, "rule not found")
    return {"ok": True}


@router.post("/reload")
def reload_rules():
    _gateway()
    try:
        loaded = runtime.reload_rules()
    except FileNotFoundError as e:
        raise HTTPException(404, str(e))
    except ValueError as e:
        raise HTTPException(400, f"rules load failed: {e}")
    return {"ok": True, "rules_count": len(loaded)}


# ---------------------------------------------------------------------------
# Аудит и журнал
# ---------------------------------------------------------------------------

@router.get("/tenants/{tenant_id}/executions")
def list_executions(
    tenant_id: str,
    limit: int = Query(100, ge=1, le=2000),
    rule_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    records = _gateway().list_execution_records(tenant_id, limit=limit, rule_id=rule_id)
    return [_execution_to_dict(e) for e in records]


@router.get("/journal")
def list_journal(
    limit: int = Query(200, ge=1, le=2000),
    tenant_id: Optional[str] = None,
    rule_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    journal = runtime.action_journal()
    if journal is None:
        raise HTTPException(500, "Automation engine is not initialized")
    return [_journal_to_dict(e) for e in journal.list_recent(limit, tenant_id=tenant_id, rule_id=rule_id)]


# ---------------------------------------------------------------------------
# Триггер вручную (интеграции, отладка)
# ---------------------------------------------------------------------------

@router.post("/tenants/{tenant_id}/triggers")
def post_trigger(tenant_id: str, body: TriggerDTO):
    dispatcher = runtime.dispatcher_instance()
    if dispatcher is None:
        raise HTTPException(500, "Automation engine is not initialized")

    try:
        res = dispatcher.process_trigger(tenant_id, body.type, body.context_data)
    except UnknownTriggerError as e:
        raise HTTPException(400, str(e))
    except RuleLoadError as e:
        raise HTTPException(503, str(e))
    return _trigger_result_to_dict(res)
