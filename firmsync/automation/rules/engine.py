# firmsync/automation/rules/engine.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .actions import ActionExecutor, snapshot_context
from .errors import RuleLoadError
from .evaluator import ConditionEvaluator
from .scheduler import DelayedActionScheduler
from .storage import TenantDataGateway
from .types import (
    ActionResult,
    ActionStatus,
    ExecutionStatus,
    Rule,
    Trigger,
    TriggerResult,
)

log = logging.getLogger("automation")


class RuleEngine:
    """
    Основной движок правил для ОДНОГО вызова триггера:
      - загружает активные правила тенанта под этот тип триггера
      - проверяет условия каждого правила
      - выполняет действия совпавших (отложенные — через планировщик)
      - пишет одну запись аудита на каждое сработавшее правило

    ВАЖНО:
    - run_trigger сам по себе не сериализуется; его зовёт только
      TriggerDispatcher из своего единственного рабочего потока
    - правило срабатывает не больше одного раза за вызов
    - аудит пишется, когда действия РАЗОСЛАНЫ, а не когда завершились отложенные
    """

    def __init__(
        self,
        *,
        gateway: TenantDataGateway,
        actions: ActionExecutor,
        scheduler: Optional[DelayedActionScheduler] = None,
        evaluator: Optional[ConditionEvaluator] = None,
    ) -> None:
        self._gateway = gateway
        self._actions = actions
        self._scheduler = scheduler
        self._evaluator = evaluator or ConditionEvaluator()

    # ------------------------------------------------------------------ #
    # ПУБЛИЧНЫЙ API
    # ------------------------------------------------------------------ #
    def run_trigger(self, tenant_id: str, trigger: Trigger) -> TriggerResult:
        """
        Прогнать один триггер. Наружу летит только RuleLoadError;
        всё остальное локализуется на уровне правила/действия.
        """
        context: Dict[str, Any] = trigger.context_data or {}
        result = TriggerResult(tenant_id=tenant_id, trigger_type=trigger.type)

        log.debug("processing trigger %s for tenant %s", trigger.type, tenant_id)

        rules = self._load_rules(tenant_id, trigger.type)
        result.rules_loaded = len(rules)

        for rule in rules:
            # неактивные/чужие правила не стреляют, что бы ни вернул шлюз
            if not rule.is_active or rule.trigger_type != trigger.type or rule.tenant_id != tenant_id:
                log.debug("rule %s (%s): skipped, not active for %s", rule.id, rule.name, trigger.type)
                continue

            try:
                ok = self._evaluator.evaluate_all(rule.conditions, context)
                log.debug("rule %s (%s): %s", rule.id, rule.name, "OK" if ok else "NO")
                if not ok:
                    continue

                log.info(
                    "rule %s (%s) FIRED by %s (tenant=%s)",
                    rule.id, rule.name, trigger.type, tenant_id,
                )
                action_results = self._actions.execute_actions(
                    tenant_id,
                    rule,
                    context,
                    schedule=self._scheduler.schedule if self._scheduler is not None else None,
                )
            except Exception:  # noqa: BLE001
                log.exception("rule %s (%s) failed (tenant=%s)", rule.id, rule.name, tenant_id)
                result.failed_rules.append(rule.id)
                continue

            result.action_results[rule.id] = action_results
            self._write_audit(tenant_id, rule, trigger.type, context, action_results)
            result.fired.append(rule.id)

        return result

    # ------------------------------------------------------------------ #
    # ВНУТРЕННЕЕ
    # ------------------------------------------------------------------ #
    def _load_rules(self, tenant_id: str, trigger_type: str) -> List[Rule]:
        try:
            return list(self._gateway.load_active_rules(tenant_id, trigger_type))
        except RuleLoadError:
            log.error("rules load failed (tenant=%s trigger=%s)", tenant_id, trigger_type)
            raise
        except Exception as exc:
            log.error("rules load failed (tenant=%s trigger=%s): %s", tenant_id, trigger_type, exc)
            raise RuleLoadError(tenant_id, trigger_type, str(exc)) from exc

    def _write_audit(
        self,
        tenant_id: str,
        rule: Rule,
        trigger_type: str,
        context: Dict[str, Any],
        action_results: List[ActionResult],
    ) -> None:
        """Сбой записи аудита не откатывает уже разосланные действия — только лог."""
        status = (
            ExecutionStatus.PARTIAL_FAILURE
            if any(r.status == ActionStatus.FAILED for r in action_results)
            else ExecutionStatus.SUCCESS
        )
        try:
            self._gateway.append_execution_record(
                tenant_id,
                rule.id,
                trigger_type,
                snapshot_context(context),
                status,
            )
        except Exception as exc:  # noqa: BLE001
            log.error(
                "audit write failed for rule %s (tenant=%s trigger=%s): %s",
                rule.id, tenant_id, trigger_type, exc,
            )
