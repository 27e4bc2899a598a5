# firmsync/automation/rules/actions.py
from __future__ import annotations

import json
import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Any, Callable, Dict, List, Mapping, Optional

from firmsync.services.transports import NotifyTransport, WebhookTransport

from .errors import ActionTimeoutError, WebhookError
from .storage import TenantDataGateway
from .types import (
    Action,
    ActionLogEntry,
    ActionResult,
    ActionStatus,
    ActionType,
    Rule,
)

log = logging.getLogger("automation")


# ---- типы коллбеков, которые передаются снаружи ----------------------------

# Постановка отложенного действия: tenant_id, rule, индекс, action, контекст
ScheduleFunc = Callable[[str, Rule, int, Action, Dict[str, Any]], None]

# Запись в журнал: ActionLogEntry
ActionLogWriter = Callable[[ActionLogEntry], None]

CONTEXT_SUMMARY_LIMIT = 200


def snapshot_context(context: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Независимая JSON-совместимая копия контекста (для аудита и для
    отложенных действий, которые пишутся в БД). Несериализуемое → str.
    """
    if not context:
        return {}
    return json.loads(json.dumps(dict(context), ensure_ascii=False, default=str))


def format_context_summary(context: Optional[Mapping[str, Any]]) -> Optional[str]:
    """Короткий JSON контекста для описаний задач/активностей."""
    if not context:
        return None
    try:
        s = json.dumps(context, ensure_ascii=False, default=str, separators=(",", ":"))
    except (TypeError, ValueError):
        log.warning("context summary: serialization failed")
        return None
    if len(s) > CONTEXT_SUMMARY_LIMIT:
        return s[: CONTEXT_SUMMARY_LIMIT - 3] + "..."
    return s


class ActionExecutor:
    """
    Исполняет действия правила.

    Конкретные транспорты и БД сюда не зашиты — всё передаётся в __init__.
    Каждое действие обёрнуто отдельно: упавшее действие логируется,
    пишется в журнал и НЕ мешает остальным.
    call_timeout_s ограничивает ожидание ответа обработчика, но не сам
    обработчик (подробности в _call).
    """

    def __init__(
        self,
        *,
        gateway: TenantDataGateway,
        email: NotifyTransport,
        sms: NotifyTransport,
        webhook: WebhookTransport,
        write_action_log: Optional[ActionLogWriter] = None,
        call_timeout_s: Optional[float] = None,
        default_task_due: timedelta = timedelta(hours=24),
        now_func: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._gateway = gateway
        self._email = email
        self._sms = sms
        self._webhook = webhook
        self._write_action_log = write_action_log
        self._call_timeout_s = call_timeout_s
        self._default_task_due = default_task_due
        self._now = now_func

        self._pool: Optional[ThreadPoolExecutor] = None
        self._pool_lock = Lock()

        self._handlers: Dict[ActionType, Callable[[str, Action, Dict[str, Any]], None]] = {
            ActionType.SEND_EMAIL: self._do_send_email,
            ActionType.SEND_SMS: self._do_send_sms,
            ActionType.CREATE_TASK: self._do_create_task,
            ActionType.UPDATE_FIELD: self._do_update_field,
            ActionType.LOG_ACTIVITY: self._do_log_activity,
            ActionType.WEBHOOK_CALL: self._do_webhook_call,
        }
        missing = set(ActionType) - set(self._handlers)
        if missing:
            raise RuntimeError(f"no handler for action types: {sorted(m.value for m in missing)}")

    # --------------------------------------------------------------------- #
    # ПУБЛИЧНЫЙ МЕТОД: выполнить ОДНО действие
    # --------------------------------------------------------------------- #
    def execute_action(
        self,
        tenant_id: str,
        rule_id: str,
        rule_name: str,
        index: int,
        action: Action,
        context: Optional[Dict[str, Any]] = None,
    ) -> ActionResult:
        """
        Выполнить одно действие прямо сейчас (задержку здесь не смотрим)
        и вернуть результат. Тут же пишем в журнал.
        """
        started_at = self._now()
        ctx = context or {}

        log.debug(
            "executing action #%d %s -> %s (tenant=%s rule=%s)",
            index, action.type.value, action.target, tenant_id, rule_id,
        )

        try:
            self._call(self._handlers[action.type], tenant_id, action, ctx)
            result = ActionResult(
                index=index,
                type=action.type,
                status=ActionStatus.SUCCESS,
                ts=started_at,
            )
        except Exception as exc:  # noqa: BLE001
            log.error(
                "action #%d %s failed (tenant=%s rule=%s target=%s): %s",
                index, action.type.value, tenant_id, rule_id, action.target, exc,
            )
            result = ActionResult(
                index=index,
                type=action.type,
                status=ActionStatus.FAILED,
                ts=started_at,
                error=str(exc) or exc.__class__.__name__,
            )

        self._journal(tenant_id, rule_id, rule_name, action, result)
        return result

    # --------------------------------------------------------------------- #
    # ПУБЛИЧНЫЙ МЕТОД: выполнить ВСЕ действия правила
    # --------------------------------------------------------------------- #
    def execute_actions(
        self,
        tenant_id: str,
        rule: Rule,
        context: Dict[str, Any],
        *,
        schedule: Optional[ScheduleFunc] = None,
    ) -> List[ActionResult]:
        """
        По порядку объявления:
          - delay_minutes > 0 → отдаём планировщику и сразу идём дальше;
          - иначе → выполняем сейчас.
        Ни одно упавшее действие не останавливает остальные.
        """
        results: List[ActionResult] = []

        for idx, act in enumerate(rule.actions):
            if act.is_delayed:
                results.append(self._schedule(tenant_id, rule, idx, act, context, schedule))
            else:
                results.append(
                    self.execute_action(tenant_id, rule.id, rule.name, idx, act, context)
                )

        return results

    def shutdown(self) -> None:
        with self._pool_lock:
            if self._pool is not None:
                self._pool.shutdown(wait=False)
                self._pool = None

    # --------------------------------------------------------------------- #
    # ВНУТРЕННИЕ: конкретные действия
    # --------------------------------------------------------------------- #
    def _do_send_email(self, tenant_id: str, action: Action, context: Dict[str, Any]) -> None:
        self._email.send(tenant_id, action.target, dict(action.payload))

    def _do_send_sms(self, tenant_id: str, action: Action, context: Dict[str, Any]) -> None:
        self._sms.send(tenant_id, action.target, dict(action.payload))

    def _do_create_task(self, tenant_id: str, action: Action, context: Dict[str, Any]) -> None:
        if action.task is None:
            raise ValueError("task payload is not set for action")

        description = (
            action.task.description
            or format_context_summary(context)
            or "Generated by automation rule"
        )
        due = action.task.due_date or (self._now() + self._default_task_due)

        task_id = self._gateway.create_task(
            tenant_id,
            action.task.title,
            description,
            action.target,
            due,
        )
        log.debug("task %s created for %s (tenant=%s)", task_id, action.target, tenant_id)

    def _do_update_field(self, tenant_id: str, action: Action, context: Dict[str, Any]) -> None:
        fu = action.field_update
        if fu is None:
            raise ValueError("field_update payload is not set for action")

        summary = format_context_summary(context)
        if summary:
            log.debug("updating %s.%s with context %s", fu.table, fu.field, summary)

        self._gateway.update_field(tenant_id, fu.table, fu.record_id, fu.field, fu.value)

    def _do_log_activity(self, tenant_id: str, action: Action, context: Dict[str, Any]) -> None:
        if action.activity is None:
            raise ValueError("activity payload is not set for action")

        base = action.activity.description or "Automated action executed"
        summary = format_context_summary(context)
        description = f"{base} Context: {summary}" if summary else base

        self._gateway.append_activity_log(
            tenant_id,
            action.activity.entity_type,
            action.target,
            action.activity.activity_type,
            description,
        )

    def _do_webhook_call(self, tenant_id: str, action: Action, context: Dict[str, Any]) -> None:
        body = dict(action.payload)
        body["contextData"] = context
        body["timestamp"] = self._now().isoformat()

        headers = {
            "Content-Type": "application/json",
            "X-Tenant-ID": tenant_id,
        }
        status = self._webhook.post(action.target, body, headers)
        if not 200 <= int(status) < 300:
            raise WebhookError(action.target, int(status))

    # --------------------------------------------------------------------- #
    # ВСПОМОГАТЕЛЬНЫЕ -------------------------------------------------------
    # --------------------------------------------------------------------- #
    def _call(self, handler, tenant_id: str, action: Action, context: Dict[str, Any]) -> None:
        """
        Вызов обработчика; при заданном call_timeout_s — с ограничением по времени.

        Таймаут ограничивает только ожидание: поток пула прервать нельзя,
        поэтому зависший вызов может доделать побочный эффект (письмо,
        вебхук) уже после того, как действие записано как failed.
        Сам сетевой вызов ограничивают таймауты транспортов (requests timeout=).
        """
        if not self._call_timeout_s:
            handler(tenant_id, action, context)
            return

        fut = self._get_pool().submit(handler, tenant_id, action, context)
        try:
            fut.result(timeout=self._call_timeout_s)
        except FutureTimeout:
            fut.cancel()
            raise ActionTimeoutError(
                f"{action.type.value} to {action.target} timed out after {self._call_timeout_s}s"
            )

    def _get_pool(self) -> ThreadPoolExecutor:
        with self._pool_lock:
            if self._pool is None:
                self._pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="automation-action")
            return self._pool

    def _schedule(
        self,
        tenant_id: str,
        rule: Rule,
        index: int,
        action: Action,
        context: Dict[str, Any],
        schedule: Optional[ScheduleFunc],
    ) -> ActionResult:
        ts = self._now()
        try:
            if schedule is None:
                raise RuntimeError("delayed action but no scheduler is configured")
            schedule(tenant_id, rule, index, action, context)
            result = ActionResult(index=index, type=action.type, status=ActionStatus.SCHEDULED, ts=ts)
        except Exception as exc:  # noqa: BLE001
            log.error(
                "action #%d %s could not be scheduled (tenant=%s rule=%s): %s",
                index, action.type.value, tenant_id, rule.id, exc,
            )
            result = ActionResult(
                index=index,
                type=action.type,
                status=ActionStatus.FAILED,
                ts=ts,
                error=str(exc) or exc.__class__.__name__,
            )

        self._journal(tenant_id, rule.id, rule.name, action, result)
        return result

    def _journal(
        self,
        tenant_id: str,
        rule_id: str,
        rule_name: str,
        action: Action,
        result: ActionResult,
    ) -> None:
        if self._write_action_log is None:
            return
        entry = ActionLogEntry(
            ts=result.ts,
            tenant_id=tenant_id,
            rule_id=rule_id,
            rule_name=rule_name,
            action_index=result.index,
            action_type=action.type,
            status=result.status,
            error=result.error,
            payload_preview=self._build_payload_preview(action),
        )
        try:
            self._write_action_log(entry)
        except Exception as exc:  # noqa: BLE001
            log.warning("action journal write failed: %s", exc)

    @staticmethod
    def _build_payload_preview(action: Action) -> str:
        """
        Короткое представление действия для журнала.
        """
        if action.type == ActionType.SEND_EMAIL:
            return f"EMAIL {action.target}"
        if action.type == ActionType.SEND_SMS:
            return f"SMS {action.target}"
        if action.type == ActionType.CREATE_TASK and action.task:
            return f"TASK '{action.task.title}' -> {action.target}"
        if action.type == ActionType.UPDATE_FIELD and action.field_update:
            fu = action.field_update
            return f"SET {fu.table}.{fu.record_id}.{fu.field}"
        if action.type == ActionType.LOG_ACTIVITY and action.activity:
            return f"ACTIVITY {action.activity.activity_type} {action.target}"
        if action.type == ActionType.WEBHOOK_CALL:
            return f"POST {action.target}"
        return action.type.value
