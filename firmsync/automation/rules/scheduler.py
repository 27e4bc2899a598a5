# firmsync/automation/rules/scheduler.py
"""
Планировщик отложенных действий (delay_minutes > 0).

Как работает:
  - schedule() сначала сохраняет действие через gateway (status=pending),
    потом кладёт его в min-heap по due_at и будит поток;
  - один поток спит до ближайшего due_at (но не дольше poll_interval_s)
    и выполняет всё, что созрело;
  - start() перед запуском потока поднимает из gateway все pending
    (восстановление после рестарта), просроченные выполняются сразу.

Исполнение идёт вне потока диспетчера триггеров: исходный вызов
process_trigger отложенных действий не ждёт.
"""
from __future__ import annotations

import heapq
import itertools
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from .actions import ActionExecutor, snapshot_context
from .storage import TenantDataGateway
from .types import (
    Action,
    ActionStatus,
    Rule,
    ScheduledAction,
    ScheduledActionStatus,
)

log = logging.getLogger("automation")


class DelayedActionScheduler:
    def __init__(
        self,
        *,
        gateway: TenantDataGateway,
        executor: ActionExecutor,
        poll_interval_s: float = 5.0,
        now_func: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._gateway = gateway
        self._executor = executor
        self._poll_interval_s = poll_interval_s
        self._now = now_func

        self._heap: List[Tuple[datetime, int, ScheduledAction]] = []
        self._queued_ids: Set[str] = set()
        self._seq = itertools.count()
        self._cond = threading.Condition()

        self._running = False
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------ #
    # ПУБЛИЧНЫЙ API
    # ------------------------------------------------------------------ #
    def schedule(
        self,
        tenant_id: str,
        rule: Rule,
        index: int,
        action: Action,
        context: Dict[str, Any],
    ) -> ScheduledAction:
        """Сохранить и поставить в очередь. Ошибка сохранения — наружу (в ActionExecutor)."""
        item = ScheduledAction(
            tenant_id=tenant_id,
            rule_id=rule.id,
            rule_name=rule.name,
            action_index=index,
            action=action,
            context=snapshot_context(context),
            due_at=self._now() + timedelta(minutes=action.delay_minutes),
        )
        item.id = self._gateway.save_scheduled_action(item)
        self._push(item)

        log.info(
            "action #%d %s of rule %s scheduled for %s (tenant=%s)",
            index, action.type.value, rule.id, item.due_at.isoformat(), tenant_id,
        )
        return item

    def recover(self) -> int:
        """Поднять все pending из хранилища. Вернёт, сколько добавлено в очередь."""
        items = self._gateway.list_pending_scheduled_actions()
        added = 0
        for item in items:
            if self._push(item):
                added += 1
        if added:
            log.info("recovered %d pending delayed action(s)", added)
        return added

    def run_due(self, now: Optional[datetime] = None) -> int:
        """Выполнить всё, у чего due_at <= now. Вернёт количество выполненных."""
        now = now or self._now()
        due: List[ScheduledAction] = []

        with self._cond:
            while self._heap and self._heap[0][0] <= now:
                _, _, item = heapq.heappop(self._heap)
                self._queued_ids.discard(item.id)
                due.append(item)

        for item in due:
            self._run(item)
        return len(due)

    def pending_count(self) -> int:
        with self._cond:
            return len(self._heap)

    def next_due_at(self) -> Optional[datetime]:
        with self._cond:
            return self._heap[0][0] if self._heap else None

    def start(self) -> None:
        if self._running:
            return
        self.recover()
        self._running = True
        self._thread = threading.Thread(target=self._loop, name="automation-scheduler", daemon=True)
        self._thread.start()
        log.info("delayed action scheduler started")

    def stop(self, timeout: float = 2.0) -> None:
        with self._cond:
            self._running = False
            self._cond.notify_all()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        log.info("delayed action scheduler stopped (%d pending kept in storage)", self.pending_count())

    # ------------------------------------------------------------------ #
    # ВНУТРЕННЕЕ
    # ------------------------------------------------------------------ #
    def _push(self, item: ScheduledAction) -> bool:
        due_at = item.due_at
        if due_at.tzinfo is None:
            due_at = due_at.replace(tzinfo=timezone.utc)
            item.due_at = due_at

        with self._cond:
            if item.id in self._queued_ids:
                return False
            heapq.heappush(self._heap, (due_at, next(self._seq), item))
            self._queued_ids.add(item.id)
            self._cond.notify_all()
        return True

    def _run(self, item: ScheduledAction) -> None:
        result = self._executor.execute_action(
            item.tenant_id,
            item.rule_id,
            item.rule_name,
            item.action_index,
            item.action,
            item.context,
        )
        status = (
            ScheduledActionStatus.DONE
            if result.status == ActionStatus.SUCCESS
            else ScheduledActionStatus.FAILED
        )
        try:
            self._gateway.mark_scheduled_action(item.id, status, result.error)
        except Exception as exc:  # noqa: BLE001
            log.error("scheduled action %s: status update failed: %s", item.id, exc)

    def _loop(self) -> None:
        while True:
            with self._cond:
                if not self._running:
                    return
                wait_s = self._poll_interval_s
                if self._heap:
                    until_due = (self._heap[0][0] - self._now()).total_seconds()
                    wait_s = max(0.0, min(wait_s, until_due))
                if wait_s > 0:
                    self._cond.wait(timeout=wait_s)
                if not self._running:
                    return
            try:
                self.run_due()
            except Exception:  # noqa: BLE001
                log.exception("delayed action scheduler iteration failed")
