# firmsync/automation/rules/dispatcher.py
"""
Единая точка входа для хост-приложения: process_trigger(tenant_id, trigger, context).

Сериализация:
  - у каждого тенанта своя FIFO-очередь вызовов;
  - тенанты с непустой очередью стоят в кольце (round-robin);
  - ОДИН рабочий поток берёт голову очереди следующего тенанта
    и полностью прогоняет вызов через RuleEngine.

Итого: два вызова никогда не выполняются одновременно, внутри тенанта
порядок поступления сохраняется, а шумный тенант не душит остальных.
Очереди не ограничены — ограничивать поток триггеров должен вызывающий.
"""
from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Iterable, Mapping, Optional, Set, Union

from .engine import RuleEngine
from .errors import RuleLoadError, UnknownTriggerError
from .types import Trigger, TriggerResult, TriggerType

log = logging.getLogger("automation")


@dataclass
class _Job:
    tenant_id: str
    trigger: Trigger
    future: Future
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class TriggerDispatcher:
    def __init__(
        self,
        engine: RuleEngine,
        *,
        extra_trigger_types: Iterable[str] = (),
    ) -> None:
        self._engine = engine
        self._known: Set[str] = {t.value for t in TriggerType} | set(extra_trigger_types)

        self._queues: Dict[str, Deque[_Job]] = {}
        self._ring: Deque[str] = deque()
        self._cond = threading.Condition()

        self._running = False
        self._thread: Optional[threading.Thread] = None
        # у каждого запущенного воркера свой флаг остановки
        self._stop_token: Optional[threading.Event] = None

    # ------------------------------------------------------------------ #
    # ЖИЗНЕННЫЙ ЦИКЛ
    # ------------------------------------------------------------------ #
    def start(self) -> None:
        """
        Запустить рабочий поток. Если прошлый воркер после stop() ещё
        дорабатывает вызов, сначала ждём его: второй воркер параллельно
        не поднимаем.
        """
        with self._cond:
            if self._running:
                return
            prev = self._thread

        if prev is not None and prev.is_alive():
            if prev is threading.current_thread():
                raise RuntimeError("dispatcher is stopping, cannot restart it from its own worker thread")
            log.info("trigger dispatcher: waiting for the previous worker to finish")
            prev.join()

        with self._cond:
            if self._running:
                return
            token = threading.Event()
            self._stop_token = token
            self._running = True
            self._thread = threading.Thread(
                target=self._loop, args=(token,), name="automation-dispatcher", daemon=True
            )
            self._thread.start()
        log.info("trigger dispatcher started")

    def stop(self, *, drain: bool = True, timeout: float = 5.0) -> None:
        """
        drain=True  → доработать всё, что уже в очередях;
        drain=False → отменить ожидающие вызовы (их Future станут cancelled).
        """
        with self._cond:
            self._running = False
            if self._stop_token is not None:
                self._stop_token.set()
            if not drain:
                for q in self._queues.values():
                    for job in q:
                        job.future.cancel()
                self._queues.clear()
                self._ring.clear()
            self._cond.notify_all()
            thread = self._thread

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                # поток оставляем в self._thread: start() дождётся его
                log.warning("trigger dispatcher: worker still busy after %.2fs, it will finish in background", timeout)
        log.info("trigger dispatcher stopped")

    def wait_stopped(self, timeout: Optional[float] = None) -> bool:
        """Дождаться выхода рабочего потока после stop(). True — потока больше нет."""
        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return thread is None
        thread.join(timeout=timeout)
        return not thread.is_alive()

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------ #
    # ТИПЫ ТРИГГЕРОВ
    # ------------------------------------------------------------------ #
    @property
    def known_trigger_types(self) -> Set[str]:
        return set(self._known)

    def register_trigger_type(self, trigger_type: str) -> None:
        trigger_type = str(trigger_type or "").strip()
        if not trigger_type:
            raise ValueError("trigger type must not be empty")
        with self._cond:
            self._known.add(trigger_type)

    # ------------------------------------------------------------------ #
    # ВХОД
    # ------------------------------------------------------------------ #
    def submit(
        self,
        tenant_id: str,
        trigger: Union[str, Trigger],
        context_data: Optional[Mapping[str, Any]] = None,
    ) -> "Future[TriggerResult]":
        """
        Поставить вызов в очередь тенанта и сразу вернуть Future.
        Неверный tenant_id/тип триггера → UnknownTriggerError сразу,
        до постановки в очередь.
        """
        trig = self._make_trigger(tenant_id, trigger, context_data)

        self.start()

        fut: Future = Future()
        with self._cond:
            q = self._queues.get(tenant_id)
            if q is None:
                q = self._queues[tenant_id] = deque()
                self._ring.append(tenant_id)
            q.append(_Job(tenant_id=tenant_id, trigger=trig, future=fut))
            depth = len(q)
            self._cond.notify_all()

        log.debug("trigger %s queued for tenant %s (tenant queue depth=%d)", trig.type, tenant_id, depth)
        return fut

    def process_trigger(
        self,
        tenant_id: str,
        trigger: Union[str, Trigger],
        context_data: Optional[Mapping[str, Any]] = None,
        *,
        timeout: Optional[float] = None,
    ) -> TriggerResult:
        """
        Поставить в очередь и дождаться окончания вызова.
        Наружу: RuleLoadError (правила не загрузились) или UnknownTriggerError.
        """
        if self._thread is not None and threading.current_thread() is self._thread:
            raise RuntimeError("process_trigger() called from the dispatcher thread, use submit()")
        return self.submit(tenant_id, trigger, context_data).result(timeout=timeout)

    def queue_depth(self, tenant_id: Optional[str] = None) -> int:
        with self._cond:
            if tenant_id is not None:
                return len(self._queues.get(tenant_id, ()))
            return sum(len(q) for q in self._queues.values())

    # ------------------------------------------------------------------ #
    # Удобные обёртки для типовых событий
    # ------------------------------------------------------------------ #
    def trigger_client_added(self, tenant_id: str, client: Mapping[str, Any]) -> TriggerResult:
        return self.process_trigger(tenant_id, TriggerType.CLIENT_ADDED.value, {"client": client})

    def trigger_client_updated(
        self,
        tenant_id: str,
        client: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> TriggerResult:
        return self.process_trigger(
            tenant_id, TriggerType.CLIENT_UPDATED.value, {"client": client, "changes": changes}
        )

    def trigger_client_contacted(
        self,
        tenant_id: str,
        client: Mapping[str, Any],
        contact_method: str,
    ) -> TriggerResult:
        return self.process_trigger(
            tenant_id, TriggerType.CLIENT_CONTACTED.value, {"client": client, "contactMethod": contact_method}
        )

    def trigger_case_created(self, tenant_id: str, case: Mapping[str, Any]) -> TriggerResult:
        return self.process_trigger(tenant_id, TriggerType.CASE_CREATED.value, {"case": case})

    def trigger_document_uploaded(self, tenant_id: str, document: Mapping[str, Any]) -> TriggerResult:
        return self.process_trigger(tenant_id, TriggerType.DOCUMENT_UPLOADED.value, {"document": document})

    def trigger_time_entry_added(self, tenant_id: str, time_entry: Mapping[str, Any]) -> TriggerResult:
        return self.process_trigger(tenant_id, TriggerType.TIME_ENTRY_ADDED.value, {"timeEntry": time_entry})

    # ------------------------------------------------------------------ #
    # ВНУТРЕННЕЕ
    # ------------------------------------------------------------------ #
    def _make_trigger(
        self,
        tenant_id: str,
        trigger: Union[str, Trigger],
        context_data: Optional[Mapping[str, Any]],
    ) -> Trigger:
        if not isinstance(tenant_id, str) or not tenant_id.strip():
            raise UnknownTriggerError("tenant_id is required")

        if isinstance(trigger, Trigger):
            ttype = trigger.type
            ctx = context_data if context_data is not None else trigger.context_data
        else:
            ttype = trigger
            ctx = context_data

        ttype = str(ttype or "").strip()
        if ttype not in self._known:
            raise UnknownTriggerError(f"unknown trigger type: {ttype!r}")

        return Trigger(type=ttype, context_data=dict(ctx or {}))

    def _loop(self, stop_token: threading.Event) -> None:
        while True:
            with self._cond:
                while not stop_token.is_set() and not self._ring:
                    self._cond.wait()
                if not self._ring:
                    # остановлены и всё доработано
                    return
                job = self._pop_next_unlocked()
            self._run_job(job)

    def _pop_next_unlocked(self) -> _Job:
        tenant_id = self._ring.popleft()
        q = self._queues[tenant_id]
        job = q.popleft()
        if q:
            self._ring.append(tenant_id)
        else:
            del self._queues[tenant_id]
        return job

    def _run_job(self, job: _Job) -> None:
        if not job.future.set_running_or_notify_cancel():
            return

        waited = (datetime.now(timezone.utc) - job.enqueued_at).total_seconds()
        if waited > 1.0:
            log.debug("trigger %s for tenant %s waited %.2fs in queue", job.trigger.type, job.tenant_id, waited)

        try:
            res = self._engine.run_trigger(job.tenant_id, job.trigger)
        except RuleLoadError as exc:
            job.future.set_exception(exc)
        except Exception as exc:  # noqa: BLE001
            log.exception("trigger %s for tenant %s crashed", job.trigger.type, job.tenant_id)
            job.future.set_exception(exc)
        else:
            job.future.set_result(res)
