# firmsync/automation/runtime.py
from __future__ import annotations

import logging
import threading
from datetime import timedelta
from pathlib import Path
from typing import Any, List, Mapping, Optional, Tuple

from firmsync.automation.rules.actions import ActionExecutor
from firmsync.automation.rules.dispatcher import TriggerDispatcher
from firmsync.automation.rules.engine import RuleEngine
from firmsync.automation.rules.repositories import InMemoryActionLogStorage
from firmsync.automation.rules.scheduler import DelayedActionScheduler
from firmsync.automation.rules.storage import ActionLogStorage, TenantDataGateway
from firmsync.automation.rules.types import Rule, TriggerResult
from firmsync.automation.rules_loader import load_rules_from_yaml
from firmsync.core.config import Settings, settings as default_settings
from firmsync.services.transports import NotifyTransport, WebhookTransport, build_transports

log = logging.getLogger("automation")

# Глобальные синглтоны
_LOCK = threading.RLock()
_GATEWAY: Optional[TenantDataGateway] = None
_JOURNAL: Optional[ActionLogStorage] = None
_ACTIONS: Optional[ActionExecutor] = None
_SCHEDULER: Optional[DelayedActionScheduler] = None
_ENGINE: Optional[RuleEngine] = None
_DISPATCHER: Optional[TriggerDispatcher] = None
_RULES_FILE: Optional[str] = None
# диспетчер после stop_automation(), чей воркер мог ещё не доработать вызов
_RETIRED: Optional[TriggerDispatcher] = None


def ensure_automation_started(
    *,
    cfg: Optional[Settings] = None,
    gateway: Optional[TenantDataGateway] = None,
    transports: Optional[Tuple[NotifyTransport, NotifyTransport, WebhookTransport]] = None,
    seed_rules: bool = True,
) -> TriggerDispatcher:
    """
    Инициализировать движок автоматизации, если ещё не инициализирован.
    Вызываем один раз на старте приложения (после загрузки config.yaml и init_db()).

    gateway/transports можно подменить (тесты, встраивание в другой хост);
    по умолчанию — SqlTenantGateway и транспорты из секции transports.
    """
    global _GATEWAY, _JOURNAL, _ACTIONS, _SCHEDULER, _ENGINE, _DISPATCHER, _RULES_FILE, _RETIRED

    with _LOCK:
        if _DISPATCHER is not None:
            return _DISPATCHER

        if _RETIRED is not None:
            # новый диспетчер не стартует, пока старый воркер не вышел
            _RETIRED.wait_stopped()
            _RETIRED = None

        cfg = cfg or default_settings

        if gateway is None:
            from firmsync.db.gateway import SqlTenantGateway
            from firmsync.db.session import get_session_factory

            gateway = SqlTenantGateway(get_session_factory())

        email, sms, webhook = transports or build_transports(cfg.transports)

        journal = InMemoryActionLogStorage(max_entries=cfg.journal_size)

        actions = ActionExecutor(
            gateway=gateway,
            email=email,
            sms=sms,
            webhook=webhook,
            write_action_log=journal.append,
            call_timeout_s=cfg.call_timeout_s,
            default_task_due=timedelta(hours=cfg.default_task_due_hours),
        )

        scheduler = DelayedActionScheduler(
            gateway=gateway,
            executor=actions,
            poll_interval_s=cfg.scheduler_poll_s,
        )

        engine = RuleEngine(
            gateway=gateway,
            actions=actions,
            scheduler=scheduler,
        )

        dispatcher = TriggerDispatcher(engine, extra_trigger_types=cfg.extra_trigger_types)

        _GATEWAY = gateway
        _JOURNAL = journal
        _ACTIONS = actions
        _SCHEDULER = scheduler
        _ENGINE = engine
        _DISPATCHER = dispatcher
        _RULES_FILE = cfg.rules_file

        if seed_rules and Path(cfg.rules_file).exists():
            try:
                loaded = load_rules_from_yaml(cfg.rules_file, gateway)
                log.info("seeded %d rule(s) from %s", len(loaded), cfg.rules_file)
            except ValueError as e:
                log.error("rules file %s is invalid, nothing seeded: %s", cfg.rules_file, e)

        scheduler.start()
        dispatcher.start()
        log.info("automation started")
        return dispatcher


def stop_automation() -> None:
    """Остановить потоки и сбросить синглтоны. Pending отложенные действия остаются в хранилище."""
    global _GATEWAY, _JOURNAL, _ACTIONS, _SCHEDULER, _ENGINE, _DISPATCHER, _RULES_FILE, _RETIRED

    with _LOCK:
        if _DISPATCHER is None:
            return
        _RETIRED = _DISPATCHER
        try:
            _DISPATCHER.stop(drain=True)
            _SCHEDULER.stop()
            _ACTIONS.shutdown()
        finally:
            _GATEWAY = _JOURNAL = _ACTIONS = _SCHEDULER = _ENGINE = _DISPATCHER = None
            _RULES_FILE = None
        log.info("automation stopped")


# ─────────────────────────────────────────────────────────────────────────────
# Доступ к синглтонам
# ─────────────────────────────────────────────────────────────────────────────

def engine_instance() -> Optional[RuleEngine]:
    """Вернёт текущий инстанс RuleEngine (или None, если не инициализирован)."""
    return _ENGINE


def dispatcher_instance() -> Optional[TriggerDispatcher]:
    return _DISPATCHER


def scheduler_instance() -> Optional[DelayedActionScheduler]:
    return _SCHEDULER


def gateway_instance() -> Optional[TenantDataGateway]:
    """Шлюз данных тенанта, если автоматика инициализирована."""
    return _GATEWAY


def action_journal() -> Optional[ActionLogStorage]:
    return _JOURNAL


def _require_dispatcher() -> TriggerDispatcher:
    d = _DISPATCHER
    if d is None:
        raise RuntimeError("automation is not started, call ensure_automation_started() first")
    return d


def reload_rules(path: Optional[str] = None) -> List[Rule]:
    """Перечитать YAML с правилами в шлюз (правила тенантов из файла заменяются)."""
    gw = _GATEWAY
    if gw is None:
        raise RuntimeError("automation is not started, call ensure_automation_started() first")
    return load_rules_from_yaml(path or _RULES_FILE or default_settings.rules_file, gw)


# ─────────────────────────────────────────────────────────────────────────────
# Внешняя точка входа
# ─────────────────────────────────────────────────────────────────────────────

def process_trigger(
    tenant_id: str,
    trigger_type: str,
    context_data: Optional[Mapping[str, Any]] = None,
) -> TriggerResult:
    """
    «У тенанта tenant_id произошло событие trigger_type».
    Возвращает после того, как все немедленные действия выполнены,
    а отложенные — поставлены в очередь.
    """
    return _require_dispatcher().process_trigger(tenant_id, trigger_type, context_data)


def trigger_client_added(tenant_id: str, client: Mapping[str, Any]) -> TriggerResult:
    return _require_dispatcher().trigger_client_added(tenant_id, client)


def trigger_client_updated(
    tenant_id: str,
    client: Mapping[str, Any],
    changes: Mapping[str, Any],
) -> TriggerResult:
    return _require_dispatcher().trigger_client_updated(tenant_id, client, changes)


def trigger_client_contacted(tenant_id: str, client: Mapping[str, Any], contact_method: str) -> TriggerResult:
    return _require_dispatcher().trigger_client_contacted(tenant_id, client, contact_method)


def trigger_case_created(tenant_id: str, case: Mapping[str, Any]) -> TriggerResult:
    return _require_dispatcher().trigger_case_created(tenant_id, case)


def trigger_document_uploaded(tenant_id: str, document: Mapping[str, Any]) -> TriggerResult:
    return _require_dispatcher().trigger_document_uploaded(tenant_id, document)


def trigger_time_entry_added(tenant_id: str, time_entry: Mapping[str, Any]) -> TriggerResult:
    return _require_dispatcher().trigger_time_entry_added(tenant_id, time_entry)
