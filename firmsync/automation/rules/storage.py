# firmsync/automation/rules/storage.py
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from .types import (
    ActionLogEntry,
    ExecutionRecord,
    ExecutionStatus,
    Rule,
    ScheduledAction,
    ScheduledActionStatus,
)


# ======================================================================
# 1. ШЛЮЗ ДАННЫХ ТЕНАНТА
# ======================================================================

class TenantDataGateway(ABC):
    """
    Всё, что движок читает и пишет, идёт через этот интерфейс.
    Реализации:
      - in-memory (для тестов и локального запуска)
      - SQLAlchemy (firmsync.db.gateway.SqlTenantGateway)

    Каждый метод обязан работать строго в рамках tenant_id.
    Реализация должна быть безопасной для параллельных append-only записей.
    """

    # --- то, что нужно движку -------------------------------------------

    @abstractmethod
    def load_active_rules(self, tenant_id: str, trigger_type: str) -> List[Rule]:
        """
        Только is_active=True и совпадающий trigger_type.
        Порядок: priority по убыванию, затем created_at по убыванию, затем id.
        """
        raise NotImplementedError

    @abstractmethod
    def create_task(
        self,
        tenant_id: str,
        title: str,
        description: Optional[str],
        assignee: str,
        due_date: datetime,
    ) -> str:
        """Создать задачу, вернуть её id."""
        raise NotImplementedError

    @abstractmethod
    def update_field(self, tenant_id: str, table: str, record_id: str, field: str, value: Any) -> None:
        """Точечная запись поля. Вне разрешённых таблиц/полей → FieldUpdateRejected."""
        raise NotImplementedError

    @abstractmethod
    def append_activity_log(
        self,
        tenant_id: str,
        entity_type: str,
        entity_id: str,
        activity_type: str,
        description: str,
    ) -> None:
        raise NotImplementedError

    @abstractmethod
    def append_execution_record(
        self,
        tenant_id: str,
        rule_id: str,
        trigger_type: str,
        context_snapshot: Dict[str, Any],
        status: ExecutionStatus = ExecutionStatus.SUCCESS,
    ) -> None:
        """Аудит: только добавление."""
        raise NotImplementedError

    # --- отложенные действия --------------------------------------------

    @abstractmethod
    def save_scheduled_action(self, item: ScheduledAction) -> str:
        """Сохранить отложенное действие (status=pending), вернуть id."""
        raise NotImplementedError

    @abstractmethod
    def list_pending_scheduled_actions(self) -> List[ScheduledAction]:
        """Все pending по всем тенантам — для восстановления после рестарта."""
        raise NotImplementedError

    @abstractmethod
    def mark_scheduled_action(
        self,
        action_id: str,
        status: ScheduledActionStatus,
        error: Optional[str] = None,
    ) -> None:
        raise NotImplementedError

    # --- администрирование (хост/API) -----------------------------------

    @abstractmethod
    def save_rule(self, rule: Rule) -> None:
        """Создать или обновить правило."""
        raise NotImplementedError

    @abstractmethod
    def list_rules(self, tenant_id: str) -> List[Rule]:
        """Все правила тенанта (включая неактивные)."""
        raise NotImplementedError

    @abstractmethod
    def delete_rule(self, tenant_id: str, rule_id: str) -> bool:
        """Удалить правило; False, если такого не было."""
        raise NotImplementedError

    @abstractmethod
    def list_execution_records(
        self,
        tenant_id: str,
        limit: int = 100,
        rule_id: Optional[str] = None,
    ) -> List[ExecutionRecord]:
        """Последние записи аудита (новые первыми)."""
        raise NotImplementedError


# ======================================================================
# 2. ХРАНИЛИЩЕ ЖУРНАЛА ДЕЙСТВИЙ
# ======================================================================

class ActionLogStorage(ABC):
    """
    Оперативный журнал выполнения действий.
    Движок складывает туда записи, а API/внешний код — читает.
    """

    @abstractmethod
    def append(self, entry: ActionLogEntry) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_recent(
        self,
        limit: int = 100,
        tenant_id: Optional[str] = None,
        rule_id: Optional[str] = None,
    ) -> List[ActionLogEntry]:
        raise NotImplementedError
