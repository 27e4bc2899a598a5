# firmsync/automation/rules/__init__.py
"""
Движок автоматизации FirmSync (If-This-Then-That для юрфирм).

Состав:
  - types.py        → триггеры, условия, действия, правила, аудит
  - errors.py       → ошибки движка
  - evaluator.py    → проверка условий
  - actions.py      → исполнители действий
  - scheduler.py    → отложенные действия (delay_minutes)
  - engine.py       → один прогон триггера: правила → условия → действия → аудит
  - dispatcher.py   → сериализация вызовов (очередь на тенанта, один поток)
  - storage.py      → интерфейсы шлюза данных и журнала
  - repositories.py → in-memory реализации
"""
from .engine import RuleEngine
from .actions import ActionExecutor
from .dispatcher import TriggerDispatcher
from .evaluator import ConditionEvaluator
from .scheduler import DelayedActionScheduler
from .storage import ActionLogStorage, TenantDataGateway
from .errors import (
    ActionError,
    AutomationError,
    RuleLoadError,
    UnknownTriggerError,
)

__all__ = [
    "RuleEngine",
    "ActionExecutor",
    "TriggerDispatcher",
    "ConditionEvaluator",
    "DelayedActionScheduler",
    "TenantDataGateway",
    "ActionLogStorage",
    "AutomationError",
    "ActionError",
    "RuleLoadError",
    "UnknownTriggerError",
]
