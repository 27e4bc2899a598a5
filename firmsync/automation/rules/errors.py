# firmsync/automation/rules/errors.py
"""
Ошибки движка автоматизации.

Наружу (в хост-приложение) уходят только RuleLoadError и
UnknownTriggerError; всё, что связано с действиями, ловится внутри
движка и попадает только в лог и журнал.
"""
from __future__ import annotations


class AutomationError(Exception):
    """Базовая ошибка движка."""


class RuleLoadError(AutomationError):
    """Не удалось загрузить правила тенанта (gateway недоступен, битая строка)."""

    def __init__(self, tenant_id: str, trigger_type: str, reason: str) -> None:
        super().__init__(f"rules load failed for tenant={tenant_id} trigger={trigger_type}: {reason}")
        self.tenant_id = tenant_id
        self.trigger_type = trigger_type


class UnknownTriggerError(AutomationError, ValueError):
    """Пустой tenant_id или неизвестный тип триггера."""


class ActionError(AutomationError):
    """Ошибка исполнения одного действия."""


class FieldUpdateRejected(ActionError):
    """Запись вне разрешённых таблиц/полей тенанта или в несуществующую запись."""


class WebhookError(ActionError):
    def __init__(self, url: str, status_code: int, reason: str = "") -> None:
        super().__init__(f"webhook {url} failed: {status_code} {reason}".rstrip())
        self.url = url
        self.status_code = status_code


class ActionTimeoutError(ActionError):
    """Внешний вызов не уложился в call_timeout_s."""
