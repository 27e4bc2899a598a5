# firmsync/automation/rules/evaluator.py
from __future__ import annotations

import json
import math
from typing import Any, Iterable, Mapping

from .types import Condition, ConditionOperator, LogicalOperator


class _Missing:
    """Маркер «поля нет в контексте» (отличаем от явного None)."""

    def __repr__(self) -> str:
        return "<missing>"


MISSING = _Missing()


def resolve_path(path: str, data: Any) -> Any:
    """
    Достаёт значение по dot-пути ("client.address.city").
    Никогда не бросает: если какого-то сегмента нет — вернёт MISSING.
    """
    if not isinstance(path, str) or not path:
        return MISSING

    cur = data
    for key in path.split("."):
        if isinstance(cur, Mapping) and key in cur:
            cur = cur[key]
        else:
            return MISSING
    return cur


def is_empty_value(value: Any) -> bool:
    # 0 и False — НЕ пустые
    return value is MISSING or value is None or value == ""


def to_number(value: Any) -> float:
    """
    Числовое приведение: None и пустая строка считаются нулём,
    отсутствующее поле (MISSING) и всё, что не разобралось, — NaN.
    """
    if value is None:
        return 0.0
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return 0.0
        try:
            return float(s)
        except ValueError:
            return math.nan
    return math.nan


def to_text(value: Any) -> str:
    """Строковое приведение для contains."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(to_text(v) for v in value)
    if isinstance(value, Mapping):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def strict_equals(left: Any, right: Any) -> bool:
    """Равенство без неявных приведений: "1" != 1, True != 1."""
    if left is MISSING or right is MISSING:
        return False
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right
    numeric = (int, float)
    if isinstance(left, numeric) and isinstance(right, numeric):
        return left == right
    if type(left) is not type(right):
        return False
    return left == right


class ConditionEvaluator:
    """
    Проверяет условия правила.
    Получает:
      - список условий правила (в порядке объявления)
      - контекст триггера (произвольное дерево dict/list/скаляров)
    Возвращает: bool (совпало/нет)

    Комбинация строго слева направо, без скобок и приоритетов:
    logical_operator условия i применяется при объединении с условием i+1.
    "A OR B AND C" считается как ((A OR B) AND C).

    contains по отсутствующему полю или None всегда False, даже для
    пустой подстроки: "null" и "undefined" как текст не сравниваем.
    """

    def evaluate_all(self, conditions: Iterable[Condition], context: Mapping[str, Any]) -> bool:
        result = True
        combinator = LogicalOperator.AND

        for cond in conditions:
            ok = self.evaluate(cond, context)
            if combinator == LogicalOperator.AND:
                result = result and ok
            else:
                result = result or ok
            combinator = cond.logical_operator or LogicalOperator.AND

        return result

    # ------------------------------------------------------------------
    def evaluate(self, cond: Condition, context: Mapping[str, Any]) -> bool:
        """
        Проверка одного условия. Любая аномалия (битый путь, несравнимые
        типы) — это False, а не исключение.
        """
        val = resolve_path(cond.field, context)

        try:
            if cond.operator == ConditionOperator.EQUALS:
                return strict_equals(val, cond.value)
            elif cond.operator == ConditionOperator.CONTAINS:
                if val is MISSING or val is None:
                    return False
                return to_text(cond.value).lower() in to_text(val).lower()
            elif cond.operator == ConditionOperator.GREATER_THAN:
                # NaN > x всегда False
                return to_number(val) > to_number(cond.value)
            elif cond.operator == ConditionOperator.LESS_THAN:
                return to_number(val) < to_number(cond.value)
            elif cond.operator == ConditionOperator.NOT_EMPTY:
                return not is_empty_value(val)
            elif cond.operator == ConditionOperator.IS_EMPTY:
                return is_empty_value(val)
            else:
                return False
        except Exception:
            # если сравнение не удалось — условие ложь
            return False
