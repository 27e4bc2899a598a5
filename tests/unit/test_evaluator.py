"""Unit tests for the condition evaluator."""

import math

import pytest

from firmsync.automation.rules.evaluator import (
    MISSING,
    ConditionEvaluator,
    resolve_path,
    to_number,
)
from firmsync.automation.rules.types import Condition, ConditionOperator, LogicalOperator


@pytest.fixture
def evaluator():
    return ConditionEvaluator()


def _cond(field, op, value=None, logical="AND"):
    return Condition(
        field=field,
        operator=ConditionOperator(op),
        value=value,
        logical_operator=LogicalOperator(logical),
    )


def test_resolve_path_walks_nested_objects():
    ctx = {"client": {"address": {"city": "Boston"}}}
    assert resolve_path("client.address.city", ctx) == "Boston"


def test_resolve_path_never_raises_on_missing_or_scalar_segments():
    ctx = {"client": {"name": "Acme"}}
    assert resolve_path("client.address.city", ctx) is MISSING
    assert resolve_path("client.name.first", ctx) is MISSING
    assert resolve_path("", ctx) is MISSING
    assert resolve_path("client", None) is MISSING


def test_resolve_path_keeps_explicit_none_distinct_from_missing():
    assert resolve_path("client.email", {"client": {"email": None}}) is None


def test_empty_condition_list_matches(evaluator):
    assert evaluator.evaluate_all([], {"anything": 1}) is True


@pytest.mark.parametrize(
    "ctx",
    [
        {"client": {"email": ""}},
        {"client": {"email": None}},
        {"client": {}},
        {},
    ],
)
def test_not_empty_is_false_for_empty_null_and_absent(evaluator, ctx):
    assert evaluator.evaluate(_cond("client.email", "not_empty"), ctx) is False
    assert evaluator.evaluate(_cond("client.email", "is_empty"), ctx) is True


@pytest.mark.parametrize("value", ["x", 0, False, [], {"a": 1}, " "])
def test_not_empty_is_true_for_any_other_value(evaluator, value):
    ctx = {"client": {"email": value}}
    assert evaluator.evaluate(_cond("client.email", "not_empty"), ctx) is True
    assert evaluator.evaluate(_cond("client.email", "is_empty"), ctx) is False


def test_equals_is_case_sensitive_and_strict(evaluator):
    ctx = {"client": {"status": "VIP", "count": 1, "flag": True}}
    assert evaluator.evaluate(_cond("client.status", "equals", "VIP"), ctx) is True
    assert evaluator.evaluate(_cond("client.status", "equals", "vip"), ctx) is False
    assert evaluator.evaluate(_cond("client.count", "equals", "1"), ctx) is False
    assert evaluator.evaluate(_cond("client.count", "equals", 1.0), ctx) is True
    assert evaluator.evaluate(_cond("client.flag", "equals", 1), ctx) is False
    assert evaluator.evaluate(_cond("client.flag", "equals", True), ctx) is True


def test_equals_on_missing_field_is_false_even_against_none(evaluator):
    assert evaluator.evaluate(_cond("client.status", "equals", None), {}) is False
    assert evaluator.evaluate(_cond("client.status", "equals", None), {"client": {"status": None}}) is True


def test_contains_is_case_insensitive(evaluator):
    ctx = {"client": {"notes": "Referred by Jane DOE"}}
    assert evaluator.evaluate(_cond("client.notes", "contains", "jane doe"), ctx) is True
    assert evaluator.evaluate(_cond("client.notes", "contains", "smith"), ctx) is False


def test_contains_on_missing_or_null_field_is_false(evaluator):
    assert evaluator.evaluate(_cond("client.notes", "contains", "x"), {}) is False
    assert evaluator.evaluate(_cond("client.notes", "contains", "x"), {"client": {"notes": None}}) is False
    assert evaluator.evaluate(_cond("client.notes", "contains", ""), {}) is False
    assert evaluator.evaluate(_cond("client.notes", "contains", ""), {"client": {"notes": None}}) is False
    assert evaluator.evaluate(_cond("client.notes", "contains", ""), {"client": {"notes": ""}}) is True


def test_contains_coerces_non_strings(evaluator):
    ctx = {"client": {"tags": ["Litigation", "Family"], "zip": 2110}}
    assert evaluator.evaluate(_cond("client.tags", "contains", "family"), ctx) is True
    assert evaluator.evaluate(_cond("client.zip", "contains", "211"), ctx) is True


def test_numeric_comparisons_coerce_strings(evaluator):
    ctx = {"case": {"amount": "1500.50"}}
    assert evaluator.evaluate(_cond("case.amount", "greater_than", 1000), ctx) is True
    assert evaluator.evaluate(_cond("case.amount", "less_than", "2000"), ctx) is True
    assert evaluator.evaluate(_cond("case.amount", "less_than", 1000), ctx) is False


@pytest.mark.parametrize("raw", ["abc", "12abc", {"a": 1}, [1]])
def test_numeric_comparisons_with_non_numeric_values_are_false(evaluator, raw):
    ctx = {"case": {"amount": raw}}
    assert evaluator.evaluate(_cond("case.amount", "greater_than", 0), ctx) is False
    assert evaluator.evaluate(_cond("case.amount", "less_than", 0), ctx) is False


def test_numeric_comparison_on_missing_field_is_false(evaluator):
    assert evaluator.evaluate(_cond("case.amount", "greater_than", -1), {}) is False
    assert evaluator.evaluate(_cond("case.amount", "less_than", 100), {}) is False


@pytest.mark.parametrize("raw", [None, "", "   "])
def test_null_and_blank_values_compare_as_zero(evaluator, raw):
    ctx = {"case": {"amount": raw}}
    assert evaluator.evaluate(_cond("case.amount", "less_than", 100), ctx) is True
    assert evaluator.evaluate(_cond("case.amount", "greater_than", -1), ctx) is True
    assert evaluator.evaluate(_cond("case.amount", "greater_than", 0), ctx) is False
    assert evaluator.evaluate(_cond("case.amount", "greater_than", None), {"case": {"amount": 5}}) is True


def test_to_number_handles_booleans_and_blank_strings():
    assert to_number(True) == 1.0
    assert to_number(" 42 ") == 42.0
    assert to_number("   ") == 0.0
    assert to_number(None) == 0.0
    assert to_number(False) == 0.0
    assert math.isnan(to_number(MISSING))
    assert math.isnan(to_number("n/a"))


def test_or_then_and_combinator_left_to_right(evaluator):
    conds = [
        _cond("status", "equals", "vip", logical="OR"),
        _cond("amount", "greater_than", 1000),
    ]
    assert evaluator.evaluate_all(conds, {"status": "vip", "amount": 50}) is True
    assert evaluator.evaluate_all(conds, {"status": "standard", "amount": 50}) is False
    assert evaluator.evaluate_all(conds, {"status": "standard", "amount": 5000}) is True


def test_combinator_has_no_precedence(evaluator):
    # A OR B AND C  →  (A OR B) AND C
    conds = [
        _cond("a", "equals", 1, logical="OR"),
        _cond("b", "equals", 1, logical="AND"),
        _cond("c", "equals", 1),
    ]
    assert evaluator.evaluate_all(conds, {"a": 1, "b": 0, "c": 0}) is False
    assert evaluator.evaluate_all(conds, {"a": 1, "b": 0, "c": 1}) is True


def test_last_condition_logical_operator_is_ignored(evaluator):
    conds = [_cond("a", "equals", 1, logical="OR")]
    assert evaluator.evaluate_all(conds, {"a": 2}) is False
