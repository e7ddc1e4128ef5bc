"""Tests for ConditionEvaluator (policies/predicates.py)."""
from __future__ import annotations

import pytest

from aumos_causal_governance.errors import PredicateEvaluationError
from aumos_causal_governance.policies.predicates import ConditionEvaluator

_NEW = {"spec": {"replicas": 5, "image": "nginx:1.25", "tags": ["web", "edge"], "paused": False}}
_OLD = {"spec": {"replicas": 3, "image": "nginx:1.25", "tags": ["web"], "paused": False}}


@pytest.fixture()
def evaluator() -> ConditionEvaluator:
    return ConditionEvaluator()


def _cond(field: str, operator: str, value: object = None) -> dict[str, object]:
    return {"field": field, "operator": operator, "value": value}


class TestOperators:
    @pytest.mark.parametrize(
        ("condition", "expected"),
        [
            (_cond("spec.replicas", "equals", 5), True),
            (_cond("spec.replicas", "not_equals", 5), False),
            (_cond("spec.image", "starts_with", "nginx"), True),
            (_cond("spec.image", "contains", "1.25"), True),
            (_cond("spec.tags", "contains", "edge"), True),
            (_cond("spec.replicas", "greater_than", 3), True),
            (_cond("spec.replicas", "less_than", 3), False),
            (_cond("spec.replicas", "greater_than_or_equal", 5), True),
            (_cond("spec.replicas", "less_than_or_equal", 4), False),
            (_cond("spec.image", "matches", r"^nginx:\d"), True),
            (_cond("spec.replicas", "in_list", [1, 5]), True),
            (_cond("spec.replicas", "not_in_list", [1, 5]), False),
            (_cond("spec.missing", "is_null"), True),
            (_cond("spec.paused", "is_not_null"), True),
        ],
    )
    def test_operator(
        self, evaluator: ConditionEvaluator, condition: dict[str, object], expected: bool
    ) -> None:
        assert evaluator.evaluate(condition, _NEW, _OLD) is expected

    def test_operator_defaults_to_equals(self, evaluator: ConditionEvaluator) -> None:
        assert evaluator.evaluate({"field": "spec.paused", "value": False}, _NEW, _OLD)

    def test_numeric_comparison_with_missing_field(self, evaluator: ConditionEvaluator) -> None:
        assert not evaluator.evaluate(_cond("spec.absent", "greater_than", 0), _NEW, _OLD)


class TestObjectVersions:
    def test_old_prefix_reads_prior_version(self, evaluator: ConditionEvaluator) -> None:
        assert evaluator.evaluate(_cond("old.spec.replicas", "equals", 3), _NEW, _OLD)

    def test_object_prefix_reads_new_version(self, evaluator: ConditionEvaluator) -> None:
        assert evaluator.evaluate(_cond("object.spec.replicas", "equals", 5), _NEW, _OLD)

    def test_old_is_null_on_create(self, evaluator: ConditionEvaluator) -> None:
        assert evaluator.evaluate(_cond("old.spec.replicas", "is_null"), _NEW, None)

    def test_changed(self, evaluator: ConditionEvaluator) -> None:
        assert evaluator.evaluate({"field": "spec.replicas", "operator": "changed"}, _NEW, _OLD)
        assert not evaluator.evaluate({"field": "spec.image", "operator": "changed"}, _NEW, _OLD)


class TestCombinators:
    def test_all(self, evaluator: ConditionEvaluator) -> None:
        expression = {
            "all": [_cond("spec.replicas", "equals", 5), _cond("spec.paused", "equals", False)]
        }
        assert evaluator.evaluate(expression, _NEW, _OLD)

    def test_any(self, evaluator: ConditionEvaluator) -> None:
        expression = {
            "any": [_cond("spec.replicas", "equals", 1), _cond("spec.paused", "equals", False)]
        }
        assert evaluator.evaluate(expression, _NEW, _OLD)

    def test_not(self, evaluator: ConditionEvaluator) -> None:
        assert evaluator.evaluate({"not": _cond("spec.replicas", "equals", 1)}, _NEW, _OLD)

    def test_boolean_literal(self, evaluator: ConditionEvaluator) -> None:
        assert evaluator.evaluate(True, _NEW, _OLD) is True
        assert evaluator.evaluate(False, _NEW, _OLD) is False


class TestMalformedExpressions:
    @pytest.mark.parametrize(
        "expression",
        [
            "spec.replicas > 3",
            {"operator": "equals", "value": 1},
            _cond("spec.replicas", "between", [1, 9]),
            _cond("spec.image", "matches", "(unclosed"),
            _cond("spec.replicas", "in_list", 5),
            _cond("spec.tags[*]", "equals", "x"),
            {"all": "not-a-list"},
        ],
    )
    def test_raises(self, evaluator: ConditionEvaluator, expression: object) -> None:
        with pytest.raises(PredicateEvaluationError):
            evaluator.evaluate(expression, _NEW, _OLD)
