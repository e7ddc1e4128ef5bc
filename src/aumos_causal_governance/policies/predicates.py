"""Predicate evaluation for rule conditions and ``initializing.when``.

The admission engine treats predicate evaluation as an external capability:
anything implementing :class:`PredicateEvaluator` can be injected.  A failing
evaluation raises :class:`PredicateEvaluationError`; the engine fails closed
on it (a condition counts as false, ``when`` as not initialising).

The built-in :class:`ConditionEvaluator` understands structured conditions::

    {"field": "spec.paused", "operator": "equals", "value": false}
    {"field": "old.spec.replicas", "operator": "is_not_null"}
    {"all": [cond, ...]}  {"any": [cond, ...]}  {"not": cond}

Field paths follow the path grammar; an ``old.`` prefix reads the prior
version of the object, an optional ``object.`` prefix reads the new one.

Example
-------
>>> evaluator = ConditionEvaluator()
>>> evaluator.evaluate(
...     {"field": "spec.replicas", "operator": "greater_than", "value": 3},
...     {"spec": {"replicas": 5}},
...     None,
... )
True
"""
from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any, Protocol

from aumos_causal_governance.errors import PathSyntaxError, PredicateEvaluationError
from aumos_causal_governance.paths.diff import read_path


class PredicateEvaluator(Protocol):
    """Boolean predicate over an object and its prior version."""

    def evaluate(
        self,
        expression: Any,
        obj: Mapping[str, object],
        old_obj: Mapping[str, object] | None,
    ) -> bool:
        ...


class ConditionEvaluator:
    """Evaluates structured condition expressions against object versions.

    Unlike a lenient rule matcher, every malformed input raises
    :class:`PredicateEvaluationError` so the caller can fail closed and
    surface the problem.
    """

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def evaluate(
        self,
        expression: Any,
        obj: Mapping[str, object],
        old_obj: Mapping[str, object] | None,
    ) -> bool:
        """Evaluate *expression*.

        Parameters
        ----------
        expression:
            A condition mapping or an ``all`` / ``any`` / ``not`` combinator.
        obj:
            The new version of the object.
        old_obj:
            The prior version, or ``None`` on create.

        Raises
        ------
        PredicateEvaluationError
            When the expression is malformed or uses an unknown operator.
        """
        if isinstance(expression, bool):
            return expression
        if not isinstance(expression, Mapping):
            raise PredicateEvaluationError(
                f"Unsupported predicate expression {expression!r}"
            )

        if "all" in expression:
            return all(self.evaluate(e, obj, old_obj) for e in _as_list(expression["all"]))
        if "any" in expression:
            return any(self.evaluate(e, obj, old_obj) for e in _as_list(expression["any"]))
        if "not" in expression:
            return not self.evaluate(expression["not"], obj, old_obj)
        return self._eval_condition(expression, obj, old_obj)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _eval_condition(
        self,
        condition: Mapping[str, Any],
        obj: Mapping[str, object],
        old_obj: Mapping[str, object] | None,
    ) -> bool:
        field_path = condition.get("field")
        if not isinstance(field_path, str) or not field_path:
            raise PredicateEvaluationError(f"Condition without a field: {dict(condition)!r}")
        operator = str(condition.get("operator", "equals"))
        expected = condition.get("value")

        if operator == "changed":
            path = field_path.removeprefix("object.").removeprefix("old.")
            return self._resolve(path, obj, old_obj) != self._resolve(f"old.{path}", obj, old_obj)
        return self._apply(operator, self._resolve(field_path, obj, old_obj), expected)

    def _resolve(
        self,
        field_path: str,
        obj: Mapping[str, object],
        old_obj: Mapping[str, object] | None,
    ) -> object:
        source: Mapping[str, object] | None = obj
        if field_path.startswith("old."):
            source, field_path = old_obj, field_path[len("old."):]
        elif field_path.startswith("object."):
            field_path = field_path[len("object."):]
        if source is None:
            return None
        try:
            return read_path(source, field_path)
        except (PathSyntaxError, ValueError) as exc:
            raise PredicateEvaluationError(str(exc)) from exc

    def _apply(self, operator: str, actual: object, expected: object) -> bool:
        match operator:
            case "equals":
                return actual == expected
            case "not_equals":
                return actual != expected
            case "starts_with":
                return (
                    isinstance(actual, str)
                    and isinstance(expected, str)
                    and actual.startswith(expected)
                )
            case "contains":
                if isinstance(actual, str) and isinstance(expected, str):
                    return expected in actual
                if isinstance(actual, (list, tuple, set)) and expected is not None:
                    return expected in actual
                return False
            case "greater_than":
                return _compare(actual, expected, lambda a, b: a > b)
            case "less_than":
                return _compare(actual, expected, lambda a, b: a < b)
            case "greater_than_or_equal":
                return _compare(actual, expected, lambda a, b: a >= b)
            case "less_than_or_equal":
                return _compare(actual, expected, lambda a, b: a <= b)
            case "matches":
                if not isinstance(actual, str) or not isinstance(expected, str):
                    return False
                try:
                    return bool(re.search(expected, actual))
                except re.error as exc:
                    raise PredicateEvaluationError(
                        f"Invalid regex in condition: {expected!r}"
                    ) from exc
            case "in_list":
                if not isinstance(expected, list):
                    raise PredicateEvaluationError("in_list expects a list value")
                return actual in expected
            case "not_in_list":
                if not isinstance(expected, list):
                    raise PredicateEvaluationError("not_in_list expects a list value")
                return actual not in expected
            case "is_null":
                return actual is None
            case "is_not_null":
                return actual is not None
            case _:
                raise PredicateEvaluationError(f"Unknown condition operator: {operator}")


def _compare(actual: object, expected: object, op: Any) -> bool:
    if actual is None:
        return False
    try:
        return bool(op(float(actual), float(expected)))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return False


def _as_list(value: object) -> list[Any]:
    if not isinstance(value, list):
        raise PredicateEvaluationError(f"Combinator expects a list, got {value!r}")
    return value
