"""Lifecycle phase classification.

Deleting takes priority whenever ``metadata.deletionTimestamp`` is set.
Otherwise the policy's ``initializing.when`` predicate decides between
Initializing and SteadyState; without a predicate an object initialises
until ``status.observedGeneration`` is set.  A predicate that fails to
evaluate yields SteadyState, the more restrictive phase.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping

from aumos_causal_governance.model.objects import ObjectRef, Phase
from aumos_causal_governance.policies.predicates import PredicateEvaluator
from aumos_causal_governance.policies.schema import AllowancePolicy

logger = logging.getLogger(__name__)


class PhaseClassifier:
    """Determines the lifecycle phase of an object.

    Parameters
    ----------
    evaluator:
        Evaluator for ``initializing.when`` predicates.
    """

    def __init__(self, evaluator: PredicateEvaluator) -> None:
        self._evaluator = evaluator

    def classify(
        self,
        obj: Mapping[str, object],
        policy: AllowancePolicy | None = None,
        old_obj: Mapping[str, object] | None = None,
        warnings: list[str] | None = None,
    ) -> Phase:
        """Return the phase of *obj*.

        Parameters
        ----------
        obj:
            The object to classify.
        policy:
            The object's policy; supplies the ``initializing.when`` predicate.
        old_obj:
            Prior version, passed through to the predicate.
        warnings:
            Optional list that receives a message when the predicate fails.
        """
        ref = ObjectRef.from_object(obj)
        if ref.deleting:
            return Phase.DELETING

        if policy is None or policy.initializing.when is None:
            return Phase.INITIALIZING if ref.observed_generation is None else Phase.STEADY_STATE

        try:
            initializing = self._evaluator.evaluate(policy.initializing.when, obj, old_obj)
        except Exception as exc:  # injected evaluators may raise anything
            message = (
                f"initializing.when of policy {policy.name!r} failed for "
                f"{ref.describe()}: {exc}; treating as SteadyState"
            )
            logger.warning(message)
            if warnings is not None:
                warnings.append(message)
            return Phase.STEADY_STATE
        return Phase.INITIALIZING if initializing else Phase.STEADY_STATE
