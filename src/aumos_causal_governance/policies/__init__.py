"""Policy documents: schema, predicate evaluation and YAML loading."""
from __future__ import annotations

from aumos_causal_governance.policies.loader import PolicyLoader, PolicyRegistry
from aumos_causal_governance.policies.predicates import (
    ConditionEvaluator,
    PredicateEvaluator,
)
from aumos_causal_governance.policies.schema import (
    AllowancePolicy,
    DeletingSpec,
    InitializingSpec,
    MutationRule,
    PolicyEntry,
    Rule,
    SubjectSpec,
    TargetRef,
    UpgradeAllowance,
)

__all__ = [
    "AllowancePolicy",
    "ConditionEvaluator",
    "DeletingSpec",
    "InitializingSpec",
    "MutationRule",
    "PolicyEntry",
    "PolicyLoader",
    "PolicyRegistry",
    "PredicateEvaluator",
    "Rule",
    "SubjectSpec",
    "TargetRef",
    "UpgradeAllowance",
]
