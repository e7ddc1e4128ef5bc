"""Admission engine: phases, upper bounds, traces and the decision itself."""
from __future__ import annotations

from aumos_causal_governance.engine.consumption import is_consumed, merge, prune
from aumos_causal_governance.engine.decision import (
    AdmissionDecider,
    AdmissionRequest,
    Decision,
    DecisionBasis,
    ExternalRequest,
)
from aumos_causal_governance.engine.phase import PhaseClassifier
from aumos_causal_governance.engine.resolver import PolicyResolver, Resolution, UpperBound
from aumos_causal_governance.engine.trace import TraceBuilder, select_justification
from aumos_causal_governance.engine.upgrade import (
    UpgradeMatch,
    UpgradeMatcher,
    hash_fingerprint,
    user_agent_fingerprint,
)

__all__ = [
    "AdmissionDecider",
    "AdmissionRequest",
    "Decision",
    "DecisionBasis",
    "ExternalRequest",
    "PhaseClassifier",
    "PolicyResolver",
    "Resolution",
    "TraceBuilder",
    "UpgradeMatch",
    "UpgradeMatcher",
    "UpperBound",
    "hash_fingerprint",
    "is_consumed",
    "merge",
    "prune",
    "select_justification",
    "user_agent_fingerprint",
]
