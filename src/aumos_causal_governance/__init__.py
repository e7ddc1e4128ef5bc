"""aumos-causal-governance: causal admission control for controller hierarchies.

Every mutation a controller makes must be justified by an allowance its
parent carries, all the way back to an authorised initiator.  The engine
decides; callers persist the allowances it returns.

Public API
----------
The stable public surface is everything exported from this module.
Anything inside submodules not re-exported here is considered private
and may change without notice.

Example
-------
>>> import aumos_causal_governance as cg
>>> cg.__version__
'0.1.0'
>>> governor = cg.CausalGovernor()
>>> governor.registry.policies
[]
"""
from __future__ import annotations

__version__: str = "0.1.0"

from aumos_causal_governance.convenience import CausalGovernor

# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------
from aumos_causal_governance.model import (
    Allowance,
    Grant,
    MutationGrant,
    MutationVerb,
    ObjectRef,
    Operation,
    Phase,
    Relation,
    Subject,
    SubjectKind,
    TraceHop,
)

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------
from aumos_causal_governance.paths import FieldChange, FieldPath, diff_objects, matches

# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------
from aumos_causal_governance.policies import (
    AllowancePolicy,
    ConditionEvaluator,
    PolicyLoader,
    PolicyRegistry,
    PredicateEvaluator,
    UpgradeAllowance,
)

# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------
from aumos_causal_governance.engine import (
    AdmissionDecider,
    AdmissionRequest,
    Decision,
    DecisionBasis,
    ExternalRequest,
    UpperBound,
    hash_fingerprint,
    user_agent_fingerprint,
)

# ---------------------------------------------------------------------------
# Storage, audit and configuration
# ---------------------------------------------------------------------------
from aumos_causal_governance.storage import AllowanceCodec, InMemoryObjectStore, ParentRecord
from aumos_causal_governance.audit import AuditLogger
from aumos_causal_governance.config import ConfigLoader, EngineConfig

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
from aumos_causal_governance.errors import (
    CausalGovernanceError,
    ConfigError,
    ConflictError,
    MalformedAllowanceError,
    PathSyntaxError,
    PolicyConfigError,
    PredicateEvaluationError,
)

__all__ = [
    "__version__",
    "AdmissionDecider",
    "AdmissionRequest",
    "Allowance",
    "AllowanceCodec",
    "AllowancePolicy",
    "AuditLogger",
    "CausalGovernanceError",
    "CausalGovernor",
    "ConditionEvaluator",
    "ConfigError",
    "ConfigLoader",
    "ConflictError",
    "Decision",
    "DecisionBasis",
    "EngineConfig",
    "ExternalRequest",
    "FieldChange",
    "FieldPath",
    "Grant",
    "InMemoryObjectStore",
    "MalformedAllowanceError",
    "MutationGrant",
    "MutationVerb",
    "ObjectRef",
    "Operation",
    "ParentRecord",
    "PathSyntaxError",
    "Phase",
    "PolicyConfigError",
    "PolicyLoader",
    "PolicyRegistry",
    "PredicateEvaluationError",
    "PredicateEvaluator",
    "Relation",
    "Subject",
    "SubjectKind",
    "TraceHop",
    "UpgradeAllowance",
    "UpperBound",
    "diff_objects",
    "hash_fingerprint",
    "matches",
    "user_agent_fingerprint",
]
