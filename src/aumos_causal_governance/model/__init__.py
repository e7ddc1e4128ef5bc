"""Value types shared by the admission engine."""
from __future__ import annotations

from aumos_causal_governance.model.allowance import (
    EXTERNAL_WILDCARD,
    WILDCARD_TARGET,
    Allowance,
    Grant,
    MutationGrant,
    MutationVerb,
    Relation,
    TraceHop,
    external_key,
)
from aumos_causal_governance.model.objects import (
    ObjectRef,
    Operation,
    Phase,
    Subject,
    SubjectKind,
    controller_owner,
    kind_key,
)

__all__ = [
    "EXTERNAL_WILDCARD",
    "WILDCARD_TARGET",
    "Allowance",
    "Grant",
    "MutationGrant",
    "MutationVerb",
    "ObjectRef",
    "Operation",
    "Phase",
    "Relation",
    "Subject",
    "SubjectKind",
    "TraceHop",
    "controller_owner",
    "external_key",
    "kind_key",
]
