"""Field paths: the structural path matcher and the object field diff."""
from __future__ import annotations

from aumos_causal_governance.paths.diff import (
    DEFAULT_IGNORED_PATHS,
    FieldChange,
    MutationVerb,
    diff_objects,
    has_path,
    read_path,
)
from aumos_causal_governance.paths.matcher import (
    FieldPath,
    as_path,
    expand,
    matches,
    overlaps,
)

__all__ = [
    "DEFAULT_IGNORED_PATHS",
    "FieldChange",
    "FieldPath",
    "MutationVerb",
    "as_path",
    "diff_objects",
    "expand",
    "has_path",
    "matches",
    "overlaps",
    "read_path",
]
