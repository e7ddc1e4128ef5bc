"""Allowances, grants and causal trace hops.

An :class:`Allowance` is attached to an object when a mutation of that object
is accepted.  It grants the object's controller permission to perform
certain downstream operations (on child objects or external systems) and
records, as a linear root-first trace, why that permission exists.

Target keys
-----------
Targets are identified by plain strings:

- ``apps/ReplicaSet`` / ``ConfigMap``: kind-level targets (core group has
  no prefix)
- ``apps/replicasets``: resource-level targets
- ``external:service=rds,system=aws``: an external system (keys sorted)
- ``*``: any target (explicitly unrestricted rule)
- ``external:*``: any external target
"""
from __future__ import annotations

import copy
import dataclasses
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum

from aumos_causal_governance.paths.diff import FieldChange, MutationVerb
from aumos_causal_governance.paths.matcher import matches

WILDCARD_TARGET = "*"
EXTERNAL_PREFIX = "external:"
EXTERNAL_WILDCARD = "external:*"
ALL_VERBS = "*"


class Relation(str, Enum):
    """How a policy target relates to the object carrying the policy."""

    CONTROLLER_CHILD = "ControllerChild"
    EXTERNAL = "External"


def external_key(identifier: Mapping[str, object]) -> str:
    """Build the target key of an external system identifier map."""
    parts = ",".join(f"{k}={identifier[k]}" for k in sorted(identifier))
    return f"{EXTERNAL_PREFIX}{parts}"


def is_external_key(key: str) -> bool:
    return key.startswith(EXTERNAL_PREFIX)


def wildcards_for(key: str) -> tuple[str, ...]:
    """Wildcard keys that also address *key*."""
    if is_external_key(key):
        return (WILDCARD_TARGET, EXTERNAL_WILDCARD)
    return (WILDCARD_TARGET,)


# ---------------------------------------------------------------------------
# Grants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MutationGrant:
    """Permission to apply the given change kinds to fields matching *pattern*."""

    pattern: str
    verbs: frozenset[MutationVerb]

    def permits(self, change: FieldChange) -> bool:
        return change.verb in self.verbs and matches(self.pattern, change.path)


@dataclass(frozen=True)
class Grant:
    """Verbs and field mutations permitted for one target.

    Grants form a monoid under :meth:`union` with ``Grant()`` as identity:
    verbs and mutation grants accumulate by set union, ``any_field`` and
    ``unrestricted`` by logical OR.

    Attributes
    ----------
    verbs:
        Lowercase object verbs (``create``, ``update``, ``delete``) or external
        verbs; ``*`` grants all of them.
    mutations:
        Field-level grants limiting ``update``.
    any_field:
        ``update`` may touch any field (an entry declared no mutation list).
    unrestricted:
        Everything is permitted for this target.
    """

    verbs: frozenset[str] = frozenset()
    mutations: frozenset[MutationGrant] = frozenset()
    any_field: bool = False
    unrestricted: bool = False

    @classmethod
    def everything(cls) -> Grant:
        return cls(unrestricted=True)

    def union(self, other: Grant) -> Grant:
        return Grant(
            verbs=self.verbs | other.verbs,
            mutations=self.mutations | other.mutations,
            any_field=self.any_field or other.any_field,
            unrestricted=self.unrestricted or other.unrestricted,
        )

    @property
    def is_empty(self) -> bool:
        """True when the grant permits nothing at all."""
        return not self.unrestricted and not self.verbs

    def permits_verb(self, verb: str) -> bool:
        if self.unrestricted:
            return True
        return ALL_VERBS in self.verbs or verb.lower() in self.verbs

    def permits_change(self, change: FieldChange) -> bool:
        """Return True when an ``update`` touching *change* is within the grant."""
        if not self.permits_verb("update"):
            return False
        if self.unrestricted or self.any_field:
            return True
        return any(grant.permits(change) for grant in self.mutations)

    def uncovered(self, verb: str, changes: Iterable[FieldChange]) -> list[str]:
        """Describe every requested item this grant does not cover."""
        if verb.lower() != "update":
            return [] if self.permits_verb(verb) else [f"verb {verb.lower()}"]
        return [
            f"{change.verb.value} {change.field}"
            for change in changes
            if not self.permits_change(change)
        ]


# ---------------------------------------------------------------------------
# Trace
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TraceHop:
    """One object's contribution to a causal trace.

    The namespace is never recorded: it is implied by the object carrying
    the allowance (or the hop is cluster-scoped).
    """

    kind: str
    name: str
    generation: int
    field: str
    attestations: Mapping[str, object] = dataclasses.field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "attestations", copy.deepcopy(dict(self.attestations)))

    @property
    def sort_key(self) -> tuple[str, str, str]:
        return (self.kind, self.name, self.field)

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            "kind": self.kind,
            "name": self.name,
            "generation": self.generation,
            "field": self.field,
        }
        if self.attestations:
            data["attestations"] = dict(self.attestations)
        return data


@dataclass(frozen=True)
class Allowance:
    """A grant attached to an object, carrying the causal trace that justifies it.

    Attributes
    ----------
    target:
        Target key the grant applies to (see module docstring).
    grant:
        Verbs and field mutations permitted on the target.
    generation:
        Generation of the holding object at the moment of grant.
    initiator:
        Identity that originated the trace; set once, at the root.
    trace:
        Root-first hops; the last hop is the holding object.
    """

    target: str
    grant: Grant
    generation: int
    initiator: str
    trace: tuple[TraceHop, ...]

    @property
    def relation(self) -> Relation:
        return Relation.EXTERNAL if is_external_key(self.target) else Relation.CONTROLLER_CHILD

    @property
    def head(self) -> TraceHop | None:
        """The most recent hop (the object holding this allowance)."""
        return self.trace[-1] if self.trace else None

    @property
    def root(self) -> TraceHop | None:
        return self.trace[0] if self.trace else None

    def applies_to(self, target_keys: Iterable[str]) -> bool:
        return any(
            self.target == key or self.target in wildcards_for(key)
            for key in target_keys
        )

    def collapse_key(self) -> tuple[object, ...]:
        """Allowances with equal collapse keys are duplicates of each other."""
        head = self.head
        head_key = (
            (head.kind, head.name, head.generation, head.field) if head else None
        )
        mutations = tuple(
            sorted((m.pattern, tuple(sorted(v.value for v in m.verbs))) for m in self.grant.mutations)
        )
        return (
            self.target,
            tuple(sorted(self.grant.verbs)),
            mutations,
            self.grant.any_field,
            self.grant.unrestricted,
            head_key,
        )

    def describe(self) -> str:
        hops = " -> ".join(f"{h.kind}/{h.name}@{h.generation}:{h.field}" for h in self.trace)
        return f"{self.target} [{self.initiator}] {hops}"
