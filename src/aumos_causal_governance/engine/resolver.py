"""Policy resolution: from an object's phase and changed fields to an upper bound.

The upper bound maps target keys to :class:`Grant` values.  Bounds combine
by union (OR, never AND, never override), with the empty bound as identity,
so the order in which rules and entries are visited never matters.

Three situations are kept distinct while resolving but share one outward
effect, "no bound, so allow":

- a target no applicable entry mentions (absent from the map)
- a triggered rule with empty ``policies`` (an unrestricted ``*`` grant)
- a target bounded by entries (the union of those entries)

Only the last one restricts anything.
"""
from __future__ import annotations

import copy
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from aumos_causal_governance.model.allowance import (
    EXTERNAL_WILDCARD,
    WILDCARD_TARGET,
    Grant,
    wildcards_for,
)
from aumos_causal_governance.model.objects import ObjectRef, Phase
from aumos_causal_governance.paths.diff import (
    DEFAULT_IGNORED_PATHS,
    FieldChange,
    diff_objects,
    read_path,
)
from aumos_causal_governance.paths.matcher import PathLike, overlaps
from aumos_causal_governance.policies.predicates import PredicateEvaluator
from aumos_causal_governance.policies.schema import AllowancePolicy, PolicyEntry, Rule

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Upper bound
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UpperBound:
    """Mapping from target key to the union of grants for that target."""

    grants: Mapping[str, Grant] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> UpperBound:
        return cls()

    @classmethod
    def unrestricted(cls) -> UpperBound:
        return cls({WILDCARD_TARGET: Grant.everything()})

    @classmethod
    def deleting_default(cls) -> UpperBound:
        """Child objects unrestricted, every external verb denied."""
        return cls({EXTERNAL_WILDCARD: Grant()})

    @classmethod
    def from_entries(cls, entries: Iterable[PolicyEntry]) -> UpperBound:
        """Union the grants of *entries*; entries without a target are inert."""
        bound = cls.empty()
        for entry in entries:
            key = entry.target_key()
            if key is None:
                logger.debug("Skipping policy entry without target: %r", entry)
                continue
            bound = bound.combine(cls({key: entry.to_grant()}))
        return bound

    def combine(self, other: UpperBound) -> UpperBound:
        merged: dict[str, Grant] = dict(self.grants)
        for key, grant in other.grants.items():
            merged[key] = merged[key].union(grant) if key in merged else grant
        return UpperBound(merged)

    @property
    def targets(self) -> list[str]:
        return sorted(self.grants)

    def grant_for(self, target_keys: Sequence[str]) -> Grant | None:
        """Union of every grant addressing any of *target_keys*.

        Returns ``None`` when the bound never mentions the target, meaning
        the bound does not restrict it.
        """
        found: Grant | None = None
        for key in target_keys:
            for candidate in (key, *wildcards_for(key)):
                grant = self.grants.get(candidate)
                if grant is not None:
                    found = grant if found is None else found.union(grant)
        return found

    def check(
        self,
        target_keys: Sequence[str],
        verb: str,
        changes: Sequence[FieldChange] = (),
    ) -> list[str]:
        """Return the requested items outside the bound (empty when permitted)."""
        grant = self.grant_for(target_keys)
        if grant is None:
            return []
        return grant.uncovered(verb, changes)


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TriggeredRule:
    """A steady-state rule whose trigger matched and whose conditions held."""

    rule: Rule
    fields: tuple[str, ...]
    attestations: Mapping[str, object] = field(default_factory=dict)

    def mentions(self, target_key: str) -> bool:
        if not self.rule.policies:
            return target_key == WILDCARD_TARGET
        return any(entry.target_key() == target_key for entry in self.rule.policies)


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving one policy for one object version."""

    phase: Phase
    bound: UpperBound
    triggered: tuple[TriggeredRule, ...] = ()

    def origin_field(self, target_key: str) -> str | None:
        """Smallest concrete field that triggered a rule bounding *target_key*."""
        fields = [f for t in self.triggered if t.mentions(target_key) for f in t.fields]
        return min(fields) if fields else None

    def attestations_for(self, target_key: str) -> dict[str, object]:
        captured: dict[str, object] = {}
        for triggered in self.triggered:
            if triggered.mentions(target_key):
                captured.update(triggered.attestations)
        return captured


class PolicyResolver:
    """Computes the upper-bound permission set of a policy.

    Parameters
    ----------
    evaluator:
        Evaluator for rule ``conditions``.
    ignored_paths:
        Path patterns excluded when diffing object versions.
    """

    def __init__(
        self,
        evaluator: PredicateEvaluator,
        ignored_paths: Iterable[PathLike] = DEFAULT_IGNORED_PATHS,
    ) -> None:
        self._evaluator = evaluator
        self._ignored_paths = tuple(ignored_paths)

    def resolve(
        self,
        policy: AllowancePolicy,
        phase: Phase,
        obj: Mapping[str, object],
        old_obj: Mapping[str, object] | None = None,
        changes: Sequence[FieldChange] | None = None,
        warnings: list[str] | None = None,
    ) -> Resolution:
        """Resolve *policy* for an object in *phase*.

        Parameters
        ----------
        policy:
            The object's AllowancePolicy.
        phase:
            The object's lifecycle phase.
        obj, old_obj:
            New and prior object versions.
        changes:
            Pre-computed field changes; diffed from *old_obj* when omitted.
        warnings:
            Receives a message for every condition that failed to evaluate.
        """
        if phase is Phase.INITIALIZING:
            return Resolution(phase, UpperBound.from_entries(policy.initializing.policies))
        if phase is Phase.DELETING:
            if policy.deleting.policies:
                return Resolution(phase, UpperBound.from_entries(policy.deleting.policies))
            return Resolution(phase, UpperBound.deleting_default())

        if changes is None:
            changes = diff_objects(old_obj, obj, ignore=self._ignored_paths)
        triggered = self.triggered_rules(policy, obj, old_obj, changes, warnings)

        bound = UpperBound.empty()
        for item in triggered:
            if item.rule.policies:
                bound = bound.combine(UpperBound.from_entries(item.rule.policies))
            else:
                bound = bound.combine(UpperBound.unrestricted())
        logger.debug(
            "Resolved %s for %s: %d rules triggered, targets=%s",
            policy.name,
            ObjectRef.from_object(obj).describe(),
            len(triggered),
            bound.targets,
        )
        return Resolution(phase, bound, tuple(triggered))

    def triggered_rules(
        self,
        policy: AllowancePolicy,
        obj: Mapping[str, object],
        old_obj: Mapping[str, object] | None,
        changes: Sequence[FieldChange],
        warnings: list[str] | None = None,
    ) -> list[TriggeredRule]:
        """Return the rules triggered by *changes*, in declaration order."""
        triggered: list[TriggeredRule] = []
        for rule in policy.rules:
            fields = sorted({c.field for c in changes if overlaps(rule.trigger, c.path)})
            if not fields:
                continue
            if not self._conditions_hold(policy, rule, obj, old_obj, warnings):
                continue
            attestations = {path: copy.deepcopy(read_path(obj, path)) for path in rule.capture}
            triggered.append(TriggeredRule(rule, tuple(fields), attestations))
        return triggered

    def _conditions_hold(
        self,
        policy: AllowancePolicy,
        rule: Rule,
        obj: Mapping[str, object],
        old_obj: Mapping[str, object] | None,
        warnings: list[str] | None,
    ) -> bool:
        for condition in rule.conditions:
            try:
                if not self._evaluator.evaluate(condition, obj, old_obj):
                    return False
            except Exception as exc:  # injected evaluators may raise anything
                message = (
                    f"Condition of rule {rule.label!r} in policy {policy.name!r} "
                    f"failed to evaluate: {exc}; rule does not apply"
                )
                logger.warning(message)
                if warnings is not None:
                    warnings.append(message)
                return False
        return True
