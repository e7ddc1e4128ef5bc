"""Admission decision: the orchestrating entry point of the engine.

For every mutation of an object the decider answers two questions: is the
mutation causally justified, and which allowances must the object carry so
that its own controller can continue the causal chain downstream.

Order of evaluation for :meth:`AdmissionDecider.decide`:

1. An UPDATE that changes no desired-state field requests nothing.
2. Upgrade window: a changed controller fingerprint with an
   UpgradeAllowance naming the object's target substitutes that
   allowance's bound for this decision.
3. Parent phase: a parent that is Initializing or Deleting grants its
   phase bound to its children without any allowance.
4. Participation: kinds without a policy (themselves and their parent)
   are admitted untouched.
5. Initiation by a subject allowed to originate traces, or propagation of
   a parent allowance covering every requested change.  Anything else is
   rejected as a whole; a subset of field changes is never admitted.

The decider is a pure function of its inputs and the injected capabilities;
it never writes anything.  The returned :class:`Decision` carries the full
allowance set (and fingerprint) the caller should persist.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum

from aumos_causal_governance.engine.consumption import is_consumed, merge, prune
from aumos_causal_governance.engine.phase import PhaseClassifier
from aumos_causal_governance.engine.resolver import PolicyResolver
from aumos_causal_governance.engine.trace import (
    TraceBuilder,
    justification_key,
    select_justification,
)
from aumos_causal_governance.engine.upgrade import UpgradeMatch, UpgradeMatcher
from aumos_causal_governance.model.allowance import Allowance, external_key
from aumos_causal_governance.model.objects import (
    ObjectRef,
    Operation,
    Phase,
    Subject,
    controller_owner,
    kind_key,
)
from aumos_causal_governance.paths.diff import DEFAULT_IGNORED_PATHS, FieldChange, diff_objects
from aumos_causal_governance.paths.matcher import PathLike
from aumos_causal_governance.policies.loader import PolicyRegistry
from aumos_causal_governance.policies.predicates import ConditionEvaluator, PredicateEvaluator
from aumos_causal_governance.policies.schema import AllowancePolicy
from aumos_causal_governance.storage.codec import AllowanceCodec
from aumos_causal_governance.storage.store import ParentLookup, ParentRecord

logger = logging.getLogger(__name__)

_NO_ALLOWANCE = "no matching allowance, subject may not initiate"


# ---------------------------------------------------------------------------
# Request / result types
# ---------------------------------------------------------------------------


class DecisionBasis(str, Enum):
    """Why a decision came out the way it did."""

    NO_CHANGE = "no-change"
    UPGRADE = "upgrade"
    PHASE = "phase"
    NOT_PARTICIPATING = "not-participating"
    INITIATED = "initiated"
    PROPAGATED = "propagated"
    REJECTED = "rejected"


@dataclass(frozen=True)
class AdmissionRequest:
    """One mutation request against one object.

    Attributes
    ----------
    subject:
        Authenticated requester.
    operation:
        CREATE, UPDATE or DELETE.
    object:
        The new object version; ``None`` for DELETE.
    old_object:
        The stored object version; ``None`` for CREATE.  Its annotations
        hold the object's current allowances and fingerprint.
    fingerprint:
        Identity fingerprint of the requesting client build, if known.
    resource:
        Plural resource name, used to match resource-level targets.
    uid:
        Request identifier, carried into audit records.
    """

    subject: Subject
    operation: Operation
    object: Mapping[str, object] | None
    old_object: Mapping[str, object] | None = None
    fingerprint: str | None = None
    resource: str | None = None
    uid: str | None = None

    @property
    def current(self) -> Mapping[str, object]:
        """The object the request is about (the old version for DELETE)."""
        current = self.object if self.object is not None else self.old_object
        if current is None:
            raise ValueError("AdmissionRequest needs object or old_object")
        return current


@dataclass(frozen=True)
class ExternalRequest:
    """A controller of ``object`` asks to perform ``verb`` against an external system."""

    subject: Subject
    object: Mapping[str, object]
    system: Mapping[str, str]
    verb: str
    uid: str | None = None


@dataclass(frozen=True)
class Decision:
    """Outcome of one admission decision.

    Attributes
    ----------
    allowed:
        Whether the request is admitted.
    reason:
        Human-readable explanation.
    basis:
        Which step of the algorithm decided.
    allowances:
        Full allowance set to persist on the mutated object (existing ones
        minus consumed ones, plus issued ones, duplicates collapsed).
    issued:
        Allowances newly created by this decision.
    justifications:
        Parent allowances this decision propagated.
    fingerprint:
        Fingerprint value to store on the object, or ``None`` to leave it.
    warnings:
        Malformed records and predicate failures seen while deciding.
    """

    allowed: bool
    reason: str
    basis: DecisionBasis
    allowances: tuple[Allowance, ...] = ()
    issued: tuple[Allowance, ...] = ()
    justifications: tuple[Allowance, ...] = ()
    fingerprint: str | None = None
    warnings: tuple[str, ...] = ()

    def __bool__(self) -> bool:
        return self.allowed


# ---------------------------------------------------------------------------
# Decider
# ---------------------------------------------------------------------------


class AdmissionDecider:
    """Decides admission requests against a policy registry.

    Parameters
    ----------
    registry:
        AllowancePolicies (one per kind) and UpgradeAllowances.
    evaluator:
        Predicate evaluator for conditions and ``initializing.when``.
        Defaults to :class:`ConditionEvaluator`.
    parent_lookup:
        Resolves controller owner references.  Without it every object is
        treated as a root object.
    codec:
        Reads allowances and fingerprints from object annotations.
    ignored_paths:
        Path patterns that never count as requested mutations.
    """

    def __init__(
        self,
        registry: PolicyRegistry,
        evaluator: PredicateEvaluator | None = None,
        parent_lookup: ParentLookup | None = None,
        codec: AllowanceCodec | None = None,
        ignored_paths: Iterable[PathLike] = DEFAULT_IGNORED_PATHS,
    ) -> None:
        evaluator = evaluator or ConditionEvaluator()
        self._registry = registry
        self._parent_lookup = parent_lookup
        self._codec = codec or AllowanceCodec()
        self._ignored_paths = tuple(ignored_paths)
        self._phases = PhaseClassifier(evaluator)
        self._resolver = PolicyResolver(evaluator, self._ignored_paths)
        self._traces = TraceBuilder()
        self._upgrades = UpgradeMatcher()

    @property
    def registry(self) -> PolicyRegistry:
        return self._registry

    @property
    def codec(self) -> AllowanceCodec:
        return self._codec

    # ------------------------------------------------------------------
    # Object mutations
    # ------------------------------------------------------------------

    def decide(self, request: AdmissionRequest) -> Decision:
        """Decide whether *request* is causally justified."""
        obj = request.current
        ref = ObjectRef.from_object(obj)
        verb = request.operation.verb
        warnings: list[str] = []

        policy = self._registry.policy_for(ref)
        stored = self._codec.read_allowances(request.old_object)
        warnings.extend(stored.warnings)
        existing = prune(stored.allowances, obj)
        stored_fingerprint = self._codec.read_fingerprint(request.old_object)

        changes: list[FieldChange] = []
        if request.operation is not Operation.DELETE:
            changes = diff_objects(request.old_object, request.object, ignore=self._ignored_paths)
        requested = changes if request.operation is Operation.UPDATE else []
        target_keys = self._target_keys(ref, request.resource)

        upgrade = self._upgrades.match(
            request.fingerprint,
            stored_fingerprint,
            request.subject,
            self._registry.upgrade_allowances,
        )

        def accept(
            basis: DecisionBasis,
            reason: str,
            issued: Sequence[Allowance] = (),
            justifications: Sequence[Allowance] = (),
        ) -> Decision:
            fingerprint = _fingerprint_update(request.fingerprint, stored_fingerprint, upgrade)
            logger.debug("ACCEPT %s %s: %s", verb, ref.describe(), reason)
            return Decision(
                allowed=True,
                reason=reason,
                basis=basis,
                allowances=merge(existing, issued),
                issued=tuple(issued),
                justifications=tuple(justifications),
                fingerprint=fingerprint,
                warnings=tuple(warnings),
            )

        if request.operation is Operation.UPDATE and not changes:
            return accept(DecisionBasis.NO_CHANGE, "no desired-state field changed")

        if upgrade is not None:
            upgrade_grant = upgrade.bound.grant_for(target_keys)
            if upgrade_grant is None:
                outside = [f"{ref.group_kind} not named"]
            else:
                outside = upgrade_grant.uncovered(verb, requested)
            if not outside:
                return accept(
                    DecisionBasis.UPGRADE,
                    f"within upgrade allowance {', '.join(upgrade.allowance_names)}",
                )
            logger.info(
                "Request on %s outside upgrade allowance (%s); applying normal rules",
                ref.describe(),
                ", ".join(outside),
            )

        parent = self._lookup_parent(obj, ref, warnings)
        parent_policy = self._registry.policy_for(parent.ref) if parent else None
        phase_note = ""

        if parent is not None and parent_policy is not None:
            parent_phase = self._phases.classify(parent.object, parent_policy, warnings=warnings)
            if parent_phase is not Phase.STEADY_STATE:
                resolution = self._resolver.resolve(
                    parent_policy, parent_phase, parent.object, warnings=warnings
                )
                outside = resolution.bound.check(target_keys, verb, requested)
                if not outside:
                    return accept(
                        DecisionBasis.PHASE,
                        f"{parent.ref.describe()} is {parent_phase.value}; "
                        f"{verb} {ref.group_kind} is within its {parent_phase.value} bound",
                    )
                phase_note = (
                    f"; outside the {parent_phase.value} bound of "
                    f"{parent.ref.describe()} for {', '.join(outside)}"
                )

        if policy is None and parent_policy is None:
            return accept(
                DecisionBasis.NOT_PARTICIPATING,
                f"no AllowancePolicy for {ref.group_kind} or its controller",
            )

        if self._may_initiate(request.subject, policy):
            issued = self._issue(policy, request, ref, changes, None, warnings)
            return accept(
                DecisionBasis.INITIATED,
                f"{request.subject.identity} may initiate; issued {len(issued)} allowance(s)",
                issued,
            )

        justifications, uncovered = self._justify(parent, target_keys, verb, requested)
        if uncovered:
            where = (
                f"allowances on {parent.ref.describe()}"
                if parent is not None
                else "any controller parent"
            )
            reason = (
                f"{_NO_ALLOWANCE}: {request.subject.identity} {verb} {ref.describe()} "
                f"is not covered by {where} for {', '.join(uncovered)}{phase_note}"
            )
            logger.debug("REJECT %s", reason)
            return Decision(
                allowed=False,
                reason=reason,
                basis=DecisionBasis.REJECTED,
                allowances=existing,
                warnings=tuple(warnings),
            )

        issued_all: list[Allowance] = []
        for justification in justifications:
            issued_all.extend(
                self._issue(policy, request, ref, changes, justification, warnings)
            )
        issued_merged = merge(issued_all)
        if issued_merged:
            logger.info(
                "Propagated %d allowance(s) onto %s", len(issued_merged), ref.describe()
            )
        return accept(
            DecisionBasis.PROPAGATED,
            f"covered by {len(justifications)} allowance(s) on {parent.ref.describe()}",  # type: ignore[union-attr]
            issued_merged,
            justifications,
        )

    # ------------------------------------------------------------------
    # External verbs
    # ------------------------------------------------------------------

    def decide_external(self, request: ExternalRequest) -> Decision:
        """Decide whether the controller of an object may act on an external system."""
        obj = request.object
        ref = ObjectRef.from_object(obj)
        key = external_key(request.system)
        verb = request.verb.lower()
        warnings: list[str] = []

        policy = self._registry.policy_for(ref)
        if policy is None:
            return Decision(
                allowed=True,
                reason=f"no AllowancePolicy for {ref.group_kind}",
                basis=DecisionBasis.NOT_PARTICIPATING,
            )

        phase = self._phases.classify(obj, policy, warnings=warnings)
        if phase is not Phase.STEADY_STATE:
            resolution = self._resolver.resolve(policy, phase, obj, warnings=warnings)
            outside = resolution.bound.check([key], verb)
            within = "within" if not outside else "outside"
            return Decision(
                allowed=not outside,
                reason=f"{ref.describe()} is {phase.value}; {verb} on {key} is {within} its bound",
                basis=DecisionBasis.PHASE if not outside else DecisionBasis.REJECTED,
                warnings=tuple(warnings),
            )

        decoded = self._codec.read_allowances(obj)
        warnings.extend(decoded.warnings)
        covering = [
            a
            for a in decoded.allowances
            if a.applies_to([key]) and not is_consumed(a, ref) and a.grant.permits_verb(verb)
        ]
        choice = select_justification(covering)
        if choice is None:
            return Decision(
                allowed=False,
                reason=(
                    f"{_NO_ALLOWANCE}: {verb} on {key} is not covered by allowances on "
                    f"{ref.describe()}"
                ),
                basis=DecisionBasis.REJECTED,
                warnings=tuple(warnings),
            )
        return Decision(
            allowed=True,
            reason=f"{verb} on {key} covered by allowance from {choice.initiator}",
            basis=DecisionBasis.PROPAGATED,
            justifications=(choice,),
            warnings=tuple(warnings),
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _target_keys(self, ref: ObjectRef, resource: str | None) -> list[str]:
        keys = [ref.group_kind]
        if resource:
            keys.append(kind_key(ref.api_group, resource))
        return keys

    def _lookup_parent(
        self,
        obj: Mapping[str, object],
        ref: ObjectRef,
        warnings: list[str],
    ) -> ParentRecord | None:
        owner = controller_owner(obj)
        if owner is None or self._parent_lookup is None:
            return None
        record = self._parent_lookup.lookup_parent(owner, ref.namespace)
        if record is None:
            logger.debug("Controller owner %r of %s not found", owner.get("name"), ref.describe())
            return None
        warnings.extend(record.warnings)
        return record

    def _may_initiate(self, subject: Subject, policy: AllowancePolicy | None) -> bool:
        if subject.may_initiate:
            return True
        return policy is not None and policy.may_initiate(subject)

    def _justify(
        self,
        parent: ParentRecord | None,
        target_keys: Sequence[str],
        verb: str,
        requested: Sequence[FieldChange],
    ) -> tuple[list[Allowance], list[str]]:
        """Select one parent allowance per requested item.

        Returns the distinct justifications (in tie-break order) and the
        labels of the items nothing covers.
        """
        candidates: list[Allowance] = []
        if parent is not None:
            parent_ref = parent.ref
            candidates = [
                a
                for a in parent.allowances
                if a.applies_to(target_keys) and not is_consumed(a, parent_ref)
            ]

        items: list[tuple[str, Sequence[FieldChange]]]
        if verb == "update":
            items = [(f"{c.verb.value} {c.field}", (c,)) for c in requested]
        else:
            items = [(f"verb {verb}", ())]

        chosen: set[Allowance] = set()
        uncovered: list[str] = []
        for label, item_changes in items:
            covering = [a for a in candidates if not a.grant.uncovered(verb, item_changes)]
            choice = select_justification(covering)
            if choice is None:
                uncovered.append(label)
            else:
                chosen.add(choice)
        return sorted(chosen, key=justification_key), uncovered

    def _issue(
        self,
        policy: AllowancePolicy | None,
        request: AdmissionRequest,
        ref: ObjectRef,
        changes: Sequence[FieldChange],
        justification: Allowance | None,
        warnings: list[str],
    ) -> list[Allowance]:
        """Create the allowances the mutated object carries downstream."""
        if policy is None or request.object is None:
            return []
        phase = self._phases.classify(request.object, policy, request.old_object, warnings)
        if phase is not Phase.STEADY_STATE:
            return []

        resolution = self._resolver.resolve(
            policy, phase, request.object, request.old_object, changes, warnings
        )
        issued: list[Allowance] = []
        for target in resolution.bound.targets:
            grant = resolution.bound.grants[target]
            field = resolution.origin_field(target)
            if grant.is_empty or field is None:
                continue
            hop = self._traces.hop_for(ref, field, resolution.attestations_for(target))
            if justification is None:
                initiator, trace = self._traces.originate(request.subject, hop)
            else:
                initiator, trace = self._traces.propagate(justification, hop)
            issued.append(
                Allowance(
                    target=target,
                    grant=grant,
                    generation=ref.generation,
                    initiator=initiator,
                    trace=trace,
                )
            )
        return issued


def _fingerprint_update(
    requested: str | None,
    stored: str | None,
    upgrade: UpgradeMatch | None,
) -> str | None:
    # After any accept the stored fingerprint equals the request's.
    if upgrade is not None:
        return upgrade.fingerprint
    if requested is not None and requested != stored:
        return requested
    return None
