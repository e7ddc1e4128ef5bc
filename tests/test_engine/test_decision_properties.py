"""Cross-cutting guarantees of the admission engine: determinism,
default-deny, monotonic unions, initiator uniqueness and upgrade windows."""
from __future__ import annotations

from pathlib import Path

import pytest

from aumos_causal_governance.engine.consumption import merge, prune
from aumos_causal_governance.engine.decision import (
    AdmissionDecider,
    AdmissionRequest,
    DecisionBasis,
)
from aumos_causal_governance.engine.resolver import UpperBound
from aumos_causal_governance.model.allowance import Allowance, Grant, TraceHop
from aumos_causal_governance.model.objects import Operation, Subject
from aumos_causal_governance.policies.loader import PolicyLoader, PolicyRegistry
from aumos_causal_governance.policies.schema import PolicyEntry
from aumos_causal_governance.storage.codec import AllowanceCodec
from aumos_causal_governance.storage.store import InMemoryObjectStore

_POLICIES = Path(__file__).parent.parent / "fixtures" / "causal_policies.yaml"

ALICE = Subject.from_username("alice")
DEPLOYMENT_CONTROLLER = Subject.from_username(
    "system:serviceaccount:kube-system:deployment-controller"
)
REPLICASET_CONTROLLER = Subject.from_username(
    "system:serviceaccount:kube-system:replicaset-controller"
)


def _deployment(generation: int = 7, observed: int = 6, replicas: int = 3) -> dict[str, object]:
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": "web", "namespace": "default", "generation": generation},
        "spec": {"replicas": replicas},
        "status": {"observedGeneration": observed},
    }


def _replicaset(
    generation: int = 14,
    replicas: int = 3,
    annotations: dict[str, str] | None = None,
) -> dict[str, object]:
    metadata: dict[str, object] = {
        "name": "web-7d4f",
        "namespace": "default",
        "generation": generation,
        "ownerReferences": [
            {"apiVersion": "apps/v1", "kind": "Deployment", "name": "web", "controller": True}
        ],
    }
    if annotations:
        metadata["annotations"] = dict(annotations)
    return {
        "apiVersion": "apps/v1",
        "kind": "ReplicaSet",
        "metadata": metadata,
        "spec": {"replicas": replicas},
        "status": {"observedGeneration": 13},
    }


def _allowance(generation: int, field: str = "spec.replicas", initiator: str = "alice") -> Allowance:
    return Allowance(
        target="Pod",
        grant=Grant(verbs=frozenset({"create"})),
        generation=generation,
        initiator=initiator,
        trace=(TraceHop("ReplicaSet", "web-7d4f", generation, field),),
    )


@pytest.fixture()
def registry() -> PolicyRegistry:
    return PolicyLoader().load(_POLICIES)


@pytest.fixture()
def store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture()
def decider(registry: PolicyRegistry, store: InMemoryObjectStore) -> AdmissionDecider:
    return AdmissionDecider(registry, parent_lookup=store)


# ---------------------------------------------------------------------------
# Determinism
# ---------------------------------------------------------------------------


class TestDeterminism:
    def test_same_inputs_same_decision(self, decider: AdmissionDecider) -> None:
        request = AdmissionRequest(
            ALICE,
            Operation.UPDATE,
            _deployment(generation=7, replicas=5),
            _deployment(generation=6, observed=6, replicas=3),
        )
        first = decider.decide(request)
        second = decider.decide(request)
        assert first == second

    def test_encoded_allowances_are_identical(self, decider: AdmissionDecider) -> None:
        request = AdmissionRequest(
            ALICE,
            Operation.UPDATE,
            _deployment(generation=7, replicas=5),
            _deployment(generation=6, observed=6, replicas=3),
        )
        codec = decider.codec
        assert codec.encode(decider.decide(request).allowances) == codec.encode(
            decider.decide(request).allowances
        )


# ---------------------------------------------------------------------------
# Default deny
# ---------------------------------------------------------------------------


class TestDefaultDeny:
    def test_controller_without_allowance_is_rejected(
        self, decider: AdmissionDecider, store: InMemoryObjectStore
    ) -> None:
        store.put(_deployment())
        request = AdmissionRequest(
            DEPLOYMENT_CONTROLLER,
            Operation.UPDATE,
            _replicaset(replicas=5),
            _replicaset(generation=13, replicas=3),
        )
        decision = decider.decide(request)
        assert decision.allowed is False
        assert decision.basis is DecisionBasis.REJECTED

    def test_rejection_keeps_existing_allowances(
        self, decider: AdmissionDecider, store: InMemoryObjectStore
    ) -> None:
        store.put(_deployment())
        carried = _allowance(14)
        old = decider.codec.write_annotations(_replicaset(generation=13), [carried])
        request = AdmissionRequest(
            DEPLOYMENT_CONTROLLER, Operation.UPDATE, _replicaset(replicas=5), old
        )
        decision = decider.decide(request)
        assert decision.allowed is False
        assert decision.allowances == (carried,)
        assert decision.fingerprint is None


# ---------------------------------------------------------------------------
# Upper bounds
# ---------------------------------------------------------------------------


class TestUpperBoundUnion:
    def _entry(self, **data: object) -> PolicyEntry:
        return PolicyEntry.model_validate(data)

    def test_adding_an_entry_never_shrinks_any_grant(self) -> None:
        first = self._entry(
            target={"apiGroup": "apps", "kind": "ReplicaSet"},
            verbs=["update"],
            mutations=[{"jsonPath": "spec.replicas", "verbs": ["Mutate"]}],
        )
        second = self._entry(
            target={"apiGroup": "apps", "kind": "ReplicaSet"},
            verbs=["delete"],
        )
        before = UpperBound.from_entries([first])
        after = UpperBound.from_entries([first, second])
        for target, grant in before.grants.items():
            widened = after.grants[target]
            assert grant.verbs <= widened.verbs
            assert grant.mutations <= widened.mutations
            assert widened.any_field or not grant.any_field

    def test_empty_grant_is_union_identity(self) -> None:
        grant = Grant(verbs=frozenset({"update"}), any_field=True)
        assert grant.union(Grant()) == grant
        assert Grant().union(grant) == grant


# ---------------------------------------------------------------------------
# Initiator uniqueness and consumption
# ---------------------------------------------------------------------------


class TestInitiator:
    def test_every_issued_allowance_has_one_initiator(
        self, decider: AdmissionDecider, store: InMemoryObjectStore
    ) -> None:
        root = decider.decide(
            AdmissionRequest(
                ALICE,
                Operation.UPDATE,
                _deployment(generation=7, replicas=5),
                _deployment(generation=6, observed=6, replicas=3),
            )
        )
        store.put(decider.codec.write_annotations(_deployment(replicas=5), root.allowances))
        child = decider.decide(
            AdmissionRequest(
                DEPLOYMENT_CONTROLLER,
                Operation.UPDATE,
                _replicaset(replicas=5),
                _replicaset(generation=13, replicas=3),
            )
        )
        initiators = {a.initiator for a in (*root.issued, *child.issued)}
        assert initiators == {"alice"}


class TestPrune:
    def test_prune_is_idempotent(self) -> None:
        obj = _replicaset(generation=15)
        allowances = [_allowance(12), _allowance(14), _allowance(15, field="spec.template")]
        once = prune(allowances, obj)
        assert prune(once, obj) == once
        assert once == (allowances[1], allowances[2])

    def test_merge_never_removes(self) -> None:
        existing = (_allowance(14),)
        merged = merge(existing, [_allowance(15)])
        assert set(existing) <= set(merged)

    def test_merge_collapses_duplicates(self) -> None:
        assert merge([_allowance(14)], [_allowance(14)]) == (_allowance(14),)


# ---------------------------------------------------------------------------
# Upgrade windows
# ---------------------------------------------------------------------------


class TestUpgradeWindow:
    def _old_rs(self, codec: AllowanceCodec, fingerprint: str) -> dict[str, object]:
        return codec.write_annotations(_replicaset(generation=13), [], fingerprint)

    def test_changed_fingerprint_substitutes_upgrade_bound(
        self, decider: AdmissionDecider, store: InMemoryObjectStore
    ) -> None:
        store.put(_deployment())
        request = AdmissionRequest(
            DEPLOYMENT_CONTROLLER,
            Operation.UPDATE,
            _replicaset(replicas=5),
            self._old_rs(decider.codec, "fp-old"),
            fingerprint="fp-new",
        )
        decision = decider.decide(request)
        assert decision.allowed is True
        assert decision.basis is DecisionBasis.UPGRADE
        assert decision.fingerprint == "fp-new"
        assert "deployment-controller-upgrade" in decision.reason

    def test_second_request_with_same_fingerprint_uses_normal_rules(
        self, decider: AdmissionDecider, store: InMemoryObjectStore
    ) -> None:
        store.put(_deployment())
        request = AdmissionRequest(
            DEPLOYMENT_CONTROLLER,
            Operation.UPDATE,
            _replicaset(replicas=5),
            self._old_rs(decider.codec, "fp-new"),
            fingerprint="fp-new",
        )
        assert decider.decide(request).allowed is False

    def test_outside_upgrade_bound_falls_through(
        self, decider: AdmissionDecider, store: InMemoryObjectStore
    ) -> None:
        store.put(_deployment())
        request = AdmissionRequest(
            DEPLOYMENT_CONTROLLER,
            Operation.DELETE,
            None,
            self._old_rs(decider.codec, "fp-old"),
            fingerprint="fp-new",
        )
        decision = decider.decide(request)
        assert decision.allowed is False
        assert decision.basis is DecisionBasis.REJECTED

    def test_other_subject_gets_no_upgrade(
        self, decider: AdmissionDecider, store: InMemoryObjectStore
    ) -> None:
        store.put(_deployment())
        request = AdmissionRequest(
            REPLICASET_CONTROLLER,
            Operation.UPDATE,
            _replicaset(replicas=5),
            self._old_rs(decider.codec, "fp-old"),
            fingerprint="fp-new",
        )
        assert decider.decide(request).allowed is False

    def test_missing_stored_fingerprint_is_seeded(self, decider: AdmissionDecider) -> None:
        config_map = {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {"name": "settings", "namespace": "default"},
        }
        decision = decider.decide(
            AdmissionRequest(
                DEPLOYMENT_CONTROLLER, Operation.CREATE, config_map, fingerprint="fp-1"
            )
        )
        assert decision.basis is DecisionBasis.NOT_PARTICIPATING
        assert decision.fingerprint == "fp-1"

    def test_kind_not_named_by_upgrade_allowance_needs_justification(
        self, decider: AdmissionDecider, store: InMemoryObjectStore
    ) -> None:
        store.put(_deployment())

        def config_map(value: str) -> dict[str, object]:
            return {
                "apiVersion": "v1",
                "kind": "ConfigMap",
                "metadata": {
                    "name": "web-settings",
                    "namespace": "default",
                    "ownerReferences": [
                        {"apiVersion": "apps/v1", "kind": "Deployment", "name": "web", "controller": True}
                    ],
                },
                "data": {"mode": value},
            }

        old = decider.codec.write_annotations(config_map("blue"), [], "fp-old")
        decision = decider.decide(
            AdmissionRequest(
                DEPLOYMENT_CONTROLLER,
                Operation.UPDATE,
                config_map("green"),
                old,
                fingerprint="fp-new",
            )
        )
        assert decision.allowed is False
        assert decision.basis is DecisionBasis.REJECTED

    def test_accepted_request_advances_fingerprint_without_upgrade_allowance(
        self, decider: AdmissionDecider
    ) -> None:
        old = decider.codec.write_annotations(_deployment(generation=6, observed=6), [], "fp-old")
        decision = decider.decide(
            AdmissionRequest(
                ALICE,
                Operation.UPDATE,
                _deployment(generation=7, replicas=5),
                old,
                fingerprint="fp-new",
            )
        )
        assert decision.basis is DecisionBasis.INITIATED
        assert decision.fingerprint == "fp-new"


# ---------------------------------------------------------------------------
# Injected evaluators
# ---------------------------------------------------------------------------

_GUARDED_POLICY = """
kind: AllowancePolicy
metadata: {name: deployments}
spec:
  forKind: {apiGroup: apps, kind: Deployment}
  subjects: [{kind: User, name: alice, mayInitiate: true}]
  initializing:
    when: {field: status.ready, operator: equals, value: false}
  rules:
    - trigger: spec.replicas
      conditions:
        - {field: spec.paused, operator: equals, value: false}
      policies:
        - target: {apiGroup: apps, kind: ReplicaSet}
          verbs: [update]
"""


class _RaisingEvaluator:
    def evaluate(self, expr: object, obj: object, old_obj: object = None) -> bool:
        raise RuntimeError("cel: no such key")


class TestFailingEvaluator:
    def test_foreign_exception_fails_closed_with_warnings(self) -> None:
        registry = PolicyLoader().load_from_yaml_string(_GUARDED_POLICY)
        decider = AdmissionDecider(registry, evaluator=_RaisingEvaluator())  # type: ignore[arg-type]
        decision = decider.decide(
            AdmissionRequest(
                ALICE,
                Operation.UPDATE,
                _deployment(generation=7, replicas=5),
                _deployment(generation=6, observed=6, replicas=3),
            )
        )
        assert decision.allowed is True
        assert decision.basis is DecisionBasis.INITIATED
        assert decision.issued == ()
        assert any("treating as SteadyState" in w for w in decision.warnings)
        assert any("rule does not apply" in w for w in decision.warnings)
