"""Tests for trace construction and justification choice (engine/trace.py)."""
from __future__ import annotations

from aumos_causal_governance.engine.trace import (
    TraceBuilder,
    extend,
    justification_key,
    select_justification,
)
from aumos_causal_governance.model.allowance import Allowance, Grant, TraceHop
from aumos_causal_governance.model.objects import ObjectRef, Subject

_GRANT = Grant(verbs=frozenset({"create"}))


def _allowance(*hops: TraceHop, initiator: str = "alice") -> Allowance:
    return Allowance(
        target="Pod", grant=_GRANT, generation=hops[-1].generation, initiator=initiator, trace=hops
    )


def _ref() -> ObjectRef:
    return ObjectRef.from_object(
        {
            "apiVersion": "apps/v1",
            "kind": "ReplicaSet",
            "metadata": {"name": "web-1", "namespace": "default", "generation": 9},
        }
    )


class TestExtend:
    def test_appends_without_touching_parent(self) -> None:
        parent = (TraceHop("Deployment", "web", 3, "spec.replicas"),)
        extended = extend(parent, TraceHop("ReplicaSet", "web-1", 9, "spec.replicas"))
        assert len(parent) == 1
        assert extended[0] is parent[0]
        assert extended[-1].kind == "ReplicaSet"

    def test_merges_attestations_into_new_hop(self) -> None:
        hop = TraceHop("ReplicaSet", "web-1", 9, "spec.replicas", {"a": 1})
        extended = extend((), hop, {"b": 2})
        assert extended[0].attestations == {"a": 1, "b": 2}
        assert hop.attestations == {"a": 1}

    def test_hop_owns_nested_attestation_values(self) -> None:
        tags = {"tier": ["web"]}
        hop = TraceHop("Deployment", "web", 3, "spec.template", {"labels": tags})
        tags["tier"].append("db")
        assert hop.attestations == {"labels": {"tier": ["web"]}}


class TestTraceBuilder:
    def test_hop_for_uses_object_generation(self) -> None:
        hop = TraceBuilder().hop_for(_ref(), "spec.replicas", {"spec.replicas": 4})
        assert (hop.kind, hop.name, hop.generation, hop.field) == (
            "ReplicaSet",
            "web-1",
            9,
            "spec.replicas",
        )
        assert hop.attestations == {"spec.replicas": 4}

    def test_originate_sets_initiator(self) -> None:
        builder = TraceBuilder()
        hop = builder.hop_for(_ref(), "spec.replicas")
        initiator, trace = builder.originate(
            Subject.from_username("system:serviceaccount:ci:deployer"), hop
        )
        assert initiator == "system:serviceaccount:ci:deployer"
        assert trace == (hop,)

    def test_propagate_inherits_initiator(self) -> None:
        builder = TraceBuilder()
        parent = _allowance(TraceHop("Deployment", "web", 3, "spec.replicas"), initiator="carol")
        hop = builder.hop_for(_ref(), "spec.replicas")
        initiator, trace = builder.propagate(parent, hop)
        assert initiator == "carol"
        assert trace == (*parent.trace, hop)


class TestSelectJustification:
    def test_empty_candidates(self) -> None:
        assert select_justification([]) is None

    def test_prefers_smallest_head_kind(self) -> None:
        by_job = _allowance(TraceHop("Job", "batch", 1, "spec.parallelism"))
        by_deployment = _allowance(TraceHop("Deployment", "web", 1, "spec.replicas"))
        assert select_justification([by_job, by_deployment]) == by_deployment

    def test_prefers_smallest_head_field(self) -> None:
        template = _allowance(TraceHop("Deployment", "web", 1, "spec.template"))
        replicas = _allowance(TraceHop("Deployment", "web", 1, "spec.replicas"))
        assert select_justification([template, replicas]) == replicas

    def test_choice_independent_of_order(self) -> None:
        a = _allowance(TraceHop("Deployment", "web", 2, "spec.replicas"), initiator="bob")
        b = _allowance(TraceHop("Deployment", "web", 2, "spec.replicas"), initiator="alice")
        assert select_justification([a, b]) == select_justification([b, a]) == b

    def test_key_is_total(self) -> None:
        a = _allowance(TraceHop("Deployment", "web", 2, "spec.replicas"))
        assert justification_key(a) == justification_key(
            _allowance(TraceHop("Deployment", "web", 2, "spec.replicas"))
        )
