#!/usr/bin/env python3
"""Example: Quickstart: aumos-causal-governance

Minimal working example: load allowance policies, let an authorised user
scale a Deployment, then watch the Deployment controller's ReplicaSet
update get justified by the allowance the Deployment now carries.

Usage:
    python examples/01_quickstart.py

Requirements:
    pip install aumos-causal-governance
"""
from __future__ import annotations

from pathlib import Path

import aumos_causal_governance as cg

_POLICIES = Path(__file__).parent / "policies" / "apps.yaml"


def _deployment(generation: int, replicas: int, observed: int) -> dict[str, object]:
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": "web", "namespace": "default", "uid": "dep-1", "generation": generation},
        "spec": {"replicas": replicas},
        "status": {"observedGeneration": observed},
    }


def _replicaset(generation: int, replicas: int) -> dict[str, object]:
    return {
        "apiVersion": "apps/v1",
        "kind": "ReplicaSet",
        "metadata": {
            "name": "web-7d4f",
            "namespace": "default",
            "generation": generation,
            "ownerReferences": [
                {
                    "apiVersion": "apps/v1",
                    "kind": "Deployment",
                    "name": "web",
                    "uid": "dep-1",
                    "controller": True,
                }
            ],
        },
        "spec": {"replicas": replicas},
        "status": {"observedGeneration": generation - 1},
    }


def main() -> None:
    print(f"aumos-causal-governance version: {cg.__version__}")

    # Step 1: Load policies
    governor = cg.CausalGovernor.from_policy_files([_POLICIES])
    print(f"Governor ready: {governor!r}")

    # Step 2: Seed the store with the current objects
    deployment = governor.store.put(_deployment(1, 3, 1))
    replicaset = governor.store.put(_replicaset(2, 3))

    # Step 3: An unauthorised user cannot initiate a change
    decision = governor.admit(
        cg.AdmissionRequest(
            cg.Subject.from_username("bob"),
            cg.Operation.UPDATE,
            _deployment(2, 10, 1),
            deployment,
        )
    )
    print(f"\n[{'ALLOW' if decision.allowed else 'DENY'}] bob scales web: {decision.reason}")

    # Step 4: alice may initiate; the Deployment now carries her allowance
    decision, deployment = governor.apply(
        cg.AdmissionRequest(
            cg.Subject.from_username("alice"),
            cg.Operation.UPDATE,
            {**_deployment(2, 5, 1), "metadata": {**deployment["metadata"], "generation": 2}},
            deployment,
        )
    )
    print(f"[{'ALLOW' if decision.allowed else 'DENY'}] alice scales web: {decision.reason}")
    for allowance in decision.issued:
        print(f"    issued: {allowance.describe()}")

    # Step 5: The controller's ReplicaSet update is justified by that allowance
    controller = cg.Subject.from_username(
        "system:serviceaccount:kube-system:deployment-controller"
    )
    updated = {**_replicaset(3, 5), "metadata": {**replicaset["metadata"], "generation": 3}}
    decision = governor.admit(
        cg.AdmissionRequest(controller, cg.Operation.UPDATE, updated, replicaset)
    )
    print(f"[{'ALLOW' if decision.allowed else 'DENY'}] controller scales web-7d4f: {decision.reason}")
    for allowance in decision.justifications:
        print(f"    justified by: {allowance.describe()}")

    # Step 6: Once the controller reports the new generation, the allowance is consumed
    settled = governor.store.replace({**deployment, "status": {"observedGeneration": 2}})
    pruned = governor.prune(settled)
    remaining = governor.codec.read_allowances(pruned).allowances
    print(f"\nAllowances left on web after prune: {len(remaining)}")


if __name__ == "__main__":
    main()
