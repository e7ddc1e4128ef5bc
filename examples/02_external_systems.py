#!/usr/bin/env python3
"""Example: External systems: aumos-causal-governance

A controller acting on a cloud API (here, resizing an RDS instance) has no
child object to admit.  It asks the engine instead, presenting the object
whose allowance should justify the call.

Usage:
    python examples/02_external_systems.py

Requirements:
    pip install aumos-causal-governance
"""
from __future__ import annotations

from pathlib import Path

import aumos_causal_governance as cg

_POLICIES = Path(__file__).parent / "policies" / "apps.yaml"


def _instance(generation: int, instance_class: str) -> dict[str, object]:
    return {
        "apiVersion": "db.example.com/v1",
        "kind": "RDSInstance",
        "metadata": {"name": "orders", "namespace": "shop", "generation": generation},
        "spec": {"instanceClass": instance_class},
        "status": {"observedGeneration": 1},
    }


def main() -> None:
    governor = cg.CausalGovernor.from_policy_files([_POLICIES])
    controller = cg.Subject.from_username("system:serviceaccount:shop:rds-controller")
    aws_rds = {"system": "aws", "service": "rds"}

    # Step 1: alice resizes the instance and the object records an external allowance
    decision, instance = governor.apply(
        cg.AdmissionRequest(
            cg.Subject.from_username("alice"),
            cg.Operation.UPDATE,
            _instance(2, "db.m5.large"),
            governor.store.put(_instance(1, "db.m5.small")),
        )
    )
    print(f"alice resizes orders: {decision.basis.value} ({decision.reason})")
    assert instance is not None
    for allowance in governor.codec.read_allowances(instance).allowances:
        print(f"    carried: {allowance.describe()}")

    # Step 2: the controller asks before calling the cloud API
    for verb in ("modify", "delete"):
        decision = governor.admit_external(
            cg.ExternalRequest(subject=controller, object=instance, system=aws_rds, verb=verb)
        )
        icon = "ALLOW" if decision.allowed else "DENY"
        print(f"[{icon}] {verb} on aws/rds: {decision.reason}")


if __name__ == "__main__":
    main()
