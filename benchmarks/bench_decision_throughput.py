"""Benchmark: Admission decision throughput: decisions per second.

Measures AdmissionDecider.decide() on a ReplicaSet update that must be
justified by an allowance carried by its Deployment, the common hot path
of a controller chain.
"""
from __future__ import annotations

import json
import sys
import time
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from aumos_causal_governance.engine.decision import AdmissionDecider, AdmissionRequest
from aumos_causal_governance.model.objects import Operation, Subject
from aumos_causal_governance.policies.loader import PolicyLoader
from aumos_causal_governance.storage.store import InMemoryObjectStore

_WARMUP: int = 200
_ITERATIONS: int = 5_000

_POLICIES = """
kind: AllowancePolicy
metadata: {name: deployments}
spec:
  forKind: {apiGroup: apps, kind: Deployment}
  subjects: [{kind: User, name: alice, mayInitiate: true}]
  rules:
    - trigger: spec.replicas
      policies:
        - target: {apiGroup: apps, kind: ReplicaSet}
          verbs: [update]
          mutations: [{jsonPath: spec.replicas, verbs: [Mutate]}]
---
kind: AllowancePolicy
metadata: {name: replicasets}
spec:
  forKind: {apiGroup: apps, kind: ReplicaSet}
  rules:
    - trigger: spec.replicas
      policies:
        - target: {kind: Pod}
          verbs: [create, delete]
"""


def _deployment(generation: int, replicas: int) -> dict[str, object]:
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": "web", "namespace": "default", "generation": generation},
        "spec": {"replicas": replicas},
        "status": {"observedGeneration": 6},
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
                {"apiVersion": "apps/v1", "kind": "Deployment", "name": "web", "controller": True}
            ],
        },
        "spec": {"replicas": replicas},
        "status": {"observedGeneration": 13},
    }


def _build() -> tuple[AdmissionDecider, AdmissionRequest]:
    registry = PolicyLoader().load_from_yaml_string(_POLICIES)
    store = InMemoryObjectStore()
    decider = AdmissionDecider(registry, parent_lookup=store)

    root = decider.decide(
        AdmissionRequest(
            Subject.from_username("alice"),
            Operation.UPDATE,
            _deployment(7, 5),
            _deployment(6, 3),
        )
    )
    store.put(decider.codec.write_annotations(_deployment(7, 5), root.allowances))
    request = AdmissionRequest(
        Subject.from_username("system:serviceaccount:kube-system:deployment-controller"),
        Operation.UPDATE,
        _replicaset(14, 5),
        _replicaset(13, 3),
    )
    return decider, request


def bench_decision_throughput() -> dict[str, object]:
    """Benchmark AdmissionDecider.decide() throughput on a propagated update.

    Returns
    -------
    dict with keys: operation, iterations, total_seconds, ops_per_second,
    avg_latency_ms, p99_latency_ms, memory_peak_mb.
    """
    decider, request = _build()

    for _ in range(_WARMUP):
        decider.decide(request)

    latencies_ms: list[float] = []
    start = time.perf_counter()
    for _ in range(_ITERATIONS):
        t0 = time.perf_counter()
        decider.decide(request)
        latencies_ms.append((time.perf_counter() - t0) * 1000)
    total = time.perf_counter() - start

    sorted_lats = sorted(latencies_ms)
    n = len(sorted_lats)
    result: dict[str, object] = {
        "operation": "admission_decision_throughput",
        "iterations": _ITERATIONS,
        "total_seconds": round(total, 4),
        "ops_per_second": round(_ITERATIONS / total, 1),
        "avg_latency_ms": round(sum(latencies_ms) / n, 4),
        "p99_latency_ms": round(sorted_lats[min(int(n * 0.99), n - 1)], 4),
        "memory_peak_mb": 0.0,
    }
    print(
        f"[bench_decision_throughput] {result['operation']}: "
        f"{result['ops_per_second']:,.0f} ops/sec  "
        f"p99={result['p99_latency_ms']:.4f}ms"
    )
    return result


def run_benchmark() -> dict[str, object]:
    """Entry point returning the benchmark result dict."""
    return bench_decision_throughput()


if __name__ == "__main__":
    result = run_benchmark()
    results_dir = Path(__file__).parent / "results"
    results_dir.mkdir(exist_ok=True)
    output_path = results_dir / "throughput_baseline.json"
    with open(output_path, "w", encoding="utf-8") as fh:
        json.dump(result, fh, indent=2)
    print(f"Results saved to {output_path}")
