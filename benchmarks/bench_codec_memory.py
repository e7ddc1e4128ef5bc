"""Benchmark: Memory usage of allowance annotation encode/decode.

Uses tracemalloc to measure peak memory allocated while repeatedly encoding
and decoding an annotation holding a realistic number of allowances with
multi-hop traces.
"""
from __future__ import annotations

import json
import sys
import time
import tracemalloc
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from aumos_causal_governance.model.allowance import (
    Allowance,
    Grant,
    MutationGrant,
    MutationVerb,
    TraceHop,
)
from aumos_causal_governance.storage.codec import AllowanceCodec

_ITERATIONS: int = 500
_ALLOWANCES: int = 16


def _allowances(count: int) -> list[Allowance]:
    grant = Grant(
        verbs=frozenset({"update"}),
        mutations=frozenset({MutationGrant("spec.replicas", frozenset({MutationVerb.MUTATE}))}),
    )
    return [
        Allowance(
            target="Pod",
            grant=grant,
            generation=i + 1,
            initiator="alice",
            trace=(
                TraceHop("Deployment", "web", i + 1, "spec.replicas", {"spec.replicas": i}),
                TraceHop("ReplicaSet", f"web-{i}", i + 1, "spec.replicas"),
            ),
        )
        for i in range(count)
    ]


def bench_codec_memory_usage() -> dict[str, object]:
    """Benchmark memory usage during repeated annotation round trips.

    Returns
    -------
    dict with keys: operation, iterations, peak_memory_kb, current_memory_kb,
    ops_per_second, avg_latency_ms, memory_peak_mb.
    """
    codec = AllowanceCodec()
    allowances = _allowances(_ALLOWANCES)

    tracemalloc.start()
    start = time.perf_counter()
    for _ in range(_ITERATIONS):
        codec.decode(codec.encode(allowances))
    total = time.perf_counter() - start
    current, peak = tracemalloc.get_traced_memory()
    tracemalloc.stop()

    result: dict[str, object] = {
        "operation": "codec_memory_usage",
        "iterations": _ITERATIONS,
        "peak_memory_kb": round(peak / 1024, 2),
        "current_memory_kb": round(current / 1024, 2),
        "ops_per_second": round(_ITERATIONS / total, 1),
        "avg_latency_ms": round(total / _ITERATIONS * 1000, 4),
        "memory_peak_mb": round(peak / (1024 * 1024), 4),
    }
    print(
        f"[bench_codec_memory] {result['operation']}: "
        f"peak={result['peak_memory_kb']:.2f}KB  "
        f"current={result['current_memory_kb']:.2f}KB"
    )
    return result


def run_benchmark() -> dict[str, object]:
    """Entry point returning the benchmark result dict."""
    return bench_codec_memory_usage()


if __name__ == "__main__":
    result = run_benchmark()
    results_dir = Path(__file__).parent / "results"
    results_dir.mkdir(exist_ok=True)
    output_path = results_dir / "memory_baseline.json"
    with open(output_path, "w", encoding="utf-8") as fh:
        json.dump(result, fh, indent=2)
    print(f"Results saved to {output_path}")
