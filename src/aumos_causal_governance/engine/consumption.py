"""Allowance consumption, pruning and merging.

An allowance is *consumed* once the holding object's controller has observed
the generation that produced it (``status.observedGeneration >=
allowance.generation``).  Consumed allowances may be dropped whenever the
object is next admitted; pruning is housekeeping and needs no scheduler.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from aumos_causal_governance.model.allowance import Allowance
from aumos_causal_governance.model.objects import ObjectRef

logger = logging.getLogger(__name__)


def is_consumed(allowance: Allowance, obj: Mapping[str, object] | ObjectRef) -> bool:
    """Return True when *obj* has observed the generation that produced *allowance*."""
    ref = obj if isinstance(obj, ObjectRef) else ObjectRef.from_object(obj)
    if ref.observed_generation is None:
        return False
    return ref.observed_generation >= allowance.generation


def prune(
    allowances: Iterable[Allowance],
    obj: Mapping[str, object] | ObjectRef,
) -> tuple[Allowance, ...]:
    """Drop every consumed allowance, keeping the order of the rest."""
    ref = obj if isinstance(obj, ObjectRef) else ObjectRef.from_object(obj)
    kept: list[Allowance] = []
    for allowance in allowances:
        if is_consumed(allowance, ref):
            logger.debug(
                "Pruning consumed allowance %s on %s (observedGeneration=%s)",
                allowance.describe(),
                ref.describe(),
                ref.observed_generation,
            )
            continue
        kept.append(allowance)
    return tuple(kept)


def merge(*groups: Iterable[Allowance]) -> tuple[Allowance, ...]:
    """Concatenate allowance groups, collapsing duplicates onto the first occurrence.

    Adding allowances never removes an existing one; only exact duplicates
    (same target, grant and head hop) collapse.
    """
    seen: set[tuple[object, ...]] = set()
    merged: list[Allowance] = []
    for group in groups:
        for allowance in group:
            key = allowance.collapse_key()
            if key in seen:
                continue
            seen.add(key)
            merged.append(allowance)
    return tuple(merged)
