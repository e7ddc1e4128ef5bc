"""Causal trace construction and deterministic justification choice.

A trace is a linear, root-first tuple of hops.  Extending it never mutates
the parent trace: every allowance owns its own tuple.  The initiator is
recorded once, when a trace is originated, and copied unchanged on every
propagation.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence

from aumos_causal_governance.model.allowance import Allowance, TraceHop
from aumos_causal_governance.model.objects import ObjectRef, Subject

logger = logging.getLogger(__name__)


def extend(
    parent_trace: Sequence[TraceHop],
    hop: TraceHop,
    attestations: Mapping[str, object] | None = None,
) -> tuple[TraceHop, ...]:
    """Return a copy of *parent_trace* with *hop* appended.

    *attestations*, when given, are merged into the appended hop.
    """
    if attestations:
        hop = TraceHop(
            kind=hop.kind,
            name=hop.name,
            generation=hop.generation,
            field=hop.field,
            attestations={**hop.attestations, **attestations},
        )
    return (*parent_trace, hop)


def justification_key(allowance: Allowance) -> tuple[object, ...]:
    """Total order over candidate justifications.

    Candidates sort by the ``(kind, name, field)`` of their most recent hop;
    the remaining components only break ties between otherwise equal
    candidates so the choice is reproducible.
    """
    head = allowance.head
    head_key = head.sort_key if head else ("", "", "")
    hops = tuple((h.kind, h.name, h.generation, h.field) for h in allowance.trace)
    return (
        head_key,
        hops,
        allowance.generation,
        allowance.initiator,
        allowance.target,
        tuple(sorted(allowance.grant.verbs)),
    )


def select_justification(candidates: Iterable[Allowance]) -> Allowance | None:
    """Pick exactly one allowance out of several valid ones, or None if empty."""
    ordered = sorted(candidates, key=justification_key)
    if len(ordered) > 1:
        logger.debug(
            "Ambiguous justification resolved to %s out of %d candidates",
            ordered[0].describe(),
            len(ordered),
        )
    return ordered[0] if ordered else None


class TraceBuilder:
    """Builds the hop of a mutated object and the traces that carry it."""

    def hop_for(
        self,
        ref: ObjectRef,
        field: str,
        attestations: Mapping[str, object] | None = None,
    ) -> TraceHop:
        return TraceHop(
            kind=ref.kind,
            name=ref.name,
            generation=ref.generation,
            field=field,
            attestations=dict(attestations or {}),
        )

    def originate(self, subject: Subject, hop: TraceHop) -> tuple[str, tuple[TraceHop, ...]]:
        """Start a new trace; *subject* becomes its initiator."""
        return subject.identity, extend((), hop)

    def propagate(
        self,
        parent: Allowance,
        hop: TraceHop,
    ) -> tuple[str, tuple[TraceHop, ...]]:
        """Continue *parent*'s trace; the initiator is inherited unchanged."""
        return parent.initiator, extend(parent.trace, hop)
