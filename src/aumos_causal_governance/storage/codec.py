"""Annotation codec for allowances and the controller fingerprint.

Allowances persist on the object carrying them, under
``<prefix>/allowances``, as a YAML block sequence.  Field order is fixed
(``target, verbs, mutations, unrestricted, generation, initiator, trace``;
per hop ``kind, name, generation, field, attestations``) and attestation
maps round-trip unchanged::

    - target: apps/ReplicaSet
      verbs:
      - update
      mutations:
      - path: spec.replicas
        verbs:
        - Mutate
      generation: 7
      initiator: alice
      trace:
      - kind: Deployment
        name: web
        generation: 7
        field: spec.replicas

A ``mutations`` key that is absent means "any field".  Decoding is lenient:
a record that fails validation is left out and reported as a warning, so one
corrupt record never blocks an admission decision.
"""
from __future__ import annotations

import copy
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from aumos_causal_governance.errors import MalformedAllowanceError
from aumos_causal_governance.model.allowance import (
    Allowance,
    Grant,
    MutationGrant,
    MutationVerb,
    TraceHop,
)
from aumos_causal_governance.model.objects import annotations_of
from aumos_causal_governance.paths.matcher import FieldPath

logger = logging.getLogger(__name__)

DEFAULT_ANNOTATION_PREFIX = "causal.aumos.ai"


# ---------------------------------------------------------------------------
# Record models
# ---------------------------------------------------------------------------


class _HopRecord(BaseModel):
    model_config = {"extra": "forbid"}

    kind: str = Field(min_length=1)
    name: str = Field(min_length=1)
    generation: int = Field(ge=0)
    field: str = Field(min_length=1)
    attestations: dict[str, Any] = Field(default_factory=dict)


class _MutationRecord(BaseModel):
    model_config = {"extra": "forbid"}

    path: str
    verbs: list[MutationVerb] = Field(min_length=1)

    @field_validator("path")
    @classmethod
    def path_must_parse(cls, value: str) -> str:
        FieldPath.parse(value)
        return value


class _AllowanceRecord(BaseModel):
    model_config = {"extra": "forbid"}

    target: str = Field(min_length=1)
    verbs: list[str] = Field(default_factory=list)
    mutations: list[_MutationRecord] | None = None
    unrestricted: bool = False
    generation: int = Field(ge=0)
    initiator: str = Field(min_length=1)
    trace: list[_HopRecord] = Field(min_length=1)

    @model_validator(mode="after")
    def trace_must_be_linear(self) -> _AllowanceRecord:
        seen: set[tuple[str, str]] = set()
        for hop in self.trace:
            key = (hop.kind, hop.name)
            if key in seen:
                raise ValueError(f"trace visits {hop.kind}/{hop.name} twice")
            seen.add(key)
        return self

    def to_allowance(self) -> Allowance:
        mutations = frozenset(
            MutationGrant(pattern=m.path, verbs=frozenset(m.verbs))
            for m in self.mutations or []
        )
        grant = Grant(
            verbs=frozenset(v.lower() for v in self.verbs),
            mutations=mutations,
            any_field=self.mutations is None,
            unrestricted=self.unrestricted,
        )
        return Allowance(
            target=self.target,
            grant=grant,
            generation=self.generation,
            initiator=self.initiator,
            trace=tuple(
                TraceHop(
                    kind=h.kind,
                    name=h.name,
                    generation=h.generation,
                    field=h.field,
                    attestations=h.attestations,
                )
                for h in self.trace
            ),
        )


def _to_record(allowance: Allowance) -> dict[str, object]:
    grant = allowance.grant
    record: dict[str, object] = {
        "target": allowance.target,
        "verbs": sorted(grant.verbs),
    }
    if not grant.any_field:
        record["mutations"] = [
            {"path": m.pattern, "verbs": sorted(v.value for v in m.verbs)}
            for m in sorted(grant.mutations, key=lambda m: m.pattern)
        ]
    if grant.unrestricted:
        record["unrestricted"] = True
    record["generation"] = allowance.generation
    record["initiator"] = allowance.initiator
    record["trace"] = [hop.to_dict() for hop in allowance.trace]
    return record


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DecodeResult:
    """Decoded allowances plus a warning for every record left out."""

    allowances: tuple[Allowance, ...] = ()
    warnings: tuple[str, ...] = ()


class AllowanceCodec:
    """Reads and writes allowance and fingerprint annotations.

    Parameters
    ----------
    annotation_prefix:
        Domain prefix of the annotation keys.
    """

    def __init__(self, annotation_prefix: str = DEFAULT_ANNOTATION_PREFIX) -> None:
        self._prefix = annotation_prefix.rstrip("/")

    @property
    def allowances_key(self) -> str:
        return f"{self._prefix}/allowances"

    @property
    def fingerprint_key(self) -> str:
        return f"{self._prefix}/fingerprint"

    # ------------------------------------------------------------------
    # Text encoding
    # ------------------------------------------------------------------

    def encode(self, allowances: Iterable[Allowance]) -> str:
        records = [_to_record(a) for a in allowances]
        return yaml.safe_dump(
            records, sort_keys=False, default_flow_style=False, allow_unicode=True
        )

    def decode(self, text: str | None) -> DecodeResult:
        """Decode leniently; malformed records become warnings."""
        if not text or not text.strip():
            return DecodeResult()
        try:
            raw = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            message = f"Malformed allowance annotation, ignoring it entirely: {exc}"
            logger.warning(message)
            return DecodeResult(warnings=(message,))
        if not isinstance(raw, list):
            message = (
                f"Malformed allowance annotation: expected a list, got {type(raw).__name__}"
            )
            logger.warning(message)
            return DecodeResult(warnings=(message,))

        allowances: list[Allowance] = []
        warnings: list[str] = []
        for index, item in enumerate(raw):
            try:
                allowances.append(_AllowanceRecord.model_validate(item).to_allowance())
            except ValidationError as exc:
                message = f"Malformed allowance record {index} excluded: {_first_error(exc)}"
                logger.warning(message)
                warnings.append(message)
        return DecodeResult(tuple(allowances), tuple(warnings))

    def decode_strict(self, text: str) -> tuple[Allowance, ...]:
        """Decode, raising :class:`MalformedAllowanceError` on the first problem."""
        result = self.decode(text)
        if result.warnings:
            raise MalformedAllowanceError(result.warnings[0])
        return result.allowances

    # ------------------------------------------------------------------
    # Object annotations
    # ------------------------------------------------------------------

    def read_allowances(self, obj: Mapping[str, object] | None) -> DecodeResult:
        value = annotations_of(obj).get(self.allowances_key)
        if value is None:
            return DecodeResult()
        if not isinstance(value, str):
            message = f"Allowance annotation {self.allowances_key} is not a string"
            logger.warning(message)
            return DecodeResult(warnings=(message,))
        return self.decode(value)

    def read_fingerprint(self, obj: Mapping[str, object] | None) -> str | None:
        value = annotations_of(obj).get(self.fingerprint_key)
        return str(value) if value else None

    def write_annotations(
        self,
        obj: Mapping[str, object],
        allowances: Iterable[Allowance],
        fingerprint: str | None = None,
    ) -> dict[str, Any]:
        """Return a deep copy of *obj* with the annotations set.

        The allowance annotation is removed when *allowances* is empty; the
        fingerprint annotation is only written when *fingerprint* is given.
        """
        updated: dict[str, Any] = copy.deepcopy(dict(obj))
        metadata = updated.setdefault("metadata", {})
        annotations = dict(metadata.get("annotations") or {})
        items = list(allowances)
        if items:
            annotations[self.allowances_key] = self.encode(items)
        else:
            annotations.pop(self.allowances_key, None)
        if fingerprint is not None:
            annotations[self.fingerprint_key] = fingerprint
        metadata["annotations"] = annotations
        return updated


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg', '')}" if location else str(first.get("msg", ""))
