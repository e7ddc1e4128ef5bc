"""AllowancePolicy schema: Pydantic v2 models for externally-authored policy.

An :class:`AllowancePolicy` is written once per object kind.  It names the
subjects allowed to originate causal traces, the temporary broad permissions
granted while an object initialises or is deleted, and the steady-state rules
mapping field changes to the downstream operations they justify.

Example
-------
::

    kind: AllowancePolicy
    metadata:
      name: deployments
    spec:
      forKind: {apiGroup: apps, kind: Deployment}
      subjects:
        - {kind: Group, name: platform-admins, mayInitiate: true}
      rules:
        - trigger: spec.replicas
          policies:
            - target: {apiGroup: apps, kind: ReplicaSet}
              verbs: [update]
              mutations:
                - {jsonPath: spec.replicas, verbs: [Mutate]}

Field names accept both the camelCase form used in YAML and the snake_case
attribute names.
"""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from aumos_causal_governance.model.allowance import (
    Grant,
    MutationGrant,
    MutationVerb,
    Relation,
    external_key,
)
from aumos_causal_governance.model.objects import Subject, SubjectKind, kind_key
from aumos_causal_governance.paths.matcher import FieldPath

_MODEL_CONFIG: dict[str, Any] = {"populate_by_name": True, "extra": "forbid"}


# ---------------------------------------------------------------------------
# Targets
# ---------------------------------------------------------------------------


class TargetRef(BaseModel):
    """A downstream target.

    For ``ControllerChild`` relations exactly one of ``kind`` / ``resource``
    is given.  For ``External`` relations every field (including extra
    identifier keys such as ``system`` or ``service``) forms the identifier
    map.
    """

    model_config = {"populate_by_name": True, "extra": "allow"}

    api_group: str = Field(default="", alias="apiGroup")
    kind: str | None = None
    resource: str | None = None

    def child_key(self) -> str | None:
        if self.kind:
            return kind_key(self.api_group, self.kind)
        if self.resource:
            return kind_key(self.api_group, self.resource)
        return None

    def identifier(self) -> dict[str, str]:
        """All set fields, extras included, for use as an external identifier."""
        data = self.model_dump(by_alias=True, exclude_none=True)
        return {str(k): str(v) for k, v in data.items() if v != ""}


class MutationRule(BaseModel):
    """A field-level grant: change kinds permitted for a path pattern."""

    model_config = _MODEL_CONFIG

    path: str = Field(alias="jsonPath")
    verbs: list[MutationVerb] = Field(default_factory=lambda: list(MutationVerb))

    @field_validator("path")
    @classmethod
    def path_must_parse(cls, value: str) -> str:
        FieldPath.parse(value)
        return value

    def to_grant(self) -> MutationGrant:
        return MutationGrant(pattern=self.path, verbs=frozenset(self.verbs))


class PolicyEntry(BaseModel):
    """Verbs (and, for child objects, field mutations) granted on one target.

    An entry without ``target`` is inert: it contributes nothing to any bound.
    """

    model_config = _MODEL_CONFIG

    target: TargetRef | None = None
    relation: Relation = Relation.CONTROLLER_CHILD
    verbs: list[str] = Field(default_factory=list)
    mutations: list[MutationRule] | None = None

    @field_validator("verbs")
    @classmethod
    def normalise_verbs(cls, values: list[str]) -> list[str]:
        return [v.strip().lower() for v in values if v.strip()]

    @model_validator(mode="after")
    def check_relation(self) -> PolicyEntry:
        if self.relation is Relation.EXTERNAL:
            if self.mutations:
                raise ValueError("mutations are only valid for ControllerChild entries")
            if self.target is not None and not self.target.identifier():
                raise ValueError("External target needs at least one identifier key")
        elif self.target is not None and self.target.child_key() is None:
            raise ValueError("ControllerChild target needs a kind or a resource")
        return self

    def target_key(self) -> str | None:
        if self.target is None:
            return None
        if self.relation is Relation.EXTERNAL:
            return external_key(self.target.identifier())
        return self.target.child_key()

    def to_grant(self) -> Grant:
        mutations = frozenset(m.to_grant() for m in self.mutations or [])
        return Grant(
            verbs=frozenset(self.verbs),
            mutations=mutations,
            any_field=not mutations,
        )


# ---------------------------------------------------------------------------
# Subjects
# ---------------------------------------------------------------------------


class SubjectSpec(BaseModel):
    """An identity named by a policy, optionally allowed to originate traces."""

    model_config = _MODEL_CONFIG

    kind: SubjectKind
    name: str
    namespace: str | None = None
    may_initiate: bool = Field(default=False, alias="mayInitiate")

    @model_validator(mode="after")
    def namespace_only_for_service_accounts(self) -> SubjectSpec:
        if self.namespace and self.kind is not SubjectKind.SERVICE_ACCOUNT:
            raise ValueError("namespace is only valid for ServiceAccount subjects")
        return self

    def matches(self, subject: Subject) -> bool:
        if self.kind is SubjectKind.GROUP:
            return self.name in subject.groups
        if subject.kind is not self.kind or subject.name != self.name:
            return False
        if self.kind is SubjectKind.SERVICE_ACCOUNT:
            return (self.namespace or None) == (subject.namespace or None)
        return True


# ---------------------------------------------------------------------------
# Rules and phases
# ---------------------------------------------------------------------------


class Rule(BaseModel):
    """Maps a changed field (plus conditions) to an upper bound of policies.

    An empty ``policies`` list is an explicit opt-out of restriction for
    whatever the trigger would otherwise bound.
    """

    model_config = _MODEL_CONFIG

    name: str | None = None
    trigger: str
    conditions: list[Any] = Field(default_factory=list)
    capture: list[str] = Field(default_factory=list)
    policies: list[PolicyEntry] = Field(default_factory=list)

    @field_validator("trigger")
    @classmethod
    def trigger_must_parse(cls, value: str) -> str:
        FieldPath.parse(value)
        return value

    @field_validator("capture")
    @classmethod
    def captures_must_be_concrete(cls, values: list[str]) -> list[str]:
        for value in values:
            if not FieldPath.parse(value).is_concrete:
                raise ValueError(f"capture path {value!r} must not contain wildcards")
        return values

    @property
    def label(self) -> str:
        return self.name or self.trigger


class InitializingSpec(BaseModel):
    """Broad permissions while the object initialises.

    ``when`` is a predicate expression; when omitted the object initialises
    until ``status.observedGeneration`` is set.
    """

    model_config = _MODEL_CONFIG

    when: Any | None = None
    policies: list[PolicyEntry] = Field(default_factory=list)


class DeletingSpec(BaseModel):
    """Broad permissions while the object is being deleted."""

    model_config = _MODEL_CONFIG

    policies: list[PolicyEntry] = Field(default_factory=list)


class AllowancePolicy(BaseModel):
    """The policy for one object kind."""

    model_config = _MODEL_CONFIG

    name: str = "unnamed"
    for_kind: TargetRef = Field(alias="forKind")
    subjects: list[SubjectSpec] = Field(default_factory=list)
    initializing: InitializingSpec = Field(default_factory=InitializingSpec)
    deleting: DeletingSpec = Field(default_factory=DeletingSpec)
    rules: list[Rule] = Field(default_factory=list)

    @field_validator("for_kind")
    @classmethod
    def for_kind_needs_kind(cls, value: TargetRef) -> TargetRef:
        if not value.kind:
            raise ValueError("forKind must name a kind")
        return value

    @property
    def kind_key(self) -> str:
        return kind_key(self.for_kind.api_group, self.for_kind.kind or "")

    def may_initiate(self, subject: Subject) -> bool:
        """Return True when a subject entry with ``mayInitiate`` matches *subject*."""
        return any(spec.may_initiate and spec.matches(subject) for spec in self.subjects)


class UpgradeAllowance(BaseModel):
    """Temporary permissions for a controller whose binary identity changed.

    ``subject`` is the controller's ServiceAccount identity string
    (``system:serviceaccount:<namespace>:<name>``), compared by equality.
    """

    model_config = _MODEL_CONFIG

    name: str = "unnamed"
    subject: str
    policies: list[PolicyEntry] = Field(default_factory=list)
