"""Object and subject value types.

Objects under admission are plain Kubernetes-style mappings.  This module
extracts the identity the engine needs from them (:class:`ObjectRef`) and
models the authenticated requester (:class:`Subject`).

Example
-------
>>> ref = ObjectRef.from_object({
...     "apiVersion": "apps/v1",
...     "kind": "Deployment",
...     "metadata": {"name": "web", "namespace": "prod", "generation": 7},
... })
>>> ref.group_kind
'apps/Deployment'
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

_SERVICE_ACCOUNT_PREFIX = "system:serviceaccount:"


class Phase(str, Enum):
    """Lifecycle phase of an object."""

    INITIALIZING = "Initializing"
    STEADY_STATE = "SteadyState"
    DELETING = "Deleting"


class Operation(str, Enum):
    """Admission operation of a request."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

    @property
    def verb(self) -> str:
        """The lowercase verb name used by policy entries."""
        return self.value.lower()


class SubjectKind(str, Enum):
    """Kind of an authenticated identity."""

    USER = "User"
    GROUP = "Group"
    SERVICE_ACCOUNT = "ServiceAccount"


@dataclass(frozen=True)
class Subject:
    """The authenticated identity issuing an admission request.

    Attributes
    ----------
    kind:
        User, Group or ServiceAccount.
    name:
        Name of the identity.
    namespace:
        Namespace of a ServiceAccount; ``None`` for other kinds.
    may_initiate:
        Whether the authentication layer asserts this identity may originate
        new causal traces.  Policies may additionally grant initiation.
    groups:
        Groups the identity belongs to, as reported by authentication.
    """

    kind: SubjectKind
    name: str
    namespace: str | None = None
    may_initiate: bool = False
    groups: tuple[str, ...] = ()

    @property
    def identity(self) -> str:
        """Identity string; ServiceAccounts use the ``system:serviceaccount:`` form."""
        if self.kind is SubjectKind.SERVICE_ACCOUNT:
            return f"{_SERVICE_ACCOUNT_PREFIX}{self.namespace or ''}:{self.name}"
        return self.name

    @classmethod
    def from_username(
        cls,
        username: str,
        groups: tuple[str, ...] | list[str] = (),
        may_initiate: bool = False,
    ) -> Subject:
        """Build a Subject from an authenticated username and group list."""
        if username.startswith(_SERVICE_ACCOUNT_PREFIX):
            namespace, _, name = username[len(_SERVICE_ACCOUNT_PREFIX):].partition(":")
            return cls(
                kind=SubjectKind.SERVICE_ACCOUNT,
                name=name,
                namespace=namespace,
                may_initiate=may_initiate,
                groups=tuple(groups),
            )
        return cls(
            kind=SubjectKind.USER,
            name=username,
            may_initiate=may_initiate,
            groups=tuple(groups),
        )


@dataclass(frozen=True)
class ObjectRef:
    """Identity and generation bookkeeping of one object.

    ``namespace`` is ``None`` for cluster-scoped objects.
    """

    api_group: str
    api_version: str
    kind: str
    name: str
    generation: int = 0
    namespace: str | None = None
    observed_generation: int | None = None
    deletion_timestamp: str | None = None

    @classmethod
    def from_object(cls, obj: Mapping[str, object]) -> ObjectRef:
        """Extract an ObjectRef from a Kubernetes-style object mapping."""
        group, version = split_api_version(str(obj.get("apiVersion", "")))
        metadata = _mapping(obj.get("metadata"))
        status = _mapping(obj.get("status"))
        observed = status.get("observedGeneration")
        deletion = metadata.get("deletionTimestamp")
        return cls(
            api_group=group,
            api_version=version,
            kind=str(obj.get("kind", "")),
            name=str(metadata.get("name", "")),
            generation=_as_int(metadata.get("generation"), 0),
            namespace=str(metadata["namespace"]) if metadata.get("namespace") else None,
            observed_generation=_as_int(observed, None),
            deletion_timestamp=str(deletion) if deletion else None,
        )

    @property
    def group_kind(self) -> str:
        """Kind-level target key (``group/Kind``, or ``Kind`` for the core group)."""
        return kind_key(self.api_group, self.kind)

    @property
    def cluster_scoped(self) -> bool:
        return self.namespace is None

    @property
    def deleting(self) -> bool:
        return self.deletion_timestamp is not None

    def describe(self) -> str:
        """Human-readable ``Kind ns/name`` string for logs and reasons."""
        if self.namespace:
            return f"{self.kind} {self.namespace}/{self.name}"
        return f"{self.kind} {self.name}"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def split_api_version(api_version: str) -> tuple[str, str]:
    """Split ``apps/v1`` into ``("apps", "v1")`` and ``v1`` into ``("", "v1")``."""
    group, sep, version = api_version.rpartition("/")
    if not sep:
        return "", api_version
    return group, version


def kind_key(api_group: str, kind: str) -> str:
    return f"{api_group}/{kind}" if api_group else kind


def controller_owner(obj: Mapping[str, object]) -> Mapping[str, object] | None:
    """Return the owner reference flagged ``controller: true``, if any."""
    metadata = _mapping(obj.get("metadata"))
    owners = metadata.get("ownerReferences") or []
    if not isinstance(owners, list):
        return None
    for owner in owners:
        if isinstance(owner, Mapping) and owner.get("controller") is True:
            return owner
    return None


def annotations_of(obj: Mapping[str, object] | None) -> Mapping[str, object]:
    if obj is None:
        return {}
    return _mapping(_mapping(obj.get("metadata")).get("annotations"))


def _mapping(value: object) -> Mapping[str, object]:
    return value if isinstance(value, Mapping) else {}


def _as_int(value: object, default: int | None) -> int | None:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
