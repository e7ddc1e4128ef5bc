"""In-memory object store with optimistic concurrency.

Objects are kept as plain mappings keyed by ``group/Kind``, namespace and
name.  Every write bumps ``metadata.resourceVersion``; a write carrying an
expected resourceVersion that no longer matches raises
:class:`~aumos_causal_governance.errors.ConflictError`, so two concurrent
decisions against the same object can never both persist their allowances.

The store also serves as the engine's parent lookup, decoding the parent's
allowance annotation on every call.

Example
-------
::

    store = InMemoryObjectStore()
    store.load_yaml(Path("cluster.yaml"))
    record = store.lookup_parent(owner_ref, "default")
"""
from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import yaml

from aumos_causal_governance.errors import ConflictError
from aumos_causal_governance.model.allowance import Allowance
from aumos_causal_governance.model.objects import ObjectRef, kind_key, split_api_version
from aumos_causal_governance.storage.codec import AllowanceCodec

logger = logging.getLogger(__name__)

StoreKey = tuple[str, str, str]


@dataclass(frozen=True)
class ParentRecord:
    """A controller parent together with its decoded allowances."""

    object: Mapping[str, object]
    allowances: tuple[Allowance, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def ref(self) -> ObjectRef:
        return ObjectRef.from_object(self.object)


class ParentLookup(Protocol):
    """Resolves a controller owner reference to the parent object."""

    def lookup_parent(
        self,
        owner_ref: Mapping[str, object],
        namespace: str | None,
    ) -> ParentRecord | None:
        ...


def object_key(obj: Mapping[str, object]) -> StoreKey:
    """Return the ``(group/Kind, namespace, name)`` key of *obj*."""
    ref = ObjectRef.from_object(obj)
    return ref.group_kind, ref.namespace or "", ref.name


def _render_key(key: StoreKey) -> str:
    group_kind, namespace, name = key
    return f"{group_kind} {namespace}/{name}" if namespace else f"{group_kind} {name}"


class InMemoryObjectStore:
    """Thread-safe dictionary of objects.

    Parameters
    ----------
    codec:
        Codec used to decode allowances for :meth:`lookup_parent`.
    """

    def __init__(self, codec: AllowanceCodec | None = None) -> None:
        self._codec = codec or AllowanceCodec()
        self._objects: dict[StoreKey, dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._version = 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(
        self,
        api_version: str,
        kind: str,
        name: str,
        namespace: str | None = None,
    ) -> dict[str, Any] | None:
        """Return a deep copy of the stored object, or None."""
        group, _ = split_api_version(api_version)
        key = (kind_key(group, kind), namespace or "", name)
        with self._lock:
            stored = self._objects.get(key)
            return copy.deepcopy(stored) if stored is not None else None

    def lookup_parent(
        self,
        owner_ref: Mapping[str, object],
        namespace: str | None,
    ) -> ParentRecord | None:
        """Resolve a controller owner reference to a :class:`ParentRecord`.

        A namespaced child may be owned by a cluster-scoped parent, so the
        child's namespace is tried first and the cluster scope second.
        """
        api_version = str(owner_ref.get("apiVersion", ""))
        kind = str(owner_ref.get("kind", ""))
        name = str(owner_ref.get("name", ""))
        parent = self.get(api_version, kind, name, namespace)
        if parent is None and namespace:
            parent = self.get(api_version, kind, name, None)
        if parent is None:
            return None

        uid = owner_ref.get("uid")
        parent_uid = (parent.get("metadata") or {}).get("uid")
        if uid and parent_uid and uid != parent_uid:
            logger.debug("Owner uid %s does not match stored %s/%s", uid, kind, name)
            return None

        decoded = self._codec.read_allowances(parent)
        return ParentRecord(
            object=parent,
            allowances=decoded.allowances,
            warnings=decoded.warnings,
        )

    def __iter__(self) -> Iterator[dict[str, Any]]:
        with self._lock:
            snapshot = [copy.deepcopy(obj) for obj in self._objects.values()]
        return iter(snapshot)

    def __len__(self) -> int:
        with self._lock:
            return len(self._objects)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def put(
        self,
        obj: Mapping[str, object],
        expected_version: str | None = None,
    ) -> dict[str, Any]:
        """Store *obj* and return the stored copy with its new resourceVersion.

        Parameters
        ----------
        obj:
            The object to write.
        expected_version:
            When given, the write only succeeds if the stored object still
            has this resourceVersion.  Use ``""`` to require that the object
            does not exist yet.

        Raises
        ------
        ConflictError
            If *expected_version* does not match the stored version.
        """
        key = object_key(obj)
        stored_obj = copy.deepcopy(dict(obj))
        with self._lock:
            current = self._objects.get(key)
            actual = resource_version(current) if current is not None else ""
            if expected_version is not None and expected_version != actual:
                raise ConflictError(_render_key(key), expected_version, actual or None)
            self._version += 1
            stored_obj.setdefault("metadata", {})["resourceVersion"] = str(self._version)
            self._objects[key] = stored_obj
            logger.debug("Stored %s at resourceVersion %d", _render_key(key), self._version)
            return copy.deepcopy(stored_obj)

    def replace(
        self,
        obj: Mapping[str, object],
        expected_resource_version: str | None = None,
    ) -> dict[str, Any]:
        """Version-checked write of an existing object.

        Checks against *expected_resource_version*, or the resourceVersion
        *obj* carries when none is given.
        """
        expected = expected_resource_version
        if expected is None:
            expected = resource_version(obj)
        return self.put(obj, expected_version=expected)

    def delete(self, obj: Mapping[str, object]) -> bool:
        key = object_key(obj)
        with self._lock:
            return self._objects.pop(key, None) is not None

    def load_yaml(self, path: str | Path) -> int:
        """Load every object from a (multi-document) YAML file.

        Returns the number of objects stored.  Documents that are not
        mappings are skipped.
        """
        path = Path(path)
        with path.open(encoding="utf-8") as handle:
            documents = list(yaml.safe_load_all(handle))
        count = 0
        for document in documents:
            if isinstance(document, list):
                items = document
            elif isinstance(document, Mapping) and document.get("kind") == "List":
                items = document.get("items") or []
            else:
                items = [document]
            for item in items:
                if not isinstance(item, Mapping):
                    continue
                self.put(item)
                count += 1
        logger.info("Loaded %d objects from %s", count, path)
        return count


def resource_version(obj: Mapping[str, object] | None) -> str:
    if obj is None:
        return ""
    metadata = obj.get("metadata")
    if not isinstance(metadata, Mapping):
        return ""
    return str(metadata.get("resourceVersion") or "")
