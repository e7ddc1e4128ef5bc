"""Concrete field diff between two versions of an object.

Produces one :class:`FieldChange` per added, removed or modified field.
Mappings and lists are walked recursively (lists element-wise by index);
an added or removed subtree is reported once, at its root.

Example
-------
>>> changes = diff_objects({"spec": {"replicas": 3}}, {"spec": {"replicas": 5}})
>>> [(str(c.path), c.verb.value) for c in changes]
[('spec.replicas', 'Mutate')]
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum

from aumos_causal_governance.paths.matcher import (
    AnyIndex,
    AnySuffix,
    FieldPath,
    Index,
    Key,
    PathLike,
    as_path,
    matches,
)

DEFAULT_IGNORED_PATHS: tuple[str, ...] = ("metadata.*", "status.*")

_MISSING = object()


class MutationVerb(str, Enum):
    """Kind of change applied to a single field."""

    INSERT = "Insert"
    DELETE = "Delete"
    MUTATE = "Mutate"


@dataclass(frozen=True)
class FieldChange:
    """A single concrete field change."""

    path: FieldPath
    verb: MutationVerb

    @property
    def field(self) -> str:
        return str(self.path)


def diff_objects(
    old: Mapping[str, object] | None,
    new: Mapping[str, object] | None,
    ignore: Iterable[PathLike] = DEFAULT_IGNORED_PATHS,
) -> list[FieldChange]:
    """Return the sorted field changes turning *old* into *new*.

    Parameters
    ----------
    old, new:
        Object versions; ``None`` is treated as an empty object.
    ignore:
        Path patterns whose subtrees are never reported.
    """
    ignored = [as_path(p) for p in ignore]
    changes: list[FieldChange] = []
    _walk(old or {}, new or {}, FieldPath(()), ignored, changes)
    changes.sort(key=lambda change: str(change.path))
    return changes


def read_path(obj: object, path: PathLike) -> object:
    """Return the value at a concrete *path*, or ``None`` when absent."""
    value = _read(obj, as_path(path))
    return None if value is _MISSING else value


def has_path(obj: object, path: PathLike) -> bool:
    return _read(obj, as_path(path)) is not _MISSING


def _read(obj: object, path: FieldPath) -> object:
    current = obj
    for segment in path.segments:
        if isinstance(segment, Key) and isinstance(current, Mapping):
            if segment.name not in current:
                return _MISSING
            current = current[segment.name]
        elif isinstance(segment, Index) and _is_list(current):
            if segment.position >= len(current):  # type: ignore[arg-type]
                return _MISSING
            current = current[segment.position]  # type: ignore[index]
        elif isinstance(segment, (AnyIndex, AnySuffix)):
            raise ValueError(f"Cannot read through wildcard path {path}")
        else:
            return _MISSING
    return current


def _walk(
    old: object,
    new: object,
    here: FieldPath,
    ignored: list[FieldPath],
    out: list[FieldChange],
) -> None:
    if here.segments and any(matches(pattern, here) for pattern in ignored):
        return

    if isinstance(old, Mapping) and isinstance(new, Mapping):
        for key in sorted(set(old) | set(new), key=str):
            child = here.child(Key(str(key)))
            if key not in new:
                _record(child, MutationVerb.DELETE, ignored, out)
            elif key not in old:
                _record(child, MutationVerb.INSERT, ignored, out)
            else:
                _walk(old[key], new[key], child, ignored, out)
        return

    if _is_list(old) and _is_list(new):
        old_items: Sequence[object] = old  # type: ignore[assignment]
        new_items: Sequence[object] = new  # type: ignore[assignment]
        for position in range(max(len(old_items), len(new_items))):
            child = here.child(Index(position))
            if position >= len(new_items):
                _record(child, MutationVerb.DELETE, ignored, out)
            elif position >= len(old_items):
                _record(child, MutationVerb.INSERT, ignored, out)
            else:
                _walk(old_items[position], new_items[position], child, ignored, out)
        return

    if old != new or type(old) is not type(new):
        _record(here, MutationVerb.MUTATE, ignored, out)


def _record(
    path: FieldPath,
    verb: MutationVerb,
    ignored: list[FieldPath],
    out: list[FieldChange],
) -> None:
    if any(matches(pattern, path) for pattern in ignored):
        return
    out.append(FieldChange(path=path, verb=verb))


def _is_list(value: object) -> bool:
    return isinstance(value, (list, tuple))
