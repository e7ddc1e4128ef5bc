"""Structural field-path matcher.

Paths address fields inside JSON-like objects.  A *concrete* path names one
field (``spec.template.spec.containers[0].image``); a *pattern* may also use
``[*]`` (any single index) and a trailing ``*`` (any suffix, including the
empty one, i.e. the field itself).

Grammar
-------
::

    path     := segment ( "." name | "[" index "]" | "['" quoted "']" )*
    segment  := name | "[" index "]" | "['" quoted "']"
    index    := digits | "*"
    trailing := ".*"            (final segment only)

Quoted keys allow names containing dots, e.g.
``metadata.annotations['app.kubernetes.io/name']``.

Matching is purely structural; nothing here knows the object schema.

Example
-------
>>> matches("spec.containers[*].image", "spec.containers[2].image")
True
>>> matches("spec.*", "spec")
True
>>> overlaps("spec.template.spec.replicas", "spec.template")
True
"""
from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from functools import lru_cache
from typing import Union

from aumos_causal_governance.errors import PathSyntaxError

_PLAIN_KEY = re.compile(r"^[A-Za-z0-9_\-/:@$]+$")


# ---------------------------------------------------------------------------
# Segments
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Key:
    """A mapping key."""

    name: str

    def render(self, first: bool) -> str:
        if _PLAIN_KEY.match(self.name):
            return self.name if first else f".{self.name}"
        quoted = self.name.replace("'", "\\'")
        return f"['{quoted}']"


@dataclass(frozen=True)
class Index:
    """A literal list index."""

    position: int

    def render(self, first: bool) -> str:
        return f"[{self.position}]"


@dataclass(frozen=True)
class AnyIndex:
    """``[*]``: any single list index."""

    def render(self, first: bool) -> str:
        return "[*]"


@dataclass(frozen=True)
class AnySuffix:
    """Trailing ``*``: any remaining path, including none."""

    def render(self, first: bool) -> str:
        return "*" if first else ".*"


Segment = Union[Key, Index, AnyIndex, AnySuffix]


# ---------------------------------------------------------------------------
# FieldPath
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldPath:
    """An immutable, parsed field path or pattern."""

    segments: tuple[Segment, ...]

    @classmethod
    def parse(cls, text: str) -> FieldPath:
        """Parse *text* according to the path grammar.

        Raises
        ------
        PathSyntaxError
            If the text is empty or malformed.
        """
        return _parse_cached(text)

    @property
    def is_concrete(self) -> bool:
        """True when the path contains no wildcard segment."""
        return all(isinstance(s, (Key, Index)) for s in self.segments)

    def child(self, segment: Key | Index) -> FieldPath:
        return FieldPath(self.segments + (segment,))

    def __str__(self) -> str:
        return "".join(seg.render(i == 0) for i, seg in enumerate(self.segments))

    def __len__(self) -> int:
        return len(self.segments)


PathLike = Union[str, FieldPath]


def as_path(value: PathLike) -> FieldPath:
    return value if isinstance(value, FieldPath) else FieldPath.parse(value)


@lru_cache(maxsize=4096)
def _parse_cached(text: str) -> FieldPath:
    if not text:
        raise PathSyntaxError(text, 0, "empty path")

    segments: list[Segment] = []
    pos = 0
    length = len(text)
    while pos < length:
        if segments and isinstance(segments[-1], AnySuffix):
            raise PathSyntaxError(text, pos, "'*' must be the final segment")
        if text[pos] == "[":
            segment, pos = _parse_bracket(text, pos)
        else:
            if segments:
                if text[pos] != ".":
                    raise PathSyntaxError(text, pos, "expected '.' or '['")
                pos += 1
            start = pos
            while pos < length and text[pos] not in ".[":
                pos += 1
            name = text[start:pos]
            if not name:
                raise PathSyntaxError(text, start, "empty segment")
            segment = AnySuffix() if name == "*" else Key(name)
        segments.append(segment)
    return FieldPath(tuple(segments))


def _parse_bracket(text: str, pos: int) -> tuple[Segment, int]:
    """Parse a ``[...]`` segment starting at *pos*; return it and the next offset."""
    if text.startswith(("['", '["'), pos):
        quote = text[pos + 1]
        end = pos + 2
        chars: list[str] = []
        while end < len(text):
            if text[end] == "\\" and end + 1 < len(text):
                chars.append(text[end + 1])
                end += 2
                continue
            if text.startswith(quote + "]", end):
                return Key("".join(chars)), end + 2
            chars.append(text[end])
            end += 1
        raise PathSyntaxError(text, pos, "unterminated quoted key")

    end = text.find("]", pos)
    if end == -1:
        raise PathSyntaxError(text, pos, "unterminated index")
    inner = text[pos + 1:end]
    if inner == "*":
        return AnyIndex(), end + 1
    if inner.isdigit():
        return Index(int(inner)), end + 1
    raise PathSyntaxError(text, pos, f"index must be digits or '*', got {inner!r}")


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


def matches(pattern: PathLike, concrete: PathLike) -> bool:
    """Return True when *concrete* is addressed by *pattern*."""
    return _match(as_path(pattern).segments, as_path(concrete).segments, 0, 0, False)


def overlaps(pattern: PathLike, concrete: PathLike) -> bool:
    """Return True when a change at *concrete* touches a field *pattern* addresses.

    This is :func:`matches` extended to ancestors: inserting or deleting the
    subtree at ``spec.template`` touches ``spec.template.spec.replicas``.
    """
    return _match(as_path(pattern).segments, as_path(concrete).segments, 0, 0, True)


def expand(pattern: PathLike, concrete_paths: Iterable[PathLike]) -> set[str]:
    """Return the concrete paths (rendered literally) that *pattern* matches."""
    compiled = as_path(pattern)
    return {
        str(as_path(path))
        for path in concrete_paths
        if _match(compiled.segments, as_path(path).segments, 0, 0, False)
    }


def _match(
    pattern: tuple[Segment, ...],
    concrete: tuple[Segment, ...],
    p: int,
    c: int,
    allow_ancestor: bool,
) -> bool:
    if p == len(pattern):
        return c == len(concrete)
    head = pattern[p]
    if isinstance(head, AnySuffix):
        return True
    if c == len(concrete):
        return allow_ancestor
    segment = concrete[c]
    if isinstance(head, AnyIndex):
        if not isinstance(segment, Index):
            return False
    elif head != segment:
        return False
    return _match(pattern, concrete, p + 1, c + 1, allow_ancestor)
