"""Persistence of allowances on objects, and an in-memory object store."""
from __future__ import annotations

from aumos_causal_governance.storage.codec import (
    DEFAULT_ANNOTATION_PREFIX,
    AllowanceCodec,
    DecodeResult,
)
from aumos_causal_governance.storage.store import (
    InMemoryObjectStore,
    ParentLookup,
    ParentRecord,
    object_key,
    resource_version,
)

__all__ = [
    "DEFAULT_ANNOTATION_PREFIX",
    "AllowanceCodec",
    "DecodeResult",
    "InMemoryObjectStore",
    "ParentLookup",
    "ParentRecord",
    "object_key",
    "resource_version",
]
