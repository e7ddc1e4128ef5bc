"""Append-only JSONL log of admission decisions.

Every decision the :class:`~aumos_causal_governance.convenience.CausalGovernor`
makes is written as one JSON line carrying a UTC timestamp, the session id,
the request uid, who asked for what, and how the engine answered::

    {"timestamp": "...", "session_id": "...", "event": "admission",
     "uid": "r-1", "subject": "alice", "operation": "update",
     "object": "Deployment default/web", "allowed": true,
     "basis": "initiated", "reason": "...", "issued": 1}

Writes and reads share a ``threading.Lock``.
"""
from __future__ import annotations

import json
import logging
import threading
import uuid
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path

from aumos_causal_governance.engine.decision import (
    AdmissionRequest,
    Decision,
    ExternalRequest,
)
from aumos_causal_governance.model.allowance import external_key
from aumos_causal_governance.model.objects import ObjectRef

logger = logging.getLogger(__name__)


class AuditLogger:
    """JSONL decision log.

    Parameters
    ----------
    log_path:
        Path to the ``.jsonl`` file.  Parent directories are created on
        first write.
    session_id:
        Identifier stamped on every record; a random UUID by default.
    """

    def __init__(self, log_path: Path, session_id: str | None = None) -> None:
        self._log_path = Path(log_path)
        self._session_id = session_id or str(uuid.uuid4())
        self._lock = threading.Lock()

    @property
    def log_path(self) -> Path:
        return self._log_path

    @property
    def session_id(self) -> str:
        return self._session_id

    # ------------------------------------------------------------------
    # Write API
    # ------------------------------------------------------------------

    def log(self, entry: dict[str, object]) -> None:
        """Append *entry*, stamped with ``timestamp`` and ``session_id``."""
        record: dict[str, object] = {
            "timestamp": datetime.now(tz=timezone.utc).isoformat(),
            "session_id": self._session_id,
            **entry,
        }
        line = json.dumps(record, default=str)
        with self._lock:
            self._log_path.parent.mkdir(parents=True, exist_ok=True)
            with self._log_path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")

    def record_admission(self, request: AdmissionRequest, decision: Decision) -> None:
        ref = ObjectRef.from_object(request.current)
        self.log(
            {
                "event": "admission",
                "uid": request.uid,
                "subject": request.subject.identity,
                "operation": request.operation.verb,
                "object": ref.describe(),
                "generation": ref.generation,
                **_decision_fields(decision),
            }
        )

    def record_external(self, request: ExternalRequest, decision: Decision) -> None:
        ref = ObjectRef.from_object(request.object)
        self.log(
            {
                "event": "external",
                "uid": request.uid,
                "subject": request.subject.identity,
                "operation": request.verb.lower(),
                "object": ref.describe(),
                "target": external_key(request.system),
                **_decision_fields(decision),
            }
        )

    # ------------------------------------------------------------------
    # Read API
    # ------------------------------------------------------------------

    def read_all(self) -> list[dict[str, object]]:
        """Return every record in file order; empty when the file is missing."""
        return list(self._iter_records())

    def query(self, filters: dict[str, object]) -> list[dict[str, object]]:
        """Return records whose top-level fields equal every value in *filters*."""
        return [
            record
            for record in self._iter_records()
            if all(record.get(k) == v for k, v in filters.items())
        ]

    def rejections(self) -> list[dict[str, object]]:
        return self.query({"allowed": False})

    def count(self) -> int:
        return sum(1 for _ in self._iter_records())

    def last_n(self, n: int) -> list[dict[str, object]]:
        records = list(self._iter_records())
        if n <= 0:
            return []
        return records[-n:]

    def _iter_records(self) -> Iterator[dict[str, object]]:
        if not self._log_path.exists():
            return
        with self._lock:
            with self._log_path.open("r", encoding="utf-8") as fh:
                lines = fh.readlines()
        for number, line in enumerate(lines, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Skipping malformed audit line %d in %s", number, self._log_path)


def _decision_fields(decision: Decision) -> dict[str, object]:
    return {
        "allowed": decision.allowed,
        "basis": decision.basis.value,
        "reason": decision.reason,
        "issued": len(decision.issued),
        "justifications": [a.describe() for a in decision.justifications],
        "warnings": list(decision.warnings),
    }
