"""JSONL decision audit trail."""
from __future__ import annotations

from aumos_causal_governance.audit.logger import AuditLogger

__all__ = ["AuditLogger"]
