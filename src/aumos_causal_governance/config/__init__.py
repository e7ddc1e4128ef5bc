"""Engine configuration."""
from __future__ import annotations

from aumos_causal_governance.config.loader import AuditConfig, ConfigLoader, EngineConfig

__all__ = ["AuditConfig", "ConfigLoader", "EngineConfig"]
