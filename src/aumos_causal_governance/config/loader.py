"""Engine configuration loader with Pydantic v2 validation.

Loads ``causal-governance.yaml`` into a typed :class:`EngineConfig`.
Unknown keys are allowed so newer configuration files keep loading::

    annotation_prefix: causal.aumos.ai
    mode: warn
    ignored_paths: ["metadata.*", "status.*"]
    policy_files: [policies/apps.yaml]
    audit:
      enabled: true
      log_path: ./causal_audit.jsonl

Example
-------
>>> loader = ConfigLoader()
>>> config = loader.load(Path("causal-governance.yaml"))
>>> config.mode
'warn'
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from aumos_causal_governance.errors import ConfigError
from aumos_causal_governance.paths.diff import DEFAULT_IGNORED_PATHS
from aumos_causal_governance.paths.matcher import FieldPath
from aumos_causal_governance.storage.codec import DEFAULT_ANNOTATION_PREFIX

logger = logging.getLogger(__name__)


class AuditConfig(BaseModel):
    """Decision audit trail settings."""

    model_config = {"extra": "allow"}

    enabled: bool = Field(default=False)
    log_path: Path = Field(default=Path("./causal_audit.jsonl"))


class EngineConfig(BaseModel):
    """Top-level engine configuration.  Every section is optional."""

    model_config = {"extra": "allow"}

    version: str = Field(default="1")
    annotation_prefix: str = Field(default=DEFAULT_ANNOTATION_PREFIX, min_length=1)
    mode: Literal["enforce", "warn"] = Field(default="enforce")
    ignored_paths: list[str] = Field(default_factory=lambda: list(DEFAULT_IGNORED_PATHS))
    policy_files: list[Path] = Field(default_factory=list)
    audit: AuditConfig = Field(default_factory=AuditConfig)

    @field_validator("ignored_paths")
    @classmethod
    def ignored_paths_must_parse(cls, values: list[str]) -> list[str]:
        for value in values:
            FieldPath.parse(value)
        return values

    @property
    def warn_only(self) -> bool:
        return self.mode == "warn"


class ConfigLoader:
    """Loads and validates engine YAML configuration."""

    def load(self, config_path: Path) -> EngineConfig:
        """Load *config_path*.

        Relative ``policy_files`` are resolved against the directory of the
        configuration file.

        Raises
        ------
        FileNotFoundError:
            When the file does not exist.
        ConfigError:
            When the YAML is unparseable or fails validation.
        """
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Engine config not found: {config_path}")

        with config_path.open("r", encoding="utf-8") as fh:
            config = self.load_string(fh.read(), source=str(config_path))

        base = config_path.parent
        config.policy_files = [
            path if path.is_absolute() else base / path for path in config.policy_files
        ]
        logger.info(
            "Loaded engine config %s (mode=%s, %d policy files)",
            config_path,
            config.mode,
            len(config.policy_files),
        )
        return config

    def load_string(self, yaml_content: str, source: str = "<string>") -> EngineConfig:
        try:
            raw = yaml.safe_load(yaml_content) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"{source}: invalid YAML: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigError(f"{source}: expected a mapping, got {type(raw).__name__}")
        try:
            return EngineConfig.model_validate(raw)
        except (ValidationError, ValueError) as exc:
            raise ConfigError(f"{source}: {exc}") from exc

    def defaults(self) -> EngineConfig:
        return EngineConfig()
