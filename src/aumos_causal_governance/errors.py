"""Exception hierarchy for aumos-causal-governance.

Rejections are never raised: the admission engine returns them as
:class:`~aumos_causal_governance.engine.decision.Decision` values.  The
exceptions below cover malformed inputs and storage conflicts only.
"""
from __future__ import annotations


class CausalGovernanceError(Exception):
    """Base class for every error raised by this package."""


class PolicyConfigError(CausalGovernanceError, ValueError):
    """Raised when an AllowancePolicy / UpgradeAllowance document is invalid.

    Attributes
    ----------
    config_path:
        The path (or other source identifier) of the offending document,
        if known.
    """

    def __init__(self, message: str, config_path: str | None = None) -> None:
        self.config_path = config_path
        prefix = f"[{config_path}] " if config_path else ""
        super().__init__(f"{prefix}{message}")


class ConfigError(CausalGovernanceError, ValueError):
    """Raised when the engine configuration file cannot be loaded."""


class PathSyntaxError(CausalGovernanceError, ValueError):
    """Raised when a field path or path pattern does not follow the grammar."""

    def __init__(self, path: str, position: int, detail: str) -> None:
        self.path = path
        self.position = position
        super().__init__(f"Invalid field path {path!r} at offset {position}: {detail}")


class PredicateEvaluationError(CausalGovernanceError):
    """Raised by a predicate evaluator that cannot evaluate an expression."""


class MalformedAllowanceError(CausalGovernanceError, ValueError):
    """Raised when a persisted allowance record cannot be decoded."""


class ConflictError(CausalGovernanceError):
    """Raised on a version-checked write against a stale resourceVersion.

    Attributes
    ----------
    expected:
        The resourceVersion the caller based its write on.
    actual:
        The resourceVersion currently stored.
    """

    def __init__(self, key: str, expected: str | None, actual: str | None) -> None:
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Conflict writing {key}: expected resourceVersion {expected!r}, "
            f"stored is {actual!r}."
        )
