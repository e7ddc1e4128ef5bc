"""YAML loader for AllowancePolicy and UpgradeAllowance documents.

Documents use a Kubernetes-style envelope and may be combined in one
multi-document YAML file::

    kind: AllowancePolicy
    metadata:
      name: deployments
    spec:
      forKind: {apiGroup: apps, kind: Deployment}
      rules: [...]
    ---
    kind: UpgradeAllowance
    metadata:
      name: deployment-controller
    spec:
      subject: system:serviceaccount:kube-system:deployment-controller
      policies: [...]

Example
-------
::

    loader = PolicyLoader()
    registry = loader.load("policies.yaml")
    policy = registry.policy_for("apps/Deployment")
"""
from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from pathlib import Path

import yaml
from pydantic import ValidationError

from aumos_causal_governance.errors import PolicyConfigError
from aumos_causal_governance.model.objects import ObjectRef
from aumos_causal_governance.policies.schema import AllowancePolicy, UpgradeAllowance

logger = logging.getLogger(__name__)

_KNOWN_KINDS: frozenset[str] = frozenset(["AllowancePolicy", "UpgradeAllowance"])


class PolicyRegistry:
    """Resolved policy set: at most one AllowancePolicy per object kind.

    Parameters
    ----------
    policies:
        AllowancePolicy documents; two policies for the same kind raise
        :class:`PolicyConfigError`.
    upgrade_allowances:
        UpgradeAllowance documents, keyed by their subject identity.
    """

    def __init__(
        self,
        policies: Iterable[AllowancePolicy] = (),
        upgrade_allowances: Iterable[UpgradeAllowance] = (),
    ) -> None:
        self._policies: dict[str, AllowancePolicy] = {}
        self._upgrades: list[UpgradeAllowance] = []
        for policy in policies:
            self.add_policy(policy)
        for upgrade in upgrade_allowances:
            self.add_upgrade_allowance(upgrade)

    def add_policy(self, policy: AllowancePolicy) -> None:
        existing = self._policies.get(policy.kind_key)
        if existing is not None:
            raise PolicyConfigError(
                f"Duplicate AllowancePolicy for kind {policy.kind_key!r}: "
                f"{existing.name!r} and {policy.name!r}."
            )
        self._policies[policy.kind_key] = policy

    def add_upgrade_allowance(self, upgrade: UpgradeAllowance) -> None:
        self._upgrades.append(upgrade)

    def policy_for(self, ref: ObjectRef | str) -> AllowancePolicy | None:
        """Return the policy for an object (or kind key), or None if not participating."""
        key = ref.group_kind if isinstance(ref, ObjectRef) else ref
        return self._policies.get(key)

    def upgrade_allowances_for(self, identity: str) -> list[UpgradeAllowance]:
        return [u for u in self._upgrades if u.subject == identity]

    @property
    def policies(self) -> list[AllowancePolicy]:
        return [self._policies[k] for k in sorted(self._policies)]

    @property
    def upgrade_allowances(self) -> list[UpgradeAllowance]:
        return list(self._upgrades)

    def merge(self, other: PolicyRegistry) -> PolicyRegistry:
        """Return a registry holding the documents of both registries."""
        return PolicyRegistry(
            policies=[*self.policies, *other.policies],
            upgrade_allowances=[*self._upgrades, *other.upgrade_allowances],
        )

    def summary(self) -> dict[str, object]:
        return {
            "policy_count": len(self._policies),
            "kinds": sorted(self._policies),
            "rule_count": sum(len(p.rules) for p in self._policies.values()),
            "upgrade_allowance_count": len(self._upgrades),
        }


class PolicyLoader:
    """Builds a :class:`PolicyRegistry` from YAML files, strings or dicts."""

    def load(self, config_path: str | Path) -> PolicyRegistry:
        """Load every policy document from a (multi-document) YAML file.

        Raises
        ------
        FileNotFoundError
            If the file does not exist.
        PolicyConfigError
            If the YAML cannot be parsed or a document is invalid.
        """
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Policy file not found: {config_path}")
        text = config_path.read_text(encoding="utf-8")
        return self.load_from_yaml_string(text, config_path=str(config_path))

    def load_many(self, config_paths: Iterable[str | Path]) -> PolicyRegistry:
        registry = PolicyRegistry()
        for path in config_paths:
            registry = registry.merge(self.load(path))
        return registry

    def load_from_yaml_string(
        self,
        yaml_string: str,
        config_path: str | None = None,
    ) -> PolicyRegistry:
        try:
            documents = [d for d in yaml.safe_load_all(yaml_string) if d is not None]
        except yaml.YAMLError as exc:
            raise PolicyConfigError(f"Failed to parse YAML: {exc}", config_path) from exc
        return self.load_from_documents(documents, config_path=config_path)

    def load_from_documents(
        self,
        documents: Iterable[object],
        config_path: str | None = None,
    ) -> PolicyRegistry:
        """Build a registry from already-parsed documents.

        A document may itself be a list of documents.
        """
        flattened: list[object] = []
        for document in documents:
            if isinstance(document, list):
                flattened.extend(document)
            else:
                flattened.append(document)

        registry = PolicyRegistry()
        for index, document in enumerate(flattened):
            kind, name, body = self._unwrap(document, index, config_path)
            try:
                if kind == "AllowancePolicy":
                    registry.add_policy(AllowancePolicy.model_validate({"name": name, **body}))
                else:
                    registry.add_upgrade_allowance(
                        UpgradeAllowance.model_validate({"name": name, **body})
                    )
            except ValidationError as exc:
                raise PolicyConfigError(
                    f"Invalid {kind} {name!r} (document {index}): {exc}", config_path
                ) from exc
            except PolicyConfigError as exc:
                raise PolicyConfigError(str(exc), config_path) from exc

        logger.info(
            "Loaded %d allowance policies and %d upgrade allowances from %s",
            len(registry.policies),
            len(registry.upgrade_allowances),
            config_path or "<documents>",
        )
        return registry

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _unwrap(
        self,
        document: object,
        index: int,
        config_path: str | None,
    ) -> tuple[str, str, dict[str, object]]:
        if not isinstance(document, Mapping):
            raise PolicyConfigError(
                f"Document {index} must be a mapping, got {type(document).__name__}.",
                config_path,
            )
        kind = str(document.get("kind", ""))
        if kind not in _KNOWN_KINDS:
            raise PolicyConfigError(
                f"Document {index} has unknown kind {kind!r}. "
                f"Known kinds: {sorted(_KNOWN_KINDS)}.",
                config_path,
            )
        metadata = document.get("metadata")
        name = f"{kind.lower()}-{index}"
        if isinstance(metadata, Mapping) and metadata.get("name"):
            name = str(metadata["name"])
        spec = document.get("spec")
        if not isinstance(spec, Mapping):
            raise PolicyConfigError(f"{kind} {name!r} must have a 'spec' mapping.", config_path)
        return kind, name, dict(spec)
