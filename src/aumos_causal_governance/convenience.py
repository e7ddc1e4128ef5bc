"""Convenience API for aumos-causal-governance.

Example
-------
::

    from aumos_causal_governance import CausalGovernor
    governor = CausalGovernor.from_policy_files(["policies.yaml"])
    decision = governor.admit(request)
    print(decision.allowed, decision.reason)

"""
from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from aumos_causal_governance.audit.logger import AuditLogger
from aumos_causal_governance.config.loader import ConfigLoader, EngineConfig
from aumos_causal_governance.engine.consumption import prune
from aumos_causal_governance.engine.decision import (
    AdmissionDecider,
    AdmissionRequest,
    Decision,
    ExternalRequest,
)
from aumos_causal_governance.engine.upgrade import FingerprintFunction
from aumos_causal_governance.model.objects import Operation
from aumos_causal_governance.policies.loader import PolicyLoader, PolicyRegistry
from aumos_causal_governance.policies.predicates import PredicateEvaluator
from aumos_causal_governance.storage.codec import AllowanceCodec
from aumos_causal_governance.storage.store import InMemoryObjectStore, resource_version

logger = logging.getLogger(__name__)


class CausalGovernor:
    """Wires registry, store, decider and audit trail together.

    Parameters
    ----------
    config:
        Engine configuration; defaults apply when omitted.
    registry:
        Policies to enforce.  When omitted, ``config.policy_files`` are
        loaded (an empty registry admits everything as not participating).
    store:
        Object store used for parent lookup and by :meth:`apply`.
    evaluator:
        Predicate evaluator for conditions and phase predicates.
    fingerprint_fn:
        Derives a controller fingerprint from raw request info when a
        request does not carry one.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        registry: PolicyRegistry | None = None,
        store: InMemoryObjectStore | None = None,
        evaluator: PredicateEvaluator | None = None,
        fingerprint_fn: FingerprintFunction | None = None,
    ) -> None:
        self._config = config or EngineConfig()
        if registry is None:
            registry = PolicyLoader().load_many(self._config.policy_files)
        self._registry = registry
        self._codec = AllowanceCodec(self._config.annotation_prefix)
        self._store = store if store is not None else InMemoryObjectStore(self._codec)
        self._decider = AdmissionDecider(
            registry,
            evaluator=evaluator,
            parent_lookup=self._store,
            codec=self._codec,
            ignored_paths=self._config.ignored_paths,
        )
        self._fingerprint_fn = fingerprint_fn
        self._audit: AuditLogger | None = None
        if self._config.audit.enabled:
            self._audit = AuditLogger(self._config.audit.log_path)

    @classmethod
    def from_config_file(cls, config_path: Path, **kwargs: Any) -> CausalGovernor:
        return cls(config=ConfigLoader().load(Path(config_path)), **kwargs)

    @classmethod
    def from_policy_files(
        cls,
        policy_files: Iterable[str | Path],
        **kwargs: Any,
    ) -> CausalGovernor:
        return cls(registry=PolicyLoader().load_many(policy_files), **kwargs)

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def admit(
        self,
        request: AdmissionRequest,
        request_info: Mapping[str, object] | None = None,
    ) -> Decision:
        """Decide *request*, apply warn mode and record the outcome.

        Parameters
        ----------
        request:
            The admission request.
        request_info:
            Raw request metadata passed to ``fingerprint_fn`` when the
            request carries no fingerprint of its own.
        """
        if request.fingerprint is None and self._fingerprint_fn and request_info:
            request = dataclasses.replace(request, fingerprint=self._fingerprint_fn(request_info))
        decision = self._apply_mode(self._decider.decide(request))
        if self._audit is not None:
            self._audit.record_admission(request, decision)
        return decision

    def admit_external(self, request: ExternalRequest) -> Decision:
        decision = self._apply_mode(self._decider.decide_external(request))
        if self._audit is not None:
            self._audit.record_external(request, decision)
        return decision

    def apply(self, request: AdmissionRequest) -> tuple[Decision, dict[str, Any] | None]:
        """Admit *request* and, when accepted, persist it to the store.

        The stored object carries the decision's allowances and fingerprint.
        Updates are written with a version check against the resourceVersion
        of ``request.old_object``.

        Returns
        -------
        tuple
            The decision and the stored object (``None`` when rejected or
            deleted).

        Raises
        ------
        ConflictError
            When the object changed in the store since ``old_object`` was read.
        """
        decision = self.admit(request)
        if not decision.allowed:
            return decision, None
        if request.operation is Operation.DELETE:
            self._store.delete(request.current)
            return decision, None

        if request.object is None:
            raise ValueError(f"{request.operation.value} request carries no object")
        updated = self._codec.write_annotations(
            request.object, decision.allowances, decision.fingerprint
        )
        if request.operation is Operation.CREATE:
            stored = self._store.put(updated, expected_version="")
        else:
            expected = resource_version(request.old_object) or None
            stored = self._store.replace(updated, expected_resource_version=expected)
        return decision, stored

    def prune(self, obj: Mapping[str, object]) -> dict[str, Any]:
        """Drop consumed allowances from *obj* and write it back if anything changed."""
        decoded = self._codec.read_allowances(obj)
        kept = prune(decoded.allowances, obj)
        if len(kept) == len(decoded.allowances) and not decoded.warnings:
            return dict(obj)
        logger.info(
            "Pruned %d allowance(s) from %s",
            len(decoded.allowances) - len(kept),
            obj.get("kind"),
        )
        return self._store.replace(
            self._codec.write_annotations(obj, kept),
            expected_resource_version=resource_version(obj),
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def registry(self) -> PolicyRegistry:
        return self._registry

    @property
    def store(self) -> InMemoryObjectStore:
        return self._store

    @property
    def codec(self) -> AllowanceCodec:
        return self._codec

    @property
    def decider(self) -> AdmissionDecider:
        return self._decider

    @property
    def audit(self) -> AuditLogger | None:
        return self._audit

    def _apply_mode(self, decision: Decision) -> Decision:
        if decision.allowed or not self._config.warn_only:
            return decision
        logger.warning("Warn mode, admitting rejected request: %s", decision.reason)
        return dataclasses.replace(
            decision,
            allowed=True,
            reason=f"warn mode: {decision.reason}",
            warnings=(*decision.warnings, decision.reason),
        )

    def __repr__(self) -> str:
        return (
            f"CausalGovernor(policies={len(self._registry.policies)}, "
            f"mode={self._config.mode!r})"
        )
