"""Controller-upgrade detection.

Each object remembers the identity fingerprint of the last controller build
that was admitted against it.  When a request arrives with a different
fingerprint and an UpgradeAllowance exists for the requester's
ServiceAccount, that allowance's policies become the upper bound for this one
decision and the stored fingerprint moves to the new value.  A second request
with the same new fingerprint finds no mismatch and falls through to the
normal rules.

How a fingerprint is derived is up to the caller: pass any
:data:`FingerprintFunction` (see :func:`user_agent_fingerprint`).
"""
from __future__ import annotations

import hashlib
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass

from aumos_causal_governance.engine.resolver import UpperBound
from aumos_causal_governance.model.objects import Subject
from aumos_causal_governance.policies.schema import UpgradeAllowance

logger = logging.getLogger(__name__)

FingerprintFunction = Callable[[Mapping[str, object]], "str | None"]


def hash_fingerprint(*parts: object) -> str:
    """Stable short digest of *parts*."""
    digest = hashlib.sha256("\x1f".join(str(p) for p in parts).encode("utf-8"))
    return digest.hexdigest()[:16]


def user_agent_fingerprint(request_info: Mapping[str, object]) -> str | None:
    """Fingerprint a request by its client ``userAgent`` string, if present."""
    user_agent = request_info.get("userAgent")
    if not user_agent:
        return None
    return hash_fingerprint(user_agent)


@dataclass(frozen=True)
class UpgradeMatch:
    """An active upgrade window for one decision."""

    bound: UpperBound
    fingerprint: str
    allowance_names: tuple[str, ...]


class UpgradeMatcher:
    """Compares request and stored fingerprints against UpgradeAllowances."""

    def match(
        self,
        fingerprint: str | None,
        stored_fingerprint: str | None,
        subject: Subject,
        upgrade_allowances: Iterable[UpgradeAllowance],
    ) -> UpgradeMatch | None:
        """Return the substitute upper bound, or None when normal rules apply.

        An object with no stored fingerprint has no prior build to compare
        against, so it never counts as upgraded.
        """
        if fingerprint is None or stored_fingerprint is None:
            return None
        if fingerprint == stored_fingerprint:
            return None

        identity = subject.identity
        matching = [u for u in upgrade_allowances if u.subject == identity]
        if not matching:
            logger.debug(
                "Fingerprint changed for %s but no UpgradeAllowance exists", identity
            )
            return None

        bound = UpperBound.empty()
        for upgrade in matching:
            bound = bound.combine(UpperBound.from_entries(upgrade.policies))
        logger.info(
            "Upgrade detected for %s (%s -> %s) via %s",
            identity,
            stored_fingerprint,
            fingerprint,
            ", ".join(u.name for u in matching),
        )
        return UpgradeMatch(
            bound=bound,
            fingerprint=fingerprint,
            allowance_names=tuple(u.name for u in matching),
        )
