"""Risk engine: gathers source data, scores it and applies a policy."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import List, Optional

from payment_observability.metrics import (risk_assessments_total,
                                           risk_degraded_total)

from .models import RiskProfile
from .policy import RiskAction, RiskPolicy, evaluate
from .scoring import build_profile
from .sources import (ActivitySource, AddressIntelProvider, KycRegistry,
                      PlaceholderKycRegistry, RiskDataUnavailable,
                      SanctionsOracle)

__all__ = ["RiskAssessment", "RiskEngine"]

_LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class RiskAssessment:
    action: RiskAction
    reason: str
    profile: Optional[RiskProfile] = None
    degraded: bool = False
    overrides: List[str] = field(default_factory=list)

    @property
    def rejected(self) -> bool:
        return self.action is RiskAction.REJECT


class RiskEngine:
    """Score a payer address and decide allow / monitor / reject.

    ``assess`` never raises for upstream outages: an unreachable source turns
    into the policy's ``on_data_unavailable`` action.
    """

    def __init__(
        self,
        intel: AddressIntelProvider,
        sanctions: SanctionsOracle,
        activity: ActivitySource,
        kyc: Optional[KycRegistry] = None,
        *,
        policy: Optional[RiskPolicy] = None,
    ) -> None:
        self.intel = intel
        self.sanctions = sanctions
        self.activity = activity
        self.kyc = kyc or PlaceholderKycRegistry()
        self.policy = policy or RiskPolicy()

    def profile(self, address: str, policy: Optional[RiskPolicy] = None) -> RiskProfile:
        """Fetch source data and build the profile. Raises ``RiskDataUnavailable``."""

        policy = policy or self.policy
        flags = self.intel.threat_flags(address)
        if self.sanctions.is_sanctioned(address):
            flags = replace(flags, sanctions_oracle=True)
        tx_count = self.activity.transaction_count(address)
        verified = self.kyc.is_verified(address)
        return build_profile(
            flags,
            tx_count,
            verified,
            policy=policy,
            data_sources=[self.intel.name, self.sanctions.name, self.activity.name, self.kyc.name],
        )

    def assess(
        self,
        address: str,
        amount: Optional[int] = None,
        policy: Optional[RiskPolicy] = None,
    ) -> RiskAssessment:
        policy = policy or self.policy
        try:
            profile = self.profile(address, policy)
        except RiskDataUnavailable as exc:
            action = policy.on_data_unavailable
            risk_degraded_total.labels(action=action.value).inc()
            _LOG.warning(
                "risk data unavailable for %s (%s); degraded action %s",
                address,
                exc,
                action.value,
            )
            return RiskAssessment(
                action=action,
                reason=f"degraded analysis: {exc}",
                degraded=True,
            )

        security = profile.factors.address_security
        decision = evaluate(
            policy,
            level=profile.level,
            score=profile.score,
            sanctioned=bool(security.sanctioned or security.sanctions_oracle),
            blacklisted=bool(security.blacklist),
            amount=amount,
        )
        risk_assessments_total.labels(
            level=profile.level.value, action=decision["action"].value
        ).inc()
        _LOG.info(
            "risk %s score=%d level=%s action=%s",
            address,
            profile.score,
            profile.level.value,
            decision["action"].value,
        )
        return RiskAssessment(
            action=decision["action"],
            reason=decision["reason"],
            profile=profile,
            overrides=decision["overrides"],
        )
