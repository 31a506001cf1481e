"""Deterministic risk sub-scores and the composite score.

Pure functions only: given the same flags, history and KYC status the
result is always the same. 0 is safest, 100 is riskiest.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional

from .models import (AddressSecurityFactors, RiskFactors, RiskMetadata,
                     RiskProfile, ThreatFlags, TransactionHistoryFactors)
from .policy import RiskPolicy

__all__ = [
    "ADDRESS_SECURITY_WEIGHTS",
    "COMPOSITE_WEIGHTS",
    "KYC_UNVERIFIED_SCORE",
    "address_security_factors",
    "build_profile",
    "composite_score",
    "confidence",
    "round_half_up",
    "sanctions_subscore",
    "transaction_history_factors",
]

# Integer percentages summing to 100; the three sanctions-related entries
# carry 45.
ADDRESS_SECURITY_WEIGHTS: Dict[str, int] = {
    "sanctioned": 20,
    "sanctions_oracle": 15,
    "sanctions_score": 10,
    "blacklist": 15,
    "cyber_crime": 12,
    "money_laundering": 12,
    "financial_crime": 8,
    "stealing_attack": 4,
    "phishing_activities": 2,
    "darkweb_transactions": 1,
    "blackmail_activities": 1,
    "malicious_mining_activities": 0,
    "fake_kyc": 0,
    "honeypot": 0,
}

COMPOSITE_WEIGHTS = {"address_security": 35, "transaction_history": 25, "kyc": 40}

KYC_UNVERIFIED_SCORE = 70
LOW_HISTORY_COUNT = 5
LOW_HISTORY_PENALTY = 40
ACTIVITY_PENALTIES = {"LOW": 20, "MEDIUM": 10, "HIGH": 0}


def round_half_up(numerator: int, denominator: int = 100) -> int:
    """``numerator / denominator`` rounded half-up, exact for non-negative ints."""
    return (2 * numerator + denominator) // (2 * denominator)


def sanctions_subscore(flags: ThreatFlags) -> int:
    return 100 if flags.any_sanctions else 0


def address_security_factors(flags: ThreatFlags) -> AddressSecurityFactors:
    flag_scores = {
        name: (100 if getattr(flags, name) else 0)
        for name in ADDRESS_SECURITY_WEIGHTS
        if name != "sanctions_score"
    }
    # either sanctions source marks the address as sanctioned
    flag_scores["sanctioned"] = 100 if flags.any_sanctions else 0
    flag_scores["sanctions_score"] = sanctions_subscore(flags)
    overall = round_half_up(
        sum(score * ADDRESS_SECURITY_WEIGHTS[name] for name, score in flag_scores.items())
    )
    return AddressSecurityFactors(overall=min(overall, 100), **flag_scores)


def activity_level(tx_count: int) -> str:
    if tx_count <= 10:
        return "LOW"
    if tx_count <= 50:
        return "MEDIUM"
    return "HIGH"


def transaction_history_factors(tx_count: int) -> TransactionHistoryFactors:
    level = activity_level(tx_count)
    score = ACTIVITY_PENALTIES[level]
    if tx_count <= LOW_HISTORY_COUNT:
        score += LOW_HISTORY_PENALTY
    return TransactionHistoryFactors(
        overall=min(score, 100),
        has_sufficient_history=tx_count > LOW_HISTORY_COUNT,
        transaction_count=tx_count,
        activity_level=level,
    )


def kyc_score(verified: bool) -> int:
    return 0 if verified else KYC_UNVERIFIED_SCORE


def composite_score(address_security: int, transaction_history: int, kyc: int) -> int:
    raw = (
        address_security * COMPOSITE_WEIGHTS["address_security"]
        + transaction_history * COMPOSITE_WEIGHTS["transaction_history"]
        + kyc * COMPOSITE_WEIGHTS["kyc"]
    )
    return min(round_half_up(raw), 100)


def confidence(kyc_verified: bool, tx_count: int) -> int:
    score = 30 + (25 if kyc_verified else 0) + (20 if tx_count > 0 else 0)
    return 100 - score


def build_profile(
    flags: ThreatFlags,
    tx_count: int,
    kyc_verified: bool,
    *,
    policy: RiskPolicy,
    data_sources: List[str],
    now: Optional[datetime] = None,
) -> RiskProfile:
    security = address_security_factors(flags)
    history = transaction_history_factors(tx_count)
    kyc = kyc_score(kyc_verified)
    score = composite_score(security.overall, history.overall, kyc)
    return RiskProfile(
        score=score,
        level=policy.level_for(score),
        factors=RiskFactors(
            address_security=security,
            transaction_history=history,
            kyc_status=kyc_verified,
            kyc_score=kyc,
        ),
        metadata=RiskMetadata(
            analysis_timestamp=now or datetime.now(timezone.utc),
            data_sources=data_sources,
            confidence=confidence(kyc_verified, tx_count),
        ),
    )
