"""Payer risk scoring: sources, deterministic scoring and policy decisions."""

from .engine import RiskAssessment, RiskEngine
from .models import RiskProfile, ThreatFlags
from .policy import RiskAction, RiskLevel, RiskPolicy, evaluate
from .sources import RiskDataUnavailable

__all__ = [
    "RiskAction",
    "RiskAssessment",
    "RiskDataUnavailable",
    "RiskEngine",
    "RiskLevel",
    "RiskPolicy",
    "RiskProfile",
    "ThreatFlags",
    "evaluate",
]
