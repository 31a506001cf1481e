"""Payment facilitator: verification, risk scoring and settlement."""
from .service import Facilitator
from .settlement import SettlementEngine, SettlementError
from .verification import VerificationEngine, VerificationError

__all__ = [
    "Facilitator",
    "SettlementEngine",
    "SettlementError",
    "VerificationEngine",
    "VerificationError",
]
