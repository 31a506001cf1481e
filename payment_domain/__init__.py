"""Shared payment protocol types, typed-data helpers and transport codec."""

from .codec import (InvalidPayload, decode_authorization, decode_receipt,
                    encode_authorization, encode_receipt)
from .models import (PaymentAuthorization, PaymentRequirements,
                     SettlementResult, VerifyResponse)
from .networks import DEFAULT_NETWORKS, NetworkConfig

__all__ = [
    "PaymentAuthorization",
    "PaymentRequirements",
    "SettlementResult",
    "VerifyResponse",
    "NetworkConfig",
    "DEFAULT_NETWORKS",
    "InvalidPayload",
    "encode_authorization",
    "decode_authorization",
    "encode_receipt",
    "decode_receipt",
]
