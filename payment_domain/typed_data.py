"""EIP-712 domain / types / message for ``TransferWithAuthorization``.

Signing (payer) and recovery (facilitator) both build their inputs here so
the two sides can never drift apart.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List

from eth_account.messages import SignableMessage, encode_typed_data
from eth_utils import is_address

__all__ = [
    "TokenDomain",
    "TRANSFER_WITH_AUTHORIZATION_TYPES",
    "ZERO_ADDRESS",
    "build_domain",
    "is_well_formed_address",
    "signable_message",
]

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

TRANSFER_WITH_AUTHORIZATION_TYPES: Dict[str, List[Dict[str, str]]] = {
    "TransferWithAuthorization": [
        {"name": "from", "type": "address"},
        {"name": "to", "type": "address"},
        {"name": "value", "type": "uint256"},
        {"name": "validAfter", "type": "uint256"},
        {"name": "validBefore", "type": "uint256"},
        {"name": "nonce", "type": "bytes32"},
    ]
}


@dataclass(frozen=True)
class TokenDomain:
    """Name/version pair of the token's EIP-712 domain."""

    name: str = "USDC"
    version: str = "2"


def is_well_formed_address(value: Any) -> bool:
    return isinstance(value, str) and is_address(value)


def build_domain(token: TokenDomain, chain_id: int, verifying_contract: str) -> Dict[str, Any]:
    return {
        "name": token.name,
        "version": token.version,
        "chainId": chain_id,
        "verifyingContract": verifying_contract,
    }


def _coerce_message(message: Dict[str, Any]) -> Dict[str, Any]:
    # uint256 fields travel as strings/ints, bytes32 as 0x-hex
    return {
        "from": message["from"],
        "to": message["to"],
        "value": int(message["value"]),
        "validAfter": int(message["validAfter"]),
        "validBefore": int(message["validBefore"]),
        "nonce": bytes.fromhex(str(message["nonce"])[2:]),
    }


def signable_message(
    domain: Dict[str, Any], types: Dict[str, Any], message: Dict[str, Any]
) -> SignableMessage:
    """Encode *message* as an EIP-712 signable. Raises on malformed input."""

    return encode_typed_data(
        domain_data=domain,
        message_types=types,
        message_data=_coerce_message(message),
    )
