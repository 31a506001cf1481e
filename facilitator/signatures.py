"""Signer recovery strategies for transfer authorizations.

A strategy is a pure function ``(domain, types, message, signature) ->
Optional[address]``. :func:`recover_signer` tries them in order and the first
address returned wins; ``None`` from every strategy means the signature could
not be recovered at all.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Optional, Sequence

from eth_account import Account
from eth_keys import keys
from eth_utils import keccak

from payment_domain.typed_data import signable_message

__all__ = [
    "RecoveryStrategy",
    "STRATEGIES",
    "recover_raw_message_hash",
    "recover_signer",
    "recover_typed_data",
]

_LOG = logging.getLogger(__name__)

RecoveryStrategy = Callable[
    [Dict[str, Any], Dict[str, Any], Dict[str, Any], str], Optional[str]
]


def _signature_bytes(signature: str) -> bytes:
    raw = bytes.fromhex(signature[2:] if signature.startswith("0x") else signature)
    if len(raw) != 65:
        raise ValueError(f"signature must be 65 bytes, got {len(raw)}")
    return raw


def recover_typed_data(
    domain: Dict[str, Any],
    types: Dict[str, Any],
    message: Dict[str, Any],
    signature: str,
) -> Optional[str]:
    """EIP-712 recovery against the declared domain."""

    try:
        signable = signable_message(domain, types, message)
        return Account.recover_message(signable, signature=_signature_bytes(signature))
    except Exception as exc:  # malformed inputs surface as many exception types
        _LOG.debug("typed-data recovery failed: %s", exc)
        return None


def recover_raw_message_hash(
    domain: Dict[str, Any],  # noqa: ARG001
    types: Dict[str, Any],  # noqa: ARG001
    message: Dict[str, Any],
    signature: str,
) -> Optional[str]:
    """Recover from keccak-256 of the compact JSON message, no EIP-712 framing."""

    try:
        raw = _signature_bytes(signature)
        digest = keccak(text=json.dumps(message, separators=(",", ":")))
        v = raw[64]
        if v >= 27:
            v -= 27
        sig = keys.Signature(
            vrs=(v, int.from_bytes(raw[:32], "big"), int.from_bytes(raw[32:64], "big"))
        )
        return sig.recover_public_key_from_msg_hash(digest).to_checksum_address()
    except Exception as exc:
        _LOG.debug("raw-hash recovery failed: %s", exc)
        return None


STRATEGIES: Sequence[RecoveryStrategy] = (recover_typed_data, recover_raw_message_hash)


def recover_signer(
    domain: Dict[str, Any],
    types: Dict[str, Any],
    message: Dict[str, Any],
    signature: str,
    strategies: Sequence[RecoveryStrategy] = STRATEGIES,
) -> Optional[str]:
    for strategy in strategies:
        address = strategy(domain, types, message, signature)
        if address is not None:
            return address
    return None
