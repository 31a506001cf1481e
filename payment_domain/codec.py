"""Transport encoding: base64 of UTF-8 JSON.

Used for the ``X-PAYMENT`` header (authorizations) and the
``X-PAYMENT-RESPONSE`` header (settlement receipts).
"""
from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Dict

from pydantic import ValidationError

from .models import PaymentAuthorization, SettlementResult

__all__ = [
    "InvalidPayload",
    "decode_authorization",
    "decode_receipt",
    "encode_authorization",
    "encode_json",
    "encode_receipt",
]


class InvalidPayload(ValueError):
    """The transported payload is not a well-formed authorization."""


def encode_json(data: Dict[str, Any]) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def _decode_json(b64: str) -> Any:
    try:
        raw = base64.b64decode(b64, validate=True)
        return json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise InvalidPayload(f"payload is not base64 JSON: {exc}") from exc


def encode_authorization(auth: PaymentAuthorization) -> str:
    return encode_json(auth.to_wire())


def decode_authorization(b64: str | None) -> PaymentAuthorization:
    if not b64:
        raise InvalidPayload("payload is empty")
    data = _decode_json(b64)
    if not isinstance(data, dict):
        raise InvalidPayload("payload must be a JSON object")
    try:
        return PaymentAuthorization.model_validate(data)
    except ValidationError as exc:
        raise InvalidPayload(str(exc)) from exc


def encode_receipt(result: SettlementResult) -> str:
    return encode_json(result.to_wire())


def decode_receipt(b64: str) -> SettlementResult:
    data = _decode_json(b64)
    try:
        return SettlementResult.model_validate(data)
    except ValidationError as exc:
        raise InvalidPayload(str(exc)) from exc
