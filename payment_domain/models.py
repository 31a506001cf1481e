"""Wire models for the pay-per-call protocol.

Field names are snake_case in Python and camelCase on the wire; always dump
with ``by_alias=True``.
"""
from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

__all__ = [
    "PaymentAuthorization",
    "PaymentRequirements",
    "SettlementResult",
    "VerifyResponse",
]

_NONCE_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
_UINT_RE = re.compile(r"^[0-9]+$")


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class PaymentAuthorization(_WireModel):
    """A signed, time-boxed ``TransferWithAuthorization`` from a payer."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    from_address: str = Field(alias="from")
    to: str
    value: str
    valid_after: int
    valid_before: int
    nonce: str
    verifying_contract: str
    chain_id: int
    signature: str = ""

    @field_validator("value", mode="before")
    @classmethod
    def _value_as_uint_string(cls, v: Any) -> str:
        if isinstance(v, bool):
            raise ValueError("value must be a non-negative integer string")
        if isinstance(v, int):
            v = str(v)
        if not isinstance(v, str) or not _UINT_RE.match(v):
            raise ValueError("value must be a non-negative integer string")
        return v

    @field_validator("nonce")
    @classmethod
    def _nonce_is_bytes32(cls, v: str) -> str:
        if not _NONCE_RE.match(v):
            raise ValueError("nonce must be a 0x-prefixed 32-byte hex string")
        return v

    @model_validator(mode="after")
    def _window_is_ordered(self) -> "PaymentAuthorization":
        if self.valid_after >= self.valid_before:
            raise ValueError("validAfter must be strictly before validBefore")
        return self

    @property
    def amount(self) -> int:
        return int(self.value)

    def message(self) -> Dict[str, Any]:
        """The signed struct, in declaration order, as it travels in JSON."""
        return {
            "from": self.from_address,
            "to": self.to,
            "value": self.value,
            "validAfter": self.valid_after,
            "validBefore": self.valid_before,
            "nonce": self.nonce,
        }


class PaymentRequirements(_WireModel):
    """What a resource demands from a caller (one entry of ``accepts``)."""

    scheme: str = "exact"
    network: str
    resource: str
    description: Optional[str] = None
    mime_type: Optional[str] = None
    pay_to: str
    max_amount_required: str
    asset: str
    max_timeout_seconds: int = 120
    extra: Dict[str, Any] = Field(default_factory=dict)
    output_schema: Optional[Dict[str, Any]] = None


class SettlementResult(_WireModel):
    success: bool
    transaction_reference: Optional[str] = None
    network: Optional[str] = None
    payer: Optional[str] = None
    error: Optional[str] = None
    detail: Optional[str] = None
    cross_chain: Optional[Dict[str, Any]] = None


class VerifyResponse(_WireModel):
    success: bool
    action: Optional[str] = None
    reason: Optional[str] = None
    risk_profile: Optional[Dict[str, Any]] = None
    errors: List[str] = Field(default_factory=list)
