"""Risk profile models (derived per request, never persisted)."""
from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from typing import List, Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .policy import RiskLevel

__all__ = [
    "AddressSecurityFactors",
    "RiskFactors",
    "RiskMetadata",
    "RiskProfile",
    "ThreatFlags",
    "TransactionHistoryFactors",
]


@dataclass(frozen=True)
class ThreatFlags:
    """Boolean threat indicators for one address.

    ``sanctions_oracle`` comes from the on-chain sanctions oracle; all other
    flags come from the address-intelligence provider.
    """

    cyber_crime: bool = False
    money_laundering: bool = False
    financial_crime: bool = False
    darkweb_transactions: bool = False
    phishing_activities: bool = False
    fake_kyc: bool = False
    blacklist: bool = False
    stealing_attack: bool = False
    blackmail_activities: bool = False
    sanctioned: bool = False
    malicious_mining_activities: bool = False
    honeypot: bool = False
    sanctions_oracle: bool = False

    @property
    def any_sanctions(self) -> bool:
        return self.sanctioned or self.sanctions_oracle

    def raised(self) -> List[str]:
        return [f.name for f in fields(self) if getattr(self, f.name)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AddressSecurityFactors(_CamelModel):
    overall: int
    cyber_crime: int
    money_laundering: int
    financial_crime: int
    darkweb_transactions: int
    phishing_activities: int
    fake_kyc: int
    blacklist: int
    stealing_attack: int
    blackmail_activities: int
    sanctioned: int
    malicious_mining_activities: int
    honeypot: int
    sanctions_oracle: int
    sanctions_score: int


class TransactionHistoryFactors(_CamelModel):
    overall: int
    has_sufficient_history: bool
    transaction_count: int
    activity_level: Literal["LOW", "MEDIUM", "HIGH"]


class RiskFactors(_CamelModel):
    address_security: AddressSecurityFactors
    transaction_history: TransactionHistoryFactors
    kyc_status: bool
    kyc_score: int


class RiskMetadata(_CamelModel):
    analysis_timestamp: datetime
    data_sources: List[str]
    confidence: int


class RiskProfile(_CamelModel):
    score: int
    level: RiskLevel
    factors: RiskFactors
    metadata: RiskMetadata
