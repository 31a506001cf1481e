"""Upstream risk data sources.

Each source is a small :class:`typing.Protocol` so the engine can be wired
with live adapters in production and fakes in tests. Live adapters raise
:class:`RiskDataUnavailable` on any transport or decoding failure; they never
invent a "clean" answer for an unreachable upstream.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Mapping, Optional, Protocol

import httpx
from web3 import Web3

from payment_observability.metrics import risk_source_latency_seconds

from .models import ThreatFlags

__all__ = [
    "ActivitySource",
    "AddressIntelProvider",
    "ChainalysisSanctionsOracle",
    "GoPlusIntelProvider",
    "KycRegistry",
    "PlaceholderKycRegistry",
    "RiskDataUnavailable",
    "SanctionsOracle",
    "Web3ActivitySource",
    "flags_from_goplus",
]

_LOG = logging.getLogger(__name__)

GOPLUS_BASE_URL = "https://api.gopluslabs.io"

SANCTIONS_ORACLE_ABI = [
    {
        "inputs": [{"internalType": "address", "name": "addr", "type": "address"}],
        "name": "isSanctioned",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "view",
        "type": "function",
    }
]


class RiskDataUnavailable(RuntimeError):
    """An upstream risk data source could not be reached or decoded."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"{source}: {reason}")
        self.source = source
        self.reason = reason


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


class AddressIntelProvider(Protocol):
    name: str

    def threat_flags(self, address: str) -> ThreatFlags:
        ...


class SanctionsOracle(Protocol):
    name: str

    def is_sanctioned(self, address: str) -> bool:
        ...


class ActivitySource(Protocol):
    name: str

    def transaction_count(self, address: str) -> int:
        ...


class KycRegistry(Protocol):
    name: str

    def is_verified(self, address: str) -> bool:
        ...


# ---------------------------------------------------------------------------
# Live adapters
# ---------------------------------------------------------------------------


def _flag(result: Mapping[str, Any], key: str) -> bool:
    try:
        return bool(int(result.get(key) or 0))
    except (TypeError, ValueError):
        return False


def flags_from_goplus(result: Mapping[str, Any]) -> ThreatFlags:
    """Map a GoPlus ``address_security`` result ("0"/"1" strings) to flags."""

    return ThreatFlags(
        cyber_crime=_flag(result, "cybercrime"),
        money_laundering=_flag(result, "money_laundering"),
        financial_crime=_flag(result, "financial_crime"),
        darkweb_transactions=_flag(result, "darkweb_transactions"),
        phishing_activities=_flag(result, "phishing_activities"),
        fake_kyc=_flag(result, "fake_kyc"),
        blacklist=_flag(result, "blacklist_doubt"),
        stealing_attack=_flag(result, "stealing_attack"),
        blackmail_activities=_flag(result, "blackmail_activities"),
        sanctioned=_flag(result, "sanctioned"),
        malicious_mining_activities=_flag(result, "malicious_mining_activities"),
        honeypot=_flag(result, "honeypot_related_address"),
    )


class GoPlusIntelProvider:
    """GoPlus Labs address-security API over ``httpx``."""

    name = "gopluslabs"

    def __init__(
        self,
        base_url: str = GOPLUS_BASE_URL,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._client = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)

    def threat_flags(self, address: str) -> ThreatFlags:
        t0 = time.perf_counter()
        try:
            resp = self._client.get(f"/api/v1/address_security/{address}")
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise RiskDataUnavailable(self.name, str(exc)) from exc
        finally:
            risk_source_latency_seconds.labels(source=self.name).observe(
                time.perf_counter() - t0
            )

        if not isinstance(body, dict):
            raise RiskDataUnavailable(self.name, f"unexpected body: {type(body).__name__}")
        # code != 1 means GoPlus has no record for the address
        result = body.get("result")
        if body.get("code") != 1 or not result:
            _LOG.info("no address intelligence for %s (code=%s)", address, body.get("code"))
            return ThreatFlags()
        if not isinstance(result, dict):
            raise RiskDataUnavailable(self.name, f"unexpected result: {type(result).__name__}")
        return flags_from_goplus(result)

    def close(self) -> None:
        self._client.close()


class ChainalysisSanctionsOracle:
    """Chainalysis on-chain sanctions screener read through ``web3``."""

    name = "chainalysis"

    def __init__(self, rpc_url: str, oracle_address: str, *, w3: Optional[Web3] = None) -> None:
        self._w3 = w3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 10}))
        self._contract = self._w3.eth.contract(
            address=Web3.to_checksum_address(oracle_address), abi=SANCTIONS_ORACLE_ABI
        )

    def is_sanctioned(self, address: str) -> bool:
        t0 = time.perf_counter()
        try:
            return bool(
                self._contract.functions.isSanctioned(Web3.to_checksum_address(address)).call()
            )
        except Exception as exc:  # web3 surfaces transport and ABI errors as many types
            raise RiskDataUnavailable(self.name, str(exc)) from exc
        finally:
            risk_source_latency_seconds.labels(source=self.name).observe(
                time.perf_counter() - t0
            )


class Web3ActivitySource:
    """Outgoing transaction count of an address on a reference chain."""

    name = "ethereum_rpc"

    def __init__(self, rpc_url: str, *, w3: Optional[Web3] = None) -> None:
        self._w3 = w3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 10}))

    def transaction_count(self, address: str) -> int:
        t0 = time.perf_counter()
        try:
            return int(self._w3.eth.get_transaction_count(Web3.to_checksum_address(address)))
        except Exception as exc:
            raise RiskDataUnavailable(self.name, str(exc)) from exc
        finally:
            risk_source_latency_seconds.labels(source=self.name).observe(
                time.perf_counter() - t0
            )


class PlaceholderKycRegistry:
    """No KYC registry is deployed yet; every address is unverified."""

    name = "kyc_placeholder"

    def is_verified(self, address: str) -> bool:  # noqa: ARG002
        return False
