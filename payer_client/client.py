"""HTTP client that pays for 402-guarded resources."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

import httpx

from payment_domain.codec import InvalidPayload, decode_receipt
from payment_domain.models import PaymentRequirements, SettlementResult
from payment_domain.networks import DEFAULT_NETWORKS, NetworkConfig, find_network

from .authorization import AuthorizationBuilder

__all__ = ["PaidResponse", "PaidResourceClient", "PaymentRequiredError"]

_LOG = logging.getLogger(__name__)


class PaymentRequiredError(RuntimeError):
    """The resource still demanded payment after an authorization was sent."""

    def __init__(self, status_code: int, body: Any) -> None:
        super().__init__(f"payment not accepted ({status_code}): {body}")
        self.status_code = status_code
        self.body = body


@dataclass(frozen=True)
class PaidResponse:
    status_code: int
    body: Any
    settlement: Optional[SettlementResult] = None
    paid: bool = False


class PaidResourceClient:
    """Call a resource; on 402 sign a fresh authorization and retry once.

    *preferred_chain* is the network the payer holds funds on. When it differs
    from the resource's network the facilitator settles cross-chain.
    """

    def __init__(
        self,
        builder: AuthorizationBuilder,
        *,
        preferred_chain: Optional[str] = None,
        networks: Tuple[NetworkConfig, ...] = DEFAULT_NETWORKS,
        timeout: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.builder = builder
        self.preferred_chain = preferred_chain
        self.networks = networks
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def _payment_network(self, requirement: PaymentRequirements) -> NetworkConfig:
        name = self.preferred_chain or requirement.network
        network = find_network(self.networks, name)
        if network is None:
            raise ValueError(f"no network configuration for {name!r}")
        return network

    def authorize(self, requirement: PaymentRequirements) -> Tuple[str, NetworkConfig]:
        """Build an encoded authorization satisfying *requirement*."""
        network = self._payment_network(requirement)
        payload = self.builder.build_encoded(
            to=requirement.pay_to,
            value=requirement.max_amount_required,
            verifying_contract=network.token_address,
            chain_id=network.chain_id,
        )
        return payload, network

    def post(self, url: str, body: Optional[Mapping[str, Any]] = None) -> PaidResponse:
        resp = self._client.post(url, json=dict(body or {}))
        if resp.status_code != 402:
            resp.raise_for_status()
            return PaidResponse(resp.status_code, resp.json())

        accepts = resp.json().get("accepts") or []
        if not accepts:
            raise PaymentRequiredError(resp.status_code, resp.json())
        requirement = PaymentRequirements.model_validate(accepts[0])
        payload, network = self.authorize(requirement)
        _LOG.info(
            "paying %s %s on %s for %s",
            requirement.max_amount_required,
            requirement.asset,
            network.name,
            requirement.resource,
        )

        headers: Dict[str, str] = {"X-PAYMENT": payload, "X-USER-CHAIN": network.name}
        paid = self._client.post(url, json=dict(body or {}), headers=headers)
        if paid.status_code == 402:
            raise PaymentRequiredError(paid.status_code, paid.json())
        paid.raise_for_status()

        settlement = None
        receipt = paid.headers.get("X-PAYMENT-RESPONSE")
        if receipt:
            try:
                settlement = decode_receipt(receipt)
            except InvalidPayload as exc:
                _LOG.warning("unreadable payment receipt: %s", exc)
        return PaidResponse(paid.status_code, paid.json(), settlement=settlement, paid=True)

    def close(self) -> None:
        self._client.close()
