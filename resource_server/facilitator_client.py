"""Ports from the resource server to a facilitator.

``HttpFacilitatorClient`` talks to a remote facilitator over ``httpx``;
``LocalFacilitatorClient`` calls an in-process :class:`Facilitator`.
"""
from __future__ import annotations

import logging
from typing import Optional, Protocol, Tuple

import httpx
from pydantic import ValidationError

from payment_domain.codec import encode_receipt
from payment_domain.models import SettlementResult, VerifyResponse

__all__ = [
    "FacilitatorPort",
    "FacilitatorUnreachable",
    "HttpFacilitatorClient",
    "LocalFacilitatorClient",
]

_LOG = logging.getLogger(__name__)

VERIFY_TIMEOUT = 10.0
SETTLE_TIMEOUT = 30.0


class FacilitatorUnreachable(RuntimeError):
    """The facilitator could not be reached or answered with garbage."""


class FacilitatorPort(Protocol):
    def verify(self, payload: str, *, correlation_id: Optional[str] = None) -> VerifyResponse:
        ...

    def settle(
        self,
        payload: str,
        *,
        target_chain: str,
        payer_chain: Optional[str] = None,
        resource_provider_address: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> Tuple[SettlementResult, str]:
        ...


class HttpFacilitatorClient:
    def __init__(
        self,
        base_url: str,
        *,
        api_token: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._client = httpx.Client(base_url=base_url, transport=transport)
        self._api_token = api_token

    def _post(self, path: str, payload: str, headers: dict, timeout: float) -> httpx.Response:
        try:
            resp = self._client.post(
                path, json={"paymentPayloadBase64": payload}, headers=headers, timeout=timeout
            )
        except httpx.TransportError as exc:
            raise FacilitatorUnreachable(f"{path}: {exc}") from exc
        return resp

    def verify(self, payload: str, *, correlation_id: Optional[str] = None) -> VerifyResponse:
        headers = {"X-CORRELATION-ID": correlation_id} if correlation_id else {}
        resp = self._post("/verify", payload, headers, VERIFY_TIMEOUT)
        if resp.status_code >= 500:
            raise FacilitatorUnreachable(f"/verify answered {resp.status_code}")
        try:
            return VerifyResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            raise FacilitatorUnreachable(f"/verify returned an unreadable body: {exc}") from exc

    def settle(
        self,
        payload: str,
        *,
        target_chain: str,
        payer_chain: Optional[str] = None,
        resource_provider_address: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> Tuple[SettlementResult, str]:
        headers = {"X-TARGET-CHAIN": target_chain}
        if payer_chain:
            headers["X-USER-CHAIN"] = payer_chain
        if resource_provider_address:
            headers["X-RESOURCE-SERVER-ADDRESS"] = resource_provider_address
        if correlation_id:
            headers["X-CORRELATION-ID"] = correlation_id
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"

        resp = self._post("/settle", payload, headers, SETTLE_TIMEOUT)
        # failed settlements still carry a SettlementResult body (400/409/502)
        try:
            result = SettlementResult.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            raise FacilitatorUnreachable(
                f"/settle answered {resp.status_code} without a settlement result"
            ) from exc
        receipt = resp.headers.get("X-PAYMENT-RESPONSE") or encode_receipt(result)
        return result, receipt

    def close(self) -> None:
        self._client.close()


class LocalFacilitatorClient:
    """Adapter over an in-process facilitator (single-binary deployments, tests)."""

    def __init__(self, facilitator) -> None:
        self._facilitator = facilitator

    def verify(self, payload: str, *, correlation_id: Optional[str] = None) -> VerifyResponse:
        return self._facilitator.verify(payload, correlation_id=correlation_id)

    def settle(
        self,
        payload: str,
        *,
        target_chain: str,
        payer_chain: Optional[str] = None,
        resource_provider_address: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> Tuple[SettlementResult, str]:
        return self._facilitator.settle(
            payload,
            target_chain,
            payer_chain=payer_chain,
            resource_provider_address=resource_provider_address,
            correlation_id=correlation_id,
        )
