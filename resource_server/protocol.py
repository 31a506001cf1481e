"""Challenge-response protocol in front of a paid resource.

One :class:`PaymentAttempt` walks the states below; illegal moves raise
:class:`InvalidTransition`::

    UNPAID -> CHALLENGED                       (no authorization attached)
    UNPAID -> AUTHORIZED -> VERIFYING -> REJECTED
                                      -> VERIFIED -> SETTLING -> SETTLED
                                                              -> SETTLEMENT_FAILED

Resource delivery and settlement are not atomic: once verified, the action
runs and its result is returned whatever the settlement outcome, which
travels separately in the receipt.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import (Any, Callable, Dict, FrozenSet, List, Mapping, Optional,
                    Sequence, Union)

from common.audit import AuditSink
from common.logging import log_context
from payment_domain.codec import (InvalidPayload, decode_authorization,
                                  encode_receipt)
from payment_domain.models import (PaymentAuthorization, PaymentRequirements,
                                   SettlementResult, VerifyResponse)
from payment_domain.networks import (DEFAULT_NETWORKS, NetworkConfig,
                                     find_network)
from payment_observability.metrics import resource_requests_total

from .facilitator_client import FacilitatorPort, FacilitatorUnreachable

__all__ = [
    "Challenged",
    "InvalidTransition",
    "PaidResource",
    "PaymentAttempt",
    "PaymentState",
    "Rejected",
    "Result",
]

_LOG = logging.getLogger(__name__)


class PaymentState(str, Enum):
    UNPAID = "UNPAID"
    CHALLENGED = "CHALLENGED"
    AUTHORIZED = "AUTHORIZED"
    VERIFYING = "VERIFYING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"
    SETTLING = "SETTLING"
    SETTLED = "SETTLED"
    SETTLEMENT_FAILED = "SETTLEMENT_FAILED"


_TRANSITIONS: Dict[PaymentState, FrozenSet[PaymentState]] = {
    PaymentState.UNPAID: frozenset({PaymentState.CHALLENGED, PaymentState.AUTHORIZED}),
    PaymentState.CHALLENGED: frozenset({PaymentState.AUTHORIZED}),
    PaymentState.AUTHORIZED: frozenset({PaymentState.VERIFYING}),
    PaymentState.VERIFYING: frozenset({PaymentState.VERIFIED, PaymentState.REJECTED}),
    PaymentState.VERIFIED: frozenset({PaymentState.SETTLING}),
    PaymentState.SETTLING: frozenset({PaymentState.SETTLED, PaymentState.SETTLEMENT_FAILED}),
    PaymentState.REJECTED: frozenset(),
    PaymentState.SETTLED: frozenset(),
    PaymentState.SETTLEMENT_FAILED: frozenset(),
}


class InvalidTransition(RuntimeError):
    def __init__(self, current: PaymentState, target: PaymentState) -> None:
        super().__init__(f"illegal transition {current.value} -> {target.value}")
        self.current = current
        self.target = target


@dataclass
class PaymentAttempt:
    correlation_id: str
    state: PaymentState = PaymentState.UNPAID
    history: List[PaymentState] = field(default_factory=lambda: [PaymentState.UNPAID])

    def advance(self, target: PaymentState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransition(self.state, target)
        self.state = target
        self.history.append(target)


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Challenged:
    accepts: List[PaymentRequirements]
    state: PaymentState = PaymentState.CHALLENGED

    def body(self) -> Dict[str, Any]:
        return {"accepts": [req.to_wire() for req in self.accepts]}


@dataclass(frozen=True)
class Rejected:
    details: VerifyResponse
    state: PaymentState = PaymentState.REJECTED

    def body(self) -> Dict[str, Any]:
        return {"error": "payment_verification_failed", "details": self.details.to_wire()}


@dataclass(frozen=True)
class Result:
    value: Any
    settlement: SettlementResult
    receipt: str
    state: PaymentState


Outcome = Union[Challenged, Rejected, Result]


class PaidResource:
    """Guard *action* behind payment for *requirements*.

    An authorization must cover ``maxAmountRequired``, pay ``payTo`` and be
    signed for the requirement network, or for the network the payer
    declares, before the facilitator is asked to verify it.
    """

    def __init__(
        self,
        requirements: PaymentRequirements,
        facilitator: FacilitatorPort,
        action: Callable[[Mapping[str, Any]], Any],
        *,
        resource_provider_address: Optional[str] = None,
        audit: Optional[AuditSink] = None,
        networks: Sequence[NetworkConfig] = DEFAULT_NETWORKS,
    ) -> None:
        self.requirements = requirements
        self.facilitator = facilitator
        self.action = action
        self.resource_provider_address = resource_provider_address
        self.audit = audit
        self.networks = tuple(networks)

    @property
    def target_chain(self) -> str:
        return self.requirements.network

    def unmet_requirement(
        self, auth: PaymentAuthorization, payer_chain: Optional[str] = None
    ) -> Optional[str]:
        """Return why *auth* does not satisfy the requirements, or None."""

        req = self.requirements
        if auth.amount < int(req.max_amount_required):
            return f"value {auth.value} is below maxAmountRequired {req.max_amount_required}"
        if auth.to.lower() != req.pay_to.lower():
            return f"authorization pays {auth.to}, not {req.pay_to}"
        chain = payer_chain or req.network
        net = find_network(self.networks, chain)
        if net is None:
            return f"network {chain!r} is not accepted"
        if auth.chain_id != net.chain_id:
            return f"authorization is for chainId {auth.chain_id}, {chain} is {net.chain_id}"
        asset = req.asset if chain == req.network else net.token_address
        if auth.verifying_contract.lower() != asset.lower():
            return f"authorization is for token {auth.verifying_contract}, {chain} accepts {asset}"
        return None

    def request(
        self,
        body: Mapping[str, Any],
        payload: Optional[str] = None,
        payer_chain: Optional[str] = None,
        *,
        correlation_id: Optional[str] = None,
    ) -> Outcome:
        """Run one attempt. Raises :class:`FacilitatorUnreachable` if verification
        cannot reach the facilitator."""

        attempt = PaymentAttempt(correlation_id or uuid.uuid4().hex)
        extra = log_context(attempt.correlation_id, network=self.target_chain)

        if not payload:
            attempt.advance(PaymentState.CHALLENGED)
            resource_requests_total.labels(state=attempt.state.value).inc()
            self._record(attempt, "RESOURCE_CHALLENGED", {"resource": self.requirements.resource})
            return Challenged([self.requirements])

        attempt.advance(PaymentState.AUTHORIZED)
        attempt.advance(PaymentState.VERIFYING)
        try:
            auth = decode_authorization(payload)
        except InvalidPayload as exc:
            return self._reject(
                attempt,
                VerifyResponse(success=False, errors=["invalid_payload"], reason=str(exc)),
                extra,
            )
        unmet = self.unmet_requirement(auth, payer_chain)
        if unmet is not None:
            return self._reject(
                attempt,
                VerifyResponse(success=False, errors=["requirements_not_met"], reason=unmet),
                extra,
            )

        verdict = self.facilitator.verify(payload, correlation_id=attempt.correlation_id)
        if not verdict.success:
            return self._reject(attempt, verdict, extra)
        attempt.advance(PaymentState.VERIFIED)

        try:
            value = self.action(body)
        finally:
            settlement, receipt = self._settle(attempt, payload, payer_chain)

        resource_requests_total.labels(state=attempt.state.value).inc()
        self._record(
            attempt,
            "RESOURCE_DELIVERED",
            {"settled": settlement.success, "transactionReference": settlement.transaction_reference},
        )
        return Result(value=value, settlement=settlement, receipt=receipt, state=attempt.state)

    def _reject(
        self, attempt: PaymentAttempt, verdict: VerifyResponse, extra: Dict[str, Any]
    ) -> Rejected:
        attempt.advance(PaymentState.REJECTED)
        resource_requests_total.labels(state=attempt.state.value).inc()
        _LOG.info(
            "payment rejected: %s %s", verdict.errors or "", verdict.reason or "", extra=extra
        )
        return Rejected(verdict)

    def _settle(
        self, attempt: PaymentAttempt, payload: str, payer_chain: Optional[str]
    ) -> tuple[SettlementResult, str]:
        attempt.advance(PaymentState.SETTLING)
        try:
            settlement, receipt = self.facilitator.settle(
                payload,
                target_chain=self.target_chain,
                payer_chain=payer_chain,
                resource_provider_address=self.resource_provider_address,
                correlation_id=attempt.correlation_id,
            )
        except FacilitatorUnreachable as exc:
            _LOG.error(
                "settlement could not reach facilitator: %s",
                exc,
                extra=log_context(attempt.correlation_id, network=self.target_chain),
            )
            settlement = SettlementResult(
                success=False,
                network=self.target_chain,
                error="facilitator_unreachable",
                detail=str(exc),
            )
            receipt = encode_receipt(settlement)
        attempt.advance(
            PaymentState.SETTLED if settlement.success else PaymentState.SETTLEMENT_FAILED
        )
        return settlement, receipt

    def _record(self, attempt: PaymentAttempt, event: str, details: Dict[str, Any]) -> None:
        if self.audit is not None:
            self.audit.record(attempt.correlation_id, event, details)
