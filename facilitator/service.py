"""Facilitator facade: verification, risk and settlement behind one object."""
from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from common.audit import AuditSink, SqlAuditSink
from common.logging import log_context
from facilitator.chains import Web3ChainGateway
from facilitator.config import (ConfigurationError, FacilitatorSettings,
                                get_settings)
from facilitator.nonce_registry import NonceRegistry
from facilitator.risk.engine import RiskEngine
from facilitator.risk.policy import RiskPolicy
from facilitator.risk.sources import (ChainalysisSanctionsOracle,
                                      GoPlusIntelProvider, Web3ActivitySource)
from facilitator.settlement import GatewayFactory, SettlementEngine
from facilitator.verification import VerificationEngine, VerificationError
from payment_domain.codec import (InvalidPayload, decode_authorization,
                                  encode_receipt)
from payment_domain.models import (PaymentAuthorization, SettlementResult,
                                   VerifyResponse)
from payment_observability.metrics import (verification_errors_total,
                                           verify_requests_total)

__all__ = ["Facilitator"]

_LOG = logging.getLogger(__name__)

Payload = Union[str, PaymentAuthorization]


class Facilitator:
    def __init__(
        self,
        settings: FacilitatorSettings,
        nonce_registry: NonceRegistry,
        risk_engine: RiskEngine,
        gateway_factory: GatewayFactory,
        *,
        audit: Optional[AuditSink] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.nonce_registry = nonce_registry
        self.risk_engine = risk_engine
        self.audit = audit
        self.verifier = VerificationEngine(
            settings.supported_chain_ids,
            nonce_registry,
            token_domain=settings.token_domain,
            clock=clock,
        )
        self.settlement = SettlementEngine(
            settings.networks, nonce_registry, gateway_factory, audit=audit
        )

    @classmethod
    def from_settings(
        cls, settings: Optional[FacilitatorSettings] = None
    ) -> "Facilitator":  # pragma: no cover - wires live adapters
        settings = settings or get_settings()
        key = settings.facilitator_private_key

        def _gateway(network):
            if not key:
                raise ConfigurationError("FACILITATOR_PRIVATE_KEY is not configured")
            return Web3ChainGateway(network, key)

        risk = RiskEngine(
            GoPlusIntelProvider(settings.goplus_url),
            ChainalysisSanctionsOracle(
                settings.sanctions_rpc_url, settings.sanctions_oracle_address
            ),
            Web3ActivitySource(settings.activity_rpc_url),
            policy=settings.risk_policy,
        )
        return cls(
            settings,
            NonceRegistry.from_url(settings.nonce_db_url),
            risk,
            _gateway,
            audit=SqlAuditSink("facilitator"),
        )

    # ------------------------------------------------------------------
    def list_supported(self) -> List[Dict[str, Any]]:
        return [net.describe() for net in self.settings.networks]

    @staticmethod
    def _decode(payload: Payload) -> PaymentAuthorization:
        if isinstance(payload, PaymentAuthorization):
            return payload
        return decode_authorization(payload)

    def verify(
        self,
        payload: Payload,
        policy: Optional[Union[RiskPolicy, Mapping[str, Any]]] = None,
        *,
        correlation_id: Optional[str] = None,
    ) -> VerifyResponse:
        """Check an authorization without side effects on the nonce registry.

        Risk is only assessed for authorizations that pass every check.
        ``policy`` overrides the configured risk policy for this call.
        """

        correlation_id = correlation_id or uuid.uuid4().hex
        try:
            auth = self._decode(payload)
        except InvalidPayload as exc:
            _LOG.info("invalid payload: %s", exc, extra=log_context(correlation_id))
            verify_requests_total.labels(outcome="invalid").inc()
            verification_errors_total.labels(code=VerificationError.INVALID_PAYLOAD.value).inc()
            return VerifyResponse(
                success=False, errors=[VerificationError.INVALID_PAYLOAD.value], reason=str(exc)
            )

        if isinstance(policy, Mapping):
            policy = RiskPolicy.from_dict(policy)

        report = self.verifier.check(auth)
        if not report.ok:
            for code in report.errors:
                verification_errors_total.labels(code=code.value).inc()
            verify_requests_total.labels(outcome="rejected").inc()
            self._record(correlation_id, "VERIFY_REJECTED", auth, {"errors": report.codes()})
            return VerifyResponse(success=False, errors=report.codes())

        assessment = self.risk_engine.assess(auth.from_address, auth.amount, policy)
        response = VerifyResponse(
            success=not assessment.rejected,
            action=assessment.action.value,
            reason=assessment.reason,
            risk_profile=(
                assessment.profile.model_dump(by_alias=True, mode="json")
                if assessment.profile
                else None
            ),
        )
        outcome = "accepted" if response.success else "rejected"
        verify_requests_total.labels(outcome=outcome).inc()
        self._record(
            correlation_id,
            "VERIFY_ACCEPTED" if response.success else "VERIFY_REJECTED",
            auth,
            {"action": response.action, "reason": response.reason, "degraded": assessment.degraded},
        )
        _LOG.info(
            "verify %s action=%s",
            outcome,
            response.action,
            extra=log_context(correlation_id, nonce=auth.nonce, payer=auth.from_address),
        )
        return response

    def settle(
        self,
        payload: Payload,
        target_chain: str,
        payer_chain: Optional[str] = None,
        resource_provider_address: Optional[str] = None,
        *,
        correlation_id: Optional[str] = None,
    ) -> Tuple[SettlementResult, str]:
        """Settle and return the result with its base64 receipt.

        Raises :class:`InvalidPayload` for undecodable payloads.
        """

        auth = self._decode(payload)
        result = self.settlement.settle(
            auth,
            target_chain=target_chain,
            payer_chain=payer_chain,
            resource_provider_address=resource_provider_address,
            correlation_id=correlation_id,
        )
        return result, encode_receipt(result)

    # ------------------------------------------------------------------
    def _record(
        self,
        correlation_id: str,
        event: str,
        auth: PaymentAuthorization,
        details: Dict[str, Any],
    ) -> None:
        if self.audit is None:
            return
        self.audit.record(
            correlation_id,
            event,
            {"nonce": auth.nonce, "payer": auth.from_address, "chainId": auth.chain_id, **details},
        )
