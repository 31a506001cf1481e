"""Settlement engine: consume the nonce, then move funds on-chain.

Same-chain payments execute the payer's authorization on the target chain.
Cross-chain payments must be addressed to the facilitator's custody account;
they execute on the payer's chain and then pay the
resource provider from the facilitator's pre-funded balance on the target
chain. Once the nonce is consumed it is never restored, whatever happens
afterwards.
"""
from __future__ import annotations

import logging
import threading
import time
import uuid
from enum import Enum
from typing import Callable, Dict, Optional, Sequence

from common.audit import AuditSink
from common.logging import log_context
from facilitator.chains import ChainGateway, ChainSubmissionError
from facilitator.nonce_registry import NonceRegistry
from payment_domain.models import PaymentAuthorization, SettlementResult
from payment_domain.networks import (NetworkConfig, find_network,
                                     find_network_by_chain_id)
from payment_domain.typed_data import is_well_formed_address
from payment_observability.metrics import (nonce_replays_total,
                                           prefunded_balance_units,
                                           prefunded_shortfall_total,
                                           settlement_latency_seconds,
                                           settlements_total)

__all__ = ["SettlementEngine", "SettlementError"]

_LOG = logging.getLogger(__name__)

GatewayFactory = Callable[[NetworkConfig], ChainGateway]


class SettlementError(str, Enum):
    UNSUPPORTED_NETWORK = "unsupported_network"
    PAYER_CHAIN_MISMATCH = "payer_chain_mismatch"
    RESOURCE_SERVER_ADDRESS_REQUIRED = "resource_server_address_required"
    PAYEE_NOT_FACILITATOR = "payee_not_facilitator"
    NONCE_REPLAY = "nonce_replay"
    SUBMISSION_FAILED = "chain_submission_failed"
    TRANSACTION_REVERTED = "transaction_reverted"
    INSUFFICIENT_PRE_FUNDED_BALANCE = "insufficient_pre_funded_balance"
    PAYOUT_FAILED = "payout_failed"


class SettlementEngine:
    def __init__(
        self,
        networks: Sequence[NetworkConfig],
        nonce_registry: NonceRegistry,
        gateway_factory: GatewayFactory,
        *,
        audit: Optional[AuditSink] = None,
    ) -> None:
        self.networks = tuple(networks)
        self.nonce_registry = nonce_registry
        self._gateway_factory = gateway_factory
        self._gateways: Dict[str, ChainGateway] = {}
        self._audit = audit
        self._gateways_lock = threading.Lock()

    def _gateway(self, network: NetworkConfig) -> ChainGateway:
        # one gateway per network: its submit lock owns the account nonce
        with self._gateways_lock:
            gw = self._gateways.get(network.name)
            if gw is None:
                gw = self._gateways[network.name] = self._gateway_factory(network)
            return gw

    # ------------------------------------------------------------------
    def settle(
        self,
        auth: PaymentAuthorization,
        *,
        target_chain: str,
        payer_chain: Optional[str] = None,
        resource_provider_address: Optional[str] = None,
        correlation_id: Optional[str] = None,
    ) -> SettlementResult:
        correlation_id = correlation_id or uuid.uuid4().hex

        # 1. validate without touching the registry or any chain
        target = find_network(self.networks, target_chain)
        if target is None:
            return self._fail(
                auth, SettlementError.UNSUPPORTED_NETWORK, f"target chain {target_chain!r}",
                network=target_chain, correlation_id=correlation_id, path="invalid",
            )
        if payer_chain is None:
            source = find_network_by_chain_id(self.networks, auth.chain_id)
            if source is None:
                return self._fail(
                    auth, SettlementError.UNSUPPORTED_NETWORK, f"chainId {auth.chain_id}",
                    network=target.name, correlation_id=correlation_id, path="invalid",
                )
        else:
            source = find_network(self.networks, payer_chain)
            if source is None:
                return self._fail(
                    auth, SettlementError.UNSUPPORTED_NETWORK, f"payer chain {payer_chain!r}",
                    network=target.name, correlation_id=correlation_id, path="invalid",
                )
            if source.chain_id != auth.chain_id:
                return self._fail(
                    auth,
                    SettlementError.PAYER_CHAIN_MISMATCH,
                    f"{payer_chain} is chainId {source.chain_id}, authorization is for {auth.chain_id}",
                    network=target.name, correlation_id=correlation_id, path="invalid",
                )

        cross_chain = source.name != target.name
        path = "cross_chain" if cross_chain else "same_chain"
        if cross_chain and not is_well_formed_address(resource_provider_address):
            return self._fail(
                auth,
                SettlementError.RESOURCE_SERVER_ADDRESS_REQUIRED,
                "cross-chain payout needs the resource provider address",
                network=target.name, correlation_id=correlation_id, path=path,
            )
        if cross_chain:
            custody = self._gateway(source).facilitator_address
            if auth.to.lower() != custody.lower():
                return self._fail(
                    auth,
                    SettlementError.PAYEE_NOT_FACILITATOR,
                    f"cross-chain authorization must pay {custody} on {source.name}, not {auth.to}",
                    network=target.name, correlation_id=correlation_id, path=path,
                )

        # 2. consume the nonce; the registry's unique key decides replays
        if not self.nonce_registry.consume(
            auth.nonce, chain_id=auth.chain_id, payer=auth.from_address
        ):
            nonce_replays_total.inc()
            return self._fail(
                auth, SettlementError.NONCE_REPLAY, None,
                network=target.name, correlation_id=correlation_id, path=path,
            )

        # 3. execute
        t0 = time.perf_counter()
        try:
            if cross_chain:
                result = self._settle_cross_chain(
                    auth, source, target, resource_provider_address, correlation_id
                )
            else:
                result = self._settle_same_chain(auth, target, correlation_id)
        finally:
            settlement_latency_seconds.labels(path=path).observe(time.perf_counter() - t0)

        settlements_total.labels(path=path, outcome="success" if result.success else "failure").inc()
        self._record(correlation_id, result, path)
        return result

    # ------------------------------------------------------------------
    def _settle_same_chain(
        self, auth: PaymentAuthorization, network: NetworkConfig, correlation_id: str
    ) -> SettlementResult:
        extra = log_context(correlation_id, network=network.name, nonce=auth.nonce)
        try:
            outcome = self._gateway(network).transfer_with_authorization(auth)
        except ChainSubmissionError as exc:
            _LOG.error("settlement submission failed: %s", exc, extra=extra)
            return self._result(auth, network, SettlementError.SUBMISSION_FAILED, str(exc))
        if not outcome.succeeded:
            _LOG.error("settlement reverted in %s", outcome.tx_hash, extra=extra)
            return self._result(
                auth, network, SettlementError.TRANSACTION_REVERTED, outcome.tx_hash,
                tx_hash=outcome.tx_hash,
            )
        _LOG.info("settled in %s", outcome.tx_hash, extra=extra)
        return self._result(auth, network, tx_hash=outcome.tx_hash)

    def _settle_cross_chain(
        self,
        auth: PaymentAuthorization,
        source: NetworkConfig,
        target: NetworkConfig,
        resource_provider_address: str,
        correlation_id: str,
    ) -> SettlementResult:
        extra = log_context(correlation_id, network=target.name, nonce=auth.nonce)

        # leg 1: pull the payer's funds into custody on the payer chain
        source_gw = self._gateway(source)
        try:
            pulled = source_gw.transfer_with_authorization(auth)
        except ChainSubmissionError as exc:
            _LOG.error("source leg on %s failed: %s", source.name, exc, extra=extra)
            return self._result(auth, target, SettlementError.SUBMISSION_FAILED, str(exc))
        cross = {"sourceNetwork": source.name, "sourceTransaction": pulled.tx_hash}
        if not pulled.succeeded:
            _LOG.error("source leg reverted in %s", pulled.tx_hash, extra=extra)
            return self._result(
                auth, target, SettlementError.TRANSACTION_REVERTED,
                f"source transaction {pulled.tx_hash} reverted", cross_chain=cross,
            )

        # leg 2: pay the provider from the pre-funded balance on the target chain
        target_gw = self._gateway(target)
        try:
            balance = target_gw.balance_of(target_gw.facilitator_address)
        except ChainSubmissionError as exc:
            _LOG.error("balance lookup on %s failed: %s", target.name, exc, extra=extra)
            return self._result(
                auth, target, SettlementError.PAYOUT_FAILED, str(exc), cross_chain=cross
            )
        prefunded_balance_units.labels(network=target.name).set(balance)
        if balance < auth.amount:
            prefunded_shortfall_total.labels(network=target.name).inc()
            _LOG.error(
                "pre-funded balance %d on %s below payout %d; operator top-up required",
                balance,
                target.name,
                auth.amount,
                extra=extra,
            )
            return self._result(
                auth,
                target,
                SettlementError.INSUFFICIENT_PRE_FUNDED_BALANCE,
                f"balance {balance} < value {auth.value}",
                cross_chain=cross,
            )

        try:
            paid = target_gw.transfer(resource_provider_address, auth.amount)
        except ChainSubmissionError as exc:
            _LOG.error("payout on %s failed: %s", target.name, exc, extra=extra)
            return self._result(
                auth, target, SettlementError.PAYOUT_FAILED, str(exc), cross_chain=cross
            )
        if not paid.succeeded:
            _LOG.error("payout reverted in %s", paid.tx_hash, extra=extra)
            return self._result(
                auth, target, SettlementError.PAYOUT_FAILED,
                f"payout transaction {paid.tx_hash} reverted",
                tx_hash=paid.tx_hash, cross_chain=cross,
            )
        _LOG.info(
            "cross-chain settled: %s on %s, payout %s",
            pulled.tx_hash,
            source.name,
            paid.tx_hash,
            extra=extra,
        )
        return self._result(auth, target, tx_hash=paid.tx_hash, cross_chain=cross)

    # ------------------------------------------------------------------
    @staticmethod
    def _result(
        auth: PaymentAuthorization,
        network: NetworkConfig,
        error: Optional[SettlementError] = None,
        detail: Optional[str] = None,
        *,
        tx_hash: Optional[str] = None,
        cross_chain: Optional[dict] = None,
    ) -> SettlementResult:
        return SettlementResult(
            success=error is None,
            transaction_reference=tx_hash,
            network=network.name,
            payer=auth.from_address,
            error=error.value if error else None,
            detail=detail,
            cross_chain=cross_chain,
        )

    def _fail(
        self,
        auth: PaymentAuthorization,
        error: SettlementError,
        detail: Optional[str],
        *,
        network: str,
        correlation_id: str,
        path: str,
    ) -> SettlementResult:
        _LOG.warning(
            "settlement refused: %s %s",
            error.value,
            detail or "",
            extra=log_context(correlation_id, network=network, nonce=auth.nonce),
        )
        result = SettlementResult(
            success=False,
            network=network,
            payer=auth.from_address,
            error=error.value,
            detail=detail,
        )
        settlements_total.labels(path=path, outcome=error.value).inc()
        self._record(correlation_id, result, path)
        return result

    def _record(self, correlation_id: str, result: SettlementResult, path: str) -> None:
        if self._audit is None:
            return
        self._audit.record(
            correlation_id,
            "SETTLEMENT_SUCCEEDED" if result.success else "SETTLEMENT_FAILED",
            {"path": path, **result.to_wire()},
        )
