"""Stateless validity checks for a transfer authorization.

Every check runs regardless of the others so a caller sees all problems at
once. Nothing here writes: the nonce is only looked up, never consumed.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence

from facilitator.nonce_registry import NonceRegistry
from facilitator.signatures import STRATEGIES, RecoveryStrategy, recover_signer
from payment_domain.models import PaymentAuthorization
from payment_domain.typed_data import (TRANSFER_WITH_AUTHORIZATION_TYPES,
                                       TokenDomain, build_domain)

__all__ = ["VerificationEngine", "VerificationError", "VerificationReport"]

_LOG = logging.getLogger(__name__)


class VerificationError(str, Enum):
    INVALID_PAYLOAD = "invalid_payload"
    INVALID_CHAIN = "invalid_chain"
    NOT_YET_VALID = "not_yet_valid"
    EXPIRED = "expired"
    NONCE_REPLAY = "nonce_replay"
    SIGNATURE_VERIFICATION_FAILED = "signature_verification_failed"
    SIGNATURE_MISMATCH = "signature_mismatch"


@dataclass
class VerificationReport:
    errors: List[VerificationError] = field(default_factory=list)
    signer: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.errors

    def codes(self) -> List[str]:
        return [e.value for e in self.errors]


class VerificationEngine:
    def __init__(
        self,
        supported_chain_ids: Iterable[int],
        nonce_registry: NonceRegistry,
        *,
        token_domain: TokenDomain = TokenDomain(),
        clock: Callable[[], float] = time.time,
        strategies: Sequence[RecoveryStrategy] = STRATEGIES,
    ) -> None:
        self.supported_chain_ids = frozenset(supported_chain_ids)
        self.nonce_registry = nonce_registry
        self.token_domain = token_domain
        self._clock = clock
        self._strategies = strategies

    def check(self, auth: PaymentAuthorization) -> VerificationReport:
        report = VerificationReport()
        now = int(self._clock())

        if auth.chain_id not in self.supported_chain_ids:
            report.errors.append(VerificationError.INVALID_CHAIN)

        # window is [validAfter, validBefore], both ends inclusive
        if now < auth.valid_after:
            report.errors.append(VerificationError.NOT_YET_VALID)
        if now > auth.valid_before:
            report.errors.append(VerificationError.EXPIRED)

        if self.nonce_registry.is_used(auth.nonce):
            report.errors.append(VerificationError.NONCE_REPLAY)

        domain = build_domain(self.token_domain, auth.chain_id, auth.verifying_contract)
        signer = recover_signer(
            domain,
            TRANSFER_WITH_AUTHORIZATION_TYPES,
            auth.message(),
            auth.signature,
            self._strategies,
        )
        report.signer = signer
        if signer is None:
            report.errors.append(VerificationError.SIGNATURE_VERIFICATION_FAILED)
        elif signer.lower() != auth.from_address.lower():
            report.errors.append(VerificationError.SIGNATURE_MISMATCH)

        if report.errors:
            _LOG.info("authorization %s failed checks: %s", auth.nonce, report.codes())
        return report
