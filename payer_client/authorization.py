"""Build and sign transfer authorizations on the payer side.

No network access happens here: the builder only needs the payer key and
the token's EIP-712 domain.
"""
from __future__ import annotations

import logging
import secrets
import time
from typing import Callable, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount

from common.secrets import get_private_key
from payment_domain.codec import encode_authorization
from payment_domain.models import PaymentAuthorization
from payment_domain.typed_data import (TRANSFER_WITH_AUTHORIZATION_TYPES,
                                       ZERO_ADDRESS, TokenDomain, build_domain,
                                       is_well_formed_address,
                                       signable_message)

__all__ = [
    "AuthorizationBuilder",
    "SigningKeyUnavailable",
    "VALID_AFTER_SKEW_SECONDS",
    "VALIDITY_SECONDS",
    "new_nonce",
]

_LOG = logging.getLogger(__name__)

# Backward clock-skew tolerance and forward validity of a fresh authorization.
VALID_AFTER_SKEW_SECONDS = 60
VALIDITY_SECONDS = 300


class SigningKeyUnavailable(RuntimeError):
    """No payer private key was supplied or configured."""


def new_nonce() -> str:
    """32 random bytes from the OS CSPRNG, 0x-hex encoded."""
    return "0x" + secrets.token_bytes(32).hex()


class AuthorizationBuilder:
    """Sign ``TransferWithAuthorization`` payloads with one payer key.

    The key comes from the constructor, else from the ``PAYER_PRIVATE_KEY``
    or ``PRIVATE_KEY`` secret. A missing key only fails at :meth:`build`.
    """

    def __init__(
        self,
        private_key: Optional[str] = None,
        *,
        token_domain: TokenDomain = TokenDomain(),
        clock: Callable[[], float] = time.time,
    ) -> None:
        key = private_key or get_private_key("PAYER_PRIVATE_KEY", "PRIVATE_KEY")
        self._account: Optional[LocalAccount] = Account.from_key(key) if key else None
        self.token_domain = token_domain
        self._clock = clock

    @property
    def address(self) -> str:
        return self._require_account().address

    def _require_account(self) -> LocalAccount:
        if self._account is None:
            raise SigningKeyUnavailable("payer signing key is not configured")
        return self._account

    def build(
        self,
        *,
        to: str,
        value: str,
        verifying_contract: str,
        chain_id: int,
        payer: Optional[str] = None,
    ) -> PaymentAuthorization:
        """Return a signed authorization valid for ``[now-60s, now+300s]``."""

        account = self._require_account()
        if payer is not None and payer.lower() != account.address.lower():
            raise ValueError(f"payer {payer} does not match signing key {account.address}")
        if not isinstance(value, str) or not value.isdigit() or not value.isascii():
            raise ValueError(f"amount must be a non-negative integer string, got {value!r}")

        now = int(self._clock())
        unsigned = PaymentAuthorization(
            from_address=account.address,
            to=to,
            value=value,
            valid_after=now - VALID_AFTER_SKEW_SECONDS,
            valid_before=now + VALIDITY_SECONDS,
            nonce=new_nonce(),
            verifying_contract=verifying_contract,
            chain_id=chain_id,
        )

        # Malformed contract addresses are signed against the zero address but
        # transmitted unchanged; verifiers see the original value.
        signing_contract = verifying_contract
        if not is_well_formed_address(verifying_contract):
            _LOG.warning(
                "verifyingContract %r is not an address; signing against zero address",
                verifying_contract,
            )
            signing_contract = ZERO_ADDRESS

        domain = build_domain(self.token_domain, chain_id, signing_contract)
        signed = account.sign_message(
            signable_message(domain, TRANSFER_WITH_AUTHORIZATION_TYPES, unsigned.message())
        )
        return unsigned.model_copy(update={"signature": "0x" + bytes(signed.signature).hex()})

    def build_encoded(self, **kwargs) -> str:
        """:meth:`build` followed by the base64 transport encoding."""
        return encode_authorization(self.build(**kwargs))
