"""On-chain submission for settlement legs.

:class:`ChainGateway` is the seam the settlement engine talks to; the live
implementation signs and sends with the facilitator key through ``web3``.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional, Protocol

from eth_account import Account
from web3 import Web3
from web3.exceptions import TimeExhausted, Web3Exception

from payment_domain.models import PaymentAuthorization
from payment_domain.networks import NetworkConfig

__all__ = [
    "ChainGateway",
    "ChainSubmissionError",
    "TOKEN_ABI",
    "TxOutcome",
    "Web3ChainGateway",
]

_LOG = logging.getLogger(__name__)

TOKEN_ABI = [
    {
        "inputs": [
            {"name": "from", "type": "address"},
            {"name": "to", "type": "address"},
            {"name": "value", "type": "uint256"},
            {"name": "validAfter", "type": "uint256"},
            {"name": "validBefore", "type": "uint256"},
            {"name": "nonce", "type": "bytes32"},
            {"name": "v", "type": "uint8"},
            {"name": "r", "type": "bytes32"},
            {"name": "s", "type": "bytes32"},
        ],
        "name": "transferWithAuthorization",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "value", "type": "uint256"},
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


class ChainSubmissionError(RuntimeError):
    """A transaction could not be built, signed or broadcast."""


@dataclass(frozen=True)
class TxOutcome:
    tx_hash: str
    status: int
    block_number: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class ChainGateway(Protocol):
    network: NetworkConfig

    @property
    def facilitator_address(self) -> str:
        ...

    def transfer_with_authorization(self, auth: PaymentAuthorization) -> TxOutcome:
        ...

    def balance_of(self, address: str) -> int:
        ...

    def transfer(self, to: str, value: int) -> TxOutcome:
        ...


def _split_signature(signature: str) -> tuple[int, bytes, bytes]:
    try:
        raw = bytes.fromhex(signature[2:] if signature.startswith("0x") else signature)
    except ValueError as exc:
        raise ChainSubmissionError(f"signature is not hex: {exc}") from exc
    if len(raw) != 65:
        raise ChainSubmissionError(f"signature must be 65 bytes, got {len(raw)}")
    v = raw[64]
    if v < 27:
        v += 27
    return v, raw[:32], raw[32:64]


class Web3ChainGateway:
    """Facilitator wallet on one network.

    Submissions from the same gateway are serialised around account-nonce
    assignment only; receipt waits run outside the lock.
    """

    def __init__(
        self,
        network: NetworkConfig,
        private_key: str,
        *,
        w3: Optional[Web3] = None,
        receipt_timeout: float = 120.0,
    ) -> None:
        self.network = network
        self._w3 = w3 or Web3(Web3.HTTPProvider(network.rpc_url, request_kwargs={"timeout": 30}))
        self._account = Account.from_key(private_key)
        self._token = self._w3.eth.contract(
            address=Web3.to_checksum_address(network.token_address), abi=TOKEN_ABI
        )
        self._receipt_timeout = receipt_timeout
        self._submit_lock = threading.Lock()

    @property
    def facilitator_address(self) -> str:
        return self._account.address

    # ------------------------------------------------------------------
    def _send(self, fn) -> str:
        with self._submit_lock:
            try:
                tx = fn.build_transaction(
                    {
                        "from": self._account.address,
                        "chainId": self.network.chain_id,
                        "nonce": self._w3.eth.get_transaction_count(
                            self._account.address, "pending"
                        ),
                    }
                )
                signed = self._account.sign_transaction(tx)
                tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
            except (Web3Exception, ValueError, OSError) as exc:
                raise ChainSubmissionError(f"{self.network.name}: {exc}") from exc
        return "0x" + bytes(tx_hash).hex()

    def _wait(self, tx_hash: str) -> TxOutcome:
        # a broadcast transaction may still be mined; keep polling
        while True:
            try:
                receipt = self._w3.eth.wait_for_transaction_receipt(
                    tx_hash, timeout=self._receipt_timeout
                )
            except TimeExhausted:
                _LOG.warning(
                    "no receipt for %s on %s after %ss; still waiting",
                    tx_hash,
                    self.network.name,
                    self._receipt_timeout,
                    extra={"network": self.network.name},
                )
                continue
            except (Web3Exception, OSError) as exc:
                raise ChainSubmissionError(
                    f"{self.network.name}: receipt lookup for {tx_hash} failed: {exc}"
                ) from exc
            return TxOutcome(
                tx_hash=tx_hash,
                status=int(receipt["status"]),
                block_number=receipt.get("blockNumber"),
            )

    # ------------------------------------------------------------------
    def transfer_with_authorization(self, auth: PaymentAuthorization) -> TxOutcome:
        v, r, s = _split_signature(auth.signature)
        try:
            fn = self._token.functions.transferWithAuthorization(
                Web3.to_checksum_address(auth.from_address),
                Web3.to_checksum_address(auth.to),
                auth.amount,
                auth.valid_after,
                auth.valid_before,
                bytes.fromhex(auth.nonce[2:]),
                v,
                r,
                s,
            )
        except (Web3Exception, ValueError) as exc:
            raise ChainSubmissionError(f"{self.network.name}: {exc}") from exc
        tx_hash = self._send(fn)
        _LOG.info(
            "submitted transferWithAuthorization %s",
            tx_hash,
            extra={"network": self.network.name, "nonce": auth.nonce},
        )
        return self._wait(tx_hash)

    def balance_of(self, address: str) -> int:
        try:
            return int(
                self._token.functions.balanceOf(Web3.to_checksum_address(address)).call()
            )
        except (Web3Exception, ValueError, OSError) as exc:
            raise ChainSubmissionError(f"{self.network.name}: balanceOf failed: {exc}") from exc

    def transfer(self, to: str, value: int) -> TxOutcome:
        try:
            fn = self._token.functions.transfer(Web3.to_checksum_address(to), value)
        except (Web3Exception, ValueError) as exc:
            raise ChainSubmissionError(f"{self.network.name}: {exc}") from exc
        tx_hash = self._send(fn)
        _LOG.info("submitted payout transfer %s", tx_hash, extra={"network": self.network.name})
        return self._wait(tx_hash)
