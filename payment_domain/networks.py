"""Chain table shared by payer, facilitator and resource server."""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional, Tuple

__all__ = [
    "NetworkConfig",
    "DEFAULT_NETWORKS",
    "apply_env_overrides",
    "find_network",
    "find_network_by_chain_id",
]


@dataclass(frozen=True)
class NetworkConfig:
    """One settlement network: chain id, RPC endpoint and token contract."""

    name: str
    chain_id: int
    rpc_url: str
    token_address: str
    schemes: Tuple[str, ...] = ("exact",)

    @property
    def env_prefix(self) -> str:
        return self.name.upper().replace("-", "_")

    def describe(self) -> dict:
        return {"name": self.name, "chainId": self.chain_id, "schemes": list(self.schemes)}


DEFAULT_NETWORKS: Tuple[NetworkConfig, ...] = (
    NetworkConfig(
        name="polygon-amoy",
        chain_id=80002,
        rpc_url="https://rpc-amoy.polygon.technology",
        token_address="0x41E94Eb019C0762f9Bfcf9Fb1E58725BfB0e7582",
    ),
    NetworkConfig(
        name="base-sepolia",
        chain_id=84532,
        rpc_url="https://sepolia.base.org",
        token_address="0x036CbD53842c5426634e7929541eC2318f3dCF7e",
    ),
    NetworkConfig(
        name="polygon",
        chain_id=137,
        rpc_url="https://polygon-rpc.com",
        token_address="0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174",
    ),
    NetworkConfig(
        name="base",
        chain_id=8453,
        rpc_url="https://mainnet.base.org",
        token_address="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
    ),
)


def apply_env_overrides(
    networks: Tuple[NetworkConfig, ...], env: Optional[Mapping[str, str]] = None
) -> Tuple[NetworkConfig, ...]:
    """Apply ``<NAME>_RPC_URL`` / ``<NAME>_TOKEN_ADDRESS`` overrides."""

    env = os.environ if env is None else env
    out = []
    for net in networks:
        out.append(
            replace(
                net,
                rpc_url=env.get(f"{net.env_prefix}_RPC_URL", net.rpc_url),
                token_address=env.get(f"{net.env_prefix}_TOKEN_ADDRESS", net.token_address),
            )
        )
    return tuple(out)


def find_network(networks: Tuple[NetworkConfig, ...], name: str) -> Optional[NetworkConfig]:
    for net in networks:
        if net.name == name:
            return net
    return None


def find_network_by_chain_id(
    networks: Tuple[NetworkConfig, ...], chain_id: int
) -> Optional[NetworkConfig]:
    for net in networks:
        if net.chain_id == chain_id:
            return net
    return None
