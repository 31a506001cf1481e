"""Facilitator settings, loaded once from env vars, secrets and a policy file."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Mapping, Optional, Tuple

from common.secrets import get_private_key
from facilitator.risk.policy import RiskPolicy
from payment_domain.networks import (DEFAULT_NETWORKS, NetworkConfig,
                                     apply_env_overrides, find_network,
                                     find_network_by_chain_id)
from payment_domain.typed_data import TokenDomain, is_well_formed_address

__all__ = [
    "ConfigurationError",
    "FacilitatorSettings",
    "get_settings",
    "load_settings",
]

_LOG = logging.getLogger(__name__)

DEFAULT_SANCTIONS_ORACLE = "0x40C57923924B5c5c5455c48D93317139ADDaC8fb"
DEFAULT_REFERENCE_RPC = "https://ethereum-rpc.publicnode.com"


class ConfigurationError(ValueError):
    """Settings are inconsistent or incomplete."""


@dataclass(frozen=True)
class FacilitatorSettings:
    networks: Tuple[NetworkConfig, ...] = DEFAULT_NETWORKS
    token_domain: TokenDomain = TokenDomain()
    risk_policy: RiskPolicy = field(default_factory=RiskPolicy)
    nonce_db_url: str = "sqlite:///./facilitator_nonces.db"
    goplus_url: str = "https://api.gopluslabs.io"
    sanctions_oracle_address: str = DEFAULT_SANCTIONS_ORACLE
    sanctions_rpc_url: str = DEFAULT_REFERENCE_RPC
    activity_rpc_url: str = DEFAULT_REFERENCE_RPC
    facilitator_private_key: Optional[str] = field(default=None, repr=False)

    def network(self, name: str) -> Optional[NetworkConfig]:
        return find_network(self.networks, name)

    def network_for_chain_id(self, chain_id: int) -> Optional[NetworkConfig]:
        return find_network_by_chain_id(self.networks, chain_id)

    @property
    def supported_chain_ids(self) -> frozenset[int]:
        return frozenset(net.chain_id for net in self.networks)

    def validate(self) -> "FacilitatorSettings":
        names = [net.name for net in self.networks]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"duplicate network names: {names}")
        chain_ids = [net.chain_id for net in self.networks]
        if len(set(chain_ids)) != len(chain_ids):
            raise ConfigurationError(f"duplicate chain ids: {chain_ids}")
        for net in self.networks:
            if not is_well_formed_address(net.token_address):
                raise ConfigurationError(
                    f"{net.name}: token address {net.token_address!r} is not an address"
                )
        if not is_well_formed_address(self.sanctions_oracle_address):
            raise ConfigurationError("SANCTIONS_ORACLE_ADDRESS is not an address")
        try:
            self.risk_policy.validate()
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc
        return self


def _load_policy(path: Optional[str]) -> RiskPolicy:
    if not path:
        return RiskPolicy()
    try:
        with Path(path).open() as fp:
            data = json.load(fp)
    except FileNotFoundError:
        _LOG.warning("risk policy file %s not found; using defaults", path)
        return RiskPolicy()
    try:
        return RiskPolicy.from_dict(data)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"invalid risk policy in {path}: {exc}") from exc


def load_settings(env: Optional[Mapping[str, str]] = None) -> FacilitatorSettings:
    """Build settings from *env* (defaults to ``os.environ``) and secrets."""

    env = os.environ if env is None else env
    defaults = FacilitatorSettings()
    settings = FacilitatorSettings(
        networks=apply_env_overrides(DEFAULT_NETWORKS, env),
        token_domain=TokenDomain(
            name=env.get("TOKEN_NAME", defaults.token_domain.name),
            version=env.get("TOKEN_VERSION", defaults.token_domain.version),
        ),
        risk_policy=_load_policy(env.get("RISK_POLICY_PATH")),
        nonce_db_url=env.get("NONCE_DB_URL", defaults.nonce_db_url),
        goplus_url=env.get("GOPLUS_BASE_URL", defaults.goplus_url),
        sanctions_oracle_address=env.get(
            "SANCTIONS_ORACLE_ADDRESS", defaults.sanctions_oracle_address
        ),
        sanctions_rpc_url=env.get("SANCTIONS_RPC_URL", defaults.sanctions_rpc_url),
        activity_rpc_url=env.get("ACTIVITY_RPC_URL", defaults.activity_rpc_url),
        facilitator_private_key=get_private_key("FACILITATOR_PRIVATE_KEY", "PRIVATE_KEY"),
    )
    return settings.validate()


@lru_cache(maxsize=1)
def get_settings() -> FacilitatorSettings:
    return load_settings()
