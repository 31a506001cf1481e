"""Resource server settings (env vars + secrets)."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Mapping, Optional, Tuple

from common.secrets import get_secret
from payment_domain.networks import (DEFAULT_NETWORKS, NetworkConfig,
                                     apply_env_overrides, find_network)

__all__ = ["ResourceServerSettings", "get_settings", "load_settings"]


@dataclass(frozen=True)
class ResourceServerSettings:
    resource_server_address: Optional[str] = None
    facilitator_url: str = "http://localhost:5401"
    facilitator_address: Optional[str] = None
    target_chain: str = "polygon-amoy"
    price: str = "100000"
    public_url: str = "http://localhost:5402"
    facilitator_api_token: Optional[str] = field(default=None, repr=False)
    networks: Tuple[NetworkConfig, ...] = DEFAULT_NETWORKS

    @property
    def pay_to(self) -> Optional[str]:
        """Payments go to the facilitator's custody address when one is set."""
        return self.facilitator_address or self.resource_server_address

    def target_network(self) -> NetworkConfig:
        net = find_network(self.networks, self.target_chain)
        if net is None:
            raise ValueError(f"TARGET_CHAIN {self.target_chain!r} is not a configured network")
        return net


def load_settings(env: Optional[Mapping[str, str]] = None) -> ResourceServerSettings:
    env = os.environ if env is None else env
    defaults = ResourceServerSettings()
    return ResourceServerSettings(
        resource_server_address=env.get("RESOURCE_SERVER_ADDRESS"),
        facilitator_url=env.get("FACILITATOR_URL", defaults.facilitator_url).rstrip("/"),
        facilitator_address=env.get("FACILITATOR_ADDRESS"),
        target_chain=env.get("TARGET_CHAIN", defaults.target_chain),
        price=env.get("PRICE", defaults.price),
        public_url=env.get("PUBLIC_URL", defaults.public_url).rstrip("/"),
        facilitator_api_token=get_secret("FACILITATOR_API_TOKEN"),
        networks=apply_env_overrides(DEFAULT_NETWORKS, env),
    )


@lru_cache(maxsize=1)
def get_settings() -> ResourceServerSettings:
    return load_settings()
