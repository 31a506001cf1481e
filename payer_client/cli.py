import sys

from payment_domain.networks import DEFAULT_NETWORKS, apply_env_overrides, find_network

from .authorization import AuthorizationBuilder


def main():
    if len(sys.argv) != 4:
        print("Usage: python -m payer_client.cli <to> <value> <network>")
        sys.exit(1)

    to, value, name = sys.argv[1:]
    network = find_network(apply_env_overrides(DEFAULT_NETWORKS), name)
    if network is None:
        print(f"Unknown network: {name}")
        sys.exit(1)

    payload = AuthorizationBuilder().build_encoded(
        to=to,
        value=value,
        verifying_contract=network.token_address,
        chain_id=network.chain_id,
    )
    print(payload)


if __name__ == "__main__":
    main()
