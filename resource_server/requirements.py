"""Payment requirements advertised in a 402 challenge."""
from __future__ import annotations

from payment_domain.models import PaymentRequirements

__all__ = ["build_payment_requirements"]


def build_payment_requirements(
    resource_url: str,
    pay_to: str,
    asset: str,
    target_chain: str = "polygon-amoy",
    amount: str = "100000",
    description: str = "Premium summarization",
) -> PaymentRequirements:
    return PaymentRequirements(
        scheme="exact",
        network=target_chain,
        resource=resource_url,
        description=description,
        mime_type="application/json",
        pay_to=pay_to,
        max_amount_required=amount,
        max_timeout_seconds=120,
        asset=asset,
        extra={"name": "USDC", "version": "2"},
        output_schema={"input": {"type": "http", "method": "POST"}, "output": {}},
    )
