"""Prometheus metrics for the payment services."""

from .metrics import (nonce_replays_total, settlements_total,
                      verify_requests_total)

__all__ = [
    "verify_requests_total",
    "settlements_total",
    "nonce_replays_total",
]
