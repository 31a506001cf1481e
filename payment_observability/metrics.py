# payment_observability/metrics.py
"""
Prometheus metrics for the facilitator and resource server.

No standalone HTTP server is started here. Each FastAPI app exposes the
default registry by mounting the ASGI exporter:

    from prometheus_client import make_asgi_app
    app.mount("/metrics", make_asgi_app())
"""

from typing import Any, Dict, Tuple, Type

from prometheus_client import Counter, Gauge, Histogram

# ----------------------------
# Registration helper (avoid duplicate collectors)
# ----------------------------
_METRICS: Dict[Tuple[Type[Any], str], Any] = {}


def get_metric(cls: Type[Any], name: str, *args, **kwargs):
    key = (cls, name)
    if key in _METRICS:
        return _METRICS[key]
    metric = cls(name, *args, **kwargs)
    _METRICS[key] = metric
    return metric


# ----------------------------
# Verification
# ----------------------------

verify_requests_total = get_metric(
    Counter,
    "facilitator_verify_requests_total",
    "Verification requests by outcome (accepted, rejected, invalid)",
    ["outcome"],
)

verification_errors_total = get_metric(
    Counter,
    "facilitator_verification_errors_total",
    "Verification error codes emitted",
    ["code"],
)

# ----------------------------
# Risk
# ----------------------------

risk_assessments_total = get_metric(
    Counter,
    "facilitator_risk_assessments_total",
    "Risk assessments by level and resulting action",
    ["level", "action"],
)

risk_degraded_total = get_metric(
    Counter,
    "facilitator_risk_degraded_total",
    "Risk assessments that fell back to the data-unavailable policy",
    ["action"],
)

risk_source_latency_seconds = get_metric(
    Histogram,
    "facilitator_risk_source_latency_seconds",
    "Latency of upstream risk data source calls",
    ["source"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
)

# ----------------------------
# Settlement
# ----------------------------

settlements_total = get_metric(
    Counter,
    "facilitator_settlements_total",
    "Settlement attempts by path (same_chain, cross_chain) and outcome",
    ["path", "outcome"],
)

settlement_latency_seconds = get_metric(
    Histogram,
    "facilitator_settlement_latency_seconds",
    "End-to-end settlement latency including confirmation waits",
    ["path"],
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300),
)

nonce_replays_total = get_metric(
    Counter,
    "facilitator_nonce_replays_total",
    "Settlement attempts rejected because the nonce was already consumed",
)

prefunded_balance_units = get_metric(
    Gauge,
    "facilitator_prefunded_balance_units",
    "Last observed facilitator token balance on a payout network (smallest unit)",
    ["network"],
)

prefunded_shortfall_total = get_metric(
    Counter,
    "facilitator_prefunded_shortfall_total",
    "Cross-chain payouts refused for insufficient pre-funded balance",
    ["network"],
)

# ----------------------------
# Resource boundary
# ----------------------------

resource_requests_total = get_metric(
    Counter,
    "resource_requests_total",
    "Paid resource requests by terminal protocol state",
    ["state"],
)
