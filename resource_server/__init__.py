"""Paid resource server and the challenge-response protocol."""
from .facilitator_client import (FacilitatorUnreachable, HttpFacilitatorClient,
                                 LocalFacilitatorClient)
from .protocol import (Challenged, InvalidTransition, PaidResource,
                       PaymentState, Rejected, Result)

__all__ = [
    "Challenged",
    "FacilitatorUnreachable",
    "HttpFacilitatorClient",
    "InvalidTransition",
    "LocalFacilitatorClient",
    "PaidResource",
    "PaymentState",
    "Rejected",
    "Result",
]
