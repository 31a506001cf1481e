"""Payer side: sign authorizations and pay for resources."""
from .authorization import AuthorizationBuilder, SigningKeyUnavailable
from .client import PaidResourceClient

__all__ = [
    "AuthorizationBuilder",
    "PaidResourceClient",
    "SigningKeyUnavailable",
]
