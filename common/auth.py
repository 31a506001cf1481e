import hmac
import json
import logging
from typing import Any, Dict, Mapping, Optional

import jwt
from fastapi import Header, HTTPException, status

from .secrets import get_secret

__all__ = ["authenticate", "require_token"]

_LOG = logging.getLogger(__name__)


def _forbidden() -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


def _api_tokens() -> Mapping[str, Any]:
    # env vars carry the mapping as a JSON string
    raw = get_secret("API_TOKENS", {}) or {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            _LOG.warning("API_TOKENS is not valid JSON; static tokens disabled")
            return {}
    if not isinstance(raw, Mapping):
        _LOG.warning("API_TOKENS must map caller names to tokens; static tokens disabled")
        return {}
    return raw


def _static_caller(token: str) -> Optional[str]:
    for caller, expected in _api_tokens().items():
        if hmac.compare_digest(token.encode(), str(expected).encode()):
            return caller
    return None


def authenticate(token: str) -> Dict[str, Any]:
    """Resolve a bearer token to its claims; raises 403 when unknown.

    Resource servers authenticate with either an HS256 JWT signed with
    ``JWT_SECRET`` or a static per-caller token from ``API_TOKENS``
    (``{"resource-server": "..."}``, as a mapping in the secrets file or
    a JSON string in the environment).
    """

    # JWT has three dot-separated segments
    if token.count(".") == 2:
        secret = get_secret("JWT_SECRET")
        if not secret:
            raise _forbidden()
        try:
            return jwt.decode(token, secret, algorithms=["HS256"])
        except jwt.PyJWTError as exc:
            raise _forbidden() from exc

    caller = _static_caller(token)
    if caller is None:
        raise _forbidden()
    return {"sub": caller}


def require_token(authorization: str | None = Header(None)) -> Dict[str, Any]:
    """FastAPI dependency guarding settlement endpoints."""

    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized"
        )
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise _forbidden()
    return authenticate(token)
