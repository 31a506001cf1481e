"""FastAPI app exposing the facilitator: /supported, /verify, /settle."""
from __future__ import annotations

import os
import uuid
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, status
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from pydantic import BaseModel, ConfigDict, Field

from common.auth import require_token
from common.logging import configure_logging
from facilitator.service import Facilitator
from facilitator.settlement import SettlementError
from payment_domain.codec import InvalidPayload
from payment_domain.models import SettlementResult, VerifyResponse

configure_logging(os.getenv("LOG_FORMAT", "json"), service_name="facilitator")

__all__ = ["create_app", "get_facilitator", "router"]

# ---------------------------------------------------------------------------
# Dependency injection helpers
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def get_facilitator() -> Facilitator:  # pragma: no cover - overridden in tests
    return Facilitator.from_settings()


def _correlation_id(x_correlation_id: Optional[str] = Header(None)) -> str:
    return x_correlation_id or uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------


class PaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_payload_base64: Optional[str] = Field(None, alias="paymentPayloadBase64")
    policy: Optional[Dict[str, Any]] = None


_VALIDATION_ERRORS = {
    SettlementError.UNSUPPORTED_NETWORK.value,
    SettlementError.PAYER_CHAIN_MISMATCH.value,
    SettlementError.RESOURCE_SERVER_ADDRESS_REQUIRED.value,
    SettlementError.PAYEE_NOT_FACILITATOR.value,
}


def _settle_status(result: SettlementResult) -> int:
    if result.success:
        return status.HTTP_200_OK
    if result.error == SettlementError.NONCE_REPLAY.value:
        return status.HTTP_409_CONFLICT
    if result.error in _VALIDATION_ERRORS:
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_502_BAD_GATEWAY


def _payload(body: Optional[PaymentRequest], x_payment: Optional[str]) -> Optional[str]:
    if body is not None and body.payment_payload_base64:
        return body.payment_payload_base64
    return x_payment


# ---------------------------------------------------------------------------
# Router definition
# ---------------------------------------------------------------------------

router = APIRouter(tags=["facilitator"])


def create_app() -> FastAPI:
    """Factory used by tests and the uvicorn entrypoint."""
    app = FastAPI(title="Payment Facilitator")
    app.include_router(router)
    app.mount("/metrics", make_asgi_app())
    return app


@router.get("/healthz")
def healthz() -> Dict[str, bool]:
    return {"ok": True}


@router.get("/supported")
def supported(facilitator: Facilitator = Depends(get_facilitator)) -> List[Dict[str, Any]]:
    return facilitator.list_supported()


@router.post("/verify")
def verify(
    body: Optional[PaymentRequest] = None,
    x_payment: Optional[str] = Header(None),
    correlation_id: str = Depends(_correlation_id),
    facilitator: Facilitator = Depends(get_facilitator),
) -> JSONResponse:
    try:
        result: VerifyResponse = facilitator.verify(
            _payload(body, x_payment),
            body.policy if body else None,
            correlation_id=correlation_id,
        )
    except ValueError as exc:  # inline policy failed validation
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    code = status.HTTP_400_BAD_REQUEST if result.errors else status.HTTP_200_OK
    return JSONResponse(
        result.to_wire(), status_code=code, headers={"X-CORRELATION-ID": correlation_id}
    )


@router.post("/settle")
def settle(
    body: Optional[PaymentRequest] = None,
    x_payment: Optional[str] = Header(None),
    x_user_chain: Optional[str] = Header(None),
    x_target_chain: Optional[str] = Header(None),
    x_resource_server_address: Optional[str] = Header(None),
    correlation_id: str = Depends(_correlation_id),
    _caller: Any = Depends(require_token),
    facilitator: Facilitator = Depends(get_facilitator),
) -> JSONResponse:
    if not x_target_chain:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="X-TARGET-CHAIN header required"
        )
    try:
        result, receipt = facilitator.settle(
            _payload(body, x_payment),
            x_target_chain,
            payer_chain=x_user_chain,
            resource_provider_address=x_resource_server_address,
            correlation_id=correlation_id,
        )
    except InvalidPayload as exc:
        return JSONResponse(
            SettlementResult(success=False, error="invalid_payload", detail=str(exc)).to_wire(),
            status_code=status.HTTP_400_BAD_REQUEST,
            headers={"X-CORRELATION-ID": correlation_id},
        )
    return JSONResponse(
        result.to_wire(),
        status_code=_settle_status(result),
        headers={"X-PAYMENT-RESPONSE": receipt, "X-CORRELATION-ID": correlation_id},
    )


app = create_app()
