"""FastAPI app serving the pay-per-call summariser."""
from __future__ import annotations

import os
import uuid
from functools import lru_cache
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, Header, status
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from common.audit import SqlAuditSink
from common.logging import configure_logging
from resource_server.config import get_settings
from resource_server.facilitator_client import (FacilitatorUnreachable,
                                                HttpFacilitatorClient)
from resource_server.protocol import Challenged, PaidResource, Rejected
from resource_server.requirements import build_payment_requirements
from resource_server.summarize import summarize

configure_logging(os.getenv("LOG_FORMAT", "json"), service_name="resource_server")

__all__ = ["create_app", "get_paid_resource", "router"]

SUMMARIZE_PATH = "/premium/summarize"


@lru_cache(maxsize=1)
def get_paid_resource() -> PaidResource:  # pragma: no cover - overridden in tests
    settings = get_settings()
    network = settings.target_network()
    requirements = build_payment_requirements(
        f"{settings.public_url}{SUMMARIZE_PATH}",
        settings.pay_to,
        network.token_address,
        target_chain=network.name,
        amount=settings.price,
    )
    client = HttpFacilitatorClient(
        settings.facilitator_url, api_token=settings.facilitator_api_token
    )
    return PaidResource(
        requirements,
        client,
        summarize,
        resource_provider_address=settings.resource_server_address,
        audit=SqlAuditSink("resource_server"),
        networks=settings.networks,
    )


router = APIRouter(tags=["premium"])


def create_app() -> FastAPI:
    app = FastAPI(title="Premium Resource Server")
    app.include_router(router)
    app.mount("/metrics", make_asgi_app())
    return app


@router.get("/healthz")
def healthz() -> Dict[str, bool]:
    return {"ok": True}


@router.post(SUMMARIZE_PATH)
def premium_summarize(
    body: Optional[Dict[str, Any]] = Body(None),
    x_payment: Optional[str] = Header(None),
    x_user_chain: Optional[str] = Header(None),
    x_correlation_id: Optional[str] = Header(None),
    resource: PaidResource = Depends(get_paid_resource),
) -> JSONResponse:
    correlation_id = x_correlation_id or uuid.uuid4().hex
    headers = {"X-CORRELATION-ID": correlation_id}
    try:
        outcome = resource.request(
            body or {}, x_payment, x_user_chain, correlation_id=correlation_id
        )
    except FacilitatorUnreachable as exc:
        return JSONResponse(
            {"error": "facilitator_unreachable", "details": str(exc)},
            status_code=status.HTTP_502_BAD_GATEWAY,
            headers=headers,
        )

    if isinstance(outcome, (Challenged, Rejected)):
        return JSONResponse(
            outcome.body(), status_code=status.HTTP_402_PAYMENT_REQUIRED, headers=headers
        )
    headers["X-PAYMENT-RESPONSE"] = outcome.receipt
    return JSONResponse({"result": outcome.value}, headers=headers)


app = create_app()
