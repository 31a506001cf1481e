import json

import httpx
import pytest

from payment_domain.codec import decode_receipt, encode_receipt
from payment_domain.models import SettlementResult
from resource_server.facilitator_client import (FacilitatorUnreachable,
                                                HttpFacilitatorClient)

from conftest import RESOURCE_PROVIDER

OK_SETTLEMENT = SettlementResult(
    success=True, transaction_reference="0x" + "ab" * 32, network="polygon-amoy", payer="0xpayer"
)


def _client(handler, token="secret-token"):
    return HttpFacilitatorClient(
        "http://facilitator.test", api_token=token, transport=httpx.MockTransport(handler)
    )


def test_verify_posts_payload_and_parses_response():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        seen["corr"] = request.headers.get("X-CORRELATION-ID")
        return httpx.Response(200, json={"success": True, "action": "allow", "errors": []})

    verdict = _client(handler).verify("cGF5bG9hZA==", correlation_id="c-1")
    assert verdict.success and verdict.action == "allow"
    assert seen == {"path": "/verify", "body": {"paymentPayloadBase64": "cGF5bG9hZA=="}, "corr": "c-1"}


def test_verify_4xx_is_a_verdict():
    client = _client(lambda r: httpx.Response(400, json={"success": False, "errors": ["expired"]}))
    verdict = client.verify("x")
    assert not verdict.success
    assert verdict.errors == ["expired"]


@pytest.mark.parametrize(
    "response",
    [httpx.Response(500, text="boom"), httpx.Response(200, text="<html>")],
)
def test_verify_unusable_answer_is_unreachable(response):
    with pytest.raises(FacilitatorUnreachable):
        _client(lambda r: response).verify("x")


def test_transport_error_is_unreachable():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    client = _client(handler)
    with pytest.raises(FacilitatorUnreachable):
        client.verify("x")
    with pytest.raises(FacilitatorUnreachable):
        client.settle("x", target_chain="polygon-amoy")


def test_settle_sends_routing_headers_and_token():
    seen = {}

    def handler(request):
        seen.update((k.lower(), v) for k, v in request.headers.items())
        return httpx.Response(
            200,
            json=OK_SETTLEMENT.to_wire(),
            headers={"X-PAYMENT-RESPONSE": encode_receipt(OK_SETTLEMENT)},
        )

    result, receipt = _client(handler).settle(
        "x",
        target_chain="polygon-amoy",
        payer_chain="base-sepolia",
        resource_provider_address=RESOURCE_PROVIDER,
        correlation_id="c-2",
    )
    assert result == OK_SETTLEMENT
    assert decode_receipt(receipt) == OK_SETTLEMENT
    assert seen["authorization"] == "Bearer secret-token"
    assert seen["x-target-chain"] == "polygon-amoy"
    assert seen["x-user-chain"] == "base-sepolia"
    assert seen["x-resource-server-address"] == RESOURCE_PROVIDER
    assert seen["x-correlation-id"] == "c-2"


def test_settle_without_optional_headers():
    seen = {}

    def handler(request):
        seen.update((k.lower(), v) for k, v in request.headers.items())
        return httpx.Response(200, json=OK_SETTLEMENT.to_wire())

    result, receipt = _client(handler, token=None).settle("x", target_chain="polygon-amoy")
    assert "authorization" not in seen
    assert "x-user-chain" not in seen
    # no receipt header: encoded locally from the body
    assert decode_receipt(receipt) == result


@pytest.mark.parametrize("status", [400, 409, 502])
def test_settle_failure_body_is_returned(status):
    failed = SettlementResult(success=False, network="polygon-amoy", error="nonce_replay")
    result, _ = _client(lambda r: httpx.Response(status, json=failed.to_wire())).settle(
        "x", target_chain="polygon-amoy"
    )
    assert result == failed


def test_settle_without_result_body_is_unreachable():
    with pytest.raises(FacilitatorUnreachable):
        _client(lambda r: httpx.Response(401, json={"detail": "Unauthorized"})).settle(
            "x", target_chain="polygon-amoy"
        )
