import pytest
from fastapi.testclient import TestClient

from facilitator.risk.models import ThreatFlags
from payment_domain.codec import decode_receipt, encode_authorization
from payment_domain.models import VerifyResponse
from resource_server.api import create_app, get_paid_resource
from resource_server.facilitator_client import (FacilitatorUnreachable,
                                                LocalFacilitatorClient)
from resource_server.protocol import PaidResource
from resource_server.requirements import build_payment_requirements
from resource_server.summarize import summarize

from conftest import FACILITATOR, POLYGON_AMOY_USDC, RESOURCE_PROVIDER

URL = "/premium/summarize"


def _requirements():
    return build_payment_requirements(
        "http://testserver/premium/summarize", FACILITATOR, POLYGON_AMOY_USDC
    )


def _client(port):
    resource = PaidResource(
        _requirements(), port, summarize, resource_provider_address=RESOURCE_PROVIDER
    )
    app = create_app()
    app.dependency_overrides[get_paid_resource] = lambda: resource
    return TestClient(app)


@pytest.fixture()
def client(facilitator):
    return _client(LocalFacilitatorClient(facilitator))


class DownFacilitator:
    def verify(self, payload, *, correlation_id=None):
        raise FacilitatorUnreachable("connection refused")

    def settle(self, payload, **kwargs):
        raise AssertionError("settle must not be reached")


def test_healthz(client):
    assert client.get("/healthz").json() == {"ok": True}


def test_unpaid_call_gets_402_challenge(client):
    resp = client.post(URL, json={"text": "hello"}, headers={"X-CORRELATION-ID": "abc"})
    assert resp.status_code == 402
    body = resp.json()
    accept = body["accepts"][0]
    assert accept["payTo"] == FACILITATOR
    assert accept["asset"] == POLYGON_AMOY_USDC
    assert accept["extra"] == {"name": "USDC", "version": "2"}
    assert resp.headers["X-CORRELATION-ID"] == "abc"


def test_unpaid_call_without_body(client):
    assert client.post(URL).status_code == 402


def test_paid_call_returns_result_and_receipt(client, signed, gateways):
    resp = client.post(
        URL,
        json={"text": "a short text"},
        headers={"X-PAYMENT": encode_authorization(signed())},
    )
    assert resp.status_code == 200
    assert resp.json() == {"result": {"summary": "a short text", "length": 12}}
    receipt = decode_receipt(resp.headers["X-PAYMENT-RESPONSE"])
    assert receipt.success
    assert receipt.network == "polygon-amoy"
    assert len(gateways["polygon-amoy"].authorizations) == 1


def test_invalid_payment_gets_402_with_details(client, signed, gateways, clock):
    payload = encode_authorization(signed())
    clock.now += 3600
    resp = client.post(URL, json={"text": "x"}, headers={"X-PAYMENT": payload})
    assert resp.status_code == 402
    body = resp.json()
    assert body["error"] == "payment_verification_failed"
    assert "expired" in body["details"]["errors"]
    assert "X-PAYMENT-RESPONSE" not in resp.headers
    assert gateways == {}


@pytest.mark.parametrize(
    "kwargs",
    [{"value": "1"}, {"to": RESOURCE_PROVIDER}, {"chain_id": 1}],
)
def test_payment_not_meeting_requirements_gets_402(client, signed, gateways, audit, kwargs):
    resp = client.post(
        URL, json={"text": "x"}, headers={"X-PAYMENT": encode_authorization(signed(**kwargs))}
    )
    assert resp.status_code == 402
    assert resp.json()["details"]["errors"] == ["requirements_not_met"]
    assert "X-PAYMENT-RESPONSE" not in resp.headers
    assert gateways == {}
    # the facilitator never saw the payment
    assert audit.events == []


def test_garbage_payment_gets_402(client):
    resp = client.post(URL, json={"text": "x"}, headers={"X-PAYMENT": "%%%"})
    assert resp.status_code == 402
    assert resp.json()["details"]["errors"] == ["invalid_payload"]


def test_unreachable_facilitator_is_502(signed):
    resp = _client(DownFacilitator()).post(
        URL, json={"text": "x"}, headers={"X-PAYMENT": encode_authorization(signed())}
    )
    assert resp.status_code == 502
    assert resp.json()["error"] == "facilitator_unreachable"


def test_rejected_by_risk_is_402(client, signed, intel):
    intel.flags = ThreatFlags(sanctioned=True)
    resp = client.post(URL, json={"text": "x"}, headers={"X-PAYMENT": encode_authorization(signed())})
    assert resp.status_code == 402
    assert resp.json()["details"]["action"] == "reject"


def test_verify_response_shape_from_local_port(facilitator, signed):
    verdict = LocalFacilitatorClient(facilitator).verify(encode_authorization(signed()))
    assert isinstance(verdict, VerifyResponse)
    assert verdict.success
