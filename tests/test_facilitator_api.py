import jwt
import pytest
from fastapi.testclient import TestClient

from facilitator.api import create_app, get_facilitator
from facilitator.risk.models import ThreatFlags
from payment_domain.codec import decode_receipt, encode_authorization, encode_json

from conftest import BASE_SEPOLIA_USDC, NOW, PAYER, RESOURCE_PROVIDER

AUTH = {"Authorization": "Bearer testtoken"}


@pytest.fixture()
def client(facilitator):
    app = create_app()
    app.dependency_overrides[get_facilitator] = lambda: facilitator
    return TestClient(app)


def test_healthz(client):
    assert client.get("/healthz").json() == {"ok": True}


def test_supported_lists_networks(client):
    body = client.get("/supported").json()
    names = {n["name"]: n for n in body}
    assert names["polygon-amoy"] == {"name": "polygon-amoy", "chainId": 80002, "schemes": ["exact"]}
    assert "base-sepolia" in names


def test_verify_scenario_80002(client, signed, audit):
    payload = encode_authorization(signed())
    resp = client.post("/verify", json={"paymentPayloadBase64": payload},
                       headers={"X-CORRELATION-ID": "corr-1"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["action"] == "allow"
    assert body["riskProfile"]["level"] == "LOW"
    assert resp.headers["X-CORRELATION-ID"] == "corr-1"
    assert audit.events[-1][:2] == ("corr-1", "VERIFY_ACCEPTED")


def test_verify_twice_is_identical(client, signed):
    payload = encode_authorization(signed())
    first = client.post("/verify", json={"paymentPayloadBase64": payload}).json()
    second = client.post("/verify", json={"paymentPayloadBase64": payload}).json()
    assert first["success"] is second["success"] is True
    assert first["action"] == second["action"]


def test_verify_accepts_x_payment_header(client, signed):
    resp = client.post("/verify", headers={"X-PAYMENT": encode_authorization(signed())})
    assert resp.json()["success"] is True


def test_verify_unsupported_chain(client, signed):
    resp = client.post("/verify", json={"paymentPayloadBase64": encode_authorization(signed(chain_id=1))})
    assert resp.status_code == 400
    assert "invalid_chain" in resp.json()["errors"]
    assert resp.json()["success"] is False


@pytest.mark.parametrize(
    "payload",
    [
        None,
        "not base64!!",
        encode_json({"from": PAYER}),
        encode_json({"from": PAYER, "to": PAYER, "value": "1", "validAfter": NOW, "validBefore": NOW - 1,
                     "nonce": "0x" + "00" * 32, "verifyingContract": BASE_SEPOLIA_USDC, "chainId": 84532}),
    ],
)
def test_verify_invalid_payload(client, payload):
    resp = client.post("/verify", json={"paymentPayloadBase64": payload})
    assert resp.status_code == 400
    assert resp.json()["errors"] == ["invalid_payload"]


def test_verify_risk_reject(client, signed, intel):
    intel.flags = ThreatFlags(sanctioned=True)
    resp = client.post("/verify", json={"paymentPayloadBase64": encode_authorization(signed())})
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is False
    assert body["action"] == "reject"
    assert body["errors"] == []


def test_verify_inline_policy(client, signed, intel):
    intel.flags = ThreatFlags(sanctioned=True)
    resp = client.post(
        "/verify",
        json={"paymentPayloadBase64": encode_authorization(signed()), "policy": {"reject_on_sanctions": False}},
    )
    assert resp.json()["success"] is True


def test_verify_bad_inline_policy(client, signed):
    resp = client.post(
        "/verify",
        json={"paymentPayloadBase64": encode_authorization(signed()), "policy": {"medium_threshold": 99}},
    )
    assert resp.status_code == 400


def test_verify_degraded_allow(client, signed, intel):
    intel.down = True
    body = client.post("/verify", json={"paymentPayloadBase64": encode_authorization(signed())}).json()
    assert body["success"] is True
    assert body["reason"].startswith("degraded analysis")
    assert "riskProfile" not in body


# ---------------------------------------------------------------------------
# /settle
# ---------------------------------------------------------------------------


def test_settle_requires_token(client, signed):
    payload = encode_authorization(signed())
    headers = {"X-TARGET-CHAIN": "polygon-amoy"}
    assert client.post("/settle", json={"paymentPayloadBase64": payload}, headers=headers).status_code == 401
    bad = {**headers, "Authorization": "Bearer nope"}
    assert client.post("/settle", json={"paymentPayloadBase64": payload}, headers=bad).status_code == 403


def test_settle_accepts_jwt(client, signed):
    token = jwt.encode({"sub": "resource-server"}, "testsecret", algorithm="HS256")
    resp = client.post(
        "/settle",
        json={"paymentPayloadBase64": encode_authorization(signed())},
        headers={"X-TARGET-CHAIN": "polygon-amoy", "Authorization": f"Bearer {token}"},
    )
    assert resp.status_code == 200


def test_settle_then_replay(client, signed):
    payload = encode_authorization(signed())
    headers = {**AUTH, "X-TARGET-CHAIN": "polygon-amoy"}

    first = client.post("/settle", json={"paymentPayloadBase64": payload}, headers=headers)
    assert first.status_code == 200
    assert first.json()["success"] is True
    assert first.json()["transactionReference"].startswith("0x")
    receipt = decode_receipt(first.headers["X-PAYMENT-RESPONSE"])
    assert receipt.success and receipt.payer == PAYER

    second = client.post("/settle", json={"paymentPayloadBase64": payload}, headers=headers)
    assert second.status_code == 409
    assert second.json()["error"] == "nonce_replay"


def test_settle_cross_chain(client, signed, gateways):
    auth = signed(chain_id=84532, contract=BASE_SEPOLIA_USDC)
    resp = client.post(
        "/settle",
        json={"paymentPayloadBase64": encode_authorization(auth)},
        headers={
            **AUTH,
            "X-USER-CHAIN": "base-sepolia",
            "X-TARGET-CHAIN": "polygon-amoy",
            "X-RESOURCE-SERVER-ADDRESS": RESOURCE_PROVIDER,
        },
    )
    assert resp.status_code == 200
    assert resp.json()["network"] == "polygon-amoy"
    assert resp.json()["crossChain"]["sourceNetwork"] == "base-sepolia"
    assert gateways["polygon-amoy"].transfers == [(RESOURCE_PROVIDER, 100000)]


def test_settle_validation_errors(client, signed):
    resp = client.post(
        "/settle",
        json={"paymentPayloadBase64": encode_authorization(signed())},
        headers={**AUTH, "X-TARGET-CHAIN": "polygon-amoy", "X-USER-CHAIN": "base-sepolia"},
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "payer_chain_mismatch"

    missing = client.post("/settle", json={"paymentPayloadBase64": encode_authorization(signed())}, headers=AUTH)
    assert missing.status_code == 400

    garbage = client.post(
        "/settle", json={"paymentPayloadBase64": "@@@"}, headers={**AUTH, "X-TARGET-CHAIN": "polygon-amoy"}
    )
    assert garbage.status_code == 400
    assert garbage.json()["error"] == "invalid_payload"


def test_metrics_mounted(client):
    assert client.get("/metrics/").status_code == 200


def test_settle_cross_chain_to_foreign_payee(client, signed, gateways):
    auth = signed(chain_id=84532, contract=BASE_SEPOLIA_USDC, to=RESOURCE_PROVIDER)
    resp = client.post(
        "/settle",
        json={"paymentPayloadBase64": encode_authorization(auth)},
        headers={
            **AUTH,
            "X-USER-CHAIN": "base-sepolia",
            "X-TARGET-CHAIN": "polygon-amoy",
            "X-RESOURCE-SERVER-ADDRESS": RESOURCE_PROVIDER,
        },
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "payee_not_facilitator"
    assert gateways["base-sepolia"].authorizations == []


@pytest.mark.parametrize("policy", [{"level_actions": ["low"]}, {"level_actions": {"1": "allow"}}])
def test_verify_malformed_inline_policy(client, signed, policy):
    resp = client.post(
        "/verify",
        json={"paymentPayloadBase64": encode_authorization(signed()), "policy": policy},
    )
    assert resp.status_code == 400
