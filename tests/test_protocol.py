import pytest

from payment_domain.codec import decode_receipt, encode_authorization
from payment_domain.models import SettlementResult, VerifyResponse
from resource_server.facilitator_client import (FacilitatorUnreachable,
                                                LocalFacilitatorClient)
from resource_server.protocol import (Challenged, InvalidTransition,
                                      PaidResource, PaymentAttempt,
                                      PaymentState, Rejected, Result)
from resource_server.requirements import build_payment_requirements
from resource_server.summarize import summarize

from conftest import (BASE_SEPOLIA_USDC, FACILITATOR, POLYGON_AMOY_USDC,
                      RESOURCE_PROVIDER)

REQUIREMENTS = build_payment_requirements(
    "http://localhost:5402/premium/summarize", FACILITATOR, POLYGON_AMOY_USDC
)


@pytest.fixture()
def resource(facilitator, audit):
    return PaidResource(
        REQUIREMENTS,
        LocalFacilitatorClient(facilitator),
        summarize,
        resource_provider_address=RESOURCE_PROVIDER,
        audit=audit,
    )


class UnreachableFacilitator:
    def __init__(self, verdict=None):
        self.verdict = verdict
        self.settled = False

    def verify(self, payload, *, correlation_id=None):
        if self.verdict is None:
            raise FacilitatorUnreachable("connection refused")
        return self.verdict

    def settle(self, payload, **kwargs):
        self.settled = True
        raise FacilitatorUnreachable("connection reset")


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


def test_legal_path():
    attempt = PaymentAttempt("c")
    for state in (PaymentState.AUTHORIZED, PaymentState.VERIFYING, PaymentState.VERIFIED,
                  PaymentState.SETTLING, PaymentState.SETTLED):
        attempt.advance(state)
    assert attempt.history[0] is PaymentState.UNPAID
    assert attempt.state is PaymentState.SETTLED


@pytest.mark.parametrize(
    "path",
    [
        [PaymentState.VERIFIED],
        [PaymentState.AUTHORIZED, PaymentState.SETTLING],
        [PaymentState.AUTHORIZED, PaymentState.VERIFYING, PaymentState.REJECTED, PaymentState.SETTLING],
        [PaymentState.CHALLENGED, PaymentState.VERIFYING],
    ],
)
def test_illegal_transitions_raise(path):
    attempt = PaymentAttempt("c")
    with pytest.raises(InvalidTransition):
        for state in path:
            attempt.advance(state)


# ---------------------------------------------------------------------------
# PaidResource
# ---------------------------------------------------------------------------


def test_no_payment_is_challenged(resource, audit):
    outcome = resource.request({"text": "hi"})
    assert isinstance(outcome, Challenged)
    body = outcome.body()
    assert body["accepts"][0]["payTo"] == FACILITATOR
    assert body["accepts"][0]["maxAmountRequired"] == "100000"
    assert body["accepts"][0]["network"] == "polygon-amoy"
    assert audit.names() == ["RESOURCE_CHALLENGED"]


def test_paid_request_delivers_and_settles(resource, signed, gateways):
    payload = encode_authorization(signed())
    outcome = resource.request({"text": "x" * 250}, payload)
    assert isinstance(outcome, Result)
    assert outcome.value == {"summary": "x" * 200 + "...", "length": 250}
    assert outcome.state is PaymentState.SETTLED
    assert decode_receipt(outcome.receipt).success
    assert len(gateways["polygon-amoy"].authorizations) == 1


def test_rejected_payment_runs_nothing(facilitator, signed, gateways, clock):
    calls = []
    resource = PaidResource(REQUIREMENTS, LocalFacilitatorClient(facilitator), calls.append)
    payload = encode_authorization(signed())
    clock.now += 3600
    outcome = resource.request({}, payload)
    assert isinstance(outcome, Rejected)
    assert "expired" in outcome.body()["details"]["errors"]
    assert outcome.body()["error"] == "payment_verification_failed"
    assert calls == []
    assert gateways == {}


class CountingFacilitator(UnreachableFacilitator):
    def __init__(self):
        super().__init__(VerifyResponse(success=True, action="allow"))
        self.verified = 0

    def verify(self, payload, *, correlation_id=None):
        self.verified += 1
        return super().verify(payload, correlation_id=correlation_id)


@pytest.mark.parametrize(
    "kwargs, payer_chain, reason",
    [
        ({"value": "1"}, None, "below maxAmountRequired"),
        ({"value": "99999"}, None, "below maxAmountRequired"),
        ({"to": RESOURCE_PROVIDER}, None, "authorization pays"),
        ({"chain_id": 1}, None, "chainId 1"),
        ({"chain_id": 84532, "contract": BASE_SEPOLIA_USDC}, None, "chainId 84532"),
        ({"contract": BASE_SEPOLIA_USDC}, None, "token"),
        ({}, "base-sepolia", "chainId 80002"),
        ({"chain_id": 84532, "contract": POLYGON_AMOY_USDC}, "base-sepolia", "token"),
        ({}, "mars", "not accepted"),
    ],
)
def test_unmet_requirements_are_rejected_locally(signed, kwargs, payer_chain, reason):
    calls = []
    port = CountingFacilitator()
    resource = PaidResource(REQUIREMENTS, port, calls.append)
    outcome = resource.request({}, encode_authorization(signed(**kwargs)), payer_chain)
    assert isinstance(outcome, Rejected)
    details = outcome.body()["details"]
    assert details["errors"] == ["requirements_not_met"]
    assert reason in details["reason"]
    assert calls == []
    assert port.verified == 0
    assert not port.settled


def test_underpayment_never_settles(resource, signed, gateways, nonce_registry):
    auth = signed(value="1")
    outcome = resource.request({"text": "a"}, encode_authorization(auth))
    assert isinstance(outcome, Rejected)
    assert gateways == {}
    assert not nonce_registry.is_used(auth.nonce)


def test_overpayment_is_accepted(resource, signed):
    outcome = resource.request({"text": "a"}, encode_authorization(signed(value="100001")))
    assert outcome.state is PaymentState.SETTLED


def test_payee_address_case_is_ignored(signed):
    port = CountingFacilitator()
    resource = PaidResource(REQUIREMENTS, port, summarize)
    auth = signed(to=FACILITATOR.lower())
    outcome = resource.request({"text": "a"}, encode_authorization(auth))
    assert isinstance(outcome, Result)
    assert port.verified == 1


def test_undecodable_payment_is_rejected_locally():
    port = CountingFacilitator()
    resource = PaidResource(REQUIREMENTS, port, summarize)
    outcome = resource.request({"text": "a"}, "%%%")
    assert isinstance(outcome, Rejected)
    assert outcome.body()["details"]["errors"] == ["invalid_payload"]
    assert port.verified == 0


def test_cross_chain_payer(resource, signed, gateways):
    payload = encode_authorization(signed(chain_id=84532, contract=BASE_SEPOLIA_USDC))
    outcome = resource.request({"text": "a"}, payload, "base-sepolia")
    assert outcome.settlement.success
    assert outcome.settlement.network == "polygon-amoy"
    assert gateways["polygon-amoy"].transfers == [(RESOURCE_PROVIDER, 100000)]


def test_reused_authorization_is_rejected(resource, signed):
    payload = encode_authorization(signed())
    assert resource.request({"text": "a"}, payload).state is PaymentState.SETTLED

    # same authorization again: verification now sees the consumed nonce
    assert isinstance(resource.request({"text": "a"}, payload), Rejected)


def test_unreachable_at_verify_is_not_a_rejection(signed):
    resource = PaidResource(REQUIREMENTS, UnreachableFacilitator(), summarize)
    with pytest.raises(FacilitatorUnreachable):
        resource.request({"text": "a"}, encode_authorization(signed()))


def test_unreachable_at_settle_yields_failure_receipt(signed):
    port = UnreachableFacilitator(VerifyResponse(success=True, action="allow"))
    resource = PaidResource(REQUIREMENTS, port, summarize)
    outcome = resource.request({"text": "abc"}, encode_authorization(signed()))
    assert outcome.value == {"summary": "abc", "length": 3}
    assert outcome.state is PaymentState.SETTLEMENT_FAILED
    receipt = decode_receipt(outcome.receipt)
    assert receipt == SettlementResult(
        success=False, network="polygon-amoy", error="facilitator_unreachable", detail="connection reset"
    )
    assert port.settled


def test_settles_even_when_action_fails(signed):
    port = UnreachableFacilitator(VerifyResponse(success=True, action="allow"))

    def broken(body):
        raise RuntimeError("model offline")

    resource = PaidResource(REQUIREMENTS, port, broken)
    with pytest.raises(RuntimeError):
        resource.request({}, encode_authorization(signed()))
    assert port.settled
