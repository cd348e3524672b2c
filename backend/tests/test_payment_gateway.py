import json
from decimal import Decimal

import httpx
import pytest

from gigflow.services.payment_gateway import PaymentGateway, sign_payload, verify_signature
from gigflow.utils.errors import GatewayUnavailableError, ValidationError


def _gateway(handler, sleeps=None):
    return PaymentGateway(
        base_url="https://gateway.test/",
        api_key="sk_test",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        max_retries=3,
        backoff_seconds=0.5,
        sleep=(sleeps.append if sleeps is not None else lambda _: None),
    )


def test_charge_intent_request_shape():
    captured = {}

    def handler(request):
        captured["url"] = str(request.url)
        captured["headers"] = request.headers
        captured["body"] = json.loads(request.content)
        return httpx.Response(201, json={"intent_id": "pi_1"})

    intent = _gateway(handler).create_charge_intent(
        Decimal("3000.00"), "USD", idempotency_key="milestone-7", metadata={"milestone_id": 7}
    )

    assert intent == "pi_1"
    assert captured["url"] == "https://gateway.test/charge-intents"
    assert captured["headers"]["Idempotency-Key"] == "milestone-7"
    assert captured["headers"]["Authorization"] == "Bearer sk_test"
    assert captured["body"] == {"amount": "3000.00", "currency": "USD", "metadata": {"milestone_id": 7}}


@pytest.mark.parametrize("failure", [503, 429, "transport"])
def test_transient_failures_are_retried_with_the_same_key(failure):
    keys = []
    sleeps = []

    def handler(request):
        keys.append(request.headers["Idempotency-Key"])
        if len(keys) < 3:
            if failure == "transport":
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(failure)
        return httpx.Response(200, json={"intent_id": "pi_2"})

    intent = _gateway(handler, sleeps).create_charge_intent(Decimal("10"), "USD", idempotency_key="k-1")

    assert intent == "pi_2"
    assert keys == ["k-1"] * 3
    assert sleeps == [0.5, 1.0]


def test_exhausted_retries_raise():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(502)

    with pytest.raises(GatewayUnavailableError) as exc:
        _gateway(handler).create_charge_intent(Decimal("10"), "USD", idempotency_key="k-2")

    assert len(calls) == 3
    assert exc.value.field_errors["last_error"] == "HTTP 502"


def test_client_errors_are_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(400, json={"error": "bad currency"})

    with pytest.raises(GatewayUnavailableError):
        _gateway(handler).create_charge_intent(Decimal("10"), "XXX", idempotency_key="k-3")
    assert len(calls) == 1


def test_confirm_webhook_reads_nested_data():
    confirmation = PaymentGateway.confirm_webhook(
        {
            "event": "charge.succeeded",
            "data": {
                "transaction_id": "tx_9",
                "intent_id": "pi_9",
                "status": "succeeded",
                "amount": "3000.00",
                "currency": "usd",
            },
        }
    )

    assert confirmation.transaction_id == "tx_9"
    assert confirmation.intent_id == "pi_9"
    assert confirmation.amount == Decimal("3000.00")
    assert confirmation.currency == "USD"
    assert confirmation.succeeded


@pytest.mark.parametrize(
    "payload",
    [
        {"amount": "10.00", "status": "success"},
        {"transaction_id": "tx", "amount": "ten", "status": "success"},
    ],
)
def test_confirm_webhook_rejects_bad_payloads(payload):
    with pytest.raises(ValidationError):
        PaymentGateway.confirm_webhook(payload)


def test_signature_verification():
    raw = b'{"transaction_id": "tx_1"}'
    signature = sign_payload(raw, "whsec")

    assert verify_signature(raw, signature, secret="whsec")
    assert not verify_signature(raw, signature, secret="other")
    assert not verify_signature(raw, None, secret="whsec")
    # verification is off without a secret
    assert verify_signature(raw, None, secret="")
