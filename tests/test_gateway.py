"""Stripe gateway adapter against a mocked HTTP transport"""

from urllib.parse import parse_qs

import httpx
import pytest
from conftest import run

from ortho_billing.config import default_billing_config
from ortho_billing.domain.billing.exceptions import FailureCode, GatewayError
from ortho_billing.domain.billing.gateway import (
    PaymentIntent,
    StripeGateway,
    is_payment_successful,
    requires_action,
    stripe_gateway,
)

API_URL = "https://stripe.test/v1"


def make_gateway(handler, secret_key="sk_test_123"):
    return StripeGateway(
        secret_key=secret_key,
        api_url=API_URL,
        currency="cad",
        transport=httpx.MockTransport(handler),
    )


def charge(gateway, **overrides):
    params = {
        "amount": 15000,
        "customer_id": "cus_123",
        "payment_method_id": "pm_123",
        "description": "Scheduled payment for payment plan",
        "receipt_email": "jamie@example.com",
        "metadata": {"scheduled_payment_id": "sp-1", "type": "recurring"},
        "idempotency_key": "scheduled-payment-sp-1-attempt-0",
    }
    params.update(overrides)
    return run(gateway.create_payment_intent(**params))


def intent_json(status="succeeded"):
    return {
        "id": "pi_123",
        "object": "payment_intent",
        "status": status,
        "amount": 15000,
        "currency": "cad",
        "metadata": {"scheduled_payment_id": "sp-1", "type": "recurring"},
    }


class TestCreatePaymentIntent:
    def test_posts_confirmed_off_session_intent(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=intent_json())

        intent = charge(make_gateway(handler))

        assert intent == PaymentIntent(
            id="pi_123",
            status="succeeded",
            amount=15000,
            currency="cad",
            metadata={"scheduled_payment_id": "sp-1", "type": "recurring"},
        )

        request = requests[0]
        assert request.method == "POST"
        assert str(request.url) == f"{API_URL}/payment_intents"
        assert request.headers["Authorization"] == "Bearer sk_test_123"
        assert request.headers["Idempotency-Key"] == "scheduled-payment-sp-1-attempt-0"

        form = {key: values[0] for key, values in parse_qs(request.content.decode()).items()}
        assert form["amount"] == "15000"
        assert form["currency"] == "cad"
        assert form["customer"] == "cus_123"
        assert form["payment_method"] == "pm_123"
        assert form["confirm"] == "true"
        assert form["off_session"] == "true"
        assert form["receipt_email"] == "jamie@example.com"
        assert form["metadata[type]"] == "recurring"
        assert form["metadata[scheduled_payment_id]"] == "sp-1"

    def test_non_succeeded_status_is_returned_not_raised(self):
        gateway = make_gateway(lambda request: httpx.Response(200, json=intent_json("requires_action")))

        intent = charge(gateway)

        assert not gateway.is_payment_successful(intent)
        assert requires_action(intent)

    def test_card_decline(self):
        def handler(request):
            return httpx.Response(
                402,
                json={
                    "error": {
                        "type": "card_error",
                        "code": "card_declined",
                        "message": "Your card was declined.",
                        "payment_intent": {"id": "pi_declined", "status": "requires_payment_method"},
                    }
                },
            )

        with pytest.raises(GatewayError) as exc_info:
            charge(make_gateway(handler))

        assert exc_info.value.code == FailureCode.DECLINED
        assert exc_info.value.message == "Your card was declined."
        assert exc_info.value.intent_id == "pi_declined"

    def test_invalid_request_is_api_error(self):
        def handler(request):
            return httpx.Response(
                400,
                json={"error": {"type": "invalid_request_error", "message": "No such customer: 'cus_123'"}},
            )

        with pytest.raises(GatewayError) as exc_info:
            charge(make_gateway(handler))

        assert exc_info.value.code == FailureCode.API_ERROR
        assert exc_info.value.message == "No such customer: 'cus_123'"

    def test_non_json_error_body(self):
        with pytest.raises(GatewayError) as exc_info:
            charge(make_gateway(lambda request: httpx.Response(502, text="Bad gateway")))

        assert exc_info.value.code == FailureCode.API_ERROR
        assert exc_info.value.message == "Stripe API error (HTTP 502)"

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(GatewayError) as exc_info:
            charge(make_gateway(handler))

        assert exc_info.value.code == FailureCode.TIMEOUT

    def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(GatewayError) as exc_info:
            charge(make_gateway(handler))

        assert exc_info.value.code == FailureCode.NETWORK_ERROR

    def test_unconfigured_gateway_makes_no_request(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json=intent_json())

        gateway = make_gateway(handler, secret_key=None)

        assert gateway.is_available() is False
        with pytest.raises(GatewayError) as exc_info:
            charge(gateway)
        assert exc_info.value.code == FailureCode.API_ERROR
        assert requests == []


def test_is_payment_successful():
    assert is_payment_successful(PaymentIntent("pi_1", "succeeded", 100, "cad"))
    assert not is_payment_successful(PaymentIntent("pi_1", "processing", 100, "cad"))


def test_http_timeout_follows_billing_config():
    """The HTTP client must not give up before the engine's own timeout"""
    assert StripeGateway().timeout == 45.0
    assert stripe_gateway.timeout == default_billing_config().gateway_timeout_seconds
