import hashlib
import hmac
import json
import time
from unittest.mock import Mock, patch

import pytest
import stripe

from payapi.core.exceptions import ExternalGatewayError, WebhookSignatureError
from payapi.schemas.checkout import CheckoutLineItem, CheckoutSessionRequest
from payapi.services.stripe_gateway import StripeGateway


def sign(payload: bytes, secret: str, timestamp: int = None) -> str:
    """Stripe-Signature 헤더 생성 (t=..., v1=HMAC-SHA256)"""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture
def gateway(settings):
    return StripeGateway(settings)


@pytest.fixture
def session_request():
    return CheckoutSessionRequest(
        line_item=CheckoutLineItem(name="Post purchase: Paid post", amount=700),
        metadata={"type": "post_purchase_hybrid", "audit_log_id": "1"},
        success_url="http://localhost:3000/payment/success",
        cancel_url="http://localhost:3000/payment/cancel",
        customer_email="buyer@payapi.dev",
        client_reference_id="1",
        idempotency_key="checkout_1",
    )


class TestConstructEvent:
    """웹훅 서명 검증 테스트"""

    def test_valid_signature(self, gateway, settings):
        # Arrange
        payload = json.dumps(
            {
                "id": "evt_1",
                "object": "event",
                "type": "checkout.session.completed",
                "data": {"object": {"id": "cs_1", "metadata": {"audit_log_id": "1"}}},
            }
        ).encode()

        # Act
        event = gateway.construct_event(payload, sign(payload, settings.STRIPE_WEBHOOK_SECRET))

        # Assert
        assert event.id == "evt_1"
        assert event.type == "checkout.session.completed"
        assert event.data_object["metadata"] == {"audit_log_id": "1"}

    def test_wrong_secret_is_rejected(self, gateway):
        payload = b'{"id": "evt_1", "object": "event", "type": "x", "data": {"object": {}}}'

        with pytest.raises(WebhookSignatureError):
            gateway.construct_event(payload, sign(payload, "whsec_someone_else"))

    def test_missing_signature_is_rejected(self, gateway):
        with pytest.raises(WebhookSignatureError):
            gateway.construct_event(b"{}", "")

    def test_unconfigured_secret_rejects_everything(self, settings):
        gateway = StripeGateway(settings.model_copy(update={"STRIPE_WEBHOOK_SECRET": ""}))

        with pytest.raises(WebhookSignatureError):
            gateway.construct_event(b"{}", "t=1,v1=abc")


class TestCreateCheckoutSession:
    """체크아웃 세션 생성 테스트"""

    @patch("stripe.checkout.Session.create")
    def test_payment_mode(self, mock_create, gateway, session_request):
        # Arrange
        mock_create.return_value = Mock(id="cs_123", url="https://checkout.stripe.com/cs_123")

        # Act
        session = gateway.create_checkout_session(session_request)

        # Assert
        assert session.id == "cs_123"
        kwargs = mock_create.call_args.kwargs
        assert kwargs["mode"] == "payment"
        assert kwargs["idempotency_key"] == "checkout_1"
        assert kwargs["line_items"][0]["price_data"]["unit_amount"] == 700
        assert "recurring" not in kwargs["line_items"][0]["price_data"]
        assert kwargs["payment_intent_data"]["metadata"] == session_request.metadata
        assert kwargs["customer_email"] == "buyer@payapi.dev"

    @patch("stripe.checkout.Session.create")
    def test_subscription_mode_is_monthly(self, mock_create, gateway, session_request):
        mock_create.return_value = Mock(id="cs_sub", url=None)
        request = session_request.model_copy(update={"mode": "subscription"})

        gateway.create_checkout_session(request)

        kwargs = mock_create.call_args.kwargs
        assert kwargs["line_items"][0]["price_data"]["recurring"] == {"interval": "month"}
        assert kwargs["subscription_data"]["metadata"] == session_request.metadata
        assert "payment_intent_data" not in kwargs

    @patch("stripe.checkout.Session.create")
    def test_stripe_error_becomes_gateway_error(self, mock_create, gateway, session_request):
        mock_create.side_effect = stripe.StripeError("card network down")

        with pytest.raises(ExternalGatewayError):
            gateway.create_checkout_session(session_request)
