"""
Stripe 게이트웨이 어댑터

결제 코어는 이 클래스만 통해 Stripe 와 통신합니다. 테스트에서는 컨테이너의
stripe_gateway 프로바이더를 가짜 구현으로 override 합니다.
"""

import json
import logging

import stripe

from payapi.config import Settings
from payapi.core.exceptions import ExternalGatewayError, WebhookSignatureError
from payapi.schemas.checkout import CheckoutSession, CheckoutSessionRequest, GatewayEvent

logger = logging.getLogger(__name__)


class StripeGateway:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.currency = settings.STRIPE_CURRENCY
        self.webhook_secret = settings.STRIPE_WEBHOOK_SECRET
        stripe.api_key = settings.STRIPE_SECRET_KEY

    def create_checkout_session(self, request: CheckoutSessionRequest) -> CheckoutSession:
        """
        Stripe Checkout 세션 생성

        metadata 는 세션과 PaymentIntent/Subscription 양쪽에 복사하여 어느 이벤트로
        들어와도 감사 로그를 찾을 수 있게 합니다.

        Raises:
            ExternalGatewayError: Stripe 호출 실패 (청구되지 않음, 재시도 가능)
        """
        price_data = {
            "currency": self.currency,
            "unit_amount": request.line_item.amount,
            "product_data": {"name": request.line_item.name},
        }
        if request.line_item.description:
            price_data["product_data"]["description"] = request.line_item.description
        if request.mode == "subscription":
            price_data["recurring"] = {"interval": "month"}

        params = {
            "mode": request.mode,
            "line_items": [{"price_data": price_data, "quantity": 1}],
            "metadata": request.metadata,
            "success_url": request.success_url,
            "cancel_url": request.cancel_url,
        }
        if request.mode == "subscription":
            params["subscription_data"] = {"metadata": dict(request.metadata)}
        else:
            params["payment_intent_data"] = {"metadata": dict(request.metadata)}
        if request.customer_email:
            params["customer_email"] = request.customer_email
        if request.client_reference_id:
            params["client_reference_id"] = request.client_reference_id

        try:
            session = stripe.checkout.Session.create(
                **params, idempotency_key=request.idempotency_key
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe error creating checkout session: {e}")
            raise ExternalGatewayError(
                f"Payment processing error: {e.user_message or str(e)}",
                details={"stripe_code": getattr(e, "code", None)},
            ) from e

        logger.info(
            f"Checkout session created: {session.id} "
            f"(mode={request.mode}, amount={request.line_item.amount})"
        )
        return CheckoutSession(id=session.id, url=session.url)

    def construct_event(self, payload: bytes, signature: str) -> GatewayEvent:
        """
        웹훅 서명 검증 후 이벤트 반환

        Raises:
            WebhookSignatureError: 시크릿 미설정, 서명 누락, 서명 불일치, 잘못된 payload
        """
        if not self.webhook_secret:
            logger.error("Webhook secret not configured - rejecting webhook")
            raise WebhookSignatureError("Webhook secret not configured")
        if not signature:
            raise WebhookSignatureError("Missing webhook signature")

        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as e:
            logger.error(f"Invalid webhook payload: {e}")
            raise WebhookSignatureError("Invalid webhook payload") from e
        except stripe.SignatureVerificationError as e:
            logger.error(f"Invalid webhook signature: {e}")
            raise WebhookSignatureError() from e

        # 검증 통과 후 StripeObject 대신 plain dict 로 다룸
        raw = json.loads(payload)
        event = GatewayEvent(
            id=raw["id"],
            type=raw["type"],
            data_object=raw.get("data", {}).get("object", {}),
        )
        logger.info(f"Processing webhook: {event.type} (ID: {event.id})")
        return event
