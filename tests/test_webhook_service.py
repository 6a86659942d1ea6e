import pytest

from payapi.models.payment_audit import AuditStatus, ReferenceType
from payapi.models.points import PointTransaction
from payapi.models.records import PaymentMethod, Purchase, Subscription
from payapi.repositories.payment_audit_repository import PaymentAuditRepository
from payapi.repositories.points_repository import PointsRepository
from payapi.schemas.checkout import GatewayEvent
from payapi.schemas.payments import (
    HybridCheckoutRequest,
    PayWithPointsRequest,
    ResourceKind,
    ResourceRef,
)
from payapi.schemas.points import PointCheckoutRequest
from payapi.services.notification_service import PaymentEventType
from payapi.services.payment_service import PaymentService
from payapi.services.webhook_service import WebhookOutcome, WebhookService


@pytest.fixture
def payment_service(db, settings, gateway, notifier):
    return PaymentService(db, settings, gateway, notifier)


@pytest.fixture
def webhook_service(db, settings, notifier):
    return WebhookService(db, settings, notifier)


@pytest.fixture
def open_post_checkout(payment_service, gateway, seed):
    """게시물(1,000) 분할 결제 체크아웃 생성 -> (응답, 게이트웨이 요청)"""

    def _open(points_to_use=0, post_id=None):
        result = payment_service.create_hybrid_checkout(
            seed.buyer,
            HybridCheckoutRequest(
                resource=ResourceRef(kind=ResourceKind.POST, id=post_id or seed.post_id),
                points_to_use=points_to_use,
            ),
        )
        return result, gateway.last_request

    return _open


def audit_log(db, audit_log_id):
    return PaymentAuditRepository(db).get_by_id(audit_log_id)


def balance_of(db, user_id):
    return PointsRepository(db).get_balance(user_id).balance


class TestCheckoutCompleted:
    """checkout.session.completed 정산 테스트"""

    def test_hybrid_confirmation_debits_points_once(
        self, db, webhook_service, open_post_checkout, checkout_event, top_up, seed
    ):
        """포인트 300 + 카드 700: 확정 시 포인트 차감, 구매 생성, 감사 로그 완료"""
        # Given
        top_up(seed.buyer.id, 300)
        checkout, request = open_post_checkout(points_to_use=300)
        event = checkout_event(checkout.session_id, request, payment_intent="pi_hybrid")

        # When
        ack = webhook_service.handle_event(event)

        # Then
        assert ack.outcome == WebhookOutcome.COMPLETED
        assert balance_of(db, seed.buyer.id) == 0

        log = audit_log(db, checkout.audit_log_id)
        assert log.status == AuditStatus.COMPLETED
        assert log.reference_type == ReferenceType.PURCHASE
        assert log.stripe_payment_intent_id == "pi_hybrid"

        purchase = db.query(Purchase).filter(Purchase.id == log.reference_id).one()
        assert purchase.payment_method == PaymentMethod.HYBRID.value
        assert (purchase.points_used, purchase.stripe_amount) == (300, 700)

    def test_redelivery_is_a_no_op(
        self, db, webhook_service, open_post_checkout, checkout_event, top_up, seed
    ):
        """같은 세션의 중복 수신은 아무것도 변경하지 않음"""
        # Given
        top_up(seed.buyer.id, 300)
        checkout, request = open_post_checkout(points_to_use=300)
        event = checkout_event(checkout.session_id, request)
        webhook_service.handle_event(event)

        # When
        ack = webhook_service.handle_event(event)

        # Then
        assert ack.outcome == WebhookOutcome.DUPLICATE
        assert db.query(Purchase).count() == 1
        debits = (
            db.query(PointTransaction)
            .filter(PointTransaction.reference_id == checkout.audit_log_id)
            .all()
        )
        assert len(debits) == 1

    def test_points_spent_before_confirmation_requires_recovery(
        self,
        db,
        webhook_service,
        payment_service,
        open_post_checkout,
        checkout_event,
        top_up,
        seed,
        notifier,
    ):
        """카드 결제 후 포인트가 부족하면 구매 없이 복구 큐로"""
        # Given: 체크아웃 후 같은 포인트를 팁으로 사용
        top_up(seed.buyer.id, 300)
        checkout, request = open_post_checkout(points_to_use=300)
        payment_service.pay_with_points(
            seed.buyer,
            PayWithPointsRequest(
                resource=ResourceRef(kind=ResourceKind.TIP, id=seed.free_creator_id, amount=300)
            ),
        )
        notifier.reset_mock()

        # When
        ack = webhook_service.handle_event(checkout_event(checkout.session_id, request))

        # Then
        assert ack.outcome == WebhookOutcome.RECOVERY_REQUIRED
        log = audit_log(db, checkout.audit_log_id)
        assert log.status == AuditStatus.FAILED
        assert log.requires_recovery is True
        assert log.error_code == "INSUFFICIENT_POINTS_AT_CONFIRMATION"
        assert log.stripe_session_id == checkout.session_id
        assert db.query(Purchase).count() == 0
        assert balance_of(db, seed.buyer.id) == 0
        assert notifier.notify.call_args[0][0] == PaymentEventType.RECOVERY_REQUIRED

    def test_amount_mismatch_requires_recovery(
        self, db, webhook_service, open_post_checkout, checkout_event, seed
    ):
        # Given
        checkout, request = open_post_checkout()

        # When
        ack = webhook_service.handle_event(
            checkout_event(checkout.session_id, request, amount_total=500)
        )

        # Then
        assert ack.outcome == WebhookOutcome.RECOVERY_REQUIRED
        log = audit_log(db, checkout.audit_log_id)
        assert log.error_code == "AMOUNT_MISMATCH"
        assert log.error_details["amount_total"] == [500, 1000]
        assert db.query(Purchase).count() == 0

    def test_tampered_metadata_amount_requires_recovery(
        self, db, webhook_service, open_post_checkout, checkout_event
    ):
        """metadata 와 감사 로그 금액이 다르면 정산하지 않음"""
        checkout, request = open_post_checkout()
        metadata = dict(request.metadata, total_amount="1")

        ack = webhook_service.handle_event(
            checkout_event(checkout.session_id, request, amount_total=1, metadata=metadata)
        )

        assert ack.outcome == WebhookOutcome.RECOVERY_REQUIRED
        assert audit_log(db, checkout.audit_log_id).error_code == "AMOUNT_MISMATCH"

    def test_unpaid_session_waits(self, db, webhook_service, open_post_checkout, checkout_event):
        checkout, request = open_post_checkout()

        ack = webhook_service.handle_event(
            checkout_event(checkout.session_id, request, payment_status="unpaid")
        )

        assert ack.outcome == WebhookOutcome.AWAITING_PAYMENT
        assert audit_log(db, checkout.audit_log_id).status == AuditStatus.PENDING

    def test_point_purchase_credits_points(
        self, db, webhook_service, payment_service, gateway, checkout_event, seed
    ):
        # Given
        checkout = payment_service.create_point_checkout(
            seed.buyer, PointCheckoutRequest(package_id=seed.package_id)
        )

        # When
        ack = webhook_service.handle_event(
            checkout_event(checkout.session_id, gateway.last_request, payment_intent="pi_points")
        )

        # Then
        assert ack.outcome == WebhookOutcome.COMPLETED
        assert balance_of(db, seed.buyer.id) == 1000
        log = audit_log(db, checkout.audit_log_id)
        assert log.reference_type == ReferenceType.POINT_TRANSACTION
        entry = db.query(PointTransaction).filter(PointTransaction.id == log.reference_id).one()
        assert entry.stripe_payment_intent_id == "pi_points"

    def test_card_subscription_is_not_points_billed(
        self, db, webhook_service, payment_service, gateway, checkout_event, seed
    ):
        # Given
        checkout = payment_service.create_hybrid_checkout(
            seed.buyer,
            HybridCheckoutRequest(resource=ResourceRef(kind=ResourceKind.PLAN, id=seed.plan_id)),
        )

        # When
        ack = webhook_service.handle_event(
            checkout_event(
                checkout.session_id,
                gateway.last_request,
                payment_intent=None,
                subscription="sub_123",
            )
        )

        # Then
        assert ack.outcome == WebhookOutcome.COMPLETED
        subscription = db.query(Subscription).one()
        assert subscription.payment_method == PaymentMethod.STRIPE.value
        assert subscription.stripe_subscription_id == "sub_123"
        assert subscription.next_billing_at is None

    def test_purchase_made_elsewhere_requires_recovery(
        self, db, webhook_service, payment_service, open_post_checkout, checkout_event, top_up, seed
    ):
        """체크아웃 중 같은 게시물을 포인트로 구매한 경우"""
        # Given
        checkout, request = open_post_checkout()
        top_up(seed.buyer.id, 1000)
        payment_service.pay_with_points(
            seed.buyer,
            PayWithPointsRequest(resource=ResourceRef(kind=ResourceKind.POST, id=seed.post_id)),
        )

        # When
        ack = webhook_service.handle_event(checkout_event(checkout.session_id, request))

        # Then
        assert ack.outcome == WebhookOutcome.RECOVERY_REQUIRED
        assert audit_log(db, checkout.audit_log_id).error_code == "ALREADY_PURCHASED"
        assert db.query(Purchase).count() == 1


class TestCheckoutLifecycleEvents:
    def test_expired_session_cancels_pending_log(
        self, db, webhook_service, open_post_checkout, checkout_event
    ):
        checkout, request = open_post_checkout()

        ack = webhook_service.handle_event(
            checkout_event(
                checkout.session_id, request, event_type="checkout.session.expired"
            )
        )

        assert ack.outcome == WebhookOutcome.CANCELLED
        assert audit_log(db, checkout.audit_log_id).status == AuditStatus.CANCELLED

    def test_confirmation_after_cancel_is_flagged(
        self, db, webhook_service, open_post_checkout, checkout_event
    ):
        """취소된 결제가 뒤늦게 승인되면 운영자 확인 대상"""
        # Given
        checkout, request = open_post_checkout()
        webhook_service.handle_event(
            checkout_event(checkout.session_id, request, event_type="checkout.session.expired")
        )

        # When
        ack = webhook_service.handle_event(checkout_event(checkout.session_id, request))

        # Then
        assert ack.outcome == WebhookOutcome.FLAGGED
        log = audit_log(db, checkout.audit_log_id)
        assert log.status == AuditStatus.CANCELLED
        assert log.requires_recovery is True
        assert db.query(Purchase).count() == 0

    def test_unknown_event_type_is_ignored(self, webhook_service):
        ack = webhook_service.handle_event(
            GatewayEvent(id="evt_x", type="invoice.paid", data_object={})
        )

        assert ack.received is True
        assert ack.outcome == WebhookOutcome.IGNORED

    def test_session_without_metadata_is_ignored(self, webhook_service):
        ack = webhook_service.handle_event(
            GatewayEvent(
                id="evt_x",
                type="checkout.session.completed",
                data_object={"id": "cs_foreign", "amount_total": 100, "metadata": {}},
            )
        )

        assert ack.outcome == WebhookOutcome.IGNORED
