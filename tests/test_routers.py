import asyncio
import json
from unittest.mock import patch

from payapi.models.payment_audit import AuditStatus
from payapi.repositories.payment_audit_repository import PaymentAuditRepository
from payapi.services.webhook_service import WebhookService

API = "/api/v1"


class TestHealthRoute:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "database": "ok"}


class TestPointRoutes:
    """포인트 라우터 테스트"""

    def test_balance_requires_token(self, client, seed):
        """토큰 없이 호출하면 401"""
        response = client.get(f"{API}/points/balance")

        assert response.status_code == 401
        assert response.json()["success"] is False

    def test_invalid_token(self, client, seed):
        response = client.get(
            f"{API}/points/balance", headers={"Authorization": "Bearer not-a-jwt"}
        )

        assert response.status_code == 401

    def test_get_my_balance(self, client, seed, top_up, auth_headers):
        """내 포인트 잔액 조회 테스트"""
        # Given
        top_up(seed.buyer.id, 1200)

        # When
        response = client.get(f"{API}/points/balance", headers=auth_headers(seed.buyer))

        # Then
        assert response.status_code == 200
        data = response.json()
        assert data["balance"] == 1200
        assert data["total_spent"] == 0

    def test_get_my_transactions(self, client, seed, top_up, auth_headers):
        top_up(seed.buyer.id, 100)
        top_up(seed.buyer.id, 200)

        response = client.get(
            f"{API}/points/transactions?limit=1", headers=auth_headers(seed.buyer)
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total_count"] == 2
        assert data["has_next"] is True
        assert data["transactions"][0]["amount"] == 200

    def test_transactions_limit_is_bounded(self, client, seed, auth_headers):
        response = client.get(
            f"{API}/points/transactions?limit=500", headers=auth_headers(seed.buyer)
        )

        assert response.status_code == 422

    def test_packages(self, client, seed, auth_headers):
        response = client.get(f"{API}/points/packages", headers=auth_headers(seed.buyer))

        assert response.status_code == 200
        assert [p["points"] for p in response.json()] == [1000]

    def test_point_checkout(self, client, seed, gateway, auth_headers):
        response = client.post(
            f"{API}/points/checkout",
            json={"package_id": seed.package_id},
            headers={**auth_headers(seed.buyer), "Idempotency-Key": "buy-points-1"},
        )

        assert response.status_code == 200
        assert response.json()["session_id"] == "cs_test_1"
        assert gateway.last_request.metadata["idempotency_key"] == "buy-points-1"

    def test_my_integrity(self, client, seed, top_up, auth_headers):
        top_up(seed.buyer.id, 100)

        response = client.get(f"{API}/points/integrity/my", headers=auth_headers(seed.buyer))

        assert response.status_code == 200
        assert response.json()["status"] == "OK"


class TestPaymentRoutes:
    """결제 라우터 테스트"""

    def test_pay_with_points(self, client, seed, top_up, auth_headers):
        # Given
        top_up(seed.buyer.id, 1000)

        # When
        response = client.post(
            f"{API}/payments/points",
            json={"resource": {"kind": "post", "id": seed.post_id}},
            headers=auth_headers(seed.buyer),
        )

        # Then
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["reference_type"] == "purchase"
        assert data["new_balance"] == 0

    def test_insufficient_balance_error_body(self, client, seed, auth_headers):
        response = client.post(
            f"{API}/payments/points",
            json={"resource": {"kind": "post", "id": seed.post_id}},
            headers=auth_headers(seed.buyer),
        )

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "BALANCE_001"
        assert error["details"] == {"required": 1000, "available": 0}

    def test_duplicate_purchase_conflict(self, client, seed, top_up, auth_headers):
        top_up(seed.buyer.id, 2000)
        body = {"resource": {"kind": "post", "id": seed.post_id}}
        client.post(
            f"{API}/payments/points",
            json=body,
            headers={**auth_headers(seed.buyer), "Idempotency-Key": "a"},
        )

        response = client.post(
            f"{API}/payments/points",
            json=body,
            headers={**auth_headers(seed.buyer), "Idempotency-Key": "b"},
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "CONFLICT_PURCHASED"

    def test_tip_requires_amount(self, client, seed, auth_headers):
        response = client.post(
            f"{API}/payments/points",
            json={"resource": {"kind": "tip", "id": seed.creator_id}},
            headers=auth_headers(seed.buyer),
        )

        assert response.status_code == 422

    def test_adult_card_checkout_forbidden(self, client, seed, auth_headers):
        response = client.post(
            f"{API}/payments/checkout",
            json={"resource": {"kind": "post", "id": seed.adult_post_id}, "points_to_use": 0},
            headers=auth_headers(seed.buyer),
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "PAYMENT_ADULT_001"

    def test_hybrid_checkout(self, client, seed, top_up, auth_headers):
        top_up(seed.buyer.id, 300)

        response = client.post(
            f"{API}/payments/checkout",
            json={"resource": {"kind": "post", "id": seed.post_id}, "points_to_use": 300},
            headers=auth_headers(seed.buyer),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["requires_stripe"] is True
        assert data["stripe_amount"] == 700
        assert data["url"].endswith(data["session_id"])


class TestWebhookRoute:
    """Stripe 웹훅 라우터 테스트"""

    def test_bad_signature_is_rejected(self, client, seed):
        response = client.post(
            f"{API}/webhooks/stripe",
            content=b"{}",
            headers={"Stripe-Signature": "t=1,v1=forged"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "WEBHOOK_SIGNATURE"

    def test_completed_checkout_is_acknowledged(
        self, client, db, seed, gateway, auth_headers
    ):
        # Given
        checkout = client.post(
            f"{API}/payments/checkout",
            json={"resource": {"kind": "post", "id": seed.post_id}},
            headers=auth_headers(seed.buyer),
        ).json()
        payload = {
            "id": "evt_route_1",
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": checkout["session_id"],
                    "amount_total": 1000,
                    "payment_status": "paid",
                    "payment_intent": "pi_route",
                    "metadata": gateway.last_request.metadata,
                }
            },
        }

        # When
        response = client.post(
            f"{API}/webhooks/stripe",
            content=json.dumps(payload),
            headers={"Stripe-Signature": gateway.VALID_SIGNATURE},
        )

        # Then
        assert response.status_code == 200
        assert response.json() == {
            "received": True,
            "event_id": "evt_route_1",
            "outcome": "completed",
        }
        log = PaymentAuditRepository(db).get_by_id(checkout["audit_log_id"])
        assert log.status == AuditStatus.COMPLETED

    def test_event_is_handled_outside_the_event_loop(self, client, seed, gateway):
        """웹훅 DB 처리는 이벤트 루프가 아닌 워커 스레드에서 실행"""
        # Given
        seen = {}
        original = WebhookService.handle_event

        def handle_event(service, event):
            try:
                asyncio.get_running_loop()
                seen["in_event_loop"] = True
            except RuntimeError:
                seen["in_event_loop"] = False
            return original(service, event)

        payload = {"id": "evt_route_2", "type": "customer.created", "data": {"object": {}}}

        # When
        with patch.object(WebhookService, "handle_event", handle_event):
            response = client.post(
                f"{API}/webhooks/stripe",
                content=json.dumps(payload),
                headers={"Stripe-Signature": gateway.VALID_SIGNATURE},
            )

        # Then
        assert response.status_code == 200
        assert response.json()["outcome"] == "ignored"
        assert seen == {"in_event_loop": False}


class TestAdminRoutes:
    """관리자 라우터 테스트"""

    def test_non_admin_is_forbidden(self, client, seed, auth_headers):
        response = client.get(
            f"{API}/admin/payments/recovery-queue", headers=auth_headers(seed.buyer)
        )

        assert response.status_code == 403

    def test_grant_points(self, client, seed, auth_headers):
        response = client.post(
            f"{API}/admin/payments/grant-points",
            json={"user_id": seed.buyer.id, "amount": 300, "reason": "support ticket"},
            headers=auth_headers(seed.admin),
        )

        assert response.status_code == 200
        assert response.json()["new_balance"] == 300

    def test_resolve_requires_note(self, client, seed, auth_headers):
        response = client.post(
            f"{API}/admin/payments/audit-logs/1/resolve",
            json={"note": ""},
            headers=auth_headers(seed.admin),
        )

        assert response.status_code == 422

    def test_global_integrity(self, client, seed, top_up, auth_headers):
        top_up(seed.buyer.id, 100)

        response = client.get(
            f"{API}/admin/payments/integrity/global", headers=auth_headers(seed.admin)
        )

        assert response.status_code == 200
        assert response.json()["status"] == "OK"


class TestBatchRoutes:
    def test_batch_requires_admin(self, client, seed, auth_headers):
        response = client.post(
            f"{API}/batch/subscriptions/renew", headers=auth_headers(seed.buyer)
        )

        assert response.status_code == 403

    def test_renew_subscriptions(self, client, seed, auth_headers):
        response = client.post(
            f"{API}/batch/subscriptions/renew", headers=auth_headers(seed.admin)
        )

        assert response.status_code == 200
        assert response.json()["processed"] == 0

    def test_flag_stale_audit_logs(self, client, seed, auth_headers):
        response = client.post(
            f"{API}/batch/audit-logs/flag-stale", headers=auth_headers(seed.admin)
        )

        assert response.status_code == 200
        assert response.json() == {"flagged": 0, "audit_log_ids": []}

    def test_cleanup_idempotency_keys(self, client, seed, auth_headers):
        response = client.post(
            f"{API}/batch/idempotency/cleanup", headers=auth_headers(seed.admin)
        )

        assert response.status_code == 200
        assert response.json() == {"deleted": 0}

    def test_request_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"

    def test_request_id_is_generated(self, client):
        response = client.get("/health")

        assert len(response.headers["X-Request-ID"]) == 32
