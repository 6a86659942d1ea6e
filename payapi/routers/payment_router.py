"""
결제 API 라우터

- POST /payments/points: 포인트 전액 결제 (게시물, 구독, 팁)
- POST /payments/checkout: 포인트 + 카드 분할 결제 시작

Idempotency-Key 헤더(또는 body 의 idempotency_key)로 재시도를 안전하게 묶을 수
있습니다. 생략하면 같은 초 안의 중복 요청만 묶입니다.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header

from payapi.core.auth_middleware import get_current_active_user
from payapi.deps import get_payment_service
from payapi.schemas.payments import (
    HybridCheckoutRequest,
    HybridCheckoutResponse,
    PayWithPointsRequest,
    PayWithPointsResponse,
)
from payapi.schemas.user import User as UserSchema
from payapi.services.payment_service import PaymentService

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/points", response_model=PayWithPointsResponse)
def pay_with_points(
    request: PayWithPointsRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    current_user: UserSchema = Depends(get_current_active_user),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PayWithPointsResponse:
    """
    포인트로 결제

    HTTP Status:
        200: 결제 완료
        400: 잔액 부족 (BALANCE_001), 무료 콘텐츠 (PAYMENT_FREE_001)
        403: 본인 콘텐츠
        409: 이미 구매/구독함, 같은 요청 처리 중
    """
    return payment_service.pay_with_points(
        current_user, request, idempotency_key=idempotency_key
    )


@router.post("/checkout", response_model=HybridCheckoutResponse)
def create_hybrid_checkout(
    request: HybridCheckoutRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    current_user: UserSchema = Depends(get_current_active_user),
    payment_service: PaymentService = Depends(get_payment_service),
) -> HybridCheckoutResponse:
    """
    분할 결제 시작

    points_to_use 가 가격과 같으면 즉시 완료되고, 작으면 남은 금액의 Checkout
    URL 을 반환합니다. 성인 콘텐츠는 카드 결제를 사용할 수 없습니다 (403).

    HTTP Status:
        200: 완료 또는 Checkout 생성
        403: 성인 콘텐츠 카드 결제 (PAYMENT_ADULT_001)
        502: Stripe 세션 생성 실패 (재시도 가능)
    """
    return payment_service.create_hybrid_checkout(
        current_user, request, idempotency_key=idempotency_key
    )
