"""
포인트 API 라우터

사용자용 엔드포인트:
- GET /points/balance: 내 포인트 잔액 조회
- GET /points/transactions: 내 포인트 거래 내역
- GET /points/packages: 포인트 상품 목록
- POST /points/checkout: 포인트 상품 구매 (Stripe Checkout)
- GET /points/integrity/my: 내 포인트 정합성 검증

모든 엔드포인트는 Bearer 토큰 인증 필요
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query

from payapi.core.auth_middleware import get_current_active_user
from payapi.deps import get_payment_service, get_point_service
from payapi.schemas.points import (
    CheckoutSessionResponse,
    PointBalanceResponse,
    PointCheckoutRequest,
    PointPackageResponse,
    PointsIntegrityCheckResponse,
    PointTransactionsResponse,
)
from payapi.schemas.user import User as UserSchema
from payapi.services.payment_service import PaymentService
from payapi.services.point_service import PointService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/points", tags=["points"])


@router.get("/balance", response_model=PointBalanceResponse)
def get_my_balance(
    current_user: UserSchema = Depends(get_current_active_user),
    point_service: PointService = Depends(get_point_service),
) -> PointBalanceResponse:
    """
    내 포인트 잔액 조회

    첫 적립 전이면 모든 값이 0 입니다.
    """
    return point_service.get_balance(current_user.id)


@router.get("/transactions", response_model=PointTransactionsResponse)
def get_my_transactions(
    limit: int = Query(20, ge=1, le=100, description="페이지 크기"),
    offset: int = Query(0, ge=0, description="오프셋"),
    current_user: UserSchema = Depends(get_current_active_user),
    point_service: PointService = Depends(get_point_service),
) -> PointTransactionsResponse:
    """
    내 포인트 거래 내역 조회 (최신순)

    사용 예시:
        GET /points/transactions?limit=20&offset=0
    """
    return point_service.get_transactions(current_user.id, limit=limit, offset=offset)


@router.get("/packages", response_model=List[PointPackageResponse])
def get_point_packages(
    current_user: UserSchema = Depends(get_current_active_user),
    point_service: PointService = Depends(get_point_service),
) -> List[PointPackageResponse]:
    return point_service.get_packages()


@router.post("/checkout", response_model=CheckoutSessionResponse)
def create_point_checkout(
    request: PointCheckoutRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    current_user: UserSchema = Depends(get_current_active_user),
    payment_service: PaymentService = Depends(get_payment_service),
) -> CheckoutSessionResponse:
    """
    포인트 상품 구매 - Checkout URL 반환

    포인트는 결제 완료 웹훅이 처리될 때 적립됩니다.
    """
    return payment_service.create_point_checkout(
        current_user, request, idempotency_key=idempotency_key
    )


@router.get("/integrity/my", response_model=PointsIntegrityCheckResponse)
def verify_my_integrity(
    current_user: UserSchema = Depends(get_current_active_user),
    point_service: PointService = Depends(get_point_service),
) -> PointsIntegrityCheckResponse:
    """내 잔액과 거래 내역 합계가 일치하는지 검증"""
    return point_service.verify_user_integrity(current_user.id)
