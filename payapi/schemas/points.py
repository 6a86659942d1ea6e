from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from payapi.models.points import PointTransactionType


class PointBalanceResponse(BaseModel):
    """포인트 잔액 응답"""

    balance: int = Field(0, description="현재 포인트 잔액")
    total_purchased: int = Field(0, description="누적 적립 포인트")
    total_spent: int = Field(0, description="누적 사용 포인트")

    class Config:
        from_attributes = True


class PointTransactionEntry(BaseModel):
    """포인트 원장 항목"""

    id: int = Field(..., description="원장 항목 ID")
    user_id: int = Field(..., description="사용자 ID")
    type: PointTransactionType = Field(..., description="거래 유형")
    amount: int = Field(..., description="포인트 변화량 (+적립 / -차감)")
    balance_after: int = Field(..., description="거래 후 잔액")
    reference_id: Optional[int] = Field(None, description="결제 감사 로그 ID")
    stripe_payment_intent_id: Optional[str] = Field(None, description="Stripe PaymentIntent ID")
    description: Optional[str] = Field(None, description="거래 설명")
    created_at: Optional[datetime] = Field(None, description="생성 시간")

    class Config:
        from_attributes = True


class PointTransactionsResponse(BaseModel):
    """포인트 거래 내역 조회 응답"""

    transactions: List[PointTransactionEntry] = Field(..., description="거래 목록 (최신순)")
    total_count: int = Field(..., description="전체 항목 수")
    has_next: bool = Field(..., description="다음 페이지 존재 여부")


class LedgerWriteResult(BaseModel):
    """credit/debit 결과"""

    transaction_id: int
    amount: int
    balance_after: int


class PointPackageResponse(BaseModel):
    """포인트 구매 상품"""

    id: int
    name: str
    points: int = Field(..., description="지급 포인트")
    price: int = Field(..., description="결제 금액 (최소 통화 단위)")
    is_active: bool = True
    display_order: int = 0

    class Config:
        from_attributes = True


class PointCheckoutRequest(BaseModel):
    """포인트 구매 체크아웃 요청"""

    package_id: int = Field(..., gt=0, description="포인트 상품 ID")
    success_url: Optional[str] = Field(None, description="결제 성공 후 리다이렉트 URL")
    cancel_url: Optional[str] = Field(None, description="결제 취소 시 리다이렉트 URL")
    idempotency_key: Optional[str] = Field(None, max_length=255)


class CheckoutSessionResponse(BaseModel):
    """Stripe Checkout 세션 응답"""

    success: bool = True
    audit_log_id: int
    session_id: str
    url: Optional[str] = None


class PointsIntegrityCheckResponse(BaseModel):
    """포인트 정합성 검증 응답"""

    status: str = Field(..., description="검증 상태 (OK, MISMATCH)")
    user_id: Optional[int] = Field(None, description="사용자 ID (단일 사용자 검증 시)")
    balance: Optional[int] = Field(None, description="잔액 행의 balance")
    sum_of_transactions: Optional[int] = Field(None, description="원장 amount 합계")
    total_purchased: Optional[int] = Field(None, description="누적 적립")
    total_spent: Optional[int] = Field(None, description="누적 사용")
    user_count: Optional[int] = Field(None, description="검증한 사용자 수")
    mismatched_user_ids: List[int] = Field(default_factory=list, description="불일치 사용자")
    verified_at: datetime = Field(..., description="검증 시간")
