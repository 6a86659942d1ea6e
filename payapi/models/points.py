"""
포인트 시스템 데이터 모델

사용자별 잔액 행(PointBalance)과 모든 변동을 기록하는 추가 전용 원장
(PointTransaction)을 정의합니다. 잔액 행은 credit/debit 를 통해서만 바뀌며,
원장의 amount 합계는 항상 현재 잔액과 같아야 합니다.
"""

from enum import Enum

from sqlalchemy import BigInteger, Boolean, Column, ForeignKey, Integer, String, Text
from sqlalchemy.schema import CheckConstraint, Index, UniqueConstraint

from payapi.models.base import BaseModel, BigIntPK


class PointTransactionType(str, Enum):
    PURCHASE = "purchase"  # 포인트 구매 (Stripe)
    POST_PURCHASE = "post_purchase"  # 게시물 구매
    SUBSCRIPTION = "subscription"  # 구독 결제/갱신
    TIP = "tip"  # 팁
    REFUND = "refund"  # 관리자 환불
    ADMIN_GRANT = "admin_grant"  # 관리자 지급


class PointBalance(BaseModel):
    """
    사용자 포인트 잔액 - 사용자당 1행

    불변식: balance == total_purchased - total_spent, balance >= 0
    차감은 항상 `balance >= :amount` 조건부 UPDATE 한 번으로 처리됩니다.
    """

    __tablename__ = "point_balances"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_point_balances_non_negative"),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    user_id = Column(
        BigInteger, ForeignKey("users.id"), nullable=False, unique=True, index=True
    )
    balance = Column(BigInteger, nullable=False, default=0)
    total_purchased = Column(BigInteger, nullable=False, default=0)
    total_spent = Column(BigInteger, nullable=False, default=0)


class PointTransaction(BaseModel):
    """
    포인트 원장 - 추가 전용 (수정/삭제 없음)

    - amount 는 부호 포함 (+적립 / -차감)
    - balance_after 는 이 행을 기록한 UPDATE 직후의 잔액
    - reference_id 는 결제 감사 로그 ID. (type, reference_id) 유니크로
      하나의 감사 로그가 같은 유형으로 두 번 차감되지 않음
    """

    __tablename__ = "point_transactions"
    __table_args__ = (
        UniqueConstraint("type", "reference_id", name="uq_point_tx_type_reference"),
        Index("idx_point_tx_user_created", "user_id", "created_at"),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey("users.id"), nullable=False)
    type = Column(String(32), nullable=False)
    amount = Column(BigInteger, nullable=False)
    balance_after = Column(BigInteger, nullable=False)
    reference_id = Column(BigInteger, nullable=True)
    stripe_payment_intent_id = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)


class PointPackage(BaseModel):
    """포인트 구매 상품 (Stripe Checkout 으로 판매)"""

    __tablename__ = "point_packages"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    points = Column(BigInteger, nullable=False)
    price = Column(BigInteger, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    display_order = Column(Integer, nullable=False, default=0)
