"""
결제 완료 후 생성되는 도메인 레코드 (구매/팁/구독)
"""

from enum import Enum

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.schema import Index, UniqueConstraint

from payapi.models.base import BaseModel, BigIntPK


class PaymentMethod(str, Enum):
    FREE = "free"
    POINTS = "points"
    STRIPE = "stripe"
    HYBRID = "hybrid"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class Purchase(BaseModel):
    __tablename__ = "purchases"
    __table_args__ = (
        UniqueConstraint("user_id", "post_id", name="uq_purchase_user_post"),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey("users.id"), nullable=False)
    post_id = Column(BigInteger, ForeignKey("posts.id"), nullable=False)
    creator_id = Column(BigInteger, ForeignKey("creators.id"), nullable=False)
    amount = Column(BigInteger, nullable=False)
    payment_method = Column(String(16), nullable=False)
    points_used = Column(BigInteger, nullable=False, default=0)
    stripe_amount = Column(BigInteger, nullable=False, default=0)
    stripe_payment_intent_id = Column(String(255), nullable=True)
    idempotency_key = Column(String(255), nullable=True)


class Tip(BaseModel):
    __tablename__ = "tips"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey("users.id"), nullable=False)
    creator_id = Column(BigInteger, ForeignKey("creators.id"), nullable=False)
    amount = Column(BigInteger, nullable=False)
    message = Column(Text, nullable=True)
    payment_method = Column(String(16), nullable=False)
    points_used = Column(BigInteger, nullable=False, default=0)
    stripe_amount = Column(BigInteger, nullable=False, default=0)
    stripe_payment_intent_id = Column(String(255), nullable=True)
    idempotency_key = Column(String(255), nullable=True)


class Subscription(BaseModel):
    """
    구독 - 포인트 결제 구독은 갱신 배치가, Stripe 구독은 Stripe 가 청구

    point_deduct_failed_at 은 유예 기간 시작 시각 (첫 갱신 실패 시에만 기록)
    """

    __tablename__ = "subscriptions"
    __table_args__ = (
        Index("idx_subscriptions_due", "status", "payment_method", "next_billing_at"),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey("users.id"), nullable=False)
    plan_id = Column(BigInteger, ForeignKey("subscription_plans.id"), nullable=False)
    creator_id = Column(BigInteger, ForeignKey("creators.id"), nullable=False)
    status = Column(String(16), nullable=False, default=SubscriptionStatus.ACTIVE.value)
    payment_method = Column(String(16), nullable=False)
    stripe_subscription_id = Column(String(255), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=False)
    next_billing_at = Column(DateTime(timezone=True), nullable=True)
    last_point_deduct_at = Column(DateTime(timezone=True), nullable=True)
    point_deduct_failed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
