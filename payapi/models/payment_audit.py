"""
결제 감사 로그 모델

포인트/Stripe 어느 쪽이든 돈이 움직이는 모든 작업의 종단 간 기록입니다.
"이 작업이 정산되었는가"에 대한 단일 진실 원천이며, 체크아웃 세션
metadata 에 id 가 실려 웹훅과 요청을 연결합니다.
"""

from enum import Enum

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.schema import Index

from payapi.models.base import BaseModel, BigIntPK


class AuditOperationType(str, Enum):
    POINT_PURCHASE = "point_purchase"
    POINT_REFUND = "point_refund"
    POST_PURCHASE_POINTS = "post_purchase_points"
    POST_PURCHASE_STRIPE = "post_purchase_stripe"
    POST_PURCHASE_HYBRID = "post_purchase_hybrid"
    SUBSCRIPTION_POINTS = "subscription_points"
    SUBSCRIPTION_STRIPE = "subscription_stripe"
    SUBSCRIPTION_RENEWAL = "subscription_renewal"
    SUBSCRIPTION_CANCEL = "subscription_cancel"
    TIP_POINTS = "tip_points"
    TIP_STRIPE = "tip_stripe"
    TIP_HYBRID = "tip_hybrid"
    ADMIN_POINT_GRANT = "admin_point_grant"
    ADMIN_REFUND = "admin_refund"


class AuditStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"


class ReferenceType(str, Enum):
    PURCHASE = "purchase"
    TIP = "tip"
    SUBSCRIPTION = "subscription"
    POINT_TRANSACTION = "point_transaction"


class PaymentAuditLog(BaseModel):
    """
    결제 감사 로그

    requires_recovery=True 는 한쪽 레일(포인트 차감 또는 카드 결제)은 성공했으나
    짝이 되는 단계가 실패한 상태를 뜻하며, 운영자가 해소하기 전까지 삭제되지
    않습니다.
    """

    __tablename__ = "payment_audit_logs"
    __table_args__ = (
        Index("idx_audit_status_created", "status", "created_at"),
        Index("idx_audit_recovery", "requires_recovery"),
        Index("idx_audit_user", "user_id"),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    operation_type = Column(String(64), nullable=False)
    status = Column(String(16), nullable=False, default=AuditStatus.PENDING.value)
    idempotency_key = Column(String(255), nullable=True, index=True)

    user_id = Column(BigInteger, ForeignKey("users.id"), nullable=False)
    creator_id = Column(BigInteger, nullable=True)

    # 금액 (최소 통화 단위). 결제는 points_amount + stripe_amount == total_amount,
    # 관리자 지급/환불은 두 값 모두 0
    total_amount = Column(BigInteger, nullable=False)
    points_amount = Column(BigInteger, nullable=False, default=0)
    stripe_amount = Column(BigInteger, nullable=False, default=0)

    # 생성된 도메인 레코드 링크
    reference_type = Column(String(32), nullable=True)
    reference_id = Column(BigInteger, nullable=True)
    # 구매/팁/구독 대상 (게시물 ID, 플랜 ID 등) - 검증/복구용
    target_id = Column(BigInteger, nullable=True)

    stripe_session_id = Column(String(255), nullable=True, index=True)
    stripe_payment_intent_id = Column(String(255), nullable=True)
    stripe_subscription_id = Column(String(255), nullable=True)

    error_code = Column(String(64), nullable=True)
    error_message = Column(Text, nullable=True)
    error_details = Column(JSON, nullable=True)

    requires_recovery = Column(Boolean, nullable=False, default=False)
    recovery_attempts = Column(Integer, nullable=False, default=0)
    recovered_at = Column(DateTime(timezone=True), nullable=True)
    recovery_note = Column(Text, nullable=True)
    processed_by = Column(BigInteger, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    admin_note = Column(Text, nullable=True)

    completed_at = Column(DateTime(timezone=True), nullable=True)
