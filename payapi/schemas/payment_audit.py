from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from payapi.models.payment_audit import AuditOperationType, AuditStatus, ReferenceType


class PaymentAuditLogResponse(BaseModel):
    """결제 감사 로그"""

    id: int
    operation_type: AuditOperationType
    status: AuditStatus
    idempotency_key: Optional[str] = None
    user_id: int
    creator_id: Optional[int] = None
    total_amount: int
    points_amount: int = 0
    stripe_amount: int = 0
    reference_type: Optional[ReferenceType] = None
    reference_id: Optional[int] = None
    target_id: Optional[int] = None
    stripe_session_id: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None
    requires_recovery: bool = False
    recovery_attempts: int = 0
    recovered_at: Optional[datetime] = None
    recovery_note: Optional[str] = None
    processed_by: Optional[int] = None
    processed_at: Optional[datetime] = None
    admin_note: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ExternalIds(BaseModel):
    """감사 로그 완료 시 함께 기록하는 Stripe 식별자"""

    stripe_session_id: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None


class AuditError(BaseModel):
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class AuditLogFilter(BaseModel):
    status: Optional[AuditStatus] = None
    operation_type: Optional[AuditOperationType] = None
    user_id: Optional[int] = None
    requires_recovery: Optional[bool] = None
    limit: int = Field(50, ge=1, le=100)
    offset: int = Field(0, ge=0)


class AuditLogListResponse(BaseModel):
    logs: List[PaymentAuditLogResponse]
    total_count: int
    has_next: bool


class AuditLogStatsResponse(BaseModel):
    """결제 감사 로그 통계 (관리자 대시보드)"""

    total: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_operation_type: Dict[str, int] = Field(default_factory=dict)
    requires_recovery: int = 0
    completed_points_amount: int = 0
    completed_stripe_amount: int = 0


class GrantPointsRequest(BaseModel):
    """관리자 포인트 지급 요청"""

    user_id: int = Field(..., gt=0, description="사용자 ID")
    amount: int = Field(..., gt=0, description="지급 포인트")
    reason: str = Field(..., min_length=1, max_length=255, description="지급 사유")
    related_audit_log_id: Optional[int] = Field(None, description="관련 감사 로그 (복구 대상)")


class RefundPointsRequest(BaseModel):
    """관리자 포인트 환불 요청 - 감사 로그 기준"""

    audit_log_id: int = Field(..., gt=0)
    amount: int = Field(..., gt=0, description="환불 포인트")
    reason: str = Field(..., min_length=1, max_length=255)


class ResolveAuditLogRequest(BaseModel):
    note: str = Field(..., min_length=1, max_length=1000, description="해결 메모 (필수)")


class AdminPointsResult(BaseModel):
    success: bool = True
    audit_log_id: int
    transaction_id: int
    new_balance: int
