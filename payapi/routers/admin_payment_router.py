"""
관리자 결제 운영 API

- GET /admin/payments/audit-logs: 감사 로그 목록 (상태/유형/사용자/복구 플래그 필터)
- GET /admin/payments/audit-logs/{id}: 감사 로그 상세
- GET /admin/payments/recovery-queue: 복구 대기 목록
- GET /admin/payments/stats: 통계
- POST /admin/payments/grant-points: 수동 포인트 지급
- POST /admin/payments/refund-points: 감사 로그 기준 포인트 환불
- POST /admin/payments/audit-logs/{id}/resolve: 복구 완료 처리 (메모 필수)
- POST /admin/payments/audit-logs/{id}/recovery-attempt: 복구 시도 횟수 기록
- GET /admin/payments/integrity/global: 전체 포인트 정합성 검증

모든 엔드포인트는 관리자 권한 필요
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query

from payapi.core.auth_middleware import require_admin
from payapi.deps import get_admin_payment_service
from payapi.models.payment_audit import AuditOperationType, AuditStatus
from payapi.schemas.payment_audit import (
    AdminPointsResult,
    AuditLogFilter,
    AuditLogListResponse,
    AuditLogStatsResponse,
    GrantPointsRequest,
    PaymentAuditLogResponse,
    RefundPointsRequest,
    ResolveAuditLogRequest,
)
from payapi.schemas.points import PointsIntegrityCheckResponse
from payapi.schemas.user import User as UserSchema
from payapi.services.admin_payment_service import AdminPaymentService

router = APIRouter(prefix="/admin/payments", tags=["admin-payments"])


@router.get("/audit-logs", response_model=AuditLogListResponse)
def list_audit_logs(
    status: Optional[AuditStatus] = Query(None, description="상태"),
    operation_type: Optional[AuditOperationType] = Query(None, description="작업 유형"),
    user_id: Optional[int] = Query(None, description="사용자 ID"),
    requires_recovery: Optional[bool] = Query(None, description="복구 필요 여부"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    _admin: UserSchema = Depends(require_admin),
    service: AdminPaymentService = Depends(get_admin_payment_service),
) -> AuditLogListResponse:
    return service.list_audit_logs(
        AuditLogFilter(
            status=status,
            operation_type=operation_type,
            user_id=user_id,
            requires_recovery=requires_recovery,
            limit=limit,
            offset=offset,
        )
    )


@router.get("/audit-logs/{audit_log_id}", response_model=PaymentAuditLogResponse)
def get_audit_log(
    audit_log_id: int = Path(..., gt=0),
    _admin: UserSchema = Depends(require_admin),
    service: AdminPaymentService = Depends(get_admin_payment_service),
) -> PaymentAuditLogResponse:
    return service.get_audit_log(audit_log_id)


@router.get("/recovery-queue", response_model=AuditLogListResponse)
def get_recovery_queue(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    _admin: UserSchema = Depends(require_admin),
    service: AdminPaymentService = Depends(get_admin_payment_service),
) -> AuditLogListResponse:
    """카드 결제와 포인트 처리 중 한쪽만 성공한 결제 목록"""
    return service.get_recovery_queue(limit=limit, offset=offset)


@router.get("/stats", response_model=AuditLogStatsResponse)
def get_stats(
    _admin: UserSchema = Depends(require_admin),
    service: AdminPaymentService = Depends(get_admin_payment_service),
) -> AuditLogStatsResponse:
    return service.get_stats()


@router.post("/grant-points", response_model=AdminPointsResult)
def grant_points(
    request: GrantPointsRequest,
    admin: UserSchema = Depends(require_admin),
    service: AdminPaymentService = Depends(get_admin_payment_service),
) -> AdminPointsResult:
    return service.grant_points(admin.id, request)


@router.post("/refund-points", response_model=AdminPointsResult)
def refund_points(
    request: RefundPointsRequest,
    admin: UserSchema = Depends(require_admin),
    service: AdminPaymentService = Depends(get_admin_payment_service),
) -> AdminPointsResult:
    return service.refund_points(admin.id, request)


@router.post("/audit-logs/{audit_log_id}/resolve", response_model=PaymentAuditLogResponse)
def resolve_audit_log(
    request: ResolveAuditLogRequest,
    audit_log_id: int = Path(..., gt=0),
    admin: UserSchema = Depends(require_admin),
    service: AdminPaymentService = Depends(get_admin_payment_service),
) -> PaymentAuditLogResponse:
    return service.mark_resolved(admin.id, audit_log_id, request.note)


@router.post(
    "/audit-logs/{audit_log_id}/recovery-attempt", response_model=PaymentAuditLogResponse
)
def record_recovery_attempt(
    audit_log_id: int = Path(..., gt=0),
    _admin: UserSchema = Depends(require_admin),
    service: AdminPaymentService = Depends(get_admin_payment_service),
) -> PaymentAuditLogResponse:
    return service.record_recovery_attempt(audit_log_id)


@router.get("/integrity/global", response_model=PointsIntegrityCheckResponse)
def verify_global_integrity(
    _admin: UserSchema = Depends(require_admin),
    service: AdminPaymentService = Depends(get_admin_payment_service),
) -> PointsIntegrityCheckResponse:
    return service.verify_global_integrity()
