"""
관리자 결제 운영 서비스

감사 로그 조회/필터, 복구 큐 처리, 수동 포인트 지급/환불을 담당합니다.
수동 처리는 모두 별도의 감사 로그로 남으며 처리자 ID 가 기록됩니다.
"""

import logging

from sqlalchemy.orm import Session

from payapi.core.exceptions import InvalidStateTransitionError, ValidationError
from payapi.models.payment_audit import AuditOperationType, AuditStatus, ReferenceType
from payapi.models.points import PointTransactionType
from payapi.repositories.points_repository import PointsRepository
from payapi.schemas.payment_audit import (
    AdminPointsResult,
    AuditLogFilter,
    AuditLogListResponse,
    AuditLogStatsResponse,
    GrantPointsRequest,
    PaymentAuditLogResponse,
    RefundPointsRequest,
)
from payapi.schemas.points import PointsIntegrityCheckResponse
from payapi.services.payment_audit_service import PaymentAuditService
from payapi.utils.date_utils import utc_now

logger = logging.getLogger(__name__)


class AdminPaymentService:
    def __init__(self, db: Session):
        self.db = db
        self.audit = PaymentAuditService(db)
        self.points_repo = PointsRepository(db)

    # ---- 조회 ----

    def list_audit_logs(self, filters: AuditLogFilter) -> AuditLogListResponse:
        return self.audit.list_logs(filters)

    def get_audit_log(self, audit_log_id: int) -> PaymentAuditLogResponse:
        return self.audit.get(audit_log_id)

    def get_recovery_queue(self, limit: int = 50, offset: int = 0) -> AuditLogListResponse:
        """복구가 필요한 감사 로그 (requires_recovery=True)"""
        return self.audit.list_logs(
            AuditLogFilter(requires_recovery=True, limit=limit, offset=offset)
        )

    def get_stats(self) -> AuditLogStatsResponse:
        return self.audit.stats()

    def verify_global_integrity(self) -> PointsIntegrityCheckResponse:
        result = self.points_repo.verify_global_integrity()
        if result.status != "OK":
            logger.error(f"Global point integrity mismatch: {result.mismatched_user_ids[:20]}")
        return result

    # ---- 수동 처리 ----

    def grant_points(self, admin_id: int, request: GrantPointsRequest) -> AdminPointsResult:
        """
        관리자 포인트 지급

        related_audit_log_id 가 복구 대상이면 지급과 함께 복구 완료로 표시합니다.
        """
        related = None
        if request.related_audit_log_id is not None:
            related = self.audit.get(request.related_audit_log_id)

        log = self.audit.create_audit_log(
            AuditOperationType.ADMIN_POINT_GRANT,
            user_id=request.user_id,
            total_amount=request.amount,
        )
        entry = self.points_repo.credit(
            request.user_id,
            request.amount,
            PointTransactionType.ADMIN_GRANT,
            description=f"Admin grant: {request.reason}",
            reference_id=log.id,
        )
        self.audit.complete_audit_log(log.id, ReferenceType.POINT_TRANSACTION, entry.transaction_id)
        self.audit.repo.update_fields(
            log.id,
            processed_by=admin_id,
            processed_at=utc_now(),
            admin_note=request.reason,
        )

        if related is not None and related.requires_recovery:
            self.audit.mark_recovered(
                related.id,
                admin_id,
                f"Points granted ({request.amount}P, audit log {log.id}): {request.reason}",
            )

        self.db.commit()
        logger.info(
            f"Admin {admin_id} granted {request.amount} points to user {request.user_id} "
            f"(audit log {log.id})"
        )
        return AdminPointsResult(
            audit_log_id=log.id,
            transaction_id=entry.transaction_id,
            new_balance=entry.balance_after,
        )

    def refund_points(self, admin_id: int, request: RefundPointsRequest) -> AdminPointsResult:
        """
        감사 로그 기준 포인트 환불

        대상 로그는 completed 또는 failed 여야 하며, 환불 포인트는 대상 결제 총액을
        넘을 수 없습니다. 대상 로그는 refunded 로 전환됩니다.
        """
        target = self.audit.get(request.audit_log_id)
        if target.status not in (AuditStatus.COMPLETED, AuditStatus.FAILED):
            raise InvalidStateTransitionError(
                target.status.value,
                AuditStatus.REFUNDED.value,
                details={"audit_log_id": target.id},
            )
        if request.amount > target.total_amount:
            raise ValidationError(
                "Refund exceeds the original payment amount",
                details={"amount": request.amount, "total_amount": target.total_amount},
            )

        log = self.audit.create_audit_log(
            AuditOperationType.ADMIN_REFUND,
            user_id=target.user_id,
            total_amount=request.amount,
            creator_id=target.creator_id,
            target_id=target.id,
        )
        entry = self.points_repo.credit(
            target.user_id,
            request.amount,
            PointTransactionType.REFUND,
            description=f"Refund for payment {target.id}: {request.reason}",
            reference_id=log.id,
        )
        self.audit.complete_audit_log(log.id, ReferenceType.POINT_TRANSACTION, entry.transaction_id)
        self.audit.repo.update_fields(
            log.id, processed_by=admin_id, processed_at=utc_now(), admin_note=request.reason
        )

        self.audit.refund_audit_log(
            target.id, admin_id, f"Refunded {request.amount}P (audit log {log.id}): {request.reason}"
        )
        if target.requires_recovery:
            self.audit.mark_recovered(
                target.id, admin_id, f"Resolved by refund (audit log {log.id})"
            )

        self.db.commit()
        logger.info(
            f"Admin {admin_id} refunded {request.amount} points for audit log {target.id} "
            f"to user {target.user_id}"
        )
        return AdminPointsResult(
            audit_log_id=log.id,
            transaction_id=entry.transaction_id,
            new_balance=entry.balance_after,
        )

    def mark_resolved(self, admin_id: int, audit_log_id: int, note: str) -> PaymentAuditLogResponse:
        log = self.audit.mark_recovered(audit_log_id, admin_id, note)
        self.db.commit()
        return log

    def record_recovery_attempt(self, audit_log_id: int) -> PaymentAuditLogResponse:
        log = self.audit.increment_recovery_attempts(audit_log_id)
        self.db.commit()
        return log
