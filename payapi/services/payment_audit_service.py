"""
결제 감사 로그 상태 머신

    pending -> processing -> completed | failed
    pending -> completed | failed | cancelled      (동기 처리/만료)
    failed -> refunded,  completed -> refunded       (관리자 수동)

"복구됨(recovered)"은 상태가 아니라 requires_recovery 플래그의 해소입니다.
이 서비스는 flush 까지만 수행하며 commit 은 호출자가 결정합니다.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Optional

from sqlalchemy.orm import Session

from payapi.core.exceptions import (
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from payapi.models.payment_audit import (
    AuditOperationType,
    AuditStatus,
    ReferenceType,
)
from payapi.repositories.payment_audit_repository import PaymentAuditRepository
from payapi.schemas.batch import StalePendingSweepResult
from payapi.schemas.payment_audit import (
    AuditError,
    AuditLogFilter,
    AuditLogListResponse,
    AuditLogStatsResponse,
    ExternalIds,
    PaymentAuditLogResponse,
)
from payapi.utils.date_utils import utc_now

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[AuditStatus, FrozenSet[AuditStatus]] = {
    AuditStatus.PENDING: frozenset(
        {
            AuditStatus.PROCESSING,
            AuditStatus.COMPLETED,
            AuditStatus.FAILED,
            AuditStatus.CANCELLED,
        }
    ),
    AuditStatus.PROCESSING: frozenset({AuditStatus.COMPLETED, AuditStatus.FAILED}),
    AuditStatus.FAILED: frozenset({AuditStatus.REFUNDED}),
    AuditStatus.COMPLETED: frozenset({AuditStatus.REFUNDED}),
    AuditStatus.REFUNDED: frozenset(),
    AuditStatus.CANCELLED: frozenset(),
}


class PaymentAuditService:
    def __init__(self, db: Session):
        self.db = db
        self.repo = PaymentAuditRepository(db)

    def create_audit_log(
        self,
        operation_type: AuditOperationType,
        user_id: int,
        total_amount: int,
        points_amount: int = 0,
        stripe_amount: int = 0,
        creator_id: Optional[int] = None,
        target_id: Optional[int] = None,
        idempotency_key: Optional[str] = None,
    ) -> PaymentAuditLogResponse:
        """pending 감사 로그 생성 - 반환된 id 가 동기 처리와 체크아웃 metadata 의 상관 키"""
        if points_amount < 0 or stripe_amount < 0 or total_amount < 0:
            raise ValidationError("Audit amounts must not be negative")
        if points_amount + stripe_amount > total_amount:
            raise ValidationError(
                "points_amount + stripe_amount exceeds total_amount",
                details={
                    "total_amount": total_amount,
                    "points_amount": points_amount,
                    "stripe_amount": stripe_amount,
                },
            )

        log = self.repo.create(
            operation_type=operation_type.value,
            status=AuditStatus.PENDING.value,
            user_id=user_id,
            creator_id=creator_id,
            target_id=target_id,
            total_amount=total_amount,
            points_amount=points_amount,
            stripe_amount=stripe_amount,
            idempotency_key=idempotency_key,
            requires_recovery=False,
            recovery_attempts=0,
        )
        logger.info(
            f"Audit log {log.id} created: {operation_type.value} user={user_id} "
            f"total={total_amount} points={points_amount} stripe={stripe_amount}"
        )
        return log

    def get(self, audit_log_id: int) -> PaymentAuditLogResponse:
        log = self.repo.get_by_id(audit_log_id)
        if log is None:
            raise NotFoundError(
                "Audit log not found", details={"audit_log_id": audit_log_id}
            )
        return log

    def find_by_idempotency_key(self, key: str) -> Optional[PaymentAuditLogResponse]:
        return self.repo.find_by_idempotency_key(key)

    def _transition(
        self, audit_log_id: int, target: AuditStatus, **values
    ) -> PaymentAuditLogResponse:
        log = self.get(audit_log_id)
        if target not in TRANSITIONS[log.status]:
            raise InvalidStateTransitionError(
                log.status.value, target.value, details={"audit_log_id": audit_log_id}
            )
        updated = self.repo.update_fields(audit_log_id, status=target.value, **values)
        logger.info(f"Audit log {audit_log_id}: {log.status.value} -> {target.value}")
        return updated

    def attach_session(self, audit_log_id: int, session_id: str) -> PaymentAuditLogResponse:
        return self.repo.update_fields(audit_log_id, stripe_session_id=session_id)

    def mark_processing(self, audit_log_id: int) -> PaymentAuditLogResponse:
        return self._transition(audit_log_id, AuditStatus.PROCESSING)

    def complete_audit_log(
        self,
        audit_log_id: int,
        reference_type: ReferenceType,
        reference_id: int,
        external_ids: Optional[ExternalIds] = None,
    ) -> PaymentAuditLogResponse:
        values = {
            "reference_type": reference_type.value,
            "reference_id": reference_id,
            "completed_at": utc_now(),
        }
        if external_ids is not None:
            values.update(external_ids.model_dump(exclude_none=True))
        return self._transition(audit_log_id, AuditStatus.COMPLETED, **values)

    def fail_audit_log(
        self,
        audit_log_id: int,
        error: AuditError,
        requires_recovery: bool = False,
        external_ids: Optional[ExternalIds] = None,
    ) -> PaymentAuditLogResponse:
        values = {
            "error_code": error.code,
            "error_message": error.message,
            "error_details": error.details,
            "requires_recovery": requires_recovery,
        }
        if external_ids is not None:
            values.update(external_ids.model_dump(exclude_none=True))
        log = self._transition(audit_log_id, AuditStatus.FAILED, **values)
        if requires_recovery:
            logger.error(
                f"Audit log {audit_log_id} failed and requires recovery: "
                f"[{error.code}] {error.message}",
                extra={
                    "audit_log_id": audit_log_id,
                    "user_id": log.user_id,
                    "stripe_session_id": log.stripe_session_id,
                    "error_code": error.code,
                },
            )
        else:
            logger.warning(f"Audit log {audit_log_id} failed: [{error.code}] {error.message}")
        return log

    def cancel_audit_log(self, audit_log_id: int, reason: str) -> PaymentAuditLogResponse:
        return self._transition(
            audit_log_id, AuditStatus.CANCELLED, error_code="CANCELLED", error_message=reason
        )

    def refund_audit_log(
        self, audit_log_id: int, admin_id: int, admin_note: str
    ) -> PaymentAuditLogResponse:
        return self._transition(
            audit_log_id,
            AuditStatus.REFUNDED,
            admin_note=admin_note,
            processed_by=admin_id,
            processed_at=utc_now(),
        )

    def mark_for_recovery(self, audit_log_id: int, note: str) -> PaymentAuditLogResponse:
        """상태와 무관하게 복구 큐에 올림"""
        self.get(audit_log_id)
        logger.error(f"Audit log {audit_log_id} flagged for recovery: {note}")
        return self.repo.update_fields(
            audit_log_id, requires_recovery=True, recovery_note=note
        )

    def mark_recovered(
        self, audit_log_id: int, operator_id: int, note: str
    ) -> PaymentAuditLogResponse:
        """복구 플래그 해소 - 처리자와 메모가 반드시 기록됨"""
        if not note or not note.strip():
            raise ValidationError("A resolution note is required")
        log = self.get(audit_log_id)
        if not log.requires_recovery:
            raise InvalidStateTransitionError(
                "not_flagged", "recovered", details={"audit_log_id": audit_log_id}
            )
        now = utc_now()
        logger.info(f"Audit log {audit_log_id} recovered by operator {operator_id}")
        return self.repo.update_fields(
            audit_log_id,
            requires_recovery=False,
            recovered_at=now,
            recovery_note=note,
            processed_by=operator_id,
            processed_at=now,
        )

    def increment_recovery_attempts(self, audit_log_id: int) -> PaymentAuditLogResponse:
        self.get(audit_log_id)
        self.repo.increment_recovery_attempts(audit_log_id)
        return self.repo.get_by_id(audit_log_id)

    def list_logs(self, filters: AuditLogFilter) -> AuditLogListResponse:
        logs, total = self.repo.search(filters)
        return AuditLogListResponse(
            logs=logs,
            total_count=total,
            has_next=filters.offset + filters.limit < total,
        )

    def stats(self) -> AuditLogStatsResponse:
        return self.repo.stats()

    def flag_stale_pending(
        self, older_than: timedelta, now: Optional[datetime] = None
    ) -> StalePendingSweepResult:
        """
        체크아웃을 시작했지만 웹훅이 오지 않은 채 오래된 pending 로그를 복구 큐로

        Stripe 세션이 만료되면 웹훅이 오지 않을 수 있어 운영자 확인이 필요합니다.
        """
        now = now or utc_now()
        stale = self.repo.find_stale_pending(now - older_than)
        for log in stale:
            self.repo.update_fields(
                log.id,
                requires_recovery=True,
                recovery_note=f"Pending since {log.created_at} without confirmation",
            )
        if stale:
            logger.warning(f"Flagged {len(stale)} stale pending audit logs for review")
        return StalePendingSweepResult(
            flagged=len(stale), audit_log_ids=[log.id for log in stale]
        )
