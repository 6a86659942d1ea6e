from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import desc, func
from sqlalchemy.orm import Session

from payapi.models.payment_audit import AuditStatus, PaymentAuditLog
from payapi.repositories.base import BaseRepository
from payapi.schemas.payment_audit import (
    AuditLogFilter,
    AuditLogStatsResponse,
    PaymentAuditLogResponse,
)


class PaymentAuditRepository(BaseRepository[PaymentAuditLog, PaymentAuditLogResponse]):
    """결제 감사 로그 리포지토리 (삭제 메서드 없음)"""

    def __init__(self, db: Session):
        super().__init__(PaymentAuditLog, PaymentAuditLogResponse, db)

    def get_for_update(self, audit_log_id: int) -> Optional[PaymentAuditLogResponse]:
        """행 잠금 후 조회 - 웹훅 중복 수신 시 직렬화"""
        row = (
            self.db.query(PaymentAuditLog)
            .filter(PaymentAuditLog.id == audit_log_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        return self._to_schema(row)

    def find_by_idempotency_key(self, key: str) -> Optional[PaymentAuditLogResponse]:
        row = (
            self.db.query(PaymentAuditLog)
            .filter(PaymentAuditLog.idempotency_key == key)
            .order_by(desc(PaymentAuditLog.id))
            .first()
        )
        return self._to_schema(row)

    def find_by_session_id(self, session_id: str) -> Optional[PaymentAuditLogResponse]:
        row = (
            self.db.query(PaymentAuditLog)
            .filter(PaymentAuditLog.stripe_session_id == session_id)
            .first()
        )
        return self._to_schema(row)

    def update_fields(self, audit_log_id: int, **values) -> PaymentAuditLogResponse:
        row = self._get_model(audit_log_id)
        for key, value in values.items():
            setattr(row, key, value)
        self.db.flush()
        self.db.refresh(row)
        return self._to_schema(row)

    def increment_recovery_attempts(self, audit_log_id: int) -> int:
        return (
            self.db.query(PaymentAuditLog)
            .filter(PaymentAuditLog.id == audit_log_id)
            .update(
                {PaymentAuditLog.recovery_attempts: PaymentAuditLog.recovery_attempts + 1},
                synchronize_session=False,
            )
        )

    def search(self, filters: AuditLogFilter) -> Tuple[List[PaymentAuditLogResponse], int]:
        query = self.db.query(PaymentAuditLog)
        if filters.status is not None:
            query = query.filter(PaymentAuditLog.status == filters.status.value)
        if filters.operation_type is not None:
            query = query.filter(
                PaymentAuditLog.operation_type == filters.operation_type.value
            )
        if filters.user_id is not None:
            query = query.filter(PaymentAuditLog.user_id == filters.user_id)
        if filters.requires_recovery is not None:
            query = query.filter(
                PaymentAuditLog.requires_recovery.is_(filters.requires_recovery)
            )

        total = query.count()
        rows = (
            query.order_by(desc(PaymentAuditLog.created_at), desc(PaymentAuditLog.id))
            .limit(filters.limit)
            .offset(filters.offset)
            .all()
        )
        return [self._to_schema(row) for row in rows], total

    def find_stale_pending(
        self, created_before: datetime, limit: int = 500
    ) -> List[PaymentAuditLogResponse]:
        rows = (
            self.db.query(PaymentAuditLog)
            .filter(
                PaymentAuditLog.status == AuditStatus.PENDING.value,
                PaymentAuditLog.requires_recovery.is_(False),
                PaymentAuditLog.created_at < created_before,
            )
            .order_by(PaymentAuditLog.id)
            .limit(limit)
            .all()
        )
        return [self._to_schema(row) for row in rows]

    def stats(self) -> AuditLogStatsResponse:
        by_status = dict(
            self.db.query(PaymentAuditLog.status, func.count(PaymentAuditLog.id))
            .group_by(PaymentAuditLog.status)
            .all()
        )
        by_operation = dict(
            self.db.query(PaymentAuditLog.operation_type, func.count(PaymentAuditLog.id))
            .group_by(PaymentAuditLog.operation_type)
            .all()
        )
        recovery = (
            self.db.query(func.count(PaymentAuditLog.id))
            .filter(PaymentAuditLog.requires_recovery.is_(True))
            .scalar()
        )
        points_sum, stripe_sum = (
            self.db.query(
                func.coalesce(func.sum(PaymentAuditLog.points_amount), 0),
                func.coalesce(func.sum(PaymentAuditLog.stripe_amount), 0),
            )
            .filter(PaymentAuditLog.status == AuditStatus.COMPLETED.value)
            .one()
        )
        return AuditLogStatsResponse(
            total=sum(by_status.values()),
            by_status=by_status,
            by_operation_type=by_operation,
            requires_recovery=recovery or 0,
            completed_points_amount=points_sum,
            completed_stripe_amount=stripe_sum,
        )
