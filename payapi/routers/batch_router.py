"""
배치 작업 API (EventBridge/SQS 스케줄러에서 호출)

- POST /batch/subscriptions/renew: 포인트 구독 갱신
- POST /batch/audit-logs/flag-stale: 오래된 pending 감사 로그 복구 큐로
- POST /batch/idempotency/cleanup: 만료된 멱등성 키 삭제
"""

from datetime import timedelta

from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from payapi.config import Settings
from payapi.containers import Container
from payapi.core.auth_middleware import require_admin
from payapi.database.session import get_db
from payapi.deps import get_idempotency_service, get_renewal_service
from payapi.schemas.batch import IdempotencyCleanupResult, StalePendingSweepResult
from payapi.schemas.subscription import RenewalBatchResult
from payapi.schemas.user import User as UserSchema
from payapi.services.idempotency_service import IdempotencyService
from payapi.services.payment_audit_service import PaymentAuditService
from payapi.services.subscription_renewal_service import SubscriptionRenewalService

router = APIRouter(
    prefix="/batch",
    tags=["batch"],
)


@router.post("/subscriptions/renew", response_model=RenewalBatchResult)
def renew_subscriptions(
    _admin: UserSchema = Depends(require_admin),
    renewal_service: SubscriptionRenewalService = Depends(get_renewal_service),
) -> RenewalBatchResult:
    """결제일이 지난 포인트 구독 갱신 (구독별 독립 처리)"""
    return renewal_service.process_due_renewals()


@router.post("/audit-logs/flag-stale", response_model=StalePendingSweepResult)
@inject
def flag_stale_audit_logs(
    _admin: UserSchema = Depends(require_admin),
    db: Session = Depends(get_db),
    settings: Settings = Depends(Provide[Container.config.config]),
) -> StalePendingSweepResult:
    """STALE_PENDING_HOURS 이상 확정되지 않은 체크아웃을 운영자 확인 대상으로 표시"""
    result = PaymentAuditService(db).flag_stale_pending(
        timedelta(hours=settings.STALE_PENDING_HOURS)
    )
    db.commit()
    return result


@router.post("/idempotency/cleanup", response_model=IdempotencyCleanupResult)
def cleanup_idempotency_keys(
    _admin: UserSchema = Depends(require_admin),
    idempotency_service: IdempotencyService = Depends(get_idempotency_service),
) -> IdempotencyCleanupResult:
    return IdempotencyCleanupResult(deleted=idempotency_service.cleanup_expired())
