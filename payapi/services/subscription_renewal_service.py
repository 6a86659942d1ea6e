"""
포인트 구독 갱신 배치

구독별 상태:
- active: 제때 갱신 - 가격 차감, next_billing_at 을 "이전 값" 기준 +1개월, 유예 마커 해제
- active(유예): 첫 실패 시 point_deduct_failed_at 기록, 7일 내 재실패는 유지
- cancelled: 유예 시작 후 7일 이상 지났는데도 잔액 부족 -> 해지, 플랜 구독자 수 -1
- 플랜이 없거나 가격이 0 이하: 갱신하지 않고 skipped (결제일 유지, 경고 로그)

구독마다 독립 트랜잭션으로 처리하며 하나의 실패가 배치 전체를 멈추지 않습니다.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from payapi.config import Settings
from payapi.core.exceptions import InsufficientBalanceError
from payapi.models.payment_audit import AuditOperationType, ReferenceType
from payapi.models.points import PointTransactionType
from payapi.models.records import PaymentMethod, SubscriptionStatus
from payapi.repositories.catalog_repository import CatalogRepository
from payapi.repositories.points_repository import PointsRepository
from payapi.repositories.record_repository import RecordRepository
from payapi.schemas.records import SubscriptionRecord
from payapi.schemas.subscription import RenewalBatchResult, RenewalDetail, RenewalOutcome
from payapi.services.notification_service import NotificationService, PaymentEventType
from payapi.services.payment_audit_service import PaymentAuditService
from payapi.utils.date_utils import add_months, ensure_utc, utc_now

logger = logging.getLogger(__name__)


class SubscriptionRenewalService:
    def __init__(self, db: Session, settings: Settings, notifier: NotificationService):
        self.db = db
        self.settings = settings
        self.notifier = notifier
        self.points_repo = PointsRepository(db)
        self.record_repo = RecordRepository(db)
        self.catalog_repo = CatalogRepository(db)
        self.audit = PaymentAuditService(db)

    @property
    def grace_period(self) -> timedelta:
        return timedelta(days=self.settings.SUBSCRIPTION_GRACE_PERIOD_DAYS)

    def process_due_renewals(self, now: Optional[datetime] = None) -> RenewalBatchResult:
        """결제일이 지난 포인트 구독 전체 갱신"""
        now = now or utc_now()
        result = RenewalBatchResult()
        due_ids = self.record_repo.find_due_points_subscriptions(now)
        logger.info(f"Processing {len(due_ids)} due subscriptions at {now.isoformat()}")

        for subscription_id in due_ids:
            try:
                detail = self.renew_subscription(subscription_id, now)
            except Exception as e:
                self.db.rollback()
                logger.error(
                    f"Renewal failed for subscription {subscription_id}: {e}", exc_info=True
                )
                detail = RenewalDetail(
                    subscription_id=subscription_id,
                    user_id=0,
                    outcome=RenewalOutcome.ERROR,
                    error=str(e),
                )
            result.record(detail)

        logger.info(
            f"Renewal batch done: processed={result.processed} renewed={result.renewed} "
            f"grace_started={result.grace_started} in_grace={result.in_grace} "
            f"cancelled={result.cancelled} failed={result.failed}"
        )
        return result

    def renew_subscription(
        self, subscription_id: int, now: Optional[datetime] = None
    ) -> RenewalDetail:
        now = now or utc_now()
        subscription = self.record_repo.get_subscription(subscription_id, for_update=True)
        if subscription is None or not self._is_due(subscription, now):
            self.db.commit()
            return RenewalDetail(
                subscription_id=subscription_id,
                user_id=subscription.user_id if subscription else 0,
                outcome=RenewalOutcome.SKIPPED,
            )

        plan = self.catalog_repo.get_plan(subscription.plan_id)
        if plan is None or plan.price <= 0:
            # 무과금 갱신 방지 - 결제일을 그대로 두고 운영자 확인 대상으로 남김
            self.db.commit()
            reason = "plan not found" if plan is None else f"invalid plan price {plan.price}"
            logger.warning(
                f"Skipping renewal of subscription {subscription_id}: {reason}",
                extra={"user_id": subscription.user_id},
            )
            return RenewalDetail(
                subscription_id=subscription_id,
                user_id=subscription.user_id,
                outcome=RenewalOutcome.SKIPPED,
                error=reason,
            )

        price = plan.price
        balance = self.points_repo.get_balance(subscription.user_id).balance

        if balance >= price:
            renewed = self._charge(subscription, price, now)
            if renewed is not None:
                return renewed
            # 잔액 확인 후 차감 사이에 다른 결제가 잔액을 사용함
            subscription = self.record_repo.get_subscription(subscription_id, for_update=True)

        return self._handle_insufficient_balance(subscription, price, now)

    def _is_due(self, subscription: SubscriptionRecord, now: datetime) -> bool:
        return (
            subscription.status == SubscriptionStatus.ACTIVE
            and subscription.payment_method == PaymentMethod.POINTS
            and subscription.next_billing_at is not None
            and ensure_utc(subscription.next_billing_at) <= now
        )

    def _charge(
        self, subscription: SubscriptionRecord, price: int, now: datetime
    ) -> Optional[RenewalDetail]:
        log = self.audit.create_audit_log(
            AuditOperationType.SUBSCRIPTION_RENEWAL,
            user_id=subscription.user_id,
            total_amount=price,
            points_amount=price,
            stripe_amount=0,
            creator_id=subscription.creator_id,
            target_id=subscription.plan_id,
        )
        try:
            self.points_repo.debit(
                subscription.user_id,
                price,
                PointTransactionType.SUBSCRIPTION,
                reference_id=log.id,
                description=f"Subscription renewal (plan {subscription.plan_id})",
            )
        except InsufficientBalanceError:
            # 감사 로그까지 함께 롤백 (차감되지 않은 갱신은 기록하지 않음)
            self.db.rollback()
            return None

        previous = ensure_utc(subscription.next_billing_at)
        self.record_repo.update_subscription(
            subscription.id,
            next_billing_at=add_months(previous),
            last_point_deduct_at=now,
            point_deduct_failed_at=None,
        )
        self.catalog_repo.credit_payee_total(subscription.creator_id, price)
        self.audit.complete_audit_log(log.id, ReferenceType.SUBSCRIPTION, subscription.id)
        self.db.commit()

        logger.info(
            f"Subscription {subscription.id} renewed: user={subscription.user_id} "
            f"price={price} next_billing_at={add_months(previous).isoformat()}"
        )
        return RenewalDetail(
            subscription_id=subscription.id,
            user_id=subscription.user_id,
            outcome=RenewalOutcome.RENEWED,
            audit_log_id=log.id,
        )

    def _handle_insufficient_balance(
        self, subscription: SubscriptionRecord, price: int, now: datetime
    ) -> RenewalDetail:
        failed_at = ensure_utc(subscription.point_deduct_failed_at)

        if failed_at is None:
            self.record_repo.update_subscription(subscription.id, point_deduct_failed_at=now)
            self.db.commit()
            logger.warning(
                f"Subscription {subscription.id} renewal failed (price={price}), grace period started"
            )
            outcome = RenewalOutcome.GRACE_STARTED

        elif now - failed_at >= self.grace_period:
            self.record_repo.update_subscription(
                subscription.id,
                status=SubscriptionStatus.CANCELLED.value,
                cancelled_at=now,
            )
            self.catalog_repo.adjust_subscriber_count(subscription.plan_id, -1)
            self.db.commit()
            logger.warning(
                f"Subscription {subscription.id} cancelled after grace period "
                f"(failed since {failed_at.isoformat()})"
            )
            self.notifier.notify(
                PaymentEventType.SUBSCRIPTION_CANCELLED,
                {
                    "subscription_id": subscription.id,
                    "user_id": subscription.user_id,
                    "plan_id": subscription.plan_id,
                    "reason": "insufficient_points",
                },
            )
            outcome = RenewalOutcome.CANCELLED

        else:
            self.db.commit()
            outcome = RenewalOutcome.IN_GRACE

        return RenewalDetail(
            subscription_id=subscription.id,
            user_id=subscription.user_id,
            outcome=outcome,
        )
