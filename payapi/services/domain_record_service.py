"""
결제 완료 콜백 - 정산이 끝난 결제를 도메인 레코드(구매/팁/구독)로 전환

포인트 동기 결제와 웹훅 확정이 같은 코드 경로를 사용합니다.
commit 하지 않습니다.
"""

import logging
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from payapi.config import Settings
from payapi.models.payment_audit import ReferenceType
from payapi.models.records import PaymentMethod
from payapi.repositories.catalog_repository import CatalogRepository
from payapi.repositories.record_repository import RecordRepository
from payapi.schemas.payments import PriceQuote, ResourceKind
from payapi.utils.date_utils import add_months, utc_now

logger = logging.getLogger(__name__)


def payment_method_for(points_amount: int, stripe_amount: int) -> PaymentMethod:
    if points_amount and stripe_amount:
        return PaymentMethod.HYBRID
    if stripe_amount:
        return PaymentMethod.STRIPE
    if points_amount:
        return PaymentMethod.POINTS
    return PaymentMethod.FREE


class DomainRecordService:
    def __init__(self, db: Session, settings: Settings):
        self.db = db
        self.settings = settings
        self.catalog_repo = CatalogRepository(db)
        self.record_repo = RecordRepository(db)

    def create_record(
        self,
        user_id: int,
        quote: PriceQuote,
        points_amount: int,
        stripe_amount: int,
        stripe_payment_intent_id: Optional[str] = None,
        stripe_subscription_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[ReferenceType, int]:
        """
        도메인 레코드 생성 + 크리에이터 누적 후원액 갱신

        Returns:
            (ReferenceType, 생성된 레코드 ID) - 감사 로그 reference 로 기록됨
        """
        now = now or utc_now()
        method = payment_method_for(points_amount, stripe_amount)
        amount = points_amount + stripe_amount

        if quote.kind == ResourceKind.POST:
            purchase = self.record_repo.create_purchase(
                user_id=user_id,
                post_id=quote.resource_id,
                creator_id=quote.creator_id,
                amount=amount,
                payment_method=method,
                points_used=points_amount,
                stripe_amount=stripe_amount,
                stripe_payment_intent_id=stripe_payment_intent_id,
                idempotency_key=idempotency_key,
            )
            reference = (ReferenceType.PURCHASE, purchase.id)

        elif quote.kind == ResourceKind.TIP:
            tip = self.record_repo.create_tip(
                user_id=user_id,
                creator_id=quote.creator_id,
                amount=amount,
                payment_method=method,
                message=quote.message,
                points_used=points_amount,
                stripe_amount=stripe_amount,
                stripe_payment_intent_id=stripe_payment_intent_id,
                idempotency_key=idempotency_key,
            )
            reference = (ReferenceType.TIP, tip.id)

        else:
            # 포인트 구독만 갱신 배치 대상 (Stripe 구독은 Stripe 가 청구)
            points_billed = method == PaymentMethod.POINTS
            subscription = self.record_repo.create_subscription(
                user_id=user_id,
                plan_id=quote.resource_id,
                creator_id=quote.creator_id,
                payment_method=method,
                started_at=now,
                next_billing_at=add_months(now) if points_billed else None,
                last_point_deduct_at=now if points_billed else None,
                stripe_subscription_id=stripe_subscription_id,
            )
            self.catalog_repo.adjust_subscriber_count(quote.resource_id, 1)
            reference = (ReferenceType.SUBSCRIPTION, subscription.id)

        if amount > 0:
            self.catalog_repo.credit_payee_total(quote.creator_id, amount)

        logger.info(
            f"Created {reference[0].value} {reference[1]} for user {user_id} "
            f"({method.value}, amount={amount})"
        )
        return reference
