from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from payapi.models.records import (
    PaymentMethod,
    Purchase,
    Subscription,
    SubscriptionStatus,
    Tip,
)
from payapi.repositories.base import BaseRepository
from payapi.schemas.records import PurchaseRecord, SubscriptionRecord, TipRecord


class RecordRepository(BaseRepository[Purchase, PurchaseRecord]):
    """결제 완료 콜백이 생성하는 도메인 레코드 (구매/팁/구독)"""

    def __init__(self, db: Session):
        super().__init__(Purchase, PurchaseRecord, db)

    # ---- 구매 ----

    def has_purchased(self, user_id: int, post_id: int) -> bool:
        return (
            self.db.query(Purchase.id)
            .filter(Purchase.user_id == user_id, Purchase.post_id == post_id)
            .first()
            is not None
        )

    def create_purchase(
        self,
        user_id: int,
        post_id: int,
        creator_id: int,
        amount: int,
        payment_method: PaymentMethod,
        points_used: int = 0,
        stripe_amount: int = 0,
        stripe_payment_intent_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> PurchaseRecord:
        return self.create(
            user_id=user_id,
            post_id=post_id,
            creator_id=creator_id,
            amount=amount,
            payment_method=payment_method.value,
            points_used=points_used,
            stripe_amount=stripe_amount,
            stripe_payment_intent_id=stripe_payment_intent_id,
            idempotency_key=idempotency_key,
        )

    # ---- 팁 ----

    def create_tip(
        self,
        user_id: int,
        creator_id: int,
        amount: int,
        payment_method: PaymentMethod,
        message: Optional[str] = None,
        points_used: int = 0,
        stripe_amount: int = 0,
        stripe_payment_intent_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> TipRecord:
        tip = Tip(
            user_id=user_id,
            creator_id=creator_id,
            amount=amount,
            message=message,
            payment_method=payment_method.value,
            points_used=points_used,
            stripe_amount=stripe_amount,
            stripe_payment_intent_id=stripe_payment_intent_id,
            idempotency_key=idempotency_key,
        )
        self.db.add(tip)
        self.db.flush()
        return TipRecord.model_validate(tip)

    # ---- 구독 ----

    def has_active_subscription(self, user_id: int, creator_id: int) -> bool:
        return (
            self.db.query(Subscription.id)
            .filter(
                Subscription.user_id == user_id,
                Subscription.creator_id == creator_id,
                Subscription.status == SubscriptionStatus.ACTIVE.value,
            )
            .first()
            is not None
        )

    def create_subscription(
        self,
        user_id: int,
        plan_id: int,
        creator_id: int,
        payment_method: PaymentMethod,
        started_at: datetime,
        next_billing_at: Optional[datetime] = None,
        last_point_deduct_at: Optional[datetime] = None,
        stripe_subscription_id: Optional[str] = None,
    ) -> SubscriptionRecord:
        subscription = Subscription(
            user_id=user_id,
            plan_id=plan_id,
            creator_id=creator_id,
            status=SubscriptionStatus.ACTIVE.value,
            payment_method=payment_method.value,
            started_at=started_at,
            next_billing_at=next_billing_at,
            last_point_deduct_at=last_point_deduct_at,
            stripe_subscription_id=stripe_subscription_id,
        )
        self.db.add(subscription)
        self.db.flush()
        return SubscriptionRecord.model_validate(subscription)

    def get_subscription(
        self, subscription_id: int, for_update: bool = False
    ) -> Optional[SubscriptionRecord]:
        query = self.db.query(Subscription).filter(Subscription.id == subscription_id)
        if for_update:
            query = query.with_for_update()
        row = query.populate_existing().first()
        return SubscriptionRecord.model_validate(row) if row else None

    def update_subscription(self, subscription_id: int, **values) -> SubscriptionRecord:
        row = self.db.query(Subscription).filter(Subscription.id == subscription_id).one()
        for key, value in values.items():
            setattr(row, key, value)
        self.db.flush()
        return SubscriptionRecord.model_validate(row)

    def find_due_points_subscriptions(
        self, now: datetime, limit: int = 1000
    ) -> List[int]:
        """갱신 대상: active + 포인트 결제 + next_billing_at <= now"""
        rows = (
            self.db.query(Subscription.id)
            .filter(
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                Subscription.payment_method == PaymentMethod.POINTS.value,
                Subscription.next_billing_at.isnot(None),
                Subscription.next_billing_at <= now,
            )
            .order_by(Subscription.next_billing_at, Subscription.id)
            .limit(limit)
            .all()
        )
        return [row.id for row in rows]
