from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from payapi.models.records import PaymentMethod, SubscriptionStatus


class PurchaseRecord(BaseModel):
    id: int
    user_id: int
    post_id: int
    creator_id: int
    amount: int
    payment_method: PaymentMethod
    points_used: int = 0
    stripe_amount: int = 0
    stripe_payment_intent_id: Optional[str] = None

    class Config:
        from_attributes = True


class TipRecord(BaseModel):
    id: int
    user_id: int
    creator_id: int
    amount: int
    message: Optional[str] = None
    payment_method: PaymentMethod
    points_used: int = 0
    stripe_amount: int = 0
    stripe_payment_intent_id: Optional[str] = None

    class Config:
        from_attributes = True


class SubscriptionRecord(BaseModel):
    id: int
    user_id: int
    plan_id: int
    creator_id: int
    status: SubscriptionStatus
    payment_method: PaymentMethod
    stripe_subscription_id: Optional[str] = None
    started_at: datetime
    next_billing_at: Optional[datetime] = None
    last_point_deduct_at: Optional[datetime] = None
    point_deduct_failed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    class Config:
        from_attributes = True
