from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from payapi.models.payment_audit import ReferenceType


class ResourceKind(str, Enum):
    POST = "post"  # 게시물 구매 (id = post id)
    PLAN = "plan"  # 구독 (id = subscription plan id)
    TIP = "tip"  # 팁 (id = creator id, amount 필수)


class ResourceRef(BaseModel):
    """결제 대상 참조"""

    kind: ResourceKind
    id: int = Field(..., gt=0)
    amount: Optional[int] = Field(None, gt=0, description="팁 금액 (tip 전용)")
    message: Optional[str] = Field(None, max_length=500, description="팁 메시지")

    @model_validator(mode="after")
    def tip_requires_amount(self):
        if self.kind == ResourceKind.TIP and self.amount is None:
            raise ValueError("amount is required for tips")
        if self.kind != ResourceKind.TIP and self.amount is not None:
            raise ValueError("amount is only accepted for tips")
        return self


class PayWithPointsRequest(BaseModel):
    resource: ResourceRef
    points_amount: Optional[int] = Field(
        None, ge=0, description="사용할 포인트 (생략 시 전액)"
    )
    idempotency_key: Optional[str] = Field(None, max_length=255)


class PayWithPointsResponse(BaseModel):
    success: bool = True
    audit_log_id: Optional[int] = None
    reference_type: ReferenceType
    domain_record_id: int
    new_balance: int


class HybridCheckoutRequest(BaseModel):
    resource: ResourceRef
    points_to_use: int = Field(0, ge=0)
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None
    idempotency_key: Optional[str] = Field(None, max_length=255)


class HybridCheckoutResponse(BaseModel):
    """
    requires_stripe=False 이면 포인트만으로 즉시 완료된 것 (domain_record_id, new_balance)
    requires_stripe=True 이면 url 로 이동하여 카드 결제를 마쳐야 함
    """

    success: bool = True
    requires_stripe: bool
    audit_log_id: Optional[int] = None
    url: Optional[str] = None
    session_id: Optional[str] = None
    points_amount: int = 0
    stripe_amount: int = 0
    domain_record_id: Optional[int] = None
    reference_type: Optional[ReferenceType] = None
    new_balance: Optional[int] = None


class PriceQuote(BaseModel):
    """결제 대상의 가격/소유자/성인 플래그 (협력 모듈 조회 결과)"""

    kind: ResourceKind
    resource_id: int
    price: int
    creator_id: int
    creator_user_id: int
    is_adult: bool
    title: Optional[str] = None
    message: Optional[str] = None
