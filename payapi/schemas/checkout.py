"""
Stripe Checkout metadata / 웹훅 이벤트 스키마

체크아웃 세션 metadata 는 문자열 key/value 만 허용되므로 생성 시 문자열로
인코딩하고, 웹훅 수신 즉시 `type` 으로 구분되는 태그드 유니온으로 디코딩합니다.
이후 코드는 검증된 모델만 다룹니다.
"""

from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class _CheckoutMetadataBase(BaseModel):
    audit_log_id: int
    user_id: int
    total_amount: int = Field(..., gt=0)
    points_used: int = Field(0, ge=0)
    idempotency_key: Optional[str] = None

    @property
    def stripe_amount(self) -> int:
        return self.total_amount - self.points_used


class PointPurchaseMetadata(_CheckoutMetadataBase):
    type: Literal["point_purchase"] = "point_purchase"
    package_id: int
    points: int = Field(..., gt=0)


class PostPurchaseMetadata(_CheckoutMetadataBase):
    type: Literal["post_purchase"] = "post_purchase"
    post_id: int
    creator_id: int


class HybridPostPurchaseMetadata(_CheckoutMetadataBase):
    type: Literal["post_purchase_hybrid"] = "post_purchase_hybrid"
    post_id: int
    creator_id: int
    points_used: int = Field(..., gt=0)


class SubscriptionMetadata(_CheckoutMetadataBase):
    type: Literal["subscription"] = "subscription"
    plan_id: int
    creator_id: int


class TipMetadata(_CheckoutMetadataBase):
    type: Literal["tip"] = "tip"
    creator_id: int
    message: Optional[str] = None


class HybridTipMetadata(_CheckoutMetadataBase):
    type: Literal["tip_hybrid"] = "tip_hybrid"
    creator_id: int
    points_used: int = Field(..., gt=0)
    message: Optional[str] = None


CheckoutMetadata = Annotated[
    Union[
        PointPurchaseMetadata,
        PostPurchaseMetadata,
        HybridPostPurchaseMetadata,
        SubscriptionMetadata,
        TipMetadata,
        HybridTipMetadata,
    ],
    Field(discriminator="type"),
]

_metadata_adapter: TypeAdapter = TypeAdapter(CheckoutMetadata)


def parse_checkout_metadata(raw: Dict[str, Any]) -> CheckoutMetadata:
    """Stripe metadata(dict[str, str]) -> 검증된 메타데이터 모델"""
    return _metadata_adapter.validate_python(raw)


def encode_checkout_metadata(metadata: _CheckoutMetadataBase) -> Dict[str, str]:
    """메타데이터 모델 -> Stripe 가 허용하는 문자열 dict"""
    return {
        key: str(value)
        for key, value in metadata.model_dump(exclude_none=True).items()
    }


class CheckoutLineItem(BaseModel):
    name: str
    amount: int = Field(..., gt=0)
    description: Optional[str] = None


class CheckoutSessionRequest(BaseModel):
    """게이트웨이 어댑터 입력"""

    mode: Literal["payment", "subscription"] = "payment"
    line_item: CheckoutLineItem
    metadata: Dict[str, str]
    success_url: str
    cancel_url: str
    customer_email: Optional[str] = None
    client_reference_id: Optional[str] = None
    idempotency_key: Optional[str] = None


class CheckoutSession(BaseModel):
    id: str
    url: Optional[str] = None


class CompletedCheckoutSession(BaseModel):
    """checkout.session.completed / expired 의 data.object 중 사용하는 필드"""

    id: str
    amount_total: Optional[int] = None
    payment_status: Optional[str] = None
    payment_intent: Optional[str] = None
    subscription: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class GatewayEvent(BaseModel):
    """서명 검증을 통과한 웹훅 이벤트"""

    id: str
    type: str
    data_object: Dict[str, Any] = Field(default_factory=dict)


class WebhookAck(BaseModel):
    received: bool = True
    event_id: Optional[str] = None
    outcome: Optional[str] = None
