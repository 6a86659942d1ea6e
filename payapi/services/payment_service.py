"""
분할 결제 오케스트레이터

가격 P 와 사용할 포인트 Q 로 결제 경로를 결정합니다.

- Q == P: 포인트만으로 동기 처리 (차감, 도메인 레코드, 감사 로그 완료를 한 트랜잭션)
- Q < P: pending 감사 로그 + Stripe Checkout 세션 (P-Q). 포인트는 아직 차감하지
  않고 웹훅 확정 시점에 차감합니다.

검증 순서 (에러 우선순위 고정):
1. 무료 여부
2. 성인 콘텐츠 카드 결제 제한 / 본인 콘텐츠
3. 중복 구매, 중복 구독
4. Q > P, Q > 잔액

성인 콘텐츠에서 Q < P 이면 카드 결제가 끼는 경로로 보고 2단계에서
AdultRestrictionError 를 냅니다. pay_with_points 에 points_amount 를 가격보다
작게 (0 포함) 보내도 "전액 포인트 필요" ValidationError 보다 이 에러가 우선합니다.
"""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payapi.config import Settings
from payapi.core.exceptions import (
    AdultRestrictionError,
    AlreadyPurchasedError,
    AlreadySubscribedError,
    BaseAPIException,
    ExternalGatewayError,
    ForbiddenError,
    InsufficientBalanceError,
    NotFoundError,
    ResourceIsFreeError,
    ValidationError,
)
from payapi.models.payment_audit import AuditOperationType, ReferenceType
from payapi.models.points import PointTransactionType
from payapi.models.records import PaymentMethod
from payapi.repositories.points_repository import PointsRepository
from payapi.repositories.record_repository import RecordRepository
from payapi.repositories.catalog_repository import CatalogRepository
from payapi.schemas.checkout import (
    CheckoutLineItem,
    CheckoutSessionRequest,
    HybridPostPurchaseMetadata,
    HybridTipMetadata,
    PointPurchaseMetadata,
    PostPurchaseMetadata,
    SubscriptionMetadata,
    TipMetadata,
    encode_checkout_metadata,
)
from payapi.schemas.payment_audit import AuditError
from payapi.schemas.payments import (
    HybridCheckoutRequest,
    HybridCheckoutResponse,
    PayWithPointsRequest,
    PayWithPointsResponse,
    PriceQuote,
    ResourceKind,
)
from payapi.schemas.points import (
    CheckoutSessionResponse,
    PointCheckoutRequest,
    PointPackageResponse,
)
from payapi.schemas.user import User
from payapi.services.domain_record_service import DomainRecordService
from payapi.services.idempotency_service import (
    IdempotencyService,
    generate_idempotency_key,
)
from payapi.services.notification_service import NotificationService, PaymentEventType
from payapi.services.payment_audit_service import PaymentAuditService
from payapi.services.stripe_gateway import StripeGateway
from payapi.utils.date_utils import utc_now

logger = logging.getLogger(__name__)


POINTS_OPERATION = {
    ResourceKind.POST: AuditOperationType.POST_PURCHASE_POINTS,
    ResourceKind.PLAN: AuditOperationType.SUBSCRIPTION_POINTS,
    ResourceKind.TIP: AuditOperationType.TIP_POINTS,
}
STRIPE_OPERATION = {
    ResourceKind.POST: AuditOperationType.POST_PURCHASE_STRIPE,
    ResourceKind.PLAN: AuditOperationType.SUBSCRIPTION_STRIPE,
    ResourceKind.TIP: AuditOperationType.TIP_STRIPE,
}
HYBRID_OPERATION = {
    ResourceKind.POST: AuditOperationType.POST_PURCHASE_HYBRID,
    ResourceKind.TIP: AuditOperationType.TIP_HYBRID,
}
DEBIT_KIND = {
    ResourceKind.POST: PointTransactionType.POST_PURCHASE,
    ResourceKind.PLAN: PointTransactionType.SUBSCRIPTION,
    ResourceKind.TIP: PointTransactionType.TIP,
}


class PaymentService:
    def __init__(
        self,
        db: Session,
        settings: Settings,
        gateway: StripeGateway,
        notifier: NotificationService,
    ):
        self.db = db
        self.settings = settings
        self.gateway = gateway
        self.notifier = notifier
        self.points_repo = PointsRepository(db)
        self.catalog_repo = CatalogRepository(db)
        self.record_repo = RecordRepository(db)
        self.audit = PaymentAuditService(db)
        self.records = DomainRecordService(db, settings)
        self.idempotency = IdempotencyService(db, settings)

    # ------------------------------------------------------------------
    # 공개 API
    # ------------------------------------------------------------------

    def pay_with_points(
        self,
        user: User,
        request: PayWithPointsRequest,
        idempotency_key: Optional[str] = None,
    ) -> PayWithPointsResponse:
        """
        포인트 전액 결제

        points_amount 를 생략하면 가격 전액을 포인트로 결제합니다.

        Raises:
            InsufficientBalanceError, AlreadyPurchasedError, ResourceIsFreeError,
            AdultRestrictionError, IdempotencyConflictError
        """
        key = (
            idempotency_key
            or request.idempotency_key
            or generate_idempotency_key(
                "pay_with_points", user.id, request.resource.kind.value, request.resource.id
            )
        )

        def execute() -> PayWithPointsResponse:
            quote = self.catalog_repo.quote(request.resource)
            points = quote.price if request.points_amount is None else request.points_amount

            free = self._handle_free(user, quote)
            if free is not None:
                return PayWithPointsResponse(
                    audit_log_id=None,
                    reference_type=free[0],
                    domain_record_id=free[1],
                    new_balance=self.points_repo.get_balance(user.id).balance,
                )

            self._validate(user, quote, points)
            if points != quote.price:
                raise ValidationError(
                    "points_amount must cover the full price. Use checkout for split payments.",
                    details={"price": quote.price, "points_amount": points},
                )
            return self._settle_with_points(user, quote, key)

        return self.idempotency.run(
            key, "pay_with_points", user.id, execute, PayWithPointsResponse
        )

    def create_hybrid_checkout(
        self,
        user: User,
        request: HybridCheckoutRequest,
        idempotency_key: Optional[str] = None,
    ) -> HybridCheckoutResponse:
        """
        포인트 + 카드 분할 결제 시작

        포인트로 전액을 덮으면 즉시 완료(requires_stripe=False), 아니면 pending
        감사 로그와 Checkout 세션을 만들고 URL 을 반환합니다.
        """
        key = (
            idempotency_key
            or request.idempotency_key
            or generate_idempotency_key(
                "hybrid_checkout",
                user.id,
                request.resource.kind.value,
                request.resource.id,
                request.points_to_use,
            )
        )

        def execute() -> HybridCheckoutResponse:
            quote = self.catalog_repo.quote(request.resource)
            points = request.points_to_use

            free = self._handle_free(user, quote)
            if free is not None:
                return HybridCheckoutResponse(
                    requires_stripe=False,
                    reference_type=free[0],
                    domain_record_id=free[1],
                    new_balance=self.points_repo.get_balance(user.id).balance,
                )

            self._validate(user, quote, points)

            if points == quote.price:
                settled = self._settle_with_points(user, quote, key)
                return HybridCheckoutResponse(
                    requires_stripe=False,
                    audit_log_id=settled.audit_log_id,
                    points_amount=points,
                    stripe_amount=0,
                    reference_type=settled.reference_type,
                    domain_record_id=settled.domain_record_id,
                    new_balance=settled.new_balance,
                )
            return self._open_checkout(user, request, quote, points, key)

        return self.idempotency.run(
            key, "hybrid_checkout", user.id, execute, HybridCheckoutResponse
        )

    def get_packages(self) -> list[PointPackageResponse]:
        return self.points_repo.list_packages(active_only=True)

    def create_point_checkout(
        self,
        user: User,
        request: PointCheckoutRequest,
        idempotency_key: Optional[str] = None,
    ) -> CheckoutSessionResponse:
        """포인트 상품 구매 Checkout 세션 생성 (포인트는 웹훅 확정 시 적립)"""
        key = (
            idempotency_key
            or request.idempotency_key
            or generate_idempotency_key("point_purchase", user.id, request.package_id)
        )

        def execute() -> CheckoutSessionResponse:
            package = self.points_repo.get_package(request.package_id)
            if package is None or not package.is_active:
                raise NotFoundError(
                    "Point package not found", details={"package_id": request.package_id}
                )

            log = self.audit.create_audit_log(
                AuditOperationType.POINT_PURCHASE,
                user_id=user.id,
                total_amount=package.price,
                points_amount=0,
                stripe_amount=package.price,
                target_id=package.id,
                idempotency_key=key,
            )
            self.db.commit()

            metadata = PointPurchaseMetadata(
                audit_log_id=log.id,
                user_id=user.id,
                total_amount=package.price,
                idempotency_key=key,
                package_id=package.id,
                points=package.points,
            )
            session = self._create_session(
                log.id,
                CheckoutSessionRequest(
                    line_item=CheckoutLineItem(
                        name=package.name,
                        amount=package.price,
                        description=f"{package.points} points",
                    ),
                    metadata=encode_checkout_metadata(metadata),
                    success_url=request.success_url or self._default_success_url(),
                    cancel_url=request.cancel_url or self._default_cancel_url(),
                    customer_email=user.email,
                    client_reference_id=str(user.id),
                    idempotency_key=f"checkout_{log.id}",
                ),
            )
            return CheckoutSessionResponse(
                audit_log_id=log.id, session_id=session.id, url=session.url
            )

        return self.idempotency.run(
            key, "point_purchase", user.id, execute, CheckoutSessionResponse
        )

    # ------------------------------------------------------------------
    # 검증
    # ------------------------------------------------------------------

    def _handle_free(self, user: User, quote: PriceQuote):
        """
        무료 대상 처리

        게시물은 결제 대상이 아니므로 거절하고, 무료 플랜은 감사 로그 없이
        free 구독만 생성합니다.
        """
        if quote.kind == ResourceKind.TIP:
            if quote.price < self.settings.TIP_MIN_AMOUNT:
                raise ValidationError(
                    f"Tip amount must be at least {self.settings.TIP_MIN_AMOUNT}",
                    details={"amount": quote.price},
                )
            return None
        if quote.price > 0:
            return None
        if quote.kind == ResourceKind.POST:
            raise ResourceIsFreeError(details={"post_id": quote.resource_id})

        if self.record_repo.has_active_subscription(user.id, quote.creator_id):
            raise AlreadySubscribedError(details={"creator_id": quote.creator_id})
        subscription = self.record_repo.create_subscription(
            user_id=user.id,
            plan_id=quote.resource_id,
            creator_id=quote.creator_id,
            payment_method=PaymentMethod.FREE,
            started_at=utc_now(),
        )
        self.catalog_repo.adjust_subscriber_count(quote.resource_id, 1)
        self.db.commit()
        logger.info(f"Free subscription {subscription.id} created for user {user.id}")
        return ReferenceType.SUBSCRIPTION, subscription.id

    def _validate(self, user: User, quote: PriceQuote, points: int) -> None:
        # 성인 콘텐츠는 카드 결제가 끼는 경로 불가 (포인트 전액만 허용)
        if quote.is_adult and points < quote.price:
            raise AdultRestrictionError(
                details={"kind": quote.kind.value, "id": quote.resource_id}
            )
        if quote.creator_user_id == user.id:
            raise ForbiddenError(
                "You cannot pay for your own content",
                details={"creator_id": quote.creator_id},
                error_code="PAYMENT_OWN_001",
            )

        if quote.kind == ResourceKind.POST and self.record_repo.has_purchased(
            user.id, quote.resource_id
        ):
            raise AlreadyPurchasedError(details={"post_id": quote.resource_id})
        if quote.kind == ResourceKind.PLAN and self.record_repo.has_active_subscription(
            user.id, quote.creator_id
        ):
            raise AlreadySubscribedError(details={"creator_id": quote.creator_id})

        if points > quote.price:
            raise ValidationError(
                "Points to use exceed the price",
                details={"price": quote.price, "points": points},
            )
        if quote.kind == ResourceKind.PLAN and 0 < points < quote.price:
            raise ValidationError(
                "Subscriptions are paid entirely with points or entirely by card",
                details={"price": quote.price, "points": points},
            )
        if points > 0:
            available = self.points_repo.get_balance(user.id).balance
            if points > available:
                raise InsufficientBalanceError(
                    f"Insufficient balance. Required: {points}, Available: {available}",
                    details={"required": points, "available": available},
                )

    # ------------------------------------------------------------------
    # 포인트 전액 경로
    # ------------------------------------------------------------------

    def _settle_with_points(
        self, user: User, quote: PriceQuote, key: str
    ) -> PayWithPointsResponse:
        log = self.audit.create_audit_log(
            POINTS_OPERATION[quote.kind],
            user_id=user.id,
            total_amount=quote.price,
            points_amount=quote.price,
            stripe_amount=0,
            creator_id=quote.creator_id,
            target_id=quote.resource_id,
            idempotency_key=key,
        )
        self.db.commit()

        try:
            self.points_repo.debit(
                user.id,
                quote.price,
                DEBIT_KIND[quote.kind],
                reference_id=log.id,
                description=self._describe(quote),
            )
            reference_type, record_id = self.records.create_record(
                user.id,
                quote,
                points_amount=quote.price,
                stripe_amount=0,
                idempotency_key=key,
            )
            self.audit.complete_audit_log(log.id, reference_type, record_id)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            self._fail(log.id, "DUPLICATE_RECORD", str(e.orig))
            if quote.kind == ResourceKind.POST:
                raise AlreadyPurchasedError(details={"post_id": quote.resource_id})
            raise
        except BaseAPIException as e:
            self.db.rollback()
            self._fail(log.id, e.error_code, e.message, e.details)
            raise
        except Exception as e:
            self.db.rollback()
            self._fail(log.id, "INTERNAL_ERROR", str(e))
            raise

        new_balance = self.points_repo.get_balance(user.id).balance
        logger.info(
            f"Points payment completed: user={user.id} {quote.kind.value}={quote.resource_id} "
            f"amount={quote.price} audit_log={log.id}"
        )
        self.notifier.notify(
            PaymentEventType.PAYMENT_COMPLETED,
            {
                "audit_log_id": log.id,
                "user_id": user.id,
                "creator_id": quote.creator_id,
                "reference_type": reference_type.value,
                "reference_id": record_id,
                "amount": quote.price,
            },
        )
        return PayWithPointsResponse(
            audit_log_id=log.id,
            reference_type=reference_type,
            domain_record_id=record_id,
            new_balance=new_balance,
        )

    def _fail(self, audit_log_id: int, code: str, message: str, details=None) -> None:
        self.audit.fail_audit_log(
            audit_log_id,
            AuditError(code=code, message=message, details=details or None),
            requires_recovery=False,
        )
        self.db.commit()

    # ------------------------------------------------------------------
    # Stripe 경로
    # ------------------------------------------------------------------

    def _open_checkout(
        self,
        user: User,
        request: HybridCheckoutRequest,
        quote: PriceQuote,
        points: int,
        key: str,
    ) -> HybridCheckoutResponse:
        stripe_amount = quote.price - points
        operation = (
            HYBRID_OPERATION[quote.kind] if points > 0 else STRIPE_OPERATION[quote.kind]
        )
        log = self.audit.create_audit_log(
            operation,
            user_id=user.id,
            total_amount=quote.price,
            points_amount=points,
            stripe_amount=stripe_amount,
            creator_id=quote.creator_id,
            target_id=quote.resource_id,
            idempotency_key=key,
        )
        self.db.commit()

        metadata = self._build_metadata(log.id, user.id, quote, points, key)
        session = self._create_session(
            log.id,
            CheckoutSessionRequest(
                mode="subscription" if quote.kind == ResourceKind.PLAN else "payment",
                line_item=CheckoutLineItem(
                    name=self._describe(quote),
                    amount=stripe_amount,
                    description=(
                        f"{points} points applied" if points > 0 else None
                    ),
                ),
                metadata=encode_checkout_metadata(metadata),
                success_url=request.success_url or self._default_success_url(),
                cancel_url=request.cancel_url or self._default_cancel_url(),
                customer_email=user.email,
                client_reference_id=str(user.id),
                idempotency_key=f"checkout_{log.id}",
            ),
        )
        logger.info(
            f"Checkout opened: user={user.id} {quote.kind.value}={quote.resource_id} "
            f"points={points} stripe={stripe_amount} audit_log={log.id}"
        )
        return HybridCheckoutResponse(
            requires_stripe=True,
            audit_log_id=log.id,
            url=session.url,
            session_id=session.id,
            points_amount=points,
            stripe_amount=stripe_amount,
        )

    def _create_session(self, audit_log_id: int, session_request: CheckoutSessionRequest):
        try:
            session = self.gateway.create_checkout_session(session_request)
        except ExternalGatewayError as e:
            # 청구 전 실패이므로 복구 대상 아님
            self.audit.fail_audit_log(
                audit_log_id,
                AuditError(code="STRIPE_ERROR", message=e.message, details=e.details),
                requires_recovery=False,
            )
            self.db.commit()
            raise
        self.audit.attach_session(audit_log_id, session.id)
        self.db.commit()
        return session

    @staticmethod
    def _build_metadata(
        audit_log_id: int, user_id: int, quote: PriceQuote, points: int, key: str
    ):
        common = dict(
            audit_log_id=audit_log_id,
            user_id=user_id,
            total_amount=quote.price,
            points_used=points,
            idempotency_key=key,
        )
        if quote.kind == ResourceKind.POST:
            if points > 0:
                return HybridPostPurchaseMetadata(
                    post_id=quote.resource_id, creator_id=quote.creator_id, **common
                )
            return PostPurchaseMetadata(
                post_id=quote.resource_id, creator_id=quote.creator_id, **common
            )
        if quote.kind == ResourceKind.PLAN:
            return SubscriptionMetadata(
                plan_id=quote.resource_id, creator_id=quote.creator_id, **common
            )
        if points > 0:
            return HybridTipMetadata(
                creator_id=quote.creator_id, message=quote.message, **common
            )
        return TipMetadata(creator_id=quote.creator_id, message=quote.message, **common)

    # ------------------------------------------------------------------

    @staticmethod
    def _describe(quote: PriceQuote) -> str:
        if quote.kind == ResourceKind.POST:
            return f"Post purchase: {quote.title or quote.resource_id}"
        if quote.kind == ResourceKind.PLAN:
            return f"Subscription: {quote.title or quote.resource_id}"
        return f"Tip to {quote.title or quote.creator_id}"

    def _default_success_url(self) -> str:
        return f"{self.settings.FRONTEND_URL}/payment/success?session_id={{CHECKOUT_SESSION_ID}}"

    def _default_cancel_url(self) -> str:
        return f"{self.settings.FRONTEND_URL}/payment/cancel"

