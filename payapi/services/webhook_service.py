"""
Stripe 웹훅 정산기

서명 검증을 통과한 이벤트만 받으며, 신뢰하는 값은 서명된 payload 와 우리가
심어둔 metadata 뿐입니다.

처리 원칙:
- metadata 는 수신 즉시 태그드 유니온으로 디코딩
- 감사 로그를 행 잠금으로 읽어 중복 수신을 직렬화 (completed 면 no-op)
- 하이브리드 결제의 포인트 차감은 이 시점에 수행
- 카드 결제는 성공했지만 가치를 부여할 수 없으면 failed + requires_recovery
  (ReconciliationError 는 Stripe 에 200 으로 응답하고 복구 큐로)
- DB 일시 오류는 예외 전파 -> 500 -> Stripe 재시도
"""

import logging
from typing import Optional, Tuple

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from payapi.config import Settings
from payapi.core.exceptions import (
    BaseAPIException,
    InsufficientBalanceError,
    ReconciliationError,
)
from payapi.models.payment_audit import AuditOperationType, AuditStatus, ReferenceType
from payapi.models.points import PointTransactionType
from payapi.repositories.catalog_repository import CatalogRepository
from payapi.repositories.payment_audit_repository import PaymentAuditRepository
from payapi.repositories.points_repository import PointsRepository
from payapi.repositories.record_repository import RecordRepository
from payapi.schemas.checkout import (
    CheckoutMetadata,
    CompletedCheckoutSession,
    GatewayEvent,
    HybridPostPurchaseMetadata,
    HybridTipMetadata,
    PointPurchaseMetadata,
    PostPurchaseMetadata,
    SubscriptionMetadata,
    TipMetadata,
    WebhookAck,
    parse_checkout_metadata,
)
from payapi.schemas.payment_audit import (
    AuditError,
    ExternalIds,
    PaymentAuditLogResponse,
)
from payapi.schemas.payments import PriceQuote, ResourceKind, ResourceRef
from payapi.services.domain_record_service import DomainRecordService
from payapi.services.notification_service import NotificationService, PaymentEventType
from payapi.services.payment_audit_service import PaymentAuditService

logger = logging.getLogger(__name__)

# metadata type -> 체크아웃 생성 시 기록한 감사 로그 작업 유형
EXPECTED_OPERATION = {
    "point_purchase": AuditOperationType.POINT_PURCHASE,
    "post_purchase": AuditOperationType.POST_PURCHASE_STRIPE,
    "post_purchase_hybrid": AuditOperationType.POST_PURCHASE_HYBRID,
    "subscription": AuditOperationType.SUBSCRIPTION_STRIPE,
    "tip": AuditOperationType.TIP_STRIPE,
    "tip_hybrid": AuditOperationType.TIP_HYBRID,
}

PAID_STATUSES = ("paid", "no_payment_required")


class WebhookOutcome:
    COMPLETED = "completed"
    DUPLICATE = "duplicate"
    RECOVERY_REQUIRED = "recovery_required"
    FLAGGED = "flagged"
    ALREADY_HANDLED = "already_handled"
    AWAITING_PAYMENT = "awaiting_payment"
    CANCELLED = "cancelled"
    IGNORED = "ignored"


class WebhookService:
    def __init__(self, db: Session, settings: Settings, notifier: NotificationService):
        self.db = db
        self.settings = settings
        self.notifier = notifier
        self.audit = PaymentAuditService(db)
        self.audit_repo = PaymentAuditRepository(db)
        self.points_repo = PointsRepository(db)
        self.catalog_repo = CatalogRepository(db)
        self.record_repo = RecordRepository(db)
        self.records = DomainRecordService(db, settings)

    def handle_event(self, event: GatewayEvent) -> WebhookAck:
        if event.type == "checkout.session.completed":
            outcome = self._handle_checkout_completed(event)
        elif event.type == "checkout.session.expired":
            outcome = self._handle_checkout_expired(event)
        else:
            logger.info(f"Unhandled webhook event type: {event.type}")
            outcome = WebhookOutcome.IGNORED
        return WebhookAck(event_id=event.id, outcome=outcome)

    # ------------------------------------------------------------------
    # checkout.session.completed
    # ------------------------------------------------------------------

    def _handle_checkout_completed(self, event: GatewayEvent) -> str:
        session = CompletedCheckoutSession.model_validate(event.data_object)

        try:
            metadata = parse_checkout_metadata(session.metadata)
        except PydanticValidationError as e:
            return self._handle_invalid_metadata(session, e)

        log = self.audit_repo.get_for_update(metadata.audit_log_id)
        if log is None:
            logger.error(
                f"Webhook {event.id} references unknown audit log {metadata.audit_log_id}"
            )
            self.db.rollback()
            return WebhookOutcome.IGNORED

        if log.status == AuditStatus.COMPLETED:
            logger.info(f"Audit log {log.id} already completed, skipping event {event.id}")
            self.db.commit()
            return WebhookOutcome.DUPLICATE

        if log.status == AuditStatus.REFUNDED or (
            log.status == AuditStatus.FAILED and log.requires_recovery
        ):
            self.db.commit()
            return WebhookOutcome.ALREADY_HANDLED

        if log.status in (AuditStatus.FAILED, AuditStatus.CANCELLED):
            # 우리 쪽에서 종료된 결제가 Stripe 에서는 승인됨
            self.audit.mark_for_recovery(
                log.id,
                f"Stripe confirmed session {session.id} after audit log was {log.status.value}",
            )
            self.db.commit()
            self._notify_recovery(log, "LATE_CONFIRMATION")
            return WebhookOutcome.FLAGGED

        if session.payment_status not in PAID_STATUSES:
            logger.info(
                f"Session {session.id} completed with payment_status="
                f"{session.payment_status}, waiting for payment"
            )
            self.db.commit()
            return WebhookOutcome.AWAITING_PAYMENT

        external_ids = ExternalIds(
            stripe_session_id=session.id,
            stripe_payment_intent_id=session.payment_intent,
            stripe_subscription_id=session.subscription,
        )

        try:
            if log.status == AuditStatus.PENDING:
                self.audit.mark_processing(log.id)
            self._verify(log, metadata, session)
            reference_type, reference_id = self._apply(log, metadata, session)
            self.audit.complete_audit_log(log.id, reference_type, reference_id, external_ids)
            self.db.commit()
        except ReconciliationError as e:
            self.db.rollback()
            return self._record_reconciliation_failure(log, e, external_ids)
        except IntegrityError as e:
            self.db.rollback()
            error = ReconciliationError(
                "Domain record conflicts with an existing record",
                error_code="DUPLICATE_RECORD",
                details={"db_error": str(e.orig)},
            )
            return self._record_reconciliation_failure(log, error, external_ids)

        logger.info(
            f"Webhook {event.id} completed audit log {log.id}: "
            f"{reference_type.value} {reference_id}",
            extra={
                "audit_log_id": log.id,
                "user_id": log.user_id,
                "event_id": event.id,
                "stripe_session_id": session.id,
            },
        )
        self.notifier.notify(
            PaymentEventType.PAYMENT_COMPLETED,
            {
                "audit_log_id": log.id,
                "user_id": log.user_id,
                "creator_id": log.creator_id,
                "reference_type": reference_type.value,
                "reference_id": reference_id,
                "amount": log.total_amount,
            },
        )
        return WebhookOutcome.COMPLETED

    def _handle_invalid_metadata(
        self, session: CompletedCheckoutSession, error: PydanticValidationError
    ) -> str:
        audit_log_id = _coerce_int(session.metadata.get("audit_log_id"))
        log = self.audit_repo.get_by_id(audit_log_id) if audit_log_id else None
        if log is None:
            logger.error(
                f"Checkout session {session.id} has unusable metadata and no audit log: "
                f"{error.errors(include_url=False)}"
            )
            return WebhookOutcome.IGNORED

        self.audit.mark_for_recovery(
            log.id, f"Invalid checkout metadata on session {session.id}"
        )
        self.db.commit()
        self._notify_recovery(log, "INVALID_METADATA")
        return WebhookOutcome.FLAGGED

    def _verify(
        self,
        log: PaymentAuditLogResponse,
        metadata: CheckoutMetadata,
        session: CompletedCheckoutSession,
    ) -> None:
        """metadata 와 감사 로그, 실제 결제 금액이 모두 일치해야 정산"""
        mismatches = {}
        if metadata.user_id != log.user_id:
            mismatches["user_id"] = (metadata.user_id, log.user_id)
        if metadata.total_amount != log.total_amount:
            mismatches["total_amount"] = (metadata.total_amount, log.total_amount)
        if metadata.points_used != log.points_amount:
            mismatches["points_amount"] = (metadata.points_used, log.points_amount)
        if metadata.stripe_amount != log.stripe_amount:
            mismatches["stripe_amount"] = (metadata.stripe_amount, log.stripe_amount)
        if EXPECTED_OPERATION[metadata.type] != log.operation_type:
            mismatches["operation_type"] = (metadata.type, log.operation_type.value)
        if session.amount_total != log.stripe_amount:
            mismatches["amount_total"] = (session.amount_total, log.stripe_amount)

        if mismatches:
            raise ReconciliationError(
                "Checkout session does not match the audit log",
                error_code="AMOUNT_MISMATCH",
                details={key: list(pair) for key, pair in mismatches.items()},
            )

    def _apply(
        self,
        log: PaymentAuditLogResponse,
        metadata: CheckoutMetadata,
        session: CompletedCheckoutSession,
    ) -> Tuple[ReferenceType, int]:
        if isinstance(metadata, PointPurchaseMetadata):
            entry = self.points_repo.credit(
                metadata.user_id,
                metadata.points,
                PointTransactionType.PURCHASE,
                description=f"Point purchase ({metadata.points}P)",
                reference_id=log.id,
                external_ref=session.payment_intent,
            )
            return ReferenceType.POINT_TRANSACTION, entry.transaction_id

        if isinstance(metadata, (PostPurchaseMetadata, HybridPostPurchaseMetadata)):
            if self.record_repo.has_purchased(metadata.user_id, metadata.post_id):
                raise ReconciliationError(
                    "Post was already purchased by another payment",
                    error_code="ALREADY_PURCHASED",
                    details={"post_id": metadata.post_id},
                )
            quote = self._quote(ResourceRef(kind=ResourceKind.POST, id=metadata.post_id), metadata)
            return self._settle(log, metadata, quote, session, PointTransactionType.POST_PURCHASE)

        if isinstance(metadata, SubscriptionMetadata):
            if self.record_repo.has_active_subscription(metadata.user_id, metadata.creator_id):
                raise ReconciliationError(
                    "User already has an active subscription to this creator",
                    error_code="ALREADY_SUBSCRIBED",
                    details={"creator_id": metadata.creator_id},
                )
            quote = self._quote(ResourceRef(kind=ResourceKind.PLAN, id=metadata.plan_id), metadata)
            return self._settle(log, metadata, quote, session, PointTransactionType.SUBSCRIPTION)

        if isinstance(metadata, (TipMetadata, HybridTipMetadata)):
            quote = self._quote(
                ResourceRef(
                    kind=ResourceKind.TIP,
                    id=metadata.creator_id,
                    amount=metadata.total_amount,
                    message=metadata.message,
                ),
                metadata,
            )
            return self._settle(log, metadata, quote, session, PointTransactionType.TIP)

        raise ReconciliationError(
            f"Unsupported checkout type: {metadata.type}", error_code="UNSUPPORTED_TYPE"
        )

    def _quote(self, ref: ResourceRef, metadata: CheckoutMetadata) -> PriceQuote:
        """대상 조회 - 가격은 체크아웃 당시 metadata 금액을 사용"""
        try:
            quote = self.catalog_repo.quote(ref)
        except BaseAPIException as e:
            raise ReconciliationError(
                f"Paid resource is no longer available: {e.message}",
                error_code="RESOURCE_UNAVAILABLE",
                details=e.details,
            )
        return quote.model_copy(update={"price": metadata.total_amount})

    def _settle(
        self,
        log: PaymentAuditLogResponse,
        metadata: CheckoutMetadata,
        quote: PriceQuote,
        session: CompletedCheckoutSession,
        debit_kind: PointTransactionType,
    ) -> Tuple[ReferenceType, int]:
        if metadata.points_used > 0:
            # 보류해 둔 포인트 차감 - 체크아웃 이후 잔액이 줄었을 수 있음
            try:
                self.points_repo.debit(
                    metadata.user_id,
                    metadata.points_used,
                    debit_kind,
                    reference_id=log.id,
                    description=f"Points applied to checkout {session.id}",
                )
            except InsufficientBalanceError as e:
                raise ReconciliationError(
                    "Point balance dropped below the reserved amount before confirmation",
                    error_code="INSUFFICIENT_POINTS_AT_CONFIRMATION",
                    details={**e.details, "stripe_amount_charged": metadata.stripe_amount},
                )

        return self.records.create_record(
            metadata.user_id,
            quote,
            points_amount=metadata.points_used,
            stripe_amount=metadata.stripe_amount,
            stripe_payment_intent_id=session.payment_intent,
            stripe_subscription_id=session.subscription,
            idempotency_key=metadata.idempotency_key,
        )

    def _record_reconciliation_failure(
        self,
        log: PaymentAuditLogResponse,
        error: ReconciliationError,
        external_ids: ExternalIds,
    ) -> str:
        current = self.audit_repo.get_for_update(log.id)
        if current.status not in (AuditStatus.PENDING, AuditStatus.PROCESSING):
            # 동시에 들어온 다른 전달이 먼저 종료시킴
            self.db.commit()
            return WebhookOutcome.ALREADY_HANDLED

        self.audit.fail_audit_log(
            log.id,
            AuditError(code=error.error_code, message=error.message, details=error.details),
            requires_recovery=True,
            external_ids=external_ids,
        )
        self.db.commit()
        self._notify_recovery(log, error.error_code)
        return WebhookOutcome.RECOVERY_REQUIRED

    def _notify_recovery(self, log: PaymentAuditLogResponse, reason: str) -> None:
        self.notifier.notify(
            PaymentEventType.RECOVERY_REQUIRED,
            {
                "audit_log_id": log.id,
                "user_id": log.user_id,
                "reason": reason,
                "stripe_amount": log.stripe_amount,
                "points_amount": log.points_amount,
            },
        )

    # ------------------------------------------------------------------
    # checkout.session.expired
    # ------------------------------------------------------------------

    def _handle_checkout_expired(self, event: GatewayEvent) -> str:
        session = CompletedCheckoutSession.model_validate(event.data_object)
        audit_log_id = _coerce_int(session.metadata.get("audit_log_id"))
        log = self.audit_repo.get_for_update(audit_log_id) if audit_log_id else None
        if log is None:
            log = self.audit_repo.find_by_session_id(session.id)
        if log is None:
            logger.warning(f"Expired session {session.id} has no audit log")
            return WebhookOutcome.IGNORED

        if log.status != AuditStatus.PENDING:
            self.db.commit()
            return WebhookOutcome.ALREADY_HANDLED

        self.audit.cancel_audit_log(log.id, f"Checkout session {session.id} expired")
        self.db.commit()
        logger.info(f"Audit log {log.id} cancelled after session expiry")
        return WebhookOutcome.CANCELLED


def _coerce_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
