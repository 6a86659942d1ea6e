"""
결제 이벤트 알림 (SQS)

결제 완료/복구 필요 이벤트를 큐로 보내 후속 처리(사용자 알림, 운영 알림)를
분리합니다. 알림 실패는 결제 결과에 영향을 주지 않습니다.
"""

import json
import logging
from typing import Any, Dict, Optional

from payapi.config import Settings
from payapi.services.aws_service import AwsService
from payapi.utils.date_utils import utc_now

logger = logging.getLogger(__name__)


class PaymentEventType:
    PAYMENT_COMPLETED = "payment.completed"
    RECOVERY_REQUIRED = "payment.recovery_required"
    SUBSCRIPTION_CANCELLED = "subscription.cancelled"


class NotificationService:
    def __init__(self, aws_service: AwsService, settings: Settings):
        self.aws_service = aws_service
        self.queue_url = settings.SQS_PAYMENT_EVENTS_QUEUE_URL

    def notify(self, event_type: str, payload: Dict[str, Any]) -> None:
        if not self.queue_url:
            logger.debug(f"Payment event queue not configured, skipping {event_type}")
            return

        body = json.dumps(
            {"event_type": event_type, "occurred_at": utc_now().isoformat(), **payload},
            ensure_ascii=False,
            default=str,
        )
        try:
            self.aws_service.send_sqs_message(
                self.queue_url,
                body,
                attributes={"event_type": event_type},
                group_id=_group_id(payload),
                deduplication_id=_deduplication_id(event_type, payload),
            )
        except Exception as e:
            logger.warning(f"Failed to publish {event_type} event: {e}")


def _group_id(payload: Dict[str, Any]) -> str:
    # 같은 사용자의 이벤트는 순서대로 처리
    user_id = payload.get("user_id")
    return f"user-{user_id}" if user_id is not None else "payments"


def _deduplication_id(event_type: str, payload: Dict[str, Any]) -> Optional[str]:
    for key in ("audit_log_id", "subscription_id"):
        if payload.get(key) is not None:
            return f"{event_type}:{key}:{payload[key]}"
    return None
