import asyncio
import logging

from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from payapi.containers import Container
from payapi.deps import get_webhook_service
from payapi.schemas.checkout import WebhookAck
from payapi.services.stripe_gateway import StripeGateway
from payapi.services.webhook_service import WebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe", response_model=WebhookAck)
@inject
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header("", alias="Stripe-Signature"),
    gateway: StripeGateway = Depends(Provide[Container.infrastructure.stripe_gateway]),
    webhook_service: WebhookService = Depends(get_webhook_service),
):
    """
    Stripe 웹훅 수신

    - 서명 검증 실패: 400
    - 처리 완료, 중복 수신, 복구 큐 기록: 200
    - DB 일시 오류: 500 (Stripe 가 재전송)
    """
    payload = await request.body()
    event = gateway.construct_event(payload, stripe_signature)

    try:
        # DB 작업은 동기 Session 이므로 이벤트 루프 밖에서 처리
        return await asyncio.to_thread(webhook_service.handle_event, event)
    except SQLAlchemyError as e:
        logger.error(f"Database error while processing webhook {event.id}: {e}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"received": False, "event_id": event.id, "outcome": "retry"},
        )
