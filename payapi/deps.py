from fastapi import Depends, Request
from sqlalchemy.orm import Session

from payapi.database.session import get_db

# Services
from payapi.services.admin_payment_service import AdminPaymentService
from payapi.services.idempotency_service import IdempotencyService
from payapi.services.payment_service import PaymentService
from payapi.services.point_service import PointService
from payapi.services.subscription_renewal_service import SubscriptionRenewalService
from payapi.services.webhook_service import WebhookService


def get_point_service(request: Request, db: Session = Depends(get_db)) -> PointService:
    return request.app.container.services.point_service(db=db)


def get_payment_service(request: Request, db: Session = Depends(get_db)) -> PaymentService:
    return request.app.container.services.payment_service(db=db)


def get_webhook_service(request: Request, db: Session = Depends(get_db)) -> WebhookService:
    return request.app.container.services.webhook_service(db=db)


def get_renewal_service(
    request: Request, db: Session = Depends(get_db)
) -> SubscriptionRenewalService:
    return request.app.container.services.renewal_service(db=db)


def get_idempotency_service(
    request: Request, db: Session = Depends(get_db)
) -> IdempotencyService:
    return request.app.container.services.idempotency_service(db=db)


def get_admin_payment_service(
    request: Request, db: Session = Depends(get_db)
) -> AdminPaymentService:
    return request.app.container.services.admin_payment_service(db=db)
