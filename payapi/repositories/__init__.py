# Repository layer - Data access with Pydantic responses

from .base import BaseRepository
from .user_repository import UserRepository
from .points_repository import PointsRepository
from .idempotency_repository import IdempotencyRepository
from .payment_audit_repository import PaymentAuditRepository
from .catalog_repository import CatalogRepository
from .record_repository import RecordRepository

__all__ = [
    "BaseRepository",
    "UserRepository",
    "PointsRepository",
    "IdempotencyRepository",
    "PaymentAuditRepository",
    "CatalogRepository",
    "RecordRepository",
]
